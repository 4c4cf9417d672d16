"""
Quake 3 out-of-band UDP queries against an ET:Legacy server: ``getstatus``
for the player count and ``rcon`` for remote commands.
"""

from __future__ import annotations
import socket
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from .logging_setup import get_logger

log = get_logger("etl.launcher.query")

OOB = b"\xff\xff\xff\xff"
STATUS_HEADER = OOB + b"statusResponse"
PRINT_HEADER = OOB + b"print"


class QueryError(Exception):
    pass


@dataclass
class PlayerInfo:
    name: str
    score: int
    ping: int


@dataclass
class ServerStatus:
    info: Dict[str, str] = field(default_factory=dict)
    players: List[PlayerInfo] = field(default_factory=list)

    @property
    def player_count(self) -> int:
        return len(self.players)

    def to_dict(self) -> dict:
        return {
            "hostname": self.info.get("sv_hostname", ""),
            "map": self.info.get("mapname", ""),
            "maxclients": self.info.get("sv_maxclients", ""),
            "numplayers": self.player_count,
            "players": [p.__dict__ for p in self.players],
        }


def parse_infostring(s: str) -> Dict[str, str]:
    parts = s.strip().lstrip("\\").split("\\")
    return {parts[i]: parts[i + 1] for i in range(0, len(parts) - 1, 2)}


def parse_status_response(data: bytes) -> ServerStatus:
    if not data.startswith(STATUS_HEADER):
        raise QueryError("unexpected response to getstatus")
    text = data[len(STATUS_HEADER):].decode("latin-1")
    lines = [ln for ln in text.split("\n") if ln.strip()]
    status = ServerStatus()
    if not lines:
        return status
    status.info = parse_infostring(lines[0])
    for line in lines[1:]:
        # <score> <ping> "<name>"
        head, _, rest = line.partition('"')
        nums = head.split()
        if len(nums) < 2:
            continue
        try:
            score, ping = int(nums[0]), int(nums[1])
        except ValueError:
            continue
        status.players.append(PlayerInfo(name=rest.rstrip('"'), score=score, ping=ping))
    return status


def _exchange(host: str, port: int, payload: bytes, *, timeout: float, multi: bool = False) -> List[bytes]:
    out: List[bytes] = []
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.settimeout(timeout)
        sock.sendto(payload, (host, port))
        while True:
            try:
                data, _ = sock.recvfrom(65535)
            except socket.timeout:
                break
            out.append(data)
            if not multi:
                break
    return out


def query_status(host: str = "127.0.0.1", port: int = 27960, *, timeout: float = 2.0) -> ServerStatus:
    try:
        replies = _exchange(host, port, OOB + b"getstatus\n", timeout=timeout)
    except OSError as e:
        raise QueryError(f"getstatus to {host}:{port} failed: {e}") from e
    if not replies:
        raise QueryError(f"no response from {host}:{port}")
    return parse_status_response(replies[0])


def rcon_packet(password: str, command: str) -> bytes:
    return OOB + f"rcon {password} {command}".encode("latin-1", errors="replace")


def send_rcon(host: str, port: int, password: str, command: str, *, timeout: float = 1.0) -> str:
    if not password:
        raise QueryError("RCON password is not set for this instance")
    try:
        replies = _exchange(host, port, rcon_packet(password, command), timeout=timeout, multi=True)
    except OSError as e:
        raise QueryError(f"rcon to {host}:{port} failed: {e}") from e
    chunks = []
    for r in replies:
        if r.startswith(PRINT_HEADER):
            chunks.append(r[len(PRINT_HEADER):].lstrip(b"\n").decode("latin-1"))
    return "".join(chunks)


def player_count(host: str = "127.0.0.1", port: int = 27960, *, timeout: float = 2.0) -> Optional[int]:
    """None when the server does not answer."""
    try:
        return query_status(host, port, timeout=timeout).player_count
    except QueryError as e:
        log.debug("player_count: %s", e)
        return None
