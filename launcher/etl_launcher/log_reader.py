"""
Tail and cursor access to the launcher's and the game's log files.

Log ids are the file stem for files in the launcher log dir (``launcher``,
``server``) and ``game.<stem>`` for logs etlded writes below
``<homepath>/legacy`` (g_log, logfile).
"""

from __future__ import annotations
import base64
import binascii
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .fs_layout import Layout

GAME_PREFIX = "game."


@dataclass
class LogChunk:
    entries: List[str]
    cursor: str
    truncated: bool


def log_index(layout: Layout) -> Dict[str, Path]:
    index: Dict[str, Path] = {}
    for prefix, directory in (("", layout.logs), (GAME_PREFIX, layout.homepath / "legacy")):
        if directory.is_dir():
            for p in sorted(directory.glob("*.log")):
                index[prefix + p.stem] = p
    return index


def list_logs(index: Dict[str, Path]) -> List[dict]:
    out = []
    for log_id, p in index.items():
        st = p.stat()
        out.append({"id": log_id, "path": str(p), "size_bytes": st.st_size, "modified": int(st.st_mtime)})
    return out


# cursor = urlsafe b64 of "<offset>:<inode>"
def _encode_cursor(pos: int, inode: int) -> str:
    return base64.urlsafe_b64encode(f"{pos}:{inode}".encode("ascii")).decode("ascii")


def _decode_cursor(cursor: str) -> Optional[Tuple[int, int]]:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("ascii")
        pos, inode = raw.split(":", 1)
        return int(pos), int(inode)
    except (binascii.Error, UnicodeError, ValueError):
        return None


def _lines(data: bytes) -> List[str]:
    return data.decode("utf-8", errors="replace").splitlines()


def read_tail(path: Path, tail_lines: int = 200, max_bytes: int = 256_000) -> LogChunk:
    st = path.stat()
    with path.open("rb") as f:
        f.seek(max(0, st.st_size - max_bytes))
        lines = _lines(f.read())
    entries = lines[-tail_lines:] if tail_lines > 0 else lines
    return LogChunk(entries, _encode_cursor(st.st_size, st.st_ino), len(lines) > len(entries))


def read_from_cursor(path: Path, cursor: str, max_lines: int = 200, max_bytes: int = 256_000) -> LogChunk:
    """
    Continue after ``cursor``. An unreadable cursor, a different inode
    (server.log rotated) or an offset past EOF (truncated) restart at 0.
    """
    st = path.stat()
    pos = 0
    decoded = _decode_cursor(cursor) if cursor else None
    if decoded is not None:
        offset, inode = decoded
        if inode == st.st_ino and 0 <= offset <= st.st_size:
            pos = offset

    with path.open("rb") as f:
        f.seek(pos)
        data = f.read(max_bytes)

    # a capped read stops at the last newline, the rest is read next time
    full = len(data) == max_bytes
    if full and b"\n" in data:
        data = data[:data.rfind(b"\n") + 1]
    raw = data.split(b"\n")
    if raw and raw[-1] == b"":
        raw.pop()
    taken = raw[:max_lines]
    consumed = min(len(data), sum(len(r) + 1 for r in taken))
    entries = [r.decode("utf-8", errors="replace").rstrip("\r") for r in taken]
    return LogChunk(entries, _encode_cursor(pos + consumed, st.st_ino), full or len(raw) > len(taken))
