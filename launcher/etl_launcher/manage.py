"""
manage.py: ``etl-server`` management CLI
----------------------------------------
Runs on the host against an install directory (settings.env +
docker-compose.yml). Lifecycle commands map onto ``docker compose``;
``rcon``/``status``/``update`` talk to the servers over UDP.
"""

from __future__ import annotations
import argparse
import subprocess
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .config import Category, SettingsStore
from .errors import LauncherError
from .settings import Settings
from .installer.composer import SETTINGS_FILE, default_port, service_name
from .logging_setup import get_logger, setup_logging
from .query import QueryError, player_count, query_status, send_rcon

log = get_logger("etl.launcher.manage")

DEFAULT_INSTALL_DIR = Path(".")
LOCALHOST = "127.0.0.1"


class ServerManager:
    def __init__(self, install_dir: Path, host: str = LOCALHOST):
        self.install_dir = Path(install_dir)
        self.host = host
        settings = self.install_dir / SETTINGS_FILE
        if not settings.is_file():
            raise LauncherError(f"No {SETTINGS_FILE} in {self.install_dir}; is this an ETLegacy install directory?")
        self.store = SettingsStore(settings, autosave=False)

    # ---------------- instances ----------------
    def instances(self) -> List[int]:
        return self.store.instances()

    def _check_instance(self, n: Optional[int]) -> None:
        if n is not None and n not in self.instances():
            raise LauncherError(f"Unknown server instance {n} (configured: {self.instances() or 'none'})")

    def port(self, n: int) -> int:
        raw = self.store.get(Category.SERVERS, "PORT", instance=n)
        return int(raw) if raw else default_port(n)

    def rcon_password(self, n: int) -> str:
        return self.store.get(Category.SERVERS, "RCONPASSWORD", "", instance=n) or ""

    # ---------------- docker compose ----------------
    def compose_cmd(self, *args: str) -> List[str]:
        return ["docker", "compose", f"--env-file={self.install_dir / SETTINGS_FILE}", *args]

    def compose(self, *args: str) -> int:
        cmd = self.compose_cmd(*args)
        log.debug("exec: %s", " ".join(cmd))
        try:
            return subprocess.run(cmd, cwd=self.install_dir).returncode
        except OSError as e:
            raise LauncherError(f"docker compose failed: {e}") from e

    def _services(self, n: Optional[int]) -> List[str]:
        self._check_instance(n)
        return [service_name(n)] if n is not None else []

    def start(self, n: Optional[int] = None) -> int:
        print(f"Starting server {n}..." if n else "Starting all servers...")
        return self.compose("up", "-d", *self._services(n))

    def stop(self, n: Optional[int] = None) -> int:
        print(f"Stopping server {n}..." if n else "Stopping all servers...")
        if n is None:
            return self.compose("down")
        return self.compose("stop", *self._services(n))

    def restart(self, n: Optional[int] = None) -> int:
        print(f"Restarting server {n}..." if n else "Restarting all servers...")
        return self.compose("restart", *self._services(n))

    def logs(self, n: Optional[int] = None, follow: bool = False, tail: int = 100) -> int:
        args = ["logs", f"--tail={tail}"]
        if follow:
            args.append("-f")
        return self.compose(*args, *self._services(n))

    # ---------------- live queries ----------------
    def status(self) -> List[dict]:
        rows = []
        for n in self.instances():
            port = self.port(n)
            row = {"instance": n, "service": service_name(n), "port": port, "online": False}
            try:
                row.update(query_status(self.host, port).to_dict())
                row["online"] = True
            except QueryError as e:
                log.debug("status %s: %s", service_name(n), e)
            rows.append(row)
        return rows

    def rcon(self, n: int, command: str) -> str:
        self._check_instance(n)
        return send_rcon(self.host, self.port(n), self.rcon_password(n), command)

    def update(self, n: Optional[int] = None, force: bool = False) -> int:
        """Pull the image and recreate; instances with players are left alone unless forced."""
        targets = [n] if n is not None else self.instances()
        for t in targets:
            self._check_instance(t)
        ready: List[int] = []
        for t in targets:
            players = player_count(self.host, self.port(t))
            if players and not force:
                print(f"{service_name(t)}: {players} player(s) active, skipping update (use --force to override)")
                continue
            ready.append(t)
        if not ready:
            return 1
        services = [service_name(t) for t in ready]
        rc = self.compose("pull", *services)
        if rc != 0:
            return rc
        return self.compose("up", "-d", *services)


def _print_status(rows: Sequence[dict]) -> None:
    if not rows:
        print("No server instances configured.")
        return
    for r in rows:
        if r["online"]:
            print(f"{r['service']:<14} port {r['port']:<6} {r['numplayers']}/{r['maxclients'] or '?'} "
                  f"on {r['map'] or '?'}  {r['hostname']}")
        else:
            print(f"{r['service']:<14} port {r['port']:<6} offline")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="etl-server", description="ETLegacy Server Management")
    parser.add_argument("--install-dir", type=Path, default=DEFAULT_INSTALL_DIR)
    sub = parser.add_subparsers(dest="cmd", required=True)

    for name, help_ in (("start", "Start servers"), ("stop", "Stop servers"), ("restart", "Restart servers")):
        p = sub.add_parser(name, help=help_)
        p.add_argument("instance", nargs="?", type=int)

    sub.add_parser("status", help="Show live player counts per instance")

    logs_p = sub.add_parser("logs", help="Show container logs")
    logs_p.add_argument("instance", nargs="?", type=int)
    logs_p.add_argument("-f", "--follow", action="store_true")
    logs_p.add_argument("--tail", type=int, default=100)

    rcon_p = sub.add_parser("rcon", help="Send an RCON command to one instance")
    rcon_p.add_argument("instance", type=int)
    rcon_p.add_argument("command", nargs=argparse.REMAINDER)

    upd_p = sub.add_parser("update", help="Pull the image and recreate servers that are empty")
    upd_p.add_argument("instance", nargs="?", type=int)
    upd_p.add_argument("--force", action="store_true", help="Update even when players are connected")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(Settings(), to_file=False)
    try:
        mgr = ServerManager(args.install_dir)
        if args.cmd == "start":
            return mgr.start(args.instance)
        if args.cmd == "stop":
            return mgr.stop(args.instance)
        if args.cmd == "restart":
            return mgr.restart(args.instance)
        if args.cmd == "logs":
            return mgr.logs(args.instance, follow=args.follow, tail=args.tail)
        if args.cmd == "status":
            _print_status(mgr.status())
            return 0
        if args.cmd == "rcon":
            if not args.command:
                print("rcon: missing command", file=sys.stderr)
                return 2
            print(mgr.rcon(args.instance, " ".join(args.command)))
            return 0
        if args.cmd == "update":
            return mgr.update(args.instance, force=args.force)
    except (LauncherError, QueryError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 2


if __name__ == "__main__":
    sys.exit(main())
