from __future__ import annotations
import argparse
import json
import sys
import uvicorn
from .settings import Settings
from .errors import LauncherError
from .logging_setup import get_logger, setup_logging
from .orchestrator import Orchestrator
from .api import create_app
from .query import player_count

log = get_logger("etl.launcher.cli")


def autorestart(settings: Settings, host: str = "127.0.0.1") -> int:
    """0 when the server is empty (safe to restart/update), 1 otherwise or when it does not answer."""
    players = player_count(host, settings.map_port)
    if players is None:
        print("Failed to retrieve player count. Exiting.")
        return 1
    if players > 0:
        print("Players are currently active. Exiting without update.")
        return 1
    print("No players are currently active. Proceeding with update.")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="etl-launcher")
    sub = parser.add_subparsers(dest="cmd", required=True)

    run_p = sub.add_parser("run", help="Update configs + maps, render etl_server.cfg, start etlded")
    run_p.add_argument("--no-start", action="store_true", help="Only sync + generate config; don't start etlded")
    run_p.add_argument("--dry-run", action="store_true", help="Print the plan and the server command, touch nothing")
    run_p.add_argument("extra", nargs=argparse.REMAINDER, help="Passed through to etlded")

    sub.add_parser("plan", help="Print a dry-run plan as JSON and exit")

    api_p = sub.add_parser("api", help="Run REST API (FastAPI)")
    api_p.add_argument("--host", default="0.0.0.0")
    api_p.add_argument("--port", type=int, default=8000)

    ar_p = sub.add_parser("autorestart", help="Exit 0 when no players are connected (watchtower/cron hook)")
    ar_p.add_argument("--host", default="127.0.0.1")

    sub.add_parser("install", help="Interactive host installer (Docker, settings.env, docker-compose.yml)")

    args = parser.parse_args(argv)
    settings = Settings()
    host_side = args.cmd in ("install", "autorestart")
    setup_logging(settings, to_file=not host_side)

    try:
        if args.cmd == "plan":
            orch = Orchestrator(settings)
            plan = orch.plan().to_dict()
            print(json.dumps(plan, indent=2, ensure_ascii=False))
            return 0 if plan.get("ok", True) else 1

        if args.cmd == "run":
            orch = Orchestrator(settings)
            extra = args.extra[1:] if args.extra[:1] == ["--"] else list(args.extra)
            if args.dry_run:
                plan = orch.plan().to_dict()
                plan["generated_cfg_path"] = str(orch.generate_configs(dry_run=True))
                plan["command"] = orch.server_command(extra)
                print(json.dumps(plan, indent=2, ensure_ascii=False))
                return 0 if plan.get("ok", True) else 1
            return orch.run(extra, start=not args.no_start)

        if args.cmd == "api":
            app = create_app(settings)
            uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level.lower())
            return 0

        if args.cmd == "autorestart":
            return autorestart(settings, args.host)

        if args.cmd == "install":
            from .installer.wizard import Installer
            return Installer().run()
    except LauncherError as e:
        log.error("%s", e)
        return 1
    except KeyboardInterrupt:
        log.warning("Aborted")
        return 130

    return 2


if __name__ == "__main__":
    sys.exit(main())
