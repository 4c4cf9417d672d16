"""
server.py: etlded process launch
--------------------------------
Builds the fixed-order argument vector from the final settings and runs
the dedicated server in the foreground. No validation happens here: a bad
value only surfaces as a failure of etlded itself.
"""

from __future__ import annotations
import shlex
from typing import List, Optional, Sequence
from .settings import Settings
from .fs_layout import Layout
from .process_runner import ProcessRunner
from .cfg_generator import SERVER_CFG_TEMPLATE
from .logging_setup import get_logger

log = get_logger("etl.launcher.server")


def parse_cli_args(raw: str) -> List[str]:
    """ADDITIONAL_CLI_ARGS, split shell-style so quoted values stay intact."""
    if not raw or not raw.strip():
        return []
    return shlex.split(raw)


def build_server_command(settings: Settings, layout: Layout, extra: Sequence[str] = ()) -> List[str]:
    return [
        str(layout.server_binary),
        "+set", "sv_maxclients", str(settings.maxclients),
        "+set", "net_port", str(settings.map_port),
        "+set", "fs_basepath", str(layout.game_base),
        "+set", "fs_homepath", str(layout.homepath),
        "+set", "sv_tracker", settings.sv_tracker,
        "+exec", SERVER_CFG_TEMPLATE,
        "+map", settings.startmap,
    ] + parse_cli_args(settings.additional_cli_args) + list(extra)


class ServerLauncher:
    def __init__(self, settings: Settings, layout: Layout, runner: Optional[ProcessRunner] = None):
        self.settings = settings
        self.layout = layout
        self.runner = runner or ProcessRunner()

    def start(self, extra: Sequence[str] = ()) -> int:
        cmd = build_server_command(self.settings, self.layout, extra)
        handle = self.runner.start(
            "server", cmd, cwd=self.layout.game_base, log_file=self.layout.logs / "server.log",
        )
        self.runner.forward_signals(handle)
        rc = self.runner.wait(handle)
        self.runner.stop_all()
        return rc
