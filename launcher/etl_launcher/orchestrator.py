from __future__ import annotations
from pathlib import Path
from typing import Optional, Sequence
from .settings import Settings
from .logging_setup import get_logger
from .fs_layout import build_layout, ensure_dirs
from .config_repo import ConfigRepository
from .content_manager import ContentManager
from .cfg_generator import generate_server_cfg, generate_stats_lua
from .map_fetcher import FetchReport
from .process_runner import ProcessRunner
from .server import ServerLauncher, build_server_command
from .planner import Plan
from .query import player_count

log = get_logger("etl.launcher.orch")

class Orchestrator:
    """Container entrypoint: config repo -> maps -> game files -> etl_server.cfg -> etlded."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.layout = build_layout(settings)
        self.runner = ProcessRunner()
        self.content = ContentManager(settings, self.layout)

    def prepare_environment(self) -> None:
        ensure_dirs(self.layout)
        if not self.layout.server_binary.exists():
            log.warning("Server binary not found at %s", self.layout.server_binary)

    def update_config(self) -> bool:
        return ConfigRepository(self.settings, self.layout.settings_repo).update()

    def plan(self) -> Plan:
        return self.content.plan()

    def sync_content(self) -> FetchReport:
        log.info("Plan: maps=%d xmas=%s stats=%s",
                 len(self.settings.map_list), self.settings.xmas, self.settings.stats_submit)
        report = self.content.ensure_maps()
        self.content.ensure_xmas()
        self.content.install_game_files()
        return report

    def generate_configs(self, *, dry_run: bool = False) -> Path:
        if dry_run:
            return self.layout.server_cfg
        out = generate_server_cfg(self.settings, self.layout)
        generate_stats_lua(self.settings, self.layout)
        return out

    def server_command(self, extra: Sequence[str] = ()) -> list:
        return build_server_command(self.settings, self.layout, extra)

    def start_server(self, extra: Sequence[str] = ()) -> int:
        return ServerLauncher(self.settings, self.layout, self.runner).start(extra)

    def run(self, extra: Sequence[str] = (), *, start: bool = True) -> int:
        self.prepare_environment()
        self.update_config()
        self.sync_content()
        self.generate_configs()
        if not start:
            return 0
        return self.start_server(extra)

    def stop(self) -> None:
        self.runner.stop_all()

    def status(self) -> dict:
        return {
            "processes": self.runner.status(),
            "players": player_count("127.0.0.1", self.settings.map_port),
        }

    def players(self) -> Optional[int]:
        return player_count("127.0.0.1", self.settings.map_port)
