from __future__ import annotations
import shutil
from pathlib import Path
from typing import List
from .settings import Settings
from .fs_layout import Layout
from .map_fetcher import FetchReport, MapFetcher, normalize_map_names
from .planner import Plan, PlanAction
from .logging_setup import get_logger

log = get_logger("etl.launcher.content")

XMAS_PK3 = "xmas.pk3"

class ContentManager:
    def __init__(self, settings: Settings, layout: Layout):
        self.settings = settings
        self.layout = layout

    def map_fetcher(self) -> MapFetcher:
        root = self.settings.redirect_url.rstrip("/")
        return MapFetcher(
            self.layout.etmain,
            cache_dir=self.layout.maps_cache,
            remote_root=f"{root}/etmain" if root else "",
            workers=self.settings.fetch_workers,
        )

    # ---------------- Planning ----------------
    def plan(self) -> Plan:
        actions: List[PlanAction] = []
        notes: List[str] = []
        fetcher = self.map_fetcher()

        for name in normalize_map_names(self.settings.map_list):
            dest = fetcher.target_path(name)
            cached = self.layout.maps_cache / f"{name}.pk3"
            if dest.exists():
                action, detail, sev = "skip", "already present", "info"
            elif cached.is_file():
                action, detail, sev = "copy_map", "copy from local map cache", "info"
            elif fetcher.remote_root:
                action, detail, sev = "download_map", "download from redirect url", "info"
            else:
                action, detail, sev = "download_map", "missing and no REDIRECTURL configured", "warn"
            actions.append(PlanAction(
                action=action,
                target=name,
                detail=detail,
                paths={"dest": str(dest), "cache": str(cached), "url": fetcher.url_for(name)},
                will_change=action != "skip",
                severity=sev,
            ))

        if not self.settings.auto_update:
            notes.append("AUTO_UPDATE=false: config repository will not be pulled.")
        if not (self.layout.settings_repo / "etl_server.cfg").is_file():
            notes.append(f"No etl_server.cfg template in {self.layout.settings_repo} yet.")
        return Plan(ok=all(a.severity != "error" for a in actions), actions=actions, notes=notes)

    # ---------------- Maps ----------------
    def ensure_maps(self) -> FetchReport:
        return self.map_fetcher().fetch(self.settings.map_list)

    def ensure_xmas(self) -> bool:
        if not self.settings.xmas:
            return False
        dst = self.layout.legacy / XMAS_PK3
        if dst.exists():
            return True
        if not self.settings.xmas_url:
            log.warning("XMAS=true but XMAS_URL is empty, skipping %s", XMAS_PK3)
            return False
        url = self.settings.xmas_url.rstrip("/")
        root, _, fname = url.rpartition("/")
        if fname != XMAS_PK3:
            root = url
        fetcher = MapFetcher(self.layout.legacy, remote_root=root, workers=1)
        return fetcher.fetch(["xmas"]).ok

    # ---------------- Game files ----------------
    @staticmethod
    def _copy_glob(src_dir: Path, pattern: str, dest: Path) -> int:
        n = 0
        if not src_dir.is_dir():
            return n
        dest.mkdir(parents=True, exist_ok=True)
        for f in sorted(src_dir.glob(pattern)):
            if f.is_file():
                shutil.copy2(f, dest / f.name)
                n += 1
        return n

    def install_game_files(self) -> None:
        """Copy mapscripts, luascripts, command maps and configs from the config repository."""
        repo = self.layout.settings_repo
        self.layout.mapscripts.mkdir(parents=True, exist_ok=True)
        self.layout.luascripts.mkdir(parents=True, exist_ok=True)

        for old in self.layout.mapscripts.glob("*.script"):
            old.unlink()
        n_scripts = self._copy_glob(repo / "mapscripts", "*.script", self.layout.mapscripts)
        n_lua = self._copy_glob(repo / "luascripts", "*.lua", self.layout.luascripts)
        n_cmd = self._copy_glob(repo / "commandmaps", "*.pk3", self.layout.legacy)

        if self.layout.etmain_configs.exists():
            shutil.rmtree(self.layout.etmain_configs)
        self.layout.etmain_configs.mkdir(parents=True, exist_ok=True)
        n_cfg = self._copy_glob(repo / "configs", "*.config", self.layout.etmain_configs)

        log.info("Game files installed: mapscripts=%d luascripts=%d commandmaps=%d configs=%d",
                 n_scripts, n_lua, n_cmd, n_cfg)
