from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from .settings import Settings

@dataclass(frozen=True)
class Layout:
    game_base: Path
    etmain: Path
    legacy: Path
    mapscripts: Path
    luascripts: Path
    etmain_configs: Path
    settings_repo: Path
    homepath: Path
    stats_dir: Path
    logs: Path
    maps_cache: Path
    server_cfg: Path
    extra_cfg: Path
    server_binary: Path

def build_layout(settings: Settings) -> Layout:
    base = settings.game_base
    etmain = base / "etmain"
    legacy = base / "legacy"
    return Layout(
        game_base=base,
        etmain=etmain,
        legacy=legacy,
        mapscripts=etmain / "mapscripts",
        luascripts=legacy / "luascripts",
        etmain_configs=etmain / "configs",
        settings_repo=base / "settings",
        homepath=settings.homepath,
        stats_dir=settings.stats_api_path,
        logs=settings.homepath / "logs",
        maps_cache=settings.maps_cache,
        server_cfg=etmain / "etl_server.cfg",
        extra_cfg=base / "extra.cfg",
        server_binary=base / "etlded",
    )

def ensure_dirs(layout: Layout) -> None:
    for p in [
        layout.etmain, layout.legacy, layout.mapscripts,
        layout.luascripts, layout.homepath, layout.logs,
    ]:
        p.mkdir(parents=True, exist_ok=True)
