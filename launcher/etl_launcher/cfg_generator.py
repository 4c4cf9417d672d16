from __future__ import annotations
from pathlib import Path
from typing import Dict, Optional
from .settings import Settings
from .fs_layout import Layout
from .templating import (
    ConfigSource, render_file, resolve_config_source, split_motd,
    needpass_hook, motd_hook, append_file_hook,
)
from .errors import TemplateMissingError
from .logging_setup import get_logger

log = get_logger("etl.launcher.cfg")

SERVER_CFG_TEMPLATE = "etl_server.cfg"
STATS_LUA = "game-stats-web.lua"

def template_values(settings: Settings, source: Optional[ConfigSource] = None) -> Dict[str, str]:
    source = source or resolve_config_source(settings)
    values = settings.placeholders()
    values["CONF_SETTINGSBRANCH"] = source.branch
    for i, line in enumerate(split_motd(settings.motd)):
        values[f"CONF_MOTD{i}"] = line
    return values

def generate_server_cfg(settings: Settings, layout: Layout) -> Path:
    src = layout.settings_repo / SERVER_CFG_TEMPLATE
    if not src.is_file():
        raise TemplateMissingError(f"Server config template missing: {src}")
    hooks = [
        needpass_hook(settings.password),
        motd_hook(settings.motd),
        append_file_hook(layout.extra_cfg),
    ]
    return render_file(src, layout.server_cfg, template_values(settings), hooks)

def generate_stats_lua(settings: Settings, layout: Layout) -> Optional[Path]:
    source = resolve_config_source(settings)
    if not source.render_stats:
        return None
    # copied into place by install_game_files(); render in place
    target = layout.luascripts / STATS_LUA
    src = target if target.is_file() else layout.settings_repo / "luascripts" / STATS_LUA
    if not src.is_file():
        log.warning("STATS_SUBMIT=true but %s not found in config repository, stats disabled", STATS_LUA)
        return None
    settings.stats_api_path.mkdir(parents=True, exist_ok=True)
    return render_file(src, target, template_values(settings, source))
