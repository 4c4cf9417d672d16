"""
Placeholder renderer for etl_server.cfg and the stats Lua script.

Templates carry ``%CONF_<NAME>%`` tokens (``%CONF_HOSTNAME%``, ``%CONF_MAP_PORT%`` ...).
Unknown ones are blanked by default: an absent value means the feature is off.
Other ``%X%`` runs are left alone; the stats Lua uses them as pattern classes.
Anything that is not a pure substitution (g_needpass, MOTD slots, extra.cfg)
runs as a post-substitution hook on the rendered text.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Mapping

from .settings import Settings
from .logging_setup import get_logger

log = get_logger("etl.launcher.template")

PLACEHOLDER_RE = re.compile(r"%(CONF_[A-Z0-9_]*)%")

# ET:Legacy exposes server_motd0 .. server_motd5
MOTD_SLOTS = 6
MOTD_ESCAPE = "\\n"

Hook = Callable[[str], str]


def render_text(text: str, values: Mapping[str, str], *, blank_unknown: bool = True) -> str:
    def repl(m: re.Match) -> str:
        name = m.group(1)
        if name in values:
            return str(values[name])
        return "" if blank_unknown else m.group(0)
    return PLACEHOLDER_RE.sub(repl, text)


def find_placeholders(text: str) -> List[str]:
    return sorted(set(PLACEHOLDER_RE.findall(text)))


def render_file(src: Path, dst: Path, values: Mapping[str, str], hooks: Iterable[Hook] = (),
                *, blank_unknown: bool = True) -> Path:
    text = src.read_text(encoding="utf-8", errors="replace")
    unknown = [n for n in find_placeholders(text) if n not in values]
    if unknown:
        log.debug("%s: blanking unresolved placeholders %s", src.name, unknown)
    out = render_text(text, values, blank_unknown=blank_unknown)
    for hook in hooks:
        out = hook(out)
    dst.parent.mkdir(parents=True, exist_ok=True)
    dst.write_text(out, encoding="utf-8")
    log.info("Rendered %s -> %s", src, dst)
    return dst


# ---------------- hooks ----------------
def _append_line(text: str, line: str) -> str:
    if text and not text.endswith("\n"):
        text += "\n"
    return text + line + "\n"


def needpass_hook(password: str) -> Hook:
    def hook(text: str) -> str:
        if not password:
            return text
        return _append_line(text, 'set g_needpass "1"')
    return hook


def split_motd(motd: str, slots: int = MOTD_SLOTS) -> List[str]:
    """
    ``"Line1\\nLine2"`` -> ``["Line1", "Line2", "", "", "", ""]``

    Splits on the literal ``\\n`` escape (and real newlines), pads to
    exactly ``slots`` entries, drops lines beyond the last slot.
    """
    if not motd:
        return [""] * slots
    lines = motd.replace("\r\n", "\n").replace(MOTD_ESCAPE, "\n").split("\n")
    if len(lines) > slots:
        log.warning("MOTD has %d lines, only %d slots available; extra lines dropped", len(lines), slots)
        lines = lines[:slots]
    return lines + [""] * (slots - len(lines))


def motd_hook(motd: str, slots: int = MOTD_SLOTS) -> Hook:
    def hook(text: str) -> str:
        if not motd:
            return text
        for i, line in enumerate(split_motd(motd, slots)):
            text = _append_line(text, f'set server_motd{i} "{line.replace(chr(34), chr(39))}"')
        return text
    return hook


def append_file_hook(path: Path) -> Hook:
    def hook(text: str) -> str:
        if not path.is_file():
            return text
        log.info("Appending %s", path)
        return _append_line(text, path.read_text(encoding="utf-8", errors="replace").rstrip("\n"))
    return hook


# ---------------- config flavour ----------------
@dataclass(frozen=True)
class ConfigSource:
    url: str
    branch: str
    render_stats: bool


def resolve_config_source(settings: Settings) -> ConfigSource:
    """
    The stats flag decides both which branch of the config repository is
    pulled and whether the stats Lua template gets rendered.
    """
    if settings.stats_submit:
        return ConfigSource(url=settings.settings_url, branch=settings.stats_settings_branch, render_stats=True)
    return ConfigSource(url=settings.settings_url, branch=settings.settings_branch, render_stats=False)
