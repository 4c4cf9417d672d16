from __future__ import annotations
import shutil
import subprocess
from pathlib import Path
from typing import List
from urllib.parse import urlsplit, urlunsplit
from .settings import Settings
from .templating import ConfigSource, resolve_config_source
from .logging_setup import get_logger

log = get_logger("etl.launcher.configrepo")

def authenticated_url(url: str, token: str) -> str:
    """Inject a personal access token into an https clone URL."""
    if not token:
        return url
    parts = urlsplit(url)
    if parts.scheme != "https":
        return url
    host = parts.netloc.rsplit("@", 1)[-1]
    return urlunsplit((parts.scheme, f"{token}@{host}", parts.path, parts.query, parts.fragment))

def _redact(url: str) -> str:
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    return urlunsplit((parts.scheme, "***@" + parts.netloc.rsplit("@", 1)[-1], parts.path, parts.query, parts.fragment))

class ConfigRepository:
    """Shallow clone of the legacy-configs repository into ``<game_base>/settings``."""

    def __init__(self, settings: Settings, dest: Path):
        self.settings = settings
        self.dest = Path(dest)
        self.source: ConfigSource = resolve_config_source(settings)

    def _clone_cmd(self, into: Path) -> List[str]:
        return [
            "git", "clone", "--depth", "1", "--single-branch",
            "--branch", self.source.branch,
            authenticated_url(self.source.url, self.settings.settings_pat),
            str(into),
        ]

    def update(self) -> bool:
        """
        Clone into ``<dest>.new`` and swap on success.
        On failure the previously pulled copy stays in place.
        """
        if not self.settings.auto_update:
            log.info("AUTO_UPDATE disabled, using existing configuration in %s", self.dest)
            return False

        log.info("Checking for configuration updates (%s, branch=%s)...",
                 _redact(self.source.url), self.source.branch)
        staging = self.dest.with_name(self.dest.name + ".new")
        if staging.exists():
            shutil.rmtree(staging)
        proc = subprocess.run(self._clone_cmd(staging), capture_output=True, text=True)
        if proc.returncode != 0:
            log.debug("git stderr: %s", (proc.stderr or "")[-4000:])
            log.warning("Configuration repo could not be pulled, using latest pulled version")
            shutil.rmtree(staging, ignore_errors=True)
            return False

        if self.dest.exists():
            shutil.rmtree(self.dest)
        staging.replace(self.dest)
        log.info("Configuration updated: %s", self.dest)
        return True
