"""
The ``server`` management wrapper written into the install directory and
linked to ``/usr/local/bin/etl-server``. It only pins the install dir and
delegates to ``etl-manage`` from the service user's PATH, falling back to
the interpreter the installer ran under.
"""

from __future__ import annotations
import os
import shlex
import sys
from pathlib import Path
from typing import Optional

from ..errors import ProvisioningError
from ..logging_setup import get_logger

log = get_logger("etl.launcher.helper")

HELPER_NAME = "server"
SYMLINK = Path("/usr/local/bin/etl-server")


def render_helper(install_dir: Path, python: str = sys.executable) -> str:
    args = f"--install-dir {shlex.quote(str(install_dir))} \"$@\""
    return (
        "#!/bin/sh\n"
        "# ETLegacy server management: etl-server start|stop|restart|status|logs|rcon|update [instance]\n"
        "if command -v etl-manage >/dev/null 2>&1; then\n"
        f"    exec etl-manage {args}\n"
        "fi\n"
        f"exec {shlex.quote(python)} -m etl_launcher.manage {args}\n"
    )


def install_helper(install_dir: Path, link: Optional[Path] = SYMLINK, python: str = sys.executable) -> Path:
    script = Path(install_dir) / HELPER_NAME
    try:
        script.write_text(render_helper(install_dir, python), encoding="utf-8")
        script.chmod(0o755)
        if link is not None:
            if link.is_symlink() or link.exists():
                link.unlink()
            os.symlink(script, link)
    except OSError as e:
        raise ProvisioningError(f"Failed to install management script {script}: {e}") from e
    log.info("Server management script created: %s%s", script, f" -> {link}" if link else "")
    return script
