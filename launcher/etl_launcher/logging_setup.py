from __future__ import annotations
import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional
from .settings import Settings

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s[:%(net_port)s]: %(message)s"


class _PortFilter(logging.Filter):
    """Tags records with the instance's net_port; several servers share one host."""

    def __init__(self, port: int):
        super().__init__()
        self.port = port

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "net_port"):
            record.net_port = self.port
        return True


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return json.dumps({
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "port": getattr(record, "net_port", None),
            "msg": record.getMessage(),
            **({"exc_info": self.formatException(record.exc_info)} if record.exc_info else {}),
        }, ensure_ascii=False)


def setup_logging(settings: Settings, logs_dir: Optional[Path] = None, *, to_file: bool = True) -> None:
    """
    Console + rotating launcher.log under ``<homepath>/logs``.
    Host-side commands pass ``to_file=False``; if the log directory is not
    writable, keep console logging only.
    """
    level = settings.log_level.upper()
    fmt = _JsonFormatter() if settings.log_json else logging.Formatter(TEXT_FORMAT, "%Y-%m-%d %H:%M:%S")
    tag = _PortFilter(settings.map_port)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    console = logging.StreamHandler()
    console.addFilter(tag)
    console.setFormatter(fmt)
    root.addHandler(console)
    if not to_file:
        return

    logs_dir = logs_dir or (settings.homepath / "logs")
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(logs_dir / "launcher.log", maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    except OSError:
        sys.stderr.write(f"Could not open log file in '{logs_dir}', continuing with console logging only.\n")
        return
    fh.addFilter(tag)
    fh.setFormatter(fmt)
    fh.setLevel(level)
    launcher = logging.getLogger("etl.launcher")
    for old in [h for h in launcher.handlers if isinstance(h, RotatingFileHandler)]:
        launcher.removeHandler(old)
        old.close()
    launcher.addHandler(fh)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
