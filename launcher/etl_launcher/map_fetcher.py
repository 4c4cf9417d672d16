"""
map_fetcher.py: make sure the requested ``<name>.pk3`` map packages exist
-------------------------------------------------------------------------
Resolution order per map:
  1. already in the target dir  -> skip (no cache or network I/O)
  2. present in the cache dir   -> copy
  3. otherwise                  -> download ``<remote_root>/<name>.pk3``

Downloads run on a small thread pool. A failed map never aborts the batch:
the partial file is removed, the name is recorded and all failures are
reported once at the end.
"""

from __future__ import annotations
import shutil
import threading
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from .logging_setup import get_logger

log = get_logger("etl.launcher.maps")

USER_AGENT = "etl-launcher"
CHUNK_SIZE = 64 * 1024


def normalize_map_name(name: str) -> str:
    s = str(name).strip()
    if s.lower().endswith(".pk3"):
        s = s[:-4]
    return s


def normalize_map_names(names: Iterable[str]) -> List[str]:
    """Strip ``.pk3``, drop empties and duplicates, keep order."""
    seen = set()
    out: List[str] = []
    for n in names:
        s = normalize_map_name(n)
        if s and s not in seen:
            seen.add(s)
            out.append(s)
    return out


@dataclass
class FetchReport:
    present: List[str] = field(default_factory=list)
    copied: List[str] = field(default_factory=list)
    downloaded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "present": list(self.present),
            "copied": list(self.copied),
            "downloaded": list(self.downloaded),
            "failed": list(self.failed),
        }


class MapFetcher:
    def __init__(self, target_dir: Path, *, cache_dir: Optional[Path] = None, remote_root: str = "",
                 workers: int = 4, failed_log: Optional[Path] = None):
        self.target_dir = Path(target_dir)
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self.remote_root = (remote_root or "").rstrip("/")
        self.workers = max(1, int(workers))
        self.failed_log = failed_log
        self._lock = threading.Lock()
        self._failed: List[str] = []

    def target_path(self, name: str) -> Path:
        return self.target_dir / f"{name}.pk3"

    def url_for(self, name: str) -> str:
        return f"{self.remote_root}/{name}.pk3"

    # ---------------- failure sink ----------------
    def _record_failure(self, name: str) -> None:
        with self._lock:
            self._failed.append(name)
            if self.failed_log is not None:
                with open(self.failed_log, "a", encoding="utf-8") as fh:
                    fh.write(name + "\n")

    # ---------------- single item ----------------
    def _copy_from_cache(self, name: str) -> Optional[bool]:
        """True copied, False failed, None not in cache."""
        if self.cache_dir is None:
            return None
        src = self.cache_dir / f"{name}.pk3"
        if not src.is_file():
            return None
        dst = self.target_path(name)
        log.info("Map %s is sourcable locally, copying into place", name)
        try:
            shutil.copy2(src, dst)
        except OSError as e:
            log.warning("Copying %s from cache failed: %s", name, e)
            dst.unlink(missing_ok=True)
            self._record_failure(name)
            return False
        return True

    def download(self, name: str) -> bool:
        dst = self.target_path(name)
        part = dst.with_name(dst.name + ".part")
        url = self.url_for(name)
        log.info("Attempting to download %s", url)
        req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        try:
            with urllib.request.urlopen(req) as resp, open(part, "wb") as fh:
                shutil.copyfileobj(resp, fh, CHUNK_SIZE)
            part.replace(dst)
        except (urllib.error.URLError, OSError, ValueError) as e:
            log.warning("Failed to download %s: %s", name, e)
            part.unlink(missing_ok=True)
            self._record_failure(name)
            return False
        log.info("Downloaded: %s", name)
        return True

    # ---------------- batch ----------------
    def fetch(self, names: Iterable[str]) -> FetchReport:
        report = FetchReport()
        self._failed = []
        wanted = normalize_map_names(names)
        if not wanted:
            return report
        self.target_dir.mkdir(parents=True, exist_ok=True)

        pending: List[str] = []
        for name in wanted:
            if self.target_path(name).exists():
                report.present.append(name)
                continue
            copied = self._copy_from_cache(name)
            if copied is True:
                report.copied.append(name)
            elif copied is None:
                pending.append(name)

        if pending and not self.remote_root:
            log.warning("No remote map root configured (REDIRECTURL), cannot fetch: %s", pending)
            for name in pending:
                self._record_failure(name)
            pending = []

        if pending:
            workers = min(self.workers, len(pending))
            log.info("Downloading %d map(s) from %s (workers=%d)", len(pending), self.remote_root, workers)
            with ThreadPoolExecutor(max_workers=workers) as ex:
                for name, ok in zip(pending, ex.map(self.download, pending)):
                    if ok:
                        report.downloaded.append(name)

        # keep request order in the report
        failed = set(self._failed)
        report.failed = [n for n in wanted if n in failed]
        if report.failed:
            log.warning("The following maps failed to download (transient network issue? retry later): %s",
                        ", ".join(report.failed))
        else:
            log.info("Maps ready: %d present, %d copied, %d downloaded",
                     len(report.present), len(report.copied), len(report.downloaded))
        return report
