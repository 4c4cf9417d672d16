"""
Categorised ``KEY=value`` settings file (settings.env).

Layout written on first use::

    # ETLegacy Server Configuration
    # Generated on 2024-01-01 12:00:00 UTC
    # Created by etl

    # Using version 'stable' for etlegacy. ...
    VERSION=stable

    # Volumes

    # Map Settings

    # Stats Configuration

    # Additional Settings

    # Server Configurations

    # ETL Server "^7ETL Server 1" (1)
    SERVER1_HOSTNAME=^7ETL Server 1
    SERVER1_PORT=27960

The same file is passed to docker compose as ``env_file``/``--env-file``,
so every line must stay a plain ``KEY=value`` pair.
"""

from __future__ import annotations
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..errors import SettingsStoreError
from ..logging_setup import get_logger

log = get_logger("etl.launcher.store")


class Category(str, Enum):
    VOLUMES = "Volumes"
    MAPS = "Map Settings"
    STATS = "Stats Configuration"
    ADDITIONAL = "Additional Settings"
    SERVERS = "Server Configurations"


class Scope(str, Enum):
    GLOBAL = "global"
    INSTANCE = "instance"


_KV_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=(.*)$")
_INSTANCE_HDR_RE = re.compile(r'^#\s*ETL Server "(.*)" \((\d+)\)\s*$')
# older installers wrote the header without the ordinal
_BARE_INSTANCE_HDR_RE = re.compile(r'^#\s*ETL Server "(.*)"\s*$')
_SERVER_KEY_RE = re.compile(r"^SERVER([1-9][0-9]*)_")
_CATEGORY_BY_TITLE = {c.value: c for c in Category}


def instance_key(instance: int, key: str) -> str:
    """``(2, "PORT")`` -> ``SERVER2_PORT``"""
    if instance < 1:
        raise ValueError(f"instance ordinal must be >= 1, got {instance}")
    return f"SERVER{instance}_{key}"


def escape_value(value: object) -> str:
    """One key per line: newlines become the literal two-character ``\\n`` escape."""
    s = "" if value is None else str(value)
    return s.replace("\r\n", "\\n").replace("\n", "\\n").replace("\r", "\\n")


@dataclass
class _Entry:
    key: str
    value: str


@dataclass
class _Block:
    """A header line plus its items (entries or raw comment/blank lines)."""
    category: Optional[Category]
    instance: Optional[int] = None
    label: str = ""
    items: List[Union[_Entry, str]] = field(default_factory=list)

    def header(self) -> Optional[str]:
        if self.instance is not None:
            return f'# ETL Server "{self.label}" ({self.instance})'
        if self.category is not None:
            return f"# {self.category.value}"
        return None

    def entries(self) -> List[_Entry]:
        return [it for it in self.items if isinstance(it, _Entry)]

    def insert(self, entry: _Entry) -> None:
        last = -1
        for i, it in enumerate(self.items):
            if isinstance(it, _Entry):
                last = i
        self.items.insert(last + 1, entry)


class SettingsStore:
    """
    Explicit store object handed to the installer, composer and management CLI.

    - ``set`` overwrites in place (last write wins, one line per key)
    - category headers are created lazily
    - instance-scoped keys always live in their ``# ETL Server`` block
      nested under ``# Server Configurations``
    """

    def __init__(self, path: Path, *, autosave: bool = True):
        self.path = Path(path)
        self.autosave = autosave
        self._blocks: List[_Block] = []
        self.load()

    # ---------------- persistence ----------------
    def load(self) -> None:
        self._blocks = [_Block(category=None)]
        if not self.path.exists():
            log.debug("Settings file %s missing, starting empty", self.path)
            return
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise SettingsStoreError(f"Failed to read {self.path}: {e}") from e
        self._parse(text)

    def _parse(self, text: str) -> None:
        """
        A ``SERVER<n>_`` key belongs to instance ``n`` wherever it sits.
        Blocks from hand edits or older installers (``# ETL Server "<label>"``
        without an ordinal, or bare keys under ``# Server Configurations``)
        are regrouped into numbered instance blocks and written back that way.
        """
        section = self._blocks[0]
        inst: Optional[_Block] = None
        adopted = False                    # inst was picked by key prefix, not by a header
        pending: Optional[tuple] = None    # (holder block, item index, label) of an unnumbered header
        for line in text.splitlines():
            stripped = line.strip()
            m_inst = _INSTANCE_HDR_RE.match(stripped)
            if m_inst:
                n = int(m_inst.group(2))
                inst = self._instance_block(n)
                if inst is None:
                    inst = _Block(category=Category.SERVERS, instance=n, label=m_inst.group(1))
                    self._blocks.append(inst)
                adopted, pending = False, None
                continue
            holder = inst or section
            if stripped.startswith("#"):
                title = stripped.lstrip("#").strip()
                if title in _CATEGORY_BY_TITLE:
                    section = _Block(category=_CATEGORY_BY_TITLE[title])
                    self._blocks.append(section)
                    inst = pending = None
                    adopted = False
                    continue
                holder.items.append(line)
                m_bare = _BARE_INSTANCE_HDR_RE.match(stripped)
                if m_bare:
                    pending = (holder, len(holder.items) - 1, m_bare.group(1))
                continue
            m_kv = _KV_RE.match(stripped)
            if not m_kv:
                holder.items.append(line)
                continue
            entry = _Entry(m_kv.group(1), m_kv.group(2))
            m_srv = _SERVER_KEY_RE.match(entry.key)
            if m_srv and (inst is None or inst.instance != int(m_srv.group(1))):
                inst = self._adopt_instance(int(m_srv.group(1)), pending)
                adopted, pending = True, None
            elif not m_srv and adopted:
                inst, adopted = None, False
            (inst or section).items.append(entry)
        for b in self._blocks:
            if b.instance is not None and not b.label:
                n = b.instance
                b.label = next((e.value for e in b.entries() if e.key == instance_key(n, "HOSTNAME")),
                               f"ETL Server {n}")

    def _adopt_instance(self, n: int, pending: Optional[tuple]) -> _Block:
        b = self._instance_block(n)
        if b is not None:
            return b
        label = ""
        if pending is not None:
            holder, idx, label = pending
            # the unnumbered header is re-rendered as this block's header
            holder.items.pop(idx)
        b = _Block(category=Category.SERVERS, instance=n, label=label)
        self._blocks.append(b)
        return b

    def render(self) -> str:
        out: List[str] = []
        for b in self._blocks:
            hdr = b.header()
            if hdr is not None:
                out.append(hdr)
            for it in b.items:
                out.append(f"{it.key}={it.value}" if isinstance(it, _Entry) else it)
        return "\n".join(out).rstrip("\n") + "\n"

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(self.render(), encoding="utf-8")
            tmp.replace(self.path)
            self.path.chmod(0o644)
        except OSError as e:
            raise SettingsStoreError(f"Failed to write {self.path}: {e}") from e
        log.debug("Saved settings: %s", self.path)

    def is_empty(self) -> bool:
        return all(not b.items and b.category is None for b in self._blocks)

    def initialize(self, created_by: str = "", *, version: str = "stable") -> None:
        """Header + fixed category scaffold; replaces whatever is in memory."""
        now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        pre = _Block(category=None, items=[
            "# ETLegacy Server Configuration",
            f"# Generated on {now} UTC",
            f"# Created by {created_by}",
            "",
            "# Using version 'stable' for etlegacy. For more available builds see: "
            "https://hub.docker.com/repository/docker/oksii/etlegacy/tags",
            _Entry("VERSION", escape_value(version)),
            "",
        ])
        self._blocks = [pre] + [_Block(category=c, items=[""]) for c in Category]
        if self.autosave:
            self.save()

    # ---------------- lookup helpers ----------------
    def _category_block(self, category: Category) -> Optional[_Block]:
        for b in self._blocks:
            if b.category == category and b.instance is None:
                return b
        return None

    def _instance_block(self, instance: int) -> Optional[_Block]:
        for b in self._blocks:
            if b.instance == instance:
                return b
        return None

    def _blocks_for(self, category: Optional[Category]) -> List[_Block]:
        return [b for b in self._blocks if b.category == category]

    def _ensure_category(self, category: Category) -> _Block:
        b = self._category_block(category)
        if b is None:
            b = _Block(category=category, items=[""])
            self._blocks.append(b)
            log.debug("Created settings section: %s", category.value)
        return b

    def _ensure_instance(self, instance: int, label: str) -> _Block:
        b = self._instance_block(instance)
        if b is not None:
            return b
        servers = self._ensure_category(Category.SERVERS)
        # insert after the last block that belongs to the server section
        idx = self._blocks.index(servers)
        while idx + 1 < len(self._blocks) and self._blocks[idx + 1].instance is not None:
            idx += 1
        b = _Block(category=Category.SERVERS, instance=instance, label=label, items=[""])
        self._blocks.insert(idx + 1, b)
        return b

    def _remove_key(self, key: str) -> None:
        for b in self._blocks:
            b.items = [it for it in b.items if not (isinstance(it, _Entry) and it.key == key)]

    # ---------------- public API ----------------
    def set(self, category: Optional[Category], key: str, value: object,
            scope: Scope = Scope.GLOBAL, instance: Optional[int] = None) -> None:
        """
        Insert or overwrite ``key``.

        ``category=None`` addresses the preamble (e.g. ``VERSION``).
        With ``scope=Scope.INSTANCE`` the key is stored as ``SERVER<n>_<key>``
        inside the instance block; ``category`` must then be ``Category.SERVERS``.
        """
        if not _KV_RE.match(f"{key}="):
            raise ValueError(f"invalid settings key: {key!r}")
        if self.is_empty():
            self._scaffold_silently()

        if scope is Scope.INSTANCE:
            if instance is None:
                raise ValueError("instance-scoped setting requires an instance ordinal")
            if category not in (None, Category.SERVERS):
                raise ValueError(f"instance-scoped settings belong to {Category.SERVERS.value!r}, got {category!r}")
            full_key = instance_key(instance, key)
            block = self._ensure_instance(instance, f"ETL Server {instance}")
            if key == "HOSTNAME":
                block.label = escape_value(value)
        else:
            full_key = key
            block = self._blocks[0] if category is None else self._ensure_category(category)

        self._remove_key(full_key)
        block.insert(_Entry(full_key, escape_value(value)))
        if self.autosave:
            self.save()

    def _scaffold_silently(self) -> None:
        autosave, self.autosave = self.autosave, False
        try:
            self.initialize()
        finally:
            self.autosave = autosave

    def get(self, category: Optional[Category], key: str, default: Optional[str] = None,
            instance: Optional[int] = None) -> Optional[str]:
        if instance is not None:
            blocks = self._blocks
            key = instance_key(instance, key)
        else:
            blocks = self._blocks_for(category)
        found = default
        for b in blocks:
            for e in b.entries():
                if e.key == key:
                    found = e.value
        return found

    def unset(self, key: str, instance: Optional[int] = None) -> None:
        self._remove_key(instance_key(instance, key) if instance is not None else key)
        if self.autosave:
            self.save()

    def enumerate(self, category: Optional[Category]) -> List[str]:
        """Keys of ``category`` in file order (instance blocks included for servers)."""
        keys: List[str] = []
        for b in self._blocks_for(category):
            for e in b.entries():
                if e.key not in keys:
                    keys.append(e.key)
        return keys

    def instances(self) -> List[int]:
        return sorted(b.instance for b in self._blocks if b.instance is not None and b.entries())

    def instance_label(self, instance: int) -> Optional[str]:
        b = self._instance_block(instance)
        return b.label if b is not None else None

    def as_dict(self) -> Dict[str, str]:
        """Flat view of every key, last occurrence wins."""
        out: Dict[str, str] = {}
        for b in self._blocks:
            for e in b.entries():
                out[e.key] = e.value
        return out
