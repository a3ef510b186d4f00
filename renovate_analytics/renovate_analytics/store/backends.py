"""Cache backends used by :class:`~renovate_analytics.store.cache.AnalyticsStore`.

Backends follow the shape of a hosted workflow cache: files at given
paths are saved under a key, and restored from the exact key or, failing
that, from the newest entry whose key starts with one of the restore
keys.  Entries are immutable; saving an existing key raises
:class:`CacheEntryExistsError`.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import shutil
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_META_FILE = "meta.json"
_FILES_DIR = "files"
_SECONDS_PER_DAY = 86_400


class CacheEntryExistsError(Exception):
    """Raised when saving under a key that already holds an entry."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Cache entry already exists for key '{key}'")
        self.key = key


class CacheBackend(Protocol):
    """Structural interface for key/value cache backends."""

    async def save(self, paths: Sequence[Path], key: str) -> None:
        """Persist the files at *paths* under *key*."""
        ...

    async def restore(self, paths: Sequence[Path], key: str, restore_keys: Sequence[str] = ()) -> str | None:
        """Restore an entry into *paths*; returns the matched key or None on a miss."""
        ...

    async def is_available(self) -> bool:
        ...


@dataclass(frozen=True)
class _Entry:
    key: str
    created: float
    directory: Path


class LocalCacheBackend:
    """Directory-backed cache with retention.

    Each entry lives in ``<root>/<sha256(key)>/`` with a ``meta.json``
    (key and creation time) and a ``files/`` directory holding the saved
    paths by position.  Entries older than *retention_days* are treated as
    absent and pruned when encountered.

    Parameters
    ----------
    root:
        Directory holding the entries; created on first save.
    retention_days:
        Entry lifetime.
    clock:
        Wall-clock seconds, used for entry ages.
    """

    def __init__(
        self,
        root: Path | str,
        retention_days: int = 7,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._root = Path(root)
        self._ttl = retention_days * _SECONDS_PER_DAY
        self._clock = clock

    @property
    def root(self) -> Path:
        return self._root

    async def save(self, paths: Sequence[Path], key: str) -> None:
        await asyncio.to_thread(self._save, list(paths), key)

    async def restore(self, paths: Sequence[Path], key: str, restore_keys: Sequence[str] = ()) -> str | None:
        return await asyncio.to_thread(self._restore, list(paths), key, list(restore_keys))

    async def is_available(self) -> bool:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("Local cache root %s is unavailable: %s", self._root, exc)
            return False
        return True

    def prune(self) -> int:
        """Delete expired entries; returns how many were removed."""
        removed = 0
        for entry in self._entries():
            if self._expired(entry):
                shutil.rmtree(entry.directory, ignore_errors=True)
                removed += 1
        if removed:
            logger.info("Pruned %d expired cache entries from %s", removed, self._root)
        return removed

    # -- Internals --------------------------------------------------------------

    def _entry_dir(self, key: str) -> Path:
        return self._root / hashlib.sha256(key.encode("utf-8")).hexdigest()

    def _expired(self, entry: _Entry) -> bool:
        return self._clock() - entry.created > self._ttl

    def _read_entry(self, directory: Path) -> _Entry | None:
        try:
            meta = json.loads((directory / _META_FILE).read_text(encoding="utf-8"))
            return _Entry(key=str(meta["key"]), created=float(meta["created"]), directory=directory)
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def _entries(self) -> list[_Entry]:
        if not self._root.is_dir():
            return []
        entries = []
        for directory in self._root.iterdir():
            if directory.is_dir() and not directory.name.startswith("."):
                entry = self._read_entry(directory)
                if entry is not None:
                    entries.append(entry)
        return entries

    def _live_entry(self, key: str) -> _Entry | None:
        directory = self._entry_dir(key)
        entry = self._read_entry(directory) if directory.is_dir() else None
        if entry is None or entry.key != key:
            return None
        if self._expired(entry):
            shutil.rmtree(entry.directory, ignore_errors=True)
            return None
        return entry

    def _save(self, paths: list[Path], key: str) -> None:
        if self._live_entry(key) is not None:
            raise CacheEntryExistsError(key)
        leftover = self._entry_dir(key)
        if leftover.exists():
            # No readable metadata for this key; the entry cannot be restored.
            logger.warning("Removing unreadable cache entry at %s", leftover)
            shutil.rmtree(leftover, ignore_errors=True)

        self._root.mkdir(parents=True, exist_ok=True)
        staging = self._root / f".tmp-{uuid.uuid4().hex}"
        files = staging / _FILES_DIR
        files.mkdir(parents=True)
        try:
            for index, source in enumerate(paths):
                target = files / str(index)
                if source.is_dir():
                    shutil.copytree(source, target)
                else:
                    shutil.copy2(source, target)
            (staging / _META_FILE).write_text(
                json.dumps({"key": key, "created": self._clock()}),
                encoding="utf-8",
            )
            destination = self._entry_dir(key)
            if destination.exists():
                # Expired leftovers were removed above; anything here is a concurrent writer.
                raise CacheEntryExistsError(key)
            try:
                staging.rename(destination)
            except OSError as exc:
                raise CacheEntryExistsError(key) from exc
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    def _restore(self, paths: list[Path], key: str, restore_keys: list[str]) -> str | None:
        entry = self._live_entry(key)
        if entry is None:
            entry = self._match_prefix(restore_keys)
        if entry is None:
            return None

        files = entry.directory / _FILES_DIR
        for index, target in enumerate(paths):
            source = files / str(index)
            if source.is_dir():
                shutil.copytree(source, target, dirs_exist_ok=True)
            elif source.exists():
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
        return entry.key

    def _match_prefix(self, restore_keys: list[str]) -> _Entry | None:
        if not restore_keys:
            return None
        live: list[_Entry] = []
        for entry in self._entries():
            if self._expired(entry):
                shutil.rmtree(entry.directory, ignore_errors=True)
            else:
                live.append(entry)

        for prefix in restore_keys:
            candidates = [entry for entry in live if entry.key.startswith(prefix)]
            if candidates:
                return max(candidates, key=lambda entry: (entry.created, entry.key))
        return None
