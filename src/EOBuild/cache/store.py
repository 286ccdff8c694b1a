"""Content-addressed artifact cache for a single pipeline stage."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from EOBuild.cache.layout import CacheKey, cache_path
from EOBuild.errors import CacheMiss, IOFailure
from EOBuild.io import as_bytes, atomic_write_bytes, key_lock

logger = logging.getLogger(__name__)

__all__ = ["CacheEntry", "ContentCache"]

_LOCK_DIR_NAME = ".locks"


@dataclass(frozen=True)
class CacheEntry:
    """Cached payload together with its last modification time."""

    payload: bytes
    modified: datetime


class ContentCache:
    """Stage-scoped view over ``<root>/<stage>/<version>/<hash>/<path>``.

    Reads are lock free. Writes to the same key are serialised with a file
    lock and land through an atomic rename, so concurrent workers producing
    the same artifact never interleave partial content. Entries are never
    deleted here; eviction is a housekeeping concern outside the build.
    """

    def __init__(self, root: Path, stage: str, *, lock_dir: Optional[Path] = None) -> None:
        if not stage or "/" in stage or "\\" in stage:
            raise ValueError(f"Invalid cache stage token: {stage!r}")
        self.root = Path(root)
        self.stage = stage
        self.lock_dir = Path(lock_dir) if lock_dir is not None else self.root / _LOCK_DIR_NAME

    def __repr__(self) -> str:
        return f"ContentCache(root={self.root!s}, stage={self.stage!r})"

    def path(self, key: CacheKey) -> Path:
        return cache_path(self.root, self.stage, key)

    def exists(self, key: CacheKey) -> bool:
        return self.path(key).is_file()

    def is_fresh(self, key: CacheKey, source: Optional[Path] = None) -> bool:
        """Return ``True`` when the entry exists and is not older than ``source``.

        Without a source file (for example a remote object) presence alone
        makes the entry fresh.
        """

        entry = self.path(key)
        try:
            cached_mtime = entry.stat().st_mtime
        except FileNotFoundError:
            return False
        if source is None or not Path(source).is_file():
            return True
        return cached_mtime >= Path(source).stat().st_mtime

    def entry(self, key: CacheKey) -> CacheEntry:
        path = self.path(key)
        try:
            payload = path.read_bytes()
            modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except FileNotFoundError as exc:
            raise CacheMiss(f"No '{self.stage}' cache entry for {key}", path=path) from exc
        except OSError as exc:
            raise IOFailure(f"Failed to read cache entry {path}: {exc}", path=path) from exc
        return CacheEntry(payload=payload, modified=modified)

    def read(self, key: CacheKey) -> bytes:
        return self.entry(key).payload

    def write(self, key: CacheKey, payload: str | bytes) -> Path:
        """Store ``payload`` under ``key``; failures are always fatal."""

        path = self.path(key)
        data = as_bytes(payload)
        try:
            with key_lock(self.lock_dir, f"{self.stage}/{key}"):
                atomic_write_bytes(path, data)
        except OSError as exc:
            raise IOFailure(f"Failed to write cache entry {path}: {exc}", path=path) from exc
        logger.debug("Cached %d byte(s) for %s in %s", len(data), key, self.stage)
        return path

    def restore(self, key: CacheKey, target: Path) -> Path:
        """Copy the entry for ``key`` onto ``target`` atomically."""

        data = self.read(key)
        target = Path(target)
        try:
            atomic_write_bytes(target, data)
        except OSError as exc:
            raise IOFailure(f"Failed to restore {key} into {target}: {exc}", path=target) from exc
        logger.debug("Restored %s from '%s' cache into %s", key, self.stage, target)
        return target
