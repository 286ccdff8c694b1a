# === NAVMAP v1 ===
# {
#   "module": "EOBuild.catalog.store",
#   "purpose": "Thread-safe registry of compilation units and their stage progress",
#   "sections": [
#     {"id": "objectcatalog", "name": "ObjectCatalog", "anchor": "class-objectcatalog", "kind": "class"},
#     {"id": "missingstageview", "name": "MissingStageView", "anchor": "class-missingstageview", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Object catalog store.

The catalog is constructed once per run, loaded from and saved to a JSON lines
file at the run boundaries, and passed explicitly to every stage.  All
mutations go through the store so parallel stage workers observe consistent
entries; entries themselves are immutable snapshots.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from dataclasses import replace
from pathlib import Path
from typing import Optional

from EOBuild.catalog.models import CatalogEntry
from EOBuild.errors import CatalogError
from EOBuild.io import jsonl_load, jsonl_save

logger = logging.getLogger(__name__)

__all__ = ["MissingStageView", "ObjectCatalog"]


class MissingStageView:
    """Lazy, restartable view of catalog entries lacking ``stage``.

    Each iteration takes a fresh snapshot in registration order, so a view
    can be iterated again after workers marked some of its entries.
    """

    def __init__(self, catalog: "ObjectCatalog", stage: str) -> None:
        self._catalog = catalog
        self.stage = stage

    def __iter__(self) -> Iterator[CatalogEntry]:
        for entry in self._catalog:
            if not entry.has_stage(self.stage):
                yield entry

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __bool__(self) -> bool:
        return any(True for _ in self)


class ObjectCatalog:
    """Mutable registry of compilation units keyed by identifier."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: dict[str, CatalogEntry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[CatalogEntry]:
        with self._lock:
            snapshot = list(self._entries.values())
        return iter(snapshot)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._entries

    def register(self, identifier: str, discovered_at: str) -> CatalogEntry:
        """Add a unit, keeping the original provenance when it is already known."""

        name = (identifier or "").strip()
        if not name:
            raise CatalogError("Catalog identifier cannot be empty")
        with self._lock:
            existing = self._entries.get(name)
            if existing is not None:
                return existing
            entry = CatalogEntry(identifier=name, discovered_at=discovered_at)
            self._entries[name] = entry
            logger.debug("Registered %s discovered at %s", name, discovered_at)
            return entry

    def find(self, identifier: str) -> Optional[CatalogEntry]:
        with self._lock:
            return self._entries.get(identifier)

    def _get(self, identifier: str) -> CatalogEntry:
        entry = self._entries.get(identifier)
        if entry is None:
            raise CatalogError(f"Unknown catalog identifier '{identifier}'")
        return entry

    def _put(self, entry: CatalogEntry) -> CatalogEntry:
        self._entries[entry.identifier] = entry
        return entry

    def with_source(self, identifier: str, path: Path) -> CatalogEntry:
        with self._lock:
            return self._put(replace(self._get(identifier), source_path=Path(path)))

    def with_hash(self, identifier: str, content_hash: str) -> CatalogEntry:
        if not content_hash:
            raise CatalogError(f"Empty content hash for '{identifier}'")
        with self._lock:
            return self._put(replace(self._get(identifier), content_hash=content_hash))

    def pulled(self, identifier: str, path: Path, content_hash: str) -> CatalogEntry:
        """Record source and hash together in one critical section."""

        if not content_hash:
            raise CatalogError(f"Empty content hash for '{identifier}'")
        with self._lock:
            entry = replace(
                self._get(identifier), source_path=Path(path), content_hash=content_hash
            )
            return self._put(entry)

    def mark_stage(self, identifier: str, stage: str) -> CatalogEntry:
        """Record ``stage`` as completed; only pulled units may advance."""

        with self._lock:
            entry = self._get(identifier)
            if not entry.pulled:
                raise CatalogError(
                    f"Cannot mark '{identifier}' with stage '{stage}': it has no source "
                    f"and hash yet (discovered at {entry.discovered_at})"
                )
            if stage in entry.stages:
                return entry
            return self._put(replace(entry, stages=entry.stages | {stage}))

    def entries_missing_stage(self, stage: str) -> MissingStageView:
        return MissingStageView(self, stage)

    def clear_stages(self) -> None:
        """Forget stage progress of every entry for a full rebuild."""

        with self._lock:
            for name, entry in list(self._entries.items()):
                self._entries[name] = replace(entry, stages=frozenset())

    @classmethod
    def load(cls, path: Path) -> "ObjectCatalog":
        catalog = cls()
        for row in jsonl_load(path):
            entry = CatalogEntry.from_dict(row)
            if entry.identifier in catalog._entries:
                raise CatalogError(f"Duplicate identifier '{entry.identifier}' in {path}")
            if (entry.source_path is None) != (entry.content_hash is None):
                raise CatalogError(
                    f"Entry '{entry.identifier}' in {path} must have both source and hash or neither"
                )
            catalog._entries[entry.identifier] = entry
        logger.debug("Loaded %d catalog entries from %s", len(catalog), path)
        return catalog

    def save(self, path: Path) -> Path:
        with self._lock:
            rows = [entry.to_dict() for entry in self._entries.values()]
        return jsonl_save(path, rows)
