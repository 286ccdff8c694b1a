"""Persisted ledger of files placed into the shared output tree.

The ledger is the back-reference from an output path to the dependency that
placed it.  It is kept as its own relation (target path → record) instead of
being attached to the dependency trees, so the trees can come and go between
runs while the output tree's history survives.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections import defaultdict
from collections.abc import Iterator
from dataclasses import dataclass, replace
from pathlib import Path, PurePosixPath
from typing import Any, Mapping, Optional

from EOBuild.io import jsonl_load, jsonl_save

logger = logging.getLogger(__name__)

__all__ = ["PlacementLedger", "PlacementRecord"]


@dataclass(frozen=True)
class PlacementRecord:
    """Bookkeeping for one placed file, keyed by its output-relative path."""

    target: str
    dependency: str
    size: int
    unplaced: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "dependency": self.dependency,
            "size": self.size,
            "unplaced": self.unplaced,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PlacementRecord":
        return cls(
            target=str(payload["target"]),
            dependency=str(payload["dependency"]),
            size=int(payload.get("size", 0)),
            unplaced=bool(payload.get("unplaced", False)),
        )


def _normalise(target: str | PurePosixPath) -> str:
    return PurePosixPath(str(target).replace("\\", "/")).as_posix()


class PlacementLedger:
    """Map of output-relative target path to its single placement record."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, PlacementRecord] = {}
        self._guards: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[PlacementRecord]:
        with self._lock:
            snapshot = list(self._records.values())
        return iter(snapshot)

    @contextlib.contextmanager
    def guard(self, target: str) -> Iterator[None]:
        """Critical section for a read-modify-write of one target's record."""

        with self._lock:
            lock = self._guards[_normalise(target)]
        with lock:
            yield None

    def find(self, target: str) -> Optional[PlacementRecord]:
        with self._lock:
            return self._records.get(_normalise(target))

    def place(self, target: str, dependency: str, size: int) -> PlacementRecord:
        record = PlacementRecord(target=_normalise(target), dependency=dependency, size=size)
        with self._lock:
            self._records[record.target] = record
        return record

    def unplace(self, target: str) -> Optional[PlacementRecord]:
        key = _normalise(target)
        with self._lock:
            record = self._records.get(key)
            if record is None or record.unplaced:
                return record
            record = replace(record, unplaced=True)
            self._records[key] = record
            return record

    def unplace_dependency(self, dependency: str) -> int:
        """Mark every active record owned by ``dependency`` as unplaced."""

        count = 0
        with self._lock:
            for key, record in list(self._records.items()):
                if record.dependency == dependency and not record.unplaced:
                    self._records[key] = replace(record, unplaced=True)
                    count += 1
        return count

    def unplace_all(self) -> int:
        count = 0
        with self._lock:
            for key, record in list(self._records.items()):
                if not record.unplaced:
                    self._records[key] = replace(record, unplaced=True)
                    count += 1
        return count

    def active(self) -> list[PlacementRecord]:
        with self._lock:
            return [record for record in self._records.values() if not record.unplaced]

    def placed_dependencies(self) -> set[str]:
        return {record.dependency for record in self.active()}

    @classmethod
    def load(cls, path: Path) -> "PlacementLedger":
        ledger = cls()
        for row in jsonl_load(path):
            record = PlacementRecord.from_dict(row)
            ledger._records[_normalise(record.target)] = record
        logger.debug("Loaded %d placement record(s) from %s", len(ledger), path)
        return ledger

    def save(self, path: Path) -> Path:
        with self._lock:
            rows = [record.to_dict() for record in self._records.values()]
        return jsonl_save(path, rows)
