# === NAVMAP v1 ===
# {
#   "module": "EOBuild.footprint.strategies",
#   "purpose": "Primitive footprint strategies and branch combinators",
#   "sections": [
#     {"id": "footprint", "name": "Footprint", "anchor": "class-footprint", "kind": "class"},
#     {"id": "footprinttally", "name": "FootprintTally", "anchor": "class-footprinttally", "kind": "class"},
#     {"id": "generated", "name": "Generated", "anchor": "class-generated", "kind": "class"},
#     {"id": "ignore", "name": "Ignore", "anchor": "class-ignore", "kind": "class"},
#     {"id": "updateboth", "name": "UpdateBoth", "anchor": "class-updateboth", "kind": "class"},
#     {"id": "updatefromcache", "name": "UpdateFromCache", "anchor": "class-updatefromcache", "kind": "class"},
#     {"id": "iftargetexists", "name": "IfTargetExists", "anchor": "class-iftargetexists", "kind": "class"},
#     {"id": "fork", "name": "Fork", "anchor": "class-fork", "kind": "class"},
#     {"id": "ifreleased", "name": "IfReleased", "anchor": "class-ifreleased", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Primitive footprint strategies.

A footprint guarantees that a target artifact exists and returns its path.
Every strategy here satisfies the same one-method contract,
``apply(source, target) -> Path``, so branches nest arbitrarily: leaves decide
*how* the target is produced (generate, restore from cache, keep as is) and
combinators decide *which* leaf runs.

Leaves record the decision they made into an optional
:class:`FootprintTally` so stages can report regenerated, reused and skipped
counts without re-deriving the decision tree.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Union

from EOBuild.cache.layout import CacheKey
from EOBuild.cache.store import ContentCache
from EOBuild.errors import GenerationFailed, IOFailure
from EOBuild.io import as_bytes, atomic_write_bytes

logger = logging.getLogger(__name__)

__all__ = [
    "REGENERATED",
    "REUSED",
    "SKIPPED",
    "Footprint",
    "FootprintTally",
    "Fork",
    "Generated",
    "IfReleased",
    "IfTargetExists",
    "Ignore",
    "UpdateBoth",
    "UpdateFromCache",
]

REGENERATED = "regenerated"
REUSED = "reused"
SKIPPED = "skipped"

Generator = Callable[[Path], Union[str, bytes]]
Condition = Union[bool, Callable[[Path, Path], bool]]


class Footprint(Protocol):
    """Ensure ``target`` exists and return its path."""

    def apply(self, source: Path, target: Path) -> Path: ...


class FootprintTally:
    """Thread-safe count of the decisions taken by footprint leaves."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Counter[str] = Counter()
        self._last: str | None = None

    def record(self, decision: str) -> None:
        with self._lock:
            self._counts[decision] += 1
            self._last = decision

    @property
    def last(self) -> str | None:
        """Decision recorded most recently, ``None`` before the first one."""

        with self._lock:
            return self._last

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {name: self._counts.get(name, 0) for name in (REGENERATED, REUSED, SKIPPED)}

    def __getitem__(self, decision: str) -> int:
        with self._lock:
            return self._counts.get(decision, 0)


def _record(tally: FootprintTally | None, decision: str) -> None:
    if tally is not None:
        tally.record(decision)


@dataclass(frozen=True)
class Generated:
    """Produce the target by calling ``generate(source)`` and saving the result."""

    generate: Generator
    tally: FootprintTally | None = field(default=None, compare=False)

    def apply(self, source: Path, target: Path) -> Path:
        try:
            payload = self.generate(source)
        except GenerationFailed:
            raise
        except Exception as exc:
            raise GenerationFailed(
                f"Failed to generate {target} from {source}: {exc}", source=source
            ) from exc
        try:
            atomic_write_bytes(Path(target), as_bytes(payload))
        except OSError as exc:
            raise IOFailure(f"Failed to save {target}: {exc}", path=Path(target)) from exc
        logger.debug("Generated %s from %s", target, source)
        _record(self.tally, REGENERATED)
        return Path(target)


@dataclass(frozen=True)
class Ignore:
    """Trust an existing target as is; its modification time is left alone."""

    tally: FootprintTally | None = field(default=None, compare=False)

    def apply(self, source: Path, target: Path) -> Path:
        logger.debug("Keeping existing %s", target)
        _record(self.tally, SKIPPED)
        return Path(target)


@dataclass(frozen=True)
class UpdateBoth:
    """Run ``inner`` and mirror the resulting target into the cache."""

    inner: Footprint
    cache: ContentCache
    key: CacheKey

    def apply(self, source: Path, target: Path) -> Path:
        produced = self.inner.apply(source, target)
        try:
            data = Path(produced).read_bytes()
        except OSError as exc:
            raise IOFailure(f"Failed to read {produced} for caching: {exc}", path=produced) from exc
        self.cache.write(self.key, data)
        return produced


@dataclass(frozen=True)
class UpdateFromCache:
    """Restore the target from the cache entry of ``key``."""

    cache: ContentCache
    key: CacheKey
    tally: FootprintTally | None = field(default=None, compare=False)

    def apply(self, source: Path, target: Path) -> Path:
        restored = self.cache.restore(self.key, Path(target))
        _record(self.tally, REUSED)
        return restored


@dataclass(frozen=True)
class IfTargetExists:
    """Run ``first`` when the target exists, ``second`` otherwise."""

    first: Footprint
    second: Footprint

    def apply(self, source: Path, target: Path) -> Path:
        if Path(target).exists():
            return self.first.apply(source, target)
        return self.second.apply(source, target)


@dataclass(frozen=True)
class Fork:
    """Run ``first`` when ``condition`` holds, ``second`` otherwise.

    ``condition`` is either a constant or a predicate over ``(source, target)``
    evaluated lazily on every application.
    """

    condition: Condition
    first: Footprint
    second: Footprint

    def apply(self, source: Path, target: Path) -> Path:
        if callable(self.condition):
            chosen = bool(self.condition(source, target))
        else:
            chosen = bool(self.condition)
        if chosen:
            return self.first.apply(source, target)
        return self.second.apply(source, target)


@dataclass(frozen=True)
class IfReleased:
    """Run ``first`` for released tool versions and ``second`` for development ones."""

    released: bool
    first: Footprint
    second: Footprint

    def apply(self, source: Path, target: Path) -> Path:
        if self.released:
            return self.first.apply(source, target)
        return self.second.apply(source, target)
