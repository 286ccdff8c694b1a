"""Catalog entry model tracking one compilation unit across pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

__all__ = ["CatalogEntry"]


@dataclass(frozen=True)
class CatalogEntry:
    """Immutable snapshot of a compilation unit's catalog record.

    Attributes:
        identifier: Stable dotted name of the unit (``foo.x.main``).
        discovered_at: Provenance of the unit, used in error messages only.
        source_path: Resolved source location, set once the unit is pulled.
        content_hash: Short hash of the pinned revision, set together with
            ``source_path``.
        stages: Stages already completed for the unit.
    """

    identifier: str
    discovered_at: str
    source_path: Optional[Path] = None
    content_hash: Optional[str] = None
    stages: frozenset[str] = field(default_factory=frozenset)

    @property
    def pulled(self) -> bool:
        return self.source_path is not None and bool(self.content_hash)

    def has_stage(self, stage: str) -> bool:
        return stage in self.stages

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "discovered_at": self.discovered_at,
            "source_path": str(self.source_path) if self.source_path is not None else None,
            "content_hash": self.content_hash,
            "stages": sorted(self.stages),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CatalogEntry":
        source = payload.get("source_path")
        return cls(
            identifier=str(payload["identifier"]),
            discovered_at=str(payload.get("discovered_at") or ""),
            source_path=Path(source) if source else None,
            content_hash=payload.get("content_hash") or None,
            stages=frozenset(payload.get("stages") or ()),
        )
