"""Exception hierarchy shared across caching, footprints, placement and stages.

The build engine spans content-addressed caching, per-unit artifact
materialisation, dependency binary placement, and diagnostic gating.  This
module groups the failure modes into a small hierarchy so callers can react to
high-level categories (for example, a failed producer vs. a rejected artifact)
while still reaching the context needed for per-unit reports.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional, Sequence

__all__ = [
    "EOBuildError",
    "ConfigError",
    "GenerationFailed",
    "IOFailure",
    "CacheMiss",
    "CatalogError",
    "PlacementFailed",
    "StageGateFailed",
    "RunFailed",
]


class EOBuildError(RuntimeError):
    """Base exception for build engine failures."""


class ConfigError(EOBuildError):
    """Raised when settings or CLI inputs are invalid."""


class GenerationFailed(EOBuildError):
    """Raised when an artifact producer (fetch, transform, parse) fails."""

    def __init__(self, message: str, *, source: Optional[Path] = None) -> None:
        super().__init__(message)
        self.source = source


class IOFailure(EOBuildError):
    """Raised when a filesystem operation on a target or cache entry fails."""

    def __init__(self, message: str, *, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path


class CacheMiss(EOBuildError):
    """Raised when a cache entry expected by a footprint is absent.

    A well-formed footprint only restores from the cache after checking the
    entry exists, so this indicates a programming error.
    """

    def __init__(self, message: str, *, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path


class CatalogError(EOBuildError):
    """Raised on unknown identifiers or when an entry violates its invariants."""


class PlacementFailed(EOBuildError):
    """Raised when copying a dependency file into the output tree fails."""

    def __init__(self, message: str, *, file: Path, target: Path) -> None:
        super().__init__(message)
        self.file = file
        self.target = target


class StageGateFailed(EOBuildError):
    """Raised when classified diagnostics reject a stage artifact."""

    def __init__(
        self,
        message: str,
        *,
        identifier: str,
        stage: str,
        counts: Optional[Mapping[str, int]] = None,
    ) -> None:
        super().__init__(message)
        self.identifier = identifier
        self.stage = stage
        self.counts = dict(counts or {})


class RunFailed(EOBuildError):
    """Raised at the end of a stage when one or more units failed."""

    def __init__(self, stage: str, failures: Sequence[tuple[str, str]]) -> None:
        self.stage = stage
        self.failures = tuple(failures)
        names = ", ".join(identifier for identifier, _ in self.failures)
        details = "; ".join(f"{identifier}: {cause}" for identifier, cause in self.failures)
        super().__init__(
            f"Stage '{stage}' failed for {len(self.failures)} unit(s) [{names}]: {details}"
        )

    @property
    def identifiers(self) -> tuple[str, ...]:
        return tuple(identifier for identifier, _ in self.failures)
