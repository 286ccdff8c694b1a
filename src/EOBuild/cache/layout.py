"""Cache key, on-disk layout and release-status helpers for the content cache.

The directory layout ``<root>/<stage>/<version>/<hash>/<relative path>`` is
shared with caches produced by earlier builds and must stay byte-for-byte
stable.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

__all__ = [
    "DEFAULT_RELEASE_PATTERN",
    "CacheKey",
    "cache_path",
    "is_released",
]

DEFAULT_RELEASE_PATTERN = r"^\d+\.\d+\.\d+$"
_UNRELEASED_VERSION = "0.0.0"


@dataclass(frozen=True)
class CacheKey:
    """Identity of a cached artifact: tool version, content hash and artifact path."""

    tool_version: str
    content_hash: str
    relative_path: PurePosixPath

    def __post_init__(self) -> None:
        version = str(self.tool_version).strip()
        digest = str(self.content_hash).strip()
        if not version:
            raise ValueError("CacheKey tool_version cannot be empty")
        if not digest:
            raise ValueError("CacheKey content_hash cannot be empty")
        relative = PurePosixPath(str(self.relative_path).replace("\\", "/"))
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise ValueError(f"CacheKey relative_path must be a relative path: {self.relative_path}")
        object.__setattr__(self, "tool_version", version)
        object.__setattr__(self, "content_hash", digest)
        object.__setattr__(self, "relative_path", relative)

    def __str__(self) -> str:
        return f"{self.tool_version}/{self.content_hash}/{self.relative_path}"


def cache_path(root: Path, stage: str, key: CacheKey) -> Path:
    """Return the location of ``key`` under the ``stage`` cache rooted at ``root``."""

    return (
        Path(root)
        / stage
        / key.tool_version
        / key.content_hash
        / Path(*key.relative_path.parts)
    )


def is_released(version: str, pattern: str = DEFAULT_RELEASE_PATTERN) -> bool:
    """Return ``True`` when ``version`` is an immutable, publicly tagged release.

    Development builds (``0.0.0``, ``-SNAPSHOT`` and anything else failing the
    pattern) are never trusted to read from the cache.
    """

    candidate = (version or "").strip()
    if not candidate or candidate == _UNRELEASED_VERSION:
        return False
    if "SNAPSHOT" in candidate.upper():
        return False
    return re.match(pattern, candidate) is not None
