"""Composed footprint policy used by the cached pipeline stages."""

from __future__ import annotations

import logging
from pathlib import Path

from EOBuild.cache.layout import CacheKey
from EOBuild.cache.store import ContentCache

from .strategies import (
    Footprint,
    FootprintTally,
    Fork,
    Generated,
    Generator,
    IfReleased,
    IfTargetExists,
    Ignore,
    UpdateBoth,
    UpdateFromCache,
)

logger = logging.getLogger(__name__)

__all__ = ["cached_footprint"]


def cached_footprint(
    generate: Generator,
    cache: ContentCache,
    *,
    tool_version: str,
    content_hash: str | None,
    relative_path: str | Path,
    released: bool,
    force: bool = False,
    tally: FootprintTally | None = None,
) -> Footprint:
    """Build the generate / reuse / skip decision tree for one artifact.

    Decision order:

    1. ``force`` regenerates and writes through to the cache.
    2. An existing target is kept untouched.
    3. A fresh cache entry is restored onto the target (released versions only).
    4. Otherwise the artifact is generated and written through to the cache.

    Development versions never read from the cache but still write through so
    a later released build can reuse the artifact. Without a content hash no
    cache key can be formed, so the cache is bypassed entirely.
    """

    generated = Generated(generate, tally=tally)
    ignore = Ignore(tally=tally)
    if not content_hash:
        logger.debug("No content hash for %s, cache bypassed", relative_path)
        return Fork(force, generated, IfTargetExists(ignore, generated))

    key = CacheKey(tool_version, content_hash, relative_path)
    both = UpdateBoth(generated, cache, key)

    def _forced(source: Path, target: Path) -> bool:
        if force:
            logger.debug("Regenerating %s because overwrite is forced", target)
        return force

    def _cache_fresh(source: Path, target: Path) -> bool:
        return cache.is_fresh(key, source)

    return IfReleased(
        released,
        Fork(
            _forced,
            both,
            IfTargetExists(
                ignore,
                Fork(_cache_fresh, UpdateFromCache(cache, key, tally=tally), both),
            ),
        ),
        Fork(_forced, both, IfTargetExists(ignore, both)),
    )
