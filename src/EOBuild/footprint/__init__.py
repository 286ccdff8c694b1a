"""
Footprints: strategies guaranteeing that a stage artifact exists.

Exposes the primitive strategies from :mod:`.strategies` and the composed
cache-aware decision tree from :mod:`.policy`.
"""

from .policy import cached_footprint
from .strategies import (
    REGENERATED,
    REUSED,
    SKIPPED,
    Footprint,
    FootprintTally,
    Fork,
    Generated,
    IfReleased,
    IfTargetExists,
    Ignore,
    UpdateBoth,
    UpdateFromCache,
)

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
    "cached_footprint",
]
