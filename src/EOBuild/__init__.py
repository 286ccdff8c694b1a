"""
EOBuild: incremental build engine for a multi-stage compiler pipeline.

Stages keep per-unit progress in an :class:`~EOBuild.catalog.ObjectCatalog`,
reuse artifacts from a content-addressed :class:`~EOBuild.cache.ContentCache`
through composable footprints, and place dependency-provided files into a
shared output tree without clobbering each other.
"""

from EOBuild.cache import ContentCache
from EOBuild.catalog import ObjectCatalog
from EOBuild.errors import (
    CacheMiss,
    EOBuildError,
    GenerationFailed,
    IOFailure,
    PlacementFailed,
    RunFailed,
    StageGateFailed,
)
from EOBuild.footprint import cached_footprint
from EOBuild.placement import PlacementResolver, filter_dependencies

__version__ = "0.1.0"

__all__ = [
    "CacheMiss",
    "ContentCache",
    "EOBuildError",
    "GenerationFailed",
    "IOFailure",
    "ObjectCatalog",
    "PlacementFailed",
    "PlacementResolver",
    "RunFailed",
    "StageGateFailed",
    "cached_footprint",
    "filter_dependencies",
]
