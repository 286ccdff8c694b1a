"""Dependency filtering and binary placement into the shared output tree."""

from .dependencies import (
    RUNTIME,
    DependencyDescriptor,
    filter_dependencies,
    load_dependencies,
    transitive_dependencies,
)
from .ledger import PlacementLedger, PlacementRecord
from .resolver import PlacementResolver, PlacementSummary, dependency_dirs, should_place_file

__all__ = [
    "RUNTIME",
    "DependencyDescriptor",
    "PlacementLedger",
    "PlacementRecord",
    "PlacementResolver",
    "PlacementSummary",
    "dependency_dirs",
    "filter_dependencies",
    "load_dependencies",
    "should_place_file",
    "transitive_dependencies",
]
