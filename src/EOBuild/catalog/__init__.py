"""Per-unit pipeline catalog."""

from .models import CatalogEntry
from .store import MissingStageView, ObjectCatalog

__all__ = ["CatalogEntry", "MissingStageView", "ObjectCatalog"]
