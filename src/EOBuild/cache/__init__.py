"""Content-addressed cache shared by pipeline stages across builds."""

from .layout import DEFAULT_RELEASE_PATTERN, CacheKey, cache_path, is_released
from .store import CacheEntry, ContentCache

__all__ = [
    "DEFAULT_RELEASE_PATTERN",
    "CacheEntry",
    "CacheKey",
    "ContentCache",
    "cache_path",
    "is_released",
]
