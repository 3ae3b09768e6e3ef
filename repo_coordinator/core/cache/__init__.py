"""
In-process cache for remote operation results.
"""

from .keys import cache_key, canonical_params
from .store import CacheEntry, CacheStore

__all__ = [
    "CacheEntry",
    "CacheStore",
    "cache_key",
    "canonical_params",
]
