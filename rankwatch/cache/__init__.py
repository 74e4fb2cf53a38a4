"""
Dashboard snapshot caching.

Snapshots are stored in PostgreSQL next to the buckets they summarize and
invalidated whenever one of those buckets changes.
"""

from .config import CacheTTL, CacheConfig, get_cache_config
from .snapshot import SnapshotCache, range_key, touches_open_period
from .invalidation import CacheEvent, CacheInvalidator, InvalidationResult

__all__ = [
    "CacheTTL",
    "CacheConfig",
    "get_cache_config",
    "SnapshotCache",
    "range_key",
    "touches_open_period",
    "CacheEvent",
    "CacheInvalidator",
    "InvalidationResult",
]
