"""
Cache Configuration

Centralized configuration for the dashboard snapshot cache.

Note: Snapshots live in PostgreSQL (dashboard_snapshots table).
No Redis required.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache


@dataclass(frozen=True)
class CacheTTL:
    """
    Snapshot TTL by period state.

    The current month's buckets change on every ingestion, so a snapshot
    whose range reaches the open month expires quickly. Closed months only
    change through backfill or repair, and those invalidate explicitly.
    """

    CURRENT_PERIOD: timedelta = timedelta(minutes=5)
    CLOSED_PERIOD: timedelta = timedelta(hours=24)

    @classmethod
    def for_range(cls, touches_open_period: bool) -> timedelta:
        return cls.CURRENT_PERIOD if touches_open_period else cls.CLOSED_PERIOD


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - CACHE_ENABLED: Enable/disable snapshot caching
    """

    enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_ENABLED",
        "true"
    ).lower() == "true")


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get singleton cache configuration."""
    return CacheConfig()
