"""
Dashboard Snapshot Cache

Stores computed comparison contracts in the dashboard_snapshots table,
keyed by (scope, date range). Same database as the buckets, so there is
nothing extra to run.

Cache failures are logged and treated as misses; the read path always
falls back to computing from buckets.
"""

import json
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from rankwatch.utils.dates import Period, month_key, utcnow
from rankwatch.database.models import DashboardSnapshot
from .config import CacheConfig, get_cache_config

logger = logging.getLogger(__name__)


def range_key(start: Optional[Period], end: Optional[Period]) -> str:
    """'2025-01..2025-03'; open ends are '*'; no bounds is 'all'."""
    if start is None and end is None:
        return "all"
    left = month_key(*start) if start else "*"
    right = month_key(*end) if end else "*"
    return f"{left}..{right}"


def touches_open_period(end: Optional[Period], now=None) -> bool:
    """True when the range reaches the current calendar month."""
    now = now or utcnow()
    return end is None or end >= (now.year, now.month)


class SnapshotCache:
    """
    PostgreSQL-backed snapshot cache.

    Usage:
        cache = SnapshotCache(get_session_factory())
        data = cache.get("client:...", "2025-01..2025-03")
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], Any] = utcnow,
    ):
        self._session_factory = session_factory
        self.config = config or get_cache_config()
        self._clock = clock
        self._stats = {
            "hits": 0,
            "misses": 0,
            "writes": 0,
            "invalidations": 0,
        }

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def get(self, scope_key: str, range_key: str) -> Optional[Dict]:
        """
        Get a cached contract.

        Returns:
            Cached data dict or None if missing, stale or invalidated
        """
        if not self.enabled:
            return None

        try:
            with self._session_factory() as session:
                record = session.execute(
                    select(DashboardSnapshot).where(
                        DashboardSnapshot.scope_key == scope_key,
                        DashboardSnapshot.range_key == range_key,
                        DashboardSnapshot.is_current.is_(True),
                        DashboardSnapshot.valid_until > self._clock(),
                    )
                ).scalars().first()

                if record:
                    self._stats["hits"] += 1
                    return record.data

                self._stats["misses"] += 1
                return None

        except SQLAlchemyError as e:
            logger.error(f"Cache get error for {scope_key} [{range_key}]: {e}")
            self._stats["misses"] += 1
            return None

    def set(
        self,
        scope_key: str,
        range_key: str,
        data: Dict,
        ttl: timedelta,
        domain: Optional[str] = None,
        computation_time_ms: Optional[int] = None,
    ) -> bool:
        """
        Store a contract, replacing any previous snapshot for the same key.

        Returns:
            True if successful, False otherwise
        """
        if not self.enabled:
            return False

        size_bytes = len(json.dumps(data, default=str).encode("utf-8"))
        now = self._clock()

        try:
            with self._session_factory() as session:
                existing = session.execute(
                    select(DashboardSnapshot).where(
                        DashboardSnapshot.scope_key == scope_key,
                        DashboardSnapshot.range_key == range_key,
                    )
                ).scalars().first()

                if existing:
                    existing.data = data
                    existing.domain = domain
                    existing.size_bytes = size_bytes
                    existing.computation_time_ms = computation_time_ms
                    existing.valid_until = now + ttl
                    existing.is_current = True
                    existing.created_at = now
                else:
                    session.add(DashboardSnapshot(
                        scope_key=scope_key,
                        range_key=range_key,
                        domain=domain,
                        data=data,
                        size_bytes=size_bytes,
                        computation_time_ms=computation_time_ms,
                        valid_until=now + ttl,
                        is_current=True,
                        created_at=now,
                    ))

                session.commit()
                self._stats["writes"] += 1
                logger.debug(f"Cached {scope_key} [{range_key}] ({size_bytes} bytes, ttl {ttl})")
                return True

        except SQLAlchemyError as e:
            logger.error(f"Cache set error for {scope_key} [{range_key}]: {e}")
            return False

    def invalidate_scope(self, scope_key: Optional[str] = None, domain: Optional[str] = None) -> int:
        """
        Invalidate every snapshot of a scope and/or every snapshot over a domain.

        Marks records as not current rather than deleting them.
        """
        conditions = []
        if scope_key:
            conditions.append(DashboardSnapshot.scope_key == scope_key)
        if domain:
            conditions.append(DashboardSnapshot.domain == domain)
        if not conditions:
            return 0
        return self._invalidate(or_(*conditions), f"scope={scope_key} domain={domain}")

    def invalidate_all(self) -> int:
        return self._invalidate(DashboardSnapshot.is_current.is_(True), "all")

    def _invalidate(self, condition, label: str) -> int:
        try:
            with self._session_factory() as session:
                result = session.execute(
                    update(DashboardSnapshot)
                    .where(condition, DashboardSnapshot.is_current.is_(True))
                    .values(is_current=False)
                )
                session.commit()
                count = result.rowcount or 0
        except SQLAlchemyError as e:
            logger.error(f"Invalidation error for {label}: {e}")
            return 0

        self._stats["invalidations"] += count
        if count:
            logger.info(f"Invalidated {count} snapshot(s) for {label}")
        return count

    def get_stats(self) -> Dict:
        """Get cache statistics."""
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / total * 100) if total > 0 else 0

        return {
            "enabled": self.enabled,
            "backend": "postgresql",
            "hits": self._stats["hits"],
            "misses": self._stats["misses"],
            "writes": self._stats["writes"],
            "invalidations": self._stats["invalidations"],
            "hit_rate_percent": round(hit_rate, 2),
        }
