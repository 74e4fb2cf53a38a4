"""
Cache Invalidation Service

Event-driven snapshot invalidation with minimal scope.

Events trigger targeted invalidation:
- BUCKET_WRITTEN: the bucket's owner scope and its domain
- BUCKETS_RELINKED: the new client scope and the orphan's domain
- MANUAL_INVALIDATE_SCOPE: one scope (operator request)
- MANUAL_INVALIDATE_ALL: everything
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from rankwatch.models import BucketRecord
from .snapshot import SnapshotCache

logger = logging.getLogger(__name__)


class CacheEvent(Enum):
    """Events that trigger cache invalidation."""
    BUCKET_WRITTEN = "bucket_written"
    BUCKETS_RELINKED = "buckets_relinked"
    MANUAL_INVALIDATE_SCOPE = "manual_invalidate_scope"
    MANUAL_INVALIDATE_ALL = "manual_invalidate_all"


@dataclass
class InvalidationResult:
    """Result of a cache invalidation operation."""
    event: CacheEvent
    success: bool
    snapshots_invalidated: int
    duration_ms: float
    errors: List[str] = field(default_factory=list)


class CacheInvalidator:
    """
    Handles snapshot invalidation based on events.

    Principle: Invalidate as narrowly as possible.
    """

    def __init__(self, cache: SnapshotCache):
        self._cache = cache

    def handle_event(
        self,
        event: CacheEvent,
        scope_key: Optional[str] = None,
        domain: Optional[str] = None,
    ) -> InvalidationResult:
        start = time.perf_counter()
        errors = []
        invalidated = 0

        logger.info(f"Cache invalidation event: {event.value}, scope={scope_key}, domain={domain}")

        try:
            if event in (CacheEvent.BUCKET_WRITTEN, CacheEvent.BUCKETS_RELINKED):
                invalidated += self._cache.invalidate_scope(scope_key=scope_key, domain=domain)

            elif event == CacheEvent.MANUAL_INVALIDATE_SCOPE:
                if scope_key or domain:
                    invalidated += self._cache.invalidate_scope(scope_key=scope_key, domain=domain)
                else:
                    errors.append("scope_key or domain required")

            elif event == CacheEvent.MANUAL_INVALIDATE_ALL:
                invalidated += self._cache.invalidate_all()

        except SQLAlchemyError as e:
            errors.append(str(e))
            logger.error(f"Cache invalidation error: {e}")

        duration = (time.perf_counter() - start) * 1000

        return InvalidationResult(
            event=event,
            success=not errors,
            snapshots_invalidated=invalidated,
            duration_ms=duration,
            errors=errors,
        )

    def on_bucket_written(self, bucket: BucketRecord) -> None:
        """Bucketer write hook."""
        self.handle_event(CacheEvent.BUCKET_WRITTEN, scope_key=bucket.client_key, domain=bucket.domain)
