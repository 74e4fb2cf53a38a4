"""
Period Bucketer

Idempotently folds one Observation into its monthly bucket:

1. No bucket yet: create it with the observation as the only weekly check
2. Bucket exists: merge the check in checkedAt order, rank = latest check
3. Same (checkedAt, source) already present: no-op, reported as duplicate

previousRank always comes from the most recent earlier bucket for the same
owner and keyword. Months before the current calendar month are closed;
only backfill may write them, and a backfill also refreshes the next
bucket's previousRank/rankChange.
"""

import logging
from typing import Any, Callable, Dict, Optional

from rankwatch.database.repository import RankHistoryRepository
from rankwatch.errors import ClosedPeriodError
from rankwatch.models import BucketRecord, Observation, UpsertOutcome, UpsertStatus
from rankwatch.trends.classifier import compute_rank_delta
from rankwatch.utils.dates import is_closed_period, utcnow
from .merge import bucket_state, fold_checks

logger = logging.getLogger(__name__)

# Successor refresh gives up after this many lost races
_MAX_SUCCESSOR_ATTEMPTS = 5


class PeriodBucketer:
    """
    Writes observations into monthly buckets.

    Usage:
        bucketer = PeriodBucketer(repository, on_write=cache.invalidate_bucket)
        outcome = bucketer.upsert(observation)
    """

    def __init__(
        self,
        repository: RankHistoryRepository,
        clock: Callable[[], Any] = utcnow,
        on_write: Optional[Callable[[BucketRecord], None]] = None,
    ):
        """
        Args:
            repository: Rank history store
            clock: Returns the current naive-UTC time (decides closed periods)
            on_write: Called with every bucket that changed
        """
        self.repository = repository
        self._clock = clock
        self._on_write = on_write

    def upsert(self, observation: Observation, backfill: bool = False) -> UpsertOutcome:
        """
        Fold one observation into its bucket.

        Raises:
            ClosedPeriodError: the month is closed and backfill is False
            StoreTimeout: the store stayed unavailable through all retries
        """
        key = observation.bucket_key
        if not backfill and is_closed_period(key.year, key.month, now=self._clock()):
            raise ClosedPeriodError(key.year, key.month)

        previous = self.repository.find_previous_bucket(key)
        previous_rank = previous.rank if previous else None
        check = observation.to_weekly_check()

        template = {
            "domain": observation.domain,
            "client_id": observation.client_id,
            "keyword_id": observation.keyword_id,
            "difficulty": observation.difficulty,
            "location": observation.location,
            "location_code": observation.location_code,
        }

        def build(current: Optional[BucketRecord]) -> Optional[Dict[str, Any]]:
            if current is None:
                return bucket_state([check], previous_rank)
            values = fold_checks(current.weekly_checks, [check], previous_rank)
            if values is None:
                return None
            # Keep the latest known metadata without erasing what we had
            for field in ("difficulty", "location", "location_code", "keyword_id"):
                if template[field] is not None:
                    values[field] = template[field]
            return values

        record, status = self.repository.upsert_bucket(key, template, build)

        if status == UpsertStatus.DUPLICATE:
            logger.debug(f"Duplicate check for {key} at {check.checked_at.isoformat()} ({check.source})")
        else:
            logger.info(
                f"Bucket {key} {status.value}: rank={record.rank} "
                f"change={record.rank_change} checks={len(record.weekly_checks)}"
            )
            if backfill:
                self._refresh_successor(record)
            self._notify(record)

        return UpsertOutcome(
            status=status,
            key=key,
            bucket_id=record.id,
            rank=record.rank,
            rank_change=record.rank_change,
            weekly_check_count=len(record.weekly_checks),
        )

    def _refresh_successor(self, record: BucketRecord) -> None:
        """Re-point the next bucket's previousRank at a backfilled month."""
        for _ in range(_MAX_SUCCESSOR_ATTEMPTS):
            successor = self.repository.find_next_bucket(record.key)
            if successor is None or successor.previous_rank == record.rank:
                return
            values = {
                "previous_rank": record.rank,
                "rank_change": compute_rank_delta(record.rank, successor.rank),
            }
            if self.repository.update_bucket(successor.id, successor.revision, values):
                logger.info(f"Refreshed previousRank of {successor.key} after backfill of {record.key}")
                return
        logger.warning(f"Could not refresh successor of {record.key}: kept losing write races")

    def _notify(self, record: BucketRecord) -> None:
        if self._on_write is not None:
            self._on_write(record)
