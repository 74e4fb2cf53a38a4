"""
Ingestion Service

Normalizes raw rank checks and folds them into monthly buckets.
Errors are local to one check: a batch always returns one result per item.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from rankwatch.database.clients import ClientDirectory
from rankwatch.errors import ClosedPeriodError, RankwatchError, ValidationError
from rankwatch.ingestion.bucketer import PeriodBucketer
from rankwatch.ingestion.normalizer import normalize_observation
from rankwatch.models import Observation, UpsertOutcome

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    """Outcome of one raw check in a batch."""
    index: int
    status: str  # created | updated | duplicate | rejected | failed
    bucket_id: Optional[UUID] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"index": self.index, "status": self.status}
        if self.bucket_id is not None:
            result["bucketId"] = str(self.bucket_id)
        if self.error is not None:
            result["error"] = self.error
        return result


class IngestionService:
    """Service for rank-check ingestion."""

    def __init__(
        self,
        bucketer: PeriodBucketer,
        directory: Optional[ClientDirectory] = None,
        default_source: Optional[str] = None,
        link_by_domain: bool = True,
    ):
        """
        Initialize ingestion service.

        Args:
            bucketer: Writes observations into buckets
            directory: Optional client directory used to check/resolve linkage
            default_source: Source tag for checks that carry none
            link_by_domain: Resolve a missing client from the domain
        """
        self.bucketer = bucketer
        self.directory = directory
        self.default_source = default_source
        self.link_by_domain = link_by_domain

    def _resolve_client(self, observation: Observation) -> Observation:
        """Unknown clients are dropped (keyed by domain); missing ones resolved by domain."""
        if self.directory is None:
            return observation

        if observation.client_id is not None:
            if self.directory.get_client(observation.client_id) is None:
                logger.warning(
                    f"Unknown client {observation.client_id} for '{observation.keyword}'; "
                    f"storing by domain {observation.domain}"
                )
                return replace(observation, client_id=None)
            return observation

        if self.link_by_domain:
            client = self.directory.find_by_domain(observation.domain)
            if client is not None:
                return replace(observation, client_id=client.id)
        return observation

    def _resolve_keyword(self, observation: Observation) -> Observation:
        """Unknown tracked-keyword ids are dropped so the check is still stored."""
        if self.directory is None or observation.keyword_id is None:
            return observation
        if not self.directory.has_tracked_keyword(observation.keyword_id):
            logger.warning(
                f"Unknown tracked keyword {observation.keyword_id} for '{observation.keyword}'; "
                f"storing without it"
            )
            return replace(observation, keyword_id=None)
        return observation

    def ingest(self, raw: Any, backfill: bool = False) -> UpsertOutcome:
        """
        Ingest one raw rank check.

        Raises:
            ValidationError: the check was rejected before storage
            ClosedPeriodError: the month is closed and backfill is False
            StoreTimeout: the store stayed unavailable
        """
        observation = normalize_observation(raw, default_source=self.default_source)
        observation = self._resolve_keyword(self._resolve_client(observation))
        return self.bucketer.upsert(observation, backfill=backfill)

    def ingest_many(self, raws: Iterable[Any], backfill: bool = False) -> List[IngestionResult]:
        """Ingest a batch; one bad check never fails the others."""
        results = []
        for index, raw in enumerate(raws):
            try:
                outcome = self.ingest(raw, backfill=backfill)
                results.append(IngestionResult(
                    index=index,
                    status=outcome.status.value,
                    bucket_id=outcome.bucket_id,
                ))
            except (ValidationError, ClosedPeriodError) as e:
                logger.warning(f"Rejected rank check #{index}: {e}")
                results.append(IngestionResult(index=index, status="rejected", error=str(e)))
            except RankwatchError as e:
                logger.error(f"Failed to ingest rank check #{index}: {e}")
                results.append(IngestionResult(index=index, status="failed", error=str(e)))

        failed = sum(1 for r in results if not r.ok)
        logger.info(f"Ingested {len(results) - failed}/{len(results)} rank checks")
        return results
