"""
Rank Collection Orchestrator

Runs SERP rank checks for a set of tracked keywords and feeds every
result into the ingestion service. A failed check is recorded in the
summary and never stops the rest of the run.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from rankwatch.database.models import Client, TrackedKeyword
from rankwatch.errors import RankCheckError, RankwatchError, StoreError
from rankwatch.services.ingestion import IngestionService
from rankwatch.utils.config import get_settings
from rankwatch.utils.domain import normalize_domain
from .client import RankCheckClient

logger = logging.getLogger(__name__)


@dataclass
class RankTarget:
    """One keyword to check for one domain."""
    domain: str
    keyword: str
    client_id: Optional[UUID] = None
    keyword_id: Optional[UUID] = None
    location: Optional[str] = None
    location_code: Optional[int] = None


@dataclass
class CollectionSummary:
    """Result of one collection run."""
    total: int = 0
    ranked: int = 0
    unranked: int = 0
    created: int = 0
    updated: int = 0
    duplicates: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def failed(self) -> int:
        return len(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "ranked": self.ranked,
            "unranked": self.unranked,
            "created": self.created,
            "updated": self.updated,
            "duplicates": self.duplicates,
            "failed": self.failed,
            "errors": self.errors,
            "durationSeconds": round(self.duration_seconds, 2),
        }


class RankCollector:
    """
    Checks ranks concurrently and ingests the results.

    Usage:
        async with RankCheckClient() as client:
            collector = RankCollector(client, ingestion_service)
            summary = await collector.run(targets)
    """

    def __init__(
        self,
        client: RankCheckClient,
        ingestion: IngestionService,
        concurrency: Optional[int] = None,
    ):
        self.client = client
        self.ingestion = ingestion
        settings = get_settings()
        self.concurrency = concurrency or settings.COLLECTOR_CONCURRENCY
        self.default_location = settings.DEFAULT_LOCATION

    async def run(self, targets: Sequence[RankTarget]) -> CollectionSummary:
        """Check every target; returns the summary of the run."""
        summary = CollectionSummary(total=len(targets))
        semaphore = asyncio.Semaphore(self.concurrency)
        started = time.time()

        logger.info(f"Collecting ranks for {len(targets)} keyword(s), concurrency {self.concurrency}")

        async def check(target: RankTarget):
            async with semaphore:
                await self._check_one(target, summary)

        await asyncio.gather(*(check(t) for t in targets))

        summary.duration_seconds = time.time() - started
        logger.info(
            f"Collection complete: {summary.ranked} ranked, {summary.unranked} unranked, "
            f"{summary.failed} failed in {summary.duration_seconds:.1f}s"
        )
        return summary

    async def _check_one(self, target: RankTarget, summary: CollectionSummary) -> None:
        try:
            result = await self.client.check_rank(
                target.keyword,
                target.domain,
                location_code=target.location_code,
            )
        except RankCheckError as e:
            logger.error(f"Rank check failed for '{target.keyword}' ({target.domain}): {e}")
            summary.errors.append({"keyword": target.keyword, "domain": target.domain, "error": str(e)})
            return

        raw = result.to_raw()
        raw["clientId"] = target.client_id
        raw["keywordId"] = target.keyword_id
        raw["location"] = target.location
        if raw["location"] is None and target.location_code is None:
            # The provider searched its default market
            raw["location"] = self.default_location

        try:
            # Store access is synchronous; keep it off the event loop.
            outcome = await asyncio.to_thread(self.ingestion.ingest, raw)
        except RankwatchError as e:
            logger.error(f"Ingest failed for '{target.keyword}' ({target.domain}): {e}")
            summary.errors.append({"keyword": target.keyword, "domain": target.domain, "error": str(e)})
            return

        if result.found:
            summary.ranked += 1
        else:
            summary.unranked += 1

        status = outcome.status.value
        if status == "created":
            summary.created += 1
        elif status == "updated":
            summary.updated += 1
        else:
            summary.duplicates += 1


def load_targets(session_factory: sessionmaker, client_id: Optional[UUID] = None) -> List[RankTarget]:
    """
    Build rank targets from the tracked_keywords table.

    Clients without a usable domain are skipped.
    """
    stmt = (
        select(TrackedKeyword, Client)
        .join(Client, TrackedKeyword.client_id == Client.id)
        .order_by(Client.name, TrackedKeyword.keyword)
    )
    if client_id is not None:
        stmt = stmt.where(Client.id == client_id)

    try:
        with session_factory() as session:
            rows = session.execute(stmt).all()
    except SQLAlchemyError as e:
        raise StoreError(f"Could not load tracked keywords: {e}") from e

    targets = []
    for tracked, client in rows:
        domain = client.domain or normalize_domain(client.website)
        if not domain:
            logger.warning(f"Skipping '{tracked.keyword}': client {client.name} has no domain")
            continue
        targets.append(RankTarget(
            domain=domain,
            keyword=tracked.keyword,
            client_id=client.id,
            keyword_id=tracked.id,
            location=tracked.location,
            location_code=tracked.location_code,
        ))
    return targets
