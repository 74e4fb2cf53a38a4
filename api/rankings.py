"""
Rankings API

Endpoints for the rank history engine:
- Ingest raw rank checks (batch, per-item outcomes)
- Month-over-month comparison for a client or a domain
- Linkage repair for client-less buckets
- Health check
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from rankwatch.cache import CacheEvent, CacheInvalidator, SnapshotCache
from rankwatch.database import (
    ClientDirectory,
    RankHistoryRepository,
    SQLClientDirectory,
    SQLRankHistoryRepository,
    check_db_connection,
    get_session_factory,
)
from rankwatch.errors import ScopeNotFoundError, StoreError, StoreTimeout, ValidationError
from rankwatch.ingestion import PeriodBucketer
from rankwatch.jobs import link_buckets_to_clients
from rankwatch.models import client_key_for
from rankwatch.services import ComparisonService, IngestionService
from rankwatch.utils.dates import Period, parse_month_key, utcnow

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/rankings", tags=["Rankings"])


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_repository() -> RankHistoryRepository:
    return SQLRankHistoryRepository(get_session_factory())


def get_directory() -> ClientDirectory:
    return SQLClientDirectory(get_session_factory())


def get_snapshot_cache() -> SnapshotCache:
    return SnapshotCache(get_session_factory())


def get_ingestion_service(
    repository: RankHistoryRepository = Depends(get_repository),
    directory: ClientDirectory = Depends(get_directory),
    cache: SnapshotCache = Depends(get_snapshot_cache),
) -> IngestionService:
    invalidator = CacheInvalidator(cache)
    bucketer = PeriodBucketer(repository, on_write=invalidator.on_bucket_written)
    return IngestionService(bucketer, directory)


def get_comparison_service(
    repository: RankHistoryRepository = Depends(get_repository),
    directory: ClientDirectory = Depends(get_directory),
    cache: SnapshotCache = Depends(get_snapshot_cache),
) -> ComparisonService:
    return ComparisonService(repository, directory, cache)


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class RawRankCheck(BaseModel):
    """
    One rank check as produced by a rank-check provider.

    Fields are validated by the normalizer, not here, so a malformed item
    is rejected on its own instead of failing the whole batch.
    """
    model_config = ConfigDict(populate_by_name=True)

    domain: Optional[str] = None
    keyword: Optional[str] = None
    rank: Any = Field(default=None, description="Position, or null/'NI' when not in the top 100")
    checked_at: Any = Field(default=None, alias="checkedAt")
    source: Optional[str] = None
    location: Optional[str] = None
    location_code: Optional[int] = Field(default=None, alias="locationCode")
    difficulty: Optional[float] = None
    client: Optional[str] = None
    keyword_id: Optional[str] = Field(default=None, alias="keywordId")


class IngestRequest(BaseModel):
    """Batch of rank checks."""
    observations: List[RawRankCheck]
    backfill: bool = Field(default=False, description="Allow writes into closed months")


class IngestItemResult(BaseModel):
    index: int
    status: str
    bucketId: Optional[str] = None
    error: Optional[str] = None


class IngestResponse(BaseModel):
    """Per-observation outcomes plus totals."""
    results: List[IngestItemResult]
    created: int
    updated: int
    duplicates: int
    rejected: int
    failed: int


class HealthResponse(BaseModel):
    status: str
    database: bool
    timestamp: datetime


# =============================================================================
# HELPERS
# =============================================================================

def _parse_month(value: Optional[str], name: str) -> Optional[Period]:
    if not value:
        return None
    try:
        return parse_month_key(value)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"{name}: {e}")


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/observations", response_model=IngestResponse)
def ingest_observations(
    request: IngestRequest,
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Ingest a batch of rank checks.

    Always 200: a bad observation is reported in its own result and never
    fails the others.
    """
    results = service.ingest_many(request.observations, backfill=request.backfill)
    counts = {status: sum(1 for r in results if r.status == status)
              for status in ("created", "updated", "duplicate", "rejected", "failed")}

    return IngestResponse(
        results=[IngestItemResult(**r.to_dict()) for r in results],
        created=counts["created"],
        updated=counts["updated"],
        duplicates=counts["duplicate"],
        rejected=counts["rejected"],
        failed=counts["failed"],
    )


@router.get("/comparison")
def get_comparison(
    client_id: Optional[UUID] = Query(None, description="Client scope"),
    domain: Optional[str] = Query(None, description="Domain scope (used without client_id)"),
    start: Optional[str] = Query(None, description="First month, YYYY-MM"),
    end: Optional[str] = Query(None, description="Last month, YYYY-MM"),
    refresh: bool = Query(False, description="Bypass the snapshot cache"),
    service: ComparisonService = Depends(get_comparison_service),
) -> Dict[str, Any]:
    """
    Month-over-month rank comparison.

    Returns summary, monthlyStats, keywordTimeline, performanceCategories,
    insights and warnings.
    """
    if client_id is None and not domain:
        raise HTTPException(status_code=422, detail="client_id or domain is required")

    start_period = _parse_month(start, "start")
    end_period = _parse_month(end, "end")

    try:
        report = service.get_comparison(
            client_id=client_id,
            domain=domain,
            start=start_period,
            end=end_period,
            use_cache=not refresh,
        )
    except ScopeNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StoreTimeout as e:
        logger.error(f"Comparison timed out for client={client_id} domain={domain}: {e}")
        raise HTTPException(status_code=503, detail="Rank history store unavailable")

    return report.to_dict()


@router.post("/repair/link-clients")
def repair_link_clients(
    repository: RankHistoryRepository = Depends(get_repository),
    directory: ClientDirectory = Depends(get_directory),
    cache: SnapshotCache = Depends(get_snapshot_cache),
) -> Dict[str, Any]:
    """Attach client-less buckets to the client owning their domain."""
    invalidator = CacheInvalidator(cache)

    def on_change(bucket):
        client = directory.find_by_domain(bucket.domain)
        scope = client_key_for(client.id, "") if client else bucket.client_key
        invalidator.handle_event(CacheEvent.BUCKETS_RELINKED, scope_key=scope, domain=bucket.domain)

    try:
        report = link_buckets_to_clients(repository, directory, on_change=on_change)
    except StoreTimeout as e:
        raise HTTPException(status_code=503, detail=str(e))
    except StoreError as e:
        logger.error(f"Linkage repair failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return report.to_dict()


@router.get("/health", response_model=HealthResponse)
def rankings_health():
    """Database connectivity for monitoring."""
    connected = check_db_connection()
    return HealthResponse(
        status="healthy" if connected else "unhealthy",
        database=connected,
        timestamp=utcnow(),
    )
