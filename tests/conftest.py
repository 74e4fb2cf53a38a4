"""
Pytest Configuration and Shared Fixtures

In-memory SQLite store, repository, bucketer and services with a fixed
clock, plus helpers for building raw checks and bucket records.
"""

import pytest
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from rankwatch.cache import CacheConfig, CacheInvalidator, SnapshotCache
from rankwatch.database import (
    SQLClientDirectory,
    SQLRankHistoryRepository,
    StoreRetryConfig,
    init_db,
    make_session_factory,
)
from rankwatch.ingestion import PeriodBucketer
from rankwatch.models import BucketRecord, WeeklyCheck, client_key_for
from rankwatch.services import ComparisonService, IngestionService


# The open month in every test is March 2025
FIXED_NOW = datetime(2025, 3, 20, 12, 0, 0)


def fixed_clock() -> datetime:
    return FIXED_NOW


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def retry_config() -> StoreRetryConfig:
    return StoreRetryConfig(max_attempts=3, initial_delay=0.01, max_delay=0.02, max_conflicts=5)


@pytest.fixture
def sleeps() -> List[float]:
    """Records backoff delays instead of sleeping."""
    return []


@pytest.fixture
def repository(session_factory, retry_config, sleeps):
    return SQLRankHistoryRepository(session_factory, retry_config=retry_config, sleep=sleeps.append)


@pytest.fixture
def directory(session_factory):
    return SQLClientDirectory(session_factory)


@pytest.fixture
def client(directory):
    """A registered client owning example.com."""
    return directory.add_client("Example Dental", "https://www.example.com/")


@pytest.fixture
def snapshot_cache(session_factory):
    return SnapshotCache(session_factory, config=CacheConfig(enabled=True), clock=fixed_clock)


@pytest.fixture
def bucketer(repository, snapshot_cache):
    invalidator = CacheInvalidator(snapshot_cache)
    return PeriodBucketer(repository, clock=fixed_clock, on_write=invalidator.on_bucket_written)


@pytest.fixture
def ingestion(bucketer, directory):
    return IngestionService(bucketer, directory)


@pytest.fixture
def comparison(repository, directory, snapshot_cache):
    return ComparisonService(repository, directory, snapshot_cache, clock=fixed_clock)


# ============================================================================
# Data Helpers
# ============================================================================

def raw_check(
    keyword: str = "dental implants",
    rank: Any = 15,
    checked_at: Any = "2025-03-10T09:00:00Z",
    domain: str = "example.com",
    source: str = "dataforseo",
    **extra,
) -> Dict[str, Any]:
    """Raw rank check as a provider would send it."""
    return {
        "domain": domain,
        "keyword": keyword,
        "rank": rank,
        "checkedAt": checked_at,
        "source": source,
        **extra,
    }


def make_bucket(
    keyword: str,
    year: int,
    month: int,
    rank: Optional[int],
    domain: str = "example.com",
    client_id=None,
    previous_rank: Optional[int] = None,
    checks: Optional[List[WeeklyCheck]] = None,
) -> BucketRecord:
    """Bucket record built in memory, for read-path tests."""
    if checks is None:
        checks = [WeeklyCheck(rank=rank, checked_at=datetime(year, month, 10), source="dataforseo")]
    return BucketRecord(
        id=uuid4(),
        client_key=client_key_for(client_id, domain),
        domain=domain,
        keyword=keyword,
        year=year,
        month=month,
        rank=rank,
        previous_rank=previous_rank,
        rank_change=(previous_rank - rank) if previous_rank is not None and rank is not None else None,
        in_top_100=rank is not None,
        client_id=client_id,
        weekly_checks=checks,
        revision=1,
    )


@pytest.fixture
def sample_buckets() -> List[BucketRecord]:
    """Three keywords over January and February 2025."""
    return [
        make_bucket("dental implants", 2025, 1, 45),
        make_bucket("dental implants", 2025, 2, 22, previous_rank=45),
        make_bucket("emergency dentist", 2025, 1, 8),
        make_bucket("emergency dentist", 2025, 2, None, previous_rank=8),
        make_bucket("teeth whitening", 2025, 1, 12),
        make_bucket("teeth whitening", 2025, 2, 12, previous_rank=12),
    ]


# ============================================================================
# Test Markers
# ============================================================================

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that use the SQLite store"
    )
