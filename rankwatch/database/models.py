"""
SQLAlchemy Models for the Rankwatch engine

Design Principles:
1. One row per (owner, keyword, month): the unique key is a table constraint
2. Weekly checks live inside the monthly row (JSON), ordered by checkedAt
3. Every write bumps `revision` so concurrent writers can compare-and-swap
4. Client linkage is nullable; reads fall back to the domain

PostgreSQL in production, SQLite for local development and tests.
"""

from typing import Any, Dict
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime,
    ForeignKey, Index, CheckConstraint, UniqueConstraint,
    JSON, Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

from rankwatch.models import BucketRecord, ClientRecord, WeeklyCheck
from rankwatch.utils.dates import utcnow

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Bumped whenever the stored bucket shape changes
BUCKET_SCHEMA_VERSION = 1


# =============================================================================
# COLLABORATOR TABLES - Client directory
# =============================================================================

class Client(Base):
    """Client accounts owning tracked keywords"""
    __tablename__ = "clients"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    website = Column(String(500))
    domain = Column(String(255))  # normalize_domain(website)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    keywords = relationship("TrackedKeyword", back_populates="client", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_client_domain", "domain"),
    )

    def to_record(self) -> ClientRecord:
        return ClientRecord(id=self.id, name=self.name, website=self.website, domain=self.domain)


class TrackedKeyword(Base):
    """Keywords a client has asked us to track"""
    __tablename__ = "tracked_keywords"

    id = Column(Uuid, primary_key=True, default=uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False)

    keyword = Column(String(500), nullable=False)
    location = Column(String(255))
    location_code = Column(Integer)
    difficulty = Column(Float)

    created_at = Column(DateTime, default=utcnow)

    client = relationship("Client", back_populates="keywords")

    __table_args__ = (
        UniqueConstraint("client_id", "keyword", "location_code", name="uq_tracked_keyword"),
    )


# =============================================================================
# RANK HISTORY - Monthly buckets with weekly sub-checks
# =============================================================================

class RankBucket(Base):
    """
    Monthly rank bucket for one keyword.

    Owner key is `client:<uuid>` when the client is known, otherwise
    `domain:<domain>`. Linking an orphan rewrites the owner key in place.
    """
    __tablename__ = "rank_buckets"

    id = Column(Uuid, primary_key=True, default=uuid4)
    client_key = Column(String(300), nullable=False)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=True)
    keyword_id = Column(Uuid, ForeignKey("tracked_keywords.id"), nullable=True)

    # Identity
    domain = Column(String(255), nullable=False)
    keyword = Column(String(500), nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)

    # Latest check in the month
    rank = Column(Integer)  # NULL = not in top 100
    in_top_100 = Column(Boolean, default=False, nullable=False)
    difficulty = Column(Float)
    location = Column(String(255))
    location_code = Column(Integer)
    source = Column(String(50))
    checked_at = Column(DateTime)

    # Carried from the prior bucket
    previous_rank = Column(Integer)
    rank_change = Column(Integer)  # previous_rank - rank; positive = improved

    # [{rank, checkedAt, source}, ...] ordered by checkedAt
    weekly_checks = Column(JSONType, nullable=False, default=list)

    # Versioning
    schema_version = Column(Integer, nullable=False, default=BUCKET_SCHEMA_VERSION)
    revision = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("client_key", "keyword", "year", "month", name="uq_rank_bucket_period"),
        CheckConstraint("month >= 1 AND month <= 12", name="ck_rank_bucket_month"),
        Index("idx_rank_bucket_client", "client_id", "year", "month"),
        Index("idx_rank_bucket_domain", "domain", "year", "month"),
        Index("idx_rank_bucket_keyword", "client_key", "keyword"),
    )

    def to_record(self) -> BucketRecord:
        return BucketRecord(
            id=self.id,
            client_key=self.client_key,
            domain=self.domain,
            keyword=self.keyword,
            year=self.year,
            month=self.month,
            rank=self.rank,
            previous_rank=self.previous_rank,
            rank_change=self.rank_change,
            in_top_100=bool(self.in_top_100),
            difficulty=self.difficulty,
            location=self.location,
            location_code=self.location_code,
            source=self.source,
            checked_at=self.checked_at,
            client_id=self.client_id,
            keyword_id=self.keyword_id,
            weekly_checks=[WeeklyCheck.from_dict(c) for c in (self.weekly_checks or [])],
            revision=self.revision or 0,
            schema_version=self.schema_version or BUCKET_SCHEMA_VERSION,
        )

    def to_document(self) -> Dict[str, Any]:
        """Persisted shape as consumed by downstream tooling."""
        return self.to_record().to_document()


# =============================================================================
# DASHBOARD SNAPSHOTS - Cached read contracts
# =============================================================================

class DashboardSnapshot(Base):
    """
    Computed comparison contract for one (scope, date range).

    Written by the snapshot cache after a read, marked not-current
    whenever a bucket in the scope changes.
    """
    __tablename__ = "dashboard_snapshots"

    id = Column(Uuid, primary_key=True, default=uuid4)
    scope_key = Column(String(300), nullable=False)  # client:<uuid> or domain:<domain>
    range_key = Column(String(50), nullable=False)   # "2025-01..2025-03" or "all"
    domain = Column(String(255))  # Scope domain; orphan writes invalidate by domain

    data = Column(JSONType, nullable=False)

    # Metadata
    size_bytes = Column(Integer)
    computation_time_ms = Column(Integer)

    # Validity
    valid_until = Column(DateTime)
    is_current = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("scope_key", "range_key", name="uq_snapshot_scope_range"),
        Index("idx_snapshot_scope", "scope_key", "is_current"),
        Index("idx_snapshot_domain", "domain"),
    )
