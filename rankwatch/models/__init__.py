"""
Rankwatch - Data Models

Shared data models used across ingestion, the read path and the repair jobs.
Database rows are converted to these plain records at the repository
boundary, so nothing above the repository touches SQLAlchemy objects.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple
from uuid import UUID

from rankwatch.utils.dates import month_key, month_name


# =============================================================================
# ENUMS
# =============================================================================

class Trend(str, Enum):
    """Month-over-month movement of one keyword."""
    IMPROVED = "improved"
    DECLINED = "declined"
    STABLE = "stable"
    NEW = "new"
    LOST = "lost"
    UNKNOWN = "unknown"  # Malformed data; never counted in the summary


class RankSource(str, Enum):
    """Provenance of a rank check."""
    DATAFORSEO = "dataforseo"
    OXYLABS = "oxylabs"
    MANUAL = "manual"
    IMPORT = "import"


class UpsertStatus(str, Enum):
    """What a bucket write did."""
    CREATED = "created"
    UPDATED = "updated"
    DUPLICATE = "duplicate"  # Same (checkedAt, source) already folded in


# =============================================================================
# KEYS
# =============================================================================

def client_key_for(client_id: Optional[UUID], domain: str) -> str:
    """Bucket ownership key: the client when known, the domain otherwise."""
    if client_id is not None:
        return f"client:{client_id}"
    return f"domain:{domain}"


class BucketKey(NamedTuple):
    """Composite key: exactly one bucket per (owner, keyword, year, month)."""
    client_key: str
    keyword: str
    year: int
    month: int

    @property
    def period(self) -> Tuple[int, int]:
        return (self.year, self.month)

    def __str__(self) -> str:
        return f"{self.client_key}|{self.keyword}|{month_key(self.year, self.month)}"


# =============================================================================
# OBSERVATIONS
# =============================================================================

@dataclass(frozen=True)
class WeeklyCheck:
    """One check folded into a monthly bucket."""
    rank: Optional[int]
    checked_at: datetime
    source: str

    @property
    def dedupe_key(self) -> Tuple[datetime, str]:
        return (self.checked_at, self.source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "checkedAt": self.checked_at.isoformat(),
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeeklyCheck":
        checked_at = data["checkedAt"]
        if isinstance(checked_at, str):
            checked_at = datetime.fromisoformat(checked_at)
        return cls(rank=data.get("rank"), checked_at=checked_at, source=data.get("source") or "")


@dataclass(frozen=True)
class Observation:
    """
    A single normalized rank check.

    Created only by the normalizer, never mutated. `rank is None` means
    "not found in the tracked range" and implies `in_top_100 is False`.
    """
    domain: str
    keyword: str
    rank: Optional[int]
    checked_at: datetime
    source: str
    location: Optional[str] = None
    location_code: Optional[int] = None
    difficulty: Optional[float] = None
    client_id: Optional[UUID] = None
    keyword_id: Optional[UUID] = None

    @property
    def in_top_100(self) -> bool:
        return self.rank is not None

    @property
    def year(self) -> int:
        return self.checked_at.year

    @property
    def month(self) -> int:
        return self.checked_at.month

    @property
    def client_key(self) -> str:
        return client_key_for(self.client_id, self.domain)

    @property
    def bucket_key(self) -> BucketKey:
        return BucketKey(self.client_key, self.keyword, self.year, self.month)

    def to_weekly_check(self) -> WeeklyCheck:
        return WeeklyCheck(rank=self.rank, checked_at=self.checked_at, source=self.source)


# =============================================================================
# BUCKETS
# =============================================================================

@dataclass
class BucketRecord:
    """Read-side view of one stored monthly bucket."""
    id: UUID
    client_key: str
    domain: str
    keyword: str
    year: int
    month: int
    rank: Optional[int] = None
    previous_rank: Optional[int] = None
    rank_change: Optional[int] = None
    in_top_100: bool = False
    difficulty: Optional[float] = None
    location: Optional[str] = None
    location_code: Optional[int] = None
    source: Optional[str] = None
    checked_at: Optional[datetime] = None
    client_id: Optional[UUID] = None
    keyword_id: Optional[UUID] = None
    weekly_checks: List[WeeklyCheck] = field(default_factory=list)
    revision: int = 0
    schema_version: int = 1

    @property
    def key(self) -> BucketKey:
        return BucketKey(self.client_key, self.keyword, self.year, self.month)

    @property
    def period(self) -> Tuple[int, int]:
        return (self.year, self.month)

    @property
    def month_key(self) -> str:
        return month_key(self.year, self.month)

    @property
    def month_name(self) -> str:
        return month_name(self.year, self.month)

    @property
    def is_linked(self) -> bool:
        return self.client_id is not None

    def to_document(self) -> Dict[str, Any]:
        """Persisted shape, field for field, for downstream tooling."""
        return {
            "domain": self.domain,
            "keyword": self.keyword,
            "rank": self.rank,
            "inTop100": self.in_top_100,
            "difficulty": self.difficulty,
            "location": self.location,
            "locationCode": self.location_code,
            "source": self.source,
            "checkedAt": self.checked_at.isoformat() if self.checked_at else None,
            "month": self.month,
            "year": self.year,
            "previousRank": self.previous_rank,
            "rankChange": self.rank_change,
            "client": str(self.client_id) if self.client_id else None,
            "keywordId": str(self.keyword_id) if self.keyword_id else None,
            "weeklyChecks": [c.to_dict() for c in self.weekly_checks],
        }


@dataclass
class UpsertOutcome:
    """Result of one bucket write."""
    status: UpsertStatus
    key: BucketKey
    bucket_id: Optional[UUID] = None
    rank: Optional[int] = None
    rank_change: Optional[int] = None
    weekly_check_count: int = 0

    @property
    def changed(self) -> bool:
        return self.status != UpsertStatus.DUPLICATE


@dataclass
class ClientRecord:
    """Client directory entry."""
    id: UUID
    name: str
    website: Optional[str] = None
    domain: Optional[str] = None
