"""
Rankwatch Error Taxonomy

Ingestion errors are local to one observation and never abort a batch.
Read-path problems are reported per keyword and never blank the dashboard.
"""

from typing import Any, Dict, Optional


class RankwatchError(Exception):
    """Base class for all engine errors."""


class ValidationError(RankwatchError):
    """Malformed observation, rejected before it reaches the store."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class ClosedPeriodError(RankwatchError):
    """Normal ingestion tried to write a month that has already rolled over."""

    def __init__(self, year: int, month: int):
        super().__init__(
            f"Period {year}-{month:02d} is closed; use backfill to write it"
        )
        self.year = year
        self.month = month


class StoreError(RankwatchError):
    """The observation store rejected or failed an operation."""


class StoreTimeout(StoreError):
    """Upsert did not complete within its bound after all retry attempts."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class ScopeNotFoundError(RankwatchError):
    """Comparison requested for a client the directory does not know."""


class MalformedBucketError(RankwatchError):
    """A stored bucket violates the bucket invariants (bad month, bad rank)."""

    def __init__(self, message: str, keyword: Optional[str] = None):
        super().__init__(message)
        self.keyword = keyword


class RankCheckError(RankwatchError):
    """Error returned by the external rank-check provider."""

    def __init__(self, message: str, status_code: int = None, response: dict = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


# =============================================================================
# NON-FATAL CONDITIONS
# =============================================================================
# These are reported in aggregate output, not raised.

class LinkageInconsistency:
    """A bucket with no client (or a client that no longer resolves)."""

    kind = "linkage_inconsistency"

    def __init__(self, domain: str, keyword: str, bucket_count: int = 1, message: str = ""):
        self.domain = domain
        self.keyword = keyword
        self.bucket_count = bucket_count
        self.message = message or f"{bucket_count} bucket(s) for '{keyword}' on {domain} have no client"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "domain": self.domain,
            "keyword": self.keyword,
            "bucketCount": self.bucket_count,
            "message": self.message,
        }

