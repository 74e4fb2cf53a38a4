"""
Comparison Service

Read-path facade for the rank comparison dashboard:
1. Resolve the scope (client, or bare domain)
2. Serve from the snapshot cache when fresh
3. Otherwise load buckets, aggregate, derive insights, cache the result

Orphan buckets (no client) whose domain matches the client's domain are
included and reported as linkage warnings rather than silently dropped.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Collection, Dict, List, Optional, Sequence
from uuid import UUID

from rankwatch.cache.config import CacheTTL
from rankwatch.cache.snapshot import SnapshotCache, range_key, touches_open_period
from rankwatch.database.clients import ClientDirectory
from rankwatch.database.repository import RankHistoryRepository
from rankwatch.errors import LinkageInconsistency, ScopeNotFoundError, ValidationError
from rankwatch.insights.rules import generate_insights
from rankwatch.models import BucketRecord, client_key_for
from rankwatch.trends.aggregation import build_aggregate
from rankwatch.utils.dates import Period, iter_periods, utcnow
from rankwatch.utils.domain import normalize_domain

logger = logging.getLogger(__name__)


@dataclass
class ComparisonReport:
    """Read contract plus insights and warnings for one scope and window."""
    scope_key: str
    domain: Optional[str]
    contract: Dict[str, Any]
    insights: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    from_cache: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.contract,
            "insights": self.insights,
            "warnings": self.warnings,
        }

    @classmethod
    def from_snapshot(cls, scope_key: str, domain: Optional[str], data: Dict[str, Any]) -> "ComparisonReport":
        contract = {k: v for k, v in data.items() if k not in ("insights", "warnings")}
        return cls(
            scope_key=scope_key,
            domain=domain,
            contract=contract,
            insights=data.get("insights", []),
            warnings=data.get("warnings", []),
            from_cache=True,
        )


def linkage_warnings(
    buckets: Sequence[BucketRecord],
    unresolved: Collection[UUID] = frozenset(),
    include_orphans: bool = True,
) -> List[LinkageInconsistency]:
    """
    One warning per (domain, keyword) with client-less buckets, and one per
    (domain, keyword) whose buckets point at a client in `unresolved`.
    """
    warnings = []
    if include_orphans:
        orphans = Counter((b.domain, b.keyword) for b in buckets if b.client_id is None)
        warnings.extend(
            LinkageInconsistency(domain=domain, keyword=keyword, bucket_count=count)
            for (domain, keyword), count in sorted(orphans.items())
        )

    dangling = Counter((b.domain, b.keyword) for b in buckets if b.client_id in unresolved)
    warnings.extend(
        LinkageInconsistency(
            domain=domain,
            keyword=keyword,
            bucket_count=count,
            message=f"{count} bucket(s) for '{keyword}' on {domain} point at a client that no longer exists",
        )
        for (domain, keyword), count in sorted(dangling.items())
    )
    return warnings


class ComparisonService:
    """Service for rank comparison reads."""

    def __init__(
        self,
        repository: RankHistoryRepository,
        directory: ClientDirectory,
        cache: Optional[SnapshotCache] = None,
        clock: Callable[[], Any] = utcnow,
    ):
        self.repository = repository
        self.directory = directory
        self.cache = cache
        self._clock = clock

    def get_comparison(
        self,
        client_id: Optional[UUID] = None,
        domain: Optional[str] = None,
        start: Optional[Period] = None,
        end: Optional[Period] = None,
        use_cache: bool = True,
    ) -> ComparisonReport:
        """
        Build the comparison report for a client or a domain.

        Args:
            client_id: Client scope (includes its domain's orphan buckets)
            domain: Domain scope, used when no client is given
            start: First (year, month) of the window, inclusive
            end: Last (year, month) of the window, inclusive
            use_cache: Read/write the snapshot cache

        Raises:
            ScopeNotFoundError: unknown client
            ValidationError: no scope, or start after end
        """
        if start and end and start > end:
            raise ValidationError(f"start {start} is after end {end}", field="start", value=start)

        if client_id is not None:
            client = self.directory.get_client(client_id)
            if client is None:
                raise ScopeNotFoundError(f"Client {client_id} not found")
            scope_domain = client.domain or normalize_domain(domain) or None
            scope_key = client_key_for(client_id, "")
        elif domain:
            scope_domain = normalize_domain(domain)
            if not scope_domain:
                raise ValidationError("Domain is empty after normalization", field="domain", value=domain)
            scope_key = client_key_for(None, scope_domain)
        else:
            raise ValidationError("client_id or domain is required", field="scope")

        window = range_key(start, end)
        caching = use_cache and self.cache is not None and self.cache.enabled

        if caching:
            cached = self.cache.get(scope_key, window)
            if cached is not None:
                logger.debug(f"Comparison cache hit for {scope_key} [{window}]")
                return ComparisonReport.from_snapshot(scope_key, scope_domain, cached)

        started = time.perf_counter()
        buckets = self.repository.list_buckets(
            client_id=client_id,
            domain=scope_domain,
            start=start,
            end=end,
        )

        months = self._month_axis(buckets, start, end)
        aggregate = build_aggregate(buckets, months=months)
        insights = generate_insights(aggregate)

        warnings = list(aggregate.warnings)
        linked = {b.client_id for b in buckets if b.client_id is not None and b.client_id != client_id}
        unresolved = {cid for cid in linked if self.directory.get_client(cid) is None}
        warnings.extend(
            w.to_dict()
            for w in linkage_warnings(buckets, unresolved, include_orphans=client_id is not None)
        )

        report = ComparisonReport(
            scope_key=scope_key,
            domain=scope_domain,
            contract=aggregate.to_dict(),
            insights=[i.to_dict() for i in insights],
            warnings=warnings,
        )
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        logger.info(
            f"Comparison for {scope_key} [{window}]: {len(buckets)} buckets, "
            f"{len(aggregate.keyword_timeline)} keywords, {len(warnings)} warnings in {elapsed_ms}ms"
        )

        if caching:
            ttl = CacheTTL.for_range(touches_open_period(end, now=self._clock()))
            self.cache.set(
                scope_key,
                window,
                report.to_dict(),
                ttl=ttl,
                domain=scope_domain,
                computation_time_ms=elapsed_ms,
            )

        return report

    @staticmethod
    def _month_axis(
        buckets: Sequence[BucketRecord],
        start: Optional[Period],
        end: Optional[Period],
    ) -> List[Period]:
        """Every month from the window start (or first data) to its end (or last data)."""
        periods = [b.period for b in buckets if isinstance(b.month, int) and 1 <= b.month <= 12]
        lo = start or (min(periods) if periods else None)
        hi = end or (max(periods) if periods else None)
        if lo is None or hi is None or lo > hi:
            return []
        return list(iter_periods(lo, hi))
