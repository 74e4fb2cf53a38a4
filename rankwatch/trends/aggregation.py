"""
Category & Summary Builder

Pure read path: stored buckets in, dashboard contract out.

    summary               counts per trend label (unknown is not counted)
    performanceCategories topPerformers / needAttention / lostVisibility / stable
    monthlyStats          one entry per month with data, newest first
    keywordTimeline       one entry per keyword, best current rank first

Buckets for the same keyword and month (a linked bucket plus an orphan that
was never repaired) are merged with the ingestion merge rules before
anything is counted.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from rankwatch.errors import MalformedBucketError
from rankwatch.ingestion.merge import bucket_state, merge_weekly_checks
from rankwatch.models import BucketRecord, Trend, WeeklyCheck
from rankwatch.utils.dates import Period, month_key, month_name
from .classifier import TrendResult, classify_keyword, validate_bucket

logger = logging.getLogger(__name__)

# Category thresholds
TOP_PERFORMER_MAX_RANK = 30
NEEDS_ATTENTION_MIN_RANK = 50  # strictly greater than
TOP_10_MAX_RANK = 10


# =============================================================================
# CONTRACT TYPES
# =============================================================================

@dataclass
class Summary:
    improved: int = 0
    declined: int = 0
    unchanged: int = 0
    new: int = 0
    lost: int = 0

    def count(self, trend: Trend) -> None:
        if trend == Trend.IMPROVED:
            self.improved += 1
        elif trend == Trend.DECLINED:
            self.declined += 1
        elif trend == Trend.STABLE:
            self.unchanged += 1
        elif trend == Trend.NEW:
            self.new += 1
        elif trend == Trend.LOST:
            self.lost += 1

    def to_dict(self) -> Dict[str, int]:
        return {
            "improved": self.improved,
            "declined": self.declined,
            "unchanged": self.unchanged,
            "new": self.new,
            "lost": self.lost,
        }


@dataclass
class PerformanceCategories:
    top_performers: int = 0
    need_attention: int = 0
    lost_visibility: int = 0
    stable: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "topPerformers": self.top_performers,
            "needAttention": self.need_attention,
            "lostVisibility": self.lost_visibility,
            "stable": self.stable,
        }


@dataclass
class HistoryPoint:
    """One month of a keyword's history; rank None with no checks is a gap."""
    month_name: str
    rank: Optional[int] = None
    weekly_checks: List[WeeklyCheck] = field(default_factory=list)

    @property
    def is_gap(self) -> bool:
        return self.rank is None and not self.weekly_checks

    def to_dict(self) -> Dict[str, Any]:
        return {
            "monthName": self.month_name,
            "rank": self.rank,
            "weeklyChecks": [c.to_dict() for c in self.weekly_checks],
        }


@dataclass
class KeywordTimelineEntry:
    keyword: str
    trend: Trend
    current_rank: Optional[int] = None
    best_rank: Optional[int] = None
    worst_rank: Optional[int] = None
    average_rank: Optional[float] = None
    total_change: Optional[int] = None
    history: List[HistoryPoint] = field(default_factory=list)

    @classmethod
    def from_trend(cls, keyword: str, result: TrendResult, history: List[HistoryPoint]) -> "KeywordTimelineEntry":
        return cls(
            keyword=keyword,
            trend=result.trend,
            current_rank=result.current_rank,
            best_rank=result.best_rank,
            worst_rank=result.worst_rank,
            average_rank=result.average_rank,
            total_change=result.total_change,
            history=history,
        )

    def sort_key(self):
        # Ranked keywords first, best rank first, then alphabetical
        return (self.current_rank is None, self.current_rank or 0, self.keyword)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keyword": self.keyword,
            "currentRank": self.current_rank,
            "bestRank": self.best_rank,
            "worstRank": self.worst_rank,
            "averageRank": self.average_rank,
            "trend": self.trend.value,
            "totalChange": self.total_change,
            "history": [p.to_dict() for p in self.history],
        }


@dataclass
class MonthlyStat:
    year: int
    month: int
    average_rank: Optional[float] = None
    total_keywords: int = 0
    total_checks: int = 0
    ranked_keywords: int = 0
    top_10: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "monthKey": month_key(self.year, self.month),
            "monthName": month_name(self.year, self.month),
            "averageRank": self.average_rank,
            "totalKeywords": self.total_keywords,
            "stats": {
                "totalChecks": self.total_checks,
                "rankedKeywords": self.ranked_keywords,
                "top10": self.top_10,
            },
        }


@dataclass
class RankHistoryAggregate:
    """The dashboard read contract."""
    summary: Summary
    performance_categories: PerformanceCategories
    monthly_stats: List[MonthlyStat] = field(default_factory=list)
    keyword_timeline: List[KeywordTimelineEntry] = field(default_factory=list)
    months: List[Period] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    merged_duplicates: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "monthlyStats": [m.to_dict() for m in self.monthly_stats],
            "keywordTimeline": [k.to_dict() for k in self.keyword_timeline],
            "performanceCategories": self.performance_categories.to_dict(),
        }


# =============================================================================
# RATIOS & CATEGORIES
# =============================================================================

def improvement_ratio(summary: Summary) -> Optional[float]:
    """improved / (improved + declined); None when nothing moved."""
    denominator = summary.improved + summary.declined
    if denominator == 0:
        return None
    return summary.improved / denominator


def is_top_performer(entry: KeywordTimelineEntry) -> bool:
    return (
        entry.trend == Trend.IMPROVED
        and entry.current_rank is not None
        and entry.current_rank <= TOP_PERFORMER_MAX_RANK
    )


def needs_attention(entry: KeywordTimelineEntry) -> bool:
    if entry.trend == Trend.DECLINED:
        return True
    return entry.current_rank is not None and entry.current_rank > NEEDS_ATTENTION_MIN_RANK


def categorize(timeline: Sequence[KeywordTimelineEntry]) -> PerformanceCategories:
    """
    Count keywords per performance category.

    A stable keyword already flagged as needing attention is not counted
    again as stable. Unknown keywords are not counted anywhere.
    """
    categories = PerformanceCategories()
    for entry in timeline:
        if entry.trend == Trend.UNKNOWN:
            continue
        if is_top_performer(entry):
            categories.top_performers += 1
        flagged = needs_attention(entry)
        if flagged:
            categories.need_attention += 1
        if entry.trend == Trend.LOST:
            categories.lost_visibility += 1
        elif entry.trend == Trend.STABLE and not flagged:
            categories.stable += 1
    return categories


# =============================================================================
# DUPLICATE MERGING
# =============================================================================

def merge_period_buckets(buckets: Sequence[BucketRecord]) -> BucketRecord:
    """
    Collapse several buckets for one keyword and month into one.

    The linked bucket (if any) is the base; checks from all of them are
    merged with the ingestion rules, so nothing is double-counted.
    """
    if len(buckets) == 1:
        return buckets[0]

    ordered = sorted(buckets, key=lambda b: (b.client_id is None, b.client_key))
    base = ordered[0]

    checks: List[WeeklyCheck] = []
    for bucket in ordered:
        checks, _ = merge_weekly_checks(checks, bucket.weekly_checks)

    previous_rank = next((b.previous_rank for b in ordered if b.previous_rank is not None), None)
    if not checks:
        return base

    state = bucket_state(checks, previous_rank)
    return BucketRecord(
        id=base.id,
        client_key=base.client_key,
        domain=base.domain,
        keyword=base.keyword,
        year=base.year,
        month=base.month,
        rank=state["rank"],
        previous_rank=state["previous_rank"],
        rank_change=state["rank_change"],
        in_top_100=state["in_top_100"],
        difficulty=base.difficulty,
        location=base.location,
        location_code=base.location_code,
        source=state["source"],
        checked_at=state["checked_at"],
        client_id=base.client_id,
        keyword_id=base.keyword_id,
        weekly_checks=checks,
        revision=base.revision,
        schema_version=base.schema_version,
    )


def _collapse_periods(buckets: Sequence[BucketRecord]) -> Tuple[List[BucketRecord], int]:
    by_period: Dict[Period, List[BucketRecord]] = defaultdict(list)
    for bucket in buckets:
        by_period[bucket.period].append(bucket)

    merged = []
    duplicates = 0
    for period in sorted(by_period):
        group = by_period[period]
        duplicates += len(group) - 1
        merged.append(merge_period_buckets(group))
    return merged, duplicates


# =============================================================================
# AGGREGATE
# =============================================================================

def _history(buckets: Sequence[BucketRecord], months: Sequence[Period]) -> List[HistoryPoint]:
    by_period = {b.period: b for b in buckets}
    points = []
    for year, month in months:
        bucket = by_period.get((year, month))
        if bucket is None:
            points.append(HistoryPoint(month_name=month_name(year, month)))
        else:
            points.append(HistoryPoint(
                month_name=month_name(year, month),
                rank=bucket.rank,
                weekly_checks=list(bucket.weekly_checks),
            ))
    return points


def _monthly_stats(buckets: Sequence[BucketRecord]) -> List[MonthlyStat]:
    by_period: Dict[Period, List[BucketRecord]] = defaultdict(list)
    for bucket in buckets:
        by_period[bucket.period].append(bucket)

    stats = []
    for (year, month) in sorted(by_period, reverse=True):
        group = by_period[(year, month)]
        ranks = [b.rank for b in group if b.rank is not None]
        stats.append(MonthlyStat(
            year=year,
            month=month,
            average_rank=round(sum(ranks) / len(ranks), 1) if ranks else None,
            total_keywords=len(group),
            total_checks=sum(len(b.weekly_checks) for b in group),
            ranked_keywords=len(ranks),
            top_10=sum(1 for r in ranks if r <= TOP_10_MAX_RANK),
        ))
    return stats


def build_aggregate(
    buckets: Sequence[BucketRecord],
    months: Optional[Sequence[Period]] = None,
) -> RankHistoryAggregate:
    """
    Build the dashboard contract from stored buckets.

    Args:
        buckets: Every bucket in scope and window, in any order
        months: Month axis for keyword histories (defaults to every
                month that has at least one bucket)

    Returns:
        RankHistoryAggregate; a malformed keyword becomes trend "unknown"
        plus a warning instead of failing the whole aggregate
    """
    by_keyword: Dict[str, List[BucketRecord]] = defaultdict(list)
    for bucket in buckets:
        by_keyword[bucket.keyword].append(bucket)

    warnings: List[Dict[str, Any]] = []
    clean: Dict[str, List[BucketRecord]] = {}
    timeline: List[KeywordTimelineEntry] = []
    duplicates = 0

    for keyword, keyword_buckets in by_keyword.items():
        try:
            for bucket in keyword_buckets:
                validate_bucket(bucket)
            merged, merged_count = _collapse_periods(keyword_buckets)
            clean[keyword] = merged
            duplicates += merged_count
        except MalformedBucketError as e:
            logger.warning(f"Skipping malformed history for '{keyword}': {e}")
            warnings.append({"type": "malformed_bucket", "keyword": keyword, "message": str(e)})
            timeline.append(KeywordTimelineEntry(keyword=keyword, trend=Trend.UNKNOWN))

    all_clean = [b for merged in clean.values() for b in merged]
    if months is None:
        months = sorted({b.period for b in all_clean})
    months = list(months)

    summary = Summary()
    for keyword, merged in clean.items():
        result = classify_keyword(merged)
        summary.count(result.trend)
        timeline.append(KeywordTimelineEntry.from_trend(keyword, result, _history(merged, months)))

    timeline.sort(key=KeywordTimelineEntry.sort_key)

    if duplicates:
        logger.info(f"Merged {duplicates} duplicate bucket(s) on read")

    return RankHistoryAggregate(
        summary=summary,
        performance_categories=categorize(timeline),
        monthly_stats=_monthly_stats(all_clean),
        keyword_timeline=timeline,
        months=months,
        warnings=warnings,
        merged_duplicates=duplicates,
    )
