"""
Trend Classifier

Labels a keyword's month-over-month movement from its two most recent
monthly buckets. Lower rank is better, so a falling number is an
improvement and every delta is `previous - current`.

Decision table (prev = older bucket, curr = newest bucket):

    curr ranked, prev missing or unranked  -> new
    curr unranked, prev ranked             -> lost
    both unranked                          -> stable
    both ranked: curr < prev               -> improved
                 curr > prev               -> declined
                 equal                     -> stable
    no buckets                             -> unknown
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from rankwatch.errors import MalformedBucketError
from rankwatch.models import BucketRecord, Trend

logger = logging.getLogger(__name__)


def compute_rank_delta(previous_rank: Optional[int], current_rank: Optional[int]) -> Optional[int]:
    """Positive = improvement. None unless both ranks are known."""
    if previous_rank is None or current_rank is None:
        return None
    return previous_rank - current_rank


def classify_trend(
    prev_rank: Optional[int],
    curr_rank: Optional[int],
    has_previous: bool = True,
) -> Trend:
    """
    Classify one keyword from its last two ranks.

    Args:
        prev_rank: Rank of the older bucket (None = not in top 100)
        curr_rank: Rank of the newest bucket (None = not in top 100)
        has_previous: False when the keyword has only one bucket

    Returns:
        Trend label
    """
    if not has_previous:
        prev_rank = None

    if curr_rank is not None and prev_rank is None:
        return Trend.NEW
    if curr_rank is None and prev_rank is not None:
        return Trend.LOST
    if curr_rank is None:
        return Trend.STABLE

    if curr_rank < prev_rank:
        return Trend.IMPROVED
    if curr_rank > prev_rank:
        return Trend.DECLINED
    return Trend.STABLE


@dataclass
class TrendResult:
    """Per-keyword trend plus the rank statistics the timeline shows."""
    trend: Trend
    current_rank: Optional[int] = None
    previous_rank: Optional[int] = None
    best_rank: Optional[int] = None
    worst_rank: Optional[int] = None
    average_rank: Optional[float] = None
    total_change: Optional[int] = None


def validate_bucket(bucket: BucketRecord) -> None:
    """
    Raise MalformedBucketError for data the classifier cannot trust.

    Booleans are rejected explicitly since `True` is an int in Python.
    """
    if not isinstance(bucket.month, int) or not 1 <= bucket.month <= 12:
        raise MalformedBucketError(f"Invalid month {bucket.month!r}", keyword=bucket.keyword)
    if not isinstance(bucket.year, int) or isinstance(bucket.year, bool):
        raise MalformedBucketError(f"Invalid year {bucket.year!r}", keyword=bucket.keyword)
    rank = bucket.rank
    if rank is not None and (isinstance(rank, bool) or not isinstance(rank, int) or rank < 1):
        raise MalformedBucketError(f"Invalid rank {rank!r}", keyword=bucket.keyword)


def classify_keyword(buckets: Sequence[BucketRecord]) -> TrendResult:
    """
    Classify one keyword from all of its buckets in the window.

    Buckets must already be merged to one per period. They are sorted
    here, so callers may pass them in any order.

    Raises:
        MalformedBucketError: if any bucket fails validation
    """
    if not buckets:
        return TrendResult(trend=Trend.UNKNOWN)

    for bucket in buckets:
        validate_bucket(bucket)

    ordered = sorted(buckets, key=lambda b: b.period)
    curr = ordered[-1]
    prev = ordered[-2] if len(ordered) > 1 else None

    trend = classify_trend(
        prev.rank if prev else None,
        curr.rank,
        has_previous=prev is not None,
    )

    ranks: List[int] = [b.rank for b in ordered if b.rank is not None]
    first_rank = ranks[0] if ranks else None

    return TrendResult(
        trend=trend,
        current_rank=curr.rank,
        previous_rank=prev.rank if prev else None,
        best_rank=min(ranks) if ranks else None,
        worst_rank=max(ranks) if ranks else None,
        average_rank=round(sum(ranks) / len(ranks), 1) if ranks else None,
        total_change=compute_rank_delta(first_rank, curr.rank),
    )
