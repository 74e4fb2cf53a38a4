"""
Weekly-check merge rules.

The same rules are used when a new observation is folded into a bucket,
when two buckets for one period are merged on read, when an orphan is
folded into its client's bucket, and when buckets are re-normalized:

- checks are unique by (checkedAt, source), first occurrence wins
- checks are ordered by checkedAt (source breaks ties)
- the bucket rank is the rank of the last check
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

from rankwatch.models import WeeklyCheck
from rankwatch.trends.classifier import compute_rank_delta


def _order(check: WeeklyCheck):
    return (check.checked_at, check.source)


def merge_weekly_checks(
    existing: Iterable[WeeklyCheck],
    incoming: Iterable[WeeklyCheck],
) -> Tuple[List[WeeklyCheck], int]:
    """
    Merge two check lists.

    Returns:
        (ordered, deduplicated list, number of incoming checks that were new)
    """
    seen = {}
    for check in existing:
        seen.setdefault(check.dedupe_key, check)

    added = 0
    for check in incoming:
        if check.dedupe_key not in seen:
            seen[check.dedupe_key] = check
            added += 1

    return sorted(seen.values(), key=_order), added


def bucket_state(checks: List[WeeklyCheck], previous_rank: Optional[int]) -> Dict[str, Any]:
    """
    Column values derived from an ordered check list.

    `checks` must be non-empty and already ordered.
    """
    latest = checks[-1]
    return {
        "rank": latest.rank,
        "in_top_100": latest.rank is not None,
        "checked_at": latest.checked_at,
        "source": latest.source,
        "previous_rank": previous_rank,
        "rank_change": compute_rank_delta(previous_rank, latest.rank),
        "weekly_checks": [c.to_dict() for c in checks],
    }


def fold_checks(
    existing: Iterable[WeeklyCheck],
    incoming: Iterable[WeeklyCheck],
    previous_rank: Optional[int],
) -> Optional[Dict[str, Any]]:
    """
    Fold incoming checks into a bucket.

    Returns:
        New column values, or None when every incoming check was a duplicate
    """
    merged, added = merge_weekly_checks(existing, incoming)
    if not added:
        return None
    return bucket_state(merged, previous_rank)
