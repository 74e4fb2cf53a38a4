"""
Bucket re-normalization.

Repairs buckets written before the merge rules were enforced:
duplicate weekly checks, out-of-order checks, a rank that is not the
latest check, and previousRank/rankChange chains that skipped a month.

Runs through the repository contract, so every write is a
compare-and-swap and concurrent ingestion is never overwritten.
"""

import logging
from dataclasses import dataclass, field
from itertools import groupby
from typing import Any, Dict, List, Optional, Sequence

from rankwatch.database.repository import RankHistoryRepository
from rankwatch.ingestion.merge import bucket_state, merge_weekly_checks
from rankwatch.models import BucketRecord
from rankwatch.trends.classifier import compute_rank_delta

logger = logging.getLogger(__name__)


@dataclass
class RenormalizeReport:
    """Counts from one re-normalization pass."""
    scanned: int = 0
    chains: int = 0
    updated: int = 0
    duplicates_removed: int = 0
    conflicts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanned": self.scanned,
            "chains": self.chains,
            "updated": self.updated,
            "duplicatesRemoved": self.duplicates_removed,
            "conflicts": self.conflicts,
        }


def _target_state(bucket: BucketRecord, previous_rank: Optional[int]) -> Dict[str, Any]:
    checks, _ = merge_weekly_checks(bucket.weekly_checks, [])
    if checks:
        return bucket_state(checks, previous_rank)
    # Legacy bucket with no check history: trust the stored rank
    return {
        "rank": bucket.rank,
        "in_top_100": bucket.rank is not None,
        "previous_rank": previous_rank,
        "rank_change": compute_rank_delta(previous_rank, bucket.rank),
    }


def _current_state(bucket: BucketRecord, keys) -> Dict[str, Any]:
    current = {
        "rank": bucket.rank,
        "in_top_100": bucket.in_top_100,
        "checked_at": bucket.checked_at,
        "source": bucket.source,
        "previous_rank": bucket.previous_rank,
        "rank_change": bucket.rank_change,
        "weekly_checks": [c.to_dict() for c in bucket.weekly_checks],
    }
    return {k: current[k] for k in keys}


def renormalize_chain(
    repository: RankHistoryRepository,
    chain: Sequence[BucketRecord],
    report: Optional[RenormalizeReport] = None,
) -> RenormalizeReport:
    """
    Re-derive every bucket of one (owner, keyword) chain.

    `chain` must hold all buckets of the chain in period order.
    """
    report = report or RenormalizeReport()
    report.chains += 1
    previous_rank: Optional[int] = None

    for bucket in chain:
        report.scanned += 1
        target = _target_state(bucket, previous_rank)

        if target != _current_state(bucket, target.keys()):
            removed = len(bucket.weekly_checks) - len(target.get("weekly_checks", bucket.weekly_checks))
            if repository.update_bucket(bucket.id, bucket.revision, target):
                report.updated += 1
                report.duplicates_removed += removed
                logger.debug(f"Re-normalized {bucket.key} (removed {removed} duplicate check(s))")
            else:
                # Concurrent ingestion won; the next pass picks it up
                report.conflicts.append(str(bucket.key))
                logger.warning(f"Skipped {bucket.key}: changed during re-normalization")

        previous_rank = target["rank"]

    return report


def renormalize_buckets(repository: RankHistoryRepository, batch_size: int = 500) -> RenormalizeReport:
    """
    Re-sort and dedupe weekly checks and recompute rank, inTop100,
    previousRank and rankChange for every bucket.

    Idempotent: a second pass over a clean store updates nothing.
    """
    report = RenormalizeReport()
    logger.info("Re-normalizing rank buckets")

    buckets = repository.iter_buckets(batch_size=batch_size)
    for _, chain in groupby(buckets, key=lambda b: (b.client_key, b.keyword)):
        renormalize_chain(repository, list(chain), report)

    logger.info(
        f"Re-normalization complete: {report.scanned} buckets in {report.chains} chains, "
        f"{report.updated} updated, {report.duplicates_removed} duplicate checks removed, "
        f"{len(report.conflicts)} conflicts"
    )
    return report
