"""
Client linkage repair.

Buckets written before a client existed (or while the client lookup
failed) are keyed by domain with client = null. This job resolves each
one by its exact normalized domain and moves it under the client:

- no linked bucket owns the target key: the orphan is re-keyed in place,
  rank and weeklyChecks untouched
- a linked bucket already owns it: the orphan's checks are merged into
  that bucket with the ingestion merge rules, then the orphan is removed

Afterwards every touched (client, keyword) chain gets its previousRank
and rankChange recomputed. Running the job twice is a no-op.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from uuid import UUID

from rankwatch.database.clients import ClientDirectory
from rankwatch.database.repository import RankHistoryRepository
from rankwatch.errors import StoreError
from rankwatch.ingestion.merge import fold_checks
from rankwatch.models import BucketKey, BucketRecord, ClientRecord, client_key_for
from .renormalize import RenormalizeReport, renormalize_chain

logger = logging.getLogger(__name__)

# Lost compare-and-swap races tolerated per orphan
_MAX_LINK_ATTEMPTS = 5


@dataclass
class ReconciliationReport:
    """Outcome of one linkage repair run."""
    scanned: int = 0
    linked: int = 0
    merged: int = 0
    unresolved: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    chains_recomputed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanned": self.scanned,
            "linked": self.linked,
            "merged": self.merged,
            "unresolved": sorted(set(self.unresolved)),
            "errors": self.errors,
            "chainsRecomputed": self.chains_recomputed,
        }


def _link_one(
    repository: RankHistoryRepository,
    orphan: BucketRecord,
    client: ClientRecord,
) -> Optional[str]:
    """Move one orphan under client. Returns 'linked', 'merged' or None (gave up)."""
    target_key = BucketKey(client_key_for(client.id, ""), orphan.keyword, orphan.year, orphan.month)

    for _ in range(_MAX_LINK_ATTEMPTS):
        existing = repository.find_bucket(target_key)

        if existing is None:
            if repository.relink_bucket(orphan.id, orphan.revision, client.id):
                return "linked"
        else:
            values = fold_checks(existing.weekly_checks, orphan.weekly_checks, existing.previous_rank)
            if values is None or repository.update_bucket(existing.id, existing.revision, values):
                if repository.delete_bucket(orphan.id, orphan.revision):
                    return "merged"

        # Someone wrote in between; start over from fresh rows
        refreshed = repository.find_bucket(orphan.key)
        if refreshed is None:
            # Already moved by a concurrent run
            return "merged"
        orphan = refreshed

    return None


def link_buckets_to_clients(
    repository: RankHistoryRepository,
    directory: ClientDirectory,
    on_change: Optional[Callable[[BucketRecord], None]] = None,
) -> ReconciliationReport:
    """
    Attach every client-less bucket to the client owning its domain.

    Args:
        repository: Rank history store
        directory: Client lookup
        on_change: Called with each moved orphan (cache invalidation)

    Returns:
        ReconciliationReport
    """
    report = ReconciliationReport()
    touched: Set[Tuple[UUID, str]] = set()

    orphans = repository.list_unlinked_buckets()
    logger.info(f"Linking {len(orphans)} client-less bucket(s)")

    for orphan in orphans:
        report.scanned += 1
        client = directory.find_by_domain(orphan.domain)
        if client is None:
            report.unresolved.append(orphan.domain)
            continue

        try:
            result = _link_one(repository, orphan, client)
        except StoreError as e:
            logger.error(f"Linking {orphan.key} to client {client.id} failed: {e}")
            report.errors.append({"bucket": str(orphan.key), "error": str(e)})
            continue

        if result is None:
            logger.warning(f"Gave up linking {orphan.key}: kept losing write races")
            report.errors.append({"bucket": str(orphan.key), "error": "write conflict"})
            continue

        if result == "linked":
            report.linked += 1
        else:
            report.merged += 1
        touched.add((client.id, orphan.keyword))

        if on_change is not None:
            on_change(orphan)

    chains = RenormalizeReport()
    for client_id, keyword in sorted(touched, key=lambda t: (str(t[0]), t[1])):
        owner = client_key_for(client_id, "")
        chain = [
            b for b in repository.list_buckets(client_id=client_id)
            if b.client_key == owner and b.keyword == keyword
        ]
        renormalize_chain(repository, chain, chains)
    report.chains_recomputed = chains.chains

    if report.unresolved:
        logger.warning(f"No client for domain(s): {', '.join(sorted(set(report.unresolved)))}")
    logger.info(
        f"Linkage repair complete: {report.linked} linked, {report.merged} merged, "
        f"{len(report.unresolved)} unresolved, {len(report.errors)} errors"
    )
    return report
