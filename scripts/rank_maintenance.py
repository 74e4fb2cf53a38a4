#!/usr/bin/env python3
"""
Rank history maintenance.

Usage:
    python scripts/rank_maintenance.py link-clients
    python scripts/rank_maintenance.py renormalize
    python scripts/rank_maintenance.py import-csv sheet.csv --domain example.com
    python scripts/rank_maintenance.py collect --client <uuid>
    python scripts/rank_maintenance.py invalidate-cache --domain example.com
    python scripts/rank_maintenance.py invalidate-cache --all
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from uuid import UUID

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from rankwatch.cache import CacheEvent, CacheInvalidator, SnapshotCache
from rankwatch.collector import RankCheckClient, RankCollector, load_targets
from rankwatch.database import (
    SQLClientDirectory,
    SQLRankHistoryRepository,
    get_session_factory,
    init_db,
)
from rankwatch.errors import RankwatchError
from rankwatch.ingestion import PeriodBucketer
from rankwatch.jobs import import_rank_csv, link_buckets_to_clients, renormalize_buckets
from rankwatch.models import client_key_for
from rankwatch.services import IngestionService
from rankwatch.utils.domain import normalize_domain

logger = logging.getLogger("rank_maintenance")


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_ingestion() -> IngestionService:
    session_factory = get_session_factory()
    repository = SQLRankHistoryRepository(session_factory)
    invalidator = CacheInvalidator(SnapshotCache(session_factory))
    bucketer = PeriodBucketer(repository, on_write=invalidator.on_bucket_written)
    return IngestionService(bucketer, SQLClientDirectory(session_factory))


def cmd_link_clients(args) -> dict:
    session_factory = get_session_factory()
    invalidator = CacheInvalidator(SnapshotCache(session_factory))
    report = link_buckets_to_clients(
        SQLRankHistoryRepository(session_factory),
        SQLClientDirectory(session_factory),
        on_change=invalidator.on_bucket_written,
    )
    return report.to_dict()


def cmd_renormalize(args) -> dict:
    session_factory = get_session_factory()
    report = renormalize_buckets(SQLRankHistoryRepository(session_factory), batch_size=args.batch_size)
    if report.updated:
        SnapshotCache(session_factory).invalidate_all()
    return report.to_dict()


def cmd_import_csv(args) -> dict:
    report = import_rank_csv(
        args.path,
        build_ingestion(),
        domain=args.domain,
        client_id=args.client,
        location=args.location,
        location_code=args.location_code,
    )
    return report.to_dict()


def cmd_collect(args) -> dict:
    targets = load_targets(get_session_factory(), client_id=args.client)
    ingestion = build_ingestion()

    async def run():
        async with RankCheckClient() as client:
            return await RankCollector(client, ingestion, concurrency=args.concurrency).run(targets)

    return asyncio.run(run()).to_dict()


def cmd_invalidate_cache(args) -> dict:
    invalidator = CacheInvalidator(SnapshotCache(get_session_factory()))
    if args.all:
        result = invalidator.handle_event(CacheEvent.MANUAL_INVALIDATE_ALL)
    else:
        result = invalidator.handle_event(
            CacheEvent.MANUAL_INVALIDATE_SCOPE,
            scope_key=client_key_for(args.client, "") if args.client else None,
            domain=normalize_domain(args.domain) or None,
        )
    return {
        "event": result.event.value,
        "success": result.success,
        "snapshotsInvalidated": result.snapshots_invalidated,
        "errors": result.errors,
    }


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Rank history maintenance jobs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("link-clients", help="Attach client-less buckets to their clients")

    renormalize = subparsers.add_parser("renormalize", help="Dedupe weekly checks and recompute ranks")
    renormalize.add_argument("--batch-size", type=int, default=500)

    importer = subparsers.add_parser("import-csv", help="Import a weekly ranking sheet")
    importer.add_argument("path", help="CSV file (CLIENT, KEYWORDS, INITIAL RANK, dd-mm-yyyy...)")
    importer.add_argument("--domain", default=None, help="Domain for every row (default: CLIENT column)")
    importer.add_argument("--client", type=UUID, default=None, help="Client id for every row")
    importer.add_argument("--location", default=None)
    importer.add_argument("--location-code", type=int, default=None)

    collect = subparsers.add_parser("collect", help="Check ranks for tracked keywords")
    collect.add_argument("--client", type=UUID, default=None, help="Only this client")
    collect.add_argument("--concurrency", type=int, default=None)

    invalidate = subparsers.add_parser("invalidate-cache", help="Drop cached comparison snapshots")
    target = invalidate.add_mutually_exclusive_group(required=True)
    target.add_argument("--client", type=UUID, default=None, help="Snapshots for this client")
    target.add_argument("--domain", default=None, help="Snapshots for this domain")
    target.add_argument("--all", action="store_true", help="Every snapshot")

    args = parser.parse_args()

    load_dotenv()
    setup_logging(args.verbose)
    init_db()

    commands = {
        "link-clients": cmd_link_clients,
        "renormalize": cmd_renormalize,
        "import-csv": cmd_import_csv,
        "collect": cmd_collect,
        "invalidate-cache": cmd_invalidate_cache,
    }

    try:
        result = commands[args.command](args)
    except RankwatchError as e:
        logger.error(f"{args.command} failed: {e}")
        sys.exit(1)

    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
