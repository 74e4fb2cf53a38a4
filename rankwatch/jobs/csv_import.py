"""
Weekly ranking sheet import.

Imports the spreadsheet export used before automated tracking:

    CLIENT,KEYWORDS,INITIAL RANK,06-01-2025,13-01-2025,...
    example.com,dental implants,61,45,44,...

Every dd-mm-yyyy column is one weekly check. "NI" or an empty cell means
the domain was not in the top 100 that week. INITIAL RANK carries no date
and is not imported. Checks go through the normal ingestion path with
backfill enabled, so re-importing the same sheet changes nothing.
"""

import csv
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
from uuid import UUID

from rankwatch.models import RankSource
from rankwatch.services.ingestion import IngestionService

logger = logging.getLogger(__name__)

CLIENT_COLUMN = "CLIENT"
KEYWORD_COLUMN = "KEYWORDS"
INITIAL_RANK_COLUMN = "INITIAL RANK"


@dataclass
class ImportReport:
    """Outcome of one sheet import."""
    rows: int = 0
    checks: int = 0
    created: int = 0
    updated: int = 0
    duplicates: int = 0
    rejected: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": self.rows,
            "checks": self.checks,
            "created": self.created,
            "updated": self.updated,
            "duplicates": self.duplicates,
            "rejected": self.rejected,
            "errors": self.errors,
        }


def parse_date_header(header: str) -> Optional[datetime]:
    """'13-01-2025' -> datetime(2025, 1, 13); None for anything else."""
    try:
        return datetime.strptime(header.strip(), "%d-%m-%Y")
    except ValueError:
        return None


def _date_columns(headers: List[str]) -> List[Tuple[str, datetime]]:
    columns = []
    for header in headers:
        if header in (CLIENT_COLUMN, KEYWORD_COLUMN, INITIAL_RANK_COLUMN) or not header.strip():
            continue
        checked_at = parse_date_header(header)
        if checked_at is None:
            logger.warning(f"Ignoring column {header!r}: not a dd-mm-yyyy date")
            continue
        columns.append((header, checked_at))
    return columns


def import_rank_csv(
    path: Union[str, Path],
    ingestion: IngestionService,
    domain: Optional[str] = None,
    client_id: Optional[UUID] = None,
    location: Optional[str] = None,
    location_code: Optional[int] = None,
    source: str = RankSource.IMPORT.value,
) -> ImportReport:
    """
    Import a weekly ranking sheet.

    Args:
        path: CSV file
        ingestion: Ingestion service (normalizer + bucketer)
        domain: Domain for every row; defaults to each row's CLIENT value
        client_id: Client for every row; resolved by domain when omitted
        location: Location label stored on the buckets
        location_code: Location code stored on the buckets
        source: Source tag for the imported checks

    Returns:
        ImportReport; bad rows and cells are reported there, never raised
    """
    report = ImportReport()
    path = Path(path)

    with path.open(newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f, skipinitialspace=True)
        reader.fieldnames = [h.strip() for h in (reader.fieldnames or [])]
        columns = _date_columns(reader.fieldnames)
        logger.info(f"Importing {path.name}: {len(columns)} weekly column(s)")

        for line, row in enumerate(reader, start=2):
            keyword = (row.get(KEYWORD_COLUMN) or "").strip()
            if not keyword:
                continue
            report.rows += 1

            row_domain = domain or (row.get(CLIENT_COLUMN) or "").strip()
            raws = [
                {
                    "domain": row_domain,
                    "keyword": keyword,
                    "rank": (row.get(header) or "").strip() or None,
                    "checkedAt": checked_at,
                    "source": source,
                    "client": client_id,
                    "location": location,
                    "locationCode": location_code,
                }
                for header, checked_at in columns
            ]

            for result in ingestion.ingest_many(raws, backfill=True):
                report.checks += 1
                if result.status == "created":
                    report.created += 1
                elif result.status == "updated":
                    report.updated += 1
                elif result.status == "duplicate":
                    report.duplicates += 1
                else:
                    report.rejected += 1
                    report.errors.append({
                        "line": line,
                        "keyword": keyword,
                        "column": columns[result.index][0],
                        "error": result.error,
                    })

    logger.info(
        f"Import of {path.name} complete: {report.rows} keywords, {report.checks} checks, "
        f"{report.created} created, {report.updated} updated, {report.duplicates} duplicates, "
        f"{report.rejected} rejected"
    )
    return report
