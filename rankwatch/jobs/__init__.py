"""
Maintenance jobs: linkage repair, re-normalization and sheet imports.
"""

from .renormalize import RenormalizeReport, renormalize_buckets, renormalize_chain
from .linking import ReconciliationReport, link_buckets_to_clients
from .csv_import import ImportReport, import_rank_csv, parse_date_header

__all__ = [
    "RenormalizeReport",
    "renormalize_buckets",
    "renormalize_chain",
    "ReconciliationReport",
    "link_buckets_to_clients",
    "ImportReport",
    "import_rank_csv",
    "parse_date_header",
]
