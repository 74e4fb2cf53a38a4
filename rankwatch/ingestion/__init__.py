"""
Ingestion: raw rank checks to normalized observations to monthly buckets.
"""

from .merge import merge_weekly_checks, fold_checks, bucket_state
from .normalizer import (
    normalize_observation,
    normalize_rank,
    normalize_keyword,
    parse_checked_at,
)
from .bucketer import PeriodBucketer

__all__ = [
    "merge_weekly_checks",
    "fold_checks",
    "bucket_state",
    "normalize_observation",
    "normalize_rank",
    "normalize_keyword",
    "parse_checked_at",
    "PeriodBucketer",
]
