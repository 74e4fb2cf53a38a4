"""
Trend classification and dashboard aggregation.

Aggregation lives in rankwatch.trends.aggregation; it is not re-exported
here because it depends on the ingestion merge rules.
"""

from .classifier import (
    TrendResult,
    classify_trend,
    classify_keyword,
    compute_rank_delta,
    validate_bucket,
)

__all__ = [
    "TrendResult",
    "classify_trend",
    "classify_keyword",
    "compute_rank_delta",
    "validate_bucket",
]
