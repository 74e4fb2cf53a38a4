"""
Rankwatch Services Layer

Business logic services that orchestrate the store, the aggregation
pipeline and the snapshot cache.
"""

from .ingestion import IngestionService, IngestionResult
from .comparison import ComparisonService, ComparisonReport

__all__ = [
    "IngestionService",
    "IngestionResult",
    "ComparisonService",
    "ComparisonReport",
]
