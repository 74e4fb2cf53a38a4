"""
Rank Collection Module

Fetches live SERP positions from the rank-check provider.
"""

from .client import RankCheckClient, RankCheckResult, RetryConfig, safe_get_items, find_domain_rank
from .orchestrator import RankCollector, RankTarget, CollectionSummary, load_targets

__all__ = [
    "RankCheckClient",
    "RankCheckResult",
    "RetryConfig",
    "safe_get_items",
    "find_domain_rank",
    "RankCollector",
    "RankTarget",
    "CollectionSummary",
    "load_targets",
]
