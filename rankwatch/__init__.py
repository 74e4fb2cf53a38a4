"""
Rankwatch Rank-History Engine

Turns periodic keyword-rank checks into:
1. Monthly buckets with weekly sub-checks (idempotent ingestion)
2. Per-keyword timelines and month-over-month trend labels
3. Corpus-wide summary counts and performance categories
4. Rule-based insights for the comparison dashboard
"""

__version__ = "0.1.0"
