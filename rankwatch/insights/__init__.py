"""Rule-based insights derived from the aggregated rank history."""

from .rules import (
    Insight,
    InsightType,
    InsightRule,
    InsightContext,
    INSIGHT_RULES,
    generate_insights,
)

__all__ = [
    "Insight",
    "InsightType",
    "InsightRule",
    "InsightContext",
    "INSIGHT_RULES",
    "generate_insights",
]
