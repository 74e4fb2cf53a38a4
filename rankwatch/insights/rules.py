"""
Insight Generator

Maps an aggregated rank history to an ordered list of recommendations.

Rules are a fixed table evaluated in priority order; each emits at most one
insight. Deterministic and side-effect free: the same aggregate always
yields the same insights in the same order.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional

from rankwatch.trends.aggregation import (
    RankHistoryAggregate,
    improvement_ratio,
    is_top_performer,
)

logger = logging.getLogger(__name__)

POSITIVE_RATIO = 0.6
NEGATIVE_RATIO = 0.4
STABLE_OPPORTUNITY_MIN = 10
SAMPLE_KEYWORDS = 3


class InsightType(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    DANGER = "danger"
    INFO = "info"


@dataclass(frozen=True)
class Insight:
    """A derived recommendation; never persisted."""
    type: InsightType
    title: str
    description: str
    actionable: bool = False
    rule: str = ""

    def to_dict(self) -> Dict:
        return {
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "actionable": self.actionable,
        }


@dataclass
class InsightContext:
    """Values the rules read, computed once per aggregate."""
    aggregate: RankHistoryAggregate
    ratio: Optional[float]
    top_keywords: List[str]

    @property
    def summary(self):
        return self.aggregate.summary

    @property
    def categories(self):
        return self.aggregate.performance_categories

    @classmethod
    def from_aggregate(cls, aggregate: RankHistoryAggregate) -> "InsightContext":
        # Timeline order, so the samples are the best-ranked improvers
        top = [e.keyword for e in aggregate.keyword_timeline if is_top_performer(e)]
        return cls(
            aggregate=aggregate,
            ratio=improvement_ratio(aggregate.summary),
            top_keywords=top[:SAMPLE_KEYWORDS],
        )


@dataclass(frozen=True)
class InsightRule:
    """Definition of an insight rule."""
    name: str
    priority: int
    condition: Callable[[InsightContext], bool]
    build: Callable[[InsightContext], Insight]


# =============================================================================
# RULE BUILDERS
# =============================================================================

def _top_performers(ctx: InsightContext) -> Insight:
    names = ", ".join(ctx.top_keywords)
    return Insight(
        type=InsightType.SUCCESS,
        title=f"{ctx.categories.top_performers} keywords showing strong improvement",
        description=(
            f"Great progress on: {names}" if names
            else "Keep up the momentum with your current SEO strategy."
        ),
    )


def _need_attention(ctx: InsightContext) -> Insight:
    return Insight(
        type=InsightType.WARNING,
        title=f"{ctx.categories.need_attention} keywords require immediate attention",
        description=(
            "These keywords are either declining or ranking below position 50. "
            "Consider content updates or backlink building."
        ),
        actionable=True,
    )


def _lost_visibility(ctx: InsightContext) -> Insight:
    return Insight(
        type=InsightType.DANGER,
        title=f"{ctx.categories.lost_visibility} keywords lost rankings",
        description=(
            "These keywords previously ranked but are now out of top 100. "
            "Urgent action needed to recover positions."
        ),
        actionable=True,
    )


def _positive_trend(ctx: InsightContext) -> Insight:
    return Insight(
        type=InsightType.SUCCESS,
        title="Overall positive trend detected",
        description=(
            f"{round(ctx.ratio * 100)}% of changing keywords are improving. "
            "Your SEO efforts are paying off!"
        ),
    )


def _declining_trend(ctx: InsightContext) -> Insight:
    return Insight(
        type=InsightType.WARNING,
        title="More keywords declining than improving",
        description=(
            f"{round((1 - ctx.ratio) * 100)}% of changes are negative. "
            "Consider reviewing your content strategy and technical SEO."
        ),
        actionable=True,
    )


def _stable_opportunity(ctx: InsightContext) -> Insight:
    return Insight(
        type=InsightType.INFO,
        title=f"{ctx.categories.stable} keywords with stable rankings",
        description=(
            "These keywords could be optimized further to break into higher positions. "
            "Consider enhancing content quality."
        ),
        actionable=True,
    )


def _new_keywords(ctx: InsightContext) -> Insight:
    return Insight(
        type=InsightType.INFO,
        title=f"{ctx.summary.new} new keywords tracked this period",
        description="Monitor these closely over the next few weeks to establish baseline performance.",
    )


INSIGHT_RULES: List[InsightRule] = [
    InsightRule("top_performers", 1, lambda c: c.categories.top_performers > 0, _top_performers),
    InsightRule("need_attention", 2, lambda c: c.categories.need_attention > 0, _need_attention),
    InsightRule("lost_visibility", 3, lambda c: c.categories.lost_visibility > 0, _lost_visibility),
    InsightRule(
        "positive_trend", 4,
        lambda c: c.ratio is not None and c.ratio > POSITIVE_RATIO,
        _positive_trend,
    ),
    # ratio is None when nothing moved, so "no data" never reads as "declining"
    InsightRule(
        "declining_trend", 5,
        lambda c: c.ratio is not None and c.ratio < NEGATIVE_RATIO,
        _declining_trend,
    ),
    InsightRule(
        "stable_opportunity", 6,
        lambda c: c.categories.stable > STABLE_OPPORTUNITY_MIN,
        _stable_opportunity,
    ),
    InsightRule("new_keywords", 7, lambda c: c.summary.new > 0, _new_keywords),
]


def generate_insights(
    aggregate: RankHistoryAggregate,
    rules: Optional[List[InsightRule]] = None,
) -> List[Insight]:
    """
    Evaluate every rule in priority order.

    Args:
        aggregate: Output of build_aggregate
        rules: Rule table (defaults to INSIGHT_RULES)

    Returns:
        Insights, highest priority first
    """
    ctx = InsightContext.from_aggregate(aggregate)
    insights = []
    for rule in sorted(rules or INSIGHT_RULES, key=lambda r: r.priority):
        if rule.condition(ctx):
            insights.append(replace(rule.build(ctx), rule=rule.name))
    logger.debug(f"Generated {len(insights)} insights ({', '.join(i.rule for i in insights)})")
    return insights
