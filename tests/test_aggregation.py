"""
Tests for the category & summary builder.

These tests verify:
- The dashboard read contract shape
- Summary counts and performance categories
- Gap months rendered as null history points
- Duplicate buckets for one period merged on read
- Malformed keywords isolated as "unknown"
"""

import pytest
from datetime import datetime
from uuid import uuid4

from rankwatch.models import Trend, WeeklyCheck
from rankwatch.trends.aggregation import (
    Summary,
    build_aggregate,
    categorize,
    improvement_ratio,
    merge_period_buckets,
)

from conftest import make_bucket


def entry_for(aggregate, keyword):
    return next(e for e in aggregate.keyword_timeline if e.keyword == keyword)


class TestSummaryAndCategories:
    """Summary counts and category membership."""

    def test_scenarios(self, sample_buckets):
        aggregate = build_aggregate(sample_buckets)

        implants = entry_for(aggregate, "dental implants")
        assert implants.trend == Trend.IMPROVED
        assert implants.total_change == 23

        emergency = entry_for(aggregate, "emergency dentist")
        assert emergency.trend == Trend.LOST

        summary = aggregate.summary
        assert (summary.improved, summary.declined, summary.unchanged, summary.new, summary.lost) == (1, 0, 1, 0, 1)

        categories = aggregate.performance_categories
        assert categories.top_performers == 1
        assert categories.lost_visibility == 1
        assert categories.stable == 1
        assert categories.need_attention == 0

    def test_lost_only_in_lost_visibility(self):
        aggregate = build_aggregate([
            make_bucket("gone", 2025, 1, 60),
            make_bucket("gone", 2025, 2, None),
        ])
        categories = aggregate.performance_categories

        assert categories.lost_visibility == 1
        assert categories.top_performers == 0
        assert categories.need_attention == 0
        assert categories.stable == 0

    def test_stable_but_deep_needs_attention_not_stable(self):
        aggregate = build_aggregate([
            make_bucket("deep", 2025, 1, 70),
            make_bucket("deep", 2025, 2, 70),
        ])

        assert aggregate.summary.unchanged == 1
        assert aggregate.performance_categories.need_attention == 1
        assert aggregate.performance_categories.stable == 0

    def test_improved_outside_top_30_is_not_top_performer(self):
        aggregate = build_aggregate([
            make_bucket("slow climb", 2025, 1, 60),
            make_bucket("slow climb", 2025, 2, 40),
        ])

        assert aggregate.summary.improved == 1
        assert aggregate.performance_categories.top_performers == 0

    def test_declined_needs_attention(self):
        aggregate = build_aggregate([
            make_bucket("slipping", 2025, 1, 5),
            make_bucket("slipping", 2025, 2, 9),
        ])

        assert aggregate.performance_categories.need_attention == 1

    def test_single_month_keyword_is_new(self):
        aggregate = build_aggregate([make_bucket("veneers", 2025, 2, 18)])
        assert aggregate.summary.new == 1

    def test_each_keyword_counted_once_in_summary(self, sample_buckets):
        aggregate = build_aggregate(sample_buckets)
        assert sum(aggregate.summary.to_dict().values()) == 3

    def test_categorize_skips_unknown(self):
        from rankwatch.trends.aggregation import KeywordTimelineEntry

        categories = categorize([KeywordTimelineEntry(keyword="broken", trend=Trend.UNKNOWN, current_rank=80)])
        assert categories.to_dict() == {"topPerformers": 0, "needAttention": 0, "lostVisibility": 0, "stable": 0}


class TestImprovementRatio:
    """Guarded ratio."""

    def test_none_when_nothing_moved(self):
        assert improvement_ratio(Summary(unchanged=4, new=2)) is None

    def test_ratio(self):
        assert improvement_ratio(Summary(improved=3, declined=1)) == 0.75


class TestReadContract:
    """Shape of the dashboard contract."""

    def test_contract_keys(self, sample_buckets):
        contract = build_aggregate(sample_buckets).to_dict()

        assert set(contract) == {"summary", "monthlyStats", "keywordTimeline", "performanceCategories"}
        assert set(contract["summary"]) == {"improved", "declined", "unchanged", "new", "lost"}
        assert set(contract["keywordTimeline"][0]) == {
            "keyword", "currentRank", "bestRank", "worstRank", "averageRank",
            "trend", "totalChange", "history",
        }

    def test_monthly_stats_newest_first(self, sample_buckets):
        stats = build_aggregate(sample_buckets).to_dict()["monthlyStats"]

        assert [s["monthKey"] for s in stats] == ["2025-02", "2025-01"]
        february = stats[0]
        assert february["monthName"] == "February 2025"
        assert february["totalKeywords"] == 3
        assert february["averageRank"] == 17.0  # (22 + 12) / 2, unranked excluded
        assert february["stats"]["totalChecks"] == 3

    def test_timeline_ranked_first(self, sample_buckets):
        timeline = build_aggregate(sample_buckets).keyword_timeline
        assert [e.keyword for e in timeline] == ["teeth whitening", "dental implants", "emergency dentist"]

    def test_history_has_weekly_checks(self, sample_buckets):
        implants = build_aggregate(sample_buckets).to_dict()["keywordTimeline"][1]

        assert implants["history"][0]["monthName"] == "January 2025"
        assert implants["history"][0]["rank"] == 45
        assert implants["history"][1]["weeklyChecks"][0]["rank"] == 22

    def test_empty_input(self):
        contract = build_aggregate([]).to_dict()

        assert contract["keywordTimeline"] == []
        assert contract["monthlyStats"] == []
        assert contract["summary"] == {"improved": 0, "declined": 0, "unchanged": 0, "new": 0, "lost": 0}


class TestGaps:
    """Months without a bucket."""

    def test_gap_is_null_point(self):
        aggregate = build_aggregate(
            [
                make_bucket("crowns", 2025, 1, 20),
                make_bucket("crowns", 2025, 3, 15),
            ],
            months=[(2025, 1), (2025, 2), (2025, 3)],
        )
        history = entry_for(aggregate, "crowns").history

        assert [p.rank for p in history] == [20, None, 15]
        assert history[1].is_gap
        assert history[1].weekly_checks == []

    def test_gap_not_used_for_classification(self):
        aggregate = build_aggregate(
            [
                make_bucket("crowns", 2025, 1, 20),
                make_bucket("crowns", 2025, 3, 15),
            ],
            months=[(2025, 1), (2025, 2), (2025, 3)],
        )
        assert entry_for(aggregate, "crowns").trend == Trend.IMPROVED

    def test_default_axis_covers_months_with_data(self):
        aggregate = build_aggregate([
            make_bucket("a", 2025, 1, 3),
            make_bucket("b", 2025, 2, 4),
        ])

        assert aggregate.months == [(2025, 1), (2025, 2)]
        assert [p.rank for p in entry_for(aggregate, "a").history] == [3, None]


class TestDuplicateMerge:
    """Linked bucket plus unrepaired orphan for the same month."""

    def test_merged_on_read(self):
        client_id = uuid4()
        shared = WeeklyCheck(rank=12, checked_at=datetime(2025, 2, 3), source="dataforseo")
        later = WeeklyCheck(rank=9, checked_at=datetime(2025, 2, 17), source="dataforseo")

        linked = make_bucket("implants", 2025, 2, 12, client_id=client_id, checks=[shared])
        orphan = make_bucket("implants", 2025, 2, 9, checks=[shared, later])

        aggregate = build_aggregate([
            make_bucket("implants", 2025, 1, 20, client_id=client_id),
            linked,
            orphan,
        ])
        implants = entry_for(aggregate, "implants")

        assert aggregate.merged_duplicates == 1
        assert implants.current_rank == 9
        assert len(implants.history[1].weekly_checks) == 2
        assert aggregate.monthly_stats[0].total_keywords == 1

    def test_linked_bucket_is_base(self):
        client_id = uuid4()
        linked = make_bucket("implants", 2025, 2, 12, client_id=client_id)
        orphan = make_bucket("implants", 2025, 2, 12)

        merged = merge_period_buckets([orphan, linked])

        assert merged.id == linked.id
        assert merged.client_id == client_id


class TestMalformedIsolation:
    """One bad keyword never blanks the dashboard."""

    def test_malformed_keyword_is_unknown(self, sample_buckets):
        broken = make_bucket("broken", 2025, 2, 10)
        broken.month = 14

        aggregate = build_aggregate(sample_buckets + [broken])

        assert entry_for(aggregate, "broken").trend == Trend.UNKNOWN
        assert aggregate.warnings == [{
            "type": "malformed_bucket",
            "keyword": "broken",
            "message": "Invalid month 14",
        }]
        # Other keywords unaffected, unknown not counted
        assert entry_for(aggregate, "dental implants").trend == Trend.IMPROVED
        assert sum(aggregate.summary.to_dict().values()) == 3

    @pytest.mark.parametrize("rank", [0, -1, 2.5])
    def test_bad_rank_isolated(self, rank):
        bad = make_bucket("bad rank", 2025, 1, 10)
        bad.rank = rank

        aggregate = build_aggregate([bad, make_bucket("fine", 2025, 1, 3)])

        assert entry_for(aggregate, "bad rank").trend == Trend.UNKNOWN
        assert entry_for(aggregate, "fine").trend == Trend.NEW
