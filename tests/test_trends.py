"""
Tests for the trend classifier.
"""

import pytest

from rankwatch.errors import MalformedBucketError
from rankwatch.models import Trend
from rankwatch.trends import classify_keyword, classify_trend, compute_rank_delta, validate_bucket

from conftest import make_bucket


class TestClassifyTrend:
    """Decision table over (previous rank, current rank)."""

    @pytest.mark.parametrize("prev,curr,expected", [
        (12, 8, Trend.IMPROVED),
        (8, 12, Trend.DECLINED),
        (40, 40, Trend.STABLE),
        (None, 30, Trend.NEW),
        (5, None, Trend.LOST),
        (None, None, Trend.STABLE),
        (100, 1, Trend.IMPROVED),
    ])
    def test_decision_table(self, prev, curr, expected):
        assert classify_trend(prev, curr) == expected

    def test_single_bucket_is_new_when_ranked(self):
        assert classify_trend(None, 14, has_previous=False) == Trend.NEW

    def test_single_bucket_unranked_is_stable(self):
        assert classify_trend(None, None, has_previous=False) == Trend.STABLE

    def test_has_previous_false_ignores_prev_rank(self):
        assert classify_trend(3, 14, has_previous=False) == Trend.NEW

    def test_deterministic(self):
        results = {classify_trend(12, 8) for _ in range(50)}
        assert results == {Trend.IMPROVED}


class TestRankDelta:

    def test_positive_is_improvement(self):
        assert compute_rank_delta(45, 22) == 23

    def test_negative_is_decline(self):
        assert compute_rank_delta(8, 20) == -12

    @pytest.mark.parametrize("prev,curr", [(None, 5), (5, None), (None, None)])
    def test_undefined_without_both_ranks(self, prev, curr):
        assert compute_rank_delta(prev, curr) is None


class TestClassifyKeyword:
    """Whole-history classification for one keyword."""

    def test_dental_implants_scenario(self):
        result = classify_keyword([
            make_bucket("dental implants", 2025, 1, 45),
            make_bucket("dental implants", 2025, 2, 22),
        ])

        assert result.trend == Trend.IMPROVED
        assert result.total_change == 23
        assert result.current_rank == 22
        assert result.previous_rank == 45

    def test_emergency_dentist_scenario(self):
        result = classify_keyword([
            make_bucket("emergency dentist", 2025, 1, 8),
            make_bucket("emergency dentist", 2025, 2, None),
        ])

        assert result.trend == Trend.LOST
        assert result.current_rank is None
        assert result.total_change is None

    def test_unsorted_input(self):
        result = classify_keyword([
            make_bucket("veneers", 2025, 3, 10),
            make_bucket("veneers", 2024, 12, 30),
            make_bucket("veneers", 2025, 1, 10),
        ])

        # Month-to-month stable, long-run improved
        assert result.trend == Trend.STABLE
        assert result.total_change == 20

    def test_total_change_uses_first_ranked_bucket(self):
        result = classify_keyword([
            make_bucket("braces", 2025, 1, None),
            make_bucket("braces", 2025, 2, 40),
            make_bucket("braces", 2025, 3, 25),
        ])

        assert result.total_change == 15

    def test_statistics(self):
        result = classify_keyword([
            make_bucket("crowns", 2025, 1, 10),
            make_bucket("crowns", 2025, 2, None),
            make_bucket("crowns", 2025, 3, 15),
            make_bucket("crowns", 2025, 4, 12),
        ])

        assert result.best_rank == 10
        assert result.worst_rank == 15
        assert result.average_rank == 12.3

    def test_no_buckets_is_unknown(self):
        assert classify_keyword([]).trend == Trend.UNKNOWN

    @pytest.mark.parametrize("field,value", [
        ("month", 13),
        ("month", 0),
        ("rank", 0),
        ("rank", -4),
        ("rank", True),
        ("rank", 4.5),
    ])
    def test_malformed_bucket_raises(self, field, value):
        bucket = make_bucket("implants", 2025, 1, 10)
        setattr(bucket, field, value)

        with pytest.raises(MalformedBucketError) as exc_info:
            validate_bucket(bucket)
        assert exc_info.value.keyword == "implants"
