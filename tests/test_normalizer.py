"""
Tests for the ingestion normalizer.

These tests verify:
- Rank normalization (absent markers, fractional floats, numeric strings)
- Keyword and domain cleanup
- checkedAt parsing and period assignment
- Rejection of malformed checks
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

from rankwatch.errors import ValidationError
from rankwatch.ingestion.normalizer import (
    normalize_keyword,
    normalize_observation,
    normalize_rank,
    normalize_source,
    parse_checked_at,
)
from rankwatch.utils.domain import domain_matches, normalize_domain

from conftest import FIXED_NOW, raw_check


# =============================================================================
# RANK
# =============================================================================

class TestNormalizeRank:
    """Rank is a positive integer or absent."""

    @pytest.mark.parametrize("value,expected", [
        (15, 15),
        (1, 1),
        ("15", 15),
        (" 7 ", 7),
        (22.0, 22),
        ("22.0", 22),
    ])
    def test_valid_ranks(self, value, expected):
        assert normalize_rank(value) == expected

    @pytest.mark.parametrize("value", [None, 0, -3, "", "NI", "ni", "n/a", "abc", 4.5, "4.5", float("nan"), True, False, [], {}])
    def test_absent_ranks(self, value):
        assert normalize_rank(value) is None

    def test_fractional_rank_is_never_rounded(self):
        assert normalize_rank(9.99) is None

    def test_beyond_top_100_is_absent(self):
        assert normalize_rank(100) == 100
        assert normalize_rank(101) is None
        assert normalize_rank("150") is None
        assert normalize_rank(">100") is None


# =============================================================================
# TEXT FIELDS
# =============================================================================

class TestTextFields:
    """Keyword and domain cleanup."""

    def test_keyword_whitespace_collapsed(self):
        assert normalize_keyword("  dental   implants \n") == "dental implants"

    def test_keyword_case_preserved(self):
        assert normalize_keyword("Dental Implants") == "Dental Implants"

    @pytest.mark.parametrize("value,expected", [
        ("https://www.Example.com/", "example.com"),
        ("http://example.com/path?q=1", "example.com"),
        ("EXAMPLE.COM", "example.com"),
        ("example.com:8080", "example.com"),
        ("  www.example.com.  ", "example.com"),
        ("blog.example.com", "blog.example.com"),
        ("", ""),
        (None, ""),
    ])
    def test_normalize_domain(self, value, expected):
        assert normalize_domain(value) == expected

    def test_domain_matches_subdomain(self):
        assert domain_matches("https://blog.example.com/post", "example.com")

    def test_domain_matches_rejects_suffix_lookalike(self):
        assert not domain_matches("notexample.com", "example.com")

    def test_source_defaults_and_validates(self):
        assert normalize_source(None, default="manual") == "manual"
        assert normalize_source("DataForSEO") == "dataforseo"
        with pytest.raises(ValidationError):
            normalize_source("scraper")


# =============================================================================
# TIMESTAMPS
# =============================================================================

class TestParseCheckedAt:
    """checkedAt parsing to naive UTC."""

    def test_missing_defaults_to_now(self):
        assert parse_checked_at(None, now=FIXED_NOW) == FIXED_NOW
        assert parse_checked_at("  ", now=FIXED_NOW) == FIXED_NOW

    def test_zulu_string(self):
        assert parse_checked_at("2025-03-10T09:00:00Z") == datetime(2025, 3, 10, 9, 0, 0)

    def test_aware_datetime_converted_to_utc(self):
        value = datetime(2025, 4, 1, 1, 30, tzinfo=timezone(timedelta(hours=2)))
        # 01:30 at +02:00 is still March in UTC
        assert parse_checked_at(value) == datetime(2025, 3, 31, 23, 30)

    def test_date_promoted_to_midnight(self):
        assert parse_checked_at(date(2025, 3, 10)) == datetime(2025, 3, 10)

    def test_date_only_string(self):
        assert parse_checked_at("2025-03-10") == datetime(2025, 3, 10)

    def test_garbage_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_checked_at("last tuesday")
        assert exc_info.value.field == "checkedAt"

    def test_unsupported_type_rejected(self):
        with pytest.raises(ValidationError):
            parse_checked_at(12345)


# =============================================================================
# OBSERVATION
# =============================================================================

class TestNormalizeObservation:
    """Whole-check normalization."""

    def test_camel_case_input(self):
        client_id = uuid4()
        obs = normalize_observation(raw_check(
            domain="https://www.Example.com",
            keyword=" smile  makeover ",
            rank="15",
            locationCode="2840",
            difficulty="42.5",
            clientId=str(client_id),
        ))

        assert obs.domain == "example.com"
        assert obs.keyword == "smile makeover"
        assert obs.rank == 15
        assert obs.in_top_100 is True
        assert obs.location_code == 2840
        assert obs.difficulty == 42.5
        assert obs.client_id == client_id
        assert (obs.year, obs.month) == (2025, 3)

    def test_snake_case_input(self):
        obs = normalize_observation({
            "domain": "example.com",
            "keyword": "dental implants",
            "rank": 8,
            "checked_at": "2025-01-05T00:00:00",
            "location_code": 2840,
        })
        assert obs.checked_at == datetime(2025, 1, 5)
        assert obs.location_code == 2840

    def test_absent_rank_is_not_in_top_100(self):
        obs = normalize_observation(raw_check(rank="NI"))
        assert obs.rank is None
        assert obs.in_top_100 is False

    def test_bucket_key_without_client_uses_domain(self):
        obs = normalize_observation(raw_check())
        assert obs.bucket_key.client_key == "domain:example.com"
        assert obs.bucket_key.period == (2025, 3)

    def test_missing_checked_at_uses_now(self):
        obs = normalize_observation(raw_check(checked_at=None), now=FIXED_NOW)
        assert obs.checked_at == FIXED_NOW

    @pytest.mark.parametrize("overrides,field", [
        ({"domain": ""}, "domain"),
        ({"domain": "https://"}, "domain"),
        ({"keyword": "   "}, "keyword"),
        ({"clientId": "not-a-uuid"}, "client"),
        ({"source": "spreadsheet"}, "source"),
    ])
    def test_rejected(self, overrides, field):
        raw = raw_check()
        raw.update(overrides)
        with pytest.raises(ValidationError) as exc_info:
            normalize_observation(raw)
        assert exc_info.value.field == field

    def test_non_mapping_rejected(self):
        with pytest.raises(ValidationError):
            normalize_observation(["example.com", "dental implants", 3])

    def test_pydantic_model_input(self):
        from api.rankings import RawRankCheck

        model = RawRankCheck(domain="example.com", keyword="veneers", rank=4, checkedAt="2025-03-02T10:00:00Z")
        obs = normalize_observation(model)
        assert obs.rank == 4
        assert obs.checked_at == datetime(2025, 3, 2, 10, 0)
