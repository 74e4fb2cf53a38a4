"""
Tests for the comparison service (ingestion through to the read contract).
"""

import pytest
from uuid import uuid4

from rankwatch.errors import ScopeNotFoundError, ValidationError
from rankwatch.ingestion import normalize_observation
from rankwatch.models import UpsertStatus

from conftest import FIXED_NOW, raw_check


@pytest.mark.integration
class TestIngestionService:
    """Batch ingestion with per-item outcomes."""

    def test_batch_isolates_bad_items(self, ingestion):
        results = ingestion.ingest_many([
            raw_check(keyword="dental implants", rank=22),
            raw_check(keyword="", rank=5),
            raw_check(keyword="veneers", checked_at="2025-01-05"),
            raw_check(keyword="dental implants", rank=22),
        ])

        assert [r.status for r in results] == ["created", "rejected", "rejected", "duplicate"]
        assert "Keyword is required" in results[1].error
        assert "closed" in results[2].error
        assert results[0].to_dict()["bucketId"] == str(results[0].bucket_id)
        assert "bucketId" not in results[1].to_dict()

    def test_missing_client_resolved_by_domain(self, ingestion, client, repository):
        outcome = ingestion.ingest(raw_check(domain="https://example.com/"))

        assert outcome.key.client_key == f"client:{client.id}"
        assert repository.find_bucket(outcome.key).client_id == client.id

    def test_unknown_client_falls_back_to_domain(self, ingestion):
        outcome = ingestion.ingest(raw_check(domain="unlisted.com", clientId=str(uuid4())))

        assert outcome.status == UpsertStatus.CREATED
        assert outcome.key.client_key == "domain:unlisted.com"

    def test_backfill_allows_closed_month(self, ingestion):
        outcome = ingestion.ingest(raw_check(checked_at="2025-01-05"), backfill=True)
        assert outcome.status == UpsertStatus.CREATED


@pytest.mark.integration
class TestComparisonService:
    """Read path for a client or a domain."""

    def _seed(self, ingestion, **extra):
        ingestion.ingest_many([
            raw_check(keyword="dental implants", rank=45, checked_at="2025-01-13", **extra),
            raw_check(keyword="dental implants", rank=22, checked_at="2025-02-10", **extra),
            raw_check(keyword="emergency dentist", rank=8, checked_at="2025-01-13", **extra),
            raw_check(keyword="emergency dentist", rank="NI", checked_at="2025-02-10", **extra),
        ], backfill=True)

    def test_domain_scope(self, ingestion, comparison):
        self._seed(ingestion)

        report = comparison.get_comparison(domain="www.example.com")
        contract = report.to_dict()

        assert report.scope_key == "domain:example.com"
        assert contract["summary"]["improved"] == 1
        assert contract["summary"]["lost"] == 1
        assert contract["performanceCategories"]["topPerformers"] == 1
        assert contract["performanceCategories"]["lostVisibility"] == 1
        assert [i["title"] for i in contract["insights"]][0] == "1 keywords showing strong improvement"
        assert contract["warnings"] == []

    def test_client_scope_includes_orphans_with_warning(self, ingestion, comparison, client):
        # Recorded before the client existed: link_by_domain off
        ingestion.link_by_domain = False
        self._seed(ingestion)

        report = comparison.get_comparison(client_id=client.id)
        contract = report.to_dict()

        assert contract["summary"]["improved"] == 1
        assert {w["keyword"] for w in contract["warnings"]} == {"dental implants", "emergency dentist"}
        assert contract["warnings"][0]["type"] == "linkage_inconsistency"
        assert contract["warnings"][0]["bucketCount"] == 2

    def test_domain_scope_flags_buckets_of_deleted_clients(self, bucketer, comparison):
        # Written for a client row that has since been removed
        bucketer.upsert(normalize_observation(
            raw_check(keyword="veneers", clientId=str(uuid4())), now=FIXED_NOW,
        ))

        contract = comparison.get_comparison(domain="example.com").to_dict()

        assert len(contract["warnings"]) == 1
        assert contract["warnings"][0]["type"] == "linkage_inconsistency"
        assert contract["warnings"][0]["keyword"] == "veneers"
        assert "no longer exists" in contract["warnings"][0]["message"]

    def test_live_client_buckets_raise_no_warning(self, ingestion, comparison, client):
        self._seed(ingestion)

        assert comparison.get_comparison(domain="example.com").to_dict()["warnings"] == []

    def test_window_filters_months(self, ingestion, comparison):
        self._seed(ingestion)

        contract = comparison.get_comparison(domain="example.com", start=(2025, 2), end=(2025, 2)).to_dict()

        assert [m["monthKey"] for m in contract["monthlyStats"]] == ["2025-02"]
        assert contract["summary"]["new"] == 1

    def test_month_axis_spans_window(self, ingestion, comparison):
        self._seed(ingestion)

        contract = comparison.get_comparison(domain="example.com", start=(2024, 12), end=(2025, 3)).to_dict()
        history = contract["keywordTimeline"][0]["history"]

        assert [p["monthName"] for p in history] == [
            "December 2024", "January 2025", "February 2025", "March 2025",
        ]
        assert history[0]["rank"] is None
        assert history[3]["rank"] is None

    def test_cached_until_next_write(self, ingestion, comparison):
        self._seed(ingestion)

        first = comparison.get_comparison(domain="example.com")
        second = comparison.get_comparison(domain="example.com")
        assert first.from_cache is False
        assert second.from_cache is True
        assert second.to_dict() == first.to_dict()

        ingestion.ingest(raw_check(keyword="veneers", rank=4, checked_at="2025-03-03"))

        third = comparison.get_comparison(domain="example.com")
        assert third.from_cache is False
        assert third.to_dict()["summary"]["new"] == 1

    def test_unknown_client(self, comparison):
        with pytest.raises(ScopeNotFoundError):
            comparison.get_comparison(client_id=uuid4())

    def test_requires_scope(self, comparison):
        with pytest.raises(ValidationError):
            comparison.get_comparison()

    def test_start_after_end(self, comparison):
        with pytest.raises(ValidationError):
            comparison.get_comparison(domain="example.com", start=(2025, 3), end=(2025, 1))

    def test_empty_scope(self, comparison):
        contract = comparison.get_comparison(domain="nothing-here.com").to_dict()

        assert contract["keywordTimeline"] == []
        assert contract["insights"] == []
