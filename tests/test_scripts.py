"""
Tests for the maintenance script's cache commands.
"""

import argparse
import importlib.util
from datetime import timedelta
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "rank_maintenance.py"


@pytest.fixture
def maintenance(monkeypatch, session_factory):
    spec = importlib.util.spec_from_file_location("rank_maintenance", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    monkeypatch.setattr(module, "get_session_factory", lambda: session_factory)
    return module


def invalidate_args(**overrides):
    return argparse.Namespace(**{"client": None, "domain": None, "all": False, **overrides})


@pytest.fixture
def warm_cache(snapshot_cache, client):
    ttl = timedelta(hours=1)
    snapshot_cache.set(f"client:{client.id}", "all", {"v": 1}, ttl=ttl, domain="example.com")
    snapshot_cache.set("domain:example.com", "all", {"v": 2}, ttl=ttl, domain="example.com")
    snapshot_cache.set("domain:other.com", "all", {"v": 3}, ttl=ttl, domain="other.com")
    return snapshot_cache


@pytest.mark.integration
class TestInvalidateCacheCommand:

    def test_domain_scope(self, maintenance, warm_cache):
        result = maintenance.cmd_invalidate_cache(invalidate_args(domain="https://www.Example.com/"))

        assert result["event"] == "manual_invalidate_scope"
        assert result["success"] is True
        assert result["snapshotsInvalidated"] == 2
        assert warm_cache.get("domain:other.com", "all") == {"v": 3}

    def test_client_scope(self, maintenance, warm_cache, client):
        result = maintenance.cmd_invalidate_cache(invalidate_args(client=client.id))

        assert result["snapshotsInvalidated"] == 1
        assert warm_cache.get(f"client:{client.id}", "all") is None
        assert warm_cache.get("domain:example.com", "all") == {"v": 2}

    def test_all(self, maintenance, warm_cache):
        result = maintenance.cmd_invalidate_cache(invalidate_args(all=True))

        assert result["event"] == "manual_invalidate_all"
        assert result["snapshotsInvalidated"] == 3
        assert warm_cache.get("domain:other.com", "all") is None
