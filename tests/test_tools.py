"""
Tests for the command-line tools and the background sync tick.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from backend_payouts.api_server.warm_sync import refresh_due, run_sync_once
from backend_payouts.config.settings import Settings, get_settings
from backend_payouts.core.exceptions import ConfigurationError
from backend_payouts.database.entities import list_entities
from backend_payouts.tools import backfill_snapshots, refresh_snapshots, sync_warm_cache, validate_overlap
from payout_factories import FIRM


@pytest.fixture
def tool_env(payouts_db, tmp_path, monkeypatch):
    """Empty API key, temp snapshot dir and an entities file with one firm."""
    entities_file = tmp_path / "entities.json"
    entities_file.write_text(json.dumps({"entities": [{"id": "firm", "addresses": [FIRM]}]}), encoding="utf-8")
    monkeypatch.setenv("ALCHEMY_API_KEY", "")
    monkeypatch.setenv("SNAPSHOT_DIR", str(tmp_path / "snapshots"))
    monkeypatch.setenv("ENTITIES_FILE", str(entities_file))
    get_settings.cache_clear()
    yield entities_file
    get_settings.cache_clear()


def test_backfill_rejects_bad_month():
    assert backfill_snapshots.main(["--month", "2025-13"]) == 2


def test_backfill_rebuild_requires_month():
    assert backfill_snapshots.main(["--rebuild"]) == 2


def test_backfill_without_api_key_fails_fast(tool_env):
    """Entities are seeded from the file, then the missing key stops the run."""
    assert backfill_snapshots.main(["--month", "2025-03"]) == 1
    assert [e.entity_id for e in list_entities()] == ["firm"]


def test_backfill_unknown_entity(tool_env):
    assert backfill_snapshots.main(["--entity", "nobody"]) == 1


def test_sync_without_api_key_fails_fast(tool_env):
    assert sync_warm_cache.main([]) == 1


def test_settings_require_api_key(tool_env):
    settings = get_settings()
    assert settings.snapshot_dir == Path(tool_env.parent / "snapshots")
    with pytest.raises(ConfigurationError):
        settings.require_api_key()


def test_sync_tick_without_entities_skips_explorer(payouts_db, tmp_path):
    settings = Settings(
        alchemy_api_key="",
        explorer_base_url="https://explorer.test/v2",
        snapshot_dir=tmp_path / "snapshots",
        entities_file=tmp_path / "entities.json",
        database_url="sqlite://",
    )
    assert asyncio.run(run_sync_once(settings)) == []


def test_refresh_without_api_key_fails_fast(tool_env):
    assert refresh_snapshots.main([]) == 1


def test_refresh_unknown_entity(tool_env):
    assert refresh_snapshots.main(["--entity", "nobody"]) == 1


def test_overlap_rejects_bad_month():
    assert validate_overlap.main(["--month", "2025-00"]) == 2


def test_overlap_without_api_key_fails_fast(tool_env):
    assert validate_overlap.main(["--month", "2025-03"]) == 1


def test_refresh_due_schedule():
    assert refresh_due(None, 86400.0, 5.0)
    assert not refresh_due(100.0, 86400.0, 200.0)
    assert refresh_due(100.0, 86400.0, 86500.0)
    assert not refresh_due(None, 0.0, 5.0)


def test_refresh_tick_without_entities_skips_explorer(payouts_db, tmp_path):
    settings = Settings(
        alchemy_api_key="",
        explorer_base_url="https://explorer.test/v2",
        snapshot_dir=tmp_path / "snapshots",
        entities_file=tmp_path / "entities.json",
        database_url="sqlite://",
    )
    assert asyncio.run(run_sync_once(settings, refresh_snapshots=True)) == []
