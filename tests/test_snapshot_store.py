"""
Tests for snapshot stores: create-only writes, listing, corrupt documents, rebuild.
"""

from __future__ import annotations

import pytest

from backend_payouts.snapshots.builder import build_monthly_snapshot
from backend_payouts.snapshots.store import SqlSnapshotStore
from payout_factories import make_payout, utc


def _snapshot(year_month: str = "2025-03", amount: float = 100.0, entity_id: str = "firm"):
    year, month = (int(x) for x in year_month.split("-"))
    return build_monthly_snapshot(entity_id, year_month, "UTC", [make_payout("0x1", amount, utc(year, month, 5))])


def test_file_store_is_create_only(snapshot_store):
    """A second put for the same month returns False and leaves the file untouched."""
    assert snapshot_store.put_if_absent(_snapshot(amount=100.0)) is True
    path = snapshot_store.path_for("firm", "2025-03")
    before = path.read_bytes()

    assert snapshot_store.put_if_absent(_snapshot(amount=999.0)) is False
    assert path.read_bytes() == before
    assert snapshot_store.get("firm", "2025-03").summary.total_payouts == 100.0


def test_file_store_leaves_no_temp_files(snapshot_store):
    snapshot_store.put_if_absent(_snapshot())
    names = [p.name for p in (snapshot_store.root / "firm").iterdir()]
    assert names == ["2025-03.json"]


def test_file_store_lists_months_sorted(snapshot_store):
    for ym in ("2025-03", "2024-12", "2025-01"):
        snapshot_store.put_if_absent(_snapshot(ym))
    (snapshot_store.root / "firm" / "notes.json").write_text("{}", encoding="utf-8")

    assert snapshot_store.list_months("firm") == ["2024-12", "2025-01", "2025-03"]
    assert snapshot_store.list_months("unknown") == []


def test_missing_and_corrupt_documents_read_as_none(snapshot_store):
    assert snapshot_store.get("firm", "2025-03") is None

    path = snapshot_store.path_for("firm", "2025-03")
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")
    assert snapshot_store.get("firm", "2025-03") is None


def test_rebuild_replaces_document(snapshot_store):
    snapshot_store.put_if_absent(_snapshot(amount=100.0))
    snapshot_store.rebuild(_snapshot(amount=300.0))
    assert snapshot_store.get("firm", "2025-03").summary.total_payouts == 300.0


def test_invalid_keys_rejected(snapshot_store):
    with pytest.raises(ValueError):
        snapshot_store.path_for("firm", "2025-3")
    with pytest.raises(ValueError):
        snapshot_store.path_for("../etc", "2025-03")


def test_sql_store_is_create_only(payouts_db):
    store = SqlSnapshotStore()
    assert store.put_if_absent(_snapshot(amount=100.0)) is True
    assert store.put_if_absent(_snapshot(amount=999.0)) is False
    assert store.get("firm", "2025-03").summary.total_payouts == 100.0

    store.put_if_absent(_snapshot("2025-01"))
    assert store.list_months("firm") == ["2025-01", "2025-03"]
    assert store.get("firm", "2024-06") is None

    store.rebuild(_snapshot(amount=300.0))
    assert store.get("firm", "2025-03").summary.total_payouts == 300.0
