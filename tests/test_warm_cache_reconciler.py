"""
Tests for warm-cache reconciliation: baseline sources, hash dedup across tiers, failure handling, cleanup.
"""

from __future__ import annotations

import asyncio

import pytest

from backend_payouts.aggregation.loader import SnapshotLoader
from backend_payouts.database.entities import Entity, add_entity
from backend_payouts.snapshots.builder import build_monthly_snapshot
from backend_payouts.warm_cache import WarmCacheReconciler
from backend_payouts.warm_cache.sources import (
    STATUS_ERROR,
    STATUS_HIT,
    STATUS_MISS,
    Baseline,
    BaselineUnavailableError,
    SourceOutcome,
    resolve_baseline,
)
from backend_payouts.warm_cache.store import get_warm_row, upsert_warm_row
from payout_factories import FIRM, FIRM_2, NOW, ExplorerStub, make_client, make_payout, rpc_transfer, utc

FIRM_ENTITY = Entity("firm", (FIRM,), owner_id="owner-1")
NOW_TS = int(NOW.timestamp())


class FakeSource:
    def __init__(self, name, outcome):
        self.name = name
        self.outcome = outcome
        self.calls = 0

    async def resolve(self, entity):
        self.calls += 1
        return self.outcome


def _reconciler(stub, snapshot_store, sleeps, **client_kwargs):
    client = make_client(stub, sleeps, **client_kwargs)
    return WarmCacheReconciler(client, SnapshotLoader(snapshot_store), now_fn=lambda: NOW, sleep=sleeps)


def test_new_live_payout_added_to_snapshot_history(payouts_db, snapshot_store, sleeps):
    """Snapshots hold 1000; a new $200 live transfer not in any snapshot gives 1200."""
    snapshot_store.put_if_absent(
        build_monthly_snapshot("firm", "2025-03", "UTC", [make_payout("0xaaa", 1000.0, utc(2025, 3, 5))])
    )
    stub = ExplorerStub(
        pages={
            FIRM: [[
                rpc_transfer("0xbbb", 200.0, utc(2025, 3, 18)),
                rpc_transfer("0xAAA", 1000.0, utc(2025, 3, 5)),
            ]]
        }
    )
    reconciler = _reconciler(stub, snapshot_store, sleeps)

    result = asyncio.run(reconciler.sync(FIRM_ENTITY))

    assert result.success
    assert result.source == "snapshots"
    assert result.new_payouts == 1
    row = get_warm_row("firm")
    assert row["total_usd"] == 1200.0
    assert row["last_30d_usd"] == 1200.0
    assert row["payout_count"] == 2
    assert row["avg_usd"] == 600.0
    assert row["last_payout_tx_hash"] == "0xbbb"
    assert row["first_payout_at"] == "2025-03-05T12:00:00Z"
    assert row["owner_id"] == "owner-1"
    assert row["last_synced_at"] == NOW_TS
    assert row["sync_error"] is None


def test_live_window_only_fetches_last_30_days(payouts_db, snapshot_store, sleeps):
    snapshot_store.put_if_absent(
        build_monthly_snapshot("firm", "2025-01", "UTC", [make_payout("0xjan", 500.0, utc(2025, 1, 5))])
    )
    stub = ExplorerStub(pages={FIRM: [[rpc_transfer("0xbbb", 200.0, utc(2025, 3, 18))], [rpc_transfer("0xold", 80.0, utc(2025, 1, 2))]]})
    reconciler = _reconciler(stub, snapshot_store, sleeps)

    asyncio.run(reconciler.sync(FIRM_ENTITY))

    assert stub.requests[0]["fromAddress"] == FIRM
    row = get_warm_row("firm")
    assert row["total_usd"] == 700.0
    assert row["last_30d_usd"] == 200.0


def test_first_sync_uses_full_live_history(payouts_db, snapshot_store, sleeps):
    """No snapshots and no row: the baseline is the full explorer history."""
    stub = ExplorerStub(
        pages={
            FIRM: [[
                rpc_transfer("0xbbb", 200.0, utc(2025, 3, 18)),
                rpc_transfer("0xccc", 300.0, utc(2025, 1, 5)),
            ]]
        }
    )
    reconciler = _reconciler(stub, snapshot_store, sleeps)

    result = asyncio.run(reconciler.sync(FIRM_ENTITY))

    assert result.source == "live"
    assert result.new_payouts == 0
    row = get_warm_row("firm")
    assert row["total_usd"] == 500.0
    assert row["payout_count"] == 2
    assert row["last_30d_usd"] == 200.0
    assert row["first_payout_at"] == "2025-01-05T12:00:00Z"


def test_previous_row_used_when_no_snapshots(payouts_db, snapshot_store, sleeps):
    """Without snapshots the previous row is the baseline; only payouts after its last payout are new."""
    upsert_warm_row(
        "firm",
        {
            "total_usd": 1000.0,
            "payout_count": 5,
            "first_payout_at": "2024-10-01T00:00:00Z",
            "last_payout_at": "2025-03-01T00:00:00Z",
            "last_payout_tx_hash": "0xprev",
        },
    )
    stub = ExplorerStub(
        pages={
            FIRM: [[
                rpc_transfer("0xbbb", 200.0, utc(2025, 3, 18)),
                rpc_transfer("0xddd", 50.0, utc(2025, 2, 25)),
            ]]
        }
    )
    reconciler = _reconciler(stub, snapshot_store, sleeps)

    result = asyncio.run(reconciler.sync(FIRM_ENTITY))

    assert result.source == "warm_row"
    row = get_warm_row("firm")
    assert row["total_usd"] == 1200.0
    assert row["payout_count"] == 6
    assert row["last_30d_usd"] == 250.0
    assert row["last_payout_tx_hash"] == "0xbbb"
    assert row["first_payout_at"] == "2024-10-01T00:00:00Z"


def test_failed_sync_keeps_previous_totals(payouts_db, snapshot_store, sleeps):
    upsert_warm_row("firm", {"total_usd": 500.0, "last_30d_usd": 100.0, "payout_count": 3, "last_synced_at": 1})
    stub = ExplorerStub(failures={FIRM: 500})
    reconciler = _reconciler(stub, snapshot_store, sleeps, max_retries=0)

    result = asyncio.run(reconciler.sync(FIRM_ENTITY))

    assert not result.success
    row = get_warm_row("firm")
    assert row["total_usd"] == 500.0
    assert row["last_30d_usd"] == 100.0
    assert row["payout_count"] == 3
    assert row["sync_error"]
    assert row["last_synced_at"] == NOW_TS


def test_failed_first_sync_writes_zeroed_row(payouts_db, snapshot_store, sleeps):
    stub = ExplorerStub(failures={FIRM: 500})
    reconciler = _reconciler(stub, snapshot_store, sleeps, max_retries=0)

    asyncio.run(reconciler.sync(FIRM_ENTITY))

    row = get_warm_row("firm")
    assert row["total_usd"] == 0.0
    assert row["payout_count"] == 0
    assert "ExplorerError" in row["sync_error"]
    assert row["owner_id"] == "owner-1"


def test_sync_error_cleared_on_success(payouts_db, snapshot_store, sleeps):
    upsert_warm_row("firm", {"total_usd": 0.0, "sync_error": "ExplorerError: down"})
    stub = ExplorerStub(pages={FIRM: [[rpc_transfer("0xbbb", 200.0, utc(2025, 3, 18))]]})
    reconciler = _reconciler(stub, snapshot_store, sleeps)

    asyncio.run(reconciler.sync(FIRM_ENTITY))

    assert get_warm_row("firm")["sync_error"] is None


def test_sync_all_continues_after_failure(payouts_db, snapshot_store, sleeps):
    broken = Entity("broken", (FIRM_2,))
    stub = ExplorerStub(pages={FIRM: [[rpc_transfer("0xbbb", 200.0, utc(2025, 3, 18))]]}, failures={FIRM_2: 500})
    reconciler = _reconciler(stub, snapshot_store, sleeps, max_retries=0)

    results = asyncio.run(reconciler.sync_all([broken, FIRM_ENTITY], delay_sec=0.5))

    assert [r.success for r in results] == [False, True]
    assert sleeps.calls == [0.5]
    assert get_warm_row("firm")["total_usd"] == 200.0
    assert get_warm_row("broken")["sync_error"]


def test_cleanup_removes_only_stale_orphans(payouts_db, snapshot_store, sleeps):
    add_entity(Entity("firm", (FIRM,)))
    old = NOW_TS - 100 * 86400
    recent = NOW_TS - 10 * 86400
    upsert_warm_row("firm", {"total_usd": 1.0, "last_synced_at": old})
    upsert_warm_row("orphan-old", {"total_usd": 1.0, "last_synced_at": old})
    upsert_warm_row("orphan-never", {"total_usd": 1.0})
    upsert_warm_row("orphan-recent", {"total_usd": 1.0, "last_synced_at": recent})
    reconciler = _reconciler(ExplorerStub(), snapshot_store, sleeps)

    deleted = reconciler.cleanup_orphaned_rows(retention_days=90)

    assert sorted(deleted) == ["orphan-never", "orphan-old"]
    assert get_warm_row("firm") is not None
    assert get_warm_row("orphan-recent") is not None
    assert get_warm_row("orphan-old") is None


def test_resolve_baseline_first_hit_wins():
    hit = Baseline.from_payouts("second", [make_payout("0x1", 40.0, utc(2025, 3, 1))])
    first = FakeSource("first", SourceOutcome.failed("first", OSError("disk")))
    second = FakeSource("second", SourceOutcome.hit(hit))
    third = FakeSource("third", SourceOutcome.miss("third"))

    baseline, outcomes = asyncio.run(resolve_baseline([first, second, third], FIRM_ENTITY))

    assert baseline is hit
    assert [o.status for o in outcomes] == [STATUS_ERROR, STATUS_HIT]
    assert third.calls == 0


def test_resolve_baseline_all_miss_is_empty():
    sources = [FakeSource("a", SourceOutcome.miss("a")), FakeSource("b", SourceOutcome.miss("b"))]
    baseline, outcomes = asyncio.run(resolve_baseline(sources, FIRM_ENTITY))
    assert baseline.source == "empty"
    assert baseline.total_usd == 0.0
    assert [o.status for o in outcomes] == [STATUS_MISS, STATUS_MISS]


def test_resolve_baseline_error_without_hit_raises():
    sources = [FakeSource("a", SourceOutcome.failed("a", OSError("disk"))), FakeSource("b", SourceOutcome.miss("b"))]
    with pytest.raises(BaselineUnavailableError):
        asyncio.run(resolve_baseline(sources, FIRM_ENTITY))


def test_opaque_baseline_counts_by_last_payout():
    baseline = Baseline(
        source="warm_row",
        total_usd=100.0,
        opaque=True,
        last_payout_at="2025-03-01T00:00:00Z",
        last_payout_tx_hash="0xLAST",
    )
    assert baseline.is_counted(make_payout("0xlast", 10.0, utc(2025, 3, 2)))
    assert baseline.is_counted(make_payout("0xolder", 10.0, utc(2025, 2, 20)))
    assert not baseline.is_counted(make_payout("0xnewer", 10.0, utc(2025, 3, 2)))


def test_opaque_baseline_same_second_payout_is_new():
    """Only the recorded last hash is counted at the boundary instant; a sibling in the same second is not."""
    baseline = Baseline(
        source="warm_row",
        total_usd=100.0,
        opaque=True,
        last_payout_at="2025-03-02T12:00:00Z",
        last_payout_tx_hash="0xlast",
    )
    assert baseline.is_counted(make_payout("0xlast", 10.0, utc(2025, 3, 2)))
    assert not baseline.is_counted(make_payout("0xsibling", 10.0, utc(2025, 3, 2)))
    assert baseline.is_counted(make_payout("0xbefore", 10.0, utc(2025, 3, 2, 11)))
