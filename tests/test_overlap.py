"""
Tests for the snapshot vs live overlap check.
"""

from __future__ import annotations

import asyncio

from backend_payouts.database.entities import Entity
from backend_payouts.snapshots.builder import build_monthly_snapshot
from backend_payouts.snapshots.overlap import compare_month, validate_month
from payout_factories import FIRM, ExplorerStub, make_client, make_payout, rpc_transfer, utc

FIRM_ENTITY = Entity("firm", (FIRM,))


def test_compare_month_reports_both_sides():
    snapshot = build_monthly_snapshot(
        "firm",
        "2025-03",
        "UTC",
        [make_payout("0xAA", 100.0, utc(2025, 3, 2)), make_payout("0xstale", 40.0, utc(2025, 3, 3))],
    )
    live = [
        make_payout("0xaa", 100.0, utc(2025, 3, 2)),
        make_payout("0xbb", 250.0, utc(2025, 3, 9)),
        make_payout("0xbb", 250.0, utc(2025, 3, 9)),
    ]

    report = compare_month("firm", "2025-03", snapshot, live)

    assert report.snapshot_count == 2
    assert report.live_count == 2
    assert report.missing_in_snapshot == [{"tx_hash": "0xbb", "amount_usd": 250.0}]
    assert report.missing_in_live == ["0xstale"]
    assert report.match_rate == 0.5
    assert report.exceeds(0.05)
    assert not report.exceeds(0.5)


def test_compare_month_without_live_payouts_has_no_rate():
    report = compare_month("firm", "2025-03", None, [])
    assert report.match_rate is None
    assert report.mismatch_rate == 0.0
    assert not report.exceeds()


def test_validate_month_against_live_fetch(snapshot_store, sleeps):
    snapshot_store.put_if_absent(
        build_monthly_snapshot("firm", "2025-02", "UTC", [make_payout("0xf1", 50.0, utc(2025, 2, 10))])
    )
    stub = ExplorerStub(
        pages={
            FIRM: [[
                rpc_transfer("0xm1", 200.0, utc(2025, 3, 1)),
                rpc_transfer("0xf2", 75.0, utc(2025, 2, 20)),
                rpc_transfer("0xf1", 50.0, utc(2025, 2, 10)),
                rpc_transfer("0xj1", 90.0, utc(2025, 1, 30)),
            ]]
        }
    )

    report = asyncio.run(validate_month(make_client(stub, sleeps), snapshot_store, FIRM_ENTITY, "2025-02"))

    assert report.error is None
    assert report.live_count == 2
    assert [m["tx_hash"] for m in report.missing_in_snapshot] == ["0xf2"]
    assert report.missing_in_live == []
    assert report.match_rate == 0.5
    assert report.to_dict()["year_month"] == "2025-02"


def test_validate_month_records_fetch_error(snapshot_store, sleeps):
    snapshot_store.put_if_absent(
        build_monthly_snapshot("firm", "2025-02", "UTC", [make_payout("0xf1", 50.0, utc(2025, 2, 10))])
    )
    stub = ExplorerStub(failures={FIRM: 500})

    report = asyncio.run(
        validate_month(make_client(stub, sleeps, max_retries=0), snapshot_store, FIRM_ENTITY, "2025-02")
    )

    assert report.error is not None
    assert report.snapshot_count == 1
    assert report.match_rate is None
