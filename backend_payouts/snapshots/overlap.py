"""
Snapshot vs live overlap check.

Compares the hash set of a stored month with a live fetch of the same
entity-local month. Payouts found live but absent from the snapshot mean the
snapshot is stale or a sync dropped them; payouts only in the snapshot are
reported too but do not count against the match rate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from backend_payouts.core.exceptions import ConfigurationError
from backend_payouts.database.entities import Entity
from backend_payouts.explorer.client import ExplorerClient
from backend_payouts.payouts_logging import get_logger
from backend_payouts.snapshots.backfill import fetch_entity_payouts
from backend_payouts.snapshots.builder import payouts_for_month
from backend_payouts.snapshots.models import MonthlySnapshot, Payout
from backend_payouts.snapshots.months import month_bounds
from backend_payouts.snapshots.store import SnapshotStore

logger = get_logger(__name__)

MISMATCH_THRESHOLD = 0.05


@dataclass
class OverlapReport:
    entity_id: str
    year_month: str
    snapshot_count: int = 0
    live_count: int = 0
    missing_in_snapshot: list[dict[str, Any]] = field(default_factory=list)
    missing_in_live: list[str] = field(default_factory=list)
    match_rate: float | None = None
    error: str | None = None

    @property
    def mismatch_rate(self) -> float:
        if not self.live_count:
            return 0.0
        return len(self.missing_in_snapshot) / self.live_count

    def exceeds(self, threshold: float = MISMATCH_THRESHOLD) -> bool:
        return self.mismatch_rate > threshold

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "year_month": self.year_month,
            "snapshot_count": self.snapshot_count,
            "live_count": self.live_count,
            "missing_in_snapshot": self.missing_in_snapshot,
            "missing_in_live": self.missing_in_live,
            "match_rate": self.match_rate,
            "error": self.error,
        }


def compare_month(
    entity_id: str, year_month: str, snapshot: MonthlySnapshot | None, live: Sequence[Payout]
) -> OverlapReport:
    """Hash-level diff of a stored month against live payouts of the same month."""
    stored = {p.hash_key: p for p in (snapshot.transactions if snapshot else [])}
    fetched: dict[str, Payout] = {}
    for p in live:
        fetched.setdefault(p.hash_key, p)
    missing_in_snapshot = [
        {"tx_hash": p.tx_hash, "amount_usd": p.amount_usd} for key, p in fetched.items() if key not in stored
    ]
    missing_in_live = [p.tx_hash for key, p in stored.items() if key not in fetched]
    match_rate = (len(fetched) - len(missing_in_snapshot)) / len(fetched) if fetched else None
    return OverlapReport(
        entity_id=entity_id,
        year_month=year_month,
        snapshot_count=len(stored),
        live_count=len(fetched),
        missing_in_snapshot=missing_in_snapshot,
        missing_in_live=missing_in_live,
        match_rate=match_rate,
    )


async def validate_month(
    client: ExplorerClient, store: SnapshotStore, entity: Entity, year_month: str
) -> OverlapReport:
    """Fetch year_month live for the entity and compare it with the stored snapshot."""
    snapshot = store.get(entity.entity_id, year_month)
    start_ts, _ = month_bounds(year_month, entity.timezone)
    try:
        payouts = await fetch_entity_payouts(client, entity, start_ts)
    except ConfigurationError:
        raise
    except Exception as e:
        logger.warning("overlap_fetch_failed", entity_id=entity.entity_id, year_month=year_month, error=str(e))
        return OverlapReport(
            entity.entity_id,
            year_month,
            snapshot_count=len(snapshot.transactions) if snapshot else 0,
            error=str(e),
        )
    report = compare_month(
        entity.entity_id, year_month, snapshot, payouts_for_month(payouts, year_month, entity.timezone)
    )
    log = logger.warning if report.missing_in_snapshot else logger.info
    log(
        "overlap_checked",
        entity_id=entity.entity_id,
        year_month=year_month,
        snapshot_count=report.snapshot_count,
        live_count=report.live_count,
        missing_in_snapshot=len(report.missing_in_snapshot),
        missing_in_live=len(report.missing_in_live),
        match_rate=report.match_rate,
    )
    return report
