"""
Warm-cache reconciler: best-known current totals per entity.

sync() fetches only the last 30 days live, resolves the historical baseline
(snapshots, then the previous warm row, then a full live fetch on first
sync) and writes

    total_usd = baseline.total_usd + sum(recent payouts not already counted)

Recent payouts whose hash is already in the baseline are dropped, so the same
transfer is never counted in both tiers. A failed sync keeps the previous
row's totals and only sets sync_error/last_synced_at; without a previous row
a zeroed row carrying sync_error is written. Failures are per entity and never
abort sync_all().
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Sequence

from backend_payouts.aggregation.loader import SnapshotLoader
from backend_payouts.core.exceptions import ConfigurationError
from backend_payouts.database.entities import Entity, known_entity_ids
from backend_payouts.explorer.client import DIRECTION_INBOUND, DIRECTION_OUTBOUND, ExplorerClient
from backend_payouts.normalizer.normalizer import normalize_many
from backend_payouts.payouts_logging import bind_entity, get_logger
from backend_payouts.snapshots.models import Payout, parse_timestamp
from backend_payouts.snapshots.months import utc_now
from backend_payouts.warm_cache.sources import (
    Baseline,
    BaselineSource,
    LiveFetchSource,
    SnapshotHistorySource,
    WarmRowSource,
    resolve_baseline,
)
from backend_payouts.warm_cache.store import delete_orphaned_rows, record_sync_error, upsert_warm_row

logger = get_logger(__name__)

LIVE_WINDOW_DAYS = 30
DEFAULT_ENTITY_DELAY_SEC = 0.5
DEFAULT_RETENTION_DAYS = 90


@dataclass
class SyncResult:
    entity_id: str
    success: bool
    source: str | None = None
    new_payouts: int = 0
    total_usd: float = 0.0
    last_30d_usd: float = 0.0
    payout_count: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "success": self.success,
            "source": self.source,
            "new_payouts": self.new_payouts,
            "total_usd": self.total_usd,
            "last_30d_usd": self.last_30d_usd,
            "payout_count": self.payout_count,
            "error": self.error,
        }


def _in_window(payout: Payout, cutoff: datetime) -> bool:
    return parse_timestamp(payout.timestamp) >= cutoff


class WarmCacheReconciler:
    def __init__(
        self,
        client: ExplorerClient,
        snapshot_loader: SnapshotLoader,
        *,
        now_fn: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        sources: Sequence[BaselineSource] | None = None,
    ) -> None:
        self.client = client
        self.snapshot_loader = snapshot_loader
        self._now = now_fn
        self._sleep = sleep
        self.sources: list[BaselineSource] = list(sources) if sources is not None else [
            SnapshotHistorySource(snapshot_loader),
            WarmRowSource(),
            LiveFetchSource(client),
        ]

    async def _fetch_recent(self, entity: Entity, cutoff: datetime) -> list[Payout]:
        direction = DIRECTION_INBOUND if entity.is_trader else DIRECTION_OUTBOUND
        raws = await self.client.fetch_entity_transfers(
            entity.addresses,
            cutoff_timestamp=int(cutoff.timestamp()),
            direction=direction,
        )
        payouts = normalize_many(raws, entity.entity_id, entity.addresses, direction=direction)
        return [p for p in payouts if _in_window(p, cutoff)]

    def _reconcile(self, baseline: Baseline, recent: list[Payout], cutoff: datetime) -> dict[str, Any]:
        new = [p for p in recent if not baseline.is_counted(p)]
        total = baseline.total_usd + sum(p.amount_usd for p in new)
        count = baseline.payout_count + len(new)
        if baseline.opaque:
            last_30d = sum(p.amount_usd for p in recent)
        else:
            known_recent = [p for p in baseline.payouts if _in_window(p, cutoff)]
            last_30d = sum(p.amount_usd for p in known_recent) + sum(p.amount_usd for p in new)

        first_at, last_at, last_hash = baseline.first_payout_at, baseline.last_payout_at, baseline.last_payout_tx_hash
        for p in new:
            if first_at is None or p.timestamp < first_at:
                first_at = p.timestamp
            if last_at is None or p.timestamp > last_at:
                last_at, last_hash = p.timestamp, p.tx_hash
        return {
            "total_usd": total,
            "last_30d_usd": last_30d,
            "avg_usd": total / count if count else 0.0,
            "payout_count": count,
            "first_payout_at": first_at,
            "last_payout_at": last_at,
            "last_payout_tx_hash": last_hash,
            "new_payouts": len(new),
        }

    async def sync(self, entity: Entity) -> SyncResult:
        """Reconcile one entity's warm row. Errors are recorded on the row, not raised (except configuration)."""
        now = self._now()
        synced_at = int(now.timestamp())
        cutoff = now - timedelta(days=LIVE_WINDOW_DAYS)
        log = bind_entity(entity.entity_id)
        log.info("warm_sync_start", addresses=len(entity.addresses), kind=entity.kind)
        try:
            recent = await self._fetch_recent(entity, cutoff)
            baseline, _ = await resolve_baseline(self.sources, entity)
            values = self._reconcile(baseline, recent, cutoff)
            new_payouts = values.pop("new_payouts")
            row = upsert_warm_row(
                entity.entity_id,
                {**values, "owner_id": entity.owner_id, "last_synced_at": synced_at, "sync_error": None},
            )
        except ConfigurationError:
            raise
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            log.error("warm_sync_failed", error=error)
            record_sync_error(entity.entity_id, error, synced_at, owner_id=entity.owner_id)
            return SyncResult(entity.entity_id, success=False, error=error)

        log.info(
            "warm_sync_done",
            source=baseline.source,
            new_payouts=new_payouts,
            total_usd=row["total_usd"],
            last_30d_usd=row["last_30d_usd"],
        )
        return SyncResult(
            entity_id=entity.entity_id,
            success=True,
            source=baseline.source,
            new_payouts=new_payouts,
            total_usd=row["total_usd"],
            last_30d_usd=row["last_30d_usd"],
            payout_count=row["payout_count"],
        )

    async def sync_all(self, entities: Sequence[Entity], delay_sec: float = DEFAULT_ENTITY_DELAY_SEC) -> list[SyncResult]:
        """Sync entities one at a time with delay_sec between them."""
        results: list[SyncResult] = []
        for i, entity in enumerate(entities):
            if i > 0 and delay_sec > 0:
                await self._sleep(delay_sec)
            results.append(await self.sync(entity))
        failed = sum(1 for r in results if not r.success)
        logger.info("warm_sync_all_done", entities=len(results), succeeded=len(results) - failed, failed=failed)
        return results

    def cleanup_orphaned_rows(self, retention_days: int = DEFAULT_RETENTION_DAYS, now: datetime | None = None) -> list[str]:
        """Delete warm rows with no tracked entity whose last sync is older than retention_days."""
        now = now or self._now()
        stale_before = int((now - timedelta(days=retention_days)).timestamp())
        deleted = delete_orphaned_rows(known_entity_ids(), stale_before)
        logger.info("warm_cleanup_done", deleted=len(deleted), retention_days=retention_days)
        return deleted
