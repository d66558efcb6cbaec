"""
Payout query service composed for the API: snapshot store, month loader,
weekly overview cache and the entity/warm-row lookups.

The AggregateCache is owned here (one per service instance) and fronts the
cross-entity weekly overview; per-entity period queries rely on the loader's
month cache only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from backend_payouts.aggregation.loader import SnapshotLoader
from backend_payouts.aggregation.period import (
    PERIOD_7D,
    PeriodAggregate,
    latest_payouts,
    load_period,
    payout_row,
    top_payouts,
)
from backend_payouts.cache.ephemeral import AggregateCache, week_key
from backend_payouts.config.settings import Settings
from backend_payouts.database.entities import Entity, get_entity, list_entities
from backend_payouts.payouts_logging import get_logger
from backend_payouts.snapshots.months import utc_now
from backend_payouts.snapshots.store import FileSnapshotStore, SnapshotStore
from backend_payouts.warm_cache.store import get_warm_row, list_warm_rows

logger = get_logger(__name__)


class EntityNotFoundError(LookupError):
    pass


@dataclass
class PayoutService:
    loader: SnapshotLoader
    overview_cache: AggregateCache
    now_fn: Callable[[], datetime] = utc_now

    @classmethod
    def from_settings(cls, settings: Settings, store: SnapshotStore | None = None) -> "PayoutService":
        store = store or FileSnapshotStore(settings.snapshot_dir)
        return cls(
            loader=SnapshotLoader(store, ttl_sec=settings.snapshot_cache_ttl_sec),
            overview_cache=AggregateCache(ttl_sec=settings.aggregate_cache_ttl_sec),
        )

    def entity(self, entity_id: str) -> Entity:
        entity = get_entity(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity

    def _warm_row(self, entity_id: str) -> dict[str, Any] | None:
        try:
            return get_warm_row(entity_id)
        except Exception as e:
            logger.warning("warm_row_read_failed", entity_id=entity_id, error=str(e))
            return None

    def period(self, entity_id: str, period: str) -> PeriodAggregate:
        entity = self.entity(entity_id)
        return load_period(
            self.loader,
            entity_id,
            period,
            timezone=entity.timezone,
            now=self.now_fn(),
            warm_row=self._warm_row(entity_id),
        )

    def top(self, entity_id: str, period: str, limit: int = 10) -> list[dict[str, Any]]:
        entity = self.entity(entity_id)
        payouts = top_payouts(self.loader, entity_id, period, limit=limit, timezone=entity.timezone, now=self.now_fn())
        return [payout_row(p, entity.timezone) for p in payouts]

    def latest(self, entity_id: str, period: str, limit: int = 10) -> list[dict[str, Any]]:
        entity = self.entity(entity_id)
        payouts = latest_payouts(self.loader, entity_id, period, limit=limit, timezone=entity.timezone, now=self.now_fn())
        return [payout_row(p, entity.timezone) for p in payouts]

    def warm(self, entity_id: str) -> dict[str, Any] | None:
        self.entity(entity_id)
        return self._warm_row(entity_id)

    def warm_rows(self) -> list[dict[str, Any]]:
        """Every warm row, sync failures included, for operational checks."""
        return list_warm_rows()

    def _compute_overview(self, now: datetime) -> dict[str, Any]:
        rows = []
        for entity in list_entities():
            aggregate = load_period(self.loader, entity.entity_id, PERIOD_7D, timezone=entity.timezone, now=now)
            rows.append(
                {
                    "entity_id": entity.entity_id,
                    "name": entity.name,
                    "kind": entity.kind,
                    "total_payouts": aggregate.summary.total_payouts,
                    "payout_count": aggregate.summary.payout_count,
                    "largest_payout": aggregate.summary.largest_payout,
                }
            )
        rows.sort(key=lambda r: r["total_payouts"], reverse=True)
        logger.info("overview_computed", entities=len(rows), week=week_key(now))
        return {"week": week_key(now), "generated_at": now.isoformat(), "entities": rows}

    def overview(self) -> dict[str, Any]:
        """Last-7-days totals for every active entity, cached per ISO week."""
        now = self.now_fn()
        return self.overview_cache.get_or_compute(week_key(now), lambda: self._compute_overview(now))

    def invalidate(self) -> None:
        self.overview_cache.invalidate()
        self.loader.invalidate()
        logger.info("payout_caches_invalidated")
