"""
Snapshot loader with a short-TTL per-month cache.

load_month() is fronted by a cache keyed by (entity_id, year_month); a hit
returns the previously parsed snapshot without touching the store. A missing
or unreadable month is None (zero data), never an error, and is not cached so
a freshly written month shows up on the next read.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from backend_payouts.payouts_logging import get_logger
from backend_payouts.snapshots.models import MonthlySnapshot, Payout
from backend_payouts.snapshots.store import SnapshotStore

logger = get_logger(__name__)

DEFAULT_MONTH_CACHE_TTL_SEC = 300.0


@dataclass
class History:
    """Totals and hash set over every stored month of one entity."""

    total_usd: float = 0.0
    payout_count: int = 0
    tx_hashes: set[str] = field(default_factory=set)
    first_payout: Payout | None = None
    last_payout: Payout | None = None
    months: list[str] = field(default_factory=list)
    payouts: list[Payout] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.months


class SnapshotLoader:
    def __init__(
        self,
        store: SnapshotStore,
        ttl_sec: float = DEFAULT_MONTH_CACHE_TTL_SEC,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._cache: dict[tuple[str, str], tuple[float, MonthlySnapshot]] = {}

    def load_month(self, entity_id: str, year_month: str) -> MonthlySnapshot | None:
        key = (entity_id, year_month)
        cached = self._cache.get(key)
        now = self._clock()
        if cached is not None and cached[0] > now:
            return cached[1]
        try:
            snapshot = self.store.get(entity_id, year_month)
        except Exception as e:
            # the store being down reads as zero data for this month
            logger.warning("snapshot_load_failed", entity_id=entity_id, year_month=year_month, error=str(e))
            return None
        if snapshot is None:
            self._cache.pop(key, None)
            return None
        self._cache[key] = (now + self.ttl_sec, snapshot)
        return snapshot

    def list_months(self, entity_id: str) -> list[str]:
        try:
            return self.store.list_months(entity_id)
        except Exception as e:
            logger.warning("snapshot_list_failed", entity_id=entity_id, error=str(e))
            return []

    def history(self, entity_id: str) -> History:
        """Sum every stored month; hashes are lower-cased for cross-tier dedup."""
        history = History()
        for year_month in self.list_months(entity_id):
            snapshot = self.load_month(entity_id, year_month)
            if snapshot is None:
                continue
            history.months.append(year_month)
            for p in snapshot.transactions:
                if p.hash_key in history.tx_hashes:
                    continue
                history.tx_hashes.add(p.hash_key)
                history.payouts.append(p)
                history.total_usd += p.amount_usd
                history.payout_count += 1
                if history.first_payout is None or p.timestamp < history.first_payout.timestamp:
                    history.first_payout = p
                if history.last_payout is None or p.timestamp > history.last_payout.timestamp:
                    history.last_payout = p
        return history

    def invalidate(self, entity_id: str | None = None) -> None:
        if entity_id is None:
            self._cache.clear()
            return
        for key in [k for k in self._cache if k[0] == entity_id]:
            del self._cache[key]
