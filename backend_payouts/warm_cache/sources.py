"""
Historical baseline sources for warm-cache reconciliation.

Each source answers "what has this entity already paid out before the live
window?" with a SourceOutcome of hit, miss or error. resolve_baseline() asks
the sources in order and takes the first hit:

1. SnapshotHistorySource: totals and tx hashes of every stored month.
2. WarmRowSource: the previous warm row's totals (no hash set; payouts after
   the row's last payout are treated as new).
3. LiveFetchSource: first sync, full history fetched from the explorer.

An error from one source is logged and the next source is tried. If no
source hits, the last error is raised; if every source simply missed, the
baseline is empty.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from backend_payouts.aggregation.loader import SnapshotLoader
from backend_payouts.core.exceptions import ConfigurationError, PayoutsError
from backend_payouts.database.entities import Entity
from backend_payouts.explorer.client import DIRECTION_INBOUND, DIRECTION_OUTBOUND, ExplorerClient
from backend_payouts.normalizer.normalizer import normalize_many
from backend_payouts.payouts_logging import get_logger
from backend_payouts.snapshots.models import Payout
from backend_payouts.warm_cache.store import get_warm_row

logger = get_logger(__name__)

STATUS_HIT = "hit"
STATUS_MISS = "miss"
STATUS_ERROR = "error"


class BaselineUnavailableError(PayoutsError):
    """No baseline source produced a result and at least one failed."""


@dataclass
class Baseline:
    source: str
    total_usd: float = 0.0
    payout_count: int = 0
    tx_hashes: set[str] = field(default_factory=set)
    payouts: list[Payout] = field(default_factory=list)
    """Known individual payouts; empty for an opaque (row-level) baseline."""
    opaque: bool = False
    first_payout_at: str | None = None
    last_payout_at: str | None = None
    last_payout_tx_hash: str | None = None

    def is_counted(self, payout: Payout) -> bool:
        """True when the payout is already inside total_usd."""
        if payout.hash_key in self.tx_hashes:
            return True
        if self.opaque and self.last_payout_at is not None:
            if self.last_payout_tx_hash and payout.hash_key == self.last_payout_tx_hash.lower():
                return True
            return payout.timestamp < self.last_payout_at
        return False

    @classmethod
    def from_payouts(cls, source: str, payouts: Sequence[Payout]) -> "Baseline":
        baseline = cls(source=source)
        for p in payouts:
            if p.hash_key in baseline.tx_hashes:
                continue
            baseline.tx_hashes.add(p.hash_key)
            baseline.payouts.append(p)
            baseline.total_usd += p.amount_usd
            baseline.payout_count += 1
        if baseline.payouts:
            first = min(baseline.payouts, key=lambda p: p.timestamp)
            last = max(baseline.payouts, key=lambda p: p.timestamp)
            baseline.first_payout_at = first.timestamp
            baseline.last_payout_at = last.timestamp
            baseline.last_payout_tx_hash = last.tx_hash
        return baseline


@dataclass
class SourceOutcome:
    status: str
    source: str
    baseline: Baseline | None = None
    error: str | None = None

    @classmethod
    def hit(cls, baseline: Baseline) -> "SourceOutcome":
        return cls(STATUS_HIT, baseline.source, baseline=baseline)

    @classmethod
    def miss(cls, source: str) -> "SourceOutcome":
        return cls(STATUS_MISS, source)

    @classmethod
    def failed(cls, source: str, error: Exception) -> "SourceOutcome":
        return cls(STATUS_ERROR, source, error=f"{type(error).__name__}: {error}")


class BaselineSource(Protocol):
    name: str

    async def resolve(self, entity: Entity) -> SourceOutcome: ...


class SnapshotHistorySource:
    name = "snapshots"

    def __init__(self, loader: SnapshotLoader) -> None:
        self.loader = loader

    async def resolve(self, entity: Entity) -> SourceOutcome:
        try:
            history = self.loader.history(entity.entity_id)
        except Exception as e:
            return SourceOutcome.failed(self.name, e)
        if history.empty:
            return SourceOutcome.miss(self.name)
        return SourceOutcome.hit(Baseline.from_payouts(self.name, history.payouts))


class WarmRowSource:
    name = "warm_row"

    async def resolve(self, entity: Entity) -> SourceOutcome:
        try:
            row: dict[str, Any] | None = get_warm_row(entity.entity_id)
        except Exception as e:
            return SourceOutcome.failed(self.name, e)
        if not row or not row.get("total_usd"):
            return SourceOutcome.miss(self.name)
        return SourceOutcome.hit(
            Baseline(
                source=self.name,
                total_usd=float(row["total_usd"]),
                payout_count=int(row.get("payout_count") or 0),
                opaque=True,
                first_payout_at=row.get("first_payout_at"),
                last_payout_at=row.get("last_payout_at"),
                last_payout_tx_hash=row.get("last_payout_tx_hash"),
            )
        )


class LiveFetchSource:
    name = "live"

    def __init__(self, client: ExplorerClient) -> None:
        self.client = client

    async def resolve(self, entity: Entity) -> SourceOutcome:
        direction = DIRECTION_INBOUND if entity.is_trader else DIRECTION_OUTBOUND
        try:
            raws = await self.client.fetch_entity_transfers(entity.addresses, direction=direction)
        except ConfigurationError:
            raise
        except Exception as e:
            return SourceOutcome.failed(self.name, e)
        payouts = normalize_many(raws, entity.entity_id, entity.addresses, direction=direction)
        return SourceOutcome.hit(Baseline.from_payouts(self.name, payouts))


async def resolve_baseline(sources: Sequence[BaselineSource], entity: Entity) -> tuple[Baseline, list[SourceOutcome]]:
    """First hit wins. Returns the baseline plus every outcome consulted, in order."""
    outcomes: list[SourceOutcome] = []
    for source in sources:
        outcome = await source.resolve(entity)
        outcomes.append(outcome)
        if outcome.status == STATUS_HIT and outcome.baseline is not None:
            logger.debug("baseline_resolved", entity_id=entity.entity_id, source=outcome.source)
            return outcome.baseline, outcomes
        if outcome.status == STATUS_ERROR:
            logger.warning("baseline_source_failed", entity_id=entity.entity_id, source=outcome.source, error=outcome.error)
    errors = [o for o in outcomes if o.status == STATUS_ERROR]
    if errors:
        raise BaselineUnavailableError(f"{errors[-1].source}: {errors[-1].error}")
    return Baseline(source="empty"), outcomes
