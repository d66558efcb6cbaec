"""
Monthly snapshot backfill and current-month refresh.

Closed months (every month before the entity-local current month) go through
the create-only path: missing_months() lists those before the oldest stored
month, or every closed month from the epoch when nothing is stored yet. A
backfill without explicit months also closes and refreshes, as below. A month
with zero payouts writes nothing and a month that already exists is skipped,
so re-running is idempotent.

The current month is still open and is never written create-only. refresh
rebuilds it from a fresh fetch (skipping the write when its hash set is
unchanged) and closes the months that ended since the last run: months after
the newest stored one, plus any stored month whose snapshot was generated
before the month ended. Once closed, a month is only replaced by an explicit
rebuild.

Each entity is fetched once, back to the start of its oldest target month, and
the result is split per month; one month failing to build or write does not
stop the others. run_backfill() runs entities concurrently (bounded by a
semaphore); run_refresh() runs them one at a time. An invalid API key stops
either run.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Sequence

from backend_payouts.core.exceptions import ConfigurationError
from backend_payouts.database.entities import Entity
from backend_payouts.explorer.client import DIRECTION_INBOUND, DIRECTION_OUTBOUND, ExplorerClient
from backend_payouts.normalizer.normalizer import normalize_many
from backend_payouts.payouts_logging import get_logger
from backend_payouts.snapshots.builder import build_monthly_snapshot, payouts_for_month
from backend_payouts.snapshots.models import MonthlySnapshot, Payout, parse_timestamp
from backend_payouts.snapshots.months import current_year_month, month_bounds, month_range, shift_month, utc_now
from backend_payouts.snapshots.store import SnapshotStore

logger = get_logger(__name__)

DEFAULT_EPOCH = "2025-01"
DEFAULT_REFRESH_DELAY_SEC = 2.0

# how a target month is written
MODE_CREATE = "create"
MODE_REBUILD = "rebuild"
MODE_CLOSE = "close"
MODE_REFRESH = "refresh"

STATUS_WRITTEN = "written"
STATUS_REBUILT = "rebuilt"
STATUS_CLOSED = "closed"
STATUS_REFRESHED = "refreshed"
STATUS_UNCHANGED = "unchanged"
STATUS_EXISTS = "exists"
STATUS_EMPTY = "empty"
STATUS_DRY_RUN = "dry_run"
STATUS_ERROR = "error"


@dataclass
class MonthOutcome:
    entity_id: str
    year_month: str
    status: str
    payouts: int = 0
    total_usd: float = 0.0
    error: str | None = None


@dataclass
class BackfillReport:
    outcomes: list[MonthOutcome] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def errors(self) -> list[MonthOutcome]:
        return [o for o in self.outcomes if o.status == STATUS_ERROR]

    def to_dict(self) -> dict[str, Any]:
        return {
            "written": self.count(STATUS_WRITTEN),
            "rebuilt": self.count(STATUS_REBUILT),
            "closed": self.count(STATUS_CLOSED),
            "refreshed": self.count(STATUS_REFRESHED),
            "unchanged": self.count(STATUS_UNCHANGED),
            "exists": self.count(STATUS_EXISTS),
            "empty": self.count(STATUS_EMPTY),
            "dry_run": self.count(STATUS_DRY_RUN),
            "errors": [{"entity_id": o.entity_id, "year_month": o.year_month, "error": o.error} for o in self.errors],
        }


def is_provisional(snapshot: MonthlySnapshot) -> bool:
    """True when the snapshot was generated before its month ended (it may miss late payouts)."""
    if not snapshot.generated_at:
        return True
    _, end_ts = month_bounds(snapshot.year_month, snapshot.timezone)
    return parse_timestamp(snapshot.generated_at).timestamp() < end_ts


def missing_months(
    store: SnapshotStore,
    entity_id: str,
    *,
    epoch: str = DEFAULT_EPOCH,
    now: datetime | None = None,
    timezone: str = "UTC",
) -> list[str]:
    """Closed months from epoch up to the oldest stored month (exclusive)."""
    last_closed = shift_month(current_year_month(now or utc_now(), timezone), -1)
    existing = store.list_months(entity_id)
    if not existing:
        return month_range(epoch, last_closed)
    return month_range(epoch, min(shift_month(existing[0], -1), last_closed))


def months_to_close(
    store: SnapshotStore,
    entity_id: str,
    *,
    now: datetime | None = None,
    timezone: str = "UTC",
) -> list[str]:
    """
    Ended months that still need a final snapshot: stored months that are
    provisional, then every month after the newest stored one.
    """
    existing = store.list_months(entity_id)
    if not existing:
        return []
    current = current_year_month(now or utc_now(), timezone)
    closed = [ym for ym in existing if ym < current]
    out = []
    for year_month in closed:
        snapshot = store.get(entity_id, year_month)
        if snapshot is None or is_provisional(snapshot):
            out.append(year_month)
    out.extend(month_range(shift_month(existing[-1], 1), shift_month(current, -1)))
    return out


async def fetch_entity_payouts(client: ExplorerClient, entity: Entity, since_ts: int) -> list[Payout]:
    """Normalized payouts of an entity from since_ts (unix seconds) to now, one fetch over all its addresses."""
    direction = DIRECTION_INBOUND if entity.is_trader else DIRECTION_OUTBOUND
    raws = await client.fetch_entity_transfers(entity.addresses, cutoff_timestamp=since_ts, direction=direction)
    return normalize_many(raws, entity.entity_id, entity.addresses, direction=direction)


def write_month(
    store: SnapshotStore,
    entity: Entity,
    year_month: str,
    payouts: Sequence[Payout],
    *,
    mode: str = MODE_CREATE,
    dry_run: bool = False,
    generated_at: datetime | None = None,
) -> MonthOutcome:
    """Build one entity-month from already fetched payouts and write it according to mode."""
    log = logger.bind(entity_id=entity.entity_id, year_month=year_month, mode=mode)
    in_month = payouts_for_month(payouts, year_month, entity.timezone)
    if not in_month:
        log.info("snapshot_month_empty")
        return MonthOutcome(entity.entity_id, year_month, STATUS_EMPTY)

    snapshot = build_monthly_snapshot(
        entity.entity_id, year_month, entity.timezone, in_month, generated_at=generated_at
    )
    outcome = MonthOutcome(
        entity.entity_id,
        year_month,
        STATUS_DRY_RUN,
        payouts=snapshot.summary.payout_count,
        total_usd=snapshot.summary.total_payouts,
    )
    if dry_run:
        log.info("snapshot_month_dry_run", payouts=outcome.payouts, total_usd=outcome.total_usd)
        return outcome

    if mode == MODE_CREATE:
        outcome.status = STATUS_WRITTEN if store.put_if_absent(snapshot) else STATUS_EXISTS
    elif mode == MODE_REFRESH:
        existing = store.get(entity.entity_id, year_month)
        if existing is not None and existing.tx_hashes() == snapshot.tx_hashes():
            outcome.status = STATUS_UNCHANGED
        else:
            store.rebuild(snapshot)
            outcome.status = STATUS_REFRESHED
    elif mode == MODE_CLOSE:
        store.rebuild(snapshot)
        outcome.status = STATUS_CLOSED
    elif mode == MODE_REBUILD:
        store.rebuild(snapshot)
        outcome.status = STATUS_REBUILT
    else:
        raise ValueError(f"Unknown snapshot write mode {mode!r}")
    log.info("snapshot_month_done", status=outcome.status, payouts=outcome.payouts, total_usd=outcome.total_usd)
    return outcome


async def process_months(
    client: ExplorerClient,
    store: SnapshotStore,
    entity: Entity,
    plan: Sequence[tuple[str, str]],
    *,
    dry_run: bool = False,
    generated_at: datetime | None = None,
) -> list[MonthOutcome]:
    """
    Fetch the entity once back to the start of the oldest planned month, then
    write each (year_month, mode) of the plan on its own. A failed fetch marks
    every planned month as an error.
    """
    if not plan:
        return []
    since_ts = min(month_bounds(year_month, entity.timezone)[0] for year_month, _ in plan)
    try:
        payouts = await fetch_entity_payouts(client, entity, since_ts)
    except ConfigurationError:
        raise
    except Exception as e:
        logger.exception("snapshot_fetch_failed", entity_id=entity.entity_id, months=len(plan), error=str(e))
        return [MonthOutcome(entity.entity_id, ym, STATUS_ERROR, error=str(e)) for ym, _ in plan]

    logger.info("snapshot_fetch_done", entity_id=entity.entity_id, months=len(plan), payouts=len(payouts))
    outcomes: list[MonthOutcome] = []
    for year_month, mode in plan:
        try:
            outcomes.append(
                write_month(store, entity, year_month, payouts, mode=mode, dry_run=dry_run, generated_at=generated_at)
            )
        except Exception as e:
            logger.exception("snapshot_month_failed", entity_id=entity.entity_id, year_month=year_month, error=str(e))
            outcomes.append(MonthOutcome(entity.entity_id, year_month, STATUS_ERROR, error=str(e)))
    return outcomes


def _plan_backfill(
    existing: Sequence[str], targets: Sequence[str], current: str, *, rebuild: bool
) -> tuple[list[tuple[str, str]], list[str]]:
    """Split targets into (year_month, mode) pairs to fetch and months to skip as already stored."""
    plan: list[tuple[str, str]] = []
    skipped: list[str] = []
    for year_month in targets:
        if rebuild:
            plan.append((year_month, MODE_REBUILD))
        elif year_month >= current:
            plan.append((year_month, MODE_REFRESH))
        elif year_month in existing:
            skipped.append(year_month)
        else:
            plan.append((year_month, MODE_CREATE))
    return plan, skipped


async def backfill_entity(
    client: ExplorerClient,
    store: SnapshotStore,
    entity: Entity,
    *,
    months: Sequence[str] | None = None,
    epoch: str = DEFAULT_EPOCH,
    now: datetime | None = None,
    dry_run: bool = False,
    rebuild: bool = False,
) -> list[MonthOutcome]:
    """
    Fill an entity's snapshots. With explicit months each is created (or
    rebuilt with rebuild=True, refreshed when it is the current month).
    Without, the run covers missing closed months before the oldest stored
    one, closes months that ended since, and refreshes the current month.
    """
    now = now or utc_now()
    current = current_year_month(now, entity.timezone)
    if months:
        targets = list(months)
        plan, skipped = _plan_backfill(store.list_months(entity.entity_id), targets, current, rebuild=rebuild)
    else:
        missing = missing_months(store, entity.entity_id, epoch=epoch, now=now, timezone=entity.timezone)
        closing = months_to_close(store, entity.entity_id, now=now, timezone=entity.timezone)
        targets = missing + closing + [current]
        plan = [(ym, MODE_CREATE) for ym in missing] + [(ym, MODE_CLOSE) for ym in closing]
        plan.append((current, MODE_REFRESH))
        skipped = []
    logger.info("backfill_entity_start", entity_id=entity.entity_id, months=len(plan), skipped=len(skipped))
    for year_month in skipped:
        logger.info("backfill_month_exists", entity_id=entity.entity_id, year_month=year_month)
    outcomes = [MonthOutcome(entity.entity_id, ym, STATUS_EXISTS) for ym in skipped]
    outcomes.extend(await process_months(client, store, entity, plan, dry_run=dry_run, generated_at=now))
    order = {ym: i for i, ym in enumerate(targets)}
    return sorted(outcomes, key=lambda o: order.get(o.year_month, len(order)))


async def backfill_month(
    client: ExplorerClient,
    store: SnapshotStore,
    entity: Entity,
    year_month: str,
    *,
    dry_run: bool = False,
    rebuild: bool = False,
    now: datetime | None = None,
) -> MonthOutcome:
    """Fetch, normalize, build and write one entity-month."""
    outcomes = await backfill_entity(
        client, store, entity, months=[year_month], now=now, dry_run=dry_run, rebuild=rebuild
    )
    return outcomes[0]


async def refresh_entity(
    client: ExplorerClient,
    store: SnapshotStore,
    entity: Entity,
    *,
    now: datetime | None = None,
    dry_run: bool = False,
) -> list[MonthOutcome]:
    """Close the months that ended since the last run and refresh the current month."""
    now = now or utc_now()
    current = current_year_month(now, entity.timezone)
    plan = [(ym, MODE_CLOSE) for ym in months_to_close(store, entity.entity_id, now=now, timezone=entity.timezone)]
    plan.append((current, MODE_REFRESH))
    logger.info("refresh_entity_start", entity_id=entity.entity_id, current=current, closing=len(plan) - 1)
    return await process_months(client, store, entity, plan, dry_run=dry_run, generated_at=now)


async def run_backfill(
    client: ExplorerClient,
    store: SnapshotStore,
    entities: Sequence[Entity],
    *,
    months: Sequence[str] | None = None,
    epoch: str = DEFAULT_EPOCH,
    now: datetime | None = None,
    dry_run: bool = False,
    rebuild: bool = False,
    concurrency: int = 1,
) -> BackfillReport:
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _one(entity: Entity) -> list[MonthOutcome]:
        async with semaphore:
            return await backfill_entity(
                client, store, entity, months=months, epoch=epoch, now=now, dry_run=dry_run, rebuild=rebuild
            )

    results = await asyncio.gather(*(_one(e) for e in entities))
    report = BackfillReport([o for outcomes in results for o in outcomes])
    logger.info(
        "backfill_done",
        entities=len(entities),
        written=report.count(STATUS_WRITTEN),
        rebuilt=report.count(STATUS_REBUILT),
        refreshed=report.count(STATUS_REFRESHED),
        exists=report.count(STATUS_EXISTS),
        empty=report.count(STATUS_EMPTY),
        errors=len(report.errors),
    )
    return report


async def run_refresh(
    client: ExplorerClient,
    store: SnapshotStore,
    entities: Sequence[Entity],
    *,
    now: datetime | None = None,
    dry_run: bool = False,
    delay_sec: float = DEFAULT_REFRESH_DELAY_SEC,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> BackfillReport:
    """Refresh entities one at a time with delay_sec between them."""
    report = BackfillReport()
    for i, entity in enumerate(entities):
        if i > 0 and delay_sec > 0:
            await sleep(delay_sec)
        report.outcomes.extend(await refresh_entity(client, store, entity, now=now, dry_run=dry_run))
    logger.info(
        "refresh_done",
        entities=len(entities),
        refreshed=report.count(STATUS_REFRESHED),
        closed=report.count(STATUS_CLOSED),
        unchanged=report.count(STATUS_UNCHANGED),
        empty=report.count(STATUS_EMPTY),
        errors=len(report.errors),
    )
    return report
