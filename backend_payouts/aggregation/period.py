"""
Period aggregation over monthly snapshots: 7d, 30d and 12m.

7d/30d load the current and previous entity-local month (a window of at most
30 days never needs more), keep daily buckets whose local date is on or after
the local cutoff date and transactions at or after now - window, and recompute
the summary from the kept transactions.

12m always returns exactly 12 monthly buckets, oldest first. Months with no
snapshot are zero-filled placeholders. The summary sums each month's stored
summary instead of re-scanning transactions.

The warm-cache row, when given, is attached as a separate view and never
added into the snapshot totals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from backend_payouts.aggregation.loader import SnapshotLoader
from backend_payouts.payouts_logging import get_logger
from backend_payouts.snapshots.builder import dedupe_payouts, sort_newest_first
from backend_payouts.snapshots.models import DailyBucket, MonthlySnapshot, Payout, Summary, parse_timestamp
from backend_payouts.snapshots.months import (
    current_year_month,
    local_datetime,
    month_label,
    shift_month,
    utc_now,
)

logger = get_logger(__name__)

PERIOD_7D = "7d"
PERIOD_30D = "30d"
PERIOD_12M = "12m"
PERIODS = (PERIOD_7D, PERIOD_30D, PERIOD_12M)
WINDOW_DAYS = {PERIOD_7D: 7, PERIOD_30D: 30}
MONTHS_IN_YEAR = 12

DEFAULT_TX_URL_PREFIX = "https://arbiscan.io/tx/"


@dataclass
class MonthlyBucket:
    year_month: str
    month: str
    """Display label, e.g. "Jan 2026"."""
    total: float = 0.0
    rise: float = 0.0
    crypto: float = 0.0
    wire: float = 0.0
    placeholder: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: MonthlySnapshot) -> "MonthlyBucket":
        bucket = cls(year_month=snapshot.year_month, month=month_label(snapshot.year_month))
        bucket.total = snapshot.summary.total_payouts
        for day in snapshot.daily_buckets:
            bucket.rise += day.rise
            bucket.crypto += day.crypto
            bucket.wire += day.wire
        return bucket

    @classmethod
    def empty(cls, year_month: str) -> "MonthlyBucket":
        return cls(year_month=year_month, month=month_label(year_month), placeholder=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "yearMonth": self.year_month,
            "month": self.month,
            "total": self.total,
            "rise": self.rise,
            "crypto": self.crypto,
            "wire": self.wire,
            "placeholder": self.placeholder,
        }


@dataclass
class PeriodAggregate:
    entity_id: str
    period: str
    summary: Summary
    daily_buckets: list[DailyBucket] = field(default_factory=list)
    monthly_buckets: list[MonthlyBucket] = field(default_factory=list)
    transactions: list[Payout] = field(default_factory=list)
    warm: dict[str, Any] | None = None

    @property
    def buckets(self) -> list[DailyBucket] | list[MonthlyBucket]:
        return self.monthly_buckets if self.period == PERIOD_12M else self.daily_buckets

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "entityId": self.entity_id,
            "period": self.period,
            "summary": self.summary.to_dict(),
            "transactions": [p.to_dict() for p in self.transactions],
            "warm": self.warm,
        }
        if self.period == PERIOD_12M:
            out["monthlyBuckets"] = [b.to_dict() for b in self.monthly_buckets]
        else:
            out["dailyBuckets"] = [b.to_dict() for b in self.daily_buckets]
        return out


def _validate_period(period: str) -> None:
    if period not in PERIODS:
        raise ValueError(f"Unknown period {period!r}; expected one of {', '.join(PERIODS)}")


def _warm_view(warm_row: Any) -> dict[str, Any] | None:
    if warm_row is None:
        return None
    return warm_row if isinstance(warm_row, dict) else warm_row.to_dict()


def _window_months(now: datetime, timezone: str) -> list[str]:
    current = current_year_month(now, timezone)
    return [shift_month(current, -1), current]


def _year_months(now: datetime, timezone: str) -> list[str]:
    current = current_year_month(now, timezone)
    return [shift_month(current, -offset) for offset in range(MONTHS_IN_YEAR - 1, -1, -1)]


def _load_window(
    loader: SnapshotLoader,
    entity_id: str,
    period: str,
    timezone: str,
    now: datetime,
    warm_row: Any,
) -> PeriodAggregate:
    cutoff = now - timedelta(days=WINDOW_DAYS[period])
    cutoff_ts = cutoff.timestamp()
    cutoff_date = local_datetime(cutoff, timezone).strftime("%Y-%m-%d")

    buckets: dict[str, DailyBucket] = {}
    transactions: list[Payout] = []
    for year_month in _window_months(now, timezone):
        snapshot = loader.load_month(entity_id, year_month)
        if snapshot is None:
            continue
        for bucket in snapshot.daily_buckets:
            if bucket.date >= cutoff_date:
                buckets[bucket.date] = bucket
        transactions.extend(p for p in snapshot.transactions if p.unix_timestamp >= cutoff_ts)

    kept = sort_newest_first(dedupe_payouts(transactions))
    return PeriodAggregate(
        entity_id=entity_id,
        period=period,
        summary=Summary.from_amounts([p.amount_usd for p in kept]),
        daily_buckets=[buckets[d] for d in sorted(buckets)],
        transactions=kept,
        warm=_warm_view(warm_row),
    )


def _load_year(
    loader: SnapshotLoader,
    entity_id: str,
    timezone: str,
    now: datetime,
    warm_row: Any,
) -> PeriodAggregate:
    monthly: list[MonthlyBucket] = []
    total = 0.0
    count = 0
    largest = 0.0
    for year_month in _year_months(now, timezone):
        snapshot = loader.load_month(entity_id, year_month)
        if snapshot is None:
            monthly.append(MonthlyBucket.empty(year_month))
            continue
        monthly.append(MonthlyBucket.from_snapshot(snapshot))
        total += snapshot.summary.total_payouts
        count += snapshot.summary.payout_count
        largest = max(largest, snapshot.summary.largest_payout)

    summary = Summary(
        total_payouts=total,
        payout_count=count,
        largest_payout=largest,
        avg_payout=total / count if count else 0.0,
    )
    return PeriodAggregate(
        entity_id=entity_id,
        period=PERIOD_12M,
        summary=summary,
        monthly_buckets=monthly,
        warm=_warm_view(warm_row),
    )


def load_period(
    loader: SnapshotLoader,
    entity_id: str,
    period: str,
    *,
    timezone: str = "UTC",
    now: datetime | None = None,
    warm_row: Any = None,
) -> PeriodAggregate:
    """Aggregate for period in {7d, 30d, 12m}; always well-formed, all-zero when no snapshots exist."""
    _validate_period(period)
    now = now or utc_now()
    if period == PERIOD_12M:
        aggregate = _load_year(loader, entity_id, timezone, now, warm_row)
    else:
        aggregate = _load_window(loader, entity_id, period, timezone, now, warm_row)
    logger.debug(
        "period_loaded",
        entity_id=entity_id,
        period=period,
        total=aggregate.summary.total_payouts,
        count=aggregate.summary.payout_count,
    )
    return aggregate


def period_transactions(
    loader: SnapshotLoader,
    entity_id: str,
    period: str,
    *,
    timezone: str = "UTC",
    now: datetime | None = None,
) -> list[Payout]:
    """Every transaction in the period; for 12m this scans the stored months of the year."""
    _validate_period(period)
    now = now or utc_now()
    if period != PERIOD_12M:
        return load_period(loader, entity_id, period, timezone=timezone, now=now).transactions
    transactions: list[Payout] = []
    for year_month in _year_months(now, timezone):
        snapshot = loader.load_month(entity_id, year_month)
        if snapshot is not None:
            transactions.extend(snapshot.transactions)
    return dedupe_payouts(transactions)


def payout_row(payout: Payout, timezone: str = "UTC", tx_url_prefix: str = DEFAULT_TX_URL_PREFIX) -> dict[str, Any]:
    """Display row for a payout: local date, amount, method and explorer link."""
    local = local_datetime(parse_timestamp(payout.timestamp), timezone)
    return {
        "id": payout.tx_hash,
        "date": local.strftime("%Y-%m-%d"),
        "amount": payout.amount_usd,
        "paymentMethod": payout.payment_method.value,
        "txHash": payout.tx_hash,
        "txUrl": f"{tx_url_prefix}{payout.tx_hash}",
    }


def top_payouts(
    loader: SnapshotLoader,
    entity_id: str,
    period: str,
    *,
    limit: int = 10,
    timezone: str = "UTC",
    now: datetime | None = None,
) -> list[Payout]:
    """Largest payouts of the period, biggest first."""
    transactions = period_transactions(loader, entity_id, period, timezone=timezone, now=now)
    return sorted(transactions, key=lambda p: p.amount_usd, reverse=True)[: max(0, limit)]


def latest_payouts(
    loader: SnapshotLoader,
    entity_id: str,
    period: str,
    *,
    limit: int = 10,
    timezone: str = "UTC",
    now: datetime | None = None,
) -> list[Payout]:
    """Most recent payouts of the period, newest first."""
    transactions = period_transactions(loader, entity_id, period, timezone=timezone, now=now)
    return sort_newest_first(transactions)[: max(0, limit)]
