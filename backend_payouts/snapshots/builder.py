"""
Monthly snapshot builder.

Groups payouts into entity-local calendar days (the business day the firm
reports against, not UTC) and computes the month summary. Payouts are
de-duplicated by hash first, so a transfer seen from two addresses or in two
overlapping pages counts once. Summary values are not rounded so that
summary.total_payouts equals the sum of the daily bucket totals.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from backend_payouts.payouts_logging import get_logger
from backend_payouts.snapshots.models import (
    DailyBucket,
    MonthlySnapshot,
    Payout,
    Summary,
    format_timestamp,
    parse_timestamp,
)
from backend_payouts.snapshots.months import format_year_month, local_datetime, parse_year_month, utc_now

logger = get_logger(__name__)


def dedupe_payouts(payouts: Iterable[Payout]) -> list[Payout]:
    seen: set[str] = set()
    out: list[Payout] = []
    for p in payouts:
        if p.hash_key in seen:
            continue
        seen.add(p.hash_key)
        out.append(p)
    return out


def local_date(payout: Payout, tz_name: str) -> str:
    return local_datetime(parse_timestamp(payout.timestamp), tz_name).strftime("%Y-%m-%d")


def local_year_month(payout: Payout, tz_name: str) -> str:
    local = local_datetime(parse_timestamp(payout.timestamp), tz_name)
    return format_year_month(local.year, local.month)


def payouts_for_month(payouts: Iterable[Payout], year_month: str, tz_name: str) -> list[Payout]:
    """Payouts whose entity-local date falls in year_month."""
    parse_year_month(year_month)
    return [p for p in payouts if local_year_month(p, tz_name) == year_month]


def build_daily_buckets(payouts: Iterable[Payout], tz_name: str) -> list[DailyBucket]:
    """One bucket per local day that has payouts, ascending by date."""
    buckets: dict[str, DailyBucket] = {}
    for p in payouts:
        day = local_date(p, tz_name)
        bucket = buckets.get(day)
        if bucket is None:
            bucket = buckets[day] = DailyBucket(date=day)
        bucket.add(p)
    return [buckets[d] for d in sorted(buckets)]


def sort_newest_first(payouts: Iterable[Payout]) -> list[Payout]:
    return sorted(payouts, key=lambda p: parse_timestamp(p.timestamp), reverse=True)


def build_monthly_snapshot(
    entity_id: str,
    year_month: str,
    timezone: str,
    payouts: Iterable[Payout],
    *,
    generated_at: datetime | None = None,
) -> MonthlySnapshot:
    """
    Build the snapshot for one entity-local month.

    Payouts outside year_month (in the entity's timezone) are left out and
    logged; callers normally pre-filter with payouts_for_month().
    """
    unique = dedupe_payouts(payouts)
    in_month = payouts_for_month(unique, year_month, timezone)
    if len(in_month) != len(unique):
        logger.warning(
            "snapshot_payouts_outside_month",
            entity_id=entity_id,
            year_month=year_month,
            dropped=len(unique) - len(in_month),
        )
    transactions = sort_newest_first(in_month)
    buckets = build_daily_buckets(transactions, timezone)
    summary = Summary.from_amounts([p.amount_usd for p in transactions])
    return MonthlySnapshot(
        entity_id=entity_id,
        year_month=year_month,
        timezone=timezone,
        generated_at=format_timestamp(generated_at or utc_now()),
        summary=summary,
        daily_buckets=buckets,
        transactions=transactions,
    )
