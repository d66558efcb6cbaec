"""Year-month arithmetic and entity-local day/month helpers."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any

import pytz

from backend_payouts.payouts_logging import get_logger

logger = get_logger(__name__)

YEAR_MONTH_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def resolve_zone(name: str | None) -> Any:
    """pytz zone for an IANA name; UTC when the name is empty or unknown."""
    if not name:
        return pytz.utc
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        logger.warning("unknown_timezone_fallback_utc", timezone=name)
        return pytz.utc


def parse_year_month(year_month: str) -> tuple[int, int]:
    m = YEAR_MONTH_RE.match(year_month or "")
    if not m:
        raise ValueError(f"Invalid year-month {year_month!r}; expected YYYY-MM")
    return int(m.group(1)), int(m.group(2))


def is_year_month(value: str) -> bool:
    return bool(YEAR_MONTH_RE.match(value or ""))


def format_year_month(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def shift_month(year_month: str, delta: int) -> str:
    year, month = parse_year_month(year_month)
    index = year * 12 + (month - 1) + delta
    return format_year_month(index // 12, index % 12 + 1)


def month_range(start: str, end: str) -> list[str]:
    """Inclusive list of year-months from start to end; empty when start > end."""
    out: list[str] = []
    current = start
    while current <= end:
        out.append(current)
        current = shift_month(current, 1)
    return out


def month_label(year_month: str) -> str:
    """'2026-01' -> 'Jan 2026'."""
    year, month = parse_year_month(year_month)
    return f"{MONTH_LABELS[month - 1]} {year}"


def local_datetime(dt: datetime, tz_name: str | None) -> datetime:
    return dt.astimezone(resolve_zone(tz_name))


def current_year_month(now: datetime, tz_name: str | None) -> str:
    local = local_datetime(now, tz_name)
    return format_year_month(local.year, local.month)


def month_bounds(year_month: str, tz_name: str | None) -> tuple[int, int]:
    """[start, end) of an entity-local month as unix seconds."""
    year, month = parse_year_month(year_month)
    zone = resolve_zone(tz_name)
    start = zone.localize(datetime(year, month, 1))
    ny, nm = parse_year_month(shift_month(year_month, 1))
    end = zone.localize(datetime(ny, nm, 1))
    return int(start.timestamp()), int(end.timestamp())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def days_ago(now: datetime, days: int) -> datetime:
    return now - timedelta(days=days)
