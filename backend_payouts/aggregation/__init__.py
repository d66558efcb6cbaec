"""Snapshot loading and 7d/30d/12m period aggregation."""

from backend_payouts.aggregation.loader import History, SnapshotLoader
from backend_payouts.aggregation.period import (
    PERIODS,
    MonthlyBucket,
    PeriodAggregate,
    latest_payouts,
    load_period,
    top_payouts,
)

__all__ = [
    "PERIODS",
    "History",
    "MonthlyBucket",
    "PeriodAggregate",
    "SnapshotLoader",
    "latest_payouts",
    "load_period",
    "top_payouts",
]
