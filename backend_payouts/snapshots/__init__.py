"""Monthly snapshots: models, builder, stores and backfill."""

from backend_payouts.snapshots.builder import build_monthly_snapshot, payouts_for_month
from backend_payouts.snapshots.models import DailyBucket, MonthlySnapshot, PaymentMethod, Payout, Summary
from backend_payouts.snapshots.store import FileSnapshotStore, SnapshotStore, SqlSnapshotStore

__all__ = [
    "DailyBucket",
    "FileSnapshotStore",
    "MonthlySnapshot",
    "PaymentMethod",
    "Payout",
    "SnapshotStore",
    "SqlSnapshotStore",
    "Summary",
    "build_monthly_snapshot",
    "payouts_for_month",
]
