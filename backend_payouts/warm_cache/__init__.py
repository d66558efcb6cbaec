"""Warm-cache rows: reconciled best-known totals per entity."""

from backend_payouts.warm_cache.reconciler import SyncResult, WarmCacheReconciler
from backend_payouts.warm_cache.sources import (
    Baseline,
    LiveFetchSource,
    SnapshotHistorySource,
    SourceOutcome,
    WarmRowSource,
    resolve_baseline,
)

__all__ = [
    "Baseline",
    "LiveFetchSource",
    "SnapshotHistorySource",
    "SourceOutcome",
    "SyncResult",
    "WarmCacheReconciler",
    "WarmRowSource",
    "resolve_baseline",
]
