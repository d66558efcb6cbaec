"""
Background worker: reconcile warm-cache rows for all tracked entities every
WARM_SYNC_INTERVAL_SEC (default 10 minutes), and refresh the current month's
snapshots every SNAPSHOT_REFRESH_INTERVAL_SEC (default daily) before syncing.

Runs in a daemon thread started from the API lifespan; each tick drives one
asyncio event loop over the explorer client and exits when stop_event is set.
"""

from __future__ import annotations

import asyncio
import threading
import time

from backend_payouts.aggregation.loader import SnapshotLoader
from backend_payouts.config.settings import Settings
from backend_payouts.core.exceptions import ConfigurationError
from backend_payouts.database.entities import list_entities
from backend_payouts.explorer.client import ExplorerClient
from backend_payouts.payouts_logging import get_logger
from backend_payouts.snapshots.backfill import run_refresh
from backend_payouts.snapshots.store import FileSnapshotStore
from backend_payouts.warm_cache.reconciler import SyncResult, WarmCacheReconciler

logger = get_logger(__name__)


def refresh_due(last_refresh: float | None, interval_sec: float, now: float) -> bool:
    """A refresh runs on the first tick and then once per interval; interval <= 0 disables it."""
    if interval_sec <= 0:
        return False
    return last_refresh is None or now - last_refresh >= interval_sec


async def run_sync_once(
    settings: Settings,
    loader: SnapshotLoader | None = None,
    *,
    refresh_snapshots: bool = False,
) -> list[SyncResult]:
    """
    Sync every active entity once. With refresh_snapshots the current month
    (and any month that ended since the last refresh) is refreshed first, so the
    sync reads fresh snapshots.
    """
    entities = list_entities()
    if not entities:
        logger.info("warm_sync_skip", reason="no tracked entities")
        return []
    loader = loader or SnapshotLoader(FileSnapshotStore(settings.snapshot_dir), ttl_sec=settings.snapshot_cache_ttl_sec)
    async with ExplorerClient.from_settings(settings) as client:
        if refresh_snapshots:
            report = await run_refresh(client, loader.store, entities, delay_sec=settings.refresh_entity_delay_sec)
            loader.invalidate()
            logger.info("snapshot_refresh_tick_done", **{k: v for k, v in report.to_dict().items() if k != "errors"})
        reconciler = WarmCacheReconciler(client, loader)
        results = await reconciler.sync_all(entities, delay_sec=settings.entity_delay_sec)
        reconciler.cleanup_orphaned_rows(settings.warm_retention_days)
        logger.info("warm_sync_explorer_usage", **client.describe())
    return results


def run_warm_sync_loop(stop_event: threading.Event, settings: Settings, interval_sec: float) -> None:
    """Loop until stop_event: sync, then wait interval_sec. A failed tick is logged and the loop continues."""
    logger.info(
        "warm_sync_loop_started",
        interval_sec=interval_sec,
        refresh_interval_sec=settings.snapshot_refresh_interval_sec,
    )
    last_refresh: float | None = None
    while not stop_event.is_set():
        refresh = refresh_due(last_refresh, settings.snapshot_refresh_interval_sec, time.monotonic())
        try:
            asyncio.run(run_sync_once(settings, refresh_snapshots=refresh))
            if refresh:
                last_refresh = time.monotonic()
        except ConfigurationError as e:
            logger.error("warm_sync_loop_config_error", error=str(e))
            break
        except Exception as e:
            logger.exception("warm_sync_tick_failed", error=str(e))
        stop_event.wait(interval_sec)
    logger.info("warm_sync_loop_stopped")
