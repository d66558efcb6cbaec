"""
Reconcile warm-cache rows once.

Usage:
  python -m backend_payouts.tools.sync_warm_cache
  python -m backend_payouts.tools.sync_warm_cache --entity fundingpips
  python -m backend_payouts.tools.sync_warm_cache --cleanup
"""

from __future__ import annotations

import argparse
import asyncio
import json

from backend_payouts.aggregation.loader import SnapshotLoader
from backend_payouts.config.settings import get_settings
from backend_payouts.core.exceptions import ConfigurationError
from backend_payouts.explorer.client import ExplorerClient
from backend_payouts.payouts_logging import configure_structlog, get_logger
from backend_payouts.tools._common import STORE_FILE, STORE_SQL, open_store, prepare_entities
from backend_payouts.warm_cache.reconciler import WarmCacheReconciler

logger = get_logger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync warm-cache payout totals")
    parser.add_argument("--entity", help="Only this entity id")
    parser.add_argument("--cleanup", action="store_true", help="Also delete orphaned stale rows")
    parser.add_argument("--store", choices=(STORE_FILE, STORE_SQL), default=STORE_FILE)
    parser.add_argument("--entities-file", help="JSON file of entities to seed before running")
    parser.add_argument("--log-format", choices=("json", "console"), help="Override LOG_FORMAT")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    entities = prepare_entities(settings, args.entity, args.entities_file)
    if not entities and not args.cleanup:
        logger.error("warm_sync_no_entities", entity=args.entity)
        return 1
    loader = SnapshotLoader(open_store(settings, args.store), ttl_sec=settings.snapshot_cache_ttl_sec)
    async with ExplorerClient.from_settings(settings) as client:
        reconciler = WarmCacheReconciler(client, loader)
        results = await reconciler.sync_all(entities, delay_sec=settings.entity_delay_sec)
        deleted = reconciler.cleanup_orphaned_rows(settings.warm_retention_days) if args.cleanup else []
    print(json.dumps({"results": [r.to_dict() for r in results], "deleted": deleted}, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if args.log_format:
        configure_structlog(args.log_format)
    try:
        return asyncio.run(_run(args))
    except ConfigurationError as e:
        logger.error("warm_sync_config_error", error=str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
