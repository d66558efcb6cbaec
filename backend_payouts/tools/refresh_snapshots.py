"""
Refresh the current month's payout snapshots and close months that ended.

Usage:
  python -m backend_payouts.tools.refresh_snapshots
  python -m backend_payouts.tools.refresh_snapshots --entity fundingpips
  python -m backend_payouts.tools.refresh_snapshots --dry-run

Meant to run daily (the API worker does the same every
SNAPSHOT_REFRESH_INTERVAL_SEC). Entities are processed one at a time with
REFRESH_ENTITY_DELAY_SEC between them; per-entity failures are reported and
the run continues.
"""

from __future__ import annotations

import argparse
import asyncio
import json

from backend_payouts.config.settings import get_settings
from backend_payouts.core.exceptions import ConfigurationError
from backend_payouts.explorer.client import ExplorerClient
from backend_payouts.payouts_logging import configure_structlog, get_logger
from backend_payouts.snapshots.backfill import run_refresh
from backend_payouts.tools._common import STORE_FILE, STORE_SQL, open_store, prepare_entities

logger = get_logger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh current-month payout snapshots")
    parser.add_argument("--entity", help="Only this entity id")
    parser.add_argument("--dry-run", action="store_true", help="Fetch and build but do not write")
    parser.add_argument("--store", choices=(STORE_FILE, STORE_SQL), default=STORE_FILE)
    parser.add_argument("--entities-file", help="JSON file of entities to seed before running")
    parser.add_argument("--log-format", choices=("json", "console"), help="Override LOG_FORMAT")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    entities = prepare_entities(settings, args.entity, args.entities_file)
    if not entities:
        logger.error("refresh_no_entities", entity=args.entity)
        return 1
    store = open_store(settings, args.store)
    async with ExplorerClient.from_settings(settings) as client:
        report = await run_refresh(
            client, store, entities, dry_run=args.dry_run, delay_sec=settings.refresh_entity_delay_sec
        )
    print(json.dumps(report.to_dict(), indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if args.log_format:
        configure_structlog(args.log_format)
    try:
        return asyncio.run(_run(args))
    except ConfigurationError as e:
        logger.error("refresh_config_error", error=str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
