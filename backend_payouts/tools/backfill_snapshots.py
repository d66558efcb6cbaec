"""
Backfill monthly payout snapshots for tracked entities.

Usage:
  python -m backend_payouts.tools.backfill_snapshots
  python -m backend_payouts.tools.backfill_snapshots --entity fundingpips --month 2025-03
  python -m backend_payouts.tools.backfill_snapshots --dry-run
  python -m backend_payouts.tools.backfill_snapshots --entity fundingpips --month 2025-03 --rebuild

Without --month, every closed month from BACKFILL_EPOCH up to the oldest stored
month is filled, months that ended since the newest stored one are closed and
the current month is rebuilt from the same fetch. Existing closed months are
skipped unless --rebuild is given. Per-month failures are logged and reported;
exit code is non-zero only when the run itself cannot proceed (bad arguments,
missing API key, no entities).
"""

from __future__ import annotations

import argparse
import asyncio
import json

from backend_payouts.config.settings import get_settings
from backend_payouts.core.exceptions import ConfigurationError
from backend_payouts.explorer.client import ExplorerClient
from backend_payouts.payouts_logging import configure_structlog, get_logger
from backend_payouts.snapshots.backfill import run_backfill
from backend_payouts.snapshots.months import is_year_month
from backend_payouts.tools._common import STORE_FILE, STORE_SQL, open_store, prepare_entities

logger = get_logger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill monthly payout snapshots")
    parser.add_argument("--entity", help="Only this entity id")
    parser.add_argument("--month", help="Only this month (YYYY-MM)")
    parser.add_argument("--dry-run", action="store_true", help="Fetch and build but do not write")
    parser.add_argument("--rebuild", action="store_true", help="Replace existing snapshots (requires --month)")
    parser.add_argument("--concurrency", type=int, default=1, help="Entities processed in parallel")
    parser.add_argument("--store", choices=(STORE_FILE, STORE_SQL), default=STORE_FILE)
    parser.add_argument("--entities-file", help="JSON file of entities to seed before running")
    parser.add_argument("--log-format", choices=("json", "console"), help="Override LOG_FORMAT")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    entities = prepare_entities(settings, args.entity, args.entities_file)
    if not entities:
        logger.error("backfill_no_entities", entity=args.entity)
        return 1
    store = open_store(settings, args.store)
    months = [args.month] if args.month else None
    async with ExplorerClient.from_settings(settings) as client:
        report = await run_backfill(
            client,
            store,
            entities,
            months=months,
            epoch=settings.backfill_epoch,
            dry_run=args.dry_run,
            rebuild=args.rebuild,
            concurrency=args.concurrency,
        )
    print(json.dumps(report.to_dict(), indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if args.log_format:
        configure_structlog(args.log_format)
    if args.month and not is_year_month(args.month):
        logger.error("backfill_invalid_month", month=args.month)
        return 2
    if args.rebuild and not args.month:
        logger.error("backfill_rebuild_requires_month")
        return 2
    try:
        return asyncio.run(_run(args))
    except ConfigurationError as e:
        logger.error("backfill_config_error", error=str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
