"""
Check stored monthly snapshots against a live explorer fetch.

Usage:
  python -m backend_payouts.tools.validate_overlap
  python -m backend_payouts.tools.validate_overlap --month 2025-02
  python -m backend_payouts.tools.validate_overlap --entity fundingpips --threshold 0.01

Without --month each entity's current local month is checked. Only months
that have a stored snapshot are compared. Exits 1 when, for any entity-month,
more than --threshold of the live payouts are missing from the snapshot.
"""

from __future__ import annotations

import argparse
import asyncio
import json

from backend_payouts.config.settings import get_settings
from backend_payouts.core.exceptions import ConfigurationError
from backend_payouts.explorer.client import ExplorerClient
from backend_payouts.payouts_logging import configure_structlog, get_logger
from backend_payouts.snapshots.months import current_year_month, is_year_month, utc_now
from backend_payouts.snapshots.overlap import MISMATCH_THRESHOLD, OverlapReport, validate_month
from backend_payouts.tools._common import STORE_FILE, STORE_SQL, open_store, prepare_entities

logger = get_logger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compare snapshots with live explorer data")
    parser.add_argument("--entity", help="Only this entity id")
    parser.add_argument("--month", help="Month to check (YYYY-MM); default: current month per entity")
    parser.add_argument(
        "--threshold",
        type=float,
        default=MISMATCH_THRESHOLD,
        help="Fail when more than this share of live payouts is missing from a snapshot",
    )
    parser.add_argument("--store", choices=(STORE_FILE, STORE_SQL), default=STORE_FILE)
    parser.add_argument("--entities-file", help="JSON file of entities to seed before running")
    parser.add_argument("--log-format", choices=("json", "console"), help="Override LOG_FORMAT")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    entities = prepare_entities(settings, args.entity, args.entities_file)
    if not entities:
        logger.error("overlap_no_entities", entity=args.entity)
        return 1
    store = open_store(settings, args.store)
    now = utc_now()
    reports: list[OverlapReport] = []
    async with ExplorerClient.from_settings(settings) as client:
        for entity in entities:
            year_month = args.month or current_year_month(now, entity.timezone)
            if year_month not in store.list_months(entity.entity_id):
                logger.info("overlap_skip_no_snapshot", entity_id=entity.entity_id, year_month=year_month)
                continue
            reports.append(await validate_month(client, store, entity, year_month))
    failed = [r for r in reports if r.error or r.exceeds(args.threshold)]
    print(json.dumps({"reports": [r.to_dict() for r in reports], "failed": len(failed)}, indent=2))
    if failed:
        logger.error("overlap_validation_failed", failed=len(failed), threshold=args.threshold)
        return 1
    logger.info("overlap_validation_passed", checked=len(reports))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if args.log_format:
        configure_structlog(args.log_format)
    if args.month and not is_year_month(args.month):
        logger.error("overlap_invalid_month", month=args.month)
        return 2
    try:
        return asyncio.run(_run(args))
    except ConfigurationError as e:
        logger.error("overlap_config_error", error=str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
