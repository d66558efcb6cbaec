"""
Warm-cache rows: upsert-by-key, read-by-key, last write wins.

Rows are returned as dicts (WarmCacheRow.to_dict()) so callers never hold
ORM objects outside a session.
"""

from __future__ import annotations

import time
from typing import Any, Iterable

from backend_payouts.database.connection import _session_scope
from backend_payouts.database.models import WarmCacheRow
from backend_payouts.payouts_logging import get_logger

logger = get_logger(__name__)

_WRITABLE = (
    "owner_id",
    "total_usd",
    "last_30d_usd",
    "avg_usd",
    "payout_count",
    "first_payout_at",
    "last_payout_at",
    "last_payout_tx_hash",
    "last_synced_at",
    "sync_error",
)


def get_warm_row(entity_id: str) -> dict[str, Any] | None:
    with _session_scope() as session:
        row = session.get(WarmCacheRow, entity_id)
        return row.to_dict() if row else None


def list_warm_rows() -> list[dict[str, Any]]:
    with _session_scope() as session:
        return [r.to_dict() for r in session.query(WarmCacheRow).order_by(WarmCacheRow.entity_id).all()]


def upsert_warm_row(entity_id: str, values: dict[str, Any]) -> dict[str, Any]:
    """Insert or overwrite the given fields of an entity's row. Unknown keys are ignored."""
    now = int(time.time())
    try:
        with _session_scope() as session:
            row = session.get(WarmCacheRow, entity_id)
            if row is None:
                row = WarmCacheRow(entity_id=entity_id)
                session.add(row)
            for key in _WRITABLE:
                if key in values:
                    setattr(row, key, values[key])
            row.updated_at = now
            session.flush()
            result = row.to_dict()
        logger.debug("warm_row_upserted", entity_id=entity_id, total_usd=result["total_usd"])
        return result
    except Exception as e:
        logger.exception("warm_row_upsert_failed", entity_id=entity_id, error=str(e))
        raise


def record_sync_error(entity_id: str, error: str, synced_at: int, owner_id: str | None = None) -> dict[str, Any]:
    """
    Mark a failed sync. An existing row keeps its totals and only gets
    sync_error/last_synced_at; without a row a zeroed one is created.
    """
    message = error[:1024]
    existing = get_warm_row(entity_id)
    if existing is not None:
        return upsert_warm_row(entity_id, {"sync_error": message, "last_synced_at": synced_at})
    return upsert_warm_row(
        entity_id,
        {
            "owner_id": owner_id,
            "total_usd": 0.0,
            "last_30d_usd": 0.0,
            "avg_usd": 0.0,
            "payout_count": 0,
            "sync_error": message,
            "last_synced_at": synced_at,
        },
    )


def delete_orphaned_rows(known_entity_ids: Iterable[str], stale_before: int) -> list[str]:
    """Delete rows whose entity is not tracked and whose last sync is older than stale_before (or never)."""
    known = set(known_entity_ids)
    deleted: list[str] = []
    with _session_scope() as session:
        rows = session.query(WarmCacheRow).all()
        for row in rows:
            if row.entity_id in known:
                continue
            if row.last_synced_at is not None and row.last_synced_at >= stale_before:
                continue
            deleted.append(row.entity_id)
            session.delete(row)
    return deleted
