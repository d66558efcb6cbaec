"""
Snapshot stores keyed by (entity_id, year_month).

Writes are create-only: put_if_absent() returns False and leaves the stored
document untouched when the month already exists. rebuild() is the only path
that replaces a month. Reads return None for a missing or unreadable document
so callers treat it as zero data.

FileSnapshotStore lays documents out as <root>/<entity_id>/<YYYY-MM>.json and
publishes each file with a hard link from a temp file, so a half-written file
is never visible under the final name.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Protocol

from sqlalchemy.exc import IntegrityError

from backend_payouts.database.connection import _session_scope
from backend_payouts.database.models import SnapshotRow
from backend_payouts.payouts_logging import get_logger
from backend_payouts.snapshots.models import MonthlySnapshot
from backend_payouts.snapshots.months import is_year_month

logger = get_logger(__name__)


class SnapshotStore(Protocol):
    def get(self, entity_id: str, year_month: str) -> MonthlySnapshot | None: ...

    def put_if_absent(self, snapshot: MonthlySnapshot) -> bool: ...

    def list_months(self, entity_id: str) -> list[str]: ...

    def rebuild(self, snapshot: MonthlySnapshot) -> None: ...


def _decode(raw: str, entity_id: str, year_month: str) -> MonthlySnapshot | None:
    try:
        return MonthlySnapshot.from_dict(json.loads(raw))
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.warning("snapshot_corrupt", entity_id=entity_id, year_month=year_month, error=str(e))
        return None


def _encode(snapshot: MonthlySnapshot) -> str:
    return json.dumps(snapshot.to_dict(), indent=2)


def _safe_entity_dir(entity_id: str) -> str:
    if not entity_id or "/" in entity_id or "\\" in entity_id or entity_id in (".", ".."):
        raise ValueError(f"Invalid entity id for snapshot path: {entity_id!r}")
    return entity_id


class FileSnapshotStore:
    """JSON documents on disk, one file per entity-month."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def path_for(self, entity_id: str, year_month: str) -> Path:
        if not is_year_month(year_month):
            raise ValueError(f"Invalid year-month {year_month!r}")
        return self.root / _safe_entity_dir(entity_id) / f"{year_month}.json"

    def get(self, entity_id: str, year_month: str) -> MonthlySnapshot | None:
        path = self.path_for(entity_id, year_month)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("snapshot_read_failed", entity_id=entity_id, year_month=year_month, error=str(e))
            return None
        return _decode(raw, entity_id, year_month)

    def list_months(self, entity_id: str) -> list[str]:
        directory = self.root / _safe_entity_dir(entity_id)
        if not directory.is_dir():
            return []
        return sorted(p.stem for p in directory.glob("*.json") if is_year_month(p.stem))

    def _write_temp(self, path: Path, content: str) -> str:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        return tmp

    def put_if_absent(self, snapshot: MonthlySnapshot) -> bool:
        path = self.path_for(snapshot.entity_id, snapshot.year_month)
        if path.exists():
            return False
        tmp = self._write_temp(path, _encode(snapshot))
        try:
            os.link(tmp, path)
        except FileExistsError:
            return False
        finally:
            os.unlink(tmp)
        logger.info(
            "snapshot_written",
            entity_id=snapshot.entity_id,
            year_month=snapshot.year_month,
            payouts=snapshot.summary.payout_count,
            path=str(path),
        )
        return True

    def rebuild(self, snapshot: MonthlySnapshot) -> None:
        path = self.path_for(snapshot.entity_id, snapshot.year_month)
        tmp = self._write_temp(path, _encode(snapshot))
        os.replace(tmp, path)
        logger.warning("snapshot_rebuilt", entity_id=snapshot.entity_id, year_month=snapshot.year_month)


class SqlSnapshotStore:
    """Snapshot documents in the monthly_snapshots table; uniqueness enforced by the database."""

    def get(self, entity_id: str, year_month: str) -> MonthlySnapshot | None:
        with _session_scope() as session:
            row = (
                session.query(SnapshotRow)
                .filter(SnapshotRow.entity_id == entity_id, SnapshotRow.year_month == year_month)
                .first()
            )
            raw = row.document if row else None
        if raw is None:
            return None
        return _decode(raw, entity_id, year_month)

    def list_months(self, entity_id: str) -> list[str]:
        with _session_scope() as session:
            rows = session.query(SnapshotRow.year_month).filter(SnapshotRow.entity_id == entity_id).all()
        return sorted(r[0] for r in rows)

    def put_if_absent(self, snapshot: MonthlySnapshot) -> bool:
        try:
            with _session_scope() as session:
                session.add(
                    SnapshotRow(
                        entity_id=snapshot.entity_id,
                        year_month=snapshot.year_month,
                        document=_encode(snapshot),
                        generated_at=snapshot.generated_at,
                    )
                )
                session.flush()
        except IntegrityError:
            return False
        logger.info(
            "snapshot_written",
            entity_id=snapshot.entity_id,
            year_month=snapshot.year_month,
            payouts=snapshot.summary.payout_count,
            store="sql",
        )
        return True

    def rebuild(self, snapshot: MonthlySnapshot) -> None:
        with _session_scope() as session:
            row = (
                session.query(SnapshotRow)
                .filter(SnapshotRow.entity_id == snapshot.entity_id, SnapshotRow.year_month == snapshot.year_month)
                .first()
            )
            if row is None:
                row = SnapshotRow(entity_id=snapshot.entity_id, year_month=snapshot.year_month)
                session.add(row)
            row.document = _encode(snapshot)
            row.generated_at = snapshot.generated_at
        logger.warning("snapshot_rebuilt", entity_id=snapshot.entity_id, year_month=snapshot.year_month, store="sql")
