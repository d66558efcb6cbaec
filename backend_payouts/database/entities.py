"""
Tracked entity registry: firms and trader wallets, with their addresses and timezone.

Public API mirrors the rest of the database package: plain functions wrapping
_session_scope(), returning Entity values rather than ORM objects.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError

from backend_payouts.database.connection import _session_scope
from backend_payouts.database.models import KIND_FIRM, KIND_TRADER, TrackedEntity
from backend_payouts.payouts_logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Entity:
    entity_id: str
    addresses: tuple[str, ...] = field(default_factory=tuple)
    name: str = ""
    kind: str = KIND_FIRM
    timezone: str = "UTC"
    owner_id: str | None = None

    @property
    def is_trader(self) -> bool:
        return self.kind == KIND_TRADER

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Entity":
        entity_id = str(data.get("entity_id") or data.get("id") or "").strip()
        if not entity_id:
            raise ValueError("entity must have an id")
        kind = str(data.get("kind") or KIND_FIRM).strip().lower()
        if kind not in (KIND_FIRM, KIND_TRADER):
            raise ValueError(f"unknown entity kind {kind!r}")
        addresses = tuple(str(a).strip() for a in data.get("addresses") or [] if str(a).strip())
        return cls(
            entity_id=entity_id,
            addresses=addresses,
            name=str(data.get("name") or entity_id),
            kind=kind,
            timezone=str(data.get("timezone") or "UTC"),
            owner_id=data.get("owner_id") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "name": self.name or self.entity_id,
            "kind": self.kind,
            "addresses": list(self.addresses),
            "timezone": self.timezone,
            "owner_id": self.owner_id,
        }


def _from_row(row: TrackedEntity) -> Entity:
    return Entity(
        entity_id=row.entity_id,
        addresses=tuple(row.address_list()),
        name=row.name or row.entity_id,
        kind=row.kind or KIND_FIRM,
        timezone=row.timezone or "UTC",
        owner_id=row.owner_id,
    )


def add_entity(entity: Entity) -> bool:
    """Insert entity. Returns True if inserted, False if entity_id already exists."""
    try:
        with _session_scope() as session:
            session.add(
                TrackedEntity(
                    entity_id=entity.entity_id,
                    name=entity.name or entity.entity_id,
                    kind=entity.kind,
                    addresses=json.dumps(list(entity.addresses)),
                    timezone=entity.timezone,
                    owner_id=entity.owner_id,
                    is_active=True,
                    created_at=int(time.time()),
                )
            )
            session.flush()
        logger.info("entity_added", entity_id=entity.entity_id, kind=entity.kind, addresses=len(entity.addresses))
        return True
    except IntegrityError:
        logger.info("entity_already_exists", entity_id=entity.entity_id)
        return False


def get_entity(entity_id: str) -> Entity | None:
    with _session_scope() as session:
        row = session.query(TrackedEntity).filter(TrackedEntity.entity_id == entity_id).first()
        return _from_row(row) if row else None


def list_entities(*, active_only: bool = True, kind: str | None = None) -> list[Entity]:
    with _session_scope() as session:
        q = session.query(TrackedEntity)
        if active_only:
            q = q.filter(TrackedEntity.is_active.is_(True))
        if kind:
            q = q.filter(TrackedEntity.kind == kind)
        return [_from_row(r) for r in q.order_by(TrackedEntity.entity_id).all()]


def known_entity_ids() -> set[str]:
    """All tracked entity ids, active or not."""
    with _session_scope() as session:
        return {r[0] for r in session.query(TrackedEntity.entity_id).all()}


def remove_entity(entity_id: str) -> bool:
    """Delete an entity row; its warm row becomes orphaned and is cleaned up later."""
    with _session_scope() as session:
        deleted = session.query(TrackedEntity).filter(TrackedEntity.entity_id == entity_id).delete()
    if deleted:
        logger.info("entity_removed", entity_id=entity_id)
    return bool(deleted)


def load_entities_file(path: Path) -> list[Entity]:
    """
    Read entities from JSON: either a list or {"entities": [...]}.
    Invalid entries are logged and skipped; a missing file yields [].
    """
    if not path.exists():
        logger.warning("entities_file_missing", path=str(path))
        return []
    data = json.loads(path.read_text(encoding="utf-8"))
    items: Iterable[Any] = data.get("entities", []) if isinstance(data, dict) else data
    entities: list[Entity] = []
    for item in items:
        try:
            entities.append(Entity.from_dict(item))
        except (ValueError, AttributeError, TypeError) as e:
            logger.warning("entities_file_invalid_entry", path=str(path), error=str(e))
    return entities


def seed_entities(entities: Iterable[Entity]) -> int:
    """add_entity for each; returns how many were newly inserted."""
    return sum(1 for e in entities if add_entity(e))
