"""
SQLAlchemy models for the payouts engine.

- tracked_entities: firms and trader wallets being tracked (addresses as a JSON array)
- warm_cache_rows: one mutable best-known-totals row per entity (upsert by entity_id)
- monthly_snapshots: create-only snapshot documents, unique per (entity_id, year_month)
"""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy import Boolean, Column, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()

KIND_FIRM = "firm"
KIND_TRADER = "trader"


class TrackedEntity(Base):
    """A firm (outbound payouts) or trader wallet (inbound payouts) to sync."""

    __tablename__ = "tracked_entities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_id = Column(String(128), unique=True, nullable=False, index=True)
    name = Column(String(256), nullable=True)
    kind = Column(String(16), nullable=False, default=KIND_FIRM)
    addresses = Column(Text, nullable=False, default="[]")  # JSON array of addresses
    timezone = Column(String(64), nullable=False, default="UTC")
    owner_id = Column(String(128), nullable=True)  # profile that claimed the entity, if any
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(Integer, nullable=True)  # Unix

    def address_list(self) -> list[str]:
        try:
            parsed = json.loads(self.addresses or "[]")
        except ValueError:
            return []
        return [str(a) for a in parsed if a] if isinstance(parsed, list) else []

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "name": self.name or self.entity_id,
            "kind": self.kind,
            "addresses": self.address_list(),
            "timezone": self.timezone or "UTC",
            "owner_id": self.owner_id,
            "is_active": self.is_active,
        }


class WarmCacheRow(Base):
    """
    Best-known current totals for one entity: snapshot history plus the live
    last-30-days window. sync_error is set when the last sync failed.
    """

    __tablename__ = "warm_cache_rows"

    entity_id = Column(String(128), primary_key=True)
    owner_id = Column(String(128), nullable=True, index=True)
    total_usd = Column(Float, nullable=False, default=0.0)
    last_30d_usd = Column(Float, nullable=False, default=0.0)
    avg_usd = Column(Float, nullable=False, default=0.0)
    payout_count = Column(Integer, nullable=False, default=0)
    first_payout_at = Column(String(32), nullable=True)  # ISO-8601
    last_payout_at = Column(String(32), nullable=True)  # ISO-8601
    last_payout_tx_hash = Column(String(128), nullable=True)
    last_synced_at = Column(Integer, nullable=True, index=True)  # Unix
    sync_error = Column(String(1024), nullable=True)
    updated_at = Column(Integer, nullable=True)  # Unix

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "owner_id": self.owner_id,
            "total_usd": self.total_usd or 0.0,
            "last_30d_usd": self.last_30d_usd or 0.0,
            "avg_usd": self.avg_usd or 0.0,
            "payout_count": self.payout_count or 0,
            "first_payout_at": self.first_payout_at,
            "last_payout_at": self.last_payout_at,
            "last_payout_tx_hash": self.last_payout_tx_hash,
            "last_synced_at": self.last_synced_at,
            "sync_error": self.sync_error,
            "updated_at": self.updated_at,
        }


class SnapshotRow(Base):
    """Stored MonthlySnapshot document (JSON text). Never updated in normal flow."""

    __tablename__ = "monthly_snapshots"
    __table_args__ = (UniqueConstraint("entity_id", "year_month", name="uq_snapshot_entity_month"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_id = Column(String(128), nullable=False, index=True)
    year_month = Column(String(7), nullable=False)
    document = Column(Text, nullable=False)
    generated_at = Column(String(32), nullable=True)
