"""Shared setup for the command-line tools: settings, DB, entity selection, snapshot store."""

from __future__ import annotations

from pathlib import Path

from backend_payouts.config.settings import Settings
from backend_payouts.database.connection import init_db
from backend_payouts.database.entities import Entity, list_entities, load_entities_file, seed_entities
from backend_payouts.payouts_logging import get_logger
from backend_payouts.snapshots.store import FileSnapshotStore, SnapshotStore, SqlSnapshotStore

logger = get_logger(__name__)

STORE_FILE = "file"
STORE_SQL = "sql"


def prepare_entities(settings: Settings, entity_id: str | None, entities_file: str | None) -> list[Entity]:
    """Init tables, seed from the entities file if present, return the selected active entities."""
    init_db()
    path = Path(entities_file) if entities_file else settings.entities_file
    seeded = seed_entities(load_entities_file(path)) if path.exists() else 0
    if seeded:
        logger.info("entities_seeded", count=seeded, path=str(path))
    entities = list_entities()
    if entity_id:
        entities = [e for e in entities if e.entity_id == entity_id]
    return entities


def open_store(settings: Settings, kind: str) -> SnapshotStore:
    if kind == STORE_SQL:
        return SqlSnapshotStore()
    return FileSnapshotStore(settings.snapshot_dir)
