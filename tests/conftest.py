"""
Pytest fixtures for payouts tests. Uses a temporary SQLite DB and a temporary snapshot directory.
"""

from __future__ import annotations

import pytest


@pytest.fixture
def payouts_db(tmp_path, monkeypatch):
    """
    Point the payouts DB at a temporary SQLite file and create tables.
    Resets the engine cache so each test gets a fresh DB. Unsets DB URLs so SQLite is used.
    """
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("PAYOUTS_DB_URL", raising=False)
    monkeypatch.setenv("PAYOUTS_DB_PATH", str(tmp_path / "payouts.db"))

    import backend_payouts.database.connection as db

    db.reset_engine_for_test()
    db.init_db()
    yield db
    db.reset_engine_for_test()


@pytest.fixture
def snapshot_store(tmp_path):
    from backend_payouts.snapshots.store import FileSnapshotStore

    return FileSnapshotStore(tmp_path / "snapshots")


@pytest.fixture
def sleeps():
    from payout_factories import SleepRecorder

    return SleepRecorder()


@pytest.fixture
def client(payouts_db, snapshot_store):
    """
    FastAPI TestClient with a PayoutService over the temp store, pinned to a fixed clock.
    Lifespan is not run, so no warm sync worker starts.
    """
    from fastapi.testclient import TestClient

    from backend_payouts.aggregation.loader import SnapshotLoader
    from backend_payouts.api_server.server import app, get_service
    from backend_payouts.api_server.service import PayoutService
    from backend_payouts.cache.ephemeral import AggregateCache
    from payout_factories import NOW

    service = PayoutService(
        loader=SnapshotLoader(snapshot_store),
        overview_cache=AggregateCache(),
        now_fn=lambda: NOW,
    )
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()
