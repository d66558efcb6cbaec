"""
Engine and session management for the payouts database.

Uses PAYOUTS_DB_URL / DATABASE_URL when set; otherwise falls back to SQLite
(PAYOUTS_DB_PATH or payouts.db). The engine is created lazily and cached;
tests point PAYOUTS_DB_PATH at a temp file and call reset_engine_for_test().
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from backend_payouts.config.env import get_database_url
from backend_payouts.database.models import Base
from backend_payouts.payouts_logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def _redact(url: str) -> str:
    return url.split("?")[0].split("//")[-1].split("@")[-1]


def _get_engine() -> Engine:
    """Create or return cached engine."""
    global _engine
    if _engine is None:
        url = get_database_url()
        connect_args = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        _engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        logger.info("payouts_db_engine", url=_redact(url))
    return _engine


def _get_session_factory() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=_get_engine())
    return _SessionLocal


@contextmanager
def _session_scope() -> Iterator[Session]:
    """Context manager for a single session. Commits on success, rolls back on error."""
    factory = _get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Create tables if they do not exist. Safe to call on every startup."""
    try:
        Base.metadata.create_all(bind=_get_engine())
        logger.info("payouts_init_db", url=_redact(get_database_url()))
    except Exception as e:
        logger.exception("payouts_init_db_failed", error=str(e))
        raise


def reset_engine_for_test() -> None:
    """Dispose and forget the cached engine. For tests only; use with a new PAYOUTS_DB_PATH."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def __getattr__(name: str) -> Any:
    """Lazy engine: expose 'engine' without creating it at import time."""
    if name == "engine":
        return _get_engine()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
