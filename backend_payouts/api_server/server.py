"""
FastAPI server: read-only period queries over snapshots and warm-cache rows.

Exposes GET /entities/{entity_id}/period?period=7d|30d|12m plus top/latest
payouts, the warm row, a weekly overview and a cache invalidation hook for
content publication. Never calls the explorer on a request; the warm sync
worker does that in the background.
"""

from __future__ import annotations

import threading
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backend_payouts.aggregation.period import PERIOD_30D, PERIODS
from backend_payouts.api_server.service import EntityNotFoundError, PayoutService
from backend_payouts.config.settings import get_settings
from backend_payouts.database.connection import init_db
from backend_payouts.database.entities import list_entities
from backend_payouts.payouts_logging import get_logger

logger = get_logger(__name__)

WARM_SYNC_SHUTDOWN_JOIN_SEC = 15.0


# -----------------------------------------------------------------------------
# Response models
# -----------------------------------------------------------------------------


class SummaryResponse(BaseModel):
    total_payouts: float = Field(..., description="Sum of payouts in the period (USD)")
    payout_count: int = Field(..., description="Number of payouts")
    largest_payout: float = Field(..., description="Largest single payout (USD)")
    avg_payout: float = Field(..., description="total_payouts / payout_count, 0 when empty")


class PeriodResponse(BaseModel):
    """GET /entities/{entity_id}/period response."""

    entity_id: str
    period: str = Field(..., description="7d, 30d or 12m")
    summary: SummaryResponse
    daily_buckets: list[dict[str, Any]] = Field(default_factory=list, description="7d/30d: per local day")
    monthly_buckets: list[dict[str, Any]] = Field(default_factory=list, description="12m: exactly 12, oldest first")
    transactions: list[dict[str, Any]] = Field(default_factory=list)
    warm: dict[str, Any] | None = Field(None, description="Warm-cache row for the entity, if any")


class PayoutListResponse(BaseModel):
    entity_id: str
    period: str
    payouts: list[dict[str, Any]] = Field(default_factory=list)


class InvalidateResponse(BaseModel):
    invalidated: bool


# -----------------------------------------------------------------------------
# Dependency
# -----------------------------------------------------------------------------


def get_service(request: Request) -> PayoutService:
    """App-scoped PayoutService; created on first use when the lifespan did not run."""
    service = getattr(request.app.state, "payouts", None)
    if service is None:
        service = PayoutService.from_settings(get_settings())
        request.app.state.payouts = service
    return service


def _validate_period(period: str) -> str:
    if period not in PERIODS:
        raise HTTPException(status_code=400, detail=f"period must be one of {', '.join(PERIODS)}")
    return period


# -----------------------------------------------------------------------------
# Lifespan: init tables, start warm sync worker (never blocks API)
# -----------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    from backend_payouts.api_server.warm_sync import run_warm_sync_loop

    settings = get_settings()
    try:
        init_db()
    except Exception as e:
        logger.warning("payouts_init_db_skip", error=str(e))
    app.state.payouts = PayoutService.from_settings(settings)

    stop_event = threading.Event()
    thread: threading.Thread | None = None
    if settings.alchemy_api_key and settings.warm_sync_interval_sec > 0:
        thread = threading.Thread(
            target=run_warm_sync_loop,
            args=(stop_event, settings, settings.warm_sync_interval_sec),
            name="warm-sync",
            daemon=True,
        )
        thread.start()
        logger.info("warm_sync_started", interval_sec=settings.warm_sync_interval_sec)
    else:
        logger.warning("warm_sync_disabled", reason="no ALCHEMY_API_KEY or interval <= 0")

    yield

    stop_event.set()
    if thread is not None:
        thread.join(timeout=WARM_SYNC_SHUTDOWN_JOIN_SEC)
        if thread.is_alive():
            logger.warning("warm_sync_shutdown_timeout", timeout_sec=WARM_SYNC_SHUTDOWN_JOIN_SEC)
        else:
            logger.info("warm_sync_stopped")


# -----------------------------------------------------------------------------
# App and routes
# -----------------------------------------------------------------------------

app = FastAPI(
    title="Payouts API",
    description="Verified payout statistics (7d / 30d / 12m) from monthly snapshots and warm-cache rows.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
def health() -> dict[str, str]:
    """Liveness probe: API is up."""
    return {"status": "ok"}


@app.get("/entities")
def get_entities() -> list[dict[str, Any]]:
    try:
        return [e.to_dict() for e in list_entities()]
    except Exception as e:
        logger.exception("entities_list_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to list entities") from e


@app.get("/entities/{entity_id}/period", response_model=PeriodResponse)
def get_period(
    entity_id: str,
    period: str = Query(PERIOD_30D, description="7d, 30d or 12m"),
    service: PayoutService = Depends(get_service),
) -> PeriodResponse:
    """
    Period aggregate for an entity. Always well-formed: months with no
    snapshot count as zero.
    """
    _validate_period(period)
    try:
        aggregate = service.period(entity_id, period)
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown entity {entity_id}")
    return PeriodResponse(
        entity_id=aggregate.entity_id,
        period=aggregate.period,
        summary=SummaryResponse(
            total_payouts=aggregate.summary.total_payouts,
            payout_count=aggregate.summary.payout_count,
            largest_payout=aggregate.summary.largest_payout,
            avg_payout=aggregate.summary.avg_payout,
        ),
        daily_buckets=[b.to_dict() for b in aggregate.daily_buckets],
        monthly_buckets=[b.to_dict() for b in aggregate.monthly_buckets],
        transactions=[p.to_dict() for p in aggregate.transactions],
        warm=aggregate.warm,
    )


@app.get("/entities/{entity_id}/top-payouts", response_model=PayoutListResponse)
def get_top_payouts(
    entity_id: str,
    period: str = Query(PERIOD_30D),
    limit: int = Query(10, ge=1, le=100),
    service: PayoutService = Depends(get_service),
) -> PayoutListResponse:
    _validate_period(period)
    try:
        payouts = service.top(entity_id, period, limit)
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown entity {entity_id}")
    return PayoutListResponse(entity_id=entity_id, period=period, payouts=payouts)


@app.get("/entities/{entity_id}/latest-payouts", response_model=PayoutListResponse)
def get_latest_payouts(
    entity_id: str,
    period: str = Query(PERIOD_30D),
    limit: int = Query(10, ge=1, le=100),
    service: PayoutService = Depends(get_service),
) -> PayoutListResponse:
    _validate_period(period)
    try:
        payouts = service.latest(entity_id, period, limit)
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown entity {entity_id}")
    return PayoutListResponse(entity_id=entity_id, period=period, payouts=payouts)


@app.get("/entities/{entity_id}/warm")
def get_warm(entity_id: str, service: PayoutService = Depends(get_service)) -> dict[str, Any]:
    """Warm-cache row (best-known current totals and last sync status)."""
    try:
        row = service.warm(entity_id)
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown entity {entity_id}")
    if row is None:
        raise HTTPException(status_code=404, detail=f"No warm-cache row for {entity_id} yet")
    return row


@app.get("/warm")
def get_warm_rows(service: PayoutService = Depends(get_service)) -> list[dict[str, Any]]:
    """All warm-cache rows, including orphaned rows and rows with a sync_error."""
    try:
        return service.warm_rows()
    except Exception as e:
        logger.exception("warm_rows_list_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to list warm-cache rows") from e


@app.get("/overview")
def get_overview(service: PayoutService = Depends(get_service)) -> dict[str, Any]:
    """Last-7-days totals for all active entities; cached for the current ISO week."""
    return service.overview()


@app.post("/cache/invalidate", response_model=InvalidateResponse)
def invalidate_cache(service: PayoutService = Depends(get_service)) -> InvalidateResponse:
    """Hook for content publication: drop cached aggregates so the next read recomputes."""
    service.invalidate()
    return InvalidateResponse(invalidated=True)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Any, exc: HTTPException) -> JSONResponse:
    """Consistent JSON error response for HTTPException."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
