"""
Explorer call guards: daily usage tracking and a circuit breaker.

UsageTracker counts calls per UTC day and warns once per threshold (80/90/95%)
of the provider's daily quota. CircuitBreaker stops hammering the explorer
after repeated failures: CLOSED -> OPEN after N consecutive failures, OPEN ->
HALF_OPEN after reset_timeout_sec, one trial call decides CLOSED or OPEN again.
Both are process-local and owned by an ExplorerClient instance.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from backend_payouts.core.exceptions import CircuitOpenError
from backend_payouts.payouts_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

USAGE_ALERT_THRESHOLDS = (80, 90, 95)

STATE_CLOSED = "CLOSED"
STATE_OPEN = "OPEN"
STATE_HALF_OPEN = "HALF_OPEN"

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RESET_TIMEOUT_SEC = 60.0


def _utc_day() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


class UsageTracker:
    """Daily explorer call counter; resets when the UTC day changes."""

    def __init__(self, limit: int = 100_000, *, day_fn: Callable[[], str] = _utc_day) -> None:
        self.limit = limit
        self._day_fn = day_fn
        self._calls = 0
        self._day: str | None = None
        self._alerted: set[int] = set()

    def track_call(self) -> dict[str, Any]:
        day = self._day_fn()
        if day != self._day:
            self._day = day
            self._calls = 0
            self._alerted.clear()
        self._calls += 1
        usage = self.usage()
        for threshold in USAGE_ALERT_THRESHOLDS:
            if usage["percentage"] >= threshold and threshold not in self._alerted:
                self._alerted.add(threshold)
                logger.warning("explorer_usage_threshold", threshold=threshold, **usage)
        return usage

    def usage(self) -> dict[str, Any]:
        day = self._day_fn()
        if day != self._day:
            return {"calls": 0, "limit": self.limit, "percentage": 0, "day": day}
        percentage = round(self._calls / self.limit * 100) if self.limit > 0 else 0
        return {"calls": self._calls, "limit": self.limit, "percentage": percentage, "day": day}


class CircuitBreaker:
    """Consecutive-failure circuit breaker for async calls."""

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout_sec: float = DEFAULT_RESET_TIMEOUT_SEC,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout_sec = reset_timeout_sec
        self._clock = clock
        self.state = STATE_CLOSED
        self.failure_count = 0
        self._next_attempt_at: float | None = None

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        self._maybe_half_open()
        if self.state == STATE_OPEN:
            logger.warning("explorer_circuit_open_blocked", retry_in_sec=self._retry_in())
            raise CircuitOpenError("Explorer circuit breaker is open")
        try:
            result = await fn()
        except Exception:
            self._record_failure()
            raise
        self._record_success()
        return result

    def _retry_in(self) -> float:
        if self._next_attempt_at is None:
            return 0.0
        return max(0.0, round(self._next_attempt_at - self._clock(), 1))

    def _maybe_half_open(self) -> None:
        if self.state == STATE_OPEN and self._next_attempt_at is not None and self._clock() >= self._next_attempt_at:
            self.state = STATE_HALF_OPEN
            self.failure_count = 0
            logger.warning("explorer_circuit_half_open")

    def _record_success(self) -> None:
        if self.state == STATE_HALF_OPEN:
            logger.warning("explorer_circuit_closed")
        self.state = STATE_CLOSED
        self.failure_count = 0

    def _record_failure(self) -> None:
        self.failure_count += 1
        if self.state == STATE_HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.state = STATE_OPEN
            self._next_attempt_at = self._clock() + self.reset_timeout_sec
            logger.warning(
                "explorer_circuit_opened",
                failure_count=self.failure_count,
                reset_timeout_sec=self.reset_timeout_sec,
            )

    def reset(self) -> None:
        self.state = STATE_CLOSED
        self.failure_count = 0
        self._next_attempt_at = None
