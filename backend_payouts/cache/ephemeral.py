"""
Single-slot, TTL-bounded in-memory cache for expensive aggregates.

One key (typically an ISO week such as "2026-W08") and one value at a time;
setting a new key evicts the old one. Owned by whichever service composes the
aggregator, never a module global. Process-local and not safe against racing
invalidations; a miss only means a recompute.
"""

from __future__ import annotations

import time
from datetime import date, datetime
from typing import Any, Callable, Hashable

DEFAULT_TTL_SEC = 3600.0


class _Miss:
    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Any = _Miss()


def week_key(day: date | datetime) -> str:
    """ISO week key for a date, e.g. '2026-W08'."""
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


class AggregateCache:
    def __init__(self, ttl_sec: float = DEFAULT_TTL_SEC, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._key: Hashable | None = None
        self._value: Any = MISS
        self._expires_at = 0.0

    def get(self, key: Hashable) -> Any:
        """Cached value for key, or MISS when empty, expired or holding another key."""
        if self._value is MISS or key != self._key:
            return MISS
        if self._clock() >= self._expires_at:
            self.invalidate()
            return MISS
        return self._value

    def set(self, key: Hashable, value: Any, ttl_sec: float | None = None) -> None:
        self._key = key
        self._value = value
        self._expires_at = self._clock() + (self.ttl_sec if ttl_sec is None else ttl_sec)

    def invalidate(self) -> None:
        self._key = None
        self._value = MISS
        self._expires_at = 0.0

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any], ttl_sec: float | None = None) -> Any:
        value = self.get(key)
        if value is MISS:
            value = compute()
            self.set(key, value, ttl_sec)
        return value

    def info(self) -> dict[str, Any]:
        remaining = max(0.0, self._expires_at - self._clock()) if self._value is not MISS else 0.0
        return {"key": self._key, "cached": self._value is not MISS, "ttl_remaining_sec": round(remaining, 1)}
