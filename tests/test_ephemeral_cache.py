"""
Tests for the single-slot aggregate cache.
"""

from __future__ import annotations

from datetime import date

from backend_payouts.cache import MISS, AggregateCache, week_key


def test_get_set_and_key_mismatch():
    cache = AggregateCache(ttl_sec=60, clock=lambda: 0.0)
    assert cache.get("2025-W12") is MISS

    cache.set("2025-W12", {"total": 1})
    assert cache.get("2025-W12") == {"total": 1}
    assert cache.get("2025-W13") is MISS


def test_new_key_evicts_old():
    cache = AggregateCache(ttl_sec=60, clock=lambda: 0.0)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") is MISS
    assert cache.get("b") == 2


def test_ttl_expiry():
    now = [0.0]
    cache = AggregateCache(ttl_sec=60, clock=lambda: now[0])
    cache.set("k", "v")
    now[0] = 59.0
    assert cache.get("k") == "v"
    now[0] = 60.0
    assert cache.get("k") is MISS
    assert cache.info()["cached"] is False


def test_invalidate_and_get_or_compute():
    calls = []
    cache = AggregateCache(ttl_sec=60, clock=lambda: 0.0)

    def compute():
        calls.append(1)
        return len(calls)

    assert cache.get_or_compute("k", compute) == 1
    assert cache.get_or_compute("k", compute) == 1
    cache.invalidate()
    assert cache.get_or_compute("k", compute) == 2


def test_cached_falsy_value_is_a_hit():
    cache = AggregateCache(ttl_sec=60, clock=lambda: 0.0)
    cache.set("k", [])
    assert cache.get("k") == []
    assert cache.get("k") is not MISS


def test_week_key():
    assert week_key(date(2026, 2, 18)) == "2026-W08"
    assert week_key(date(2025, 12, 29)) == "2026-W01"
