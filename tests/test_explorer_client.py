"""
Tests for the explorer pagination client: pagination, cutoff early stop, retry/backoff, error taxonomy.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from backend_payouts.core.exceptions import (
    CircuitOpenError,
    ExplorerError,
    InvalidApiKeyError,
    RateLimitError,
)
from backend_payouts.explorer.client import DIRECTION_INBOUND, ExplorerClient
from backend_payouts.explorer.models import RawTransfer
from backend_payouts.explorer.resilience import STATE_OPEN, CircuitBreaker, UsageTracker
from payout_factories import FIRM, FIRM_2, TRADER, ExplorerStub, make_client, rpc_transfer, utc


def _day(day: int, tx: str | None = None) -> dict:
    return rpc_transfer(tx or f"0x{day:04x}", 100.0, utc(2025, 3, day))


def test_empty_api_key_rejected():
    """Constructing a client without an API key is a configuration error."""
    with pytest.raises(InvalidApiKeyError):
        ExplorerClient("")


def test_fetch_all_follows_page_key(sleeps):
    """All pages are walked in order and page_delay is slept between pages."""
    stub = ExplorerStub(pages={FIRM: [[_day(20), _day(19)], [_day(18)], [_day(17)]]})
    client = make_client(stub, sleeps)

    transfers = asyncio.run(client.fetch_all_transfers(FIRM))

    assert [t.tx_hash for t in transfers] == ["0x0014", "0x0013", "0x0012", "0x0011"]
    assert len(stub.requests) == 3
    assert "pageKey" not in stub.requests[0]
    assert stub.requests[1]["pageKey"] == "1"
    assert stub.requests[2]["pageKey"] == "2"
    assert sleeps.calls == [0.5, 0.5]


def test_request_params_outbound_and_inbound(sleeps):
    """Outbound queries by fromAddress, inbound by toAddress; newest first with metadata."""
    stub = ExplorerStub(pages={FIRM: [[_day(1)]], TRADER: [[_day(2)]]})
    client = make_client(stub, sleeps)

    asyncio.run(client.fetch_all_transfers(FIRM))
    asyncio.run(client.fetch_all_transfers(TRADER, direction=DIRECTION_INBOUND))

    outbound, inbound = stub.requests
    assert outbound["fromAddress"] == FIRM
    assert "toAddress" not in outbound
    assert outbound["order"] == "desc"
    assert outbound["withMetadata"] is True
    assert outbound["maxCount"] == hex(1000)
    assert set(outbound["category"]) == {"external", "erc20"}
    assert inbound["toAddress"] == TRADER
    assert "fromAddress" not in inbound


def test_cutoff_stops_pagination_and_filters(sleeps):
    """
    Page 1 covers days 10..5, page 2 days 4..1 with cutoff at day 5: pagination stops
    after page 2 (page 3 is never requested) and nothing before day 5 is returned.
    """
    stub = ExplorerStub(
        pages={
            FIRM: [
                [_day(10), _day(9), _day(8), _day(7), _day(6), _day(5)],
                [_day(4), _day(3), _day(2), _day(1)],
                [rpc_transfer("0xold", 100.0, utc(2025, 2, 28))],
            ]
        }
    )
    client = make_client(stub, sleeps)
    cutoff = int(utc(2025, 3, 5, 0).timestamp())

    transfers = asyncio.run(client.fetch_all_transfers(FIRM, cutoff_timestamp=cutoff))

    assert len(stub.requests) == 2
    assert [t.tx_hash for t in transfers] == ["0x000a", "0x0009", "0x0008", "0x0007", "0x0006", "0x0005"]
    assert all(t.block_timestamp >= cutoff for t in transfers)


def test_empty_page_ends_pagination(sleeps):
    stub = ExplorerStub(pages={FIRM: [[]]})
    client = make_client(stub, sleeps)

    assert asyncio.run(client.fetch_all_transfers(FIRM)) == []
    assert len(stub.requests) == 1
    assert sleeps.calls == []


def test_retry_with_backoff_then_success(sleeps):
    """A 500 followed by success is retried after the first backoff delay."""
    stub = ExplorerStub(pages={FIRM: [[_day(3)]]})
    stub.responses.append(lambda body: httpx.Response(500, text="boom"))
    client = make_client(stub, sleeps)

    transfers = asyncio.run(client.fetch_all_transfers(FIRM))

    assert [t.tx_hash for t in transfers] == ["0x0003"]
    assert len(stub.requests) == 2
    assert sleeps.calls == [1.0]


def test_rate_limit_exhausts_retries(sleeps):
    """Persistent 429 is retried max_retries times with 1s, 2s, 4s backoff, then surfaces."""
    stub = ExplorerStub(failures={FIRM: 429})
    client = make_client(stub, sleeps)

    with pytest.raises(RateLimitError):
        asyncio.run(client.fetch_all_transfers(FIRM))

    assert len(stub.requests) == 4
    assert sleeps.calls == [1.0, 2.0, 4.0]


def test_rpc_error_object_is_retried(sleeps):
    """A JSON-RPC error body is treated like a failed request."""
    stub = ExplorerStub(pages={FIRM: [[_day(3)]]})
    stub.responses.append(
        lambda body: httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": "internal"}})
    )
    client = make_client(stub, sleeps)

    transfers = asyncio.run(client.fetch_all_transfers(FIRM))

    assert len(transfers) == 1
    assert sleeps.calls == [1.0]


def test_invalid_key_not_retried(sleeps):
    """HTTP 401 raises InvalidApiKeyError immediately."""
    stub = ExplorerStub(failures={FIRM: 401})
    client = make_client(stub, sleeps)

    with pytest.raises(InvalidApiKeyError):
        asyncio.run(client.fetch_all_transfers(FIRM))

    assert len(stub.requests) == 1
    assert sleeps.calls == []


def test_server_error_surfaces_after_retries(sleeps):
    stub = ExplorerStub(failures={FIRM: 503})
    client = make_client(stub, sleeps, max_retries=1)

    with pytest.raises(ExplorerError) as exc_info:
        asyncio.run(client.fetch_all_transfers(FIRM))

    assert exc_info.value.status_code == 503
    assert len(stub.requests) == 2


def test_no_retries_raises_first_error(sleeps):
    """With max_retries=0 the first failure surfaces unchanged, without backoff."""
    stub = ExplorerStub(failures={FIRM: 429})
    client = make_client(stub, sleeps, max_retries=0)

    with pytest.raises(RateLimitError) as exc_info:
        asyncio.run(client.fetch_all_transfers(FIRM))

    assert exc_info.value.status_code == 429
    assert len(stub.requests) == 1
    assert sleeps.calls == []


def test_entity_addresses_fetched_sequentially_and_deduped(sleeps):
    """Two addresses of one entity: address_delay between them, duplicate hashes kept once."""
    shared = rpc_transfer("0xABC", 50.0, utc(2025, 3, 4), from_addr=FIRM_2)
    stub = ExplorerStub(
        pages={
            FIRM: [[_day(5), rpc_transfer("0xabc", 50.0, utc(2025, 3, 4))]],
            FIRM_2: [[shared, _day(2)]],
        }
    )
    client = make_client(stub, sleeps)

    transfers = asyncio.run(client.fetch_entity_transfers([FIRM, FIRM_2]))

    assert [t.tx_hash.lower() for t in transfers] == ["0x0005", "0xabc", "0x0002"]
    assert [r["fromAddress"] for r in stub.requests] == [FIRM, FIRM_2]
    assert sleeps.calls == [1.0]


def test_raw_transfer_parses_rpc_item():
    item = rpc_transfer("0x01", 12.5, utc(2025, 3, 1), block=255)
    t = RawTransfer.from_rpc_item(item)
    assert t.raw_value == 12_500_000
    assert t.decimals == 6
    assert t.block_number == 255
    assert t.block_timestamp == int(utc(2025, 3, 1).timestamp())
    assert not t.is_native


def test_circuit_breaker_opens_and_half_opens():
    """Consecutive failures open the circuit; after the reset timeout one trial call closes it."""
    now = [0.0]
    breaker = CircuitBreaker(failure_threshold=2, reset_timeout_sec=60, clock=lambda: now[0])

    async def fail():
        raise ExplorerError("down")

    async def ok():
        return "ok"

    for _ in range(2):
        with pytest.raises(ExplorerError):
            asyncio.run(breaker.call(fail))
    assert breaker.state == STATE_OPEN

    with pytest.raises(CircuitOpenError):
        asyncio.run(breaker.call(ok))

    now[0] = 61.0
    assert asyncio.run(breaker.call(ok)) == "ok"
    assert breaker.failure_count == 0
    assert breaker.state == "CLOSED"


def test_usage_tracker_resets_per_day():
    day = ["2025-03-01"]
    tracker = UsageTracker(limit=10, day_fn=lambda: day[0])
    for _ in range(9):
        tracker.track_call()
    assert tracker.usage()["percentage"] == 90

    day[0] = "2025-03-02"
    assert tracker.usage()["calls"] == 0
    assert tracker.track_call()["calls"] == 1
