"""
Builders for explorer payloads, payouts and a mocked explorer endpoint.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from backend_payouts.explorer.client import ExplorerClient
from backend_payouts.snapshots.models import PaymentMethod, Payout, format_timestamp

FIRM = "0x1111111111111111111111111111111111111111"
FIRM_2 = "0x2222222222222222222222222222222222222222"
TRADER = "0x9999999999999999999999999999999999999999"
OTHER = "0x5555555555555555555555555555555555555555"

NOW = datetime(2025, 3, 20, 12, 0, tzinfo=timezone.utc)


def utc(year: int, month: int, day: int, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def iso_ms(dt: datetime) -> str:
    """Explorer metadata timestamp format."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def rpc_transfer(
    tx_hash: str,
    amount: float,
    when: datetime | None,
    *,
    asset: str = "USDC",
    category: str = "erc20",
    from_addr: str = FIRM,
    to_addr: str = TRADER,
    decimals: int | None = 6,
    block: int = 100,
) -> dict[str, Any]:
    """One alchemy_getAssetTransfers item; amount is in token units."""
    scale = 18 if category == "external" else (decimals if decimals is not None else 18)
    raw_contract: dict[str, Any] = {"value": hex(int(round(amount * 10**scale)))}
    if decimals is not None:
        raw_contract["decimal"] = hex(decimals)
    item: dict[str, Any] = {
        "hash": tx_hash,
        "from": from_addr,
        "to": to_addr,
        "value": amount,
        "asset": asset,
        "category": category,
        "blockNum": hex(block),
        "rawContract": raw_contract,
    }
    if when is not None:
        item["metadata"] = {"blockTimestamp": iso_ms(when)}
    return item


def make_payout(
    tx_hash: str,
    amount: float,
    when: datetime,
    *,
    entity_id: str = "firm",
    method: PaymentMethod = PaymentMethod.CRYPTO,
) -> Payout:
    return Payout(
        tx_hash=tx_hash,
        entity_id=entity_id,
        amount_usd=amount,
        payment_method=method,
        timestamp=format_timestamp(when),
        from_address=FIRM,
        to_address=TRADER,
    )


class ExplorerStub:
    """
    MockTransport handler serving pages per address (case-insensitive).

    pages[address] is a list of pages (each a list of transfer items); the
    page key is the next page's index. failures[address] is an HTTP status
    returned for every request to that address.
    """

    def __init__(
        self,
        pages: dict[str, list[list[dict[str, Any]]]] | None = None,
        failures: dict[str, int] | None = None,
    ) -> None:
        self.pages = {k.lower(): v for k, v in (pages or {}).items()}
        self.failures = {k.lower(): v for k, v in (failures or {}).items()}
        self.requests: list[dict[str, Any]] = []
        self.responses: list[Callable[[dict[str, Any]], httpx.Response]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        params = body["params"][0]
        self.requests.append(params)
        if self.responses:
            return self.responses.pop(0)(body)
        address = (params.get("fromAddress") or params.get("toAddress") or "").lower()
        if address in self.failures:
            return httpx.Response(self.failures[address], json={"error": "upstream"})
        pages = self.pages.get(address, [[]])
        index = int(params.get("pageKey") or 0)
        result: dict[str, Any] = {"transfers": pages[index] if index < len(pages) else []}
        if index + 1 < len(pages):
            result["pageKey"] = str(index + 1)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_client(stub: ExplorerStub, sleep: SleepRecorder | None = None, **kwargs: Any) -> ExplorerClient:
    return ExplorerClient(
        "test-key",
        base_url="https://explorer.test/v2",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(stub)),
        sleep=sleep or SleepRecorder(),
        **kwargs,
    )
