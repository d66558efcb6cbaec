"""
Explorer pagination client: alchemy_getAssetTransfers over httpx.AsyncClient.

Pages are requested newest-first with a pageKey cursor. fetch_all_transfers()
walks pages sequentially (each cursor depends on the previous response), sleeps
page_delay_sec between pages, and stops early once the oldest transfer of the
page just fetched is older than cutoff_timestamp. The early stop is only an
optimization: the concatenated result is filtered by the cutoff again before
it is returned, so a page straddling the boundary never leaks older transfers.

Each request is retried with exponential backoff on transport errors, HTTP
429/4xx/5xx and JSON-RPC error objects; after max_retries the error surfaces
to the caller. An invalid API key (HTTP 401/403 or key error in the body) is
raised immediately.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, Sequence

import httpx

from backend_payouts.config.env import DEFAULT_EXPLORER_BASE_URL, mask_key
from backend_payouts.core.exceptions import ExplorerError, InvalidApiKeyError, RateLimitError
from backend_payouts.explorer.models import DEFAULT_CATEGORIES, RawTransfer, TransferPage
from backend_payouts.explorer.resilience import CircuitBreaker, UsageTracker
from backend_payouts.payouts_logging import get_logger

logger = get_logger(__name__)

DIRECTION_OUTBOUND = "outbound"
DIRECTION_INBOUND = "inbound"

DEFAULT_PAGE_DELAY_SEC = 0.5
DEFAULT_ADDRESS_DELAY_SEC = 1.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_SEC = (1.0, 2.0, 4.0)
BACKOFF_MAX_SEC = 30.0
DEFAULT_TIMEOUT_SEC = 10.0
DEFAULT_MAX_COUNT = 1000

SleepFn = Callable[[float], Awaitable[None]]


def _short(address: str) -> str:
    return address[:10] + "..." if len(address) > 10 else address


def _classify_rpc_error(err: Any) -> ExplorerError:
    """Map an embedded JSON-RPC error object to the exception taxonomy."""
    if isinstance(err, dict):
        message = str(err.get("message") or err)
        code = err.get("code")
    else:
        message, code = str(err), None
    lowered = message.lower()
    if code == 429 or "rate limit" in lowered or "exceeded" in lowered:
        return RateLimitError(f"Explorer rate limit: {message}", status_code=429)
    if "api key" in lowered or "unauthorized" in lowered or "must be authenticated" in lowered:
        return InvalidApiKeyError(f"Explorer rejected API key: {message}")
    return ExplorerError(f"Explorer RPC error: {message}")


def filter_by_cutoff(transfers: Iterable[RawTransfer], cutoff_timestamp: int | None) -> list[RawTransfer]:
    """Drop transfers older than cutoff; transfers without a timestamp are kept for the normalizer to judge."""
    if cutoff_timestamp is None:
        return list(transfers)
    return [
        t for t in transfers
        if t.block_timestamp is None or t.block_timestamp >= cutoff_timestamp
    ]


def dedupe_transfers(transfers: Iterable[RawTransfer]) -> list[RawTransfer]:
    """Keep the first transfer seen per tx hash (case-insensitive), preserving order."""
    seen: set[str] = set()
    out: list[RawTransfer] = []
    for t in transfers:
        key = t.tx_hash.lower()
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(t)
    return out


class ExplorerClient:
    """
    Async client for the explorer's paginated asset-transfer endpoint.

    Use as an async context manager, or pass an existing httpx.AsyncClient
    (tests use httpx.MockTransport). sleep is injectable so pacing and
    backoff can be asserted without waiting.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_EXPLORER_BASE_URL,
        page_delay_sec: float = DEFAULT_PAGE_DELAY_SEC,
        address_delay_sec: float = DEFAULT_ADDRESS_DELAY_SEC,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_sec: Sequence[float] = DEFAULT_BACKOFF_SEC,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        max_count: int = DEFAULT_MAX_COUNT,
        http_client: httpx.AsyncClient | None = None,
        sleep: SleepFn = asyncio.sleep,
        circuit_breaker: CircuitBreaker | None = None,
        usage_tracker: UsageTracker | None = None,
    ) -> None:
        if not api_key:
            raise InvalidApiKeyError("Explorer API key must be non-empty")
        self._url = f"{base_url.rstrip('/')}/{api_key}"
        self.page_delay_sec = page_delay_sec
        self.address_delay_sec = address_delay_sec
        self.max_retries = max(0, max_retries)
        self.backoff_sec = tuple(backoff_sec) or DEFAULT_BACKOFF_SEC
        self.max_count = max_count
        self._http = http_client or httpx.AsyncClient(timeout=timeout_sec)
        self._owns_http = http_client is None
        self._sleep = sleep
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.usage_tracker = usage_tracker or UsageTracker()
        self._next_rpc_id = 0

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "ExplorerClient":
        kwargs: dict[str, Any] = {
            "base_url": settings.explorer_base_url,
            "page_delay_sec": settings.page_delay_sec,
            "address_delay_sec": settings.address_delay_sec,
            "max_retries": settings.explorer_max_retries,
            "timeout_sec": settings.explorer_timeout_sec,
            "usage_tracker": UsageTracker(settings.explorer_daily_limit),
        }
        kwargs.update(overrides)
        return cls(settings.require_api_key(), **kwargs)

    async def __aenter__(self) -> "ExplorerClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _next_id(self) -> int:
        self._next_rpc_id += 1
        return self._next_rpc_id

    async def _post_once(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.usage_tracker.track_call()
        try:
            resp = await self._http.post(self._url, json=payload)
        except httpx.HTTPError as e:
            raise ExplorerError(f"Explorer request failed: {type(e).__name__}: {e}") from e
        if resp.status_code in (401, 403):
            raise InvalidApiKeyError(f"Explorer rejected API key (HTTP {resp.status_code})")
        if resp.status_code == 429:
            raise RateLimitError("Explorer rate limit (HTTP 429)", status_code=429)
        if resp.status_code >= 400:
            raise ExplorerError(f"Explorer HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise ExplorerError("Explorer returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ExplorerError("Explorer returned unexpected payload")
        if data.get("error"):
            raise _classify_rpc_error(data["error"])
        return data

    async def _post_with_retry(self, payload: dict[str, Any], *, context: str) -> dict[str, Any]:
        attempt = 0
        while True:
            try:
                return await self._post_once(payload)
            except InvalidApiKeyError:
                raise
            except ExplorerError as e:
                if attempt >= self.max_retries:
                    logger.error("explorer_retries_exhausted", context=context, attempts=attempt + 1, error=str(e))
                    raise
                delay = min(self.backoff_sec[min(attempt, len(self.backoff_sec) - 1)], BACKOFF_MAX_SEC)
                logger.warning(
                    "explorer_retry",
                    context=context,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay_sec=delay,
                    error=str(e),
                )
                await self._sleep(delay)
                attempt += 1

    async def get_transfers_page(
        self,
        address: str,
        page_key: str | None = None,
        *,
        category: Sequence[str] | None = None,
        direction: str = DIRECTION_OUTBOUND,
    ) -> TransferPage:
        """Fetch one page of transfers for address, newest first."""
        params: dict[str, Any] = {
            "fromBlock": "0x0",
            "toBlock": "latest",
            "order": "desc",
            "category": list(category or DEFAULT_CATEGORIES),
            "maxCount": hex(self.max_count),
            "excludeZeroValue": True,
            "withMetadata": True,
        }
        if direction == DIRECTION_INBOUND:
            params["toAddress"] = address
        else:
            params["fromAddress"] = address
        if page_key:
            params["pageKey"] = page_key
        payload = {
            "id": self._next_id(),
            "jsonrpc": "2.0",
            "method": "alchemy_getAssetTransfers",
            "params": [params],
        }
        context = f"{direction} {_short(address)}"
        data = await self.circuit_breaker.call(lambda: self._post_with_retry(payload, context=context))
        result = data.get("result") or {}
        items = result.get("transfers") or []
        transfers = [RawTransfer.from_rpc_item(item) for item in items if isinstance(item, dict)]
        return TransferPage(transfers=transfers, page_key=result.get("pageKey") or None)

    async def fetch_all_transfers(
        self,
        address: str,
        *,
        cutoff_timestamp: int | None = None,
        category: Sequence[str] | None = None,
        direction: str = DIRECTION_OUTBOUND,
    ) -> list[RawTransfer]:
        """Walk every page for address (or until the cutoff is crossed) and return transfers >= cutoff."""
        all_transfers: list[RawTransfer] = []
        page_key: str | None = None
        page_count = 0
        logger.info("explorer_fetch_all_start", address=_short(address), cutoff_timestamp=cutoff_timestamp)
        while True:
            page_count += 1
            page = await self.get_transfers_page(address, page_key, category=category, direction=direction)
            if not page.transfers:
                logger.info("explorer_fetch_all_empty_page", address=_short(address), page=page_count)
                break
            all_transfers.extend(page.transfers)
            logger.debug(
                "explorer_page_fetched",
                address=_short(address),
                page=page_count,
                fetched=len(page.transfers),
                total=len(all_transfers),
            )
            oldest = page.transfers[-1].block_timestamp
            if cutoff_timestamp is not None and oldest is not None and oldest < cutoff_timestamp:
                logger.info(
                    "explorer_cutoff_reached",
                    address=_short(address),
                    page=page_count,
                    oldest_timestamp=oldest,
                    cutoff_timestamp=cutoff_timestamp,
                )
                break
            if not page.page_key:
                break
            page_key = page.page_key
            await self._sleep(self.page_delay_sec)

        filtered = filter_by_cutoff(all_transfers, cutoff_timestamp)
        logger.info(
            "explorer_fetch_all_done",
            address=_short(address),
            pages=page_count,
            total=len(all_transfers),
            kept=len(filtered),
        )
        return filtered

    async def fetch_entity_transfers(
        self,
        addresses: Sequence[str],
        *,
        cutoff_timestamp: int | None = None,
        category: Sequence[str] | None = None,
        direction: str = DIRECTION_OUTBOUND,
    ) -> list[RawTransfer]:
        """
        Fetch every address of one entity sequentially and merge, de-duplicated by hash.
        A failing address raises; callers decide whether the entity is abandoned.
        """
        merged: list[RawTransfer] = []
        for i, address in enumerate(addresses):
            if i > 0:
                await self._sleep(self.address_delay_sec)
            merged.extend(
                await self.fetch_all_transfers(
                    address,
                    cutoff_timestamp=cutoff_timestamp,
                    category=category,
                    direction=direction,
                )
            )
        return dedupe_transfers(merged)

    def describe(self) -> dict[str, Any]:
        return {"url": mask_key(self._url), "circuit": self.circuit_breaker.state, **self.usage_tracker.usage()}
