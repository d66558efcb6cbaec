"""
Data models for explorer output.

RawTransfer mirrors one item of an alchemy_getAssetTransfers result; it is the
unit handed from the pagination client to the normalizer and is never stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

CATEGORY_NATIVE = "external"
CATEGORY_TOKEN = "erc20"
DEFAULT_CATEGORIES = (CATEGORY_NATIVE, CATEGORY_TOKEN)


def _parse_int(value: Any) -> int | None:
    """Parse an int from a hex string ("0x1a"), decimal string or number."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    s = str(value).strip()
    try:
        return int(s, 16) if s.lower().startswith("0x") else int(s)
    except ValueError:
        return None


def _parse_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_iso_timestamp(value: Any) -> int | None:
    """ISO-8601 ("2025-03-01T12:00:00.000Z") to unix seconds; None when unparseable."""
    if not value or not isinstance(value, str):
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        return int(datetime.fromisoformat(s).timestamp())
    except ValueError:
        return None


@dataclass(frozen=True)
class RawTransfer:
    """One outbound/inbound transfer as returned by the explorer."""

    tx_hash: str
    from_address: str
    to_address: str
    asset: str | None
    """Token symbol as reported (e.g. USDC, ETH); None when the explorer omits it."""
    category: str
    """external (native asset) | erc20 | anything else the explorer reports."""
    raw_value: int | None = None
    """Value in base units from rawContract.value; None if missing."""
    decimals: int | None = None
    """Token decimals from rawContract.decimal; None if missing."""
    value: float | None = None
    """Explorer's already-scaled value; used when raw_value/decimals are missing."""
    block_number: int | None = None
    block_timestamp: int | None = None
    """Unix seconds from metadata.blockTimestamp; None when unavailable."""

    @property
    def is_native(self) -> bool:
        return self.category == CATEGORY_NATIVE

    @classmethod
    def from_rpc_item(cls, item: dict[str, Any]) -> "RawTransfer":
        """Build from a single alchemy_getAssetTransfers transfer object."""
        raw_contract = item.get("rawContract") or {}
        metadata = item.get("metadata") or {}
        return cls(
            tx_hash=str(item.get("hash") or ""),
            from_address=str(item.get("from") or ""),
            to_address=str(item.get("to") or ""),
            asset=item.get("asset"),
            category=str(item.get("category") or ""),
            raw_value=_parse_int(raw_contract.get("value")),
            decimals=_parse_int(raw_contract.get("decimal")),
            value=_parse_float(item.get("value")),
            block_number=_parse_int(item.get("blockNum")),
            block_timestamp=parse_iso_timestamp(metadata.get("blockTimestamp")),
        )


@dataclass
class TransferPage:
    """One explorer page: transfers newest-first plus the cursor for the next page."""

    transfers: list[RawTransfer] = field(default_factory=list)
    page_key: str | None = None
