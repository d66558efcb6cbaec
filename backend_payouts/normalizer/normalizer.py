"""
Raw transfer -> canonical Payout.

A transfer is dropped (None) when it is not a payout for the entity (sender not
one of the entity's addresses, or recipient for inbound trader wallets), when
its token is unsupported, when it is worth less than SPAM_THRESHOLD_USD, or when
no timestamp can be derived. Native transfers are always valued as the native
asset with 18 decimals; token transfers use the transfer's own decimals when
present and the token table otherwise.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Mapping

from backend_payouts.explorer.client import DIRECTION_INBOUND, DIRECTION_OUTBOUND
from backend_payouts.explorer.models import RawTransfer
from backend_payouts.normalizer.tokens import (
    NATIVE_DECIMALS,
    SupportedToken,
    TokenSpec,
    token_spec,
)
from backend_payouts.payouts_logging import get_logger
from backend_payouts.snapshots.models import Payout, format_timestamp

logger = get_logger(__name__)

SPAM_THRESHOLD_USD = 10.0


def _scaled_amount(raw: RawTransfer, decimals: int) -> float | None:
    if raw.raw_value is not None:
        return raw.raw_value / (10 ** decimals)
    return raw.value


def _resolve_token(raw: RawTransfer) -> tuple[SupportedToken, TokenSpec | None]:
    if raw.is_native:
        return SupportedToken.ETH, token_spec(SupportedToken.ETH)
    token = SupportedToken.from_symbol(raw.asset)
    spec = token_spec(token)
    if spec is not None and spec.native:
        # wrapped or mislabelled native asset arriving as a token transfer
        return SupportedToken.UNSUPPORTED, None
    return token, spec


def usd_amount(raw: RawTransfer) -> float | None:
    """USD value of a transfer, or None when its token is unsupported or its value is missing."""
    _, spec = _resolve_token(raw)
    if spec is None:
        return None
    if spec.native:
        amount = _scaled_amount(raw, NATIVE_DECIMALS)
    else:
        decimals = raw.decimals if raw.decimals is not None else spec.decimals
        amount = _scaled_amount(raw, decimals)
    if amount is None:
        return None
    return amount * spec.usd_price


def normalize(
    raw: RawTransfer,
    entity_id: str,
    entity_addresses: Iterable[str],
    *,
    block_timestamps: Mapping[int, int] | None = None,
    direction: str = DIRECTION_OUTBOUND,
) -> Payout | None:
    addresses = {a.lower() for a in entity_addresses}
    counterpart = raw.to_address if direction == DIRECTION_INBOUND else raw.from_address
    if not counterpart or counterpart.lower() not in addresses:
        return None
    if not raw.tx_hash:
        return None

    _, spec = _resolve_token(raw)
    if spec is None:
        logger.debug("normalizer_unsupported_token", entity_id=entity_id, asset=raw.asset, tx_hash=raw.tx_hash)
        return None

    amount_usd = usd_amount(raw)
    if amount_usd is None or amount_usd < SPAM_THRESHOLD_USD:
        return None

    ts = raw.block_timestamp
    if ts is None and block_timestamps is not None and raw.block_number is not None:
        ts = block_timestamps.get(raw.block_number)
    if ts is None:
        logger.debug("normalizer_missing_timestamp", entity_id=entity_id, tx_hash=raw.tx_hash)
        return None

    return Payout(
        tx_hash=raw.tx_hash,
        entity_id=entity_id,
        amount_usd=amount_usd,
        payment_method=spec.payment_method,
        timestamp=format_timestamp(datetime.fromtimestamp(ts, tz=timezone.utc)),
        from_address=raw.from_address,
        to_address=raw.to_address,
    )


def normalize_many(
    raws: Iterable[RawTransfer],
    entity_id: str,
    entity_addresses: Iterable[str],
    *,
    block_timestamps: Mapping[int, int] | None = None,
    direction: str = DIRECTION_OUTBOUND,
) -> list[Payout]:
    """Normalize a batch and keep one payout per tx hash (case-insensitive, first wins)."""
    addresses = [a.lower() for a in entity_addresses]
    payouts: list[Payout] = []
    seen: set[str] = set()
    dropped = 0
    for raw in raws:
        payout = normalize(raw, entity_id, addresses, block_timestamps=block_timestamps, direction=direction)
        if payout is None:
            dropped += 1
            continue
        if payout.hash_key in seen:
            continue
        seen.add(payout.hash_key)
        payouts.append(payout)
    logger.debug("normalizer_batch", entity_id=entity_id, kept=len(payouts), dropped=dropped)
    return payouts
