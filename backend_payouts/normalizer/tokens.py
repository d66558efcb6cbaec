"""
Closed table of supported payout tokens.

Every symbol resolves to a SupportedToken member; anything not listed is
SupportedToken.UNSUPPORTED and is dropped by the normalizer. Prices are fixed
(stablecoins at 1 USD, the native asset at a configured reference price).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from backend_payouts.snapshots.models import PaymentMethod

NATIVE_ETH_PRICE_USD = 2500.0
NATIVE_DECIMALS = 18


class SupportedToken(Enum):
    ETH = "ETH"
    USDC = "USDC"
    USDT = "USDT"
    RISEPAY = "RISEPAY"
    UNSUPPORTED = "UNSUPPORTED"

    @classmethod
    def from_symbol(cls, symbol: str | None) -> "SupportedToken":
        if not symbol:
            return cls.UNSUPPORTED
        key = symbol.strip().upper()
        if key == cls.UNSUPPORTED.value:
            return cls.UNSUPPORTED
        try:
            return cls(key)
        except ValueError:
            return cls.UNSUPPORTED


@dataclass(frozen=True)
class TokenSpec:
    decimals: int
    """Fallback decimals when the transfer does not carry its own."""
    usd_price: float
    payment_method: PaymentMethod
    native: bool = False


TOKEN_TABLE: dict[SupportedToken, TokenSpec] = {
    SupportedToken.ETH: TokenSpec(NATIVE_DECIMALS, NATIVE_ETH_PRICE_USD, PaymentMethod.CRYPTO, native=True),
    SupportedToken.USDC: TokenSpec(6, 1.0, PaymentMethod.CRYPTO),
    SupportedToken.USDT: TokenSpec(6, 1.0, PaymentMethod.CRYPTO),
    SupportedToken.RISEPAY: TokenSpec(18, 1.0, PaymentMethod.RISE),
}


def token_spec(token: SupportedToken) -> TokenSpec | None:
    """Table entry for a supported token; None for UNSUPPORTED."""
    return TOKEN_TABLE.get(token)
