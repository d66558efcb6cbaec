from backend_payouts.normalizer.normalizer import (
    DIRECTION_INBOUND,
    DIRECTION_OUTBOUND,
    SPAM_THRESHOLD_USD,
    normalize,
    normalize_many,
    usd_amount,
)
from backend_payouts.normalizer.tokens import TOKEN_TABLE, SupportedToken, TokenSpec

__all__ = [
    "DIRECTION_INBOUND",
    "DIRECTION_OUTBOUND",
    "SPAM_THRESHOLD_USD",
    "TOKEN_TABLE",
    "SupportedToken",
    "TokenSpec",
    "normalize",
    "normalize_many",
    "usd_amount",
]
