"""
Explorer ingestion: paginated transfer fetching with pacing, retry and cutoff.
"""

from backend_payouts.explorer.client import (
    DIRECTION_INBOUND,
    DIRECTION_OUTBOUND,
    ExplorerClient,
    dedupe_transfers,
    filter_by_cutoff,
)
from backend_payouts.explorer.models import RawTransfer, TransferPage

__all__ = [
    "DIRECTION_INBOUND",
    "DIRECTION_OUTBOUND",
    "ExplorerClient",
    "RawTransfer",
    "TransferPage",
    "dedupe_transfers",
    "filter_by_cutoff",
]
