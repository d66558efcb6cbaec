"""
Backend Payouts: verified payout ingestion and tiered aggregation.

Reads transfers from a blockchain explorer, normalizes them into payouts,
writes immutable monthly snapshots, reconciles warm-cache totals and serves
7d / 30d / 12m period statistics without re-querying the explorer per request.
"""

__version__ = "0.1.0"
