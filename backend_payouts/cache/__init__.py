from backend_payouts.cache.ephemeral import MISS, AggregateCache, week_key

__all__ = ["MISS", "AggregateCache", "week_key"]
