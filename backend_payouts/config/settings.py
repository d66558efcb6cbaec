"""
Application settings.

One frozen Settings object built from the environment (after .env is loaded)
and cached; get_settings.cache_clear() resets it in tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from backend_payouts.config.env import (
    DEFAULT_ENTITIES_FILE,
    DEFAULT_EXPLORER_BASE_URL,
    DEFAULT_SNAPSHOT_DIR,
    env_float,
    env_int,
    env_str,
    get_database_url,
    load_payouts_env,
)
from backend_payouts.core.exceptions import ConfigurationError


@dataclass(frozen=True)
class Settings:
    alchemy_api_key: str
    explorer_base_url: str
    snapshot_dir: Path
    entities_file: Path
    database_url: str

    # explorer pacing / retry
    page_delay_sec: float = 0.5
    address_delay_sec: float = 1.0
    entity_delay_sec: float = 0.5
    explorer_max_retries: int = 3
    explorer_timeout_sec: float = 10.0
    explorer_daily_limit: int = 100_000

    # caches and retention
    snapshot_cache_ttl_sec: float = 300.0
    aggregate_cache_ttl_sec: float = 3600.0
    warm_retention_days: int = 90
    backfill_epoch: str = "2025-01"

    # API / periodic sync
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    warm_sync_interval_sec: float = 600.0
    snapshot_refresh_interval_sec: float = 86400.0
    refresh_entity_delay_sec: float = 2.0

    def require_api_key(self) -> str:
        """Return the explorer key or fail fast; missing credentials are never retried."""
        if not self.alchemy_api_key:
            raise ConfigurationError("Missing ALCHEMY_API_KEY environment variable")
        return self.alchemy_api_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the current application settings."""
    load_payouts_env()
    return Settings(
        alchemy_api_key=env_str("ALCHEMY_API_KEY"),
        explorer_base_url=env_str("EXPLORER_BASE_URL", DEFAULT_EXPLORER_BASE_URL),
        snapshot_dir=Path(env_str("SNAPSHOT_DIR") or DEFAULT_SNAPSHOT_DIR),
        entities_file=Path(env_str("ENTITIES_FILE") or DEFAULT_ENTITIES_FILE),
        database_url=get_database_url(),
        page_delay_sec=env_float("PAGE_DELAY_SEC", 0.5),
        address_delay_sec=env_float("ADDRESS_DELAY_SEC", 1.0),
        entity_delay_sec=env_float("ENTITY_DELAY_SEC", 0.5),
        explorer_max_retries=env_int("EXPLORER_MAX_RETRIES", 3),
        explorer_timeout_sec=env_float("EXPLORER_TIMEOUT_SEC", 10.0),
        explorer_daily_limit=env_int("EXPLORER_DAILY_LIMIT", 100_000),
        snapshot_cache_ttl_sec=env_float("SNAPSHOT_CACHE_TTL_SEC", 300.0),
        aggregate_cache_ttl_sec=env_float("AGGREGATE_CACHE_TTL_SEC", 3600.0),
        warm_retention_days=env_int("WARM_RETENTION_DAYS", 90),
        backfill_epoch=env_str("BACKFILL_EPOCH", "2025-01"),
        api_host=env_str("API_HOST", "0.0.0.0"),
        api_port=env_int("API_PORT", 8000),
        warm_sync_interval_sec=env_float("WARM_SYNC_INTERVAL_SEC", 600.0),
        snapshot_refresh_interval_sec=env_float("SNAPSHOT_REFRESH_INTERVAL_SEC", 86400.0),
        refresh_entity_delay_sec=env_float("REFRESH_ENTITY_DELAY_SEC", 2.0),
    )
