"""
Environment loading for the payouts engine.

- ALCHEMY_API_KEY: explorer API key (required for anything that fetches)
- EXPLORER_BASE_URL: JSON-RPC endpoint without the key (default: Arbitrum mainnet)
- SNAPSHOT_DIR: root directory for monthly snapshot JSON files
- PAYOUTS_DB_URL / DATABASE_URL: SQLAlchemy URL; SQLite file when unset
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# config is backend_payouts/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
ROOT = _PACKAGE_DIR.parent
_ENV_PATH = ROOT / ".env"

DEFAULT_EXPLORER_BASE_URL = "https://arb-mainnet.g.alchemy.com/v2"
DEFAULT_SNAPSHOT_DIR = ROOT / "data" / "payouts"
DEFAULT_ENTITIES_FILE = ROOT / "data" / "entities.json"
DEFAULT_SQLITE_PATH = "payouts.db"


def load_payouts_env() -> None:
    """Load .env from project root. Existing environment variables win."""
    load_dotenv(_ENV_PATH, override=False)


def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_database_url() -> str:
    """PAYOUTS_DB_URL, then DATABASE_URL; else SQLite at PAYOUTS_DB_PATH or payouts.db."""
    url = env_str("PAYOUTS_DB_URL") or env_str("DATABASE_URL")
    if url:
        return url
    path = env_str("PAYOUTS_DB_PATH") or DEFAULT_SQLITE_PATH
    return f"sqlite:///{path}"


def mask_key(url: str) -> str:
    """Hide the trailing API key segment of an explorer URL for logs."""
    if "/v2/" in url:
        return url.split("/v2/")[0] + "/v2/***"
    return url
