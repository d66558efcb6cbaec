"""
Application-level exceptions.

Transient upstream failures (ExplorerError and subclasses) are retried by the
explorer client and then surface to the caller, which logs them and moves on
to the next address/month/entity. Configuration failures are fatal at startup.
Data problems (bad snapshot JSON, unsupported tokens) never raise; they are
dropped where they are found.
"""

from __future__ import annotations


class PayoutsError(Exception):
    """Base class for payouts engine errors."""


class ConfigurationError(PayoutsError):
    """Missing or invalid configuration (e.g. no explorer API key)."""


class ExplorerError(PayoutsError):
    """Explorer request failed after retries (timeout, HTTP error, JSON-RPC error)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(ExplorerError):
    """Explorer rejected the request for rate limiting (HTTP 429 or embedded error)."""


class CircuitOpenError(ExplorerError):
    """Circuit breaker is open; request blocked without reaching the explorer."""


class InvalidApiKeyError(ConfigurationError):
    """Explorer rejected the API key. Not retried."""

