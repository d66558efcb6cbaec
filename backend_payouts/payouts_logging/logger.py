"""
Structured logging for the payouts engine: timestamp, entity_id, event_type.

structlog with ISO timestamps, log level and consistent keys so sync and
backfill runs can be grepped or shipped to a log aggregator. Every module
uses get_logger(__name__) and logs a snake_case event name plus keyword
context (entity_id, address, year_month, ...).

No backend_payouts imports here so any module can import this first.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)

# json for deployed runs; "console" for local CLI use
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()


def _add_timestamp(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _normalize_event(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Expose structlog's 'event' as event_type."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    return event_dict


def configure_structlog(log_format: str | None = None, level: int | None = None) -> None:
    """Configure structlog processors and renderer. Safe to call again (e.g. from a CLI)."""
    fmt = (log_format or LOG_FORMAT).strip().lower()
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_timestamp,
        _normalize_event,
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level if level is not None else LOG_LEVEL_VALUE),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> Any:
    """
    Return a structured logger for the given module name.

        logger = get_logger(__name__)
        logger.info("snapshot_written", entity_id="ftmo", year_month="2025-03", payouts=41)
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_entity(entity_id: str) -> Any:
    """Return a logger with entity_id bound to every call."""
    return get_logger("backend_payouts").bind(entity_id=entity_id)
