"""
Structured logging for the payouts engine.

JSON logs with timestamp, entity_id and event_type. Use get_logger() in every module.
"""

from backend_payouts.payouts_logging.logger import bind_entity, configure_structlog, get_logger

__all__ = ["bind_entity", "configure_structlog", "get_logger"]
