"""
Observability Module

Logging configuration and context propagation.
"""

from taskpilot.observability.logging import (
    ContextFilter,
    JsonFormatter,
    TextFormatter,
    configure_logging,
    get_log_context,
    log_context,
)

__all__ = [
    "ContextFilter",
    "JsonFormatter",
    "TextFormatter",
    "configure_logging",
    "get_log_context",
    "log_context",
]
