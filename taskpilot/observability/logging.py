"""
Structured Logging

JSON or text logging on top of the standard logging module, with
context propagation across awaits.

Design decisions:
- Modules log through logging.getLogger(__name__); nothing here is required
  for a module to log
- Run context (session_id, plan_id, ...) lives in a ContextVar so that
  concurrent runs never see each other's fields
- configure_logging() only touches the "taskpilot" logger tree
"""

import contextvars
import json
import logging
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, TextIO

from taskpilot.config.settings import ObservabilitySettings

ROOT_LOGGER_NAME = "taskpilot"

# Context variables for log enrichment
_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """
    Attach fields to every record logged inside the block.

    Usage:
        with log_context(session_id="abc"):
            logger.info("Thinking")
    """
    current = _log_context.get()
    token = _log_context.set({**current, **fields})
    try:
        yield
    finally:
        _log_context.reset(token)


def get_log_context() -> dict[str, Any]:
    """Current context fields."""
    return dict(_log_context.get())


class ContextFilter(logging.Filter):
    """Copies the active log context onto each record as ``context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = _log_context.get()
        return True


class JsonFormatter(logging.Formatter):
    """Formats a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        result: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            result.update(context)

        if record.exc_info and record.exc_info[1] is not None:
            error = record.exc_info[1]
            result["error"] = {
                "message": str(error),
                "type": type(error).__name__,
                "stack_trace": self.formatException(record.exc_info),
            }

        return json.dumps(result, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable format with context appended."""

    def __init__(self) -> None:
        super().__init__(
            fmt="[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        output = super().format(record)
        context = getattr(record, "context", None)
        if context:
            output += f" | {context}"
        return output


def configure_logging(
    settings: ObservabilitySettings | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Configure the package logger and return it.

    Calling it again replaces the previously installed handler.
    """
    settings = settings or ObservabilitySettings()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(settings.log_level)

    for existing in list(logger.handlers):
        if getattr(existing, "_taskpilot_handler", False):
            logger.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if settings.log_format == "json" else TextFormatter())
    handler.addFilter(ContextFilter())
    handler._taskpilot_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)

    return logger
