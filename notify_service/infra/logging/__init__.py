"""Structured logging for the API, the workers and the CLI.

- setup_logging / configure_logging: root logger behind a QueueListener
- JSONFormatter: JSON Lines with OpenTelemetry trace ids
- set_log_context / log_context: contextvars bound onto every record
- get_lazy_logger: DEBUG messages built only when DEBUG is enabled
"""

from __future__ import annotations

from .config import configure_logging, setup_logging, shutdown
from .context import ContextInjectingFilter, clear_log_context, log_context, set_log_context
from .formatters import JSONFormatter
from .lazy import LazyLoggerAdapter, get_lazy_logger

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "LazyLoggerAdapter",
    "clear_log_context",
    "configure_logging",
    "get_lazy_logger",
    "log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
