"""CLI utilities for running async operations and formatting output."""

from notify_service.cli.utils.async_runner import coro
from notify_service.cli.utils.formatters import (
    error,
    header,
    info,
    status_label,
    success,
    table,
    warning,
)

__all__ = [
    "coro",
    "error",
    "header",
    "info",
    "status_label",
    "success",
    "table",
    "warning",
]
