"""Process-wide logging setup for the API, the dispatch workers and the CLI.

The root logger only holds a ``QueueHandler``; a ``QueueListener`` thread
owns the console and file handlers, so a dispatch worker never waits on
stderr or disk while it holds claimed entries.
"""

from __future__ import annotations

import atexit
import logging
import logging.config
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue
from typing import TYPE_CHECKING, Any

from .context import ContextInjectingFilter
from .formatters import JSONFormatter

if TYPE_CHECKING:
    from notify_service.core.settings.logs import LoggingSettings

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_listener: QueueListener | None = None
_queue_handler: QueueHandler | None = None
_configured = False

def setup_logging(
    log_settings: LoggingSettings | None = None,
    *,
    force: bool = False,
    **overrides: Any,
) -> None:
    """Configure logging from LOG_* settings unless already done.

    Both the app lifespan and the CLI entrypoint call this; only the first
    call (or one with ``force=True``) takes effect.
    """
    global _configured

    if _configured and not force:
        return
    if log_settings is None:
        from notify_service.core.settings import get_logging_settings

        log_settings = get_logging_settings()

    configure_logging(**{**log_settings.to_logging_kwargs(), **overrides})
    _configured = True


def configure_logging(
    log_level: str = "INFO",
    *,
    json_logs: bool = True,
    service_name: str = "notify-service",
    console_enabled: bool = True,
    console_level: str | None = None,
    file_path: str | Path | None = None,
    file_level: str | None = None,
    file_max_bytes: int = 10 * 1024 * 1024,
    file_backup_count: int = 5,
    include_context: bool = True,
    capture_warnings: bool = True,
    include_process_info: bool = False,
    include_thread_info: bool = False,
) -> None:
    """(Re)build the root logger, its context filter and the listener handlers.

    Args:
        log_level: Root level; also the default for both handlers.
        json_logs: JSON Lines when true, a plain text line otherwise.
        service_name: ``service`` field on every JSON record.
        file_path: Rotating log file; None logs to the console only.
        include_context: Attach ``ContextInjectingFilter`` so tenant, entry,
            webhook and worker ids land on every record.
        capture_warnings: Route the ``warnings`` module into logging.
    """
    logging.captureWarnings(capture_warnings)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "root": {"level": log_level.upper(), "handlers": []},
        }
    )

    def make_formatter() -> logging.Formatter:
        if not json_logs:
            return logging.Formatter(_TEXT_FORMAT)
        return JSONFormatter(
            static={"service": service_name},
            include_process_info=include_process_info,
            include_thread_info=include_thread_info,
        )

    handlers: list[logging.Handler] = []
    if console_enabled:
        handlers.append(_with_level(logging.StreamHandler(), console_level or log_level, make_formatter()))
    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(
            path, maxBytes=file_max_bytes, backupCount=file_backup_count, encoding="utf-8"
        )
        handlers.append(_with_level(rotating, file_level or log_level, make_formatter()))

    _start_listener(handlers, include_context=include_context)


def _with_level(handler: logging.Handler, level: str, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level.upper())
    handler.setFormatter(formatter)
    return handler


def _start_listener(handlers: list[logging.Handler], *, include_context: bool) -> None:
    global _listener, _queue_handler

    shutdown()
    if not handlers:
        return

    queue: SimpleQueue[logging.LogRecord] = SimpleQueue()
    _queue_handler = QueueHandler(queue)
    if include_context:
        # Context vars are only visible on the logging task, so enrich before enqueueing
        _queue_handler.addFilter(ContextInjectingFilter())
    logging.getLogger().addHandler(_queue_handler)
    _listener = QueueListener(queue, *handlers, respect_handler_level=True)
    _listener.start()


def shutdown() -> None:
    """Drain queued records into the handlers and detach the queue handler.

    ``QueueListener.stop`` processes everything already enqueued before the
    thread exits, so records logged during shutdown are not lost.
    """
    global _listener, _queue_handler

    if _queue_handler is not None:
        logging.getLogger().removeHandler(_queue_handler)
        _queue_handler = None
    if _listener is not None:
        _listener.stop()
        for handler in _listener.handlers:
            handler.close()
        _listener = None


atexit.register(shutdown)

__all__ = ["configure_logging", "setup_logging", "shutdown"]
