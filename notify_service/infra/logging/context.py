"""Per-task log context.

The request middleware binds ``request_id``, the tenant dependency binds
``tenant_id`` and workers bind ``worker_id``/``entry_id``/``webhook_id``.
``ContextInjectingFilter`` copies whatever is bound onto each record, so
call sites do not repeat those ids in ``extra=``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

# asyncio copies the context into each task, so concurrent workers never see each other's ids
_log_context: ContextVar[Mapping[str, Any]] = ContextVar("log_context", default=MappingProxyType({}))


def set_log_context(**fields: Any) -> None:
    """Bind ``fields`` for the rest of the current task."""
    _log_context.set(MappingProxyType({**_log_context.get(), **fields}))


def clear_log_context() -> None:
    _log_context.set(MappingProxyType({}))


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind ``fields`` inside the block only.

    Example:
        with log_context(entry_id=str(entry.id), tenant_id=entry.tenant_id):
            await dispatcher.dispatch(session, entry, worker_id=worker_id)
    """
    token = _log_context.set(MappingProxyType({**_log_context.get(), **fields}))
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextInjectingFilter(logging.Filter):
    """Copy bound context onto records; explicit ``extra=`` values win.

    Installed on the root queue handler so records from every logger pass through it.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True
