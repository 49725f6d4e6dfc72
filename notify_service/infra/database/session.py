"""Process-wide async engine and session factory.

Both are built on first use from DB_* settings, so importing this module
never connects. PostgreSQL goes through psycopg; the SQLite fallback and the
test suite go through aiosqlite. Sessions never autoflush and keep loaded
attributes after commit, because workers keep using claimed rows after the
claim transaction commits.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from functools import cache
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from notify_service.core.settings import get_app_settings, get_db_settings
from notify_service.infra.metrics.prometheus import database_query_duration_seconds
from notify_service.utils.retry import retry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

_STATEMENT_KINDS = ("SELECT", "INSERT", "UPDATE", "DELETE", "BEGIN", "COMMIT", "ROLLBACK")
_STARTED_AT = "_notify_statement_started_at"


def _statement_kind(statement: str) -> str:
    head = statement.lstrip()[:8].upper()
    return next((kind for kind in _STATEMENT_KINDS if head.startswith(kind)), "OTHER")


def _start_timer(conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: bool) -> None:
    setattr(context, _STARTED_AT, time.perf_counter())


def _observe(conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: bool) -> None:
    started = getattr(context, _STARTED_AT, None)
    if started is None:
        return
    histogram = database_query_duration_seconds.labels(operation=_statement_kind(statement or ""))
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        histogram.observe(time.perf_counter() - started, exemplar={"trace_id": f"{span_context.trace_id:032x}"})
    else:
        histogram.observe(time.perf_counter() - started)


def instrument_engine(engine: AsyncEngine) -> None:
    """Time every statement into ``database_query_duration_seconds``."""
    event.listen(engine.sync_engine, "before_cursor_execute", _start_timer)
    event.listen(engine.sync_engine, "after_cursor_execute", _observe)


@cache
def get_engine() -> AsyncEngine:
    db = get_db_settings()
    url = db.get_sqlalchemy_url()
    options: dict[str, Any] = {"echo": db.echo or get_app_settings().debug}
    if not db.is_sqlite:
        options.update(
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_recycle=db.pool_recycle,
            pool_pre_ping=db.pool_pre_ping,
        )
    engine = create_async_engine(url, **options)
    instrument_engine(engine)
    return engine


@cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), expire_on_commit=False, autoflush=False)


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """Session for scripts and CLI commands; the caller commits."""
    async with get_session_factory()() as session:
        yield session


async def init_database() -> None:
    """Wait for the database to answer ``SELECT 1``.

    Retries with backoff per DB_STARTUP_RETRY_* so the API and workers can
    start before their database container does.

    Raises:
        RetryError: The database never answered within the retry budget.
    """
    db = get_db_settings()
    target = db.get_sqlalchemy_url().rsplit("@", 1)[-1]

    @retry(
        max_attempts=db.startup_retry_attempts,
        initial_delay=db.startup_retry_delay,
        max_delay=30.0,
        stop_after_delay=db.startup_retry_timeout,
    )
    async def ping() -> None:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))

    logger.info("Connecting to database", extra={"target": target, "operation": "db.init"})
    await ping()
    logger.info(
        "Database reachable",
        extra={"target": target, "sqlite": db.is_sqlite, "operation": "db.init"},
    )


async def close_database() -> None:
    """Dispose the engine if one was built; the next use builds a fresh one."""
    if get_engine.cache_info().currsize == 0:
        return
    try:
        await get_engine().dispose()
        logger.info("Database engine disposed")
    finally:
        get_session_factory.cache_clear()
        get_engine.cache_clear()


__all__ = [
    "close_database",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "init_database",
    "instrument_engine",
]
