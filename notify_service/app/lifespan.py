"""Startup and shutdown of the API process.

Logging comes up first and goes down last. The database must answer before
any worker loop starts, and loops stop before the engine is disposed.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING

from notify_service.core.settings import get_app_settings, get_db_settings
from notify_service.infra.database import close_database, create_all, get_engine, init_database
from notify_service.infra.logging import setup_logging, shutdown as shutdown_logging
from notify_service.infra.ratelimit import close_rate_limiter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

    from notify_service.infra.workers import PollingLoop

logger = logging.getLogger(__name__)


async def _prepare_database() -> None:
    await init_database()
    if get_db_settings().is_sqlite:
        # The SQLite fallback is never migrated; build tables from the models
        await create_all(get_engine())
        logger.info("SQLite schema ensured", extra={"operation": "lifespan.database"})


def _in_process_loops() -> list[PollingLoop]:
    from notify_service.features.notifications.worker import AnalyticsFolder, DispatchWorkerPool
    from notify_service.features.webhooks.worker import WebhookWorker

    return [DispatchWorkerPool(), WebhookWorker(), AnalyticsFolder()]


async def _stop_quietly(loop: PollingLoop) -> None:
    try:
        await loop.stop()
    except Exception:
        logger.exception("Error stopping %s", loop.name)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    del app
    setup_logging()
    settings = get_app_settings()
    logger.info(
        "Starting %s %s (%s)",
        settings.service_name,
        settings.version,
        settings.environment,
        extra={"operation": "lifespan.startup"},
    )

    async with AsyncExitStack() as stack:
        stack.callback(shutdown_logging)
        stack.push_async_callback(close_database)
        stack.push_async_callback(close_rate_limiter)
        await _prepare_database()

        if settings.run_workers:
            for loop in _in_process_loops():
                await loop.start()
                stack.push_async_callback(_stop_quietly, loop)
            logger.info("Dispatch, webhook and analytics loops running in-process")

        logger.info(
            "Listening on %s:%s",
            settings.host,
            settings.port,
            extra={"sqlite": get_db_settings().is_sqlite, "operation": "lifespan.startup"},
        )
        yield
        logger.info("Shutting down", extra={"operation": "lifespan.shutdown"})
