"""Schema helpers for development databases and tests.

Production schemas are managed by Alembic; these helpers build the same
tables straight from model metadata for SQLite runs and ``db init``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from notify_service.core.database import Base

if TYPE_CHECKING:
    from sqlalchemy import MetaData
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def load_models() -> MetaData:
    """Import every model module so its tables register on ``Base.metadata``."""
    from notify_service.features.notifications import models as _notification_models  # noqa: F401
    from notify_service.infra.ratelimit import models as _ratelimit_models  # noqa: F401
    from notify_service.features.webhooks import models as _webhook_models  # noqa: F401

    return Base.metadata


async def create_all(engine: AsyncEngine) -> list[str]:
    """Create any missing tables. Returns the table names known to the metadata."""
    metadata = load_models()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    tables = sorted(metadata.tables)
    logger.info("Schema ensured", extra={"tables": tables, "operation": "db.create_all"})
    return tables


async def drop_all(engine: AsyncEngine) -> list[str]:
    """Drop every model table. Destructive; intended for development and tests."""
    metadata = load_models()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)

    tables = sorted(metadata.tables)
    logger.warning("Schema dropped", extra={"tables": tables, "operation": "db.drop_all"})
    return tables


__all__ = ["create_all", "drop_all", "load_models"]
