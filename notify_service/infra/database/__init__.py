"""Database infrastructure package.

- **Session Management**: lazily built async engine and session factory
- **Schema Utilities**: create/drop tables from model metadata

Example:
    from notify_service.infra.database import get_async_session

    async with get_async_session() as session:
        result = await session.execute(...)
"""

from .schema import create_all, drop_all, load_models
from .session import (
    close_database,
    get_async_session,
    get_engine,
    get_session_factory,
    init_database,
    instrument_engine,
)

__all__ = [
    "close_database",
    "create_all",
    "drop_all",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "init_database",
    "instrument_engine",
    "load_models",
]
