"""Cross-database column types.

The service runs on PostgreSQL in production and on SQLite (aiosqlite) in
tests and local development. These decorators keep behavior identical on
both dialects.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, DateTime, String, Text, TypeDecorator
from sqlalchemy.dialects.postgresql import ARRAY, JSONB

if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.sql.type_api import TypeEngine


JSONType = JSONB().with_variant(JSON(), "sqlite")
"""JSONB on PostgreSQL, JSON elsewhere."""


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware UTC datetime on every dialect.

    SQLite drops tzinfo on storage, so values read back are naive. This
    decorator normalizes to UTC on bind and re-attaches UTC on load, so
    application code can always compare against ``datetime.now(UTC)``.

    Example:
        class QueueEntry(Base):
            next_eligible_at: Mapped[datetime] = mapped_column(UTCDateTime())
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        """Convert aware values to UTC; treat naive values as UTC."""
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            # Stored as naive ISO strings so lexical comparison stays correct
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        """Attach UTC to naive values read back from the database."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class StringArray(TypeDecorator[list[str]]):
    """Cross-database type for string arrays.

    Uses native ARRAY in PostgreSQL, JSON text in SQLite/other databases.
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        """Return native ARRAY for Postgres, Text for other dialects."""
        if dialect.name == "postgresql":
            return dialect.type_descriptor(ARRAY(String(100)))
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value: list[str] | None, dialect: Dialect) -> Any:
        """Serialize the array before binding to the database."""
        if value is None:
            return value
        if dialect.name == "postgresql":
            return list(value)
        return json.dumps(list(value))

    def process_result_value(self, value: Any, dialect: Dialect) -> list[str]:
        """Deserialize the stored array back into Python list."""
        if value is None:
            return []
        if dialect.name == "postgresql":
            return list(value)
        return json.loads(value) if value else []


__all__ = ["JSONType", "StringArray", "UTCDateTime"]
