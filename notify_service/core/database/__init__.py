"""Core database package with composable base classes, mixins, and repository.

Base Classes and Mixins:
    - Base: Declarative base with auto table naming and constraint naming
    - UUIDv7PKMixin: Time-sortable UUID primary key
    - TimestampMixin: created_at, updated_at tracking
    - TenantMixin: nullable tenant_id for tenant or global rows
    - UUIDv7TimestampedBase: UUID v7 PK + timestamps

Types:
    - UTCDateTime: aware-UTC datetimes on PostgreSQL and SQLite
    - StringArray: ARRAY on PostgreSQL, JSON text elsewhere
    - JSONType: JSONB on PostgreSQL, JSON elsewhere

Repository:
    - BaseRepository[T]: Generic CRUD with explicit session passing
    - SearchResult[T]: Paginated result container
    - dialect_insert: INSERT with ON CONFLICT support for the bound dialect
"""

from __future__ import annotations

from .base import (
    NAMING_CONVENTION,
    Base,
    TenantMixin,
    TimestampMixin,
    UUIDv7PKMixin,
    UUIDv7TimestampedBase,
    generate_uuid7,
)
from .exceptions import NotFoundError, RepositoryError
from .repository import BaseRepository, SearchResult, dialect_insert
from .types import JSONType, StringArray, UTCDateTime

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BaseRepository",
    "JSONType",
    "NotFoundError",
    "RepositoryError",
    "SearchResult",
    "StringArray",
    "TenantMixin",
    "TimestampMixin",
    "UTCDateTime",
    "UUIDv7PKMixin",
    "UUIDv7TimestampedBase",
    "dialect_insert",
    "generate_uuid7",
]
