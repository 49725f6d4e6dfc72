"""Generic repository over one mapped class.

The session is always passed in; repositories never commit. Feature
repositories subclass ``BaseRepository`` and add their own queries, and
anything that needs compare-and-set semantics issues ``UPDATE`` statements
on the session directly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.dialects import postgresql, sqlite

from notify_service.core.database.exceptions import NotFoundError
from notify_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import InstrumentedAttribute

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class SearchResult(Generic[T]):
    """One page of rows plus the unpaginated ``total``."""

    items: Sequence[T]
    total: int
    limit: int
    offset: int

    @property
    def has_next(self) -> bool:
        return self.offset + len(self.items) < self.total


def dialect_insert(session: AsyncSession, model: type[Any]) -> Any:
    """``INSERT`` for ``model`` that offers ``on_conflict_do_nothing``/``_update``.

    Queue enqueue, analytics folding and webhook publish rely on upserts;
    both PostgreSQL and SQLite support them with the same construct API.
    """
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert(model)
    return sqlite.insert(model)


class BaseRepository(Generic[T]):
    """Lookups, paginated search, create and delete for ``model``."""

    def __init__(self, model: type[T]) -> None:
        self.model = model
        name = f"repository.{model.__name__}"
        self._log = logging.getLogger(name)
        self._lazy = get_lazy_logger(name)

    async def get(self, session: AsyncSession, id: Any) -> T | None:  # noqa: A002
        instance = await session.get(self.model, id)
        self._lazy.debug(lambda: f"db.get {self.model.__name__}({id}) hit={instance is not None}")
        return instance

    async def get_or_raise(self, session: AsyncSession, id: Any) -> T:  # noqa: A002
        """Like ``get`` but raises ``NotFoundError`` for a missing row."""
        instance = await self.get(session, id)
        if instance is None:
            raise NotFoundError(self.model.__name__, {"id": id})
        return instance

    async def get_by(
        self,
        session: AsyncSession,
        attr: InstrumentedAttribute[Any],
        value: Any,
    ) -> T | None:
        """First row whose ``attr`` equals ``value``."""
        result = await session.execute(select(self.model).where(attr == value).limit(1))
        instance = result.scalars().first()
        self._lazy.debug(
            lambda: f"db.get_by {self.model.__name__}.{attr.key}={value!r} hit={instance is not None}"
        )
        return instance

    async def search(
        self,
        session: AsyncSession,
        statement: Select[tuple[T]],
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[T]:
        """Run ``statement`` for one page and count every row it matches.

        Filters and ordering belong on ``statement``; the count ignores the
        ordering.
        """
        counted = statement.order_by(None).subquery()
        total = (await session.execute(select(func.count()).select_from(counted))).scalar_one()
        items = (await session.execute(statement.limit(limit).offset(offset))).scalars().all()
        self._lazy.debug(
            lambda: f"db.search {self.model.__name__} offset={offset} page={len(items)} total={total}"
        )
        return SearchResult(items=items, total=total, limit=limit, offset=offset)

    async def create(self, session: AsyncSession, instance: T) -> T:
        """Add, flush and refresh so server defaults and the id are loaded."""
        session.add(instance)
        await session.flush()
        await session.refresh(instance)
        self._lazy.debug(lambda: f"db.create {self.model.__name__}(id={getattr(instance, 'id', None)})")
        return instance

    async def delete(self, session: AsyncSession, instance: T) -> None:
        await session.delete(instance)
        await session.flush()
        self._log.info(
            "Row deleted",
            extra={
                "entity": self.model.__name__,
                "id": str(getattr(instance, "id", None)),
                "operation": "db.delete",
            },
        )


__all__ = ["BaseRepository", "SearchResult", "dialect_insert"]
