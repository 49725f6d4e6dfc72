"""Fixed-window quota enforcement per (tenant, channel).

Each admission increments the counter of every configured window (hour,
day, month) that contains "now". A counter that would pass its quota is not
incremented; counters already reserved for the same attempt are rolled back,
so rejected sends never count against the quota.

Two stores are available:

- ``SqlWindowStore``: insert-if-missing, then ``UPDATE ... SET count = count + 1
  WHERE count < :limit``. The single conditional UPDATE is the
  compare-and-increment; it runs inside the caller's transaction.
- ``RedisWindowStore``: an atomic Lua INCR/DECR keyed by window start.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import select, update

from notify_service.core.database import dialect_insert, generate_uuid7
from notify_service.infra.logging import get_lazy_logger
from notify_service.infra.metrics.prometheus import ratelimit_checks_total
from notify_service.infra.ratelimit.models import RateLimitWindow
from notify_service.infra.ratelimit.windows import (
    WindowType,
    next_window_start,
    window_seconds,
    window_start,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

WINDOW_ORDER = (WindowType.HOUR, WindowType.DAY, WindowType.MONTH)


@dataclass(frozen=True, slots=True)
class Admitted:
    """Quota reserved in every listed window."""

    reservations: tuple[tuple[WindowType, datetime], ...] = ()


@dataclass(frozen=True, slots=True)
class RateLimited:
    """Quota exhausted for ``window``; retry at ``until`` (next window start)."""

    window: WindowType
    until: datetime
    limit: int


Admission = Admitted | RateLimited


class WindowStore(Protocol):
    """Counter backend used by WindowedRateLimiter."""

    async def try_increment(
        self,
        tenant_id: str,
        channel: str,
        window: WindowType,
        start: datetime,
        limit: int,
        *,
        ttl_seconds: int,
        session: AsyncSession | None = None,
    ) -> bool: ...

    async def decrement(
        self,
        tenant_id: str,
        channel: str,
        window: WindowType,
        start: datetime,
        *,
        session: AsyncSession | None = None,
    ) -> None: ...

    async def current(
        self,
        tenant_id: str,
        channel: str,
        window: WindowType,
        start: datetime,
        *,
        session: AsyncSession | None = None,
    ) -> int: ...


def _require_session(session: AsyncSession | None) -> AsyncSession:
    if session is None:
        msg = "SqlWindowStore needs the caller's session"
        raise ValueError(msg)
    return session


class SqlWindowStore:
    """Counters in the ``rate_limit_windows`` table."""

    @staticmethod
    def _key(tenant_id: str, channel: str, window: WindowType, start: datetime) -> tuple:
        return (
            RateLimitWindow.tenant_id == tenant_id,
            RateLimitWindow.channel == channel,
            RateLimitWindow.window_type == window.value,
            RateLimitWindow.window_start == start,
        )

    async def try_increment(
        self,
        tenant_id: str,
        channel: str,
        window: WindowType,
        start: datetime,
        limit: int,
        *,
        ttl_seconds: int,
        session: AsyncSession | None = None,
    ) -> bool:
        session = _require_session(session)
        if limit <= 0:
            return False

        insert_stmt = (
            dialect_insert(session, RateLimitWindow)
            .values(
                id=generate_uuid7(),
                tenant_id=tenant_id,
                channel=channel,
                window_type=window.value,
                window_start=start,
                count=0,
            )
            .on_conflict_do_nothing(
                index_elements=["tenant_id", "channel", "window_type", "window_start"]
            )
        )
        await session.execute(insert_stmt)

        stmt = (
            update(RateLimitWindow)
            .where(*self._key(tenant_id, channel, window, start), RateLimitWindow.count < limit)
            .values(count=RateLimitWindow.count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def decrement(
        self,
        tenant_id: str,
        channel: str,
        window: WindowType,
        start: datetime,
        *,
        session: AsyncSession | None = None,
    ) -> None:
        session = _require_session(session)
        stmt = (
            update(RateLimitWindow)
            .where(*self._key(tenant_id, channel, window, start), RateLimitWindow.count > 0)
            .values(count=RateLimitWindow.count - 1)
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)

    async def current(
        self,
        tenant_id: str,
        channel: str,
        window: WindowType,
        start: datetime,
        *,
        session: AsyncSession | None = None,
    ) -> int:
        session = _require_session(session)
        stmt = select(RateLimitWindow.count).where(*self._key(tenant_id, channel, window, start))
        value = (await session.execute(stmt)).scalar_one_or_none()
        return int(value or 0)


# Increment, and undo when the post-increment value passes the limit
_INCREMENT_SCRIPT = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('EXPIRE', KEYS[1], tonumber(ARGV[2]))
end
if current > tonumber(ARGV[1]) then
    redis.call('DECR', KEYS[1])
    return 0
end
return 1
"""

_DECREMENT_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current > 0 then
    return redis.call('DECR', KEYS[1])
end
return 0
"""


class RedisWindowStore:
    """Counters in Redis, one key per window start."""

    def __init__(self, redis: Redis, key_prefix: str = "notify:ratelimit") -> None:
        self.redis = redis
        self.key_prefix = key_prefix

    def _make_key(self, tenant_id: str, channel: str, window: WindowType, start: datetime) -> str:
        return f"{self.key_prefix}:{tenant_id}:{channel}:{window.value}:{start:%Y%m%d%H}"

    async def try_increment(
        self,
        tenant_id: str,
        channel: str,
        window: WindowType,
        start: datetime,
        limit: int,
        *,
        ttl_seconds: int,
        session: AsyncSession | None = None,
    ) -> bool:
        if limit <= 0:
            return False
        key = self._make_key(tenant_id, channel, window, start)
        # Keep the key a little past the window end so late decrements still land
        result = await self.redis.eval(_INCREMENT_SCRIPT, 1, key, limit, ttl_seconds + 60)
        return bool(int(result))

    async def decrement(
        self,
        tenant_id: str,
        channel: str,
        window: WindowType,
        start: datetime,
        *,
        session: AsyncSession | None = None,
    ) -> None:
        key = self._make_key(tenant_id, channel, window, start)
        await self.redis.eval(_DECREMENT_SCRIPT, 1, key)

    async def current(
        self,
        tenant_id: str,
        channel: str,
        window: WindowType,
        start: datetime,
        *,
        session: AsyncSession | None = None,
    ) -> int:
        value = await self.redis.get(self._make_key(tenant_id, channel, window, start))
        return int(value or 0)


class WindowedRateLimiter:
    """Admits or rejects one dispatch attempt against a tenant's channel quotas.

    Example:
        limiter = WindowedRateLimiter(SqlWindowStore())
        admission = await limiter.acquire(
            "tenant-a", "sms", {WindowType.HOUR: 2}, now, session=session
        )
        if isinstance(admission, RateLimited):
            defer_until(admission.until)
    """

    def __init__(self, store: WindowStore) -> None:
        self.store = store

    async def acquire(
        self,
        tenant_id: str,
        channel: str,
        quotas: Mapping[WindowType, int],
        now: datetime,
        *,
        session: AsyncSession | None = None,
    ) -> Admission:
        """Reserve one unit in every configured window or none at all."""
        reserved: list[tuple[WindowType, datetime]] = []
        for window in WINDOW_ORDER:
            limit = quotas.get(window)
            if limit is None:
                continue
            start = window_start(window, now)
            admitted = await self.store.try_increment(
                tenant_id,
                channel,
                window,
                start,
                limit,
                ttl_seconds=window_seconds(window, now),
                session=session,
            )
            if not admitted:
                await self._rollback(tenant_id, channel, reserved, session)
                until = next_window_start(window, now)
                ratelimit_checks_total.labels(channel=channel, result="limited").inc()
                logger.info(
                    "Rate limit reached",
                    extra={
                        "tenant_id": tenant_id,
                        "channel": channel,
                        "window": window.value,
                        "limit": limit,
                        "retry_at": until.isoformat(),
                        "operation": "ratelimit.acquire",
                    },
                )
                return RateLimited(window=window, until=until, limit=limit)
            reserved.append((window, start))

        ratelimit_checks_total.labels(channel=channel, result="admitted").inc()
        lazy_logger.debug(
            lambda: f"ratelimit.acquire({tenant_id}, {channel}) -> admitted in {[w.value for w, _ in reserved]}"
        )
        return Admitted(tuple(reserved))

    async def release(
        self,
        tenant_id: str,
        channel: str,
        admission: Admitted,
        *,
        session: AsyncSession | None = None,
    ) -> None:
        """Give back a reservation whose attempt did not happen."""
        await self._rollback(tenant_id, channel, list(admission.reservations), session)

    async def usage(
        self,
        tenant_id: str,
        channel: str,
        quotas: Mapping[WindowType, int],
        now: datetime,
        *,
        session: AsyncSession | None = None,
    ) -> dict[WindowType, tuple[int, int]]:
        """Current (count, limit) for each configured window."""
        usage: dict[WindowType, tuple[int, int]] = {}
        for window in WINDOW_ORDER:
            if window not in quotas:
                continue
            count = await self.store.current(
                tenant_id, channel, window, window_start(window, now), session=session
            )
            usage[window] = (count, quotas[window])
        return usage

    async def _rollback(
        self,
        tenant_id: str,
        channel: str,
        reserved: list[tuple[WindowType, datetime]],
        session: AsyncSession | None,
    ) -> None:
        for window, start in reversed(reserved):
            await self.store.decrement(tenant_id, channel, window, start, session=session)


_limiter: WindowedRateLimiter | None = None


def get_rate_limiter() -> WindowedRateLimiter:
    """Get or create the rate limiter for the configured backend."""
    global _limiter
    if _limiter is None:
        from notify_service.core.settings import get_ratelimit_settings

        settings = get_ratelimit_settings()
        store: WindowStore
        if settings.backend == "redis":
            from redis.asyncio import Redis

            store = RedisWindowStore(
                Redis.from_url(settings.redis_url, decode_responses=True),
                key_prefix=settings.key_prefix,
            )
        else:
            store = SqlWindowStore()
        _limiter = WindowedRateLimiter(store)
        logger.info(
            "Rate limiter initialized",
            extra={"backend": settings.backend, "operation": "ratelimit.init"},
        )
    return _limiter


def set_rate_limiter(limiter: WindowedRateLimiter | None) -> None:
    """Replace the singleton (tests, CLI)."""
    global _limiter
    _limiter = limiter


async def close_rate_limiter() -> None:
    """Close the Redis connection pool (if any) and forget the singleton."""
    global _limiter
    if _limiter is None:
        return
    store = _limiter.store
    if isinstance(store, RedisWindowStore):
        await store.redis.aclose()
        logger.info("Rate limiter Redis connection closed", extra={"operation": "ratelimit.close"})
    _limiter = None


__all__ = [
    "Admission",
    "Admitted",
    "RateLimited",
    "RedisWindowStore",
    "SqlWindowStore",
    "WindowStore",
    "WindowedRateLimiter",
    "close_rate_limiter",
    "get_rate_limiter",
    "set_rate_limiter",
]
