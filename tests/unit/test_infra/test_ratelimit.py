"""Unit tests for fixed-window rate limiting."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from notify_service.infra.ratelimit import (
    Admitted,
    RateLimited,
    RedisWindowStore,
    SqlWindowStore,
    WindowedRateLimiter,
    WindowType,
    next_window_start,
    window_seconds,
    window_start,
)

NOW = datetime(2026, 3, 10, 10, 15, 42, tzinfo=UTC)


# ============================================================================
# Windows
# ============================================================================


@pytest.mark.unit
class TestWindows:
    """Test suite for calendar-aligned window arithmetic."""

    def test_window_start(self):
        assert window_start(WindowType.HOUR, NOW) == datetime(2026, 3, 10, 10, tzinfo=UTC)
        assert window_start(WindowType.DAY, NOW) == datetime(2026, 3, 10, tzinfo=UTC)
        assert window_start(WindowType.MONTH, NOW) == datetime(2026, 3, 1, tzinfo=UTC)

    def test_next_window_start(self):
        assert next_window_start(WindowType.HOUR, NOW) == datetime(2026, 3, 10, 11, tzinfo=UTC)
        assert next_window_start(WindowType.DAY, NOW) == datetime(2026, 3, 11, tzinfo=UTC)
        assert next_window_start(WindowType.MONTH, NOW) == datetime(2026, 4, 1, tzinfo=UTC)

    def test_month_rolls_over_year(self):
        december = datetime(2026, 12, 31, 23, 59, tzinfo=UTC)
        assert next_window_start(WindowType.MONTH, december) == datetime(2027, 1, 1, tzinfo=UTC)

    def test_non_utc_input_is_normalized(self):
        from zoneinfo import ZoneInfo

        local = datetime(2026, 3, 10, 1, 30, tzinfo=ZoneInfo("America/New_York"))
        assert window_start(WindowType.DAY, local) == datetime(2026, 3, 10, tzinfo=UTC)

    def test_window_seconds(self):
        assert window_seconds(WindowType.HOUR, NOW) == 3600
        assert window_seconds(WindowType.DAY, NOW) == 86400
        assert window_seconds(WindowType.MONTH, datetime(2026, 2, 5, tzinfo=UTC)) == 28 * 86400


# ============================================================================
# SQL store
# ============================================================================


@pytest.mark.unit
class TestSqlWindowStore:
    """Test suite for SqlWindowStore."""

    @pytest.mark.asyncio
    async def test_increment_up_to_limit(self, db_session):
        store = SqlWindowStore()
        start = window_start(WindowType.HOUR, NOW)

        results = [
            await store.try_increment(
                "acme", "sms", WindowType.HOUR, start, 2, ttl_seconds=3600, session=db_session
            )
            for _ in range(3)
        ]

        assert results == [True, True, False]
        assert await store.current("acme", "sms", WindowType.HOUR, start, session=db_session) == 2

    @pytest.mark.asyncio
    async def test_counters_are_per_tenant_and_channel(self, db_session):
        store = SqlWindowStore()
        start = window_start(WindowType.HOUR, NOW)

        for tenant, channel in (("acme", "sms"), ("acme", "email"), ("globex", "sms")):
            assert await store.try_increment(
                tenant, channel, WindowType.HOUR, start, 1, ttl_seconds=3600, session=db_session
            )

    @pytest.mark.asyncio
    async def test_zero_limit_never_admits(self, db_session):
        store = SqlWindowStore()
        start = window_start(WindowType.DAY, NOW)
        assert not await store.try_increment(
            "acme", "sms", WindowType.DAY, start, 0, ttl_seconds=86400, session=db_session
        )

    @pytest.mark.asyncio
    async def test_decrement_never_goes_negative(self, db_session):
        store = SqlWindowStore()
        start = window_start(WindowType.HOUR, NOW)
        await store.try_increment(
            "acme", "sms", WindowType.HOUR, start, 5, ttl_seconds=3600, session=db_session
        )

        await store.decrement("acme", "sms", WindowType.HOUR, start, session=db_session)
        await store.decrement("acme", "sms", WindowType.HOUR, start, session=db_session)

        assert await store.current("acme", "sms", WindowType.HOUR, start, session=db_session) == 0

    @pytest.mark.asyncio
    async def test_requires_session(self):
        with pytest.raises(ValueError):
            await SqlWindowStore().current("acme", "sms", WindowType.HOUR, NOW)


# ============================================================================
# Redis store
# ============================================================================


@pytest.mark.unit
class TestRedisWindowStore:
    """Test suite for RedisWindowStore against a mocked client."""

    @pytest.mark.asyncio
    async def test_increment_runs_script_with_ttl(self):
        redis = AsyncMock()
        redis.eval.return_value = 1
        store = RedisWindowStore(redis, key_prefix="test")
        start = window_start(WindowType.HOUR, NOW)

        admitted = await store.try_increment(
            "acme", "sms", WindowType.HOUR, start, 2, ttl_seconds=3600
        )

        assert admitted is True
        args = redis.eval.await_args.args
        assert args[1:] == (1, "test:acme:sms:hour:2026031010", 2, 3660)

    @pytest.mark.asyncio
    async def test_rejected_increment(self):
        redis = AsyncMock()
        redis.eval.return_value = 0
        store = RedisWindowStore(redis)

        assert not await store.try_increment(
            "acme", "sms", WindowType.DAY, window_start(WindowType.DAY, NOW), 1, ttl_seconds=60
        )

    @pytest.mark.asyncio
    async def test_zero_limit_skips_redis(self):
        redis = AsyncMock()
        store = RedisWindowStore(redis)

        assert not await store.try_increment(
            "acme", "sms", WindowType.DAY, NOW, 0, ttl_seconds=60
        )
        redis.eval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_current_reads_key(self):
        redis = AsyncMock()
        redis.get.return_value = b"7"
        store = RedisWindowStore(redis, key_prefix="test")

        count = await store.current("acme", "email", WindowType.DAY, window_start(WindowType.DAY, NOW))

        assert count == 7
        redis.get.assert_awaited_once_with("test:acme:email:day:2026031000")


# ============================================================================
# Limiter
# ============================================================================


@pytest.mark.unit
class TestWindowedRateLimiter:
    """Test suite for WindowedRateLimiter."""

    @pytest.mark.asyncio
    async def test_admits_within_quota(self, db_session):
        limiter = WindowedRateLimiter(SqlWindowStore())

        admission = await limiter.acquire(
            "acme", "sms", {WindowType.HOUR: 2, WindowType.DAY: 10}, NOW, session=db_session
        )

        assert isinstance(admission, Admitted)
        assert [window for window, _ in admission.reservations] == [WindowType.HOUR, WindowType.DAY]

    @pytest.mark.asyncio
    async def test_rejection_points_at_next_window(self, db_session):
        limiter = WindowedRateLimiter(SqlWindowStore())
        quotas = {WindowType.HOUR: 2}

        for _ in range(2):
            assert isinstance(
                await limiter.acquire("acme", "sms", quotas, NOW, session=db_session), Admitted
            )
        rejected = await limiter.acquire("acme", "sms", quotas, NOW, session=db_session)

        assert isinstance(rejected, RateLimited)
        assert rejected.window == WindowType.HOUR
        assert rejected.until == datetime(2026, 3, 10, 11, tzinfo=UTC)
        assert rejected.limit == 2

    @pytest.mark.asyncio
    async def test_rejection_rolls_back_earlier_windows(self, db_session):
        """A DAY rejection must not leave the HOUR unit consumed."""
        limiter = WindowedRateLimiter(SqlWindowStore())
        quotas = {WindowType.HOUR: 10, WindowType.DAY: 1}

        assert isinstance(await limiter.acquire("acme", "sms", quotas, NOW, session=db_session), Admitted)
        rejected = await limiter.acquire("acme", "sms", quotas, NOW, session=db_session)

        assert isinstance(rejected, RateLimited)
        assert rejected.window == WindowType.DAY
        usage = await limiter.usage("acme", "sms", quotas, NOW, session=db_session)
        assert usage[WindowType.HOUR] == (1, 10)
        assert usage[WindowType.DAY] == (1, 1)

    @pytest.mark.asyncio
    async def test_new_window_starts_fresh(self, db_session):
        limiter = WindowedRateLimiter(SqlWindowStore())
        quotas = {WindowType.HOUR: 1}

        assert isinstance(await limiter.acquire("acme", "sms", quotas, NOW, session=db_session), Admitted)
        next_hour = next_window_start(WindowType.HOUR, NOW)
        assert isinstance(
            await limiter.acquire("acme", "sms", quotas, next_hour, session=db_session), Admitted
        )

    @pytest.mark.asyncio
    async def test_release_returns_units(self, db_session):
        limiter = WindowedRateLimiter(SqlWindowStore())
        quotas = {WindowType.HOUR: 1}

        admission = await limiter.acquire("acme", "sms", quotas, NOW, session=db_session)
        await limiter.release("acme", "sms", admission, session=db_session)

        assert isinstance(await limiter.acquire("acme", "sms", quotas, NOW, session=db_session), Admitted)

    @pytest.mark.asyncio
    async def test_no_quota_always_admits(self, db_session):
        limiter = WindowedRateLimiter(SqlWindowStore())
        admission = await limiter.acquire("acme", "push", {}, NOW, session=db_session)
        assert admission == Admitted(())
