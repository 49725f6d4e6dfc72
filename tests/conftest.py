"""Pytest configuration and shared fixtures.

Organization:
    - Application Fixtures: FastAPI app and HTTP client
    - Database Fixtures: in-memory SQLite engine and session
    - Factory Fixtures: templates, queue entries, tenant configuration
    - Fake Senders: scriptable channel senders for dispatch tests

Every test gets a fresh in-memory database. The engine uses a single
shared connection (``StaticPool``) so the app under test and the test body
see the same data.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("RATELIMIT_BACKEND", "database")
os.environ.setdefault("LOG_LEVEL", "WARNING")

TENANT = "acme"
NOW = datetime(2026, 3, 10, 10, 15, tzinfo=UTC)


# ============================================================================
# Singleton Reset
# ============================================================================


@pytest.fixture(autouse=True)
def reset_singletons():
    """Drop cached settings and service singletons around every test."""
    from notify_service.core.settings import clear_all_caches
    from notify_service.features.notifications.channels import set_channel_registry
    from notify_service.features.notifications.dispatcher import set_channel_dispatcher
    from notify_service.features.notifications.queue import set_dispatch_queue
    from notify_service.features.notifications.service import set_notification_service
    from notify_service.features.webhooks.dispatcher import set_webhook_engine
    from notify_service.features.webhooks.service import set_webhook_service
    from notify_service.infra.ratelimit import set_rate_limiter

    def reset() -> None:
        clear_all_caches()
        set_rate_limiter(None)
        set_dispatch_queue(None)
        set_channel_registry(None)
        set_channel_dispatcher(None)
        set_notification_service(None)
        set_webhook_engine(None)
        set_webhook_service(None)

    reset()
    yield
    reset()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine():
    """In-memory SQLite engine with every model table created.

    Yields:
        AsyncEngine bound to a single shared connection.
    """
    from notify_service.infra.database import create_all, drop_all

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_all(engine)
    yield engine
    await drop_all(engine)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured like the production one."""
    return async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession]:
    """Database session for one test; uncommitted work is rolled back.

    Example:
        async def test_enqueue(db_session):
            entry, created = await queue.enqueue(db_session, make_entry())
            assert created
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
async def app(db_session):
    """FastAPI application whose requests use the test session."""
    from notify_service.app.main import create_app
    from notify_service.core.dependencies import get_db_session

    application = create_app()

    async def override_db_session() -> AsyncGenerator[AsyncSession]:
        yield db_session

    application.dependency_overrides[get_db_session] = override_db_session
    return application


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client talking to the app in-process."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def tenant_headers() -> dict[str, str]:
    return {"X-Tenant-ID": TENANT}


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest.fixture
def make_template():
    """Build (unsaved) NotificationTemplate rows with sensible defaults."""
    from notify_service.features.notifications.models import NotificationTemplate

    def factory(**overrides: Any) -> NotificationTemplate:
        values: dict[str, Any] = {
            "tenant_id": None,
            "type_code": "order_shipped",
            "channel": "email",
            "language": "en",
            "category": "transactional",
            "requires_consent": False,
            "is_active": True,
            "version": 1,
            "subject": "Order {{ order_id }} shipped",
            "body": "Hi {{ name }}, order {{ order_id }} is on its way.",
        }
        values.update(overrides)
        return NotificationTemplate(**values)

    return factory


@pytest.fixture
def add_template(db_session, make_template):
    """Persist a template and return it."""

    async def factory(**overrides: Any):
        template = make_template(**overrides)
        db_session.add(template)
        await db_session.flush()
        return template

    return factory


@pytest.fixture
def make_entry():
    """Build (unsaved) pending QueueEntry rows carrying SMS-shaped content."""
    from notify_service.core.database import generate_uuid7
    from notify_service.features.notifications.content import SmsContent, dump_content
    from notify_service.features.notifications.models import QueueEntry

    def factory(**overrides: Any) -> QueueEntry:
        values: dict[str, Any] = {
            "id": generate_uuid7(),
            "tenant_id": TENANT,
            "idempotency_key": generate_uuid7().hex,
            "recipient_type": "user",
            "recipient_id": "u-1",
            "address": "+15550100",
            "channel": "sms",
            "type_code": "order_shipped",
            "category": "transactional",
            "language": "en",
            "content": dump_content(SmsContent(text="Your order shipped")),
            "priority": 1,
            "status": "pending",
            "attempt_count": 0,
            "max_attempts": 3,
            "deferral_count": 0,
            "cancel_requested": False,
            "next_eligible_at": NOW,
        }
        values.update(overrides)
        return QueueEntry(**values)

    return factory


@pytest.fixture
def tenant_config(db_session):
    """Persist a TenantNotificationConfig for the test tenant."""
    from notify_service.features.notifications.models import TenantNotificationConfig

    async def factory(tenant_id: str = TENANT, **fields: Any) -> TenantNotificationConfig:
        fields.setdefault("disabled_channels", [])
        config = TenantNotificationConfig(tenant_id=tenant_id, **fields)
        db_session.add(config)
        await db_session.flush()
        return config

    return factory


@pytest.fixture
def sql_limiter():
    """Rate limiter on the SQL window store."""
    from notify_service.infra.ratelimit import SqlWindowStore, WindowedRateLimiter

    return WindowedRateLimiter(SqlWindowStore())


@pytest.fixture
def dispatch_queue(sql_limiter):
    from notify_service.features.notifications.queue import DispatchQueue

    return DispatchQueue(limiter=sql_limiter)


# ============================================================================
# Fake Senders
# ============================================================================


class ScriptedSender:
    """Channel sender that plays back a list of outcomes, then delivers."""

    def __init__(self, outcomes: list[Any] | None = None, name: str = "scripted") -> None:
        self.name = name
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[str, str, Any]] = []

    async def send(self, channel: str, address: str, content: Any):
        from notify_service.features.notifications.channels import Delivered

        self.calls.append((channel, address, content))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return Delivered(provider=self.name, provider_message_id=f"msg-{len(self.calls)}")


@pytest.fixture
def scripted_sender():
    """Factory for ScriptedSender instances."""
    return ScriptedSender
