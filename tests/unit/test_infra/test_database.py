"""Unit tests for cross-database column types, repositories and schema helpers."""

from __future__ import annotations

import time
import uuid
from datetime import UTC, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from notify_service.core.database import NotFoundError, generate_uuid7
from notify_service.features.notifications.models import DeliveryEvent, QueueEntry
from notify_service.features.notifications.repository import get_queue_entry_repository
from notify_service.infra.database import load_models


@pytest.mark.unit
class TestUUIDv7:
    """Test suite for generate_uuid7."""

    def test_version_and_uniqueness(self):
        ids = [generate_uuid7() for _ in range(100)]
        assert all(value.version == 7 for value in ids)
        assert len(set(ids)) == 100

    def test_rfc4122_variant_and_time_ordering(self):
        first = generate_uuid7()
        time.sleep(0.002)
        second = generate_uuid7()

        assert first.variant == uuid.RFC_4122
        assert first < second


@pytest.mark.unit
class TestUTCDateTime:
    """UTCDateTime keeps values timezone-aware across SQLite."""

    @pytest.mark.asyncio
    async def test_round_trip_is_aware_utc(self, db_session, make_entry):
        offset = timezone(timedelta(hours=2))
        local = datetime(2026, 3, 10, 12, 0, tzinfo=offset)
        entry = make_entry(next_eligible_at=local)
        db_session.add(entry)
        await db_session.flush()
        db_session.expire_all()

        loaded = await db_session.get(QueueEntry, entry.id)
        assert loaded.next_eligible_at.tzinfo is not None
        assert loaded.next_eligible_at == datetime(2026, 3, 10, 10, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_comparison_uses_utc(self, db_session, make_entry):
        db_session.add(make_entry(next_eligible_at=datetime(2026, 3, 10, 10, 0, tzinfo=UTC)))
        await db_session.flush()

        cutoff = datetime(2026, 3, 10, 11, 30, tzinfo=timezone(timedelta(hours=1)))
        rows = (
            await db_session.execute(select(QueueEntry).where(QueueEntry.next_eligible_at <= cutoff))
        ).scalars().all()
        assert len(rows) == 1


@pytest.mark.unit
class TestBaseRepository:
    """Test suite for the generic repository through QueueEntryRepository."""

    @pytest.mark.asyncio
    async def test_get_or_raise(self, db_session, make_entry):
        repository = get_queue_entry_repository()
        entry = make_entry()
        db_session.add(entry)
        await db_session.flush()

        assert (await repository.get_or_raise(db_session, entry.id)).id == entry.id
        with pytest.raises(NotFoundError):
            await repository.get_or_raise(db_session, generate_uuid7())

    @pytest.mark.asyncio
    async def test_search_paginates(self, db_session, make_entry):
        repository = get_queue_entry_repository()
        for _ in range(5):
            db_session.add(make_entry())
        await db_session.flush()

        page = await repository.search(
            db_session, repository.list_statement("acme"), limit=2, offset=0
        )

        assert page.total == 5
        assert len(page.items) == 2
        assert page.has_next

    @pytest.mark.asyncio
    async def test_tenant_scoping(self, db_session, make_entry):
        repository = get_queue_entry_repository()
        entry = make_entry(tenant_id="globex")
        db_session.add(entry)
        await db_session.flush()

        assert await repository.get_for_tenant(db_session, "acme", entry.id) is None
        assert await repository.get_for_tenant(db_session, "globex", entry.id) is not None


@pytest.mark.unit
class TestSchema:
    """Test suite for schema helpers."""

    def test_load_models_registers_tables(self):
        tables = set(load_models().tables)
        assert {
            "notification_templates",
            "queue_entries",
            "delivery_events",
            "rate_limit_windows",
            "webhooks",
            "webhook_deliveries",
        } <= tables

    @pytest.mark.asyncio
    async def test_delivery_event_defaults(self, db_session):
        event = DeliveryEvent(
            tenant_id="acme",
            entry_id=generate_uuid7(),
            channel="sms",
            type_code="otp",
            event_type="queued",
            to_status="pending",
        )
        db_session.add(event)
        await db_session.flush()

        assert event.entry_kind == "notification"
        assert event.occurred_at is not None
