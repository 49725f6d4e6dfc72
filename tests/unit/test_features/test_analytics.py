"""Unit tests for the analytics aggregator."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from notify_service.core.database import generate_uuid7
from notify_service.features.notifications.analytics import (
    AnalyticsAggregator,
    FoldResult,
    event_counters,
)
from notify_service.features.notifications.models import DeliveryEvent
from notify_service.features.notifications.tracker import DeliveryTracker
from notify_service.features.notifications.worker import AnalyticsFolder

NOW = datetime(2026, 3, 10, 10, 15, tzinfo=UTC)
DAY = date(2026, 3, 10)

# (channel, event_type, from_status, to_status)
_DAY_LOG = [
    ("sms", "queued", None, "pending"),
    ("sms", "delivered", "in_flight", "delivered"),
    ("sms", "retry_scheduled", "in_flight", "pending"),
    ("sms", "failed", "in_flight", "failed"),
    ("sms", "opened", "delivered", "delivered"),
    ("sms", "rate_limited", "pending", "pending"),
    ("email", "suppressed", None, "failed"),
    ("email", "dead", "in_flight", "dead"),
]


async def _record_log(session, *, tenant_id="acme", occurred_at=NOW, log=_DAY_LOG):
    tracker = DeliveryTracker()
    for offset, (channel, event_type, from_status, to_status) in enumerate(log):
        await tracker.record(
            session,
            tenant_id=tenant_id,
            entry_id=generate_uuid7(),
            channel=channel,
            type_code="order_shipped",
            event_type=event_type,
            from_status=from_status,
            to_status=to_status,
            occurred_at=occurred_at + timedelta(seconds=offset),
        )


@pytest.mark.unit
class TestEventCounters:
    """Test suite for the event to counter mapping."""

    @pytest.mark.parametrize(
        ("event_type", "from_status", "expected"),
        [
            ("delivered", "in_flight", {"sent": 1, "delivered": 1}),
            ("retry_scheduled", "in_flight", {"sent": 1}),
            ("released", "in_flight", {}),
            ("cancelled", "pending", {"failed": 1}),
            ("expired", "pending", {"failed": 1}),
            ("deferred", None, {"deferred": 1}),
            ("clicked", "delivered", {"clicked": 1}),
            ("queued", None, {}),
        ],
    )
    def test_mapping(self, event_type, from_status, expected):
        event = DeliveryEvent(event_type=event_type, from_status=from_status)
        assert dict(event_counters(event)) == expected


@pytest.mark.unit
class TestAnalyticsAggregator:
    """Test suite for folding and reporting."""

    @pytest.mark.asyncio
    async def test_fold_and_summary(self, db_session):
        await _record_log(db_session)
        aggregator = AnalyticsAggregator()

        result = await aggregator.fold_pending(db_session, batch_size=100)
        summary = await aggregator.summary(db_session, "acme", DAY, DAY)

        assert result == FoldResult(folded=8, skipped=0)
        assert summary["totals"] == {
            "sent": 4,
            "delivered": 1,
            "failed": 1,
            "dead": 1,
            "suppressed": 1,
            "deferred": 1,
            "opened": 1,
            "clicked": 0,
        }
        assert summary["delivery_rate"] == 0.25
        assert summary["failure_rate"] == 0.5
        assert summary["open_rate"] == 1.0
        assert summary["by_channel"]["email"]["dead"] == 1
        assert summary["by_channel"]["sms"]["sent"] == 3

    @pytest.mark.asyncio
    async def test_released_claim_is_not_a_send(self, db_session):
        log = [
            ("sms", "queued", None, "pending"),
            ("sms", "released", "in_flight", "pending"),
            ("sms", "delivered", "in_flight", "delivered"),
        ]
        await _record_log(db_session, log=log)
        aggregator = AnalyticsAggregator()

        await aggregator.fold_pending(db_session, batch_size=100)
        summary = await aggregator.summary(db_session, "acme", DAY, DAY)

        assert summary["totals"]["sent"] == 1
        assert summary["totals"]["delivered"] == 1
        assert summary["delivery_rate"] == 1.0

    @pytest.mark.asyncio
    async def test_each_event_is_folded_once(self, db_session):
        await _record_log(db_session)
        aggregator = AnalyticsAggregator()

        first = await aggregator.fold_pending(db_session, batch_size=3)
        rest = await aggregator.fold_pending(db_session, batch_size=100)
        again = await aggregator.fold_pending(db_session, batch_size=100)
        summary = await aggregator.summary(db_session, "acme", DAY, DAY)

        assert first.folded == 3
        assert rest.folded == 5
        assert again == FoldResult(0, 0)
        assert summary["totals"]["sent"] == 4

    @pytest.mark.asyncio
    async def test_recompute_rebuilds_without_double_counting(self, db_session):
        await _record_log(db_session)
        await _record_log(db_session, tenant_id="globex")
        aggregator = AnalyticsAggregator()
        await aggregator.fold_pending(db_session, batch_size=100)

        result = await aggregator.recompute(db_session, "acme", DAY, DAY, batch_size=3)
        db_session.expire_all()
        acme = await aggregator.summary(db_session, "acme", DAY, DAY)
        globex = await aggregator.summary(db_session, "globex", DAY, DAY)

        assert result.folded == 8
        assert acme["totals"]["sent"] == 4
        assert globex["totals"]["sent"] == 4

    @pytest.mark.asyncio
    async def test_summary_respects_day_range(self, db_session):
        await _record_log(db_session)
        await _record_log(db_session, occurred_at=NOW + timedelta(days=1))
        aggregator = AnalyticsAggregator()
        await aggregator.fold_pending(db_session, batch_size=100)

        one_day = await aggregator.summary(db_session, "acme", DAY, DAY)
        two_days = await aggregator.summary(db_session, "acme", DAY, DAY + timedelta(days=1))

        assert one_day["totals"]["delivered"] == 1
        assert two_days["totals"]["delivered"] == 2
        assert len(two_days["buckets"]) == 4

    @pytest.mark.asyncio
    async def test_empty_range(self, db_session):
        summary = await AnalyticsAggregator().summary(db_session, "acme", DAY, DAY)
        assert summary["delivery_rate"] == 0.0
        assert summary["by_channel"] == {}

    @pytest.mark.asyncio
    async def test_recompute_rejects_inverted_range(self, db_session):
        with pytest.raises(ValueError):
            await AnalyticsAggregator().recompute(db_session, "acme", DAY, DAY - timedelta(days=1))


@pytest.mark.unit
class TestAnalyticsFolder:
    """Test suite for the background fold loop."""

    @pytest.mark.asyncio
    async def test_run_once_reports_full_batches(self, session_factory):
        async with session_factory() as session:
            await _record_log(session)
            await session.commit()
        folder = AnalyticsFolder(session_factory=session_factory, batch_size=5, interval=0.01)

        first = await folder.run_once()
        second = await folder.run_once()
        idle = await folder.run_once()

        assert first == 5
        assert second == 0
        assert idle == 0
        async with session_factory() as session:
            summary = await AnalyticsAggregator().summary(session, "acme", DAY, DAY)
        assert summary["totals"]["sent"] == 4
        assert summary["totals"]["delivered"] == 1

    @pytest.mark.asyncio
    async def test_fold_commits_markers(self, session_factory):
        async with session_factory() as session:
            await _record_log(session, log=_DAY_LOG[:2])
            await session.commit()
        folder = AnalyticsFolder(session_factory=session_factory, batch_size=100)

        result = await folder.fold()

        assert result == FoldResult(folded=2, skipped=0)
        assert await folder.fold() == FoldResult(0, 0)
