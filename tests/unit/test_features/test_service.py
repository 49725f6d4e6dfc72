"""Unit tests for NotificationService."""

from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime, time, timedelta

import pytest

from notify_service.core.exceptions import NotFoundException, ValidationException
from notify_service.features.notifications.channels import ChannelRegistry
from notify_service.features.notifications.dispatcher import ChannelDispatcher
from notify_service.features.notifications.enums import WindowType
from notify_service.features.notifications.exceptions import InvalidTransition
from notify_service.features.notifications.repository import get_delivery_event_repository
from notify_service.features.notifications.schemas import (
    NotificationSubmit,
    PreferenceUpsert,
    ProducerEvent,
    TenantConfigUpdate,
)
from notify_service.features.notifications.service import NotificationService
from notify_service.features.webhooks.models import Webhook

NOW = datetime(2026, 3, 10, 10, 15, tzinfo=UTC)


@pytest.fixture
def service(dispatch_queue):
    return NotificationService(queue=dispatch_queue)


@pytest.fixture
async def sms_template(add_template):
    return await add_template(channel="sms", subject=None, body="Order {{ order_id }} shipped")


def _submit(**overrides) -> NotificationSubmit:
    values = {
        "recipient": {"type": "user", "id": "u-1"},
        "address": "+15550100",
        "type_code": "order_shipped",
        "channel": "sms",
        "variables": {"order_id": "A-1"},
    }
    values.update(overrides)
    return NotificationSubmit(**values)


async def _event_types(session, entry_id) -> Counter:
    events = await get_delivery_event_repository().list_for_entry(session, entry_id)
    return Counter(event.event_type for event in events)


# ============================================================================
# Submission
# ============================================================================


@pytest.mark.unit
class TestSubmit:
    """Test suite for NotificationService.submit."""

    @pytest.mark.asyncio
    async def test_submit_renders_and_enqueues(self, db_session, service, sms_template):
        outcome = await service.submit(db_session, "acme", _submit(priority="high"), now=NOW)

        entry = outcome.entry
        assert outcome.created and not outcome.deduplicated
        assert entry.status == "pending"
        assert entry.content == {"kind": "sms", "text": "Order A-1 shipped"}
        assert entry.template_id == sms_template.id
        assert entry.priority == 2
        assert entry.max_attempts == 3
        assert entry.language == "en"
        assert entry.next_eligible_at == NOW
        assert await _event_types(db_session, entry.id) == Counter({"queued": 1})

    @pytest.mark.asyncio
    async def test_idempotency_key_deduplicates(self, db_session, service, sms_template):
        first = await service.submit(db_session, "acme", _submit(idempotency_key="ord-1"), now=NOW)
        second = await service.submit(db_session, "acme", _submit(idempotency_key="ord-1"), now=NOW)

        assert second.deduplicated
        assert second.entry.id == first.entry.id

    @pytest.mark.asyncio
    async def test_event_id_derives_key(self, db_session, service, sms_template):
        outcome = await service.submit(db_session, "acme", _submit(event_id="evt-9"), now=NOW)
        assert outcome.entry.idempotency_key == "evt-9:sms"
        assert outcome.entry.source_event_id == "evt-9"

    @pytest.mark.asyncio
    async def test_scheduled_send(self, db_session, service, sms_template):
        later = NOW + timedelta(hours=3)
        outcome = await service.submit(db_session, "acme", _submit(scheduled_for=later), now=NOW)

        assert outcome.entry.next_eligible_at == later
        assert outcome.entry.scheduled_for == later

    @pytest.mark.asyncio
    async def test_rejects_past_schedule(self, db_session, service, sms_template):
        with pytest.raises(ValidationException) as exc_info:
            await service.submit(
                db_session, "acme", _submit(scheduled_for=NOW - timedelta(minutes=1)), now=NOW
            )
        assert exc_info.value.type == "scheduled-in-past"

    @pytest.mark.asyncio
    async def test_rejects_expiry_before_send(self, db_session, service, sms_template):
        with pytest.raises(ValidationException) as exc_info:
            await service.submit(
                db_session,
                "acme",
                _submit(
                    scheduled_for=NOW + timedelta(hours=2),
                    expires_at=NOW + timedelta(hours=1),
                ),
                now=NOW,
            )
        assert exc_info.value.type == "expires-before-send"

    @pytest.mark.asyncio
    async def test_rejects_disabled_channel(self, db_session, service, sms_template, tenant_config):
        await tenant_config(disabled_channels=["sms"])

        with pytest.raises(ValidationException) as exc_info:
            await service.submit(db_session, "acme", _submit(), now=NOW)

        assert exc_info.value.type == "channel-disabled"

    @pytest.mark.asyncio
    async def test_webhook_channel_requires_registered_webhook(self, db_session, service):
        with pytest.raises(ValidationException) as exc_info:
            await service.submit(
                db_session,
                "acme",
                _submit(channel="webhook", address="http://169.254.169.254/latest/meta-data"),
                now=NOW,
            )

        assert exc_info.value.type == "webhook-not-registered"
        assert (await service.queue.counts(db_session, "acme"))["pending"] == 0

    @pytest.mark.asyncio
    async def test_webhook_channel_accepts_registered_webhook(
        self, db_session, service, add_template
    ):
        await add_template(
            channel="webhook", subject=None, body=None, data={"order": "{{ order_id }}"}
        )
        webhook = Webhook(
            tenant_id="acme",
            name="orders",
            url="https://hooks.example.com/acme",
            secret="whsec-svc",
            event_types=["*"],
        )
        db_session.add(webhook)
        await db_session.flush()

        outcome = await service.submit(
            db_session, "acme", _submit(channel="webhook", address=str(webhook.id)), now=NOW
        )

        assert outcome.entry.status == "pending"
        assert outcome.entry.content == {"kind": "webhook", "payload": {"order": "A-1"}}

    @pytest.mark.asyncio
    async def test_webhook_channel_rejects_internal_target(self, db_session, service):
        webhook = Webhook(
            tenant_id="acme",
            name="internal",
            url="http://127.0.0.1:8080/hook",
            secret="whsec-svc",
            event_types=["*"],
        )
        db_session.add(webhook)
        await db_session.flush()

        with pytest.raises(ValidationException) as exc_info:
            await service.submit(
                db_session, "acme", _submit(channel="webhook", address=str(webhook.id)), now=NOW
            )

        assert "internal address" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_rejects_missing_template_without_storing(self, db_session, service):
        with pytest.raises(ValidationException) as exc_info:
            await service.submit(db_session, "acme", _submit(), now=NOW)

        assert exc_info.value.type == "template-missing"
        assert sum((await service.queue.counts(db_session, "acme")).values()) == 0

    @pytest.mark.asyncio
    async def test_language_falls_back_to_recipient_preference(
        self, db_session, service, add_template
    ):
        await add_template(channel="sms", subject=None, body="Shipped")
        await add_template(channel="sms", subject=None, body="Expédié", language="fr")
        await service.upsert_preference(
            db_session, "acme", "user", "u-1", PreferenceUpsert(language="fr")
        )

        outcome = await service.submit(db_session, "acme", _submit(), now=NOW)

        assert outcome.entry.language == "fr"
        assert outcome.entry.content["text"] == "Expédié"

    @pytest.mark.asyncio
    async def test_quiet_hours_defer(self, db_session, service, sms_template, tenant_config):
        await tenant_config(quiet_hours={"start": "10:00", "end": "11:00", "timezone": "UTC"})

        outcome = await service.submit(db_session, "acme", _submit(), now=NOW)

        assert outcome.entry.status == "pending"
        assert outcome.entry.next_eligible_at == datetime(2026, 3, 10, 11, tzinfo=UTC)
        assert await _event_types(db_session, outcome.entry.id) == Counter({"deferred": 1})

    @pytest.mark.asyncio
    async def test_quiet_hours_apply_at_scheduled_time(
        self, db_session, service, sms_template, tenant_config
    ):
        await tenant_config(quiet_hours={"start": "10:00", "end": "11:00", "timezone": "UTC"})
        submitted = datetime(2026, 3, 10, 8, tzinfo=UTC)
        scheduled = datetime(2026, 3, 10, 10, 30, tzinfo=UTC)

        outcome = await service.submit(
            db_session, "acme", _submit(scheduled_for=scheduled), now=submitted
        )

        assert outcome.entry.scheduled_for == scheduled
        assert outcome.entry.next_eligible_at == datetime(2026, 3, 10, 11, tzinfo=UTC)
        assert await _event_types(db_session, outcome.entry.id) == Counter({"deferred": 1})

    @pytest.mark.asyncio
    async def test_schedule_outside_quiet_hours_is_kept(
        self, db_session, service, sms_template, tenant_config
    ):
        await tenant_config(quiet_hours={"start": "10:00", "end": "11:00", "timezone": "UTC"})
        submitted = datetime(2026, 3, 10, 10, 15, tzinfo=UTC)
        scheduled = datetime(2026, 3, 10, 12, tzinfo=UTC)

        outcome = await service.submit(
            db_session, "acme", _submit(scheduled_for=scheduled), now=submitted
        )

        assert outcome.entry.next_eligible_at == scheduled
        assert await _event_types(db_session, outcome.entry.id) == Counter({"queued": 1})

    @pytest.mark.asyncio
    async def test_marketing_opt_out_does_not_block_mandatory(
        self, db_session, service, dispatch_queue, add_template, scripted_sender
    ):
        await add_template(
            type_code="weekly_digest", channel="sms", category="marketing", subject=None, body="Deals"
        )
        await add_template(type_code="payment_failed", channel="sms", subject=None, body="Card declined")
        await service.upsert_preference(
            db_session,
            "acme",
            "user",
            "u-1",
            PreferenceUpsert(scope_type="category", scope="marketing", opted_in=False),
        )

        digest = await service.submit(db_session, "acme", _submit(type_code="weekly_digest"), now=NOW)
        payment = await service.submit(
            db_session, "acme", _submit(type_code="payment_failed"), now=NOW
        )

        assert digest.entry.status == "failed"
        assert digest.entry.failure_reason == "suppressed"
        assert await _event_types(db_session, digest.entry.id) == Counter({"suppressed": 1})

        sender = scripted_sender()
        dispatcher = ChannelDispatcher(dispatch_queue, ChannelRegistry({"sms": sender}), send_timeout=5)
        (claimed,) = await dispatch_queue.claim_batch(
            db_session, "w-1", 10, visibility_timeout=60, now=NOW
        )
        assert claimed.id == payment.entry.id
        assert await dispatcher.dispatch(db_session, claimed, worker_id="w-1", now=NOW) == "delivered"
        assert len(sender.calls) == 1

    @pytest.mark.asyncio
    async def test_consent_required(self, db_session, service, add_template):
        await add_template(
            type_code="newsletter", channel="sms", subject=None, body="News", requires_consent=True
        )

        outcome = await service.submit(db_session, "acme", _submit(type_code="newsletter"), now=NOW)

        assert outcome.entry.status == "failed"
        assert outcome.entry.failure_reason == "consent_required"


# ============================================================================
# Producer events
# ============================================================================


@pytest.mark.unit
class TestIngestEvent:
    """Test suite for NotificationService.ingest_event."""

    def _event(self, **overrides) -> ProducerEvent:
        values = {
            "event_id": "evt-1",
            "tenant_id": "acme",
            "type_code": "order_shipped",
            "recipient": {"id": "u-1"},
            "addresses": {"email": "ada@example.com", "sms": "+15550100"},
            "variables": {"name": "Ada", "order_id": "A-1"},
        }
        values.update(overrides)
        return ProducerEvent(**values)

    @pytest.mark.asyncio
    async def test_fans_out_and_parks_unresolvable_channels(self, db_session, service, add_template):
        await add_template()

        outcomes = await service.ingest_event(db_session, self._event(), now=NOW)
        by_channel = {o.entry.channel: o.entry for o in outcomes}

        assert by_channel["email"].status == "pending"
        assert by_channel["email"].idempotency_key == "evt-1:email"
        assert by_channel["email"].content["subject"] == "Order A-1 shipped"
        assert by_channel["sms"].status == "dead"
        assert by_channel["sms"].failure_reason == "template_missing"

    @pytest.mark.asyncio
    async def test_replay_is_deduplicated(self, db_session, service, add_template):
        await add_template()

        await service.ingest_event(db_session, self._event(), now=NOW)
        replay = await service.ingest_event(db_session, self._event(), now=NOW)

        assert all(o.deduplicated for o in replay)
        assert (await service.queue.counts(db_session, "acme"))["pending"] == 1

    @pytest.mark.asyncio
    async def test_disabled_channel_is_recorded_failed(
        self, db_session, service, add_template, tenant_config
    ):
        await add_template()
        await tenant_config(disabled_channels=["email"])

        outcomes = await service.ingest_event(
            db_session, self._event(addresses={"email": "ada@example.com"}), now=NOW
        )

        assert outcomes[0].entry.status == "failed"
        assert outcomes[0].entry.failure_reason == "channel_disabled"


# ============================================================================
# Entries, preferences and tenant configuration
# ============================================================================


@pytest.mark.unit
class TestTenantOperations:
    """Test suite for the remaining tenant-facing operations."""

    @pytest.mark.asyncio
    async def test_get_entry_is_tenant_scoped(self, db_session, service, make_entry):
        entry = make_entry(tenant_id="globex")
        db_session.add(entry)
        await db_session.flush()

        with pytest.raises(NotFoundException):
            await service.get_entry(db_session, "acme", entry.id)

    @pytest.mark.asyncio
    async def test_engagement_requires_delivered(self, db_session, service, make_entry):
        delivered = make_entry(status="delivered")
        pending = make_entry()
        db_session.add_all([delivered, pending])
        await db_session.flush()

        event = await service.record_engagement(
            db_session, "acme", delivered.id, "clicked", url="https://shop.example/o/A-1"
        )

        assert event.event_type == "clicked"
        assert event.details == {"url": "https://shop.example/o/A-1"}
        with pytest.raises(InvalidTransition):
            await service.record_engagement(db_session, "acme", pending.id, "opened")

    @pytest.mark.asyncio
    async def test_entry_history(self, db_session, service, sms_template):
        outcome = await service.submit(db_session, "acme", _submit(), now=NOW)
        await service.cancel(db_session, "acme", outcome.entry.id)

        history = await service.entry_history(db_session, "acme", outcome.entry.id)

        assert Counter(e.event_type for e in history) == Counter({"queued": 1, "cancelled": 1})

    @pytest.mark.asyncio
    async def test_preference_upsert_and_delete(self, db_session, service):
        data = PreferenceUpsert(
            channel="sms",
            consent_granted=True,
            quiet_hours_start=time(22),
            quiet_hours_end=time(7),
            timezone="Europe/Berlin",
        )
        created = await service.upsert_preference(db_session, "acme", "user", "u-1", data, now=NOW)
        updated = await service.upsert_preference(
            db_session,
            "acme",
            "user",
            "u-1",
            data.model_copy(update={"opted_in": False, "consent_granted": None}),
            now=NOW,
        )

        assert updated.id == created.id
        assert updated.opted_in is False
        assert updated.consent_granted_at == NOW

        with pytest.raises(NotFoundException):
            await service.delete_preference(db_session, "globex", created.id)
        await service.delete_preference(db_session, "acme", created.id)
        assert await service.list_preferences(db_session, "acme", "user", "u-1") == []

    def test_preference_schema_requires_scope(self):
        with pytest.raises(ValueError):
            PreferenceUpsert(scope_type="category")
        with pytest.raises(ValueError):
            PreferenceUpsert(quiet_hours_start=time(22))

    @pytest.mark.asyncio
    async def test_tenant_config_update_changes_policy(self, db_session, service):
        await service.update_tenant_config(
            db_session,
            "acme",
            TenantConfigUpdate(
                channel_rate_limits={"sms": {"hour": 5}},
                retry={"max_attempts": 4},
                default_language="de",
            ),
        )
        await service.update_tenant_config(
            db_session, "acme", TenantConfigUpdate(disabled_channels=["push"])
        )

        policy = await service.get_policy(db_session, "acme")

        assert policy.quotas_for("sms") == {WindowType.HOUR: 5}
        assert policy.attempts_for("email") == 4
        assert policy.default_language == "de"
        assert not policy.channel_enabled("push")


# ============================================================================
# Compliance log
# ============================================================================


async def _actions(service, session, **filters) -> Counter:
    result = await service.list_compliance_events(session, "acme", **filters)
    return Counter(event.action for event in result.items)


@pytest.mark.unit
class TestComplianceLog:
    """Test suite for the opt-in, opt-out and consent audit trail."""

    @pytest.mark.asyncio
    async def test_new_preference_logs_opt_in_and_consent(self, db_session, service):
        data = PreferenceUpsert(channel="sms", consent_granted=True)

        pref = await service.upsert_preference(
            db_session,
            "acme",
            "user",
            "u-1",
            data,
            ip_address="203.0.113.7",
            user_agent="mobile-app/4.2",
            now=NOW,
        )

        result = await service.list_compliance_events(db_session, "acme")
        assert Counter(e.action for e in result.items) == Counter(
            {"opted_in": 1, "consent_granted": 1}
        )
        event = next(e for e in result.items if e.action == "opted_in")
        assert event.preference_id == pref.id
        assert event.channel == "sms"
        assert event.source == "api"
        assert event.ip_address == "203.0.113.7"
        assert event.user_agent == "mobile-app/4.2"
        assert event.details == {"previous_opted_in": None, "opted_in": True}
        assert event.recorded_at == NOW

    @pytest.mark.asyncio
    async def test_opt_out_and_revoke_are_logged(self, db_session, service):
        data = PreferenceUpsert(channel="email", consent_granted=True)
        await service.upsert_preference(db_session, "acme", "user", "u-1", data, now=NOW)

        await service.upsert_preference(
            db_session,
            "acme",
            "user",
            "u-1",
            data.model_copy(update={"opted_in": False, "consent_granted": False}),
            now=NOW + timedelta(hours=1),
        )

        assert await _actions(service, db_session) == Counter(
            {"opted_in": 1, "consent_granted": 1, "opted_out": 1, "consent_revoked": 1}
        )
        opted_out = await service.list_compliance_events(db_session, "acme", action="opted_out")
        assert opted_out.total == 1
        assert opted_out.items[0].details == {"previous_opted_in": True, "opted_in": False}

    @pytest.mark.asyncio
    async def test_unchanged_preference_logs_nothing(self, db_session, service):
        data = PreferenceUpsert(channel="push", quiet_hours_start=time(22), quiet_hours_end=time(7))
        await service.upsert_preference(db_session, "acme", "user", "u-1", data, now=NOW)

        await service.upsert_preference(
            db_session,
            "acme",
            "user",
            "u-1",
            data.model_copy(update={"language": "de", "consent_granted": False}),
            now=NOW,
        )

        assert await _actions(service, db_session) == Counter({"opted_in": 1})

    @pytest.mark.asyncio
    async def test_delete_is_logged(self, db_session, service):
        pref = await service.upsert_preference(
            db_session, "acme", "user", "u-1", PreferenceUpsert(opted_in=False), now=NOW
        )

        await service.delete_preference(
            db_session, "acme", pref.id, source="admin", now=NOW + timedelta(minutes=5)
        )

        deleted = await service.list_compliance_events(
            db_session, "acme", action="preference_deleted"
        )
        assert deleted.total == 1
        assert deleted.items[0].source == "admin"
        assert deleted.items[0].preference_id == pref.id
        assert deleted.items[0].details == {"opted_in": False, "consent_granted_at": None}
        assert await _actions(service, db_session) == Counter(
            {"opted_out": 1, "preference_deleted": 1}
        )

    @pytest.mark.asyncio
    async def test_events_are_tenant_and_recipient_scoped(self, db_session, service):
        await service.upsert_preference(db_session, "acme", "user", "u-1", PreferenceUpsert(), now=NOW)
        await service.upsert_preference(db_session, "acme", "user", "u-2", PreferenceUpsert(), now=NOW)
        await service.upsert_preference(
            db_session, "globex", "user", "u-1", PreferenceUpsert(), now=NOW
        )

        mine = await service.list_compliance_events(
            db_session, "acme", recipient_type="user", recipient_id="u-1"
        )
        later = await service.list_compliance_events(
            db_session, "acme", since=NOW + timedelta(seconds=1)
        )

        assert mine.total == 1
        assert mine.items[0].recipient_id == "u-1"
        assert later.total == 0
