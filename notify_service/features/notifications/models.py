"""SQLAlchemy models for the notifications feature."""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from notify_service.core.database import (
    Base,
    JSONType,
    StringArray,
    TenantMixin,
    UTCDateTime,
    UUIDv7PKMixin,
    UUIDv7TimestampedBase,
)

from .enums import EntryStatus, Priority, TemplateCategory


def _utcnow() -> datetime:
    return datetime.now(UTC)


class NotificationTemplate(UUIDv7TimestampedBase, TenantMixin):
    """Per-channel template for a notification type.

    Keyed by (tenant, type_code, channel, language); ``tenant_id`` NULL is the
    global system default used when a tenant has no template of its own.
    Sources use ``{{ name }}`` placeholders. Which source fields matter
    depends on the channel's content shape:

    - email: subject, body (text), html_body
    - sms / whatsapp: body
    - push: title, body, data
    - in_app: title, body, action_url
    - webhook: data
    """

    __tablename__ = "notification_templates"

    type_code: Mapped[str] = mapped_column(
        String(100), nullable=False, comment="Notification type (e.g. 'order_shipped')"
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False, comment="Delivery channel")
    language: Mapped[str] = mapped_column(
        String(16), nullable=False, default="en", comment="BCP 47 language tag"
    )
    category: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=TemplateCategory.TRANSACTIONAL.value,
        comment="security, critical, transactional, marketing, promotional, system, compliance",
    )
    requires_consent: Mapped[bool] = mapped_column(
        Boolean(),
        nullable=False,
        default=False,
        comment="Only send when the recipient has granted consent",
    )
    is_active: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    version: Mapped[int] = mapped_column(
        Integer(), nullable=False, default=1, comment="Bumped on every content change"
    )

    subject: Mapped[str | None] = mapped_column(Text(), nullable=True)
    body: Mapped[str | None] = mapped_column(Text(), nullable=True)
    html_body: Mapped[str | None] = mapped_column(Text(), nullable=True)
    title: Mapped[str | None] = mapped_column(Text(), nullable=True)
    data: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True, comment="Structured source for push data / webhook payloads"
    )
    action_url: Mapped[str | None] = mapped_column(Text(), nullable=True)
    description: Mapped[str | None] = mapped_column(Text(), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "type_code", "channel", "language", name="uq_notification_template_key"
        ),
        Index("ix_notification_template_lookup", "type_code", "channel", "language"),
    )


class RecipientPreference(UUIDv7TimestampedBase):
    """A recipient's eligibility rule for one scope and channel.

    ``scope_type``/``scope`` select what the row covers: a type code, a
    template category, or everything (``any``/``*``). ``channel`` is a
    channel name or ``*``. The most specific matching row decides.
    """

    __tablename__ = "recipient_preferences"

    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    recipient_type: Mapped[str] = mapped_column(String(50), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(255), nullable=False)
    scope_type: Mapped[str] = mapped_column(String(20), nullable=False, default="any")
    scope: Mapped[str] = mapped_column(String(100), nullable=False, default="*")
    channel: Mapped[str] = mapped_column(String(20), nullable=False, default="*")

    opted_in: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    consent_granted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    quiet_hours_start: Mapped[time | None] = mapped_column(Time(), nullable=True)
    quiet_hours_end: Mapped[time | None] = mapped_column(Time(), nullable=True)
    timezone: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="IANA timezone for quiet hours"
    )
    language: Mapped[str | None] = mapped_column(
        String(16), nullable=True, comment="Preferred language (wildcard row only)"
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "recipient_type",
            "recipient_id",
            "scope_type",
            "scope",
            "channel",
            name="uq_recipient_preference_scope",
        ),
        Index("ix_recipient_preference_recipient", "tenant_id", "recipient_type", "recipient_id"),
    )


class TenantNotificationConfig(UUIDv7TimestampedBase):
    """Single per-tenant configuration record.

    Every field is optional; missing values fall back to settings defaults
    when the record is merged into a TenantPolicy.
    """

    __tablename__ = "tenant_notification_configs"

    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    channel_rate_limits: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True, comment='{"sms": {"hour": 100, "day": 500}}'
    )
    retry: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True, comment='{"max_attempts": 5, "base_delay": 30, "max_delay": 3600}'
    )
    quiet_hours: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True, comment='{"start": "22:00", "end": "07:00", "timezone": "UTC"}'
    )
    webhook_timeout_seconds: Mapped[int | None] = mapped_column(Integer(), nullable=True)
    webhook_retry_attempts: Mapped[int | None] = mapped_column(Integer(), nullable=True)
    default_language: Mapped[str | None] = mapped_column(String(16), nullable=True)
    disabled_channels: Mapped[list[str]] = mapped_column(
        StringArray(), nullable=False, default=list
    )


class QueueEntry(UUIDv7TimestampedBase):
    """A rendered notification waiting for, or finished with, dispatch.

    Content is rendered once at submission and never changes afterwards.
    Claim order is (priority desc, next_eligible_at asc).
    """

    __tablename__ = "queue_entries"

    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="Producer event id + channel, unique per tenant"
    )
    source_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    recipient_type: Mapped[str] = mapped_column(String(50), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str] = mapped_column(
        String(512), nullable=False, comment="Channel address (email, phone, device token...)"
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    type_code: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str | None] = mapped_column(String(30), nullable=True)
    language: Mapped[str | None] = mapped_column(String(16), nullable=True)
    template_id: Mapped[UUID | None] = mapped_column(Uuid(), nullable=True)
    content: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True, comment="Rendered content (tagged by 'kind')"
    )

    priority: Mapped[int] = mapped_column(Integer(), nullable=False, default=int(Priority.NORMAL))
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EntryStatus.PENDING.value
    )
    attempt_count: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer(), nullable=False, default=3)
    deferral_count: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)

    next_eligible_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow
    )
    scheduled_for: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    claimed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    claimed_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=False)

    last_error: Mapped[str | None] = mapped_column(Text(), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(40), nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_queue_entry_idempotency"),
        Index("ix_queue_entry_claim", "status", "next_eligible_at", "priority"),
        Index("ix_queue_entry_tenant_status", "tenant_id", "status"),
        Index("ix_queue_entry_claimed_until", "status", "claimed_until"),
    )

    @property
    def is_terminal(self) -> bool:
        return EntryStatus(self.status).is_terminal


class DeliveryEvent(Base, UUIDv7PKMixin):
    """Append-only record of one state transition.

    Covers both notification entries and webhook deliveries
    (``entry_kind``). Rows are never updated; analytics folds them.
    """

    __tablename__ = "delivery_events"

    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    entry_kind: Mapped[str] = mapped_column(String(20), nullable=False, default="notification")
    entry_id: Mapped[UUID] = mapped_column(Uuid(), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    type_code: Mapped[str] = mapped_column(String(100), nullable=False)

    event_type: Mapped[str] = mapped_column(String(30), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    attempt: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    reason: Mapped[str | None] = mapped_column(String(40), nullable=True)
    detail: Mapped[str | None] = mapped_column(Text(), nullable=True)

    provider: Mapped[str | None] = mapped_column(String(100), nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    http_status: Mapped[int | None] = mapped_column(Integer(), nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_delivery_event_tenant_time", "tenant_id", "occurred_at"),
        Index("ix_delivery_event_time", "occurred_at"),
    )


class ComplianceEvent(Base, UUIDv7PKMixin):
    """Append-only audit record of an opt-in, opt-out or consent change.

    Written in the same transaction as the preference change it describes.
    ``preference_id`` is kept after the preference row is deleted.
    """

    __tablename__ = "notification_compliance_log"

    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient_type: Mapped[str] = mapped_column(String(50), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(255), nullable=False)
    preference_id: Mapped[UUID | None] = mapped_column(Uuid(), nullable=True)

    action: Mapped[str] = mapped_column(String(30), nullable=False)
    scope_type: Mapped[str] = mapped_column(String(20), nullable=False)
    scope: Mapped[str] = mapped_column(String(100), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)

    source: Mapped[str] = mapped_column(
        String(50), nullable=False, default="api", comment="api, admin, import, ..."
    )
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text(), nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True, comment="Previous and new values"
    )

    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=_utcnow)

    __table_args__ = (
        Index(
            "ix_compliance_event_recipient",
            "tenant_id",
            "recipient_type",
            "recipient_id",
            "recorded_at",
        ),
        Index("ix_compliance_event_tenant_action", "tenant_id", "action", "recorded_at"),
    )


class AnalyticsBucket(UUIDv7TimestampedBase):
    """Daily aggregate for (tenant, channel, type code). Derived from DeliveryEvent."""

    __tablename__ = "analytics_buckets"

    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    type_code: Mapped[str] = mapped_column(String(100), nullable=False)
    day: Mapped[date] = mapped_column(Date(), nullable=False)

    sent: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    delivered: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    dead: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    suppressed: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    deferred: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    opened: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    clicked: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("tenant_id", "channel", "type_code", "day", name="uq_analytics_bucket_key"),
        Index("ix_analytics_bucket_tenant_day", "tenant_id", "day"),
    )

    @property
    def delivery_rate(self) -> float:
        return rate(self.delivered, self.sent)

    @property
    def open_rate(self) -> float:
        return rate(self.opened, self.delivered)

    @property
    def click_rate(self) -> float:
        return rate(self.clicked, self.delivered)

    @property
    def failure_rate(self) -> float:
        return rate(self.failed + self.dead, self.sent)


def rate(part: int | None, whole: int | None) -> float:
    """Zero when there is nothing to divide by."""
    if not whole:
        return 0.0
    return round((part or 0) / whole, 4)


class AnalyticsFoldMarker(Base):
    """Marks a DeliveryEvent as already folded into its bucket."""

    __tablename__ = "analytics_fold_markers"

    event_id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    day: Mapped[date] = mapped_column(Date(), nullable=False)
    folded_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=_utcnow)

    __table_args__ = (Index("ix_analytics_fold_marker_tenant_day", "tenant_id", "day"),)


__all__ = [
    "AnalyticsBucket",
    "AnalyticsFoldMarker",
    "ComplianceEvent",
    "DeliveryEvent",
    "NotificationTemplate",
    "QueueEntry",
    "RecipientPreference",
    "TenantNotificationConfig",
    "rate",
]
