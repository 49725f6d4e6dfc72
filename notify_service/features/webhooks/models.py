"""SQLAlchemy models for the webhooks feature."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from notify_service.core.database import (
    JSONType,
    StringArray,
    UTCDateTime,
    UUIDv7TimestampedBase,
)
from notify_service.features.notifications.enums import EntryStatus


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Webhook(UUIDv7TimestampedBase):
    """Tenant-registered HTTP endpoint subscribed to domain events.

    Receives a signed POST for every published event whose type is in
    ``event_types`` (``"*"`` subscribes to everything). Webhooks belong to
    exactly one tenant and never see another tenant's events.

    ``consecutive_failures`` counts deliveries that exhausted their retries
    in a row; at the configured threshold the webhook is deactivated and
    ``disabled_at``/``disabled_reason`` explain why.
    """

    __tablename__ = "webhooks"

    tenant_id: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True, comment="Owning tenant"
    )
    name: Mapped[str] = mapped_column(
        String(200), nullable=False, comment="Human-readable webhook name"
    )
    description: Mapped[str | None] = mapped_column(
        Text(), nullable=True, comment="Webhook description"
    )
    url: Mapped[str] = mapped_column(
        String(2048), nullable=False, comment="Target URL for webhook delivery"
    )
    secret: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="HMAC secret for signing payloads"
    )
    event_types: Mapped[list[str]] = mapped_column(
        StringArray(),
        nullable=False,
        default=list,
        comment="Event types this webhook subscribes to",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean(), default=True, nullable=False, comment="Whether webhook is active"
    )
    max_retries: Mapped[int | None] = mapped_column(
        Integer(), nullable=True, comment="Delivery attempts (NULL = tenant/system default)"
    )
    timeout_seconds: Mapped[int | None] = mapped_column(
        Integer(), nullable=True, comment="HTTP timeout (NULL = tenant/system default)"
    )
    custom_headers: Mapped[dict[str, str] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Additional HTTP headers to include in requests",
    )

    consecutive_failures: Mapped[int] = mapped_column(
        Integer(), default=0, nullable=False, comment="Exhausted deliveries in a row"
    )
    disabled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    disabled_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_delivery_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def subscribes_to(self, event_type: str) -> bool:
        return "*" in self.event_types or event_type in self.event_types


class WebhookDelivery(UUIDv7TimestampedBase):
    """One event sent (or to be sent) to one webhook.

    ``body`` holds the exact bytes signed and posted, fixed at fan-out so
    every retry resends the same payload. Shares the queue lifecycle of
    notification entries: pending, in_flight, then delivered or failed.
    """

    __tablename__ = "webhook_deliveries"

    webhook_id: Mapped[UUID] = mapped_column(
        ForeignKey("webhooks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Reference to webhook configuration",
    )
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(
        String(100), nullable=False, comment="Type of event being delivered"
    )
    event_id: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="Producer identifier for the event"
    )
    body: Mapped[str] = mapped_column(
        Text(), nullable=False, comment="Canonical JSON body (signed as-is)"
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EntryStatus.PENDING.value
    )
    attempt_count: Mapped[int] = mapped_column(Integer(), default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer(), default=3, nullable=False)
    next_attempt_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow
    )
    claimed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    claimed_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    response_status_code: Mapped[int | None] = mapped_column(
        Integer(), nullable=True, comment="HTTP response status code"
    )
    response_body: Mapped[str | None] = mapped_column(
        Text(), nullable=True, comment="HTTP response body (truncated)"
    )
    response_time_ms: Mapped[int | None] = mapped_column(Integer(), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text(), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(40), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("webhook_id", "event_id", name="uq_webhook_delivery_event"),
        Index("ix_webhook_delivery_claim", "status", "next_attempt_at"),
        Index("ix_webhook_delivery_tenant_status", "tenant_id", "status"),
    )

    @property
    def payload(self) -> dict[str, Any]:
        return json.loads(self.body)


__all__ = ["Webhook", "WebhookDelivery"]
