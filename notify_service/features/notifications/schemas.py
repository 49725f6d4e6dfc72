"""Pydantic schemas for the notifications feature."""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .content import RenderedContent
from .enums import ANY, Channel, Priority, ScopeType, TemplateCategory, WindowType

PriorityName = Literal["low", "normal", "high", "urgent"]


def _as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ──────────────────────────────────────────────────────────────
# Templates
# ──────────────────────────────────────────────────────────────

_REQUIRED_SOURCES: dict[Channel, tuple[str, ...]] = {
    Channel.EMAIL: ("subject", "body"),
    Channel.SMS: ("body",),
    Channel.WHATSAPP: ("body",),
    Channel.PUSH: ("title", "body"),
    Channel.IN_APP: ("title", "body"),
    Channel.WEBHOOK: ("data",),
}


class TemplateUpsert(BaseModel):
    """Create or replace the template for (type_code, channel, language)."""

    type_code: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9_.:-]+$")
    channel: Channel
    language: str = Field(default="en", min_length=2, max_length=16)
    category: TemplateCategory = TemplateCategory.TRANSACTIONAL
    requires_consent: bool = False
    is_active: bool = True

    subject: str | None = Field(None, max_length=998)
    body: str | None = None
    html_body: str | None = None
    title: str | None = Field(None, max_length=500)
    data: dict[str, Any] | None = None
    action_url: str | None = Field(None, max_length=2048)
    description: str | None = None

    @model_validator(mode="after")
    def _channel_sources_present(self) -> TemplateUpsert:
        missing = [f for f in _REQUIRED_SOURCES[self.channel] if not getattr(self, f)]
        if missing:
            msg = f"{self.channel.value} templates require: {', '.join(missing)}"
            raise ValueError(msg)
        return self


class TemplateRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str | None
    type_code: str
    channel: str
    language: str
    category: str
    requires_consent: bool
    is_active: bool
    version: int
    subject: str | None
    body: str | None
    html_body: str | None
    title: str | None
    data: dict[str, Any] | None
    action_url: str | None
    description: str | None
    created_at: datetime
    updated_at: datetime


class TemplateList(BaseModel):
    items: list[TemplateRead]
    total: int
    limit: int
    offset: int


class TemplatePreviewRequest(BaseModel):
    type_code: str
    channel: Channel
    language: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)


class TemplatePreviewResponse(BaseModel):
    template_id: UUID
    tenant_id: str | None = Field(None, description="None when the global template was used")
    language: str
    content: RenderedContent
    missing_placeholders: list[str] = Field(default_factory=list)


# ──────────────────────────────────────────────────────────────
# Submission
# ──────────────────────────────────────────────────────────────


class RecipientRef(BaseModel):
    """Who a notification is for; the address says where."""

    type: str = Field(default="user", min_length=1, max_length=50)
    id: str = Field(..., min_length=1, max_length=255)


class NotificationSubmit(BaseModel):
    """Ingestion API request: one recipient, one channel."""

    recipient: RecipientRef
    address: str = Field(
        ...,
        min_length=1,
        max_length=512,
        description="Email, phone, device token; registered webhook id for the webhook channel",
    )
    type_code: str = Field(..., min_length=1, max_length=100)
    channel: Channel
    variables: dict[str, Any] = Field(default_factory=dict)
    priority: PriorityName = "normal"
    scheduled_for: datetime | None = None
    expires_at: datetime | None = None
    language: str | None = Field(None, min_length=2, max_length=16)
    idempotency_key: str | None = Field(
        None,
        max_length=255,
        description="Caller-supplied dedup key; defaults to event_id + channel",
    )
    event_id: str | None = Field(None, max_length=200, description="Producing event id")

    @field_validator("scheduled_for", "expires_at")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)

    @property
    def priority_value(self) -> Priority:
        return Priority.parse(self.priority)


class ProducerEvent(BaseModel):
    """Domain event from a producer (order, billing, RBAC, compliance...).

    Fans out to one notification per channel that has an address.
    """

    event_id: str = Field(..., min_length=1, max_length=200)
    tenant_id: str = Field(..., min_length=1, max_length=255)
    type_code: str = Field(..., min_length=1, max_length=100)
    recipient: RecipientRef
    addresses: dict[Channel, str] = Field(..., min_length=1)
    variables: dict[str, Any] = Field(default_factory=dict)
    priority: PriorityName = "normal"
    scheduled_for: datetime | None = None
    expires_at: datetime | None = None
    language: str | None = None

    @field_validator("scheduled_for", "expires_at")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class SubmitResponse(BaseModel):
    entry_id: UUID
    status: str
    deduplicated: bool = False
    next_eligible_at: datetime | None = None
    failure_reason: str | None = None


class IngestResponse(BaseModel):
    event_id: str
    entries: list[SubmitResponse]


# ──────────────────────────────────────────────────────────────
# Queue / events
# ──────────────────────────────────────────────────────────────


class QueueEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    idempotency_key: str
    recipient_type: str
    recipient_id: str
    address: str
    channel: str
    type_code: str
    category: str | None
    language: str | None
    priority: int
    status: str
    attempt_count: int
    max_attempts: int
    deferral_count: int
    next_eligible_at: datetime
    scheduled_for: datetime | None
    expires_at: datetime | None
    cancel_requested: bool
    last_error: str | None
    failure_reason: str | None
    provider_message_id: str | None
    delivered_at: datetime | None
    content: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime


class QueueEntryList(BaseModel):
    items: list[QueueEntryRead]
    total: int
    limit: int
    offset: int


class DeliveryEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    entry_kind: str
    entry_id: UUID
    channel: str
    type_code: str
    event_type: str
    from_status: str | None
    to_status: str
    attempt: int
    reason: str | None
    detail: str | None
    provider: str | None
    provider_message_id: str | None
    http_status: int | None
    occurred_at: datetime


class DeliveryEventList(BaseModel):
    items: list[DeliveryEventRead]
    total: int
    limit: int
    offset: int


class EngagementCreate(BaseModel):
    """Open/click reported by a tracking pixel or link redirect."""

    kind: Literal["opened", "clicked"]
    url: str | None = Field(None, max_length=2048)


# ──────────────────────────────────────────────────────────────
# Preferences / tenant configuration
# ──────────────────────────────────────────────────────────────


class PreferenceUpsert(BaseModel):
    scope_type: ScopeType = ScopeType.ANY
    scope: str = Field(default=ANY, min_length=1, max_length=100)
    channel: Channel | Literal["*"] = ANY
    opted_in: bool = True
    consent_granted: bool | None = Field(
        None, description="True records consent now, False revokes it, None leaves it"
    )
    quiet_hours_start: time | None = None
    quiet_hours_end: time | None = None
    timezone: str | None = Field(None, max_length=64)
    language: str | None = Field(None, min_length=2, max_length=16)

    @model_validator(mode="after")
    def _consistent(self) -> PreferenceUpsert:
        if self.scope_type is ScopeType.ANY:
            self.scope = ANY
        elif self.scope == ANY:
            msg = f"scope is required for scope_type={self.scope_type.value}"
            raise ValueError(msg)
        if (self.quiet_hours_start is None) != (self.quiet_hours_end is None):
            msg = "quiet_hours_start and quiet_hours_end must be set together"
            raise ValueError(msg)
        if self.timezone is not None:
            from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

            try:
                ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                msg = f"Unknown timezone: {self.timezone}"
                raise ValueError(msg) from exc
        return self


class PreferenceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    recipient_type: str
    recipient_id: str
    scope_type: str
    scope: str
    channel: str
    opted_in: bool
    consent_granted_at: datetime | None
    quiet_hours_start: time | None
    quiet_hours_end: time | None
    timezone: str | None
    language: str | None
    updated_at: datetime


class ComplianceEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    recipient_type: str
    recipient_id: str
    preference_id: UUID | None
    action: str
    scope_type: str
    scope: str
    channel: str
    source: str
    ip_address: str | None
    user_agent: str | None
    details: dict[str, Any] | None
    recorded_at: datetime


class ComplianceEventList(BaseModel):
    items: list[ComplianceEventRead]
    total: int
    limit: int
    offset: int


class QuietHoursConfig(BaseModel):
    start: str = Field(..., pattern=r"^\d{1,2}:\d{2}$")
    end: str = Field(..., pattern=r"^\d{1,2}:\d{2}$")
    timezone: str = "UTC"


class RetryConfig(BaseModel):
    max_attempts: int | dict[Channel, int] | None = None
    base_delay: float | None = Field(None, ge=0)
    max_delay: float | None = Field(None, ge=1)


class TenantConfigUpdate(BaseModel):
    """Recognised per-tenant options. Omitted fields keep their current value."""

    channel_rate_limits: dict[Channel, dict[WindowType, int]] | None = None
    retry: RetryConfig | None = None
    quiet_hours: QuietHoursConfig | None = None
    webhook_timeout_seconds: int | None = Field(None, ge=1, le=300)
    webhook_retry_attempts: int | None = Field(None, ge=1, le=10)
    default_language: str | None = Field(None, min_length=2, max_length=16)
    disabled_channels: list[Channel] | None = None


class TenantConfigRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    channel_rate_limits: dict[str, dict[str, int]] | None
    retry: dict[str, Any] | None
    quiet_hours: dict[str, Any] | None
    webhook_timeout_seconds: int | None
    webhook_retry_attempts: int | None
    default_language: str | None
    disabled_channels: list[str]


# ──────────────────────────────────────────────────────────────
# Analytics
# ──────────────────────────────────────────────────────────────


class BucketRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day: date
    channel: str
    type_code: str
    sent: int
    delivered: int
    failed: int
    dead: int
    suppressed: int
    deferred: int
    opened: int
    clicked: int
    delivery_rate: float
    open_rate: float
    click_rate: float
    failure_rate: float


class AnalyticsSummary(BaseModel):
    tenant_id: str
    day_from: date
    day_to: date
    totals: dict[str, int]
    delivery_rate: float
    open_rate: float
    click_rate: float
    failure_rate: float
    by_channel: dict[str, dict[str, int]]
    buckets: list[BucketRead]


class FoldResponse(BaseModel):
    folded: int
    skipped: int
