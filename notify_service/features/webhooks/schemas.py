"""Request and response bodies for the webhook API."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, HttpUrl

from .client import RESERVED_HEADERS


def _normalize_event_types(value: list[str]) -> list[str]:
    stripped = [item.strip() for item in value]
    if not all(stripped):
        raise ValueError("event types must be non-empty strings")
    return list(dict.fromkeys(stripped))


def _reject_reserved_headers(value: dict[str, str]) -> dict[str, str]:
    clashes = sorted(name for name in value if name.lower() in RESERVED_HEADERS)
    if clashes:
        raise ValueError(f"custom headers may not override system headers: {', '.join(clashes)}")
    return value


EventTypes = Annotated[
    list[str],
    Field(min_length=1, description="Subscribed event types; '*' matches every event"),
    AfterValidator(_normalize_event_types),
]
CustomHeaders = Annotated[
    dict[str, str],
    Field(description="Extra request headers; platform headers cannot be overridden"),
    AfterValidator(_reject_reserved_headers),
]
MaxRetries = Annotated[int, Field(ge=1, le=10, description="Attempts per delivery; defaults to tenant config")]
TimeoutSeconds = Annotated[int, Field(ge=1, le=300, description="Request timeout; defaults to tenant config")]
WebhookName = Annotated[str, Field(min_length=1, max_length=200)]


class WebhookCreate(BaseModel):
    """Register an endpoint. A secret is generated when none is supplied."""

    name: WebhookName
    description: str | None = None
    url: HttpUrl
    event_types: EventTypes
    is_active: bool = True
    max_retries: MaxRetries | None = None
    timeout_seconds: TimeoutSeconds | None = None
    custom_headers: CustomHeaders | None = None
    secret: str | None = Field(None, min_length=16, max_length=255)


class WebhookUpdate(BaseModel):
    """Partial update; re-activating also resets the consecutive failure count."""

    name: WebhookName | None = None
    description: str | None = None
    url: HttpUrl | None = None
    event_types: EventTypes | None = None
    is_active: bool | None = None
    max_retries: MaxRetries | None = None
    timeout_seconds: TimeoutSeconds | None = None
    custom_headers: CustomHeaders | None = None


class WebhookRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    name: str
    description: str | None
    url: str
    secret: str
    event_types: list[str]
    is_active: bool
    max_retries: int | None
    timeout_seconds: int | None
    custom_headers: dict[str, str] | None
    consecutive_failures: int
    disabled_at: datetime | None
    disabled_reason: str | None
    last_delivery_at: datetime | None
    created_at: datetime
    updated_at: datetime


class WebhookList(BaseModel):
    items: list[WebhookRead]
    total: int
    limit: int
    offset: int


class WebhookDeliveryRead(BaseModel):
    """One event bound for one webhook, with the outcome of its latest attempt."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    webhook_id: UUID
    event_type: str
    event_id: str
    payload: dict[str, Any]
    status: str
    attempt_count: int
    max_attempts: int
    next_attempt_at: datetime
    response_status_code: int | None
    response_body: str | None
    response_time_ms: int | None
    last_error: str | None
    failure_reason: str | None
    delivered_at: datetime | None
    created_at: datetime
    updated_at: datetime


class WebhookDeliveryList(BaseModel):
    items: list[WebhookDeliveryRead]
    total: int
    limit: int
    offset: int


class EventPublish(BaseModel):
    """A producer event fanned out to every subscribed, active webhook of the tenant.

    Re-publishing the same ``event_id`` creates no new deliveries.
    """

    event_type: str = Field(..., min_length=1, max_length=100)
    event_id: str | None = Field(None, max_length=255, description="Generated when omitted")
    data: dict[str, Any] = Field(default_factory=dict)


class PublishResponse(BaseModel):
    event_id: str
    delivery_ids: list[UUID]
    duplicates: int = 0


class WebhookTestRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict, description="Sent as the data of a webhook.test event")


class WebhookTestResponse(BaseModel):
    """Outcome of a synchronous webhook.test POST; nothing is recorded."""

    success: bool
    status_code: int | None = None
    response_time_ms: int | None = None
    error_message: str | None = None


class SecretRegenerateResponse(BaseModel):
    """The new secret. Deliveries signed from now on use it."""

    webhook_id: UUID
    secret: str


__all__ = [
    "EventPublish",
    "PublishResponse",
    "SecretRegenerateResponse",
    "WebhookCreate",
    "WebhookDeliveryList",
    "WebhookDeliveryRead",
    "WebhookList",
    "WebhookRead",
    "WebhookTestRequest",
    "WebhookTestResponse",
    "WebhookUpdate",
]
