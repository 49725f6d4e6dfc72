"""Outbound webhook settings."""

from __future__ import annotations

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WebhookSettings(BaseSettings):
    """HTTP, retry, concurrency and auto-disable defaults for webhook delivery.

    Environment variables use WEBHOOK_ prefix.
    Example: WEBHOOK_PER_TENANT_CONCURRENCY=8, WEBHOOK_AUTO_DISABLE_AFTER=0

    A webhook's own ``timeout_seconds`` and ``max_retries`` win over the
    values here.
    """

    # Request
    timeout_seconds: int = Field(default=30, ge=1, le=300, description="Whole-request timeout")
    connect_timeout_seconds: int = Field(default=10, ge=1, le=60, description="Share of the timeout for connecting")
    user_agent: str = Field(default="notify-service-webhooks/1.0")
    signature_header: str = Field(
        default="X-Webhook-Signature",
        min_length=1,
        description="Carries sha256=<hex HMAC of the raw body>",
    )
    max_payload_size_bytes: int = Field(
        default=1024 * 1024,
        ge=1024,
        le=10 * 1024 * 1024,
        description="Canonical body size above which publish is rejected",
    )
    response_snippet_chars: int = Field(
        default=2000,
        ge=0,
        le=65_536,
        description="Response body characters stored on the delivery; 0 stores none",
    )

    # Retry schedule: delay_n = min(retry_delay_seconds * 2^(n-1), retry_max_delay_seconds)
    retry_attempts: int = Field(default=3, ge=1, le=10, description="Attempts before a delivery fails")
    retry_delay_seconds: float = Field(default=60.0, ge=0.0)
    retry_max_delay_seconds: float = Field(default=3600.0, ge=1.0)

    # Worker
    per_tenant_concurrency: int = Field(default=4, ge=1, le=100, description="In-flight POSTs per tenant")
    batch_size: int = Field(default=50, ge=1, le=1000, description="Deliveries claimed per poll")
    poll_interval_seconds: float = Field(default=2.0, ge=0.01, le=60.0, description="Sleep after an empty poll")
    visibility_timeout_seconds: int = Field(
        default=300,
        ge=1,
        description="Claimed deliveries older than this are released back to pending",
    )
    auto_disable_after: int = Field(
        default=5,
        ge=0,
        description="Consecutive exhausted deliveries that deactivate a webhook; 0 never does",
    )

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    @field_validator("visibility_timeout_seconds")
    @classmethod
    def _claim_outlives_request(cls, v: int, info: ValidationInfo) -> int:
        timeout = info.data.get("timeout_seconds")
        if timeout is not None and v < 2 * timeout:
            msg = "visibility_timeout_seconds must be >= 2 * timeout_seconds"
            raise ValueError(msg)
        return v


__all__ = ["WebhookSettings"]
