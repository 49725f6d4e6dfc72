"""Notification dispatch settings.

System-wide defaults for the worker pool, the retry schedule and the
preference policy. Per-tenant overrides live in the tenant notification
configuration record and are merged over these values at dispatch time.
"""

from __future__ import annotations

from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DispatchSettings(BaseSettings):
    """Configuration for the dispatch queue and worker pool.

    Environment variables use DISPATCH_ prefix.
    Example: DISPATCH_WORKER_CONCURRENCY=8, DISPATCH_RETRY_BASE_DELAY_SECONDS=10
    """

    # Worker pool
    worker_concurrency: int = Field(
        default=4,
        ge=1,
        le=256,
        description="Number of concurrent dispatch workers",
    )
    batch_size: int = Field(
        default=20,
        ge=1,
        le=1000,
        description="Maximum entries claimed per dequeue call",
    )
    poll_interval_seconds: float = Field(
        default=1.0,
        ge=0.01,
        le=60.0,
        description="Idle sleep between empty polls",
    )
    visibility_timeout_seconds: int = Field(
        default=120,
        ge=1,
        le=86_400,
        description="Seconds a claimed entry stays invisible before another worker may reclaim it",
    )
    send_timeout_seconds: float = Field(
        default=15.0,
        gt=0.0,
        le=300.0,
        description="Timeout for a single channel sender invocation",
    )

    # Providers
    gateway_urls: dict[str, str] = Field(
        default_factory=dict,
        description="Per-channel HTTP provider gateway URL; channels without one use the console sender",
    )
    gateway_auth_token: SecretStr | None = Field(
        default=None,
        description="Bearer token sent to provider gateways",
    )

    # Retry schedule
    retry_base_delay_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Base delay for attempt 1; attempt n waits base * 2^(n-1)",
    )
    retry_max_delay_seconds: float = Field(
        default=3600.0,
        ge=1.0,
        description="Upper bound on any single retry delay",
    )
    default_max_attempts: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Attempts allowed for channels without an explicit entry in max_attempts",
    )
    max_attempts: dict[str, int] = Field(
        default_factory=lambda: {"email": 5, "sms": 3, "push": 3, "in_app": 3, "whatsapp": 3},
        description="Per-channel attempt limits",
    )
    max_rate_limit_deferrals: int = Field(
        default=24,
        ge=1,
        le=10_000,
        description="Rate-limit deferrals allowed before an entry is parked as dead",
    )

    # Preference policy
    default_language: str = Field(
        default="en",
        min_length=2,
        max_length=16,
        description="Language used when neither the request nor the tenant sets one",
    )
    mandatory_type_codes: list[str] = Field(
        default_factory=lambda: [
            "payment_failed",
            "password_reset",
            "security_alert",
            "otp",
            "account_locked",
        ],
        description="Type codes that bypass opt-out and quiet hours",
    )
    mandatory_categories: list[str] = Field(
        default_factory=lambda: ["security", "critical"],
        description="Template categories that bypass opt-out and quiet hours",
    )
    quiet_hours_channels: list[str] = Field(
        default_factory=lambda: ["email", "sms", "push", "whatsapp"],
        description="Channels that honour recipient quiet hours",
    )

    # Analytics
    analytics_fold_batch_size: int = Field(
        default=500,
        ge=1,
        le=100_000,
        description="Delivery events folded per analytics pass",
    )
    analytics_interval_seconds: float = Field(
        default=30.0,
        ge=0.1,
        description="Sleep between analytics fold passes in the worker",
    )

    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    @field_validator("retry_max_delay_seconds")
    @classmethod
    def _max_not_below_base(cls, v: float, info: ValidationInfo) -> float:
        base = info.data.get("retry_base_delay_seconds", 0.0)
        if v < base:
            msg = "retry_max_delay_seconds must be >= retry_base_delay_seconds"
            raise ValueError(msg)
        return v

    @field_validator("send_timeout_seconds")
    @classmethod
    def _send_fits_claim(cls, v: float, info: ValidationInfo) -> float:
        # A claim is renewed before each send and must outlive it
        visibility = info.data.get("visibility_timeout_seconds")
        if visibility is not None and visibility < 2 * v:
            msg = "visibility_timeout_seconds must be >= 2 * send_timeout_seconds"
            raise ValueError(msg)
        return v

    def attempts_for(self, channel: str) -> int:
        """Return the default attempt limit for a channel."""
        return self.max_attempts.get(channel, self.default_max_attempts)


__all__ = ["DispatchSettings"]
