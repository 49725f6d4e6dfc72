"""Rate limit settings for per-tenant channel quotas."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

RateLimitBackend = Literal["database", "redis"]


class RateLimitSettings(BaseSettings):
    """Fixed-window quota configuration.

    Environment variables use RATELIMIT_ prefix.
    Example: RATELIMIT_BACKEND=redis, RATELIMIT_REDIS_URL=redis://cache:6379/2

    Quotas are expressed per channel and window, e.g.
    ``{"sms": {"hour": 100, "day": 500}}``. A missing channel or window means
    no limit for it.
    """

    backend: RateLimitBackend = Field(
        default="database",
        description="Counter store: 'database' (conditional UPDATE) or 'redis' (atomic Lua)",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL used when backend is 'redis'",
    )
    key_prefix: str = Field(
        default="notify:ratelimit",
        min_length=1,
        description="Prefix for Redis counter keys",
    )
    default_quotas: dict[str, dict[str, int]] = Field(
        default_factory=lambda: {
            "email": {"day": 1000},
            "sms": {"day": 500},
            "push": {"day": 5000},
        },
        description="Quotas applied when a tenant does not configure its own",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATELIMIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )


__all__ = ["RateLimitBackend", "RateLimitSettings"]
