"""API process settings."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["development", "staging", "production", "test"]


class AppSettings(BaseSettings):
    """Identity, HTTP surface and process layout of the API.

    Environment variables use APP_ prefix.
    Example: APP_ENVIRONMENT=production, APP_RUN_WORKERS=true
    """

    service_name: str = Field(
        default="notify-service",
        pattern=r"^[a-z0-9]+(-[a-z0-9]+)*$",
        description="Name reported in logs, traces and the health payload",
    )
    environment: Environment = Field(default="development")
    title: str = Field(default="Notify Service API", min_length=1)
    description: str = Field(default="Multi-tenant notification and webhook dispatch")
    version: str = Field(default="1.0.0", pattern=r"^\d+\.\d+\.\d+(-[0-9A-Za-z.]+)?$")
    debug: bool = Field(default=False, description="FastAPI debug mode; also echoes SQL")

    # HTTP surface
    api_prefix: str = Field(default="/api/v1", pattern=r"^/", description="Prefix for the versioned API")
    docs_url: str | None = Field(default="/docs", description="Swagger UI path; empty disables it")
    openapi_url: str | None = Field(default="/openapi.json", description="Schema path; empty disables it")
    cors_origins: list[str] = Field(default_factory=list, description="Allowed origins; empty disables CORS")
    tenant_header: str = Field(
        default="X-Tenant-ID",
        min_length=1,
        description="Header carrying the calling tenant's identifier",
    )

    # Server and workers
    host: str = Field(default="0.0.0.0", description="Bind address for `notify-service serve`")  # noqa: S104
    port: int = Field(default=8000, ge=1, le=65535)
    run_workers: bool = Field(
        default=False,
        description="Run dispatch, webhook and analytics loops inside the API process "
        "instead of a separate `notify-service worker run`",
    )

    @field_validator("docs_url", "openapi_url", mode="before")
    @classmethod
    def blank_disables(cls, v: str | None) -> str | None:
        return v or None

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )


__all__ = ["AppSettings", "Environment"]
