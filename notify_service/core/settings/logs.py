"""Logging settings shared by the API, the workers and the CLI."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LoggingSettings(BaseSettings):
    """Structured logging configuration.

    Environment variables use LOG_ prefix.
    Example: LOG_LEVEL=DEBUG, LOG_JSON=false, LOG_FILE_ENABLED=true
    """

    # Levels and format
    service_name: str = Field(
        default="notify-service",
        description="Added to every JSON record as 'service'",
    )
    level: LogLevel = Field(default="INFO", description="Root logger level")
    console_level: LogLevel | None = Field(default=None, description="Defaults to the root level")
    file_level: LogLevel | None = Field(default=None, description="Defaults to the root level")
    json_logs: bool = Field(
        default=True,
        alias="json",
        description="Emit JSON Lines; plain text when false (local development)",
    )

    # Handlers
    console_enabled: bool = Field(default=True, description="Log to stderr")
    file_enabled: bool = Field(default=False, description="Also log to a rotating file")
    file_path: Path = Field(
        default=Path("logs/notify-service.jsonl"),
        description="Rotating log file, used only when file_enabled",
    )
    file_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="Rotate the log file past this size",
    )
    file_backup_count: int = Field(default=5, ge=0, le=100, description="Rotated files kept")

    # Record content
    include_context: bool = Field(
        default=True,
        description="Copy tenant/entry/webhook/worker context vars onto every record",
    )
    capture_warnings: bool = Field(
        default=True,
        description="Route the warnings module (template render warnings) into logging",
    )
    include_process_info: bool = Field(default=False, description="Add process id and name")
    include_thread_info: bool = Field(default=False, description="Add thread id and name")

    @field_validator("level", "console_level", "file_level", mode="before")
    @classmethod
    def upper_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    def to_logging_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``configure_logging``."""
        return {
            "service_name": self.service_name,
            "log_level": self.level,
            "json_logs": self.json_logs,
            "console_enabled": self.console_enabled,
            "console_level": self.console_level or self.level,
            "file_path": str(self.file_path) if self.file_enabled else None,
            "file_level": self.file_level or self.level,
            "file_max_bytes": self.file_max_bytes,
            "file_backup_count": self.file_backup_count,
            "include_context": self.include_context,
            "capture_warnings": self.capture_warnings,
            "include_process_info": self.include_process_info,
            "include_thread_info": self.include_thread_info,
        }

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        env_ignore_empty=True,
    )


__all__ = ["LogLevel", "LoggingSettings"]
