"""Persistent fixed-window counters."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from notify_service.core.database import Base, UTCDateTime, UUIDv7PKMixin


class RateLimitWindow(Base, UUIDv7PKMixin):
    """Counter for one (tenant, channel, window type, window start).

    A new window starts a new row; old rows are never reset in place.
    """

    __tablename__ = "rate_limit_windows"

    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    window_type: Mapped[str] = mapped_column(String(10), nullable=False, comment="hour, day, month")
    window_start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    count: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "channel", "window_type", "window_start", name="uq_rate_limit_window_key"
        ),
    )


__all__ = ["RateLimitWindow"]
