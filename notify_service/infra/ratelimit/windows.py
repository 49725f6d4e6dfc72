"""UTC calendar-aligned fixed windows."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import Enum


class WindowType(str, Enum):
    """Fixed rate-limit window sizes (UTC calendar aligned)."""

    HOUR = "hour"
    DAY = "day"
    MONTH = "month"


def window_start(window: WindowType, now: datetime) -> datetime:
    """Start of the window containing ``now``."""
    now = now.astimezone(UTC)
    if window == WindowType.HOUR:
        return now.replace(minute=0, second=0, microsecond=0)
    if window == WindowType.DAY:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def next_window_start(window: WindowType, now: datetime) -> datetime:
    """Start of the window after the one containing ``now``."""
    start = window_start(window, now)
    if window == WindowType.HOUR:
        return start + timedelta(hours=1)
    if window == WindowType.DAY:
        return start + timedelta(days=1)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def window_seconds(window: WindowType, now: datetime) -> int:
    """Length of the window containing ``now`` (months vary)."""
    return int((next_window_start(window, now) - window_start(window, now)).total_seconds())


__all__ = ["WindowType", "next_window_start", "window_seconds", "window_start"]
