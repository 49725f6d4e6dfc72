"""Fixed-window rate limiting for per-tenant channel quotas."""

from __future__ import annotations

from notify_service.infra.ratelimit.limiter import (
    Admission,
    Admitted,
    RateLimited,
    RedisWindowStore,
    SqlWindowStore,
    WindowedRateLimiter,
    WindowStore,
    close_rate_limiter,
    get_rate_limiter,
    set_rate_limiter,
)
from notify_service.infra.ratelimit.windows import (
    WindowType,
    next_window_start,
    window_seconds,
    window_start,
)

__all__ = [
    "Admission",
    "Admitted",
    "RateLimited",
    "RedisWindowStore",
    "SqlWindowStore",
    "WindowStore",
    "WindowType",
    "WindowedRateLimiter",
    "close_rate_limiter",
    "get_rate_limiter",
    "next_window_start",
    "set_rate_limiter",
    "window_seconds",
    "window_start",
]
