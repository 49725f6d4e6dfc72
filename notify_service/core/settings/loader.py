"""Cached settings accessors.

Each group is read from the environment (and ``.env``) once per process.
Tests either build a settings object directly, e.g.
``DispatchSettings(worker_concurrency=1)``, or change the environment and
call ``clear_all_caches()``.
"""

from __future__ import annotations

from functools import lru_cache

from .app import AppSettings
from .database import DatabaseSettings
from .dispatch import DispatchSettings
from .logs import LoggingSettings
from .ratelimit import RateLimitSettings
from .webhooks import WebhookSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    return AppSettings()


@lru_cache(maxsize=1)
def get_db_settings() -> DatabaseSettings:
    return DatabaseSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_dispatch_settings() -> DispatchSettings:
    """System-wide dispatch defaults; tenant configuration overrides them per entry."""
    return DispatchSettings()


@lru_cache(maxsize=1)
def get_webhook_settings() -> WebhookSettings:
    return WebhookSettings()


@lru_cache(maxsize=1)
def get_ratelimit_settings() -> RateLimitSettings:
    return RateLimitSettings()


_LOADERS = (
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_dispatch_settings,
    get_webhook_settings,
    get_ratelimit_settings,
)


def clear_all_caches() -> None:
    for loader in _LOADERS:
        loader.cache_clear()
