"""Modular Pydantic Settings v2 configuration.

One settings class per domain (app/db/logging/dispatch/webhooks/ratelimit),
each frozen and loaded through an LRU-cached getter.

Import settings via cached loaders:
    from notify_service.core.settings import get_dispatch_settings

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. Environment variables (production)
    3. .env file (development only)
"""

from __future__ import annotations

from .app import AppSettings
from .database import DatabaseSettings
from .dispatch import DispatchSettings
from .loader import (
    clear_all_caches,
    get_app_settings,
    get_db_settings,
    get_dispatch_settings,
    get_logging_settings,
    get_ratelimit_settings,
    get_webhook_settings,
)
from .logs import LoggingSettings
from .ratelimit import RateLimitSettings
from .webhooks import WebhookSettings

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "DispatchSettings",
    "LoggingSettings",
    "RateLimitSettings",
    "WebhookSettings",
    "clear_all_caches",
    "get_app_settings",
    "get_db_settings",
    "get_dispatch_settings",
    "get_logging_settings",
    "get_ratelimit_settings",
    "get_webhook_settings",
]
