"""Tenant policy: settings defaults merged with the tenant configuration record.

The dispatch path reads one immutable TenantPolicy per decision instead of
querying individual configuration fields.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select

from notify_service.core.settings import (
    get_dispatch_settings,
    get_ratelimit_settings,
    get_webhook_settings,
)
from notify_service.utils.retry import RetryStrategy

from .enums import WindowType
from .models import TenantNotificationConfig

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from notify_service.core.settings import DispatchSettings, RateLimitSettings, WebhookSettings

logger = logging.getLogger(__name__)


def parse_clock(value: str | time) -> time:
    """Parse ``HH:MM`` (or pass a ``time`` through)."""
    if isinstance(value, time):
        return value
    hours, _, minutes = value.strip().partition(":")
    return time(int(hours), int(minutes or 0))


@dataclass(frozen=True, slots=True)
class QuietHours:
    """Local-time window during which non-critical sends are deferred.

    ``start > end`` means the window spans midnight (22:00 to 07:00).
    ``start == end`` is an empty window.
    """

    start: time
    end: time
    timezone: str = "UTC"

    @classmethod
    def from_config(cls, data: dict[str, Any]) -> QuietHours:
        return cls(
            start=parse_clock(data["start"]),
            end=parse_clock(data["end"]),
            timezone=data.get("timezone") or "UTC",
        )

    def _zone(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                "Unknown quiet-hours timezone, using UTC",
                extra={"timezone": self.timezone, "operation": "policy.quiet_hours"},
            )
            return ZoneInfo("UTC")

    def deferral_until(self, now: datetime) -> datetime | None:
        """Return the UTC end of the window if ``now`` falls inside it."""
        if self.start == self.end:
            return None

        zone = self._zone()
        local = now.astimezone(zone)
        clock = local.time().replace(tzinfo=None)

        if self.start < self.end:
            inside = self.start <= clock < self.end
            end_day: date = local.date()
        else:
            inside = clock >= self.start or clock < self.end
            end_day = local.date() if clock < self.end else local.date() + timedelta(days=1)

        if not inside:
            return None
        return datetime.combine(end_day, self.end, tzinfo=zone).astimezone(UTC)


@dataclass(frozen=True, slots=True)
class TenantPolicy:
    """Everything the dispatch path needs to know about one tenant."""

    tenant_id: str
    quotas: dict[str, dict[WindowType, int]] = field(default_factory=dict)
    max_attempts: dict[str, int] = field(default_factory=dict)
    default_max_attempts: int = 3
    retry_base_delay: float = 30.0
    retry_max_delay: float = 3600.0
    max_rate_limit_deferrals: int = 24
    quiet_hours: QuietHours | None = None
    quiet_hours_channels: frozenset[str] = frozenset()
    mandatory_type_codes: frozenset[str] = frozenset()
    mandatory_categories: frozenset[str] = frozenset()
    disabled_channels: frozenset[str] = frozenset()
    default_language: str = "en"
    webhook_timeout_seconds: int = 30
    webhook_retry_attempts: int = 3

    def quotas_for(self, channel: str) -> dict[WindowType, int]:
        return self.quotas.get(channel, {})

    def attempts_for(self, channel: str) -> int:
        return self.max_attempts.get(channel, self.default_max_attempts)

    def retry_strategy(self, channel: str) -> RetryStrategy:
        """Deterministic backoff for queue retries (no jitter)."""
        return RetryStrategy(
            max_attempts=self.attempts_for(channel),
            initial_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            exponential_base=2.0,
            jitter=False,
        )

    def is_mandatory(self, type_code: str, category: str | None) -> bool:
        return type_code in self.mandatory_type_codes or (
            category is not None and category in self.mandatory_categories
        )

    def respects_quiet_hours(self, channel: str) -> bool:
        return channel in self.quiet_hours_channels

    def channel_enabled(self, channel: str) -> bool:
        return channel not in self.disabled_channels


def _parse_quotas(raw: dict[str, Any] | None) -> dict[str, dict[WindowType, int]]:
    quotas: dict[str, dict[WindowType, int]] = {}
    for channel, windows in (raw or {}).items():
        parsed = {
            WindowType(window): int(limit)
            for window, limit in (windows or {}).items()
            if limit is not None
        }
        if parsed:
            quotas[channel] = parsed
    return quotas


def build_policy(
    tenant_id: str,
    config: TenantNotificationConfig | None,
    *,
    dispatch_settings: DispatchSettings | None = None,
    ratelimit_settings: RateLimitSettings | None = None,
    webhook_settings: WebhookSettings | None = None,
) -> TenantPolicy:
    """Merge a tenant configuration record over settings defaults."""
    dispatch = dispatch_settings or get_dispatch_settings()
    ratelimit = ratelimit_settings or get_ratelimit_settings()
    webhooks = webhook_settings or get_webhook_settings()

    quotas = _parse_quotas(ratelimit.default_quotas)
    max_attempts = dict(dispatch.max_attempts)
    default_max_attempts = dispatch.default_max_attempts
    base_delay = dispatch.retry_base_delay_seconds
    max_delay = dispatch.retry_max_delay_seconds
    quiet_hours: QuietHours | None = None
    disabled: frozenset[str] = frozenset()
    language = dispatch.default_language
    webhook_timeout = webhooks.timeout_seconds
    webhook_attempts = webhooks.retry_attempts

    if config is not None:
        # Tenant quotas replace defaults per channel, not per window
        quotas.update(_parse_quotas(config.channel_rate_limits))

        retry = config.retry or {}
        tenant_attempts = retry.get("max_attempts")
        if isinstance(tenant_attempts, dict):
            max_attempts.update({k: int(v) for k, v in tenant_attempts.items()})
        elif tenant_attempts is not None:
            max_attempts = {}
            default_max_attempts = int(tenant_attempts)
        base_delay = float(retry.get("base_delay", base_delay))
        max_delay = max(float(retry.get("max_delay", max_delay)), base_delay)

        if config.quiet_hours:
            quiet_hours = QuietHours.from_config(config.quiet_hours)
        disabled = frozenset(config.disabled_channels or ())
        language = config.default_language or language
        webhook_timeout = config.webhook_timeout_seconds or webhook_timeout
        webhook_attempts = config.webhook_retry_attempts or webhook_attempts

    return TenantPolicy(
        tenant_id=tenant_id,
        quotas=quotas,
        max_attempts=max_attempts,
        default_max_attempts=default_max_attempts,
        retry_base_delay=base_delay,
        retry_max_delay=max_delay,
        max_rate_limit_deferrals=dispatch.max_rate_limit_deferrals,
        quiet_hours=quiet_hours,
        quiet_hours_channels=frozenset(dispatch.quiet_hours_channels),
        mandatory_type_codes=frozenset(dispatch.mandatory_type_codes),
        mandatory_categories=frozenset(dispatch.mandatory_categories),
        disabled_channels=disabled,
        default_language=language,
        webhook_timeout_seconds=webhook_timeout,
        webhook_retry_attempts=webhook_attempts,
    )


async def load_policy(session: AsyncSession, tenant_id: str, **overrides: Any) -> TenantPolicy:
    """Read the tenant configuration record once and build its policy."""
    result = await session.execute(
        select(TenantNotificationConfig).where(TenantNotificationConfig.tenant_id == tenant_id)
    )
    return build_policy(tenant_id, result.scalars().first(), **overrides)


__all__ = ["QuietHours", "TenantPolicy", "build_policy", "load_policy", "parse_clock"]
