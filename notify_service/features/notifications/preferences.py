"""Preference filter: decides whether a recipient may receive a notification now.

Rules, in order:

1. Mandatory type codes and categories (security, critical) always pass.
2. The most specific matching preference row decides opt-out; a template
   that requires consent needs a matching row that records consent.
3. Quiet hours (recipient row, else tenant policy) defer channels that
   honour them to the window's end.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from notify_service.features.notifications.enums import ANY, FailureReason, ScopeType
from notify_service.features.notifications.policy import QuietHours
from notify_service.features.notifications.repository import (
    RecipientPreferenceRepository,
    get_recipient_preference_repository,
)
from notify_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from notify_service.features.notifications.models import QueueEntry, RecipientPreference
    from notify_service.features.notifications.policy import TenantPolicy

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)


@dataclass(frozen=True, slots=True)
class Eligible:
    """Send now."""


@dataclass(frozen=True, slots=True)
class Suppressed:
    """Never send; terminal."""

    reason: FailureReason = FailureReason.SUPPRESSED


@dataclass(frozen=True, slots=True)
class Deferred:
    """Send no earlier than ``until`` (UTC)."""

    until: datetime


Eligibility = Eligible | Suppressed | Deferred


def _specificity(pref: RecipientPreference) -> tuple[int, int]:
    scope_rank = {ScopeType.TYPE.value: 2, ScopeType.CATEGORY.value: 1}.get(pref.scope_type, 0)
    return scope_rank, 0 if pref.channel == ANY else 1


def matching_preferences(
    prefs: Sequence[RecipientPreference],
    type_code: str,
    category: str | None,
    channel: str,
) -> list[RecipientPreference]:
    """Rows that apply to (type_code, category, channel), most specific first."""

    def applies(pref: RecipientPreference) -> bool:
        if pref.channel not in (ANY, channel):
            return False
        if pref.scope_type == ScopeType.TYPE.value:
            return pref.scope == type_code
        if pref.scope_type == ScopeType.CATEGORY.value:
            return category is not None and pref.scope == category
        return True

    return sorted((p for p in prefs if applies(p)), key=_specificity, reverse=True)


def preferred_language(prefs: Sequence[RecipientPreference]) -> str | None:
    """Language on the recipient's wildcard row, if any."""
    for pref in prefs:
        if pref.scope_type == ScopeType.ANY.value and pref.channel == ANY and pref.language:
            return pref.language
    return None


def quiet_hours_until(
    prefs: Sequence[RecipientPreference],
    policy: TenantPolicy,
    *,
    type_code: str,
    category: str | None,
    channel: str,
    at: datetime,
) -> datetime | None:
    """End of the quiet window ``at`` falls in, or None when sending is allowed then.

    The recipient's most specific row with quiet hours wins over the tenant
    window. Mandatory types and channels that ignore quiet hours never wait.
    """
    if policy.is_mandatory(type_code, category) or not policy.respects_quiet_hours(channel):
        return None
    quiet = next(
        (
            QuietHours(p.quiet_hours_start, p.quiet_hours_end, p.timezone or "UTC")
            for p in matching_preferences(prefs, type_code, category, channel)
            if p.quiet_hours_start is not None and p.quiet_hours_end is not None
        ),
        policy.quiet_hours,
    )
    return quiet.deferral_until(at) if quiet is not None else None


def evaluate(
    prefs: Sequence[RecipientPreference],
    policy: TenantPolicy,
    *,
    type_code: str,
    category: str | None,
    channel: str,
    requires_consent: bool,
    now: datetime,
) -> Eligibility:
    """Pure decision over already-loaded preference rows.

    ``now`` is the time the message would go out, which for a scheduled
    send is ``scheduled_for`` rather than the submission time.
    """
    if policy.is_mandatory(type_code, category):
        return Eligible()

    matches = matching_preferences(prefs, type_code, category, channel)

    if matches and not matches[0].opted_in:
        return Suppressed(FailureReason.SUPPRESSED)

    if requires_consent and not any(p.consent_granted_at for p in matches if p.opted_in):
        return Suppressed(FailureReason.CONSENT_REQUIRED)

    until = quiet_hours_until(
        prefs, policy, type_code=type_code, category=category, channel=channel, at=now
    )
    return Deferred(until) if until is not None else Eligible()


class PreferenceFilter:
    """Loads a recipient's preference rows and evaluates them."""

    def __init__(self, repository: RecipientPreferenceRepository | None = None) -> None:
        self._repository = repository or get_recipient_preference_repository()

    async def load(
        self, session: AsyncSession, tenant_id: str, recipient_type: str, recipient_id: str
    ) -> Sequence[RecipientPreference]:
        return await self._repository.list_for_recipient(
            session, tenant_id, recipient_type, recipient_id
        )

    async def check(
        self,
        session: AsyncSession,
        policy: TenantPolicy,
        *,
        recipient_type: str,
        recipient_id: str,
        type_code: str,
        category: str | None,
        channel: str,
        requires_consent: bool,
        now: datetime,
        prefs: Sequence[RecipientPreference] | None = None,
    ) -> Eligibility:
        """Decide Eligible, Suppressed or Deferred for one recipient and channel."""
        if prefs is None:
            prefs = await self.load(session, policy.tenant_id, recipient_type, recipient_id)

        decision = evaluate(
            prefs,
            policy,
            type_code=type_code,
            category=category,
            channel=channel,
            requires_consent=requires_consent,
            now=now,
        )
        lazy_logger.debug(
            lambda: f"preference.check({recipient_type}:{recipient_id}, {type_code}, {channel}) -> {decision}"
        )
        return decision

    async def quiet_until(
        self,
        session: AsyncSession,
        policy: TenantPolicy,
        entry: QueueEntry,
        at: datetime,
        *,
        prefs: Sequence[RecipientPreference] | None = None,
    ) -> datetime | None:
        """Quiet-hours end for an already queued entry about to be sent at ``at``."""
        if prefs is None:
            prefs = await self.load(session, entry.tenant_id, entry.recipient_type, entry.recipient_id)
        return quiet_hours_until(
            prefs,
            policy,
            type_code=entry.type_code,
            category=entry.category,
            channel=entry.channel,
            at=at,
        )


_filter: PreferenceFilter | None = None


def get_preference_filter() -> PreferenceFilter:
    """Get or create the singleton PreferenceFilter instance."""
    global _filter
    if _filter is None:
        _filter = PreferenceFilter()
    return _filter


__all__ = [
    "Deferred",
    "Eligibility",
    "Eligible",
    "PreferenceFilter",
    "Suppressed",
    "evaluate",
    "get_preference_filter",
    "matching_preferences",
    "preferred_language",
    "quiet_hours_until",
]
