"""Repositories for the notifications feature.

Read paths and simple upserts live here. State transitions of queue
entries are compare-and-set statements owned by ``queue.DispatchQueue``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import Select, or_, select

from notify_service.core.database.repository import BaseRepository
from notify_service.features.notifications.models import (
    AnalyticsBucket,
    ComplianceEvent,
    DeliveryEvent,
    NotificationTemplate,
    QueueEntry,
    RecipientPreference,
    TenantNotificationConfig,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import date, datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession


class NotificationTemplateRepository(BaseRepository[NotificationTemplate]):
    """Repository for NotificationTemplate.

    Supports tenant-aware resolution: tenant rows and global rows
    (``tenant_id IS NULL``) for a type/channel come back in one query.
    """

    def __init__(self) -> None:
        super().__init__(NotificationTemplate)

    async def find_candidates(
        self,
        session: AsyncSession,
        tenant_id: str | None,
        type_code: str,
        channel: str,
    ) -> Sequence[NotificationTemplate]:
        """Active tenant and global templates for a type/channel, every language."""
        stmt = select(NotificationTemplate).where(
            NotificationTemplate.type_code == type_code,
            NotificationTemplate.channel == channel,
            NotificationTemplate.is_active.is_(True),
        )
        if tenant_id:
            stmt = stmt.where(
                or_(
                    NotificationTemplate.tenant_id == tenant_id,
                    NotificationTemplate.tenant_id.is_(None),
                )
            )
        else:
            stmt = stmt.where(NotificationTemplate.tenant_id.is_(None))

        result = await session.execute(stmt)
        items = result.scalars().all()

        self._lazy.debug(
            lambda: f"db.find_candidates({tenant_id=}, {type_code=}, {channel=}) -> {len(items)} templates"
        )
        return items

    async def get_by_key(
        self,
        session: AsyncSession,
        tenant_id: str | None,
        type_code: str,
        channel: str,
        language: str,
    ) -> NotificationTemplate | None:
        """Template row for an exact key, active or not."""
        tenant_clause = (
            NotificationTemplate.tenant_id == tenant_id
            if tenant_id is not None
            else NotificationTemplate.tenant_id.is_(None)
        )
        stmt = select(NotificationTemplate).where(
            tenant_clause,
            NotificationTemplate.type_code == type_code,
            NotificationTemplate.channel == channel,
            NotificationTemplate.language == language,
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    def list_statement(
        self,
        tenant_id: str,
        *,
        include_global: bool = True,
        type_code: str | None = None,
        channel: str | None = None,
    ) -> Select[tuple[NotificationTemplate]]:
        stmt = select(NotificationTemplate)
        if include_global:
            stmt = stmt.where(
                or_(
                    NotificationTemplate.tenant_id == tenant_id,
                    NotificationTemplate.tenant_id.is_(None),
                )
            )
        else:
            stmt = stmt.where(NotificationTemplate.tenant_id == tenant_id)
        if type_code:
            stmt = stmt.where(NotificationTemplate.type_code == type_code)
        if channel:
            stmt = stmt.where(NotificationTemplate.channel == channel)
        return stmt.order_by(
            NotificationTemplate.type_code,
            NotificationTemplate.channel,
            NotificationTemplate.language,
        )


class RecipientPreferenceRepository(BaseRepository[RecipientPreference]):
    """Repository for RecipientPreference rows."""

    def __init__(self) -> None:
        super().__init__(RecipientPreference)

    async def list_for_recipient(
        self,
        session: AsyncSession,
        tenant_id: str,
        recipient_type: str,
        recipient_id: str,
    ) -> Sequence[RecipientPreference]:
        stmt = (
            select(RecipientPreference)
            .where(
                RecipientPreference.tenant_id == tenant_id,
                RecipientPreference.recipient_type == recipient_type,
                RecipientPreference.recipient_id == recipient_id,
            )
            .order_by(RecipientPreference.scope_type, RecipientPreference.scope)
        )
        result = await session.execute(stmt)
        items = result.scalars().all()

        self._lazy.debug(
            lambda: f"db.list_for_recipient({tenant_id=}, {recipient_type=}, {recipient_id=}) -> {len(items)} rows"
        )
        return items

    async def get_scope(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        recipient_type: str,
        recipient_id: str,
        scope_type: str,
        scope: str,
        channel: str,
    ) -> RecipientPreference | None:
        stmt = select(RecipientPreference).where(
            RecipientPreference.tenant_id == tenant_id,
            RecipientPreference.recipient_type == recipient_type,
            RecipientPreference.recipient_id == recipient_id,
            RecipientPreference.scope_type == scope_type,
            RecipientPreference.scope == scope,
            RecipientPreference.channel == channel,
        )
        return (await session.execute(stmt)).scalars().first()

    async def upsert(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        recipient_type: str,
        recipient_id: str,
        scope_type: str,
        scope: str,
        channel: str,
        **fields: Any,
    ) -> RecipientPreference:
        """Create or update the row for one (recipient, scope, channel)."""
        existing = await self.get_scope(
            session,
            tenant_id=tenant_id,
            recipient_type=recipient_type,
            recipient_id=recipient_id,
            scope_type=scope_type,
            scope=scope,
            channel=channel,
        )

        if existing:
            for key, value in fields.items():
                setattr(existing, key, value)
            await session.flush()
            self._lazy.debug(lambda: f"db.upsert_preference({recipient_id=}, {scope=}, {channel=}) -> updated")
            return existing

        pref = RecipientPreference(
            tenant_id=tenant_id,
            recipient_type=recipient_type,
            recipient_id=recipient_id,
            scope_type=scope_type,
            scope=scope,
            channel=channel,
            **fields,
        )
        self._lazy.debug(lambda: f"db.upsert_preference({recipient_id=}, {scope=}, {channel=}) -> created")
        return await self.create(session, pref)


class TenantConfigRepository(BaseRepository[TenantNotificationConfig]):
    """Repository for the per-tenant configuration record."""

    def __init__(self) -> None:
        super().__init__(TenantNotificationConfig)

    async def get_for_tenant(
        self, session: AsyncSession, tenant_id: str
    ) -> TenantNotificationConfig | None:
        return await self.get_by(session, TenantNotificationConfig.tenant_id, tenant_id)

    async def upsert(
        self, session: AsyncSession, tenant_id: str, **fields: Any
    ) -> TenantNotificationConfig:
        existing = await self.get_for_tenant(session, tenant_id)
        if existing:
            for key, value in fields.items():
                setattr(existing, key, value)
            await session.flush()
            return existing
        return await self.create(session, TenantNotificationConfig(tenant_id=tenant_id, **fields))


class QueueEntryRepository(BaseRepository[QueueEntry]):
    """Read access to queue entries, always scoped by tenant."""

    def __init__(self) -> None:
        super().__init__(QueueEntry)

    async def get_for_tenant(
        self, session: AsyncSession, tenant_id: str, entry_id: UUID
    ) -> QueueEntry | None:
        entry = await self.get(session, entry_id)
        if entry is None or entry.tenant_id != tenant_id:
            return None
        return entry

    async def get_by_idempotency_key(
        self, session: AsyncSession, tenant_id: str, key: str
    ) -> QueueEntry | None:
        stmt = select(QueueEntry).where(
            QueueEntry.tenant_id == tenant_id, QueueEntry.idempotency_key == key
        ).execution_options(populate_existing=True)
        result = await session.execute(stmt)
        return result.scalars().first()

    def list_statement(
        self,
        tenant_id: str,
        *,
        status: str | None = None,
        channel: str | None = None,
        recipient_id: str | None = None,
    ) -> Select[tuple[QueueEntry]]:
        stmt = select(QueueEntry).where(QueueEntry.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(QueueEntry.status == status)
        if channel:
            stmt = stmt.where(QueueEntry.channel == channel)
        if recipient_id:
            stmt = stmt.where(QueueEntry.recipient_id == recipient_id)
        return stmt.order_by(QueueEntry.created_at.desc(), QueueEntry.id.desc())


class DeliveryEventRepository(BaseRepository[DeliveryEvent]):
    """Read access to the append-only delivery event log."""

    def __init__(self) -> None:
        super().__init__(DeliveryEvent)

    async def list_for_entry(self, session: AsyncSession, entry_id: UUID) -> Sequence[DeliveryEvent]:
        stmt = (
            select(DeliveryEvent)
            .where(DeliveryEvent.entry_id == entry_id)
            .order_by(DeliveryEvent.occurred_at, DeliveryEvent.id)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    def list_statement(
        self,
        tenant_id: str,
        *,
        entry_id: UUID | None = None,
        event_type: str | None = None,
        channel: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> Select[tuple[DeliveryEvent]]:
        stmt = select(DeliveryEvent).where(DeliveryEvent.tenant_id == tenant_id)
        if entry_id:
            stmt = stmt.where(DeliveryEvent.entry_id == entry_id)
        if event_type:
            stmt = stmt.where(DeliveryEvent.event_type == event_type)
        if channel:
            stmt = stmt.where(DeliveryEvent.channel == channel)
        if since:
            stmt = stmt.where(DeliveryEvent.occurred_at >= since)
        if until:
            stmt = stmt.where(DeliveryEvent.occurred_at < until)
        return stmt.order_by(DeliveryEvent.occurred_at.desc(), DeliveryEvent.id.desc())


class ComplianceEventRepository(BaseRepository[ComplianceEvent]):
    """Append-only access to the compliance audit log."""

    def __init__(self) -> None:
        super().__init__(ComplianceEvent)

    def list_statement(
        self,
        tenant_id: str,
        *,
        recipient_type: str | None = None,
        recipient_id: str | None = None,
        action: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> Select[tuple[ComplianceEvent]]:
        stmt = select(ComplianceEvent).where(ComplianceEvent.tenant_id == tenant_id)
        if recipient_type:
            stmt = stmt.where(ComplianceEvent.recipient_type == recipient_type)
        if recipient_id:
            stmt = stmt.where(ComplianceEvent.recipient_id == recipient_id)
        if action:
            stmt = stmt.where(ComplianceEvent.action == action)
        if since:
            stmt = stmt.where(ComplianceEvent.recorded_at >= since)
        if until:
            stmt = stmt.where(ComplianceEvent.recorded_at < until)
        return stmt.order_by(ComplianceEvent.recorded_at.desc(), ComplianceEvent.id.desc())


class AnalyticsBucketRepository(BaseRepository[AnalyticsBucket]):
    """Read access to daily analytics buckets."""

    def __init__(self) -> None:
        super().__init__(AnalyticsBucket)

    async def list_range(
        self,
        session: AsyncSession,
        tenant_id: str,
        day_from: date,
        day_to: date,
        *,
        channel: str | None = None,
        type_code: str | None = None,
    ) -> Sequence[AnalyticsBucket]:
        """Buckets with ``day_from <= day <= day_to``."""
        stmt = select(AnalyticsBucket).where(
            AnalyticsBucket.tenant_id == tenant_id,
            AnalyticsBucket.day >= day_from,
            AnalyticsBucket.day <= day_to,
        )
        if channel:
            stmt = stmt.where(AnalyticsBucket.channel == channel)
        if type_code:
            stmt = stmt.where(AnalyticsBucket.type_code == type_code)
        stmt = stmt.order_by(
            AnalyticsBucket.day, AnalyticsBucket.channel, AnalyticsBucket.type_code
        ).execution_options(populate_existing=True)

        result = await session.execute(stmt)
        items = result.scalars().all()

        self._lazy.debug(
            lambda: f"db.list_range({tenant_id=}, {day_from}..{day_to}) -> {len(items)} buckets"
        )
        return items


_template_repository: NotificationTemplateRepository | None = None
_preference_repository: RecipientPreferenceRepository | None = None
_tenant_config_repository: TenantConfigRepository | None = None
_queue_entry_repository: QueueEntryRepository | None = None
_event_repository: DeliveryEventRepository | None = None
_bucket_repository: AnalyticsBucketRepository | None = None
_compliance_repository: ComplianceEventRepository | None = None


def get_notification_template_repository() -> NotificationTemplateRepository:
    """Get NotificationTemplateRepository singleton instance."""
    global _template_repository
    if _template_repository is None:
        _template_repository = NotificationTemplateRepository()
    return _template_repository


def get_recipient_preference_repository() -> RecipientPreferenceRepository:
    """Get RecipientPreferenceRepository singleton instance."""
    global _preference_repository
    if _preference_repository is None:
        _preference_repository = RecipientPreferenceRepository()
    return _preference_repository


def get_tenant_config_repository() -> TenantConfigRepository:
    """Get TenantConfigRepository singleton instance."""
    global _tenant_config_repository
    if _tenant_config_repository is None:
        _tenant_config_repository = TenantConfigRepository()
    return _tenant_config_repository


def get_queue_entry_repository() -> QueueEntryRepository:
    """Get QueueEntryRepository singleton instance."""
    global _queue_entry_repository
    if _queue_entry_repository is None:
        _queue_entry_repository = QueueEntryRepository()
    return _queue_entry_repository


def get_delivery_event_repository() -> DeliveryEventRepository:
    """Get DeliveryEventRepository singleton instance."""
    global _event_repository
    if _event_repository is None:
        _event_repository = DeliveryEventRepository()
    return _event_repository


def get_analytics_bucket_repository() -> AnalyticsBucketRepository:
    """Get AnalyticsBucketRepository singleton instance."""
    global _bucket_repository
    if _bucket_repository is None:
        _bucket_repository = AnalyticsBucketRepository()
    return _bucket_repository


def get_compliance_event_repository() -> ComplianceEventRepository:
    """Get ComplianceEventRepository singleton instance."""
    global _compliance_repository
    if _compliance_repository is None:
        _compliance_repository = ComplianceEventRepository()
    return _compliance_repository


__all__ = [
    "AnalyticsBucketRepository",
    "ComplianceEventRepository",
    "DeliveryEventRepository",
    "NotificationTemplateRepository",
    "QueueEntryRepository",
    "RecipientPreferenceRepository",
    "TenantConfigRepository",
    "get_analytics_bucket_repository",
    "get_compliance_event_repository",
    "get_delivery_event_repository",
    "get_notification_template_repository",
    "get_queue_entry_repository",
    "get_recipient_preference_repository",
    "get_tenant_config_repository",
]
