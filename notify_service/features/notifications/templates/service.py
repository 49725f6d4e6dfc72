"""Template resolution and management."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from notify_service.core.services import BaseService
from notify_service.features.notifications.exceptions import TemplateMissing
from notify_service.features.notifications.models import NotificationTemplate
from notify_service.features.notifications.repository import (
    NotificationTemplateRepository,
    get_notification_template_repository,
)
from notify_service.features.notifications.templates.renderer import (
    RenderResult,
    TemplateRenderer,
    get_template_renderer,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from notify_service.core.database import SearchResult
    from notify_service.features.notifications.schemas import TemplateUpsert


_CONTENT_FIELDS = (
    "category",
    "requires_consent",
    "subject",
    "body",
    "html_body",
    "title",
    "data",
    "action_url",
    "description",
)


def pick_template(
    candidates: Sequence[NotificationTemplate],
    tenant_id: str | None,
    language: str,
    default_language: str,
) -> NotificationTemplate | None:
    """Choose the template to use from active tenant and global candidates.

    Order:
        1. tenant template in the requested language
        2. tenant template in the tenant's default language
        3. global template in the requested language
        4. global template in the default language
        5. any global template for the type/channel (lowest language tag)
    """
    tenant_rows = {t.language: t for t in candidates if tenant_id and t.tenant_id == tenant_id}
    global_rows = {t.language: t for t in candidates if t.tenant_id is None}

    for rows in (tenant_rows, global_rows):
        for lang in (language, default_language):
            if lang in rows:
                return rows[lang]
    if global_rows:
        return global_rows[min(global_rows)]
    return None


class TemplateService(BaseService):
    """Resolves, renders and manages notification templates.

    Tenant templates shadow global ones (``tenant_id`` NULL) for the same
    type code and channel. There is exactly one row per
    (tenant, type_code, channel, language); upserts replace it in place and
    bump its version.
    """

    def __init__(
        self,
        repository: NotificationTemplateRepository | None = None,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        super().__init__()
        self._repository = repository or get_notification_template_repository()
        self._renderer = renderer or get_template_renderer()

    @property
    def renderer(self) -> TemplateRenderer:
        return self._renderer

    async def resolve(
        self,
        session: AsyncSession,
        tenant_id: str | None,
        type_code: str,
        channel: str,
        *,
        language: str,
        default_language: str,
    ) -> NotificationTemplate:
        """Find the active template for a tenant, type, channel and language.

        Raises:
            TemplateMissing: If neither the tenant nor the global defaults
                have an active template for the type/channel.
        """
        candidates = await self._repository.find_candidates(session, tenant_id, type_code, channel)
        template = pick_template(candidates, tenant_id, language, default_language)
        if template is None:
            self.logger.warning(
                "No template resolves",
                extra={
                    "tenant_id": tenant_id,
                    "type_code": type_code,
                    "channel": channel,
                    "language": language,
                    "operation": "template.resolve",
                },
            )
            raise TemplateMissing(
                tenant_id=tenant_id, type_code=type_code, channel=channel, language=language
            )

        self._lazy.debug(
            lambda: f"Resolved {type_code}/{channel}/{language} -> "
            f"{'tenant' if template.tenant_id else 'global'} template {template.id} ({template.language})"
        )
        return template

    def render(self, template: NotificationTemplate, variables: dict[str, Any]) -> RenderResult:
        return self._renderer.render(template, variables)

    async def upsert(
        self,
        session: AsyncSession,
        tenant_id: str | None,
        data: TemplateUpsert,
    ) -> NotificationTemplate:
        """Create or replace the template for the payload's key.

        Raises:
            TemplateSyntaxInvalid: If any source field does not parse.
        """
        fields: dict[str, Any] = {name: getattr(data, name) for name in _CONTENT_FIELDS}
        fields["category"] = data.category.value
        candidate = NotificationTemplate(
            tenant_id=tenant_id,
            type_code=data.type_code,
            channel=data.channel.value,
            language=data.language,
            is_active=data.is_active,
            **fields,
        )
        self._renderer.validate(candidate)

        existing = await self._repository.get_by_key(
            session, tenant_id, data.type_code, data.channel.value, data.language
        )
        if existing is None:
            candidate.version = 1
            template = await self._repository.create(session, candidate)
            action = "created"
        else:
            for name, value in fields.items():
                setattr(existing, name, value)
            existing.is_active = data.is_active
            existing.version += 1
            await session.flush()
            await session.refresh(existing)
            template = existing
            action = "updated"

        self.logger.info(
            f"Template {action}",
            extra={
                "tenant_id": tenant_id,
                "template_id": str(template.id),
                "type_code": template.type_code,
                "channel": template.channel,
                "language": template.language,
                "version": template.version,
                "operation": "template.upsert",
            },
        )
        return template

    async def get(
        self, session: AsyncSession, tenant_id: str, template_id: UUID
    ) -> NotificationTemplate | None:
        """Get a template visible to the tenant (its own or a global one)."""
        template = await self._repository.get(session, template_id)
        if template is None or template.tenant_id not in (tenant_id, None):
            return None
        return template

    async def list_templates(
        self,
        session: AsyncSession,
        tenant_id: str,
        *,
        include_global: bool = True,
        type_code: str | None = None,
        channel: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[NotificationTemplate]:
        stmt = self._repository.list_statement(
            tenant_id, include_global=include_global, type_code=type_code, channel=channel
        )
        return await self._repository.search(session, stmt, limit=limit, offset=offset)

    async def set_active(
        self, session: AsyncSession, template: NotificationTemplate, *, active: bool
    ) -> NotificationTemplate:
        template.is_active = active
        await session.flush()
        self.logger.info(
            "Template activated" if active else "Template deactivated",
            extra={
                "tenant_id": template.tenant_id,
                "template_id": str(template.id),
                "operation": "template.set_active",
            },
        )
        return template

    async def delete(self, session: AsyncSession, template: NotificationTemplate) -> None:
        await self._repository.delete(session, template)

    async def preview(
        self,
        session: AsyncSession,
        tenant_id: str,
        type_code: str,
        channel: str,
        variables: dict[str, Any],
        *,
        language: str,
        default_language: str,
    ) -> tuple[NotificationTemplate, RenderResult]:
        """Resolve and render without queuing anything.

        Raises:
            TemplateMissing: If no template resolves.
        """
        template = await self.resolve(
            session,
            tenant_id,
            type_code,
            channel,
            language=language,
            default_language=default_language,
        )
        return template, self._renderer.render(template, variables)


_service: TemplateService | None = None


def get_template_service() -> TemplateService:
    """Get or create the singleton TemplateService instance."""
    global _service
    if _service is None:
        _service = TemplateService()
    return _service


__all__ = ["TemplateService", "get_template_service", "pick_template"]
