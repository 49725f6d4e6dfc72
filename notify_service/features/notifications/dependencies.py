"""FastAPI dependencies for the notifications feature.

Example usage:
    from notify_service.features.notifications.dependencies import NotificationServiceDep

    @router.post("/notifications")
    async def submit(
        payload: NotificationSubmit,
        session: DbSession,
        tenant_id: TenantId,
        service: NotificationServiceDep,
    ) -> SubmitResponse:
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from notify_service.features.notifications.analytics import (
    AnalyticsAggregator,
    get_analytics_aggregator,
)
from notify_service.features.notifications.service import (
    NotificationService,
    get_notification_service,
)
from notify_service.features.notifications.templates import (
    TemplateService,
    get_template_service,
)

NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
TemplateServiceDep = Annotated[TemplateService, Depends(get_template_service)]
AnalyticsAggregatorDep = Annotated[AnalyticsAggregator, Depends(get_analytics_aggregator)]

__all__ = ["AnalyticsAggregatorDep", "NotificationServiceDep", "TemplateServiceDep"]
