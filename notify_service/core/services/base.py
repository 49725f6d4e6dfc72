"""Base class for business logic services."""

from __future__ import annotations

import logging

from notify_service.infra.logging import get_lazy_logger


class BaseService:
    """Base class for the feature services.

    Loggers:
        - self.logger: standard logger for INFO/WARNING/ERROR
        - self._lazy: lazy logger for DEBUG (lambda messages, skipped when disabled)

    Example:
        class TemplateService(BaseService):
            async def resolve(self, session, tenant_id, type_code, channel):
                self._lazy.debug(lambda: f"resolving {type_code}/{channel}")
                ...
    """

    def __init__(self) -> None:
        name = f"{self.__class__.__module__}.{self.__class__.__name__}"
        self.logger = logging.getLogger(name)
        self._lazy = get_lazy_logger(name)
