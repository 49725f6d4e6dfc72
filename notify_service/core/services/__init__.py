"""Service layer base class.

    from notify_service.core.services import BaseService
"""

from notify_service.core.services.base import BaseService

__all__ = ["BaseService"]
