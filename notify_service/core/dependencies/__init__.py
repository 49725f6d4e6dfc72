"""FastAPI dependencies shared by feature routers.

Usage:
    from notify_service.core.dependencies import DbSession, TenantId

    @router.get("/items")
    async def list_items(session: DbSession, tenant_id: TenantId):
        ...
"""

from .database import DbSession, get_db_session
from .tenant import TenantId, get_tenant_id

__all__ = ["DbSession", "TenantId", "get_db_session", "get_tenant_id"]
