"""Tenant resolution for API requests.

Authentication happens upstream; by the time a request reaches this
service the gateway has put the calling tenant in a header
(``AppSettings.tenant_header``, ``X-Tenant-ID`` by default).
"""

from __future__ import annotations

import logging
import re
from typing import Annotated

from fastapi import Depends, Request

from notify_service.core.exceptions import BadRequestException
from notify_service.core.settings import get_app_settings
from notify_service.infra.logging import set_log_context

logger = logging.getLogger(__name__)

_TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}$")


def get_tenant_id(request: Request) -> str:
    """Return the calling tenant id and bind it into the log context.

    Raises:
        BadRequestException: If the header is missing or malformed.
    """
    header = get_app_settings().tenant_header
    tenant_id = request.headers.get(header, "").strip()

    if not tenant_id:
        raise BadRequestException(
            detail=f"Missing {header} header",
            type="tenant-missing",
            extra={"header": header},
        )
    if not _TENANT_ID_PATTERN.match(tenant_id):
        logger.info(
            "Rejected malformed tenant id",
            extra={"header": header, "operation": "tenant.resolve"},
        )
        raise BadRequestException(
            detail=f"Malformed {header} header",
            type="tenant-invalid",
            extra={"header": header},
        )

    set_log_context(tenant_id=tenant_id)
    return tenant_id


TenantId = Annotated[str, Depends(get_tenant_id)]
