"""Health check endpoints.

- GET /health/live - The process is up
- GET /health/ready - The database answers
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text

from notify_service.core.dependencies import DbSession
from notify_service.core.settings import get_app_settings

router = APIRouter(prefix="/health", tags=["health"])

logger = logging.getLogger(__name__)


class LivenessResponse(BaseModel):
    status: str
    service: str
    version: str


class ReadinessResponse(BaseModel):
    status: str
    database: str
    latency_ms: float | None = None


@router.get("/live", response_model=LivenessResponse, summary="Liveness check")
async def live() -> LivenessResponse:
    settings = get_app_settings()
    return LivenessResponse(status="ok", service=settings.service_name, version=settings.version)


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    responses={503: {"description": "Database unavailable"}},
)
async def ready(session: DbSession) -> ReadinessResponse | JSONResponse:
    start = time.perf_counter()
    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(
            "Readiness check failed", extra={"error": str(e), "operation": "health.ready"}
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=ReadinessResponse(status="unavailable", database="down").model_dump(),
        )
    latency_ms = round((time.perf_counter() - start) * 1000, 2)
    return ReadinessResponse(status="ok", database="up", latency_ms=latency_ms)
