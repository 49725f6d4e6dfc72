"""HTTP middleware: request ids, request metrics and optional CORS."""

from __future__ import annotations

import logging
import time
import uuid
from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from notify_service.core.settings import get_app_settings
from notify_service.infra.logging import clear_log_context, set_log_context
from notify_service.infra.metrics.prometheus import http_request_duration_seconds, http_requests_total

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Request-ID or mint one, and log under it.

    The id lands on ``request.state`` for problem-details bodies and is
    echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        set_log_context(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            clear_log_context()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class TimingMiddleware(BaseHTTPMiddleware):
    """Count and time requests per route template, not per concrete path."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        route = getattr(request.scope.get("route"), "path", "unmatched")
        http_requests_total.labels(method=request.method, endpoint=route, status=str(response.status_code)).inc()
        http_request_duration_seconds.labels(method=request.method, endpoint=route).observe(elapsed)
        response.headers["X-Process-Time"] = f"{elapsed:.6f}"
        return response


def configure_middleware(app: FastAPI) -> None:
    """Install middleware; the last one added runs first, so ids are bound before timing."""
    origins = get_app_settings().cors_origins
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=[REQUEST_ID_HEADER],
            max_age=3600,
        )
        logger.info("CORS enabled for %d origin(s)", len(origins))

    app.add_middleware(TimingMiddleware)
    app.add_middleware(RequestIDMiddleware)
