"""Render every error the API can raise as a problem-details body.

Each response carries ``type`` (a slug clients branch on), ``title``,
``status``, ``detail``, ``instance`` (the request URL) and, when the
request-id middleware ran, ``request_id``. Handler-specific members such as
``entry_status`` or ``channel`` are merged in at the top level.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from notify_service.core.database import NotFoundError
from notify_service.core.exceptions import AppException
from notify_service.core.schemas import (
    ProblemDetails,
    ValidationErrorDetail,
    ValidationProblemDetails,
)
from notify_service.features.notifications.exceptions import (
    InvalidTransition,
    TemplateMissing,
    TemplateSyntaxInvalid,
)
from notify_service.infra.metrics.prometheus import http_errors_total

logger = logging.getLogger(__name__)

_MAX_DETAIL = 2000


def _respond(request: Request, problem: ProblemDetails, extra: dict[str, Any] | None = None) -> JSONResponse:
    http_errors_total.labels(error_type=problem.type, status=str(problem.status)).inc()

    body = problem.model_dump(exclude_none=True)
    if extra:
        body.update(extra)
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        body["request_id"] = request_id
    return JSONResponse(status_code=problem.status, content=jsonable_encoder(body))


def _problem(
    request: Request,
    status_code: int,
    type_: str,
    title: str,
    detail: str,
    *,
    instance: str | None = None,
) -> ProblemDetails:
    return ProblemDetails(
        type=type_,
        title=title,
        status=status_code,
        detail=detail[:_MAX_DETAIL],
        instance=instance or str(request.url),
    )


def _request_fields(request: Request) -> dict[str, Any]:
    return {
        "request_id": getattr(request.state, "request_id", None),
        "method": request.method,
        "path": request.url.path,
    }


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    logger.warning(
        "Request rejected: %s",
        exc.type,
        extra={**_request_fields(request), "status_code": exc.status_code, "detail": exc.detail},
    )
    problem = _problem(request, exc.status_code, exc.type, exc.title, exc.detail, instance=exc.instance)
    return _respond(request, problem, exc.extra)


async def invalid_transition_handler(request: Request, exc: InvalidTransition) -> JSONResponse:
    """The entry's current status forbids the requested operation (409)."""
    logger.info(
        "Rejected transition for entry in status %s",
        exc.status,
        extra={**_request_fields(request), "entry_id": exc.entry_id, "operation": "api.invalid_transition"},
    )
    problem = _problem(request, status.HTTP_409_CONFLICT, "invalid-transition", "Conflict", exc.message)
    return _respond(request, problem, {"entry_id": exc.entry_id, "entry_status": exc.status})


async def template_error_handler(request: Request, exc: TemplateMissing | TemplateSyntaxInvalid) -> JSONResponse:
    """Template lookup or parse failures surface as 422."""
    if isinstance(exc, TemplateMissing):
        type_ = "template-missing"
        extra = {"type_code": exc.type_code, "channel": exc.channel, "language": exc.language}
    else:
        type_ = "template-invalid"
        extra = {"field": exc.field}

    logger.warning("Template error: %s", type_, extra={**_request_fields(request), "detail": exc.message})
    problem = _problem(request, status.HTTP_422_UNPROCESSABLE_ENTITY, type_, "Validation Error", exc.message)
    return _respond(request, problem, extra)


async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    problem = _problem(request, status.HTTP_404_NOT_FOUND, "not-found", "Not Found", exc.message)
    return _respond(request, problem, {"model": exc.model_name})


def _validation_problem(request: Request, errors: list[dict[str, Any]], what: str) -> JSONResponse:
    details = [
        ValidationErrorDetail(
            field=".".join(str(part) for part in error["loc"]),
            message=error["msg"],
            type=error["type"],
            value=error.get("input"),
        )
        for error in errors
    ]
    logger.warning(
        "%s validation failed",
        what,
        extra={**_request_fields(request), "fields": [detail.field for detail in details]},
    )
    problem = ValidationProblemDetails(
        type="validation-error",
        title="Validation Error",
        status=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=f"{what} validation failed for {len(details)} field(s)",
        instance=str(request.url),
        errors=details,
    )
    return _respond(request, problem)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _validation_problem(request, list(exc.errors()), "Request")


async def pydantic_validation_exception_handler(request: Request, exc: PydanticValidationError) -> JSONResponse:
    """Models validated inside a service rather than by request parsing."""
    return _validation_problem(request, list(exc.errors()), "Data")


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled %s",
        type(exc).__name__,
        extra=_request_fields(request),
        exc_info=exc,
    )
    problem = _problem(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal-error",
        "Internal Server Error",
        "An unexpected error occurred while processing your request",
    )
    return _respond(request, problem)


def configure_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(InvalidTransition, invalid_transition_handler)
    app.add_exception_handler(TemplateMissing, template_error_handler)
    app.add_exception_handler(TemplateSyntaxInvalid, template_error_handler)
    app.add_exception_handler(NotFoundError, not_found_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, pydantic_validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = ["configure_exception_handlers"]
