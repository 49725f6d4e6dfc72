"""HTTP-facing errors raised by services and dependencies.

``app.exception_handlers`` renders any ``AppException`` as a problem-details
body: ``type`` becomes the problem slug and ``extra`` is merged into the
body, so keep ``extra`` JSON-friendly.
"""

from __future__ import annotations

from typing import Any, ClassVar

_TITLES = {
    400: "Bad Request",
    404: "Not Found",
    409: "Conflict",
    422: "Unprocessable Entity",
    429: "Too Many Requests",
    500: "Internal Server Error",
    503: "Service Unavailable",
}


class AppException(Exception):
    """Base for errors that map onto one HTTP status.

    Example:
        raise AppException(503, "Provider gateway unreachable", type="gateway-unavailable")
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",  # noqa: A002
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or _TITLES.get(status_code, "Error")
        self.instance = instance
        self.extra = extra or {}


class _FixedStatusException(AppException):
    status: ClassVar[int]
    default_type: ClassVar[str]
    default_title: ClassVar[str]

    def __init__(
        self,
        detail: str,
        type: str | None = None,  # noqa: A002
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            self.status,
            detail,
            type=type or self.default_type,
            title=self.default_title,
            instance=instance,
            extra=extra,
        )


class BadRequestException(_FixedStatusException):
    """Malformed request, e.g. a missing or invalid ``X-Tenant-ID`` header."""

    status = 400
    default_type = "bad-request"
    default_title = "Bad Request"


class NotFoundException(_FixedStatusException):
    """The resource does not exist for the calling tenant.

    Rows owned by another tenant are reported the same way.
    """

    status = 404
    default_type = "not-found"
    default_title = "Not Found"


class ValidationException(_FixedStatusException):
    """Input rejected at submission time; nothing was enqueued or published."""

    status = 422
    default_type = "validation-error"
    default_title = "Validation Error"


__all__ = [
    "AppException",
    "BadRequestException",
    "NotFoundException",
    "ValidationException",
]
