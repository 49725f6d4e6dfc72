"""Error response bodies (RFC 7807 problem details).

``type`` is a short slug such as ``template-missing`` or
``invalid-transition`` rather than a URI; clients branch on it.
Handlers may merge extra members (``entry_status``, ``channel``,
``request_id``) into the serialized body.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProblemDetails(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    type: str = Field(default="about:blank", min_length=1, max_length=200, description="Problem slug")
    title: str = Field(min_length=1, max_length=200, description="Summary shared by every problem of this type")
    status: int = Field(ge=100, le=599, description="HTTP status code")
    detail: str | None = Field(default=None, max_length=2000, description="What went wrong this time")
    instance: str | None = Field(default=None, max_length=500, description="Request URL that failed")


class ValidationErrorDetail(BaseModel):
    """One rejected field; ``field`` is a dotted path such as ``body.channel``."""

    field: str
    message: str
    type: str
    value: Any = None


class ValidationProblemDetails(ProblemDetails):
    errors: list[ValidationErrorDetail] = Field(default_factory=list)


__all__ = ["ProblemDetails", "ValidationErrorDetail", "ValidationProblemDetails"]
