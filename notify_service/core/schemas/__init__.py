"""Shared API schemas."""

from .problem_details import ProblemDetails, ValidationErrorDetail, ValidationProblemDetails

__all__ = ["ProblemDetails", "ValidationErrorDetail", "ValidationProblemDetails"]
