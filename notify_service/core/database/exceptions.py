"""Repository errors.

Services translate these into problem-details responses; the app also maps
an unhandled ``NotFoundError`` to 404.
"""

from __future__ import annotations

from typing import Any


class RepositoryError(Exception):
    """A repository operation failed. ``details`` is safe to log."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = ", ".join(f"{key}={value!r}" for key, value in self.details.items())
        return f"{self.message} ({context})"


class NotFoundError(RepositoryError):
    """No ``model_name`` row matched ``identifier`` (e.g. ``{"id": ...}``)."""

    def __init__(self, model_name: str, identifier: dict[str, Any]) -> None:
        self.model_name = model_name
        self.identifier = identifier
        lookup = ", ".join(f"{key}={value!r}" for key, value in identifier.items())
        super().__init__(f"{model_name} not found with {lookup}", {"model": model_name, **identifier})


__all__ = ["NotFoundError", "RepositoryError"]
