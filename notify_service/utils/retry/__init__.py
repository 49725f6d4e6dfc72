"""Backoff schedules and the async retry decorator."""

from .decorator import retry
from .exceptions import RetryError
from .strategies import RetryStrategy

__all__ = ["RetryError", "RetryStrategy", "retry"]
