"""Errors raised by the in-process retry decorator."""

from __future__ import annotations


class RetryError(Exception):
    """The wrapped call kept failing until the attempt or time budget ran out.

    Attributes:
        last_exception: The error from the final attempt.
        attempts: Attempts made, including the first call.
        elapsed: Seconds between the first call and giving up.
    """

    def __init__(self, last_exception: Exception, attempts: int, elapsed: float = 0.0) -> None:
        self.last_exception = last_exception
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(
            f"Gave up after {attempts} attempts in {elapsed:.1f}s. Last error: {last_exception}"
        )


__all__ = ["RetryError"]
