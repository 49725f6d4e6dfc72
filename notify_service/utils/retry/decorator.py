"""Async retry decorator for in-process calls (database connect at startup).

Queue entries and webhook deliveries never retry in-process: a failed attempt
goes back to the queue with a ``next_eligible_at`` computed by the same
``RetryStrategy``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from functools import wraps
from typing import TYPE_CHECKING, ParamSpec, TypeVar

from notify_service.infra.metrics.prometheus import retry_attempts_total, retry_exhausted_total

from .exceptions import RetryError
from .strategies import RetryStrategy

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def retry(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    stop_after_delay: float | None = None,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Retry an async callable with exponential backoff.

    Args:
        max_attempts: Total calls, including the first.
        initial_delay: Sleep after the first failure, in seconds.
        max_delay: Upper bound for any single sleep.
        exponential_base: Growth factor between sleeps.
        jitter: Randomize each sleep to spread reconnect storms.
        exceptions: Only these exception types are retried; others propagate.
        stop_after_delay: Give up once this many seconds have passed.

    Raises:
        RetryError: When the attempt or time budget is spent.
    """
    strategy = RetryStrategy(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max_delay,
        exponential_base=exponential_base,
        jitter=jitter,
        exceptions=exceptions,
        stop_after_delay=stop_after_delay,
    )

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        name = getattr(func, "__name__", type(func).__name__)

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            started = time.monotonic()
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not strategy.should_retry(e):
                        raise

                    elapsed = time.monotonic() - started
                    out_of_time = stop_after_delay is not None and elapsed >= stop_after_delay
                    if out_of_time or strategy.is_exhausted(attempt):
                        retry_exhausted_total.labels(function=name).inc()
                        logger.error(
                            "Retry budget exhausted",
                            extra={
                                "function": name,
                                "attempts": attempt,
                                "elapsed_seconds": round(elapsed, 3),
                                "error": str(e),
                                "operation": "retry.exhausted",
                            },
                        )
                        raise RetryError(e, attempt, elapsed) from e

                    delay = strategy.delay_for(attempt)
                    retry_attempts_total.labels(function=name).inc()
                    logger.warning(
                        "Retrying after failure",
                        extra={
                            "function": name,
                            "attempt": attempt,
                            "max_attempts": max_attempts,
                            "delay_seconds": round(delay, 3),
                            "error": str(e),
                            "operation": "retry.sleep",
                        },
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
