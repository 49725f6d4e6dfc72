from __future__ import annotations

import random
from dataclasses import dataclass

# Past this exponent every realistic base overshoots any cap
_MAX_EXPONENT = 64


@dataclass(frozen=True, slots=True)
class RetryStrategy:
    """Exponential backoff schedule.

    ``delay_for(attempt)`` uses 1-based attempts: attempt 1 waits
    ``initial_delay``, attempt n waits ``initial_delay * base^(n-1)``,
    never more than ``max_delay``. Without jitter the schedule is
    monotonically non-decreasing, which is what the dispatch queue and
    webhook engine rely on.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    exceptions: tuple[type[Exception], ...] = (Exception,)
    stop_after_delay: float | None = None

    def should_retry(self, exception: Exception) -> bool:
        return isinstance(exception, self.exceptions)

    def delay_for(self, attempt: int) -> float:
        if self.initial_delay <= 0:
            return 0.0
        exponent = max(attempt, 1) - 1
        if exponent > _MAX_EXPONENT:
            delay = self.max_delay
        else:
            delay = min(self.initial_delay * self.exponential_base**exponent, self.max_delay)
        if self.jitter:
            # Full-range jitter around the nominal delay, still capped
            delay = min(delay * random.uniform(0.5, 1.5), self.max_delay)
        return delay

    def is_exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_attempts
