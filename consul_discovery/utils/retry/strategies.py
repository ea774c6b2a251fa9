from __future__ import annotations

import random
from collections.abc import Callable


class RetryStrategy:
    """Exponential backoff with optional jitter.

    Unlike a bounded retry policy there is no attempt limit: callers that poll
    forever ask for the delay of their n-th consecutive failure and reset the
    counter themselves after a success. ``max_exponent`` keeps the power
    finite for callers that fail for a long time.
    """

    def __init__(
        self,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        jitter_range: tuple[float, float] = (0.5, 1.5),
        exceptions: tuple[type[Exception], ...] = (Exception,),
        retry_if: Callable[[Exception], bool] | None = None,
        max_exponent: int | None = None,
    ) -> None:
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.jitter_range = jitter_range
        self.exceptions = exceptions
        self.retry_if = retry_if
        self.max_exponent = max_exponent

    def should_retry(self, exception: Exception) -> bool:
        if self.retry_if is not None:
            return self.retry_if(exception)
        return isinstance(exception, self.exceptions)

    def calculate_delay(self, attempt: int) -> float:
        """Delay before the retry following ``attempt`` consecutive failures (0-based)."""
        if self.max_exponent is not None:
            attempt = min(attempt, self.max_exponent)
        delay = min(self.initial_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            low, high = self.jitter_range
            delay = min(delay * random.uniform(low, high), self.max_delay)
        return delay
