"""Bounded exponential backoff for transient store failures."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Tuple, Type, TypeVar

from datastore.ordered_store import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetriesExhaustedError(Exception):
    """The operation kept failing transiently until the attempt cap."""

    def __init__(self, attempts: int, last_error: Exception) -> None:
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 0.1
    max_delay: float = 5.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: Tuple[Type[Exception], ...] = (StoreUnavailableError, TimeoutError)

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds after the given failed attempt (1-indexed)."""
        delay = min(self.base_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += random.uniform(-delay * 0.25, delay * 0.25)
        return max(0.0, delay)

    def call(
        self,
        operation: Callable[[], T],
        sleep: Callable[[float], None] = time.sleep,
        **log_context: object,
    ) -> T:
        """Run ``operation``, retrying retryable failures.

        Non-retryable exceptions propagate immediately. After the last
        attempt a ``RetriesExhaustedError`` wraps the final failure.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except self.retryable_exceptions as exc:
                if attempt == self.max_attempts:
                    logger.error(
                        "Store retries exhausted",
                        extra={**log_context, "attempt": attempt, "reason": str(exc)},
                    )
                    raise RetriesExhaustedError(attempt, exc) from exc
                delay = self.delay_for(attempt)
                logger.warning(
                    "Transient store failure, retrying",
                    extra={
                        **log_context,
                        "attempt": attempt,
                        "delay_s": round(delay, 3),
                        "reason": str(exc),
                    },
                )
                sleep(delay)
        raise RuntimeError("max_attempts must be at least 1.")
