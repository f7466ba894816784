"""Bounded retry with exponential backoff for fallible network calls."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from assistant_action.errors import WorkflowValidationSkip

logger = logging.getLogger(__name__)

T = TypeVar("T")

# The only error that bypasses the remaining attempts.
_NON_RETRYABLE: tuple[type[BaseException], ...] = (WorkflowValidationSkip,)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry an operation with exponentially growing delays.

    Delay before attempt ``n + 1`` is ``base_delay * backoff_factor ** (n - 1)``
    capped at ``max_delay``, optionally scaled by a random factor in
    ``[1 - jitter, 1 + jitter]``.
    """

    max_attempts: int = 3
    base_delay: float = 5.0
    max_delay: float = 20.0
    backoff_factor: float = 2.0
    jitter: float = 0.0

    def delay_for(self, attempt: int) -> float:
        """Return the wait after failed ``attempt`` (1-based)."""
        exponent = max(0, int(attempt) - 1)
        delay = min(max(0.0, self.base_delay) * (self.backoff_factor**exponent), self.max_delay)
        if self.jitter > 0:
            spread = min(self.jitter, 1.0)
            delay *= random.uniform(1.0 - spread, 1.0 + spread)
        return max(0.0, delay)

    def call(
        self,
        operation: Callable[[], T],
        *,
        description: str = "operation",
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        """Invoke *operation* until it succeeds or attempts run out."""
        attempts = max(1, int(self.max_attempts))
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                logger.debug("%s: attempt %s of %s", description, attempt, attempts)
                return operation()
            except _NON_RETRYABLE:
                raise
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "%s failed (attempt %s/%s): %s", description, attempt, attempts, exc
                )
                if attempt < attempts:
                    delay = self.delay_for(attempt)
                    logger.info("Retrying %s in %.1f seconds", description, delay)
                    sleep(delay)
        logger.error("%s failed after %s attempts", description, attempts)
        if last_error is None:
            raise RuntimeError(f"{description} failed without raising an error")
        raise last_error


def retry_with_backoff(
    operation: Callable[[], T],
    *,
    max_attempts: int = 3,
    base_delay: float = 5.0,
    max_delay: float = 20.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Shorthand for ``RetryPolicy(...).call(operation)``."""
    policy = RetryPolicy(max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay)
    return policy.call(operation, sleep=sleep)
