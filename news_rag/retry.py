"""
Retry Policy

Reusable retry with exponential backoff for network-calling components.

Before attempt ``n`` the policy waits::

    base_delay + (2 ** (n - 1) * backoff_unit if n > 1 else 0)

so the first attempt only pays the base rate-limit delay and later
attempts add exponential backoff.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


def always_retry(error: Exception) -> bool:
    return True


@dataclass
class RetryPolicy:
    """
    Retry configuration shared by network-calling components.

    Attributes:
        max_attempts: Total number of attempts (first call included)
        base_delay: Seconds waited before every attempt
        backoff_unit: Seconds multiplied by 2^(attempt-1) for attempts after the first
        is_retryable: Predicate deciding whether an error may be retried
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_unit: float = 1.0
    is_retryable: Callable[[Exception], bool] = always_retry

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.backoff_unit < 0:
            raise ValueError("Retry delays must be non-negative")

    def delay_before(self, attempt: int) -> float:
        """
        Seconds to wait before the given (1-based) attempt.

        Args:
            attempt: Attempt number, starting at 1

        Returns:
            Delay in seconds
        """
        backoff = (2 ** (attempt - 1)) * self.backoff_unit if attempt > 1 else 0.0
        return self.base_delay + backoff

    def call(
        self,
        func: Callable[..., Any],
        *args,
        description: str = "operation",
        max_attempts: Optional[int] = None,
        **kwargs
    ) -> Any:
        """
        Invoke ``func`` until it succeeds, fails with a non-retryable error,
        or the attempt cap is reached.

        Args:
            func: Callable to invoke
            *args: Positional arguments for ``func``
            description: Label used in log messages
            max_attempts: Override the policy's attempt cap for this call
            **kwargs: Keyword arguments for ``func``

        Returns:
            Whatever ``func`` returns

        Raises:
            Exception: The non-retryable error, or the last error once attempts are exhausted
        """
        attempts = max_attempts or self.max_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            delay = self.delay_before(attempt)
            if delay > 0:
                logger.debug(f"Waiting {delay:.2f}s before {description} attempt {attempt}")
                time.sleep(delay)

            try:
                result = func(*args, **kwargs)
                if attempt > 1:
                    logger.info(f"{description} succeeded on attempt {attempt}")
                return result

            except Exception as e:
                last_error = e
                logger.warning(f"{description} attempt {attempt}/{attempts} failed: {e}")

                if not self.is_retryable(e):
                    raise

        logger.error(f"All {attempts} {description} attempts failed")
        raise last_error
