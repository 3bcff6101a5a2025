"""Retry logic with bounded exponential backoff.

This module provides:
- RetryPolicy: Backoff configuration with a pluggable retryability predicate
- RetryExecutor: Runs an operation under a policy
- RetriesExhaustedError: Raised when every attempt failed
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 32.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


class RetriesExhaustedError(Exception):
    """All retry attempts failed.

    Attributes:
        name: Name of the retried operation or dependency.
        attempts: Number of attempts made.
        last_error: The final failure.
    """

    def __init__(self, name: str, attempts: int, last_error: BaseException) -> None:
        self.name = name
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"All retry attempts failed for: {name} ({last_error})")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff configuration.

    Attributes:
        max_attempts: Total attempts including the first one.
        initial_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound for any single delay, in seconds.
        backoff_multiplier: Growth factor between consecutive delays.
        retry_condition: Predicate deciding whether an error is retryable.
            None retries every error.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    initial_delay: float = DEFAULT_INITIAL_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    retry_condition: Callable[[Exception], bool] | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def delay_for(self, attempt: int) -> float:
        """Get the delay after a failed attempt.

        Args:
            attempt: 1-based number of the attempt that just failed.

        Returns:
            Seconds to wait before the next attempt.
        """
        delay = self.initial_delay * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay)

    def is_retryable(self, error: Exception) -> bool:
        """Check if an error should be retried."""
        if self.retry_condition is None:
            return True
        return self.retry_condition(error)


class RetryExecutor:
    """Executes operations with bounded exponential backoff.

    Usage:
        executor = RetryExecutor("FHIR", RetryPolicy(max_attempts=5))
        result = executor.execute(lambda: client.create(resource))
    """

    def __init__(
        self,
        name: str,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the executor.

        Args:
            name: Name used in logs and in RetriesExhaustedError.
            policy: Backoff configuration (defaults if None).
            sleep: Sleep function, replaceable in tests.
        """
        self._name = name
        self._policy = policy or RetryPolicy()
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self._name

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def execute(self, operation: Callable[[], T]) -> T:
        """Run an operation, retrying retryable failures.

        Args:
            operation: Zero-argument callable.

        Returns:
            Result of the first successful attempt.

        Raises:
            RetriesExhaustedError: If max_attempts attempts all failed.
            Exception: A non-retryable error, re-raised unchanged.
        """
        max_attempts = self._policy.max_attempts
        attempt = 1

        while True:
            try:
                result = operation()
                if attempt > 1:
                    logger.info("Operation %s succeeded on attempt %d", self._name, attempt)
                return result
            except Exception as e:
                if not self._policy.is_retryable(e):
                    logger.warning("Non-retryable error for %s: %s", self._name, e)
                    raise
                if attempt >= max_attempts:
                    logger.error("All %d retry attempts failed for %s", max_attempts, self._name)
                    raise RetriesExhaustedError(self._name, max_attempts, e) from e

                delay = self._policy.delay_for(attempt)
                logger.warning(
                    "Attempt %d/%d failed for %s: %s. Retrying in %.3fs...",
                    attempt,
                    max_attempts,
                    self._name,
                    e,
                    delay,
                )
                self._sleep(delay)
                attempt += 1
