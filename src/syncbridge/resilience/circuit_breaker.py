"""Circuit breaker protecting a single named outbound dependency.

This module provides:
- CircuitBreaker: CLOSED/OPEN/HALF_OPEN state machine around a callable
- CircuitBreakerMetrics: Snapshot of breaker state for observability
- CircuitOpenError: Raised when a call is rejected by an open breaker

State transitions:
    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN --(cooldown elapsed, next call)--> HALF_OPEN
    HALF_OPEN --(any failure)--> OPEN
    HALF_OPEN --(success_threshold consecutive successes)--> CLOSED
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from syncbridge.core.types import CircuitState

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default breaker configuration
DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_COOLDOWN = 30.0  # seconds
DEFAULT_SUCCESS_THRESHOLD = 3


class CircuitOpenError(Exception):
    """Call rejected because the circuit breaker is open."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Circuit breaker is open for: {name}")


@dataclass(frozen=True)
class CircuitBreakerMetrics:
    """Point-in-time view of a circuit breaker."""

    name: str
    state: CircuitState
    consecutive_failures: int
    consecutive_successes: int
    opened_at: float | None


class CircuitBreaker:
    """Thread-safe circuit breaker for one dependency.

    All state transitions happen under a single lock. The wrapped call
    itself runs outside the lock so concurrent callers are not serialized.

    Usage:
        breaker = CircuitBreaker("FHIR")
        patient = breaker.execute(lambda: client.get("Patient", "123"))
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown: float = DEFAULT_COOLDOWN,
        success_threshold: int = DEFAULT_SUCCESS_THRESHOLD,
        excluded_exceptions: tuple[type[BaseException], ...] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the circuit breaker.

        Args:
            name: Name of the protected dependency.
            failure_threshold: Consecutive failures before opening.
            cooldown: Seconds to stay open before allowing trial calls.
            success_threshold: Consecutive trial successes before closing.
            excluded_exceptions: Exceptions that propagate without counting
                as a failure (e.g., a "not found" answer from a healthy server).
            clock: Monotonic time source in seconds.
        """
        if failure_threshold < 1 or success_threshold < 1:
            raise ValueError("Breaker thresholds must be at least 1")

        self._name = name
        self._failure_threshold = failure_threshold
        self._cooldown = cooldown
        self._success_threshold = success_threshold
        self._excluded = excluded_exceptions
        self._clock = clock

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._opened_at: float | None = None

        logger.info(
            "Circuit breaker '%s' initialized: failure_threshold=%d, cooldown=%.1fs, "
            "success_threshold=%d",
            name,
            failure_threshold,
            cooldown,
            success_threshold,
        )

    @property
    def name(self) -> str:
        """Get the dependency name."""
        return self._name

    @property
    def state(self) -> CircuitState:
        """Get current state, moving OPEN to HALF_OPEN once cooldown elapsed."""
        with self._lock:
            self._check_cooldown()
            return self._state

    @property
    def consecutive_failures(self) -> int:
        """Get the current consecutive failure count."""
        with self._lock:
            return self._consecutive_failures

    @property
    def consecutive_successes(self) -> int:
        """Get the current consecutive trial success count."""
        with self._lock:
            return self._consecutive_successes

    def execute(self, operation: Callable[[], T]) -> T:
        """Run an operation through the breaker.

        Args:
            operation: Zero-argument callable performing the outbound call.

        Returns:
            Result of the operation.

        Raises:
            CircuitOpenError: If the breaker is open (operation not invoked).
            Exception: Whatever the operation raises.
        """
        with self._lock:
            self._check_cooldown()
            if self._state == CircuitState.OPEN:
                logger.warning("Circuit breaker '%s' is OPEN - rejecting call", self._name)
                raise CircuitOpenError(self._name)

        try:
            result = operation()
        except self._excluded:
            self._on_success()
            raise
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def reset(self) -> None:
        """Force the breaker back to CLOSED with zeroed counters."""
        with self._lock:
            self._transition(CircuitState.CLOSED)
            self._consecutive_failures = 0
            self._consecutive_successes = 0
            self._opened_at = None
        logger.info("Circuit breaker '%s' manually reset", self._name)

    def metrics(self) -> CircuitBreakerMetrics:
        """Get a snapshot of the breaker state."""
        with self._lock:
            self._check_cooldown()
            return CircuitBreakerMetrics(
                name=self._name,
                state=self._state,
                consecutive_failures=self._consecutive_failures,
                consecutive_successes=self._consecutive_successes,
                opened_at=self._opened_at,
            )

    def _check_cooldown(self) -> None:
        """Move OPEN to HALF_OPEN when the cooldown has elapsed. Lock held."""
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() >= self._opened_at + self._cooldown
        ):
            self._transition(CircuitState.HALF_OPEN)
            self._consecutive_successes = 0

    def _on_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._consecutive_successes += 1
                if self._consecutive_successes >= self._success_threshold:
                    self._transition(CircuitState.CLOSED)
                    self._consecutive_failures = 0
                    self._consecutive_successes = 0
                    self._opened_at = None
            elif self._state == CircuitState.CLOSED:
                self._consecutive_failures = 0

    def _on_failure(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._open()
            elif self._state == CircuitState.CLOSED:
                self._consecutive_failures += 1
                if self._consecutive_failures >= self._failure_threshold:
                    self._open()

    def _open(self) -> None:
        """Open the breaker and reset counters. Lock held."""
        self._transition(CircuitState.OPEN)
        self._opened_at = self._clock()
        self._consecutive_failures = 0
        self._consecutive_successes = 0

    def _transition(self, new_state: CircuitState) -> None:
        if self._state != new_state:
            logger.info(
                "Circuit breaker '%s' transitioning from %s to %s",
                self._name,
                self._state.value,
                new_state.value,
            )
            self._state = new_state
