"""Resilience primitives for outbound calls.

Components:
- **CircuitBreaker**: Short-circuits calls to an unhealthy dependency
- **RetryExecutor**: Bounded exponential-backoff retries
- **ResilientLegacyClient / ResilientCanonicalClient**: Clients whose every
  call runs through both
"""

from syncbridge.resilience.circuit_breaker import (
    DEFAULT_COOLDOWN,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_SUCCESS_THRESHOLD,
    CircuitBreaker,
    CircuitBreakerMetrics,
    CircuitOpenError,
)
from syncbridge.resilience.clients import (
    NON_RETRYABLE_EXCEPTIONS,
    ResilientCanonicalClient,
    ResilientLegacyClient,
    is_retryable,
)
from syncbridge.resilience.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_DELAY,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_DELAY,
    RetriesExhaustedError,
    RetryExecutor,
    RetryPolicy,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerMetrics",
    "CircuitOpenError",
    "DEFAULT_COOLDOWN",
    "DEFAULT_FAILURE_THRESHOLD",
    "DEFAULT_SUCCESS_THRESHOLD",
    # Retry
    "DEFAULT_BACKOFF_MULTIPLIER",
    "DEFAULT_INITIAL_DELAY",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_MAX_DELAY",
    "RetriesExhaustedError",
    "RetryExecutor",
    "RetryPolicy",
    # Clients
    "NON_RETRYABLE_EXCEPTIONS",
    "ResilientCanonicalClient",
    "ResilientLegacyClient",
    "is_retryable",
]
