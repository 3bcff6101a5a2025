"""Outbound clients wrapped with circuit breaking and retry.

This module provides:
- ResilientLegacyClient: LegacyClient routed through breaker and retry
- ResilientCanonicalClient: CanonicalClient routed through breaker and retry
- is_retryable: Default retryability predicate for outbound calls

Every call runs as retry(breaker(call)): each attempt passes through the
breaker, so an opening breaker stops the retry loop with CircuitOpenError.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar

from syncbridge.clients.base import AuthenticationError, NotFoundError
from syncbridge.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerMetrics,
    CircuitOpenError,
)
from syncbridge.resilience.retry import RetriesExhaustedError, RetryExecutor

if TYPE_CHECKING:
    from syncbridge.clients.base import CanonicalClient, LegacyClient
    from syncbridge.core.models import CanonicalResource, LegacyRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that a retry cannot fix
NON_RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (
    NotFoundError,
    AuthenticationError,
    CircuitOpenError,
    ValueError,
)


def is_retryable(error: Exception) -> bool:
    """Check if an outbound call failure is worth retrying."""
    return not isinstance(error, NON_RETRYABLE_EXCEPTIONS)


class _ResilientClient:
    """Shared breaker/retry plumbing for the resilient wrappers."""

    def __init__(self, breaker: CircuitBreaker, retry: RetryExecutor) -> None:
        self._breaker = breaker
        self._retry = retry

    def _execute(self, operation_name: str, operation: Callable[[], T]) -> T:
        try:
            return self._retry.execute(lambda: self._breaker.execute(operation))
        except CircuitOpenError:
            logger.error(
                "Circuit breaker open for %s operation: %s", self._breaker.name, operation_name
            )
            raise
        except RetriesExhaustedError:
            logger.error(
                "All retry attempts failed for %s operation: %s",
                self._breaker.name,
                operation_name,
            )
            raise

    def circuit_breaker_metrics(self) -> CircuitBreakerMetrics:
        """Get a snapshot of the breaker protecting this client."""
        return self._breaker.metrics()

    def reset_circuit_breaker(self) -> None:
        """Force the breaker protecting this client back to CLOSED."""
        self._breaker.reset()


class ResilientLegacyClient(_ResilientClient):
    """Legacy client with resilience patterns."""

    def __init__(
        self,
        client: LegacyClient,
        breaker: CircuitBreaker,
        retry: RetryExecutor,
    ) -> None:
        super().__init__(breaker, retry)
        self._client = client

    def get_client(self, client_id: str) -> LegacyRecord:
        return self._execute("getClient", lambda: self._client.get_client(client_id))

    def create_client(self, record: LegacyRecord) -> LegacyRecord:
        return self._execute("createClient", lambda: self._client.create_client(record))

    def update_client(self, client_id: str, record: LegacyRecord) -> LegacyRecord:
        return self._execute(
            "updateClient", lambda: self._client.update_client(client_id, record)
        )

    def get_all(self, server_version: int) -> list[dict[str, Any]]:
        return self._execute("getAll", lambda: self._client.get_all(server_version))

    def close(self) -> None:
        self._client.close()


class ResilientCanonicalClient(_ResilientClient):
    """Canonical store client with resilience patterns."""

    def __init__(
        self,
        client: CanonicalClient,
        breaker: CircuitBreaker,
        retry: RetryExecutor,
    ) -> None:
        super().__init__(breaker, retry)
        self._client = client

    def create(self, resource: CanonicalResource) -> CanonicalResource:
        return self._execute(
            f"create{resource.resource_type}", lambda: self._client.create(resource)
        )

    def update(self, resource: CanonicalResource) -> CanonicalResource:
        return self._execute(
            f"update{resource.resource_type}", lambda: self._client.update(resource)
        )

    def get(self, resource_type: str, resource_id: str) -> CanonicalResource:
        return self._execute(
            f"get{resource_type}", lambda: self._client.get(resource_type, resource_id)
        )

    def search_updated_after(
        self,
        resource_type: str,
        since: datetime,
        params: dict[str, str] | None = None,
    ) -> list[CanonicalResource]:
        return self._execute(
            f"search{resource_type}",
            lambda: self._client.search_updated_after(resource_type, since, params),
        )

    def create_subscription(self, subscription: dict[str, Any]) -> dict[str, Any]:
        return self._execute(
            "createSubscription", lambda: self._client.create_subscription(subscription)
        )

    def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._execute(
            "getSubscription", lambda: self._client.get_subscription(subscription_id)
        )

    def update_subscription(self, subscription: dict[str, Any]) -> dict[str, Any]:
        return self._execute(
            "updateSubscription", lambda: self._client.update_subscription(subscription)
        )

    def delete_subscription(self, subscription_id: str) -> None:
        self._execute(
            "deleteSubscription", lambda: self._client.delete_subscription(subscription_id)
        )

    def close(self) -> None:
        self._client.close()
