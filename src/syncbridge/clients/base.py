"""Collaborator contracts used by the sync flows.

This module provides:
- ClientError, NotFoundError, AuthenticationError: Outbound call failures
- TransformationError: Typed transformation failure
- ValidationResult: Outcome of schema validation
- LegacyClient, CanonicalClient, Transformer, SchemaValidator: Protocols
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    import httpx

    from syncbridge.core.models import CanonicalResource, LegacyRecord


class ClientError(Exception):
    """Base exception for outbound client errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(ClientError):
    """Resource not found (404)."""


class AuthenticationError(ClientError):
    """Authentication failed (401/403)."""


class TransformationError(Exception):
    """Transformation between legacy and canonical formats failed.

    Attributes:
        source_system: System the data came from.
        target_system: System the data was being transformed for.
        error_code: Machine-readable failure code.
    """

    def __init__(
        self,
        message: str,
        source_system: str | None = None,
        target_system: str | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.source_system = source_system
        self.target_system = target_system
        self.error_code = error_code

    def __str__(self) -> str:
        text = super().__str__()
        if self.source_system and self.target_system:
            text += f" [{self.source_system} -> {self.target_system}]"
        if self.error_code:
            text += f" (Error Code: {self.error_code})"
        return text


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a legacy record."""

    valid: bool
    error_message: str | None = None


class LegacyClient(Protocol):
    """Access to client records in the legacy system."""

    def get_client(self, client_id: str) -> LegacyRecord:
        """Fetch a record. Raises NotFoundError if absent."""
        ...

    def create_client(self, record: LegacyRecord) -> LegacyRecord:
        """Create a record and return the stored version."""
        ...

    def update_client(self, client_id: str, record: LegacyRecord) -> LegacyRecord:
        """Replace a record and return the stored version."""
        ...

    def get_all(self, server_version: int) -> list[dict[str, Any]]:
        """List client summaries changed after a server version."""
        ...

    def close(self) -> None:
        ...


class CanonicalClient(Protocol):
    """Access to resources and subscriptions in the canonical store."""

    def create(self, resource: CanonicalResource) -> CanonicalResource:
        """Create a resource and return it with its server id and meta."""
        ...

    def update(self, resource: CanonicalResource) -> CanonicalResource:
        ...

    def get(self, resource_type: str, resource_id: str) -> CanonicalResource:
        """Fetch a resource. Raises NotFoundError if absent."""
        ...

    def search_updated_after(
        self,
        resource_type: str,
        since: datetime,
        params: dict[str, str] | None = None,
    ) -> list[CanonicalResource]:
        """Find resources of a type with meta.lastUpdated after since."""
        ...

    def create_subscription(self, subscription: dict[str, Any]) -> dict[str, Any]:
        ...

    def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        ...

    def update_subscription(self, subscription: dict[str, Any]) -> dict[str, Any]:
        ...

    def delete_subscription(self, subscription_id: str) -> None:
        ...

    def close(self) -> None:
        ...


class Transformer(Protocol):
    """Bidirectional mapping between legacy records and canonical resources.

    Both methods raise TransformationError on failure.
    """

    def legacy_to_canonical(self, record: LegacyRecord) -> CanonicalResource:
        ...

    def canonical_to_legacy(self, resource: CanonicalResource) -> LegacyRecord:
        ...


class SchemaValidator(Protocol):
    """Structural validation of legacy records."""

    def validate(self, record: LegacyRecord) -> ValidationResult:
        ...


def error_detail(response: httpx.Response) -> Any:
    """Extract an error message from a JSON or text error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return body.get("detail") or body.get("message") or body
    return body
