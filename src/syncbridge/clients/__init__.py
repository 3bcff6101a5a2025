"""Collaborators of the sync flows: protocols and default implementations."""

from syncbridge.clients.base import (
    AuthenticationError,
    CanonicalClient,
    ClientError,
    LegacyClient,
    NotFoundError,
    SchemaValidator,
    TransformationError,
    Transformer,
    ValidationResult,
)
from syncbridge.clients.canonical import CanonicalStoreClient
from syncbridge.clients.legacy import LegacyApiClient
from syncbridge.clients.transform import PatientTransformer
from syncbridge.clients.validation import LegacyRecordValidator

__all__ = [
    # Contracts
    "CanonicalClient",
    "LegacyClient",
    "SchemaValidator",
    "Transformer",
    "ValidationResult",
    # Errors
    "AuthenticationError",
    "ClientError",
    "NotFoundError",
    "TransformationError",
    # Implementations
    "CanonicalStoreClient",
    "LegacyApiClient",
    "LegacyRecordValidator",
    "PatientTransformer",
]
