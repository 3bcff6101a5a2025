"""Shared types for syncbridge.

This module defines enums and constants used by the sync flows, the change
detector and the webhook server.
"""

from __future__ import annotations

from enum import Enum

# System names used in audit entries and resource wrappers
LEGACY_SYSTEM = "UCS"
CANONICAL_SYSTEM = "FHIR"

# Provenance tag written on resources created by the ingestion flow
PROVENANCE_TAG_SYSTEM = "http://smartbridge.org/provenance"
INGESTION_TAG_CODE = "smart-bridge-ingestion"

# Tag codes that mark a canonical resource as produced by ingestion
INGESTION_ORIGIN_CODES = frozenset({INGESTION_TAG_CODE, LEGACY_SYSTEM})


class ResourceKind(str, Enum):
    """Canonical resource kinds handled by the sync flows.

    Every resource type string maps to exactly one kind. Types the flows
    cannot handle map to UNSUPPORTED instead of raising.
    """

    PATIENT = "Patient"
    UNSUPPORTED = "Unsupported"

    @classmethod
    def from_resource_type(cls, resource_type: str | None) -> ResourceKind:
        """Resolve a resource type name to its kind.

        Args:
            resource_type: FHIR resourceType value (e.g., "Patient").

        Returns:
            Matching kind, or UNSUPPORTED.
        """
        if resource_type == cls.PATIENT.value:
            return cls.PATIENT
        return cls.UNSUPPORTED

    @property
    def is_supported(self) -> bool:
        """Check if the sync flows handle this kind."""
        return self is not ResourceKind.UNSUPPORTED


class CircuitState(str, Enum):
    """State of a circuit breaker."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"
