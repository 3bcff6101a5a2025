"""Shared types for the sync flows.

This module provides:
- SyncError and subclasses: Step-specific pipeline failures
- SyncErrorCode: Codes carried by every failure outcome
- OperationType: Legacy-side write performed by reverse sync
- IngestionResult, ReverseSyncResult: Immutable per-invocation outcomes
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class SyncErrorCode(str, Enum):
    """Failure kinds of the sync pipelines."""

    VALIDATION_FAILED = "VALIDATION_FAILED"
    TRANSFORMATION_FAILED = "TRANSFORMATION_FAILED"
    STORAGE_FAILED = "STORAGE_FAILED"
    LEGACY_STORAGE_FAILED = "LEGACY_STORAGE_FAILED"
    UNSUPPORTED_RESOURCE_TYPE = "UNSUPPORTED_RESOURCE_TYPE"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def is_queueable(self) -> bool:
        """Check if a failure of this kind is worth reprocessing from the queue."""
        return self in (SyncErrorCode.TRANSFORMATION_FAILED, SyncErrorCode.STORAGE_FAILED)


class SyncError(Exception):
    """Base exception for sync pipeline failures.

    Attributes:
        code: Failure kind.
    """

    def __init__(self, message: str, code: SyncErrorCode) -> None:
        self.code = code
        super().__init__(message)


class ValidationFailedError(SyncError):
    """Record rejected by the schema validator. Never queued."""

    def __init__(self, message: str) -> None:
        super().__init__(message, SyncErrorCode.VALIDATION_FAILED)


class TransformationFailedError(SyncError):
    """Transformer failed or returned nothing."""

    def __init__(self, message: str) -> None:
        super().__init__(message, SyncErrorCode.TRANSFORMATION_FAILED)


class StorageFailedError(SyncError):
    """Write to the target system failed."""

    def __init__(
        self, message: str, code: SyncErrorCode = SyncErrorCode.STORAGE_FAILED
    ) -> None:
        super().__init__(message, code)


class UnsupportedResourceError(SyncError):
    """Resource kind is not handled by the flow."""

    def __init__(self, resource_type: str) -> None:
        self.resource_type = resource_type
        super().__init__(
            f"Unsupported resource type: {resource_type or 'unknown'}",
            SyncErrorCode.UNSUPPORTED_RESOURCE_TYPE,
        )


class IngestionRetryError(SyncError):
    """Raised by queue reprocessing so the consumer applies retry accounting."""

    def __init__(self, message: str, code: SyncErrorCode) -> None:
        super().__init__(message, code)


class OperationType(str, Enum):
    """Write performed on the legacy system."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"


@dataclass(frozen=True)
class IngestionResult:
    """Outcome of one ingestion (legacy to canonical).

    Attributes:
        transaction_id: Unique id of this invocation (also the queue message id).
        success: Whether the record was stored.
        duration_ms: Wall-clock duration of the pipeline.
        canonical_id: Id assigned by the canonical store.
        error_message: Failure description.
        error_code: Failure kind.
        validation_passed: Step 1 completed.
        transformation_completed: Step 2 completed.
        storage_completed: Step 3 completed.
        client_id: Legacy primary id of the record.
    """

    transaction_id: str
    success: bool
    duration_ms: float
    canonical_id: str | None = None
    error_message: str | None = None
    error_code: SyncErrorCode | None = None
    validation_passed: bool = False
    transformation_completed: bool = False
    storage_completed: bool = False
    client_id: str | None = None


@dataclass(frozen=True)
class ReverseSyncResult:
    """Outcome of one reverse sync (canonical to legacy).

    Attributes:
        transaction_id: Unique id of this invocation.
        success: Whether the flow ended without error (a skip is a success).
        skipped: Whether the legacy system was deliberately not contacted.
        duration_ms: Wall-clock duration of the pipeline.
        resource_type: Type of the changed canonical resource.
        canonical_id: Id of the changed canonical resource.
        legacy_client_id: Primary id of the legacy record written.
        error_message: Failure description.
        error_code: Failure kind.
        conflict_detected: Whether a conflict was found.
        conflict_resolution: How it was resolved ("SKIP").
        transformation_completed: Step 1 completed.
        legacy_storage_completed: Step 3 completed.
        operation_type: Legacy write performed.
        consistency_verified: Whether the consistency check found no issues.
        consistency_issues: Mismatches found by the consistency check.
    """

    transaction_id: str
    success: bool
    skipped: bool = False
    duration_ms: float = 0.0
    resource_type: str | None = None
    canonical_id: str | None = None
    legacy_client_id: str | None = None
    error_message: str | None = None
    error_code: SyncErrorCode | None = None
    conflict_detected: bool = False
    conflict_resolution: str | None = None
    transformation_completed: bool = False
    legacy_storage_completed: bool = False
    operation_type: OperationType | None = None
    consistency_verified: bool = False
    consistency_issues: tuple[str, ...] = field(default_factory=tuple)
