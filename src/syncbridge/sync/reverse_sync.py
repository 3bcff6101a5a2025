"""Reverse sync flow: canonical changes into the legacy system.

Pipeline per changed resource:
1. Transform canonical to legacy
2. Circular-update check (skip own ingestion echoes without calling legacy)
3. Look up the legacy record: create when absent, update when present
4. Consistency check against the previously known legacy record (warning)
5. Mark the version processed and audit

Only Patient resources are supported; anything else fails immediately
without side effects. Reverse sync of one resource id is serialized.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import CancelledError, Future
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from syncbridge.audit.chain import SYSTEM_CONTEXT, AuditContext
from syncbridge.clients.base import NotFoundError
from syncbridge.core.types import CANONICAL_SYSTEM, LEGACY_SYSTEM, ResourceKind
from syncbridge.sync.pool import PoolStoppedError
from syncbridge.sync.types import (
    OperationType,
    ReverseSyncResult,
    StorageFailedError,
    SyncError,
    SyncErrorCode,
    TransformationFailedError,
)

if TYPE_CHECKING:
    from syncbridge.audit.service import AuditService
    from syncbridge.clients.base import LegacyClient, Transformer
    from syncbridge.core.models import CanonicalResource, LegacyRecord
    from syncbridge.sync.conflicts import ProcessedTracker
    from syncbridge.sync.pool import BoundedPool

logger = logging.getLogger(__name__)

UNKNOWN_RESOURCE_ID = "unknown"


@dataclass
class _Attempt:
    """Mutable step state of one reverse sync run."""

    transaction_id: str
    resource_type: str
    canonical_id: str | None
    transformation_completed: bool = False
    legacy_storage_completed: bool = False
    operation_type: OperationType | None = None
    consistency_issues: list[str] = field(default_factory=list)


def find_consistency_issues(transformed: LegacyRecord, known: LegacyRecord | None) -> list[str]:
    """Compare names of the transformed record with the known legacy record.

    Returns:
        Human-readable mismatches (empty when consistent or nothing is known).
    """
    if known is None:
        return []

    issues = []
    pairs = (
        ("First name", transformed.demographics.first_name, known.demographics.first_name),
        ("Last name", transformed.demographics.last_name, known.demographics.last_name),
    )
    for label, canonical_value, legacy_value in pairs:
        if canonical_value != legacy_value:
            issues.append(
                f"{label} mismatch: {CANONICAL_SYSTEM}={canonical_value}, "
                f"{LEGACY_SYSTEM}={legacy_value}"
            )
    return issues


class ReverseSyncFlow:
    """Writes canonical-side changes back to the legacy system.

    Usage:
        flow = ReverseSyncFlow(transformer, legacy, audit, tracker, pool)
        detector.register_listener("Patient", flow.handle_change)
    """

    def __init__(
        self,
        transformer: Transformer,
        legacy_client: LegacyClient,
        audit: AuditService,
        tracker: ProcessedTracker,
        pool: BoundedPool | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the flow.

        Args:
            transformer: Legacy/canonical transformer.
            legacy_client: Legacy API client (normally the resilient wrapper).
            audit: Audit service.
            tracker: Processed-version tracker shared with ingestion.
            pool: Worker pool for submit/process_batch/handle_change.
            clock: Monotonic time source in seconds.
        """
        self._transformer = transformer
        self._legacy = legacy_client
        self._audit = audit
        self._tracker = tracker
        self._pool = pool
        self._clock = clock
        self._lock = threading.Lock()
        self._in_progress: dict[str, int] = {}

    def is_in_progress(self, resource_id: str) -> bool:
        """Check if a reverse sync for a canonical resource id is running."""
        with self._lock:
            return self._in_progress.get(resource_id, 0) > 0

    @property
    def in_progress_count(self) -> int:
        with self._lock:
            return len(self._in_progress)

    # === Entry points ===

    def process(
        self,
        resource: CanonicalResource,
        context: AuditContext = SYSTEM_CONTEXT,
    ) -> ReverseSyncResult:
        """Reverse-sync one changed resource in the calling thread.

        Returns:
            The outcome; never raises for pipeline failures.
        """
        transaction_id = str(uuid.uuid4())
        started = self._clock()
        logger.info(
            "Starting reverse sync flow: transaction_id=%s, resource_type=%s, resource_id=%s",
            transaction_id,
            resource.resource_type,
            resource.id,
        )

        if resource.kind != ResourceKind.PATIENT:
            logger.warning(
                "Reverse sync does not support resource type: %s", resource.resource_type
            )
            return ReverseSyncResult(
                transaction_id=transaction_id,
                success=False,
                duration_ms=(self._clock() - started) * 1000,
                resource_type=resource.resource_type,
                canonical_id=resource.id,
                error_message=f"Unsupported resource type: {resource.resource_type or 'unknown'}",
                error_code=SyncErrorCode.UNSUPPORTED_RESOURCE_TYPE,
            )

        resource_id = resource.id or UNKNOWN_RESOURCE_ID
        with self._lock:
            self._in_progress[resource_id] = self._in_progress.get(resource_id, 0) + 1
        try:
            with self._tracker.locked(resource_id):
                return self._run(resource, transaction_id, started, context)
        finally:
            with self._lock:
                remaining = self._in_progress.get(resource_id, 1) - 1
                if remaining > 0:
                    self._in_progress[resource_id] = remaining
                else:
                    self._in_progress.pop(resource_id, None)

    def submit(
        self,
        resource: CanonicalResource,
        context: AuditContext = SYSTEM_CONTEXT,
    ) -> Future[ReverseSyncResult]:
        """Reverse-sync one changed resource on the worker pool."""
        if self._pool is None:
            future: Future[ReverseSyncResult] = Future()
            future.set_result(self.process(resource, context))
            return future
        return self._pool.submit(self.process, resource, context)

    def process_batch(
        self,
        resources: list[CanonicalResource] | None,
        context: AuditContext = SYSTEM_CONTEXT,
    ) -> list[ReverseSyncResult]:
        """Reverse-sync several resources concurrently.

        Returns:
            One outcome per resource, in input order.
        """
        if not resources:
            logger.warning("Empty or null resource list provided for batch reverse sync")
            return []

        logger.info("Starting batch reverse sync for %d resources", len(resources))
        futures = [self._submit_for_batch(resource, context) for resource in resources]
        results = [
            self._outcome(resource, future) for resource, future in zip(resources, futures)
        ]
        succeeded = sum(1 for result in results if result.success)
        logger.info(
            "Batch reverse sync completed: total=%d, success=%d, failed=%d",
            len(results),
            succeeded,
            len(results) - succeeded,
        )
        return results

    def handle_change(self, resource: CanonicalResource) -> None:
        """Change listener: schedule reverse sync of a changed resource."""
        logger.info(
            "Handling %s change notification: resource_id=%s",
            resource.resource_type,
            resource.id,
        )
        try:
            future = self.submit(resource)
        except PoolStoppedError:
            logger.warning("Reverse sync pool stopped, dropping change for: %s", resource.id)
            return
        future.add_done_callback(self._log_outcome)

    @staticmethod
    def _log_outcome(future: Future[ReverseSyncResult]) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("Error handling change notification: %s", error)
            return
        result = future.result()
        if not result.success:
            logger.warning(
                "Change processing failed: resource_id=%s, error=%s",
                result.canonical_id,
                result.error_message,
            )

    def _submit_for_batch(
        self, resource: CanonicalResource, context: AuditContext
    ) -> Future[ReverseSyncResult]:
        try:
            return self.submit(resource, context)
        except PoolStoppedError:
            future: Future[ReverseSyncResult] = Future()
            future.cancel()
            return future

    @staticmethod
    def _outcome(
        resource: CanonicalResource, future: Future[ReverseSyncResult]
    ) -> ReverseSyncResult:
        try:
            return future.result()
        except CancelledError:
            logger.warning("Reverse sync cancelled by pool shutdown: %s", resource.id)
            return ReverseSyncResult(
                transaction_id=str(uuid.uuid4()),
                success=False,
                resource_type=resource.resource_type,
                canonical_id=resource.id,
                error_message="Reverse sync cancelled by pool shutdown",
                error_code=SyncErrorCode.INTERNAL_ERROR,
            )

    # === Pipeline ===

    def _run(
        self,
        resource: CanonicalResource,
        transaction_id: str,
        started: float,
        context: AuditContext,
    ) -> ReverseSyncResult:
        attempt = _Attempt(transaction_id, resource.resource_type, resource.id)
        try:
            record = self._transform(resource, attempt)

            check = self._tracker.check(resource)
            if check.has_conflict:
                self._audit.log_conflict(
                    resource.id,
                    check.conflict_type.value,
                    check.resolution.value,
                    check.reason,
                    context=context,
                )
                logger.info(
                    "Skipping reverse sync due to conflict resolution: transaction_id=%s",
                    transaction_id,
                )
                return ReverseSyncResult(
                    transaction_id=transaction_id,
                    success=True,
                    skipped=True,
                    duration_ms=(self._clock() - started) * 1000,
                    resource_type=resource.resource_type,
                    canonical_id=resource.id,
                    conflict_detected=True,
                    conflict_resolution=check.resolution.value,
                    transformation_completed=True,
                )

            known = self._store(record, attempt)
            attempt.consistency_issues = find_consistency_issues(record, known)
            if attempt.consistency_issues:
                logger.warning("Data consistency issues detected: %s", attempt.consistency_issues)
                self._audit.log_consistency_warning(
                    resource.id, attempt.consistency_issues, context=context
                )
        except Exception as e:
            duration_ms = (self._clock() - started) * 1000
            error = (
                e if isinstance(e, SyncError) else SyncError(str(e), SyncErrorCode.INTERNAL_ERROR)
            )
            return self._on_failure(resource, attempt, error, duration_ms, context)

        if resource.id:
            self._tracker.mark(resource.id, resource.last_updated or datetime.now(UTC))
        self._audit.log_transformation(
            CANONICAL_SYSTEM,
            LEGACY_SYSTEM,
            "REVERSE_SYNC",
            resource.id,
            record.client_id,
            True,
            f"Reverse sync completed successfully ({attempt.operation_type.value})",
            context=context,
        )

        duration_ms = (self._clock() - started) * 1000
        logger.info(
            "Reverse sync flow completed successfully: transaction_id=%s, duration=%.0fms",
            transaction_id,
            duration_ms,
        )
        return replace(
            self._result_from(attempt, success=True, duration_ms=duration_ms),
            legacy_client_id=record.client_id,
            consistency_verified=not attempt.consistency_issues,
        )

    def _transform(self, resource: CanonicalResource, attempt: _Attempt) -> LegacyRecord:
        logger.debug("Transforming canonical resource to legacy format")
        try:
            record = self._transformer.canonical_to_legacy(resource)
        except Exception as e:
            raise TransformationFailedError(f"Transformation failed: {e}") from e
        if record is None or not record.client_id:
            raise TransformationFailedError("Transformation produced no legacy client id")
        attempt.transformation_completed = True
        return record

    def _store(self, record: LegacyRecord, attempt: _Attempt) -> LegacyRecord | None:
        """Create or update the legacy record.

        Returns:
            The legacy record as it was before the write, or None if it was created.
        """
        client_id = record.client_id
        try:
            try:
                existing = self._legacy.get_client(client_id)
            except NotFoundError:
                logger.debug("Client not found in legacy system, will create: %s", client_id)
                existing = None

            if existing is not None:
                logger.info("Updating existing legacy client: %s", client_id)
                self._legacy.update_client(client_id, record)
                attempt.operation_type = OperationType.UPDATE
            else:
                logger.info("Creating new legacy client: %s", client_id)
                self._legacy.create_client(record)
                attempt.operation_type = OperationType.CREATE
        except Exception as e:
            raise StorageFailedError(
                f"Legacy storage failed: {e}", SyncErrorCode.LEGACY_STORAGE_FAILED
            ) from e

        attempt.legacy_storage_completed = True
        return existing

    def _on_failure(
        self,
        resource: CanonicalResource,
        attempt: _Attempt,
        error: SyncError,
        duration_ms: float,
        context: AuditContext,
    ) -> ReverseSyncResult:
        logger.error(
            "Reverse sync flow failed: transaction_id=%s, duration=%.0fms, code=%s, error=%s",
            attempt.transaction_id,
            duration_ms,
            error.code.value,
            error,
        )
        self._audit.log_transformation(
            CANONICAL_SYSTEM,
            LEGACY_SYSTEM,
            "REVERSE_SYNC",
            resource.id,
            None,
            False,
            f"Reverse sync failed: {error}",
            context=context,
        )
        self._audit.log_sync_failure(
            "REVERSE_SYNC_FAILED",
            "REVERSE_SYNC",
            resource.id,
            f"Reverse sync requires manual intervention: {error}",
            source_system=CANONICAL_SYSTEM,
            context=context,
        )
        return replace(
            self._result_from(attempt, success=False, duration_ms=duration_ms),
            error_message=str(error),
            error_code=error.code,
        )

    @staticmethod
    def _result_from(attempt: _Attempt, success: bool, duration_ms: float) -> ReverseSyncResult:
        return ReverseSyncResult(
            transaction_id=attempt.transaction_id,
            success=success,
            duration_ms=duration_ms,
            resource_type=attempt.resource_type,
            canonical_id=attempt.canonical_id,
            transformation_completed=attempt.transformation_completed,
            legacy_storage_completed=attempt.legacy_storage_completed,
            operation_type=attempt.operation_type,
            consistency_issues=tuple(attempt.consistency_issues),
        )
