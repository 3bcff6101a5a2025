"""Ingestion flow: legacy records into the canonical store.

Pipeline per record:
1. Validate against the legacy schema (fatal, never queued)
2. Transform to a canonical resource (failure is queued for reprocessing)
3. Store through the resilient canonical client (failure is queued)
4. Audit, record the canonical id, mark the stored version as processed

Single-flight: one pipeline per legacy client id at a time. A request for
an id that is already in flight joins the running attempt and receives the
same IngestionResult.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from syncbridge.audit.chain import SYSTEM_CONTEXT, AuditContext
from syncbridge.core.models import LegacyRecord
from syncbridge.core.types import CANONICAL_SYSTEM, LEGACY_SYSTEM, ResourceKind
from syncbridge.queue.message import QueueMessage
from syncbridge.sync.pool import PoolStoppedError
from syncbridge.sync.types import (
    IngestionResult,
    IngestionRetryError,
    StorageFailedError,
    SyncError,
    SyncErrorCode,
    TransformationFailedError,
    UnsupportedResourceError,
    ValidationFailedError,
)

if TYPE_CHECKING:
    from syncbridge.audit.service import AuditService
    from syncbridge.clients.base import CanonicalClient, SchemaValidator, Transformer
    from syncbridge.core.models import CanonicalResource
    from syncbridge.queue.reliable_queue import ReliableQueue
    from syncbridge.sync.conflicts import ProcessedTracker
    from syncbridge.sync.pool import BoundedPool

logger = logging.getLogger(__name__)

INGESTION_RETRY = "INGESTION_RETRY"
PERFORMANCE_THRESHOLD_MS = 5000
UNKNOWN_CLIENT_ID = "unknown"


@dataclass
class _Attempt:
    """Mutable step flags of one pipeline run."""

    transaction_id: str
    client_id: str
    validation_passed: bool = False
    transformation_completed: bool = False
    storage_completed: bool = False


class IngestionFlow:
    """Runs legacy records through validate, transform and store.

    Usage:
        flow = IngestionFlow(validator, transformer, canonical, audit, queue, tracker)
        result = flow.process(record)
        if not result.success:
            print(result.error_message)
    """

    def __init__(
        self,
        validator: SchemaValidator,
        transformer: Transformer,
        canonical_client: CanonicalClient,
        audit: AuditService,
        queue: ReliableQueue,
        tracker: ProcessedTracker,
        pool: BoundedPool | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the flow.

        Args:
            validator: Legacy schema validator.
            transformer: Legacy/canonical transformer.
            canonical_client: Canonical store client (normally the resilient wrapper).
            audit: Audit service.
            queue: Queue receiving failed records for reprocessing.
            tracker: Processed-version tracker shared with reverse sync.
            pool: Worker pool for submit/process_batch. Without one, those
                variants run in the calling thread.
            clock: Monotonic time source in seconds.
        """
        self._validator = validator
        self._transformer = transformer
        self._canonical = canonical_client
        self._audit = audit
        self._queue = queue
        self._tracker = tracker
        self._pool = pool
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight: dict[str, Future[IngestionResult]] = {}

    # === Single-flight ===

    def is_in_flight(self, client_id: str) -> bool:
        """Check if an ingestion for a legacy client id is running."""
        with self._lock:
            return client_id in self._in_flight

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def _join_or_start(self, client_id: str) -> tuple[Future[IngestionResult], bool]:
        with self._lock:
            existing = self._in_flight.get(client_id)
            if existing is not None:
                logger.info("Ingestion already in flight for client: %s, joining", client_id)
                return existing, False
            future: Future[IngestionResult] = Future()
            self._in_flight[client_id] = future
            return future, True

    def _complete(
        self,
        future: Future[IngestionResult],
        record: LegacyRecord,
        context: AuditContext,
        queue_on_failure: bool,
        transaction_id: str | None,
    ) -> IngestionResult:
        client_id = record.client_id or UNKNOWN_CLIENT_ID
        try:
            result = self._run(record, context, queue_on_failure, transaction_id)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                if self._in_flight.get(client_id) is future:
                    del self._in_flight[client_id]

    # === Entry points ===

    def process(
        self,
        record: LegacyRecord,
        context: AuditContext = SYSTEM_CONTEXT,
    ) -> IngestionResult:
        """Ingest one record in the calling thread.

        Args:
            record: Legacy record to ingest.
            context: Acting user for audit entries.

        Returns:
            The outcome; never raises for pipeline failures.
        """
        future, owner = self._join_or_start(record.client_id or UNKNOWN_CLIENT_ID)
        if not owner:
            return future.result()
        return self._complete(future, record, context, True, None)

    def submit(
        self,
        record: LegacyRecord,
        context: AuditContext = SYSTEM_CONTEXT,
    ) -> Future[IngestionResult]:
        """Ingest one record on the worker pool.

        Returns:
            Future of the outcome. Joins the in-flight future if the record's
            client id is already being ingested.
        """
        future, owner = self._join_or_start(record.client_id or UNKNOWN_CLIENT_ID)
        if not owner:
            return future

        if self._pool is None:
            self._complete(future, record, context, True, None)
            return future

        try:
            task = self._pool.submit(self._complete, future, record, context, True, None)
        except PoolStoppedError as e:
            self._abandon(future, record, str(e))
            return future

        def on_task_done(task: Future[IngestionResult]) -> None:
            if task.cancelled():
                self._abandon(future, record, "Ingestion cancelled by pool shutdown")

        task.add_done_callback(on_task_done)
        return future

    def _abandon(
        self, future: Future[IngestionResult], record: LegacyRecord, reason: str
    ) -> None:
        """Resolve a single-flight future whose pipeline never ran."""
        client_id = record.client_id or UNKNOWN_CLIENT_ID
        with self._lock:
            if self._in_flight.get(client_id) is future:
                del self._in_flight[client_id]
        logger.warning("Ingestion not run for client %s: %s", client_id, reason)
        if future.done():
            return
        future.set_result(
            IngestionResult(
                transaction_id=str(uuid.uuid4()),
                success=False,
                duration_ms=0.0,
                error_message=reason,
                error_code=SyncErrorCode.INTERNAL_ERROR,
                client_id=record.client_id,
            )
        )

    def process_batch(
        self,
        records: list[LegacyRecord] | None,
        context: AuditContext = SYSTEM_CONTEXT,
    ) -> list[IngestionResult]:
        """Ingest several records concurrently.

        Returns:
            One outcome per record, in input order.
        """
        if not records:
            logger.warning("Empty or null record list provided for batch ingestion")
            return []

        logger.info("Starting batch ingestion for %d records", len(records))
        started = self._clock()
        futures = [self.submit(record, context) for record in records]
        results = [future.result() for future in futures]

        succeeded = sum(1 for result in results if result.success)
        logger.info(
            "Batch ingestion completed: total=%d, success=%d, failed=%d, duration=%.0fms",
            len(results),
            succeeded,
            len(results) - succeeded,
            (self._clock() - started) * 1000,
        )
        return results

    def reprocess(self, message: QueueMessage) -> None:
        """Queue processor for INGESTION_RETRY messages.

        Runs the same pipeline without queueing again.

        Raises:
            IngestionRetryError: If the attempt failed, so the consumer
                applies retry accounting.
        """
        record = LegacyRecord.from_dict(json.loads(message.payload))
        logger.info(
            "Reprocessing queued ingestion: transaction_id=%s, attempt=%d",
            message.id,
            message.retry_count,
        )
        future, owner = self._join_or_start(record.client_id or UNKNOWN_CLIENT_ID)
        if owner:
            result = self._complete(future, record, SYSTEM_CONTEXT, False, message.id)
        else:
            result = future.result()

        if not result.success:
            raise IngestionRetryError(
                result.error_message or "Ingestion failed",
                result.error_code or SyncErrorCode.INTERNAL_ERROR,
            )

    # === Pipeline ===

    def _run(
        self,
        record: LegacyRecord,
        context: AuditContext,
        queue_on_failure: bool,
        transaction_id: str | None,
    ) -> IngestionResult:
        attempt = _Attempt(
            transaction_id or str(uuid.uuid4()),
            record.client_id or UNKNOWN_CLIENT_ID,
        )
        started = self._clock()
        logger.info("Starting ingestion flow: transaction_id=%s", attempt.transaction_id)

        try:
            self._validate(record, attempt)
            resource = self._transform(record, attempt)
            stored = self._store(resource, attempt, context)
        except Exception as e:
            duration_ms = (self._clock() - started) * 1000
            error = (
                e if isinstance(e, SyncError) else SyncError(str(e), SyncErrorCode.INTERNAL_ERROR)
            )
            return self._on_failure(record, attempt, error, duration_ms, context, queue_on_failure)

        duration_ms = (self._clock() - started) * 1000
        self._tracker.mark(stored.id, stored.last_updated or datetime.now(UTC))
        self._audit.log_transformation(
            LEGACY_SYSTEM,
            CANONICAL_SYSTEM,
            "INGESTION",
            attempt.client_id,
            stored.id,
            True,
            "Ingestion completed successfully",
            context=context,
        )
        if duration_ms > PERFORMANCE_THRESHOLD_MS:
            logger.warning(
                "Ingestion exceeded performance threshold: %.0fms > %dms",
                duration_ms,
                PERFORMANCE_THRESHOLD_MS,
            )
            self._audit.log_performance_alert(
                "INGESTION", stored.id, duration_ms, PERFORMANCE_THRESHOLD_MS, context=context
            )

        logger.info(
            "Ingestion flow completed successfully: transaction_id=%s, duration=%.0fms",
            attempt.transaction_id,
            duration_ms,
        )
        return IngestionResult(
            transaction_id=attempt.transaction_id,
            success=True,
            duration_ms=duration_ms,
            canonical_id=stored.id,
            validation_passed=True,
            transformation_completed=True,
            storage_completed=True,
            client_id=record.client_id,
        )

    def _validate(self, record: LegacyRecord, attempt: _Attempt) -> None:
        logger.debug("Validating legacy record")
        try:
            result = self._validator.validate(record)
        except Exception as e:
            raise ValidationFailedError(f"Legacy record validation failed: {e}") from e
        if not result.valid:
            raise ValidationFailedError(
                f"Legacy record validation failed: {result.error_message}"
            )
        attempt.validation_passed = True

    def _transform(self, record: LegacyRecord, attempt: _Attempt) -> CanonicalResource:
        logger.debug("Transforming legacy record to canonical resource")
        try:
            resource = self._transformer.legacy_to_canonical(record)
        except Exception as e:
            raise TransformationFailedError(f"Transformation failed: {e}") from e
        if resource is None:
            raise TransformationFailedError("Transformer returned no resource")
        attempt.transformation_completed = True
        return resource

    def _store(
        self,
        resource: CanonicalResource,
        attempt: _Attempt,
        context: AuditContext,
    ) -> CanonicalResource:
        if resource.kind != ResourceKind.PATIENT:
            raise UnsupportedResourceError(resource.resource_type)

        logger.debug("Storing canonical resource")
        try:
            stored = self._canonical.create(resource)
        except Exception as e:
            self._audit.log_canonical_operation(
                "CREATE",
                resource.resource_type,
                None,
                False,
                f"Failed to create {resource.resource_type}: {e}",
                context=context,
            )
            raise StorageFailedError(f"Canonical storage failed: {e}") from e

        if not stored.id:
            raise StorageFailedError("Canonical store did not return a resource id")

        attempt.storage_completed = True
        self._audit.log_canonical_operation(
            "CREATE",
            stored.resource_type,
            stored.id,
            True,
            f"{stored.resource_type} resource created via ingestion flow",
            context=context,
        )
        return stored

    def _on_failure(
        self,
        record: LegacyRecord,
        attempt: _Attempt,
        error: SyncError,
        duration_ms: float,
        context: AuditContext,
        queue_on_failure: bool,
    ) -> IngestionResult:
        logger.error(
            "Ingestion flow failed: transaction_id=%s, duration=%.0fms, code=%s, error=%s",
            attempt.transaction_id,
            duration_ms,
            error.code.value,
            error,
        )
        self._audit.log_transformation(
            LEGACY_SYSTEM,
            CANONICAL_SYSTEM,
            "INGESTION",
            attempt.client_id,
            None,
            False,
            f"Ingestion failed: {error}",
            context=context,
        )
        if queue_on_failure and error.code.is_queueable:
            self._queue_for_retry(record, attempt, error, context)

        return IngestionResult(
            transaction_id=attempt.transaction_id,
            success=False,
            duration_ms=duration_ms,
            error_message=str(error),
            error_code=error.code,
            validation_passed=attempt.validation_passed,
            transformation_completed=attempt.transformation_completed,
            storage_completed=attempt.storage_completed,
            client_id=record.client_id,
        )

    def _queue_for_retry(
        self,
        record: LegacyRecord,
        attempt: _Attempt,
        error: SyncError,
        context: AuditContext,
    ) -> None:
        logger.info("Queuing failed ingestion for retry: transaction_id=%s", attempt.transaction_id)
        try:
            message = QueueMessage(
                payload=json.dumps(record.to_dict()),
                message_type=INGESTION_RETRY,
                id=attempt.transaction_id,
            )
            self._queue.send_to_retry(message, str(error))
        except Exception as e:
            logger.exception(
                "Failed to queue ingestion for retry: transaction_id=%s", attempt.transaction_id
            )
            self._audit.log_sync_failure(
                "QUEUE_FAILED",
                "INGESTION",
                attempt.client_id,
                f"Failed to queue for retry: {e}; original error: {error}",
                source_system=LEGACY_SYSTEM,
                context=context,
            )
