"""Sync orchestrator: the facade over both sync flows.

The orchestrator owns the two worker pools, wires reverse sync to change
detection and ingestion reprocessing to the queue, and shuts everything
down in order:

1. Stop change detection (no new reverse sync work)
2. Drain the ingestion and reverse sync pools within the timeout
3. Close the outbound clients
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from syncbridge.audit.chain import SYSTEM_CONTEXT, AuditContext
from syncbridge.core.config import ConcurrencySettings
from syncbridge.sync.conflicts import ProcessedTracker
from syncbridge.sync.ingestion import INGESTION_RETRY, IngestionFlow
from syncbridge.sync.pool import BoundedPool
from syncbridge.sync.reverse_sync import ReverseSyncFlow

if TYPE_CHECKING:
    from concurrent.futures import Future

    from syncbridge.audit.service import AuditService
    from syncbridge.clients.base import CanonicalClient, LegacyClient, SchemaValidator, Transformer
    from syncbridge.core.models import CanonicalResource, LegacyRecord
    from syncbridge.detection.change_detector import ChangeDetector
    from syncbridge.queue.consumer import MessageProcessorRegistry
    from syncbridge.queue.reliable_queue import ReliableQueue
    from syncbridge.sync.types import IngestionResult, ReverseSyncResult

logger = logging.getLogger(__name__)

REVERSE_SYNC_RESOURCE_TYPE = "Patient"


class SyncOrchestrator:
    """Coordinates ingestion and reverse sync.

    Usage:
        orchestrator = SyncOrchestrator(
            legacy, canonical, transformer, validator, audit, queue, detector
        )
        orchestrator.initialize_reverse_sync()
        orchestrator.register_queue_processors(registry)
        result = orchestrator.process_ingestion(record)
        ...
        orchestrator.shutdown(timeout=30)
    """

    def __init__(
        self,
        legacy_client: LegacyClient,
        canonical_client: CanonicalClient,
        transformer: Transformer,
        validator: SchemaValidator,
        audit: AuditService,
        queue: ReliableQueue,
        detector: ChangeDetector,
        concurrency: ConcurrencySettings | None = None,
        tracker: ProcessedTracker | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            legacy_client: Legacy API client (normally the resilient wrapper).
            canonical_client: Canonical store client (normally the resilient wrapper).
            transformer: Legacy/canonical transformer.
            validator: Legacy schema validator.
            audit: Audit service.
            queue: Queue for failed ingestions.
            detector: Change detector feeding reverse sync.
            concurrency: Worker pool sizes.
            tracker: Processed-version tracker (a new one by default).
        """
        concurrency = concurrency or ConcurrencySettings()
        self._legacy = legacy_client
        self._canonical = canonical_client
        self._detector = detector
        self._concurrency = concurrency
        self._tracker = tracker or ProcessedTracker()
        self._shut_down = False

        self._ingestion_pool = BoundedPool(
            "ingestion",
            concurrency.ingestion_workers,
            concurrency.ingestion_queue_capacity,
        )
        self._reverse_pool = BoundedPool(
            "reverse-sync",
            concurrency.reverse_sync_workers,
            concurrency.reverse_sync_queue_capacity,
        )
        self._ingestion = IngestionFlow(
            validator,
            transformer,
            canonical_client,
            audit,
            queue,
            self._tracker,
            pool=self._ingestion_pool,
        )
        self._reverse_sync = ReverseSyncFlow(
            transformer,
            legacy_client,
            audit,
            self._tracker,
            pool=self._reverse_pool,
        )
        logger.info(
            "Sync orchestrator initialized (ingestion workers=%d, reverse sync workers=%d)",
            concurrency.ingestion_workers,
            concurrency.reverse_sync_workers,
        )

    @property
    def ingestion(self) -> IngestionFlow:
        return self._ingestion

    @property
    def reverse_sync(self) -> ReverseSyncFlow:
        return self._reverse_sync

    @property
    def tracker(self) -> ProcessedTracker:
        return self._tracker

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    # === Wiring ===

    def initialize_reverse_sync(self) -> None:
        """Register reverse sync as the Patient change listener."""
        logger.info("Initializing reverse sync flow with change detection")
        self._detector.register_listener(
            REVERSE_SYNC_RESOURCE_TYPE, self._reverse_sync.handle_change
        )

    def register_queue_processors(self, registry: MessageProcessorRegistry) -> None:
        """Register queue reprocessing of failed ingestions."""
        registry.register(INGESTION_RETRY, self._ingestion.reprocess)

    # === Ingestion ===

    def process_ingestion(
        self, record: LegacyRecord, context: AuditContext = SYSTEM_CONTEXT
    ) -> IngestionResult:
        return self._ingestion.process(record, context)

    def process_ingestion_async(
        self, record: LegacyRecord, context: AuditContext = SYSTEM_CONTEXT
    ) -> Future[IngestionResult]:
        return self._ingestion.submit(record, context)

    def process_ingestion_batch(
        self, records: list[LegacyRecord] | None, context: AuditContext = SYSTEM_CONTEXT
    ) -> list[IngestionResult]:
        return self._ingestion.process_batch(records, context)

    def is_in_flight(self, client_id: str) -> bool:
        """Check if an ingestion for a legacy client id is running."""
        return self._ingestion.is_in_flight(client_id)

    @property
    def in_flight_count(self) -> int:
        return self._ingestion.in_flight_count

    # === Reverse sync ===

    def process_reverse_sync(
        self, resource: CanonicalResource, context: AuditContext = SYSTEM_CONTEXT
    ) -> ReverseSyncResult:
        return self._reverse_sync.process(resource, context)

    def process_reverse_sync_async(
        self, resource: CanonicalResource, context: AuditContext = SYSTEM_CONTEXT
    ) -> Future[ReverseSyncResult]:
        return self._reverse_sync.submit(resource, context)

    def process_reverse_sync_batch(
        self, resources: list[CanonicalResource] | None, context: AuditContext = SYSTEM_CONTEXT
    ) -> list[ReverseSyncResult]:
        return self._reverse_sync.process_batch(resources, context)

    def is_reverse_sync_in_progress(self, resource_id: str) -> bool:
        return self._reverse_sync.is_in_progress(resource_id)

    # === Shutdown ===

    def shutdown(self, timeout: float | None = None) -> bool:
        """Stop change detection, drain the pools, close the clients.

        Args:
            timeout: Total seconds allowed for draining both pools. Defaults
                to the configured shutdown timeout.

        Returns:
            True if both pools drained within the timeout.
        """
        if self._shut_down:
            return True
        self._shut_down = True

        timeout = self._concurrency.shutdown_timeout if timeout is None else timeout
        logger.info("Shutting down sync orchestrator (timeout: %.1fs)", timeout)

        self._detector.stop()

        deadline = time.monotonic() + timeout
        drained = self._ingestion_pool.stop(timeout)
        remaining = max(deadline - time.monotonic(), 0.0)
        drained = self._reverse_pool.stop(remaining) and drained

        for client in (self._legacy, self._canonical):
            try:
                client.close()
            except Exception:
                logger.exception("Error closing outbound client")

        logger.info("Sync orchestrator shut down (drained: %s)", drained)
        return drained
