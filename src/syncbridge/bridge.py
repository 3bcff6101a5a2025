"""Assembly and lifecycle of a running sync bridge.

SyncBridge.from_config builds every component from a BridgeConfig:

    LegacyApiClient ----> ResilientLegacyClient ----+
    CanonicalStoreClient -> ResilientCanonicalClient +--> SyncOrchestrator
    PatientTransformer, LegacyRecordValidator ------+        ^     |
    AuditChain (+ AuditStore) -> AuditService --------------+     |
    ReliableQueue -> QueueConsumer (INGESTION_RETRY) <-------------+
    ChangeDetector <- PollingScheduler, webhook
    LegacyApiClient getAll -> BulkSyncService -> IngestionFlow
                                ^
                                +-- BulkSyncScheduler, /api/sync

start() wires and starts the background parts; stop() tears them down in
reverse order and is idempotent.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from syncbridge.audit.chain import AuditChain
from syncbridge.audit.service import AuditService
from syncbridge.audit.store import AuditStore
from syncbridge.clients.base import NotFoundError
from syncbridge.clients.canonical import CanonicalStoreClient
from syncbridge.clients.legacy import LegacyApiClient
from syncbridge.clients.transform import PatientTransformer
from syncbridge.clients.validation import LegacyRecordValidator
from syncbridge.core.types import CANONICAL_SYSTEM, LEGACY_SYSTEM
from syncbridge.detection.change_detector import ChangeDetector
from syncbridge.detection.scheduler import PollingScheduler
from syncbridge.queue.consumer import MessageProcessorRegistry, QueueConsumer
from syncbridge.queue.reliable_queue import ReliableQueue
from syncbridge.resilience.circuit_breaker import CircuitBreaker
from syncbridge.resilience.clients import (
    ResilientCanonicalClient,
    ResilientLegacyClient,
    is_retryable,
)
from syncbridge.resilience.retry import RetryExecutor, RetryPolicy
from syncbridge.sync.bulk import BulkSyncService, ServerVersionStore
from syncbridge.sync.orchestrator import REVERSE_SYNC_RESOURCE_TYPE, SyncOrchestrator
from syncbridge.sync.scheduler import BulkSyncScheduler

if TYPE_CHECKING:
    import httpx

    from syncbridge.core.config import BridgeConfig, ResilienceSettings
    from syncbridge.queue.message import QueueMessage

logger = logging.getLogger(__name__)


def _build_guards(
    name: str, settings: ResilienceSettings
) -> tuple[CircuitBreaker, RetryExecutor]:
    breaker = CircuitBreaker(
        name,
        failure_threshold=settings.failure_threshold,
        cooldown=settings.cooldown_seconds,
        success_threshold=settings.success_threshold,
        excluded_exceptions=(NotFoundError,),
    )
    retry = RetryExecutor(
        name,
        RetryPolicy(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            backoff_multiplier=settings.backoff_multiplier,
            retry_condition=is_retryable,
        ),
    )
    return breaker, retry


def _alert_dead_letter(message: QueueMessage) -> None:
    logger.critical(
        "Dead-lettered message requires manual intervention: id=%s, type=%s, error=%s",
        message.id,
        message.message_type,
        message.error_message,
    )


class SyncBridge:
    """A fully assembled bridge with ordered start and stop."""

    def __init__(
        self,
        config: BridgeConfig,
        legacy_client: ResilientLegacyClient,
        canonical_client: ResilientCanonicalClient,
        audit_chain: AuditChain,
        audit_store: AuditStore | None,
        queue: ReliableQueue,
        registry: MessageProcessorRegistry,
        consumer: QueueConsumer,
        detector: ChangeDetector,
        scheduler: PollingScheduler,
        orchestrator: SyncOrchestrator,
        bulk_sync: BulkSyncService,
        bulk_scheduler: BulkSyncScheduler,
    ) -> None:
        self.config = config
        self.legacy_client = legacy_client
        self.canonical_client = canonical_client
        self.audit_chain = audit_chain
        self.audit_store = audit_store
        self.queue = queue
        self.registry = registry
        self.consumer = consumer
        self.detector = detector
        self.scheduler = scheduler
        self.orchestrator = orchestrator
        self.bulk_sync = bulk_sync
        self.bulk_scheduler = bulk_scheduler
        self._lock = threading.Lock()
        self._started = False
        self._stopped = False

    @classmethod
    def from_config(
        cls,
        config: BridgeConfig,
        legacy_transport: httpx.BaseTransport | None = None,
        canonical_transport: httpx.BaseTransport | None = None,
    ) -> SyncBridge:
        """Build every component from configuration.

        Args:
            config: Bridge configuration.
            legacy_transport: Optional httpx transport for the legacy API (testing).
            canonical_transport: Optional httpx transport for the canonical store (testing).

        Returns:
            A bridge ready to start().
        """
        legacy_breaker, legacy_retry = _build_guards(LEGACY_SYSTEM, config.resilience)
        canonical_breaker, canonical_retry = _build_guards(CANONICAL_SYSTEM, config.resilience)
        legacy_client = ResilientLegacyClient(
            LegacyApiClient(config.legacy, transport=legacy_transport),
            legacy_breaker,
            legacy_retry,
        )
        canonical_client = ResilientCanonicalClient(
            CanonicalStoreClient(config.canonical, transport=canonical_transport),
            canonical_breaker,
            canonical_retry,
        )

        audit_store = AuditStore(config.audit_db_path) if config.audit_db_path else None
        audit_chain = AuditChain(store=audit_store)

        queue = ReliableQueue(
            persistence_path=config.queue_db_path,
            on_dead_letter=_alert_dead_letter,
        )
        registry = MessageProcessorRegistry()
        consumer = QueueConsumer(queue, registry)

        detector = ChangeDetector(canonical_client)
        scheduler = PollingScheduler(detector, config.polling.interval_ms)

        orchestrator = SyncOrchestrator(
            legacy_client,
            canonical_client,
            PatientTransformer(),
            LegacyRecordValidator(),
            AuditService(audit_chain),
            queue,
            detector,
            concurrency=config.concurrency,
        )
        bulk_sync = BulkSyncService(
            legacy_client,
            orchestrator.ingestion,
            ServerVersionStore(config.bulk_sync.server_version_path),
        )
        bulk_scheduler = BulkSyncScheduler(bulk_sync, config.bulk_sync.interval_ms)
        return cls(
            config,
            legacy_client,
            canonical_client,
            audit_chain,
            audit_store,
            queue,
            registry,
            consumer,
            detector,
            scheduler,
            orchestrator,
            bulk_sync,
            bulk_scheduler,
        )

    @property
    def is_running(self) -> bool:
        return self._started and not self._stopped

    def start(self) -> None:
        """Wire the flows and start background processing."""
        with self._lock:
            if self._started:
                return
            self._started = True

        logger.info("Starting sync bridge")
        self.orchestrator.initialize_reverse_sync()
        self.orchestrator.register_queue_processors(self.registry)
        self.consumer.start()

        if self.config.polling.enabled:
            self.detector.enable_polling(self.config.polling.interval_ms)
            self.scheduler.start()

        if self.config.bulk_sync.enabled:
            self.bulk_scheduler.start()

        if self.config.webhook_url:
            self._subscribe(self.config.webhook_url)
        logger.info("Sync bridge started")

    def _subscribe(self, endpoint: str) -> None:
        try:
            subscription = self.detector.create_subscription(
                f"{REVERSE_SYNC_RESOURCE_TYPE}?",
                endpoint,
                "Reverse sync of patient changes to the legacy system",
            )
            if subscription.id:
                self.detector.activate_subscription(subscription.id)
        except Exception:
            logger.exception("Failed to set up change subscription, relying on polling")

    def stop(self, timeout: float | None = None) -> None:
        """Stop everything in order. Safe to call more than once.

        Args:
            timeout: Seconds allowed for draining the worker pools.
        """
        with self._lock:
            if self._stopped:
                return
            self._stopped = True

        logger.info("Stopping sync bridge")
        self.scheduler.stop()
        self.bulk_scheduler.stop()
        self.orchestrator.shutdown(timeout)
        self.consumer.stop()
        self.queue.close()
        if self.audit_store is not None:
            self.audit_store.close()
        logger.info("Sync bridge stopped")

    def verify_audit(self, start: int = 1, end: int | None = None) -> bool:
        """Verify the in-memory audit chain over a range (default: all of it).

        An empty chain verifies when no explicit end is given.
        """
        if end is None:
            end = self.audit_chain.current_sequence
            if end == 0:
                return True
        return self.audit_chain.verify_range(start, end)
