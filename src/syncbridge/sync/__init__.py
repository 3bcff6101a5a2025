"""Bidirectional sync flows.

Architecture:
    legacy record -> IngestionFlow -> canonical store
                          |  (failure)
                          v
                    ReliableQueue -> QueueConsumer -> IngestionFlow.reprocess

    legacy getAll -> BulkSyncService -> IngestionFlow  (BulkSyncScheduler, /api/sync)

    ChangeDetector -> ReverseSyncFlow -> legacy system
                          |
                   ProcessedTracker (circular-update check, per-id lock)

Components:
- **SyncOrchestrator**: Facade owning both worker pools and shutdown order
- **IngestionFlow**: Validate, transform, store with single-flight per record
- **ReverseSyncFlow**: Transform, conflict check, create/update, consistency
- **ProcessedTracker**: Last processed version per canonical id
- **BoundedPool**: Worker pool that runs in the caller's thread when saturated
- **BulkSyncService**: Bulk and incremental pulls of legacy clients by serverVersion
"""

from syncbridge.sync.bulk import BulkSyncService, BulkSyncSummary, ServerVersionStore
from syncbridge.sync.conflicts import (
    ConflictCheck,
    ConflictResolution,
    ConflictType,
    ProcessedTracker,
)
from syncbridge.sync.ingestion import INGESTION_RETRY, PERFORMANCE_THRESHOLD_MS, IngestionFlow
from syncbridge.sync.orchestrator import SyncOrchestrator
from syncbridge.sync.pool import BoundedPool, PoolState, PoolStoppedError
from syncbridge.sync.reverse_sync import ReverseSyncFlow, find_consistency_issues
from syncbridge.sync.scheduler import BulkSyncScheduler
from syncbridge.sync.types import (
    IngestionResult,
    IngestionRetryError,
    OperationType,
    ReverseSyncResult,
    StorageFailedError,
    SyncError,
    SyncErrorCode,
    TransformationFailedError,
    UnsupportedResourceError,
    ValidationFailedError,
)

__all__ = [
    "BoundedPool",
    "BulkSyncScheduler",
    "BulkSyncService",
    "BulkSyncSummary",
    "ConflictCheck",
    "ConflictResolution",
    "ConflictType",
    "INGESTION_RETRY",
    "IngestionFlow",
    "IngestionResult",
    "IngestionRetryError",
    "OperationType",
    "PERFORMANCE_THRESHOLD_MS",
    "PoolState",
    "PoolStoppedError",
    "ProcessedTracker",
    "ReverseSyncFlow",
    "ReverseSyncResult",
    "ServerVersionStore",
    "StorageFailedError",
    "SyncError",
    "SyncErrorCode",
    "SyncOrchestrator",
    "TransformationFailedError",
    "UnsupportedResourceError",
    "ValidationFailedError",
    "find_consistency_issues",
]
