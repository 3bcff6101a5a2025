"""Circular-update detection for reverse sync.

A resource created by ingestion comes back through change detection with
the ingestion provenance tag. If it has not been modified since the bridge
last handled it, writing it to the legacy system would only echo the
bridge's own change back, and ingestion would echo it again.

Rules:
- Tagged and lastUpdated not after the last processed timestamp: SKIP
- Anything else (untagged, advanced, or never processed): PROCEED
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from syncbridge.core.models import CanonicalResource

logger = logging.getLogger(__name__)


class ConflictType(str, Enum):
    """Kind of conflict found before a reverse sync write."""

    NONE = "NONE"
    CIRCULAR_UPDATE = "CIRCULAR_UPDATE"


class ConflictResolution(str, Enum):
    """What to do about a conflict."""

    PROCEED = "PROCEED"
    SKIP = "SKIP"


@dataclass(frozen=True)
class ConflictCheck:
    """Result of a conflict check."""

    conflict_type: ConflictType
    resolution: ConflictResolution
    reason: str = ""

    @property
    def has_conflict(self) -> bool:
        return self.conflict_type != ConflictType.NONE


NO_CONFLICT = ConflictCheck(ConflictType.NONE, ConflictResolution.PROCEED)


@dataclass
class _IdLock:
    """Lock of one resource id and the number of threads using it."""

    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class ProcessedTracker:
    """Last processed lastUpdated per canonical resource id.

    Written by ingestion (after storing) and by reverse sync (after writing
    the legacy record). The per-id locks serialize reverse sync of one
    resource so check, write and mark happen as one step. A lock exists
    only while some thread holds or waits for it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._processed: dict[str, datetime] = {}
        self._id_locks: dict[str, _IdLock] = {}

    def get(self, resource_id: str) -> datetime | None:
        """Get the last processed timestamp for a resource id."""
        with self._lock:
            return self._processed.get(resource_id)

    def mark(self, resource_id: str, last_updated: datetime | None) -> None:
        """Record a resource version as handled; never moves backwards."""
        if last_updated is None:
            return
        with self._lock:
            current = self._processed.get(resource_id)
            if current is None or last_updated > current:
                self._processed[resource_id] = last_updated
        logger.debug(
            "Updated processed resource tracking: resource_id=%s, last_updated=%s",
            resource_id,
            last_updated,
        )

    def forget(self, resource_id: str) -> None:
        with self._lock:
            self._processed.pop(resource_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._processed)

    @property
    def lock_count(self) -> int:
        """Get number of resource ids with a held or awaited lock."""
        with self._lock:
            return len(self._id_locks)

    @contextmanager
    def locked(self, resource_id: str) -> Iterator[None]:
        """Hold the lock of one resource id."""
        with self._lock:
            id_lock = self._id_locks.setdefault(resource_id, _IdLock())
            id_lock.users += 1
        try:
            with id_lock.lock:
                yield
        finally:
            with self._lock:
                id_lock.users -= 1
                if id_lock.users == 0:
                    del self._id_locks[resource_id]

    def check(self, resource: CanonicalResource) -> ConflictCheck:
        """Check a changed resource for a circular update.

        Args:
            resource: Changed canonical resource.

        Returns:
            SKIP for an ingestion-tagged resource that has not advanced past
            the last processed timestamp, PROCEED otherwise.
        """
        if not resource.is_ingestion_origin or not resource.id:
            return NO_CONFLICT

        processed = self.get(resource.id)
        if processed is None:
            return NO_CONFLICT

        last_updated = resource.last_updated
        if last_updated is not None and last_updated > processed:
            return NO_CONFLICT

        logger.warning("Detected circular update for resource: %s", resource.id)
        return ConflictCheck(
            ConflictType.CIRCULAR_UPDATE,
            ConflictResolution.SKIP,
            "Circular update detected - originated from legacy ingestion",
        )
