"""Tamper-evident audit hash chain.

This module provides:
- AuditContext: Actor identity passed explicitly through every call
- AuditEntry: One immutable, hash-linked audit record
- AuditChain: Append-only log of entries with range verification
- AuditIntegrityError: Stored entries that cannot be continued
- compute_entry_hash: The chain's hash function

Each entry's hash covers its sequence number, its serialized content and
the previous entry's hash:

    hash(n) = base64(sha256(f"{n}|{entry(n)}|{hash(n-1)}"))

with hash(0) = "GENESIS". Entries live in an append-only arena indexed by
sequence number - 1, so sequence numbers are gapless by construction.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from syncbridge.core.models import format_timestamp

if TYPE_CHECKING:
    from syncbridge.audit.store import AuditStore

logger = logging.getLogger(__name__)

GENESIS_HASH = "GENESIS"
NOT_AVAILABLE = "N/A"


@dataclass(frozen=True)
class AuditContext:
    """Who is acting, for audit purposes.

    Attributes:
        user_id: Actor id (SYSTEM for background work).
        user_name: Display name of the actor.
        source_ip: Address the request came from.
    """

    user_id: str = "SYSTEM"
    user_name: str = "System"
    source_ip: str = "localhost"


SYSTEM_CONTEXT = AuditContext()


@dataclass(frozen=True)
class AuditEntry:
    """One record in the audit chain."""

    sequence_number: int
    timestamp: datetime
    event_type: str
    user_id: str
    user_name: str
    resource_id: str | None
    data_type: str | None
    operation: str | None
    source_system: str | None
    source_ip: str
    success: bool
    details: str | None
    hash: str
    previous_hash: str

    def serialize(self) -> str:
        """Serialize the hashed content of the entry."""
        return serialize_entry(
            event_type=self.event_type,
            user_id=self.user_id,
            user_name=self.user_name,
            resource_id=self.resource_id,
            data_type=self.data_type,
            operation=self.operation,
            source_system=self.source_system,
            source_ip=self.source_ip,
            timestamp=self.timestamp,
            details=self.details,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the export shape used for compliance extraction."""
        return {
            "sequenceNumber": self.sequence_number,
            "timestamp": format_timestamp(self.timestamp),
            "eventType": self.event_type,
            "userId": self.user_id,
            "userName": self.user_name,
            "resourceId": self.resource_id,
            "dataType": self.data_type,
            "operation": self.operation,
            "sourceSystem": self.source_system,
            "sourceIp": self.source_ip,
            "success": self.success,
            "details": self.details,
            "hash": self.hash,
            "previousHash": self.previous_hash,
        }


def serialize_entry(
    *,
    event_type: str,
    user_id: str,
    user_name: str,
    resource_id: str | None,
    data_type: str | None,
    operation: str | None,
    source_system: str | None,
    source_ip: str,
    timestamp: datetime,
    details: str | None,
) -> str:
    """Build the pipe-separated string that is hashed for an entry."""
    return "|".join(
        [
            f"EventType={event_type}",
            f"UserId={user_id}",
            f"UserName={user_name}",
            f"ResourceId={resource_id or NOT_AVAILABLE}",
            f"DataType={data_type or NOT_AVAILABLE}",
            f"Operation={operation or NOT_AVAILABLE}",
            f"Source={source_system or NOT_AVAILABLE}",
            f"SourceIP={source_ip}",
            f"Timestamp={format_timestamp(timestamp)}",
            f"Details={details or ''}",
        ]
    )


def compute_entry_hash(sequence_number: int, serialized: str, previous_hash: str) -> str:
    """Compute the chained hash of an entry."""
    data = f"{sequence_number}|{serialized}|{previous_hash}".encode()
    return base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")


class AuditIntegrityError(Exception):
    """Stored audit entries cannot be continued as a chain."""


class AuditChain:
    """Append-only, hash-linked audit log.

    record() is linearizable: sequence assignment, hashing and appending
    happen under one lock, so the order of the arena is the order of the
    sequence numbers.
    """

    def __init__(
        self,
        store: AuditStore | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        """Initialize the chain.

        Entries already in the store are loaded first, so a restarted chain
        continues from the stored sequence number and hash.

        Args:
            store: Optional persistent sink receiving every entry in order.
            clock: Source of entry timestamps.

        Raises:
            AuditIntegrityError: If the stored sequence numbers have gaps.
        """
        self._lock = threading.Lock()
        self._entries: list[AuditEntry] = []
        self._hashes: list[str | None] = []
        self._previous_hash = GENESIS_HASH
        self._store = store
        self._clock = clock
        if store is not None:
            self._load(store)

    def _load(self, store: AuditStore) -> None:
        entries = store.get_range(1, store.last_sequence())
        for expected, entry in enumerate(entries, start=1):
            if entry.sequence_number != expected:
                raise AuditIntegrityError(f"Stored audit chain is missing sequence {expected}")
        self._entries = list(entries)
        self._hashes = [entry.hash for entry in entries]
        if entries:
            self._previous_hash = entries[-1].hash
            logger.info("Loaded %d stored audit entries", len(entries))

    @property
    def current_sequence(self) -> int:
        """Get the sequence number of the latest entry (0 when empty)."""
        with self._lock:
            return len(self._entries)

    def record(
        self,
        event_type: str,
        *,
        context: AuditContext = SYSTEM_CONTEXT,
        resource_id: str | None = None,
        data_type: str | None = None,
        operation: str | None = None,
        source_system: str | None = None,
        success: bool = True,
        details: str | None = None,
    ) -> AuditEntry:
        """Append an entry to the chain.

        Args:
            event_type: Kind of event (e.g., "TRANSFORMATION").
            context: Acting user.
            resource_id: Id of the affected record or resource.
            data_type: Type of the affected data (e.g., "Patient").
            operation: Operation performed (e.g., "INGESTION").
            source_system: System where the operation originated.
            success: Whether the operation succeeded.
            details: Free-text details.

        Returns:
            The appended entry.
        """
        with self._lock:
            sequence_number = len(self._entries) + 1
            timestamp = self._clock()
            serialized = serialize_entry(
                event_type=event_type,
                user_id=context.user_id,
                user_name=context.user_name,
                resource_id=resource_id,
                data_type=data_type,
                operation=operation,
                source_system=source_system,
                source_ip=context.source_ip,
                timestamp=timestamp,
                details=details,
            )
            entry_hash = compute_entry_hash(sequence_number, serialized, self._previous_hash)
            entry = AuditEntry(
                sequence_number=sequence_number,
                timestamp=timestamp,
                event_type=event_type,
                user_id=context.user_id,
                user_name=context.user_name,
                resource_id=resource_id,
                data_type=data_type,
                operation=operation,
                source_system=source_system,
                source_ip=context.source_ip,
                success=success,
                details=details,
                hash=entry_hash,
                previous_hash=self._previous_hash,
            )
            # Persist first: a failed write must leave the chain unchanged
            if self._store is not None:
                self._store.append(entry)

            self._entries.append(entry)
            self._hashes.append(entry_hash)
            self._previous_hash = entry_hash

        logger.debug(
            "Audit entry recorded: seq=%d, type=%s, hash=%s",
            sequence_number,
            event_type,
            entry_hash,
        )
        return entry

    def get_entry(self, sequence_number: int) -> AuditEntry | None:
        """Get an entry by sequence number."""
        with self._lock:
            if 1 <= sequence_number <= len(self._entries):
                return self._entries[sequence_number - 1]
            return None

    def get_hash(self, sequence_number: int) -> str | None:
        """Get the stored hash for a sequence number."""
        with self._lock:
            if 1 <= sequence_number <= len(self._hashes):
                return self._hashes[sequence_number - 1]
            return None

    def export(self, start: int = 1, end: int | None = None) -> list[dict[str, Any]]:
        """Export entries in an inclusive range in compliance shape."""
        with self._lock:
            last = len(self._entries) if end is None else min(end, len(self._entries))
            return [entry.to_dict() for entry in self._entries[max(start, 1) - 1 : last]]

    def verify_range(self, start: int, end: int) -> bool:
        """Verify integrity of an inclusive range of sequence numbers.

        Every sequence number in the range must have a stored hash, that hash
        must match a recomputation from the entry's content and predecessor,
        and the entry must link to the predecessor's stored hash.

        Args:
            start: First sequence number (1-based).
            end: Last sequence number.

        Returns:
            True if the range is intact.
        """
        with self._lock:
            if start < 1 or end > len(self._entries) or start > end:
                logger.warning("Invalid audit verification range: %d to %d", start, end)
                return False

            for sequence_number in range(start, end + 1):
                if not self._verify_entry_locked(sequence_number):
                    return False

        logger.info("Audit integrity verified for sequence range %d to %d", start, end)
        return True

    def _verify_entry_locked(self, sequence_number: int) -> bool:
        index = sequence_number - 1
        stored_hash = self._hashes[index]
        if not stored_hash:
            logger.error("Audit integrity violation: missing hash for sequence %d", sequence_number)
            return False

        entry = self._entries[index]
        expected_previous = GENESIS_HASH if index == 0 else self._hashes[index - 1]
        if entry.sequence_number != sequence_number or entry.previous_hash != expected_previous:
            logger.error("Audit integrity violation: broken link at sequence %d", sequence_number)
            return False

        expected = compute_entry_hash(sequence_number, entry.serialize(), entry.previous_hash)
        if expected != stored_hash:
            logger.error("Audit integrity violation: hash mismatch at sequence %d", sequence_number)
            return False

        return True
