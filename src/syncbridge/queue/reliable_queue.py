"""Reliable three-lane message queue.

This module provides:
- ReliableQueue: Thread-safe primary/retry/dead-letter lanes
- Lane: Lane names
- RetryEntry: A message parked on the retry lane until its TTL expires

Lanes:
- **primary**: work to be done, consumed in FIFO order
- **retry**: delayed redelivery; a message waits 2^retry_count seconds and
  then moves back to primary
- **dead-letter**: terminal failures kept for manual inspection; never
  reprocessed automatically

Persistence (SQLite):
    The queue supports optional SQLite persistence so that pending work,
    scheduled retries and dead letters survive a restart. Each operation
    commits immediately. Retry due times are wall-clock timestamps, so a
    retry that expired while the process was down is delivered on startup.
"""

from __future__ import annotations

import heapq
import itertools
import json
import logging
import sqlite3
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from syncbridge.queue.message import QueueMessage

logger = logging.getLogger(__name__)


class QueueClosedError(RuntimeError):
    """Operation attempted on a closed queue."""


class Lane(str, Enum):
    """Queue lanes."""

    PRIMARY = "smartbridge.primary"
    RETRY = "smartbridge.retry"
    DEAD_LETTER = "smartbridge.dlq"


@dataclass(order=True)
class RetryEntry:
    """A message waiting on the retry lane.

    Entries order by due time, then by arrival.
    """

    due_at: float
    sequence: int
    message: QueueMessage = field(compare=False)
    delay_ms: int = field(compare=False)


# Type alias for dead-letter notification callback
DeadLetterCallback = Callable[[QueueMessage], None]


class ReliableQueue:
    """Thread-safe reliable queue with retry and dead-letter lanes.

    Usage:
        queue = ReliableQueue()
        queue.publish(QueueMessage(payload="{...}", message_type="INGESTION_RETRY"))
        message = queue.get(timeout=1.0)
        try:
            process(message)
        except Exception as e:
            queue.send_to_retry(message, str(e))
    """

    def __init__(
        self,
        persistence_path: Path | None = None,
        on_dead_letter: DeadLetterCallback | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the queue.

        Args:
            persistence_path: Optional path to SQLite DB for persistence.
            on_dead_letter: Optional callback for alerting on dead letters.
            clock: Wall-clock time source in seconds.
        """
        self._lock = threading.RLock()
        self._not_empty = threading.Condition(self._lock)
        self._primary: deque[QueueMessage] = deque()
        self._retry: list[RetryEntry] = []
        self._dead_letters: list[QueueMessage] = []
        self._sequence = itertools.count()
        self._on_dead_letter = on_dead_letter
        self._clock = clock
        self._persistence_path = persistence_path
        self._db: sqlite3.Connection | None = None
        self._closed = False

        if persistence_path:
            self._init_persistence()
            self._load_from_persistence()

    # === Persistence ===

    def _init_persistence(self) -> None:
        """Initialize SQLite database for persistence."""
        if not self._persistence_path:
            return

        self._persistence_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(str(self._persistence_path), check_same_thread=False)
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("""
            CREATE TABLE IF NOT EXISTS queue_messages (
                id TEXT PRIMARY KEY,
                lane TEXT NOT NULL,
                due_at REAL,
                delay_ms INTEGER,
                message TEXT NOT NULL
            )
        """)
        self._db.commit()
        logger.debug("Initialized queue persistence at %s", self._persistence_path)

    def _load_from_persistence(self) -> None:
        """Load all lanes from SQLite on startup."""
        if not self._db:
            return

        cursor = self._db.execute(
            "SELECT lane, due_at, delay_ms, message FROM queue_messages ORDER BY rowid"
        )
        count = 0
        for lane, due_at, delay_ms, message_json in cursor:
            message = QueueMessage.from_dict(json.loads(message_json))
            if lane == Lane.PRIMARY.value:
                self._primary.append(message)
            elif lane == Lane.RETRY.value:
                heapq.heappush(
                    self._retry,
                    RetryEntry(due_at, next(self._sequence), message, delay_ms),
                )
            else:
                self._dead_letters.append(message)
            count += 1

        if count > 0:
            logger.info(
                "Loaded %d queued messages from persistence (primary=%d, retry=%d, dlq=%d)",
                count,
                len(self._primary),
                len(self._retry),
                len(self._dead_letters),
            )

    def _persist(
        self,
        message: QueueMessage,
        lane: Lane,
        due_at: float | None = None,
        delay_ms: int | None = None,
    ) -> None:
        """Save a message and its lane to SQLite."""
        if not self._db:
            return

        # Delete then insert so the rowid reflects the latest arrival order
        self._db.execute("DELETE FROM queue_messages WHERE id = ?", (message.id,))
        self._db.execute(
            "INSERT INTO queue_messages (id, lane, due_at, delay_ms, message) "
            "VALUES (?, ?, ?, ?, ?)",
            (message.id, lane.value, due_at, delay_ms, json.dumps(message.to_dict())),
        )
        self._db.commit()

    def _remove_from_persistence(self, message_id: str) -> None:
        if not self._db:
            return

        self._db.execute("DELETE FROM queue_messages WHERE id = ?", (message_id,))
        self._db.commit()

    # === Producer side ===

    def publish(self, message: QueueMessage) -> None:
        """Publish a message to the primary lane.

        Raises:
            QueueClosedError: If the queue is closed.
        """
        with self._lock:
            self._ensure_open()
            self._primary.append(message)
            self._persist(message, Lane.PRIMARY)
            self._not_empty.notify()

        logger.info(
            "Message sent to primary queue: id=%s, type=%s", message.id, message.message_type
        )

    def send_to_retry(self, message: QueueMessage, error: str | None = None) -> Lane:
        """Schedule a failed message for redelivery, or dead-letter it.

        Args:
            message: The message whose processing failed.
            error: Error text of the failed attempt.

        Returns:
            The lane the message was placed on (RETRY or DEAD_LETTER).
        """
        if error is not None:
            message.error_message = error

        if not message.can_retry:
            logger.warning(
                "Message %s exceeded max retries (%d), sending to DLQ",
                message.id,
                message.max_retries,
            )
            self.send_to_dead_letter(message)
            return Lane.DEAD_LETTER

        message.increment_retry_count()
        delay_ms = message.retry_delay_ms

        with self._lock:
            self._ensure_open()
            due_at = self._clock() + delay_ms / 1000
            heapq.heappush(
                self._retry, RetryEntry(due_at, next(self._sequence), message, delay_ms)
            )
            self._persist(message, Lane.RETRY, due_at, delay_ms)
            # Wake waiters so they can recompute their wait against the new due time
            self._not_empty.notify_all()

        logger.info(
            "Message sent to retry queue: id=%s, retry_count=%d, delay=%dms",
            message.id,
            message.retry_count,
            delay_ms,
        )
        return Lane.RETRY

    def send_to_dead_letter(self, message: QueueMessage, reason: str | None = None) -> None:
        """Move a message to the dead-letter lane.

        Args:
            message: The message to dead-letter.
            reason: Optional error text overriding the message's last error.
        """
        if reason is not None:
            message.error_message = reason

        with self._lock:
            self._ensure_open()
            self._dead_letters.append(message)
            self._persist(message, Lane.DEAD_LETTER)

        logger.error(
            "Message sent to DLQ: id=%s, type=%s, retries=%d, error=%s",
            message.id,
            message.message_type,
            message.retry_count,
            message.error_message,
        )
        if self._on_dead_letter:
            try:
                self._on_dead_letter(message)
            except Exception:
                logger.exception("Dead-letter callback failed for message %s", message.id)

    # === Consumer side ===

    def get(self, timeout: float | None = None) -> QueueMessage | None:
        """Take the next message from the primary lane.

        Expired retry entries are moved to primary first. Blocks until a
        message is available or the timeout expires.

        Args:
            timeout: Maximum seconds to wait (None = wait forever).

        Returns:
            The next message, or None if the timeout expired.

        Raises:
            QueueClosedError: If the queue is closed and primary is empty.
        """
        with self._not_empty:
            deadline = None if timeout is None else self._clock() + timeout

            while True:
                self._promote_expired_locked()
                if self._primary:
                    message = self._primary.popleft()
                    self._remove_from_persistence(message.id)
                    logger.debug(
                        "Dequeued message %s (primary size: %d)", message.id, len(self._primary)
                    )
                    return message

                if self._closed:
                    raise QueueClosedError("Queue is closed")

                now = self._clock()
                wait: float | None = None
                if self._retry:
                    wait = max(self._retry[0].due_at - now, 0.0)
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)

                self._not_empty.wait(timeout=wait)

    def get_nowait(self) -> QueueMessage | None:
        """Take the next message without blocking."""
        return self.get(timeout=0)

    def promote_expired(self) -> int:
        """Move every retry entry whose TTL has expired back to primary.

        Returns:
            Number of messages moved.
        """
        with self._lock:
            return self._promote_expired_locked()

    def _promote_expired_locked(self) -> int:
        now = self._clock()
        moved = 0
        while self._retry and self._retry[0].due_at <= now:
            entry = heapq.heappop(self._retry)
            self._primary.append(entry.message)
            self._persist(entry.message, Lane.PRIMARY)
            moved += 1
            logger.debug(
                "Retry delay expired for message %s, redelivering to primary", entry.message.id
            )
        if moved:
            self._not_empty.notify(moved)
        return moved

    # === Inspection ===

    def pending_retries(self) -> list[RetryEntry]:
        """Get retry lane entries ordered by due time."""
        with self._lock:
            return sorted(self._retry)

    def dead_letters(self) -> list[QueueMessage]:
        """Get a snapshot of the dead-letter lane."""
        with self._lock:
            return list(self._dead_letters)

    @property
    def primary_size(self) -> int:
        with self._lock:
            return len(self._primary)

    @property
    def retry_size(self) -> int:
        with self._lock:
            return len(self._retry)

    @property
    def dead_letter_size(self) -> int:
        with self._lock:
            return len(self._dead_letters)

    def __len__(self) -> int:
        """Get number of messages waiting on the primary lane."""
        return self.primary_size

    def stats(self) -> dict[str, int]:
        """Get message counts per lane."""
        with self._lock:
            return {
                "primary": len(self._primary),
                "retry": len(self._retry),
                "dead_letter": len(self._dead_letters),
            }

    @property
    def is_closed(self) -> bool:
        """Check if queue is closed."""
        return self._closed

    def close(self) -> None:
        """Close the queue and wake up waiting threads."""
        with self._lock:
            self._closed = True
            self._not_empty.notify_all()
            if self._db:
                self._db.close()
                self._db = None
            logger.debug("Reliable queue closed")

    def _ensure_open(self) -> None:
        if self._closed:
            raise QueueClosedError("Queue is closed")
