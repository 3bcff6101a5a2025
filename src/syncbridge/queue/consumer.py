"""Queue consumption: processor registry and consumer loop.

This module provides:
- MessageProcessorRegistry: message_type -> processor mapping
- QueueConsumer: Dequeues messages, dispatches them and reports outcomes
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from syncbridge.queue.reliable_queue import Lane, QueueClosedError

if TYPE_CHECKING:
    from syncbridge.queue.message import QueueMessage
    from syncbridge.queue.reliable_queue import ReliableQueue

logger = logging.getLogger(__name__)

# A processor handles one message and raises on failure
MessageProcessor = Callable[["QueueMessage"], None]


class MessageProcessorRegistry:
    """Thread-safe registry of processors by message type."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._processors: dict[str, MessageProcessor] = {}

    def register(self, message_type: str, processor: MessageProcessor) -> None:
        """Register the processor for a message type, replacing any previous one."""
        with self._lock:
            self._processors[message_type] = processor
        logger.info("Registered message processor for type: %s", message_type)

    def unregister(self, message_type: str) -> bool:
        """Remove the processor for a message type.

        Returns:
            True if a processor was registered.
        """
        with self._lock:
            return self._processors.pop(message_type, None) is not None

    def get(self, message_type: str) -> MessageProcessor | None:
        with self._lock:
            return self._processors.get(message_type)

    @property
    def registered_types(self) -> list[str]:
        with self._lock:
            return sorted(self._processors)


class QueueConsumer:
    """Consumes the primary lane and applies retry accounting.

    A processor failure sends the message through the retry lane (or to
    dead-letter once retries are exhausted). A message without a registered
    processor cannot succeed on redelivery and is dead-lettered at once.

    Usage:
        consumer = QueueConsumer(queue, registry)
        consumer.start()
        ...
        consumer.stop()
    """

    def __init__(
        self,
        queue: ReliableQueue,
        registry: MessageProcessorRegistry,
        poll_timeout: float = 1.0,
    ) -> None:
        """Initialize the consumer.

        Args:
            queue: Queue to consume.
            registry: Processor lookup.
            poll_timeout: Seconds to block per dequeue in the background loop.
        """
        self._queue = queue
        self._registry = registry
        self._poll_timeout = poll_timeout
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._processed_count = 0
        self._failed_count = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def processed_count(self) -> int:
        return self._processed_count

    @property
    def failed_count(self) -> int:
        return self._failed_count

    def process_next(self, timeout: float | None = 0) -> bool:
        """Process one message from the primary lane.

        Args:
            timeout: Seconds to wait for a message (None = forever).

        Returns:
            True if a message was taken (whatever its outcome).
        """
        message = self._queue.get(timeout=timeout)
        if message is None:
            return False
        self.handle(message)
        return True

    def handle(self, message: QueueMessage) -> None:
        """Dispatch one message and report its outcome to the queue."""
        logger.info(
            "Processing message: id=%s, type=%s, retry_count=%d",
            message.id,
            message.message_type,
            message.retry_count,
        )
        processor = self._registry.get(message.message_type)
        if processor is None:
            self._failed_count += 1
            self._queue.send_to_dead_letter(
                message, f"No processor registered for message type: {message.message_type}"
            )
            return

        try:
            processor(message)
        except Exception as e:
            self._failed_count += 1
            logger.error("Failed to process message %s: %s", message.id, e)
            lane = self._queue.send_to_retry(message, str(e))
            if lane == Lane.DEAD_LETTER:
                logger.error("Message %s moved to dead-letter lane", message.id)
            return

        self._processed_count += 1
        logger.info("Successfully processed message: %s", message.id)

    def start(self) -> None:
        """Start consuming on a background thread."""
        if self.is_running:
            logger.warning("Queue consumer already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="QueueConsumer",
            daemon=True,
        )
        self._thread.start()
        logger.info("Queue consumer started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background thread.

        Args:
            timeout: Maximum seconds to wait for the loop to exit.
        """
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("Queue consumer did not stop within %.1fs", timeout)
        self._thread = None
        logger.info("Queue consumer stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.process_next(timeout=self._poll_timeout)
            except QueueClosedError:
                logger.info("Queue closed, consumer exiting")
                break
            except Exception:
                logger.exception("Unexpected error in queue consumer loop")
