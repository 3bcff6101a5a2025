"""Reliable delivery queue.

Architecture:
    producer -> primary -> QueueConsumer -> processor
                   ^            |
                   |      (failure)
                 retry <--------+----> dead-letter (retries exhausted)

Components:
- **QueueMessage**: Work item with retry accounting
- **ReliableQueue**: Primary, retry (TTL redelivery) and dead-letter lanes
- **MessageProcessorRegistry**: Processor lookup by message type
- **QueueConsumer**: Dequeue, dispatch, report outcome
"""

from syncbridge.queue.consumer import MessageProcessor, MessageProcessorRegistry, QueueConsumer
from syncbridge.queue.message import BASE_RETRY_DELAY_MS, DEFAULT_MAX_RETRIES, QueueMessage
from syncbridge.queue.reliable_queue import (
    DeadLetterCallback,
    Lane,
    QueueClosedError,
    ReliableQueue,
    RetryEntry,
)

__all__ = [
    "BASE_RETRY_DELAY_MS",
    "DEFAULT_MAX_RETRIES",
    "DeadLetterCallback",
    "Lane",
    "MessageProcessor",
    "MessageProcessorRegistry",
    "QueueClosedError",
    "QueueConsumer",
    "QueueMessage",
    "ReliableQueue",
    "RetryEntry",
]
