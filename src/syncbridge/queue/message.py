"""Queue message with retry accounting."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from syncbridge.core.models import format_timestamp, parse_timestamp

DEFAULT_MAX_RETRIES = 5
BASE_RETRY_DELAY_MS = 1000


@dataclass
class QueueMessage:
    """A unit of work travelling through the reliable queue.

    Attributes:
        payload: Opaque serialized work item (JSON text).
        message_type: Routing key used to pick a processor.
        id: Unique message id.
        retry_count: Number of retries already scheduled.
        max_retries: Retries allowed before dead-lettering.
        created_at: When the message was first created.
        last_attempt_at: When the last retry was scheduled.
        error_message: Error of the most recent failed attempt.
    """

    payload: str
    message_type: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_attempt_at: datetime | None = None
    error_message: str | None = None

    @property
    def can_retry(self) -> bool:
        """Check if another retry is allowed."""
        return self.retry_count < self.max_retries

    @property
    def retry_delay_ms(self) -> int:
        """Get the redelivery delay for the current retry count (2^n seconds)."""
        return (2**self.retry_count) * BASE_RETRY_DELAY_MS

    def increment_retry_count(self) -> None:
        """Count one more retry and stamp the attempt time."""
        if not self.can_retry:
            raise ValueError(
                f"Message {self.id} already used {self.retry_count}/{self.max_retries} retries"
            )
        self.retry_count += 1
        self.last_attempt_at = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted/transmitted form."""
        return {
            "id": self.id,
            "payload": self.payload,
            "messageType": self.message_type,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
            "createdAt": format_timestamp(self.created_at),
            "lastAttemptAt": format_timestamp(self.last_attempt_at),
            "errorMessage": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueMessage:
        """Create from the persisted/transmitted form."""
        return cls(
            id=data["id"],
            payload=data["payload"],
            message_type=data["messageType"],
            retry_count=data.get("retryCount", 0),
            max_retries=data.get("maxRetries", DEFAULT_MAX_RETRIES),
            created_at=parse_timestamp(data.get("createdAt")) or datetime.now(UTC),
            last_attempt_at=parse_timestamp(data.get("lastAttemptAt")),
            error_message=data.get("errorMessage"),
        )
