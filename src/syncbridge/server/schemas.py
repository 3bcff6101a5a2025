"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from pydantic import BaseModel

# === Webhook schemas ===


class WebhookResponse(BaseModel):
    """Response for an accepted change notification."""

    message: str
    processed: int


class WebhookHealthResponse(BaseModel):
    """Response for the webhook health check."""

    status: str
    message: str


# === Health schemas ===


class CircuitBreakerStatus(BaseModel):
    """State of one outbound dependency's circuit breaker."""

    name: str
    state: str
    consecutive_failures: int
    consecutive_successes: int


class QueueStatus(BaseModel):
    """Sizes of the queue lanes."""

    primary: int
    retry: int
    dead_letter: int


class HealthResponse(BaseModel):
    """Response for the bridge health check."""

    status: str
    circuit_breakers: list[CircuitBreakerStatus]
    queue: QueueStatus
    in_flight_ingestions: int
    polling_enabled: bool
    audit_sequence: int


# === Audit schemas ===


class AuditVerifyResponse(BaseModel):
    """Result of an audit chain range verification."""

    start: int
    end: int
    valid: bool


# === Sync schemas ===


class SyncTriggerResponse(BaseModel):
    """Response for an accepted bulk or incremental sync request."""

    message: str
    mode: str
    server_version: int
