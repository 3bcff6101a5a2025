"""Configuration classes for syncbridge.

This module defines the settings used to assemble a bridge. Values can be
given directly or read from SYNCBRIDGE_* environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class EndpointConfig:
    """Connection settings for one outbound HTTP dependency.

    Attributes:
        base_url: Base URL of the service (e.g., "https://ucs.example.org/api").
        token: Optional bearer token.
        username: Optional username for basic authentication.
        password: Optional password for basic authentication.
        timeout: Request timeout in seconds.
    """

    base_url: str
    token: str | None = None
    username: str | None = None
    password: str | None = None
    timeout: float = 30.0

    def __post_init__(self) -> None:
        """Normalize base URL."""
        self.base_url = self.base_url.rstrip("/")


@dataclass
class ResilienceSettings:
    """Circuit breaker and retry settings shared by both outbound clients."""

    failure_threshold: int = 5
    cooldown_seconds: float = 30.0
    success_threshold: int = 3
    max_attempts: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 32.0  # seconds
    backoff_multiplier: float = 2.0


@dataclass
class ConcurrencySettings:
    """Sizes of the ingestion and reverse sync worker pools."""

    ingestion_workers: int = 5
    ingestion_queue_capacity: int = 100
    reverse_sync_workers: int = 3
    reverse_sync_queue_capacity: int = 50
    shutdown_timeout: float = 30.0  # seconds


@dataclass
class PollingSettings:
    """Change detection polling settings.

    Attributes:
        enabled: Whether polling starts enabled.
        interval_ms: Milliseconds between polling ticks.
    """

    enabled: bool = False
    interval_ms: int = 30000

    def __post_init__(self) -> None:
        """Validate interval."""
        if self.interval_ms <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.interval_ms}")


@dataclass
class BulkSyncSettings:
    """Scheduled pull of legacy clients through the getAll feed.

    Attributes:
        enabled: Whether incremental sync runs on a schedule.
        interval_ms: Milliseconds between incremental runs.
        server_version_path: File holding the serverVersion watermark. The
            watermark is kept in memory only when unset.
    """

    enabled: bool = False
    interval_ms: int = 300000
    server_version_path: Path | None = None

    def __post_init__(self) -> None:
        """Validate interval."""
        if self.interval_ms <= 0:
            raise ValueError(f"Sync interval must be positive, got {self.interval_ms}")


@dataclass
class BridgeConfig:
    """Top-level configuration for a sync bridge.

    Attributes:
        legacy: Legacy records API endpoint.
        canonical: Canonical resource store endpoint.
        resilience: Circuit breaker and retry settings.
        concurrency: Worker pool settings.
        polling: Change detection polling settings.
        bulk_sync: Scheduled legacy pull settings.
        audit_db_path: Optional SQLite path for persisting the audit chain.
        queue_db_path: Optional SQLite path for persisting queue lanes.
        webhook_url: Public URL of the webhook endpoint for subscriptions.
        log_path: Log file written by the HTTP server.
    """

    legacy: EndpointConfig
    canonical: EndpointConfig
    resilience: ResilienceSettings = field(default_factory=ResilienceSettings)
    concurrency: ConcurrencySettings = field(default_factory=ConcurrencySettings)
    polling: PollingSettings = field(default_factory=PollingSettings)
    bulk_sync: BulkSyncSettings = field(default_factory=BulkSyncSettings)
    audit_db_path: Path | None = None
    queue_db_path: Path | None = None
    webhook_url: str | None = None
    log_path: Path = Path("syncbridge.log")

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Build configuration from SYNCBRIDGE_* environment variables."""
        env = os.environ
        audit_db = env.get("SYNCBRIDGE_AUDIT_DB")
        queue_db = env.get("SYNCBRIDGE_QUEUE_DB")
        version_file = env.get("SYNCBRIDGE_SERVER_VERSION_FILE")
        return cls(
            legacy=EndpointConfig(
                base_url=env.get("SYNCBRIDGE_LEGACY_URL", "http://localhost:8081/api"),
                token=env.get("SYNCBRIDGE_LEGACY_TOKEN"),
                username=env.get("SYNCBRIDGE_LEGACY_USERNAME"),
                password=env.get("SYNCBRIDGE_LEGACY_PASSWORD"),
                timeout=float(env.get("SYNCBRIDGE_LEGACY_TIMEOUT", "30")),
            ),
            canonical=EndpointConfig(
                base_url=env.get("SYNCBRIDGE_CANONICAL_URL", "http://localhost:8080/fhir"),
                token=env.get("SYNCBRIDGE_CANONICAL_TOKEN"),
                timeout=float(env.get("SYNCBRIDGE_CANONICAL_TIMEOUT", "30")),
            ),
            resilience=ResilienceSettings(
                failure_threshold=int(env.get("SYNCBRIDGE_FAILURE_THRESHOLD", "5")),
                cooldown_seconds=float(env.get("SYNCBRIDGE_COOLDOWN_SECONDS", "30")),
                success_threshold=int(env.get("SYNCBRIDGE_SUCCESS_THRESHOLD", "3")),
                max_attempts=int(env.get("SYNCBRIDGE_RETRY_MAX_ATTEMPTS", "3")),
            ),
            polling=PollingSettings(
                enabled=env.get("SYNCBRIDGE_POLLING_ENABLED", "false").lower() == "true",
                interval_ms=int(env.get("SYNCBRIDGE_POLL_INTERVAL_MS", "30000")),
            ),
            bulk_sync=BulkSyncSettings(
                enabled=env.get("SYNCBRIDGE_SYNC_ENABLED", "false").lower() == "true",
                interval_ms=int(env.get("SYNCBRIDGE_SYNC_INTERVAL_MS", "300000")),
                server_version_path=Path(version_file) if version_file else None,
            ),
            audit_db_path=Path(audit_db) if audit_db else None,
            queue_db_path=Path(queue_db) if queue_db else None,
            webhook_url=env.get("SYNCBRIDGE_WEBHOOK_URL"),
            log_path=Path(env.get("SYNCBRIDGE_LOG_PATH", "syncbridge.log")),
        )
