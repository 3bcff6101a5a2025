"""Core module - Shared configuration, models and types."""

from syncbridge.core.config import (
    BridgeConfig,
    ConcurrencySettings,
    EndpointConfig,
    PollingSettings,
    ResilienceSettings,
)
from syncbridge.core.models import (
    EPOCH,
    CanonicalResource,
    LegacyRecord,
    format_timestamp,
    parse_timestamp,
)
from syncbridge.core.types import (
    CANONICAL_SYSTEM,
    INGESTION_ORIGIN_CODES,
    INGESTION_TAG_CODE,
    LEGACY_SYSTEM,
    PROVENANCE_TAG_SYSTEM,
    CircuitState,
    ResourceKind,
)

__all__ = [
    # Config
    "BridgeConfig",
    "ConcurrencySettings",
    "EndpointConfig",
    "PollingSettings",
    "ResilienceSettings",
    # Models
    "CanonicalResource",
    "EPOCH",
    "LegacyRecord",
    "format_timestamp",
    "parse_timestamp",
    # Types
    "CANONICAL_SYSTEM",
    "CircuitState",
    "INGESTION_ORIGIN_CODES",
    "INGESTION_TAG_CODE",
    "LEGACY_SYSTEM",
    "PROVENANCE_TAG_SYSTEM",
    "ResourceKind",
]
