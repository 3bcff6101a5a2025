"""Audit service used by the sync flows.

Every method appends an entry to the hash chain and writes a formatted
line to the "syncbridge.audit" logger, so operators can follow the audit
trail in ordinary log files while the chain provides tamper evidence.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from syncbridge.audit.chain import SYSTEM_CONTEXT, AuditContext, AuditEntry
from syncbridge.core.types import CANONICAL_SYSTEM, LEGACY_SYSTEM

if TYPE_CHECKING:
    from syncbridge.audit.chain import AuditChain

audit_log = logging.getLogger("syncbridge.audit")


class AuditService:
    """High-level audit API on top of an AuditChain."""

    def __init__(self, chain: AuditChain) -> None:
        self._chain = chain

    @property
    def chain(self) -> AuditChain:
        return self._chain

    def log_transformation(
        self,
        source_system: str,
        target_system: str,
        operation: str,
        source_id: str | None,
        target_id: str | None,
        success: bool,
        details: str | None = None,
        context: AuditContext = SYSTEM_CONTEXT,
    ) -> AuditEntry:
        """Audit a transformation between systems."""
        audit_log.info(
            "TRANSFORMATION | %s->%s | %s | SourceId=%s | TargetId=%s | Success=%s | Details=%s",
            source_system,
            target_system,
            operation,
            source_id,
            target_id,
            success,
            details,
        )
        return self._chain.record(
            "TRANSFORMATION",
            context=context,
            resource_id=source_id,
            data_type=f"{source_system}->{target_system}",
            operation=operation,
            source_system=source_system,
            success=success,
            details=f"TargetId={target_id or 'N/A'}; {details or ''}".rstrip("; "),
        )

    def log_canonical_operation(
        self,
        operation: str,
        resource_type: str,
        resource_id: str | None,
        success: bool,
        details: str | None = None,
        context: AuditContext = SYSTEM_CONTEXT,
    ) -> AuditEntry:
        """Audit a create/update/read against the canonical store."""
        audit_log.info(
            "FHIR | %s | %s | ResourceId=%s | Success=%s | Details=%s",
            operation,
            resource_type,
            resource_id,
            success,
            details,
        )
        return self._chain.record(
            "FHIR_OPERATION",
            context=context,
            resource_id=resource_id,
            data_type=resource_type,
            operation=operation,
            source_system=CANONICAL_SYSTEM,
            success=success,
            details=details,
        )

    def log_data_access(
        self,
        resource_id: str | None,
        data_type: str,
        operation: str,
        source_system: str,
        details: str | None = None,
        context: AuditContext = SYSTEM_CONTEXT,
    ) -> AuditEntry:
        """Audit access to patient data."""
        audit_log.info(
            "DATA_ACCESS | UserId=%s | PatientId=%s | DataType=%s | Operation=%s | Source=%s"
            " | Details=%s",
            context.user_id,
            resource_id,
            data_type,
            operation,
            source_system,
            details,
        )
        return self._chain.record(
            "DATA_ACCESS",
            context=context,
            resource_id=resource_id,
            data_type=data_type,
            operation=operation,
            source_system=source_system,
            details=details,
        )

    def log_conflict(
        self,
        resource_id: str | None,
        conflict_type: str,
        resolution: str,
        details: str | None = None,
        context: AuditContext = SYSTEM_CONTEXT,
    ) -> AuditEntry:
        """Audit a detected sync conflict and how it was resolved."""
        audit_log.info(
            "CONFLICT | ResourceId=%s | Type=%s | Resolution=%s | Details=%s",
            resource_id,
            conflict_type,
            resolution,
            details,
        )
        return self._chain.record(
            "SYNC_CONFLICT",
            context=context,
            resource_id=resource_id,
            data_type=conflict_type,
            operation=resolution,
            source_system=CANONICAL_SYSTEM,
            details=details,
        )

    def log_consistency_warning(
        self,
        resource_id: str | None,
        issues: list[str],
        context: AuditContext = SYSTEM_CONTEXT,
    ) -> AuditEntry:
        """Audit data mismatches found by a consistency check."""
        details = "; ".join(issues)
        audit_log.warning("CONSISTENCY_WARNING | ResourceId=%s | Issues=%s", resource_id, details)
        return self._chain.record(
            "CONSISTENCY_WARNING",
            context=context,
            resource_id=resource_id,
            operation="CONSISTENCY_CHECK",
            source_system=LEGACY_SYSTEM,
            success=False,
            details=details,
        )

    def log_performance_alert(
        self,
        operation: str,
        resource_id: str | None,
        value_ms: float,
        threshold_ms: float,
        context: AuditContext = SYSTEM_CONTEXT,
    ) -> AuditEntry:
        """Audit an operation that exceeded its time budget."""
        audit_log.warning(
            "PERFORMANCE_ALERT | %s | Metric=duration_ms | Value=%.2f | Threshold=%.2f"
            " | ResourceId=%s",
            operation,
            value_ms,
            threshold_ms,
            resource_id,
        )
        return self._chain.record(
            "PERFORMANCE_ALERT",
            context=context,
            resource_id=resource_id,
            operation=operation,
            details=f"duration_ms={value_ms:.2f} threshold_ms={threshold_ms:.2f}",
        )

    def log_sync_failure(
        self,
        event_type: str,
        operation: str,
        resource_id: str | None,
        error_message: str,
        source_system: str | None = None,
        context: AuditContext = SYSTEM_CONTEXT,
    ) -> AuditEntry:
        """Audit a failed sync operation that needs attention."""
        audit_log.error(
            "ERROR | %s | %s | ResourceId=%s | Message=%s",
            event_type,
            operation,
            resource_id,
            error_message,
        )
        return self._chain.record(
            event_type,
            context=context,
            resource_id=resource_id,
            operation=operation,
            source_system=source_system,
            success=False,
            details=error_message,
        )
