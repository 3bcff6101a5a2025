"""Tamper-evident audit trail.

Components:
- **AuditChain**: Append-only hash chain with range verification
- **AuditService**: Audit API used by the sync flows (chain + audit log lines)
- **AuditStore**: Optional SQLAlchemy persistence of chain entries
"""

from syncbridge.audit.chain import (
    GENESIS_HASH,
    SYSTEM_CONTEXT,
    AuditChain,
    AuditContext,
    AuditEntry,
    AuditIntegrityError,
    compute_entry_hash,
)
from syncbridge.audit.service import AuditService
from syncbridge.audit.store import AuditRecord, AuditStore

__all__ = [
    "GENESIS_HASH",
    "SYSTEM_CONTEXT",
    "AuditChain",
    "AuditContext",
    "AuditEntry",
    "AuditIntegrityError",
    "AuditRecord",
    "AuditService",
    "AuditStore",
    "compute_entry_hash",
]
