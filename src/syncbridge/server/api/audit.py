"""Audit chain API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from syncbridge.bridge import SyncBridge
from syncbridge.server.api.deps import get_bridge
from syncbridge.server.schemas import AuditVerifyResponse

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/verify", response_model=AuditVerifyResponse)
def verify_audit_chain(
    start: int = Query(1, ge=1),
    end: int | None = Query(None, ge=1),
    bridge: SyncBridge = Depends(get_bridge),
) -> AuditVerifyResponse:
    """Verify integrity of an inclusive sequence range (default: whole chain)."""
    current = bridge.audit_chain.current_sequence
    if current == 0 and end is None:
        return AuditVerifyResponse(start=start, end=0, valid=True)

    resolved_end = current if end is None else end
    if start > resolved_end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid range: start {start} is after end {resolved_end}",
        )
    return AuditVerifyResponse(
        start=start,
        end=resolved_end,
        valid=bridge.audit_chain.verify_range(start, resolved_end),
    )
