"""Sync API routes for pulling legacy clients on demand.

Both routes answer 202 at once and run the sync as a background task.
A request while a run is in progress is rejected with 409.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from syncbridge.bridge import SyncBridge
from syncbridge.server.api.deps import get_bridge
from syncbridge.server.schemas import SyncTriggerResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


def _ensure_idle(bridge: SyncBridge) -> None:
    if bridge.bulk_sync.is_running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A sync run is already in progress",
        )


@router.post(
    "/bulk", response_model=SyncTriggerResponse, status_code=status.HTTP_202_ACCEPTED
)
def trigger_bulk_sync(
    background_tasks: BackgroundTasks,
    bridge: SyncBridge = Depends(get_bridge),
) -> SyncTriggerResponse:
    """Ingest every legacy client, starting from serverVersion 0."""
    _ensure_idle(bridge)
    logger.info("Bulk sync requested")
    background_tasks.add_task(bridge.bulk_scheduler.run_bulk)
    return SyncTriggerResponse(message="Bulk sync started", mode="bulk", server_version=0)


@router.post(
    "/incremental", response_model=SyncTriggerResponse, status_code=status.HTTP_202_ACCEPTED
)
def trigger_incremental_sync(
    background_tasks: BackgroundTasks,
    bridge: SyncBridge = Depends(get_bridge),
) -> SyncTriggerResponse:
    """Ingest legacy clients changed since the stored serverVersion."""
    _ensure_idle(bridge)
    server_version = bridge.bulk_sync.server_version
    logger.info("Incremental sync requested from serverVersion=%d", server_version)
    background_tasks.add_task(bridge.bulk_scheduler.run_incremental)
    return SyncTriggerResponse(
        message="Incremental sync started", mode="incremental", server_version=server_version
    )
