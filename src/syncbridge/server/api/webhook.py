"""Webhook API routes for change notifications pushed by the canonical store."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status

from syncbridge.bridge import SyncBridge
from syncbridge.server.api.deps import get_bridge
from syncbridge.server.schemas import WebhookHealthResponse, WebhookResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/fhir/webhook", tags=["webhook"])


@router.post("/notification", response_model=WebhookResponse)
def handle_bundle_notification(
    bundle: dict[str, Any] = Body(...),
    bridge: SyncBridge = Depends(get_bridge),
) -> WebhookResponse:
    """Process a Bundle of changed resources."""
    logger.info("Received webhook bundle notification")
    try:
        processed = bridge.detector.handle_webhook(bundle)
    except Exception as e:
        logger.exception("Error processing webhook notification")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error processing notification: {e}",
        ) from e
    return WebhookResponse(message="Notification processed successfully", processed=processed)


@router.post("/resource/{resource_type}", response_model=WebhookResponse)
def handle_resource_notification(
    resource_type: str,
    resource: dict[str, Any] = Body(...),
    bridge: SyncBridge = Depends(get_bridge),
) -> WebhookResponse:
    """Process a single changed resource of the given type."""
    logger.info("Received webhook notification for resource type: %s", resource_type)
    actual_type = resource.get("resourceType")
    if actual_type != resource_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Resource type mismatch: expected {resource_type}, got {actual_type}",
        )

    try:
        processed = bridge.detector.handle_webhook(resource)
    except Exception as e:
        logger.exception("Error processing resource notification")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error processing resource notification: {e}",
        ) from e
    return WebhookResponse(
        message="Resource notification processed successfully", processed=processed
    )


@router.get("/health", response_model=WebhookHealthResponse)
def webhook_health() -> WebhookHealthResponse:
    """Check webhook endpoint health."""
    return WebhookHealthResponse(status="ok", message="Webhook endpoint is healthy")
