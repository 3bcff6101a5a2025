"""Main API router that includes all sub-routers."""

from __future__ import annotations

from fastapi import APIRouter

from syncbridge.server.api import audit, health, sync, webhook

router = APIRouter()

# Include all API routers
router.include_router(health.router)
router.include_router(webhook.router)
router.include_router(audit.router)
router.include_router(sync.router)
