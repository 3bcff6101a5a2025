"""FastAPI dependencies for API routes."""

from __future__ import annotations

from fastapi import Request

from syncbridge.bridge import SyncBridge


def get_bridge(request: Request) -> SyncBridge:
    """Get the sync bridge from app state."""
    bridge: SyncBridge = request.app.state.bridge
    return bridge
