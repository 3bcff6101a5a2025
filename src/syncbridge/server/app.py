"""FastAPI application for the sync bridge.

This module creates and configures the FastAPI application with:
- Webhook endpoints for change notifications from the canonical store
- Health and audit verification endpoints

Usage:
    uvicorn syncbridge.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from syncbridge.bridge import SyncBridge
from syncbridge.core.config import BridgeConfig
from syncbridge.server.api.router import router as api_router

logger = logging.getLogger(__name__)


def setup_logging(log_path: Path, level: int = logging.INFO) -> None:
    """Send syncbridge logs to stdout and to a log file.

    Uvicorn loggers share the file handler so request logs land next to the
    sync logs. Calling this twice does not duplicate handlers.

    Args:
        log_path: Log file to append to.
        level: Level for the syncbridge logger.
    """
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    package_logger = logging.getLogger("syncbridge")
    package_logger.setLevel(level)
    if any(getattr(h, "_syncbridge", False) for h in package_logger.handlers):
        return

    console = logging.StreamHandler(sys.stdout)
    log_file = logging.FileHandler(log_path, encoding="utf-8")
    for handler in (console, log_file):
        handler.setFormatter(formatter)
        handler._syncbridge = True  # type: ignore[attr-defined]
        package_logger.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).addHandler(log_file)


def create_app(bridge: SyncBridge, manage_lifecycle: bool = True) -> FastAPI:
    """Create FastAPI application around a sync bridge.

    Args:
        bridge: Assembled bridge.
        manage_lifecycle: Start the bridge on startup and stop it on shutdown.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        config = bridge.config
        logger.info("=" * 60)
        logger.info("SyncBridge Starting")
        logger.info("=" * 60)
        logger.info("  Legacy API:     %s", config.legacy.base_url)
        logger.info("  Canonical FHIR: %s", config.canonical.base_url)
        logger.info("  Audit DB:       %s", config.audit_db_path or "in-memory")
        logger.info("  Queue DB:       %s", config.queue_db_path or "in-memory")
        if config.polling.enabled:
            logger.info("  Polling:        every %dms", config.polling.interval_ms)
        else:
            logger.info("  Polling:        disabled")
        logger.info("=" * 60)
        if manage_lifecycle:
            bridge.start()

        yield

        logger.info("SyncBridge shutting down")
        if manage_lifecycle:
            bridge.stop()

    application = FastAPI(
        title="SyncBridge",
        description="Resilient bidirectional sync between a legacy records API and a FHIR store",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.state.bridge = bridge

    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Build the app from SYNCBRIDGE_* settings (uvicorn --factory)."""
    config = BridgeConfig.from_env()
    setup_logging(config.log_path)
    return create_app(SyncBridge.from_config(config))
