"""Scheduler for incremental ingestion from the legacy system.

This module provides:
- BulkSyncScheduler: Runs BulkSyncService.incremental_sync on a fixed interval
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from syncbridge.sync.bulk import BulkSyncService, BulkSyncSummary

logger = logging.getLogger(__name__)


class BulkSyncScheduler:
    """Background scheduler for incremental sync runs.

    Uses the same job settings as change polling: one run at a time
    (max_instances=1) and missed runs collapse into one (coalesce).
    run_bulk and run_incremental are the job bodies for manual triggers;
    they log failures instead of raising.
    """

    def __init__(self, service: BulkSyncService, interval_ms: int = 300000) -> None:
        self._service = service
        self._interval_ms = interval_ms
        self._scheduler: BackgroundScheduler | None = None

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def run_bulk(self) -> BulkSyncSummary | None:
        return self._run_job("bulk", self._service.bulk_sync)

    def run_incremental(self) -> BulkSyncSummary | None:
        return self._run_job("incremental", self._service.incremental_sync)

    def _run_job(
        self, mode: str, job: Callable[[], BulkSyncSummary | None]
    ) -> BulkSyncSummary | None:
        try:
            return job()
        except Exception:
            logger.exception("Error during %s sync", mode)
            return None

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self.run_incremental,
            trigger=IntervalTrigger(seconds=self._interval_ms / 1000),
            id="incremental_sync",
            name="Incremental legacy client sync",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Incremental sync scheduler started (every %dms)", self._interval_ms)

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Incremental sync scheduler stopped")
