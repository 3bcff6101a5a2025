"""Scheduler for change-detection polling.

This module provides:
- PollingScheduler: Runs ChangeDetector.poll_all on a fixed interval
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from syncbridge.detection.change_detector import ChangeDetector

logger = logging.getLogger(__name__)


class PollingScheduler:
    """Background scheduler for polling ticks.

    A tick that is still running when the next one is due is not started
    again (max_instances=1), and missed ticks collapse into one (coalesce).
    """

    def __init__(self, detector: ChangeDetector, interval_ms: int | None = None) -> None:
        """Initialize the scheduler.

        Args:
            detector: Change detector to poll.
            interval_ms: Tick interval. Defaults to the detector's interval.
        """
        self._detector = detector
        self._interval_ms = interval_ms
        self._scheduler: BackgroundScheduler | None = None

    @property
    def interval_ms(self) -> int:
        return self._interval_ms or self._detector.polling_interval_ms

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def _poll_job(self) -> None:
        """Job function for a scheduled polling tick."""
        try:
            count = self._detector.poll_all()
            if count > 0:
                logger.info("Polling tick dispatched %d changed resources", count)
            else:
                logger.debug("Polling tick: no changes")
        except Exception:
            logger.exception("Error during scheduled polling tick")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._poll_job,
            trigger=IntervalTrigger(seconds=self.interval_ms / 1000),
            id="change_polling",
            name="Canonical store change polling",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Polling scheduler started (every %dms)", self.interval_ms)

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Polling scheduler stopped")

    def run_now(self) -> int:
        """Run a polling tick immediately (manual trigger).

        Returns:
            Number of changed resources dispatched.
        """
        return self._detector.poll_all()
