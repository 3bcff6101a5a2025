"""Tests for the polling scheduler."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

from syncbridge.detection.scheduler import PollingScheduler


class TestPollingScheduler:
    """Tests for PollingScheduler."""

    def test_interval_defaults_to_detector(self) -> None:
        detector = MagicMock()
        detector.polling_interval_ms = 15000

        assert PollingScheduler(detector).interval_ms == 15000
        assert PollingScheduler(detector, 2000).interval_ms == 2000

    def test_run_now(self) -> None:
        detector = MagicMock()
        detector.poll_all.return_value = 3

        assert PollingScheduler(detector).run_now() == 3
        detector.poll_all.assert_called_once()

    def test_poll_job_swallows_errors(self) -> None:
        """A failing tick must not kill the scheduler job."""
        detector = MagicMock()
        detector.poll_all.side_effect = RuntimeError("store down")

        PollingScheduler(detector)._poll_job()

        detector.poll_all.assert_called_once()

    def test_start_runs_ticks_and_stop(self) -> None:
        ticked = threading.Event()
        detector = MagicMock()
        detector.poll_all.side_effect = lambda: ticked.set() or 0

        scheduler = PollingScheduler(detector, interval_ms=50)
        scheduler.start()
        try:
            assert scheduler.is_running
            assert ticked.wait(timeout=5)
        finally:
            scheduler.stop()

        assert not scheduler.is_running

    def test_start_twice_is_noop(self) -> None:
        detector = MagicMock()
        scheduler = PollingScheduler(detector, interval_ms=60000)
        scheduler.start()
        first = scheduler._scheduler
        scheduler.start()

        assert scheduler._scheduler is first
        scheduler.stop()
        scheduler.stop()
