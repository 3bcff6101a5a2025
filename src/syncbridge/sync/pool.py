"""Bounded worker pool for the sync flows.

This module provides:
- BoundedPool: Fixed worker count plus bounded backlog; runs the task in
  the caller's thread when saturated
- PoolState: Lifecycle state of a pool
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from enum import Enum, auto
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PoolState(Enum):
    """State of the worker pool."""

    RUNNING = auto()
    STOPPING = auto()
    STOPPED = auto()


class PoolStoppedError(RuntimeError):
    """Task submitted to a pool that no longer accepts work."""


class BoundedPool:
    """Thread pool with a bounded number of outstanding tasks.

    At most max_workers tasks run and at most queue_capacity wait. A task
    submitted beyond that runs synchronously in the submitting thread,
    which slows producers down instead of dropping work.

    Usage:
        pool = BoundedPool("ingestion", max_workers=5, queue_capacity=100)
        future = pool.submit(flow.process, record)
        pool.stop(timeout=30)
    """

    def __init__(self, name: str, max_workers: int, queue_capacity: int) -> None:
        """Initialize the pool.

        Args:
            name: Pool name, used as thread name prefix ("<name>-").
            max_workers: Number of worker threads.
            queue_capacity: Number of tasks allowed to wait for a worker.
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        if queue_capacity < 0:
            raise ValueError(f"queue_capacity must be >= 0, got {queue_capacity}")

        self._name = name
        self._max_workers = max_workers
        self._queue_capacity = queue_capacity
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"{name}-")
        self._slots = threading.BoundedSemaphore(max_workers + queue_capacity)
        self._lock = threading.Lock()
        self._pending: set[Future] = set()
        self._state = PoolState.RUNNING
        self._caller_runs_count = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> PoolState:
        """Get current pool state."""
        return self._state

    @property
    def pending_count(self) -> int:
        """Get number of queued or running tasks."""
        with self._lock:
            return len(self._pending)

    @property
    def caller_runs_count(self) -> int:
        """Get number of tasks that ran in the caller's thread."""
        return self._caller_runs_count

    def submit(self, fn: Callable[..., T], *args: object) -> Future[T]:
        """Submit a task.

        Returns:
            Future of the task result. When the pool is saturated the task
            has already run and the future is done.

        Raises:
            PoolStoppedError: If the pool is stopping or stopped.
        """
        if self._state != PoolState.RUNNING:
            raise PoolStoppedError(f"Pool {self._name} is not accepting tasks")

        if not self._slots.acquire(blocking=False):
            self._caller_runs_count += 1
            logger.warning("Pool %s saturated, running task in caller thread", self._name)
            return self._run_in_caller(fn, *args)

        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError:
            self._slots.release()
            raise PoolStoppedError(f"Pool {self._name} is not accepting tasks") from None

        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        self._slots.release()

    @staticmethod
    def _run_in_caller(fn: Callable[..., T], *args: object) -> Future[T]:
        future: Future[T] = Future()
        try:
            future.set_result(fn(*args))
        except Exception as e:
            future.set_exception(e)
        return future

    def stop(self, timeout: float = 30.0) -> bool:
        """Stop accepting tasks and drain outstanding ones.

        Args:
            timeout: Maximum seconds to wait for outstanding tasks.

        Returns:
            True if every task finished within the timeout. Otherwise queued
            tasks are cancelled and running ones are abandoned.
        """
        if self._state == PoolState.STOPPED:
            return True

        self._state = PoolState.STOPPING
        with self._lock:
            pending = list(self._pending)
        logger.info("Stopping pool %s with %d outstanding tasks", self._name, len(pending))

        started = time.monotonic()
        _, not_done = wait_futures(pending, timeout=timeout)
        drained = not not_done
        if drained:
            self._executor.shutdown(wait=True)
            logger.info(
                "Pool %s drained in %.2fs", self._name, time.monotonic() - started
            )
        else:
            logger.warning(
                "Pool %s did not drain within %.1fs, cancelling %d tasks",
                self._name,
                timeout,
                len(not_done),
            )
            self._executor.shutdown(wait=False, cancel_futures=True)

        self._state = PoolState.STOPPED
        return drained
