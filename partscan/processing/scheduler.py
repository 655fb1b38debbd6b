"""Bounded-concurrency job scheduler for OCR work."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, TypeVar

from .errors import ConfigurationError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class JobScheduler:
    """Run submitted tasks with at most ``max_concurrency`` in flight.

    Tasks that cannot start immediately wait in FIFO order. A finished task,
    successful or not, frees its slot for the next waiting one. There is no
    priority, cancellation or per-task deadline, so a task that never returns
    holds its slot for the lifetime of the scheduler.
    """

    def __init__(self, max_concurrency: int = 1):
        if not isinstance(max_concurrency, int) or max_concurrency < 1:
            raise ConfigurationError(f"Concurrency must be at least 1, got {max_concurrency!r}")

        self.max_concurrency = max_concurrency
        self._executor = ThreadPoolExecutor(max_workers=max_concurrency, thread_name_prefix="partscan-job")
        self._lock = threading.Lock()
        self._running = 0
        self._pending = 0

    @property
    def running(self) -> int:
        with self._lock:
            return self._running

    @property
    def pending(self) -> int:
        with self._lock:
            return self._pending

    def submit(self, task: Callable[[], T]) -> "Future[T]":
        """Queue a task and return a future for its result.

        Exceptions raised by the task are delivered through the future.
        """
        with self._lock:
            self._pending += 1
        try:
            return self._executor.submit(self._run, task)
        except RuntimeError:
            with self._lock:
                self._pending -= 1
            raise

    def _run(self, task: Callable[[], T]) -> T:
        with self._lock:
            self._pending -= 1
            self._running += 1
        try:
            return task()
        except Exception as e:
            logger.debug(f"Scheduled task failed: {e}")
            raise
        finally:
            with self._lock:
                self._running -= 1

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "JobScheduler":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=True)
