"""Thread pool and countdown latch used by parallel data loading."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol

__all__ = ["CounterMonitor", "Runnable", "WorkerPool"]

logger = logging.getLogger(__name__)


class Runnable(Protocol):
    """Unit of work accepted by :class:`WorkerPool`."""

    def run(self) -> None: ...


class CounterMonitor:
    """Single-shot countdown latch.

    ``init(n)`` arms the latch; ``wait()`` blocks until ``decrement()`` has been
    called exactly ``n`` times, from any threads. A latch armed with zero (or
    never armed) does not block.
    """

    def __init__(self, count: int = 0) -> None:
        if count < 0:
            raise ValueError("count must be non-negative")
        self._count = count
        self._cond = threading.Condition()

    @property
    def count(self) -> int:
        with self._cond:
            return self._count

    def init(self, count: int) -> None:
        if count < 0:
            raise ValueError("count must be non-negative")
        with self._cond:
            self._count = count
            if count == 0:
                self._cond.notify_all()

    def decrement(self) -> None:
        with self._cond:
            if self._count <= 0:
                raise RuntimeError("CounterMonitor decremented below zero")
            self._count -= 1
            if self._count == 0:
                self._cond.notify_all()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the count reaches zero. Returns ``False`` only on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout=timeout)


class WorkerPool:
    """Fixed-size pool of worker threads shared by every load of a run.

    ``num_workers == 0`` builds no threads; callers then fall back to running
    work inline.
    """

    def __init__(self, num_workers: int) -> None:
        if num_workers < 0:
            raise ValueError("num_workers must be non-negative")
        self.num_workers = int(num_workers)
        self._executor: ThreadPoolExecutor | None = None
        if self.num_workers > 0:
            self._executor = ThreadPoolExecutor(
                max_workers=self.num_workers, thread_name_prefix="gbmtrain-worker"
            )
            logger.debug("started worker pool with %d threads", self.num_workers)

    def add(self, task: Runnable) -> Future:
        if self._executor is None:
            raise RuntimeError("WorkerPool has no workers (num_workers=0 or shut down)")
        return self._executor.submit(task.run)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
