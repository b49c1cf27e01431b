"""
Worker pool for descriptor syscalls.

Regular files cannot be polled for readiness, so open, read, close and
access calls run on a small ThreadPoolExecutor and are awaited from the
event loop. The loop thread itself never blocks on file I/O.
"""

import asyncio
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

from filestreamer.app_logger import AppLogger, LogContext, get_default_logger


class DescriptorIOPool:
    """
    Thread pool that runs blocking descriptor operations for the event loop.

    Key Features:
    -------------
    - Awaitable submission bound to the running loop
    - Tracking of in-flight operations
    - Idempotent shutdown
    """

    def __init__(self, max_workers: Optional[int] = None, logger: Optional[AppLogger] = None):
        """
        Initialise the pool.

        Args:
            max_workers: Maximum number of worker threads. If None, defaults to min(8, CPU count + 4)
            logger: Optional AppLogger for diagnostics
        """
        if max_workers is None:
            max_workers = min(8, (os.cpu_count() or 1) + 4)

        self._max_workers = max_workers
        self._logger = logger or get_default_logger()
        self._context = LogContext(component="DescriptorIOPool")
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="filestreamer-io"
        )
        self._active_futures: set = set()
        self._futures_lock = threading.Lock()
        self._running = True

    async def run(self, fn: Callable[..., Any], *args) -> Any:
        """
        Run ``fn(*args)`` on a worker thread and await its result.

        Raises:
            RuntimeError: If the pool has been shut down
        """
        if not self._running:
            raise RuntimeError("descriptor I/O pool has been shut down")

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, fn, *args)
        with self._futures_lock:
            self._active_futures.add(future)
        future.add_done_callback(self._task_completed_callback)

        self._logger.debug(
            "Descriptor operation submitted",
            context=LogContext(component=self._context.component, operation="run"),
            task_name=getattr(fn, "__name__", str(fn)),
        )
        return await future

    def _task_completed_callback(self, future: asyncio.Future) -> None:
        with self._futures_lock:
            self._active_futures.discard(future)

    def is_running(self) -> bool:
        return self._running

    def get_capacity(self) -> int:
        return self._max_workers

    def get_active_count(self) -> int:
        with self._futures_lock:
            return len(self._active_futures)

    def get_metrics(self) -> Dict[str, Any]:
        """Get current pool statistics."""
        with self._futures_lock:
            return {
                "max_workers": self._max_workers,
                "active_operations": len(self._active_futures),
                "is_running": self._running,
            }

    def shutdown(self, wait: bool = True) -> None:
        """Shut down the pool; further calls are no-ops."""
        if not self._running:
            return
        self._running = False
        self._logger.debug(
            "Shutting down descriptor I/O pool",
            context=LogContext(component=self._context.component, operation="shutdown"),
            active_operations=self.get_active_count(),
        )
        self._executor.shutdown(wait=wait)
        with self._futures_lock:
            self._active_futures.clear()


_default_pool: Optional[DescriptorIOPool] = None
_default_pool_lock = threading.Lock()


def get_default_pool() -> DescriptorIOPool:
    """Get the process-wide pool shared by sessions without their own."""
    global _default_pool
    with _default_pool_lock:
        if _default_pool is None or not _default_pool.is_running():
            _default_pool = DescriptorIOPool()
        return _default_pool
