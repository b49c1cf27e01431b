"""
Staleness watcher for streamed files.

Subscribes to watchdog change notifications for one path. Content-change
notifications trigger an accessibility check on the event loop; if the file
can no longer be read the watcher reports a WatchFailure and disarms itself.
Delete and move notifications are not used as deletion signals since their
delivery differs across platforms (an unlinked file that is still open
reports an attribute change, which watchdog surfaces as a modification).
"""

import asyncio
import errno
import os
import threading
from typing import Callable, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from filestreamer.app_logger import AppLogger, LogContext, get_default_logger
from filestreamer.errors import WatchFailure
from filestreamer.io_pool import DescriptorIOPool, get_default_pool


def require_readable(path: str) -> None:
    """Raise OSError unless ``path`` exists and is readable."""
    os.stat(path)
    if not os.access(path, os.R_OK):
        raise PermissionError(errno.EACCES, os.strerror(errno.EACCES), path)


class TargetFileHandler(FileSystemEventHandler):
    """Forwards modification events for a single file path."""

    def __init__(self, target: str, on_change: Callable[[], None]):
        super().__init__()
        self._target = target
        self._on_change = on_change

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        src_path = os.fsdecode(event.src_path)
        if os.path.abspath(src_path) == self._target:
            self._on_change()


class StalenessWatcher:
    """
    Watches a file and reports when it stops being accessible.

    start() and stop() are idempotent: arming an armed watcher or disarming
    an unarmed one does nothing, and every start() is balanced by exactly one
    observer shutdown.
    """

    def __init__(
        self,
        on_missing: Callable[[WatchFailure], None],
        io_pool: Optional[DescriptorIOPool] = None,
        logger: Optional[AppLogger] = None,
        observer_factory: Optional[Callable[[], Observer]] = None,
        join_timeout: float = 1.0,
    ):
        """
        Initialise the watcher.

        Args:
            on_missing: Called on the event loop with the failure once the file is gone
            io_pool: Pool running the accessibility check (shared default if None)
            logger: Optional AppLogger
            observer_factory: Builds the watchdog observer (watchdog.observers.Observer if None)
            join_timeout: Seconds to wait for the observer thread on stop()
        """
        self._on_missing = on_missing
        self._io_pool = io_pool or get_default_pool()
        self._logger = logger or get_default_logger()
        self._observer_factory = observer_factory
        self._join_timeout = join_timeout
        self._observer: Optional[Observer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._path: Optional[str] = None
        self._checks: Set[asyncio.Task] = set()
        self._joins: Set[asyncio.Task] = set()

    @property
    def is_armed(self) -> bool:
        return self._observer is not None

    @property
    def path(self) -> Optional[str]:
        return self._path

    def start(self, path: str, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """
        Arm the watcher for ``path``.

        Raises:
            WatchFailure: If the path cannot be watched
        """
        if self._observer is not None:
            return

        target = os.path.abspath(os.fspath(path))
        self._loop = loop or asyncio.get_running_loop()
        observer = (self._observer_factory or Observer)()
        observer.daemon = True
        try:
            observer.schedule(
                TargetFileHandler(target, self._notify), target, recursive=False
            )
            observer.start()
        except OSError as e:
            self._logger.warning(
                "Unable to watch file",
                context=LogContext(component="StalenessWatcher", operation="start", path=target),
                error=str(e),
            )
            raise WatchFailure(e, target) from e

        self._path = target
        self._observer = observer
        self._logger.debug(
            "Watching file for staleness",
            context=LogContext(component="StalenessWatcher", operation="start", path=target),
        )

    def stop(self) -> None:
        """Disarm the watcher and release the observer thread."""
        observer = self._observer
        if observer is None:
            return

        self._observer = None
        observer.stop()
        if self._loop is not None and self._loop.is_running():
            # Joined on the pool so the event loop never waits for the thread
            task = self._loop.create_task(self._join(observer))
            self._joins.add(task)
            task.add_done_callback(self._joins.discard)
        elif observer.is_alive() and observer is not threading.current_thread():
            observer.join(self._join_timeout)
        self._logger.debug(
            "Stopped watching file",
            context=LogContext(component="StalenessWatcher", operation="stop", path=self._path),
        )

    async def _join(self, observer: Observer) -> None:
        try:
            await self._io_pool.run(observer.join, self._join_timeout)
        except RuntimeError as e:
            self._logger.warning(
                "Observer thread not joined",
                context=LogContext(component="StalenessWatcher", operation="stop", path=self._path),
                error=str(e),
            )

    async def wait_stopped(self) -> None:
        """Wait until every stopped observer thread has been joined."""
        while self._joins:
            await asyncio.wait(set(self._joins))

    def _notify(self) -> None:
        # Runs on the observer thread
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._schedule_check)

    def _schedule_check(self) -> None:
        if self._observer is None:
            return
        task = self._loop.create_task(self._check_access(self._observer, self._path))
        self._checks.add(task)
        task.add_done_callback(self._checks.discard)

    async def _check_access(self, observer: Observer, path: str) -> None:
        try:
            await self._io_pool.run(require_readable, path)
        except OSError as e:
            # A newer arm/disarm cycle owns the watcher now
            if self._observer is not observer:
                return
            failure = WatchFailure(e, path)
            self._logger.warning(
                "Watched file is no longer accessible",
                context=LogContext(component="StalenessWatcher", operation="check", path=path),
                error=str(e),
            )
            self._on_missing(failure)
            self.stop()
