"""
Lifecycle controller for file streaming sessions.

FileStreamer owns one descriptor at a time and coordinates opening, closing,
attaching stream adapters (stream/unstream) and the optional staleness
watcher. Lifecycle results reach the caller either through an explicit
continuation (on_success/on_error) or, when none is given, as signals on the
session channel. Both paths share the same state transitions.
"""

import asyncio
import dataclasses
import os
import stat
from collections.abc import Mapping
from functools import partial
from typing import Any, Callable, Optional, Set, Tuple, Union

from filestreamer.app_logger import AppLogger, LogContext, get_default_logger
from filestreamer.config import MAX_STREAMABLE_BUFFER_SIZE, StreamerConfig
from filestreamer.errors import (
    BufferTooLargeError,
    InvalidActionError,
    IOFailure,
    NotOpenError,
    StillStreamingError,
    WatchFailure,
)
from filestreamer.events import SessionChannel, SessionEvent, SessionEventType
from filestreamer.io_pool import DescriptorIOPool, get_default_pool
from filestreamer.metrics_collector import StreamMetrics
from filestreamer.read_loop import PendingRead, ReadLoop
from filestreamer.staleness_watcher import StalenessWatcher
from filestreamer.stream_adapter import StreamAdapter

ACTION_OPEN_FILE = "open"
ACTION_CLOSE_FILE = "close"

SuccessCallback = Callable[["FileStreamer"], Any]
ErrorCallback = Callable[[BaseException], Any]
Signal = Union[str, SessionEventType]


@dataclasses.dataclass(frozen=True)
class Outcome:
    """Result of a lifecycle operation, independent of how it is delivered."""

    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _resolve(future: asyncio.Future, value: Any) -> None:
    if not future.done():
        future.set_result(value)


def _reject(future: asyncio.Future, error: BaseException) -> None:
    if not future.done():
        future.set_exception(error)


def open_for_streaming(path: str) -> Tuple[int, bool]:
    """Open ``path`` read-only, switching named pipes to non-blocking reads."""
    descriptor = os.open(path, os.O_RDONLY)
    try:
        is_pipe = stat.S_ISFIFO(os.fstat(descriptor).st_mode)
        if is_pipe:
            os.set_blocking(descriptor, False)
    except OSError:
        os.close(descriptor)
        raise
    return descriptor, is_pipe


class FileStreamer:
    """
    Streams the contents of a regular file or named pipe.

    Typical use::

        streamer = FileStreamer(chunk_size=4096, close_on_eof=True)
        await streamer.open_async("data.bin")
        async for chunk in streamer.stream():
            ...

    Signals: ready (alias file), reading, paused, stopped, closed, error.
    """

    def __init__(
        self,
        config: Optional[Union[StreamerConfig, Mapping[str, Any]]] = None,
        *,
        io_pool: Optional[DescriptorIOPool] = None,
        logger: Optional[AppLogger] = None,
        **overrides,
    ):
        """
        Initialise a closed session.

        Args:
            config: Session configuration, or a mapping accepted by
                StreamerConfig.from_dict (defaults used if None)
            io_pool: Pool for descriptor syscalls (shared default if None)
            logger: Application logger (default logger if None)
            **overrides: StreamerConfig fields replacing those of ``config``
        """
        if isinstance(config, Mapping):
            config = StreamerConfig.from_dict(config)
        if config is None:
            config = StreamerConfig(**overrides)
        elif overrides:
            config = dataclasses.replace(config, **overrides)

        self.config = config
        self.path: Optional[str] = config.path
        self.chunk_size = config.chunk_size
        self.error_on_missing = config.error_on_missing
        self.close_on_eof = config.close_on_eof
        self.eof_poll_interval = config.eof_poll_interval

        self.descriptor: Optional[int] = None
        self.adapter: Optional[StreamAdapter] = None
        self.suspended = False
        self.pending_read: Optional[PendingRead] = None
        self.is_pipe = False

        self._logger = logger or get_default_logger()
        self._io_pool = io_pool or get_default_pool()
        self.channel = SessionChannel(self._logger)
        self.metrics = StreamMetrics()
        self.channel.add_listener(self.metrics)

        self._watcher = StalenessWatcher(
            self._on_watch_failure, io_pool=self._io_pool, logger=self._logger
        )
        self._engine = ReadLoop(self, self._io_pool, self._logger)
        self._operations: Set[asyncio.Task] = set()
        self._opening = False
        self._closing = False

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        if self.is_streaming:
            state = "streaming"
        return f"<FileStreamer path={self.path!r} {state}>"

    @property
    def is_open(self) -> bool:
        return self.descriptor is not None

    @property
    def is_streaming(self) -> bool:
        return self.adapter is not None

    @property
    def watcher(self) -> StalenessWatcher:
        return self._watcher

    @property
    def read_in_flight(self) -> bool:
        """True while a read syscall is running for this session."""
        return self._engine.is_reading

    # -- notification channel ----------------------------------------------

    def on(self, signal: Signal, callback: Callable[[SessionEvent], Any]) -> "FileStreamer":
        self.channel.on(signal, callback)
        return self

    def off(self, signal: Signal, callback: Callable[[SessionEvent], Any]) -> "FileStreamer":
        self.channel.off(signal, callback)
        return self

    def once(self, signal: Signal, callback: Callable[[SessionEvent], Any]) -> "FileStreamer":
        self.channel.once(signal, callback)
        return self

    def wait_for(self, signal: Signal) -> "asyncio.Future[SessionEvent]":
        """Future resolved with the next event of ``signal``."""
        return self.channel.wait_for(signal)

    def emit(self, event_type: SessionEventType, error: Optional[BaseException] = None) -> None:
        """Publish a signal for this session on its channel."""
        self.channel.emit(SessionEvent(event_type, self.path, session=self, error=error))

    # -- lifecycle ---------------------------------------------------------

    def open(
        self,
        path: Optional[Union[str, os.PathLike]] = None,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> "FileStreamer":
        """
        Open ``path`` (or the configured path) read-only without blocking.

        Success is delivered to ``on_success`` or as 'ready'; failure to
        ``on_error`` or as 'error'. Must be called from a running event loop.
        """
        if self.descriptor is not None or self._opening:
            error = InvalidActionError(f"{self.path} is already open, close it first")
            return self._deliver_soon(Outcome(error=error), on_success, on_error, SessionEventType.READY)

        target = os.fspath(path) if path is not None else self.path
        if not target:
            error = InvalidActionError("no file was specified to open")
            return self._deliver_soon(Outcome(error=error), on_success, on_error, SessionEventType.READY)

        self._opening = True
        self._start_operation(self._open(target), on_success, on_error, SessionEventType.READY)
        return self

    async def _open(self, path: str) -> Outcome:
        try:
            self.path = path
            if self.error_on_missing:
                self._arm_watcher(path)
            else:
                self._watcher.stop()

            try:
                descriptor, is_pipe = await self._io_pool.run(open_for_streaming, path)
            except OSError as e:
                self._watcher.stop()
                self._logger.warning(
                    "Failed to open file",
                    context=LogContext(component="FileStreamer", operation="open", path=path),
                    error=str(e),
                )
                return Outcome(error=IOFailure("open", e, path))

            self.descriptor = descriptor
            self.is_pipe = is_pipe
            self._logger.info(
                "File opened for streaming",
                context=LogContext(component="FileStreamer", operation="open", path=path),
                chunk_size=self.chunk_size,
                watched=self._watcher.is_armed,
            )
            return Outcome(value=self)
        finally:
            self._opening = False

    def close(
        self,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> "FileStreamer":
        """
        Release the descriptor and the watcher.

        Fails with StillStreamingError while an adapter is attached (the
        session is left untouched) and with NotOpenError without a descriptor.
        """
        if self.adapter is not None:
            error = StillStreamingError(self.path)
            return self._deliver_soon(Outcome(error=error), on_success, on_error, SessionEventType.CLOSED)
        if self.descriptor is None or self._closing:
            error = NotOpenError(self.path)
            return self._deliver_soon(Outcome(error=error), on_success, on_error, SessionEventType.CLOSED)

        self._closing = True
        self._start_operation(self._close(), on_success, on_error, SessionEventType.CLOSED)
        return self

    async def _close(self) -> Outcome:
        try:
            # Never release the descriptor under a running read
            self._engine.interrupt()
            await self._engine.settle()
            self.pending_read = None

            path = self.path
            try:
                await self._io_pool.run(os.close, self.descriptor)
            except OSError as e:
                return Outcome(error=IOFailure("close", e, path))

            self._watcher.stop()
            await self._watcher.wait_stopped()
            self.path = None
            self.descriptor = None
            self.is_pipe = False
            self.suspended = False
            self._logger.info(
                "File closed",
                context=LogContext(component="FileStreamer", operation="close", path=path),
            )
            return Outcome(value=self)
        finally:
            self._closing = False

    async def open_async(self, path: Optional[Union[str, os.PathLike]] = None) -> "FileStreamer":
        """Awaitable open; raises the failure instead of emitting 'error'."""
        future = asyncio.get_running_loop().create_future()
        self.open(path, partial(_resolve, future), partial(_reject, future))
        return await future

    async def close_async(self) -> "FileStreamer":
        """Awaitable close; raises the failure instead of emitting 'error'."""
        future = asyncio.get_running_loop().create_future()
        self.close(partial(_resolve, future), partial(_reject, future))
        return await future

    async def promise(
        self, action: str, path: Optional[Union[str, os.PathLike]] = None
    ) -> "FileStreamer":
        """
        Run a lifecycle action by name ("open" or "close").

        "close" detaches any attached stream first.

        Raises:
            InvalidActionError: For any other action
        """
        if action == ACTION_OPEN_FILE:
            return await self.open_async(path)
        if action == ACTION_CLOSE_FILE:
            self.unstream()
            return await self.close_async()
        raise InvalidActionError(
            f"no action was specified as to opening/closing the file (got {action!r})"
        )

    # -- streaming ---------------------------------------------------------

    def stream(self) -> StreamAdapter:
        """
        Attach a new stream adapter and start reading.

        Reading resumes from the descriptor's current position, starting
        with any read cached by a previous detach.

        Raises:
            NotOpenError: If no descriptor is open
            BufferTooLargeError: If chunk_size exceeds the streamable maximum
            StillStreamingError: If an adapter is already attached
        """
        if self.descriptor is None or self._closing:
            raise NotOpenError(self.path)
        if not self.config.is_streamable:
            raise BufferTooLargeError(self.chunk_size, MAX_STREAMABLE_BUFFER_SIZE)
        if self.adapter is not None:
            raise StillStreamingError(self.path)

        adapter = StreamAdapter(self.chunk_size, on_detach=self._release_adapter)
        adapter.on_readiness_restored(partial(self._engine.resume, adapter))
        self.adapter = adapter
        self.suspended = False
        # The previous adapter's stop precedes this adapter's first signal
        self._engine.emit_deferred_stop()
        self.emit(SessionEventType.READING)
        self._engine.schedule()
        return adapter

    def unstream(self) -> "FileStreamer":
        """
        Detach the current adapter, if any, without closing the descriptor.

        The consumer still receives chunks already pushed, then end of data.
        Emits 'stopped' once per attached-to-detached transition.
        """
        adapter = self.adapter
        if adapter is None:
            return self
        self._detach(adapter)
        adapter.signal_end()
        return self

    detach = unstream

    def _release_adapter(self, adapter: StreamAdapter) -> None:
        # Adapter destroyed by its consumer or by a read failure
        if self.adapter is adapter:
            self._detach(adapter)

    def _detach(self, adapter: StreamAdapter) -> None:
        self.adapter = None
        self.suspended = False
        if not self._engine.defer_stopped():
            self.emit(SessionEventType.STOPPED)

    # -- internals ---------------------------------------------------------

    def _arm_watcher(self, path: str) -> None:
        try:
            self._watcher.start(path)
        except WatchFailure as e:
            self.emit(SessionEventType.ERROR, error=e)

    def _on_watch_failure(self, failure: WatchFailure) -> None:
        self.emit(SessionEventType.ERROR, error=failure)

    def _start_operation(self, coro, on_success, on_error, signal: SessionEventType) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._operations.add(task)
        task.add_done_callback(
            partial(self._operation_done, on_success=on_success, on_error=on_error, signal=signal)
        )

    def _operation_done(self, task: asyncio.Task, on_success, on_error, signal) -> None:
        self._operations.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        outcome = Outcome(error=error) if error is not None else task.result()
        self._deliver(outcome, on_success, on_error, signal)

    def _deliver_soon(self, outcome: Outcome, on_success, on_error, signal) -> "FileStreamer":
        asyncio.get_running_loop().call_soon(self._deliver, outcome, on_success, on_error, signal)
        return self

    def _deliver(
        self,
        outcome: Outcome,
        on_success: Optional[SuccessCallback],
        on_error: Optional[ErrorCallback],
        signal: SessionEventType,
    ) -> None:
        if outcome.ok:
            if on_success is not None:
                on_success(outcome.value)
            else:
                self.emit(signal)
        elif on_error is not None:
            on_error(outcome.error)
        else:
            self.emit(SessionEventType.ERROR, error=outcome.error)
