"""
Read loop and backpressure engine.

The loop runs as a chain of single-read units, each scheduled as its own
task on the event loop. A unit reads at most ``chunk_size`` bytes (or
replays a cached read), pushes them to the attached adapter and decides
whether another unit follows. At most one unit exists at any time, so two
reads never overlap on the descriptor.

Detaching never cancels a read that is already in flight: its result is
kept as the session's pending read and replayed to the next adapter, so
no byte range is lost or delivered twice across detach/reattach cycles.

Named pipes are read on the loop thread with a non-blocking descriptor once
the loop reports them readable. Until then nothing has been consumed, so
close() can interrupt the wait without losing data.
"""

import asyncio
import os
from typing import TYPE_CHECKING, NamedTuple, Optional

from filestreamer.app_logger import AppLogger, LogContext, get_default_logger
from filestreamer.errors import IOFailure
from filestreamer.events import SessionEventType
from filestreamer.io_pool import DescriptorIOPool

if TYPE_CHECKING:
    from filestreamer.file_streamer import FileStreamer
    from filestreamer.stream_adapter import StreamAdapter


def _mark_readable(readable: asyncio.Future) -> None:
    if not readable.done():
        readable.set_result(True)


class PendingRead(NamedTuple):
    """A read result that completed after its adapter was detached."""

    bytes_read: int
    buffer: bytes


class ReadLoop:
    """Drives sequential bounded reads for one session."""

    def __init__(
        self,
        session: "FileStreamer",
        io_pool: DescriptorIOPool,
        logger: Optional[AppLogger] = None,
    ):
        self._session = session
        self._io_pool = io_pool
        self._logger = logger or get_default_logger()
        self._unit: Optional[asyncio.Task] = None
        self._rescheduled = False
        self._reading = False
        self._stop_deferred = False
        self._readable: Optional[asyncio.Future] = None

    @property
    def is_scheduled(self) -> bool:
        """True while a unit is queued or running."""
        return self._unit is not None

    @property
    def is_reading(self) -> bool:
        """True while a read syscall is in flight."""
        return self._reading

    def schedule(self) -> None:
        """Queue one unit of work for a later turn of the event loop."""
        if self._unit is not None:
            # Picked up when the current unit finishes
            self._rescheduled = True
            return
        self._unit = asyncio.get_running_loop().create_task(self._run_unit())
        self._unit.add_done_callback(self._unit_done)

    def _unit_done(self, task: asyncio.Task) -> None:
        self._unit = None
        rescheduled, self._rescheduled = self._rescheduled, False
        if task.cancelled():
            return
        if task.result() or rescheduled:
            self.schedule()

    def resume(self, adapter: "StreamAdapter") -> None:
        """Readiness callback: restart a loop suspended by backpressure."""
        session = self._session
        if session.adapter is not adapter or not session.suspended:
            return
        session.suspended = False
        session.emit(SessionEventType.READING)
        self.schedule()

    def defer_stopped(self) -> bool:
        """
        Postpone the 'stopped' signal of a detach until the in-flight read settles.

        Returns:
            True if a read is in flight and the signal was deferred
        """
        if self._reading:
            self._stop_deferred = True
            return True
        return False

    def emit_deferred_stop(self) -> None:
        """Emit a 'stopped' signal postponed by defer_stopped(), if any."""
        if self._stop_deferred:
            self._stop_deferred = False
            self._session.emit(SessionEventType.STOPPED)

    def interrupt(self) -> None:
        """Abandon a pipe read that is still waiting for data."""
        if self._readable is not None and not self._readable.done():
            self._readable.set_result(False)

    async def settle(self) -> None:
        """Wait until no unit is queued or running."""
        while self._unit is not None:
            await asyncio.wait({self._unit})

    async def _run_unit(self) -> bool:
        """
        Perform one read step.

        Returns:
            True if another unit should be scheduled
        """
        session = self._session
        adapter = session.adapter
        if session.descriptor is None or adapter is None or session.suspended:
            return False

        if session.pending_read is not None:
            result, session.pending_read = session.pending_read, None
            session.metrics.record_replay()
        else:
            try:
                result = await self._read_chunk(session.descriptor, session.chunk_size)
            except Exception as e:
                self._fail(e)
                self.emit_deferred_stop()
                return False
            if result is None:
                # Pipe wait interrupted before any data was consumed
                self.emit_deferred_stop()
                return False

        if session.adapter is not adapter:
            # Detached while the read was in flight
            session.pending_read = result
            self._logger.debug(
                "Cached read from detached stream",
                context=LogContext(component="ReadLoop", operation="read", path=session.path),
                bytes_read=result.bytes_read,
            )
            self.emit_deferred_stop()
            return session.adapter is not None

        if result.bytes_read == 0:
            if session.close_on_eof:
                session.unstream().close()
                return False
            if session.eof_poll_interval:
                await asyncio.sleep(session.eof_poll_interval)
            return True

        session.metrics.record_chunk(result.bytes_read)
        if adapter.push(result.buffer[: result.bytes_read]):
            return True

        session.suspended = True
        session.emit(SessionEventType.PAUSED)
        return False

    async def _read_chunk(self, descriptor: int, chunk_size: int) -> Optional[PendingRead]:
        self._reading = True
        try:
            if self._session.is_pipe:
                data = await self._read_pipe(descriptor, chunk_size)
            else:
                data = await self._io_pool.run(os.read, descriptor, chunk_size)
        finally:
            self._reading = False
        if data is None:
            return None
        self._session.metrics.record_read()
        return PendingRead(len(data), data)

    async def _read_pipe(self, descriptor: int, chunk_size: int) -> Optional[bytes]:
        """
        Read a non-blocking pipe descriptor once the loop reports it readable.

        Returns:
            The bytes read, or None if interrupt() ended the wait
        """
        loop = asyncio.get_running_loop()
        while True:
            try:
                return os.read(descriptor, chunk_size)
            except BlockingIOError:
                pass

            readable = self._readable = loop.create_future()
            loop.add_reader(descriptor, _mark_readable, readable)
            try:
                if not await readable:
                    return None
            finally:
                loop.remove_reader(descriptor)
                self._readable = None

    def _fail(self, error: Exception) -> None:
        session = self._session
        if isinstance(error, OSError) and not isinstance(error, IOFailure):
            error = IOFailure("read", error, session.path)

        self._logger.error(
            f"Read failed: {error}",
            context=LogContext(component="ReadLoop", operation="read", path=session.path),
        )
        if session.adapter is not None:
            session.adapter.destroy(error)
        else:
            session.emit(SessionEventType.ERROR, error=error)
