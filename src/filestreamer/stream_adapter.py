"""
Consumer-facing byte stream fed by a read loop.

The producer pushes chunks and learns from the return value whether the
consumer can take more; the consumer awaits chunks in file order. Draining
the buffer below the high-water mark fires the readiness callbacks that let
a paused producer resume.
"""

import asyncio
from collections import deque
from typing import AsyncIterator, BinaryIO, Callable, Deque, List, Optional

from filestreamer.config import MAX_STREAMABLE_BUFFER_SIZE
from filestreamer.errors import BufferTooLargeError


class StreamAdapter:
    """
    Push-based byte stream with a bounded buffer.

    Producer side: push(), signal_end(), destroy(), on_readiness_restored().
    Consumer side: read(), async iteration and pipe_to().
    """

    def __init__(
        self,
        high_water_mark: int = MAX_STREAMABLE_BUFFER_SIZE,
        on_detach: Optional[Callable[["StreamAdapter"], None]] = None,
    ):
        """
        Initialise the adapter.

        Args:
            high_water_mark: Buffered byte count at which push() reports not ready
            on_detach: Called once when destroy() releases the adapter

        Raises:
            BufferTooLargeError: If high_water_mark exceeds the streamable maximum
        """
        if high_water_mark > MAX_STREAMABLE_BUFFER_SIZE:
            raise BufferTooLargeError(high_water_mark, MAX_STREAMABLE_BUFFER_SIZE)
        if high_water_mark <= 0:
            raise ValueError(f"high_water_mark must be positive, got {high_water_mark}")

        self._high_water_mark = high_water_mark
        self._on_detach = on_detach
        self._chunks: Deque[bytes] = deque()
        self._buffered = 0
        self._ended = False
        self._destroyed = False
        self._error: Optional[BaseException] = None
        self._readiness_callbacks: List[Callable[[], None]] = []
        self._data_available = asyncio.Event()

    @property
    def high_water_mark(self) -> int:
        return self._high_water_mark

    @property
    def buffered(self) -> int:
        """Bytes pushed but not yet consumed."""
        return self._buffered

    @property
    def ended(self) -> bool:
        """True once end of data has been signalled."""
        return self._ended

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def on_readiness_restored(self, callback: Callable[[], None]) -> None:
        """Register a callback fired when the consumer drains below the mark."""
        self._readiness_callbacks.append(callback)

    def push(self, data: bytes) -> bool:
        """
        Queue a chunk for the consumer.

        Returns:
            True if the consumer can accept more data without unbounded buffering
        """
        if self._ended or self._destroyed:
            return False
        if data:
            self._chunks.append(bytes(data))
            self._buffered += len(data)
            self._data_available.set()
        return self._buffered < self._high_water_mark

    def signal_end(self) -> None:
        """Mark end of data; the consumer still receives buffered chunks."""
        if self._ended or self._destroyed:
            return
        self._ended = True
        self._data_available.set()

    def destroy(self, error: Optional[BaseException] = None) -> None:
        """
        Terminate the stream, discarding buffered data.

        A consumer waiting in read() is woken and receives ``error`` if one
        is given, end of data otherwise.
        """
        if self._destroyed:
            return
        self._destroyed = True
        self._error = error
        self._chunks.clear()
        self._buffered = 0
        self._data_available.set()

        on_detach, self._on_detach = self._on_detach, None
        if on_detach is not None:
            on_detach(self)

    async def read(self) -> bytes:
        """
        Return the next chunk, or b"" once the stream has ended.

        Raises:
            The error the stream was destroyed with, if any
        """
        while True:
            if self._error is not None:
                raise self._error
            if self._chunks:
                return self._take()
            if self._ended or self._destroyed:
                return b""
            self._data_available.clear()
            await self._data_available.wait()

    def _take(self) -> bytes:
        chunk = self._chunks.popleft()
        was_full = self._buffered >= self._high_water_mark
        self._buffered -= len(chunk)
        if was_full and self._buffered < self._high_water_mark:
            for callback in list(self._readiness_callbacks):
                callback()
        return chunk

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.read()
        if not chunk:
            raise StopAsyncIteration
        return chunk

    async def pipe_to(self, sink: BinaryIO) -> int:
        """
        Write every chunk to a binary file-like object until end of data.

        Returns:
            Number of bytes written
        """
        written = 0
        async for chunk in self:
            sink.write(chunk)
            sink.flush()
            written += len(chunk)
        return written
