"""
Error taxonomy for file streaming sessions.

Configuration errors (NotOpenError, BufferTooLargeError) are raised at the
call site. I/O and watch failures happen on the event loop and are delivered
through the caller's continuation or the session channel instead.
"""

from typing import Optional


class StreamerError(Exception):
    """Base class for all file streamer errors."""


class NotOpenError(StreamerError):
    """Raised when an operation needs a descriptor that does not exist."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        super().__init__(
            f"no file descriptor available (file {path} has not been opened yet)"
        )


class BufferTooLargeError(StreamerError, ValueError):
    """Raised when the configured chunk size exceeds the streamable ceiling."""

    def __init__(self, chunk_size: int, limit: int):
        self.chunk_size = chunk_size
        self.limit = limit
        super().__init__(
            f"chunk size {chunk_size} exceeds the streamable maximum of {limit} bytes"
        )


class StillStreamingError(StreamerError):
    """Raised when a stream adapter is still attached to the session."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        super().__init__(
            f"a stream is still reading from {path}, call unstream() first"
        )


class InvalidActionError(StreamerError):
    """Raised for lifecycle actions without a recognised target."""


class IOFailure(StreamerError, OSError):
    """An open, read or close syscall failed."""

    def __init__(self, operation: str, error: OSError, path: Optional[str] = None):
        self.operation = operation
        StreamerError.__init__(self, f"{operation} failed for {path}: {error}")
        self.errno = error.errno
        self.strerror = error.strerror
        self.filename = path
        self.__cause__ = error

    def __str__(self) -> str:
        return self.args[0]


class WatchFailure(IOFailure):
    """The watched file is no longer accessible after a change notification."""

    def __init__(self, error: OSError, path: Optional[str] = None):
        super().__init__("access check", error, path)
