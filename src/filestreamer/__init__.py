"""
Filestreamer - stream regular files and named pipes as backpressure-aware byte streams.

A FileStreamer opens a file read-only, pushes its contents to a consumer in
bounded chunks while honouring the consumer's readiness, survives the file
disappearing mid-read and lets consumers detach and reattach without closing
the underlying descriptor.
"""

__version__ = "1.0.0"

from .config import MAX_STREAMABLE_BUFFER_SIZE, StreamerConfig
from .errors import (
    BufferTooLargeError,
    InvalidActionError,
    IOFailure,
    NotOpenError,
    StillStreamingError,
    StreamerError,
    WatchFailure,
)
from .events import SessionEvent, SessionEventType
from .file_streamer import FileStreamer
from .stream_adapter import StreamAdapter

__all__ = [
    "__version__",
    "MAX_STREAMABLE_BUFFER_SIZE",
    "BufferTooLargeError",
    "FileStreamer",
    "InvalidActionError",
    "IOFailure",
    "NotOpenError",
    "SessionEvent",
    "SessionEventType",
    "StillStreamingError",
    "StreamAdapter",
    "StreamerConfig",
    "StreamerError",
    "WatchFailure",
]
