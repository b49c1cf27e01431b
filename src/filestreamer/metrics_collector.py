"""
Stream statistics for a streaming session.

StreamMetrics listens on a session channel for signal counts and is fed
directly by the read loop for reads, replays and delivered bytes.
"""

import threading
from collections import defaultdict
from typing import Any, DefaultDict, Dict

from filestreamer.events import SessionEvent, SessionEventType


class StreamMetrics:
    """
    Thread-safe counters for one session.

    get_metrics() may be called from any thread; the recording methods are
    called from the event loop.
    """

    def __init__(self):
        self._reads_issued = 0
        self._reads_replayed = 0
        self._chunks_delivered = 0
        self._bytes_delivered = 0
        self._largest_chunk = 0
        self._pauses = 0
        self._errors = 0
        self._events_per_type: DefaultDict[str, int] = defaultdict(int)
        self._metrics_lock = threading.Lock()

    def record_read(self) -> None:
        """Record a read syscall that completed."""
        with self._metrics_lock:
            self._reads_issued += 1

    def record_replay(self) -> None:
        """Record a cached read replayed instead of a syscall."""
        with self._metrics_lock:
            self._reads_replayed += 1

    def record_chunk(self, size: int) -> None:
        """Record a chunk pushed to the consumer."""
        with self._metrics_lock:
            self._chunks_delivered += 1
            self._bytes_delivered += size
            self._largest_chunk = max(self._largest_chunk, size)

    def on_session_event(self, event: SessionEvent) -> None:
        """SessionEventListener implementation counting signals."""
        with self._metrics_lock:
            self._events_per_type[event.event_type] += 1
            if event.session_event_type is SessionEventType.PAUSED:
                self._pauses += 1
            elif event.session_event_type is SessionEventType.ERROR:
                self._errors += 1

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get current stream metrics.

        Returns:
            Dictionary of counters and derived statistics
        """
        with self._metrics_lock:
            if self._chunks_delivered:
                avg_chunk_size = self._bytes_delivered / self._chunks_delivered
            else:
                avg_chunk_size = 0.0

            return {
                "reads_issued": self._reads_issued,
                "reads_replayed": self._reads_replayed,
                "chunks_delivered": self._chunks_delivered,
                "bytes_delivered": self._bytes_delivered,
                "largest_chunk": self._largest_chunk,
                "avg_chunk_size": avg_chunk_size,
                "pauses": self._pauses,
                "errors": self._errors,
                "events_per_type": dict(self._events_per_type),
            }

    def reset_metrics(self) -> None:
        """Reset all counters."""
        with self._metrics_lock:
            self._reads_issued = 0
            self._reads_replayed = 0
            self._chunks_delivered = 0
            self._bytes_delivered = 0
            self._largest_chunk = 0
            self._pauses = 0
            self._errors = 0
            self._events_per_type.clear()
