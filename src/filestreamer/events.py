"""
Session notification channel.

Each FileStreamer owns one SessionChannel. Signals (ready, reading, paused,
stopped, closed, error) are delivered synchronously to listener objects and
to per-signal callbacks, with every subscriber isolated from the others.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Union, runtime_checkable

from filestreamer.app_logger import AppLogger, LogContext, get_default_logger


class EventLevel(Enum):
    """Standard event levels for session events."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Event:
    """Base class for all streamer events (immutable once built)."""

    def __init__(
        self,
        event_type: str,
        timestamp: float,
        component: str,
        message: str,
        level: EventLevel = EventLevel.INFO,
        metadata: Optional[Dict[str, Any]] = None,
        **additional_attributes,
    ):
        object.__setattr__(self, "event_type", event_type)
        object.__setattr__(self, "timestamp", timestamp)
        object.__setattr__(self, "component", component)
        object.__setattr__(self, "message", message)
        object.__setattr__(self, "level", level)
        object.__setattr__(self, "metadata", metadata or {})
        for attr_name, attr_value in additional_attributes.items():
            object.__setattr__(self, attr_name, attr_value)

    def __setattr__(self, name, value):
        raise AttributeError(f"can't set attribute '{name}'")


class SessionEventType(Enum):
    """Signals published on a session channel."""

    READY = "ready"
    FILE = "ready"  # alias kept for callers subscribing to 'file'
    READING = "reading"
    PAUSED = "paused"
    STOPPED = "stopped"
    CLOSED = "closed"
    ERROR = "error"

    @classmethod
    def parse(cls, signal: Union[str, "SessionEventType"]) -> "SessionEventType":
        """Resolve a signal name ('file' included) to its event type."""
        if isinstance(signal, cls):
            return signal
        try:
            return cls[str(signal).upper()]
        except KeyError:
            raise ValueError(f"unknown session signal: {signal!r}") from None


_LEVELS = {
    SessionEventType.ERROR: EventLevel.ERROR,
    SessionEventType.READING: EventLevel.DEBUG,
    SessionEventType.PAUSED: EventLevel.DEBUG,
}


class SessionEvent(Event):
    """A signal emitted by a streaming session."""

    def __init__(
        self,
        event_type: SessionEventType,
        path: Optional[str],
        session: Any = None,
        error: Optional[BaseException] = None,
        timestamp: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        message = f"{path}: {event_type.value}"
        if error is not None:
            message += f" ({error})"
        super().__init__(
            event_type=event_type.value,
            timestamp=timestamp if timestamp is not None else time.time(),
            component="FileStreamer",
            message=message,
            level=_LEVELS.get(event_type, EventLevel.INFO),
            metadata=metadata or {},
            session_event_type=event_type,
            path=path,
            session=session,
            error=error,
        )


@runtime_checkable
class SessionEventListener(Protocol):
    """Protocol for objects receiving every signal of a session."""

    def on_session_event(self, event: SessionEvent) -> None: ...


SignalCallback = Callable[[SessionEvent], Any]


class SessionChannel:
    """Publishes session signals to listeners and per-signal callbacks."""

    def __init__(self, logger: Optional[AppLogger] = None):
        self._listeners: List[SessionEventListener] = []
        self._callbacks: Dict[SessionEventType, List[SignalCallback]] = {}
        self._logger = logger or get_default_logger()
        self._context = LogContext(component="SessionChannel", operation="emit")

    def add_listener(self, listener: SessionEventListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: SessionEventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def on(self, signal: Union[str, SessionEventType], callback: SignalCallback) -> None:
        """Subscribe a callback to one signal."""
        self._callbacks.setdefault(SessionEventType.parse(signal), []).append(callback)

    def off(self, signal: Union[str, SessionEventType], callback: SignalCallback) -> None:
        """Unsubscribe a callback; unknown callbacks are ignored."""
        callbacks = self._callbacks.get(SessionEventType.parse(signal), [])
        if callback in callbacks:
            callbacks.remove(callback)

    def once(self, signal: Union[str, SessionEventType], callback: SignalCallback) -> None:
        """Subscribe a callback that is removed after its first delivery."""
        event_type = SessionEventType.parse(signal)

        def wrapper(event: SessionEvent):
            self.off(event_type, wrapper)
            return callback(event)

        self.on(event_type, wrapper)

    def wait_for(self, signal: Union[str, SessionEventType]) -> "asyncio.Future[SessionEvent]":
        """Return a future resolved with the next event of the given signal."""
        future = asyncio.get_running_loop().create_future()

        def resolve(event: SessionEvent):
            if not future.done():
                future.set_result(event)

        self.once(signal, resolve)
        return future

    def subscriber_count(self, signal: Union[str, SessionEventType]) -> int:
        return len(self._callbacks.get(SessionEventType.parse(signal), []))

    def emit(self, event: SessionEvent) -> None:
        """Deliver an event to all listeners and callbacks of its signal."""
        log_method = getattr(self._logger, event.level.value)
        log_method(event.message, context=LogContext(component=event.component, path=event.path))

        event_type = event.session_event_type
        if event_type is SessionEventType.ERROR and not self._callbacks.get(event_type):
            self._logger.warning(
                "Unhandled session error",
                context=self._context,
                path=event.path,
                error=str(event.error),
            )

        for listener in list(self._listeners):
            self._dispatch(listener.on_session_event, event)
        for callback in list(self._callbacks.get(event_type, [])):
            self._dispatch(callback, event)

    def _dispatch(self, handler: Callable[[SessionEvent], Any], event: SessionEvent) -> None:
        # Subscriber errors never reach the engine or other subscribers
        try:
            handler(event)
        except Exception as e:
            self._logger.error(
                f"Error in session subscriber {getattr(handler, '__qualname__', handler)}: {e}",
                context=self._context,
                exc_info=True,
                event_type=event.event_type,
            )
