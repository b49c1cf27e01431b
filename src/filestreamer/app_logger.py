"""
Application logger interface used by streaming components.

Components log through an AppLogger with a LogContext naming the component
and operation, so output can be filtered per component and rendered either
as JSON lines or as plain text.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Protocol


@dataclass
class LogContext:
    """Structured log context information."""

    component: str
    operation: Optional[str] = None
    path: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging, dropping unset fields."""
        return {k: v for k, v in asdict(self).items() if v is not None}


class AppLogger(Protocol):
    """Protocol for application logging interface."""

    def debug(
        self, message: str, context: Optional[LogContext] = None, **kwargs
    ) -> None: ...

    def info(
        self, message: str, context: Optional[LogContext] = None, **kwargs
    ) -> None: ...

    def warning(
        self, message: str, context: Optional[LogContext] = None, **kwargs
    ) -> None: ...

    def error(
        self,
        message: str,
        context: Optional[LogContext] = None,
        exc_info: bool = False,
        **kwargs,
    ) -> None: ...


def format_log_message(
    message: str,
    context: Optional[LogContext] = None,
    structured: bool = True,
    **kwargs,
) -> str:
    """Render a message with its context as JSON or as a text line."""
    if structured:
        log_data: Dict[str, Any] = {"message": message, "timestamp": time.time()}
        if context:
            log_data.update(context.to_dict())
        if kwargs:
            log_data["additional"] = kwargs
        return json.dumps(log_data, default=str)

    parts = [message]
    if context:
        parts.append(f"[{context.component}]")
        if context.operation:
            parts.append(f"({context.operation})")
        if context.path:
            parts.append(f"path={context.path}")
    if kwargs:
        parts.append("[" + ", ".join(f"{k}={v}" for k, v in kwargs.items()) + "]")
    return " ".join(parts)


class StandardAppLogger:
    """AppLogger backed directly by a Python logger."""

    def __init__(
        self, logger_name: str = "filestreamer", format_type: str = "structured"
    ):
        self._logger = logging.getLogger(logger_name)
        self._structured = format_type == "structured"

    def _log(
        self,
        level: int,
        message: str,
        context: Optional[LogContext],
        exc_info: bool = False,
        **kwargs,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        formatted = format_log_message(message, context, self._structured, **kwargs)
        self._logger.log(level, formatted, exc_info=exc_info)

    def debug(self, message: str, context: Optional[LogContext] = None, **kwargs):
        self._log(logging.DEBUG, message, context, **kwargs)

    def info(self, message: str, context: Optional[LogContext] = None, **kwargs):
        self._log(logging.INFO, message, context, **kwargs)

    def warning(self, message: str, context: Optional[LogContext] = None, **kwargs):
        self._log(logging.WARNING, message, context, **kwargs)

    def error(
        self,
        message: str,
        context: Optional[LogContext] = None,
        exc_info: bool = False,
        **kwargs,
    ):
        self._log(logging.ERROR, message, context, exc_info=exc_info, **kwargs)


class NullAppLogger:
    """Null object implementation for testing or disabled logging."""

    def debug(self, message: str, context: Optional[LogContext] = None, **kwargs):
        pass

    def info(self, message: str, context: Optional[LogContext] = None, **kwargs):
        pass

    def warning(self, message: str, context: Optional[LogContext] = None, **kwargs):
        pass

    def error(
        self,
        message: str,
        context: Optional[LogContext] = None,
        exc_info: bool = False,
        **kwargs,
    ):
        pass


_default_logger: Optional[AppLogger] = None


def get_default_logger() -> AppLogger:
    """Get the default application logger, configuring it from the environment."""
    global _default_logger
    if _default_logger is None:
        from filestreamer.logging_config import create_logger_from_env

        _default_logger = create_logger_from_env()
    return _default_logger


def set_default_logger(logger: Optional[AppLogger]) -> None:
    """Set (or with None, reset) the default application logger."""
    global _default_logger
    _default_logger = logger
