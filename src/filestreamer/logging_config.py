"""
Logging configuration with verbosity control and multiple handlers.

Supports console, plain file, rotating file and null handlers, structured
(JSON) or text formatting, per-component filtering and configuration from
FILESTREAMER_LOG_* environment variables.
"""

import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from filestreamer.app_logger import AppLogger, LogContext, format_log_message


class LogHandler(Enum):
    """Available log handler types."""

    CONSOLE = "console"
    FILE = "file"
    ROTATING_FILE = "rotating_file"
    NULL = "null"


class LogFormat(Enum):
    """Available log format types."""

    STRUCTURED = "structured"  # JSON lines
    SIMPLE = "simple"
    DETAILED = "detailed"  # text with timestamps and logger name


class VerbosityLevel(Enum):
    """Verbosity levels for controlling log output."""

    SILENT = 0
    QUIET = 1
    NORMAL = 2
    VERBOSE = 3


_VERBOSITY_LEVELS = {
    VerbosityLevel.SILENT: "CRITICAL",
    VerbosityLevel.QUIET: "WARNING",
    VerbosityLevel.NORMAL: "INFO",
    VerbosityLevel.VERBOSE: "DEBUG",
}

VERBOSITY_NAMES = {
    "silent": VerbosityLevel.SILENT,
    "quiet": VerbosityLevel.QUIET,
    "normal": VerbosityLevel.NORMAL,
    "verbose": VerbosityLevel.VERBOSE,
    "v": VerbosityLevel.VERBOSE,
}

FORMAT_NAMES = {
    "json": LogFormat.STRUCTURED,
    "structured": LogFormat.STRUCTURED,
    "simple": LogFormat.SIMPLE,
    "detailed": LogFormat.DETAILED,
}


@dataclass
class HandlerConfig:
    """Configuration for a single log handler."""

    type: LogHandler
    level: Optional[str] = None  # None means the global level
    format: Optional[LogFormat] = None  # None means the global format
    filename: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    stream: str = "stderr"
    date_format: str = "%Y-%m-%d %H:%M:%S"


@dataclass
class LoggingConfig:
    """Complete logging configuration."""

    verbosity: VerbosityLevel = VerbosityLevel.NORMAL
    global_level: Optional[str] = None  # None derives the level from verbosity
    global_format: LogFormat = LogFormat.SIMPLE
    logger_name: str = "filestreamer"
    handlers: List[HandlerConfig] = field(
        default_factory=lambda: [HandlerConfig(type=LogHandler.CONSOLE)]
    )
    exclude_components: List[str] = field(default_factory=list)
    include_only_components: Optional[List[str]] = None

    @property
    def effective_level(self) -> str:
        return (self.global_level or _VERBOSITY_LEVELS[self.verbosity]).upper()


class ConfigurableAppLogger:
    """AppLogger with configurable handlers, verbosity and component filters."""

    def __init__(self, config: Optional[LoggingConfig] = None):
        self.config = config or LoggingConfig()
        self._python_logger = logging.getLogger(self.config.logger_name)
        self._handlers: List[logging.Handler] = []
        self._setup_logging()

    def _setup_logging(self) -> None:
        level = self.config.effective_level
        self._python_logger.setLevel(level)

        for handler in self._handlers:
            self._python_logger.removeHandler(handler)
            handler.close()
        self._handlers = []

        for handler_config in self.config.handlers:
            handler = self._create_handler(handler_config)
            handler.setLevel(handler_config.level or level)
            handler.setFormatter(self._create_formatter(handler_config))
            self._handlers.append(handler)
            self._python_logger.addHandler(handler)

        # Keep library output away from the root logger
        self._python_logger.propagate = False

    def _create_handler(self, config: HandlerConfig) -> logging.Handler:
        if config.type == LogHandler.CONSOLE:
            stream = sys.stdout if config.stream == "stdout" else sys.stderr
            return logging.StreamHandler(stream)
        if config.type == LogHandler.NULL:
            return logging.NullHandler()
        if not config.filename:
            raise ValueError(f"{config.type.value} handler requires a filename")

        Path(config.filename).parent.mkdir(parents=True, exist_ok=True)
        if config.type == LogHandler.ROTATING_FILE:
            return logging.handlers.RotatingFileHandler(
                filename=config.filename,
                maxBytes=config.max_bytes,
                backupCount=config.backup_count,
            )
        return logging.FileHandler(config.filename)

    def _create_formatter(self, config: HandlerConfig) -> logging.Formatter:
        format_type = config.format or self.config.global_format
        if format_type == LogFormat.SIMPLE:
            return logging.Formatter("%(levelname)s: %(message)s")
        if format_type == LogFormat.DETAILED:
            return logging.Formatter(
                fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt=config.date_format,
            )
        # Structured messages are already rendered as JSON
        return logging.Formatter("%(message)s")

    def should_log_component(self, component: str) -> bool:
        """Check if a component passes the include/exclude filters."""
        if component in self.config.exclude_components:
            return False
        if self.config.include_only_components:
            return component in self.config.include_only_components
        return True

    def reconfigure(self, new_config: LoggingConfig) -> None:
        """Replace the configuration and rebuild handlers."""
        self.config = new_config
        self._python_logger = logging.getLogger(new_config.logger_name)
        self._setup_logging()

    def _log(
        self,
        level: int,
        message: str,
        context: Optional[LogContext],
        exc_info: bool = False,
        **kwargs,
    ) -> None:
        if context and not self.should_log_component(context.component):
            return
        if not self._python_logger.isEnabledFor(level):
            return
        structured = self.config.global_format == LogFormat.STRUCTURED
        formatted = format_log_message(message, context, structured, **kwargs)
        self._python_logger.log(level, formatted, exc_info=exc_info)

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


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def handler_configs_from_names(
    names: str, filename: Optional[str] = None
) -> List[HandlerConfig]:
    """Build handler configurations from a comma-separated list of names."""
    configs = []
    for name in _split_list(names.lower()):
        if name == "console":
            configs.append(HandlerConfig(type=LogHandler.CONSOLE))
        elif name == "file":
            configs.append(
                HandlerConfig(
                    type=LogHandler.FILE, filename=filename or "logs/filestreamer.log"
                )
            )
        elif name == "rotating":
            configs.append(
                HandlerConfig(
                    type=LogHandler.ROTATING_FILE,
                    filename=filename or "logs/filestreamer.log",
                )
            )
        elif name == "null":
            configs.append(HandlerConfig(type=LogHandler.NULL))
    return configs


def create_logger_from_env() -> AppLogger:
    """Create logger from FILESTREAMER_LOG_* environment variables."""
    config = LoggingConfig()

    verbosity = os.getenv("FILESTREAMER_LOG_VERBOSITY", "normal").lower()
    config.verbosity = VERBOSITY_NAMES.get(verbosity, VerbosityLevel.NORMAL)

    if level := os.getenv("FILESTREAMER_LOG_LEVEL"):
        config.global_level = level.upper()

    log_format = os.getenv("FILESTREAMER_LOG_FORMAT", "simple").lower()
    config.global_format = FORMAT_NAMES.get(log_format, LogFormat.SIMPLE)

    handlers = handler_configs_from_names(
        os.getenv("FILESTREAMER_LOG_HANDLERS", "console"),
        os.getenv("FILESTREAMER_LOG_FILE"),
    )
    if handlers:
        config.handlers = handlers

    if exclude := os.getenv("FILESTREAMER_LOG_EXCLUDE"):
        config.exclude_components = _split_list(exclude)
    if include := os.getenv("FILESTREAMER_LOG_INCLUDE_ONLY"):
        config.include_only_components = _split_list(include)

    return ConfigurableAppLogger(config)
