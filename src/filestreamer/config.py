"""
Streaming session configuration.

Supports direct construction, environment variables and plain dictionaries
(snake_case keys or the camelCase spellings used by older callers).
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

# Ceiling for a single read pushed through a stream adapter
MAX_STREAMABLE_BUFFER_SIZE = 16384

_TRUTHY = ("true", "1", "yes", "on")

_DICT_ALIASES = {
    "fileName": "path",
    "file_name": "path",
    "bufSize": "chunk_size",
    "buf_size": "chunk_size",
    "errorOnMissing": "error_on_missing",
    "closeOnEOF": "close_on_eof",
    "eofPollInterval": "eof_poll_interval",
}


@dataclass
class StreamerConfig:
    """Configuration for a FileStreamer session."""

    path: Optional[str] = None
    chunk_size: int = MAX_STREAMABLE_BUFFER_SIZE
    error_on_missing: bool = False
    close_on_eof: bool = False
    # Seconds to wait after an empty read before reading again (0 = next turn)
    eof_poll_interval: float = 0.0

    def __post_init__(self):
        """Validate and normalise configuration."""
        if self.path is not None:
            self.path = os.fspath(self.path)
        if isinstance(self.chunk_size, bool) or not isinstance(self.chunk_size, int):
            raise ValueError(f"chunk_size must be an integer, got {self.chunk_size!r}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.eof_poll_interval < 0:
            raise ValueError(
                f"eof_poll_interval must not be negative, got {self.eof_poll_interval}"
            )

    @property
    def is_streamable(self) -> bool:
        """True when reads of this chunk size can be pushed to a stream adapter."""
        return self.chunk_size <= MAX_STREAMABLE_BUFFER_SIZE

    @classmethod
    def from_env(cls, prefix: str = "FILESTREAMER_", **defaults) -> "StreamerConfig":
        """Create configuration from environment variables, falling back to ``defaults``."""
        kwargs: Dict[str, Any] = dict(defaults)

        if chunk_size := os.getenv(f"{prefix}CHUNK_SIZE"):
            kwargs["chunk_size"] = int(chunk_size)
        if error_on_missing := os.getenv(f"{prefix}ERROR_ON_MISSING"):
            kwargs["error_on_missing"] = error_on_missing.lower() in _TRUTHY
        if close_on_eof := os.getenv(f"{prefix}CLOSE_ON_EOF"):
            kwargs["close_on_eof"] = close_on_eof.lower() in _TRUTHY
        if interval := os.getenv(f"{prefix}EOF_POLL_INTERVAL"):
            kwargs["eof_poll_interval"] = float(interval)

        return cls(**kwargs)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "StreamerConfig":
        """Create configuration from a dictionary, ignoring unknown keys."""
        fields = cls.__dataclass_fields__
        kwargs = {}
        for key, value in config_dict.items():
            name = _DICT_ALIASES.get(key, key)
            if name in fields:
                kwargs[name] = value
        return cls(**kwargs)
