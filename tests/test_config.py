"""
Tests for StreamerConfig and the error taxonomy.
"""

import errno
from pathlib import Path

import pytest

from filestreamer.config import MAX_STREAMABLE_BUFFER_SIZE, StreamerConfig
from filestreamer.errors import (
    BufferTooLargeError,
    IOFailure,
    NotOpenError,
    StillStreamingError,
    StreamerError,
    WatchFailure,
)


class TestStreamerConfig:
    """Test cases for StreamerConfig."""

    def test_defaults(self):
        config = StreamerConfig()

        assert config.path is None
        assert config.chunk_size == MAX_STREAMABLE_BUFFER_SIZE
        assert config.error_on_missing is False
        assert config.close_on_eof is False
        assert config.eof_poll_interval == 0.0
        assert config.is_streamable

    def test_path_like_is_normalised(self):
        assert StreamerConfig(path=Path("/tmp/data.bin")).path == "/tmp/data.bin"

    @pytest.mark.parametrize("chunk_size", [0, -1, 2.5, True, "16"])
    def test_invalid_chunk_size(self, chunk_size):
        with pytest.raises(ValueError, match="chunk_size"):
            StreamerConfig(chunk_size=chunk_size)

    def test_negative_poll_interval(self):
        with pytest.raises(ValueError, match="eof_poll_interval"):
            StreamerConfig(eof_poll_interval=-0.5)

    def test_oversized_chunk_is_accepted_but_not_streamable(self):
        """Test the streamable ceiling is enforced when streaming, not here."""
        config = StreamerConfig(chunk_size=MAX_STREAMABLE_BUFFER_SIZE + 1)
        assert not config.is_streamable

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("FILESTREAMER_CHUNK_SIZE", "128")
        monkeypatch.setenv("FILESTREAMER_ERROR_ON_MISSING", "yes")
        monkeypatch.setenv("FILESTREAMER_CLOSE_ON_EOF", "false")
        monkeypatch.setenv("FILESTREAMER_EOF_POLL_INTERVAL", "0.25")

        config = StreamerConfig.from_env()

        assert config.chunk_size == 128
        assert config.error_on_missing is True
        assert config.close_on_eof is False
        assert config.eof_poll_interval == 0.25

    def test_from_env_custom_prefix(self, monkeypatch):
        monkeypatch.setenv("APP_CHUNK_SIZE", "64")
        assert StreamerConfig.from_env(prefix="APP_").chunk_size == 64

    def test_from_env_defaults(self, monkeypatch):
        """Test caller defaults apply only where the environment is silent."""
        monkeypatch.delenv("FILESTREAMER_CHUNK_SIZE", raising=False)
        monkeypatch.setenv("FILESTREAMER_EOF_POLL_INTERVAL", "0.5")

        config = StreamerConfig.from_env(chunk_size=128, eof_poll_interval=0.1)

        assert config.chunk_size == 128
        assert config.eof_poll_interval == 0.5

    def test_from_env_invalid_value(self, monkeypatch):
        monkeypatch.setenv("FILESTREAMER_CHUNK_SIZE", "lots")
        with pytest.raises(ValueError):
            StreamerConfig.from_env()

    def test_from_dict_accepts_aliases(self):
        config = StreamerConfig.from_dict(
            {
                "fileName": "/var/log/app.log",
                "bufSize": 512,
                "errorOnMissing": True,
                "closeOnEOF": True,
                "unrelated": "ignored",
            }
        )

        assert config.path == "/var/log/app.log"
        assert config.chunk_size == 512
        assert config.error_on_missing is True
        assert config.close_on_eof is True

    def test_from_dict_snake_case(self):
        config = StreamerConfig.from_dict({"path": "a.txt", "eof_poll_interval": 1})
        assert config.path == "a.txt"
        assert config.eof_poll_interval == 1


class TestErrors:
    """Test cases for the error taxonomy."""

    def test_hierarchy(self):
        for error_class in (NotOpenError, BufferTooLargeError, StillStreamingError, IOFailure):
            assert issubclass(error_class, StreamerError)
        assert issubclass(BufferTooLargeError, ValueError)
        assert issubclass(IOFailure, OSError)
        assert issubclass(WatchFailure, IOFailure)

    def test_io_failure_keeps_os_details(self):
        cause = FileNotFoundError(errno.ENOENT, "No such file or directory")
        failure = IOFailure("open", cause, "/tmp/missing")

        assert failure.operation == "open"
        assert failure.errno == errno.ENOENT
        assert failure.filename == "/tmp/missing"
        assert failure.__cause__ is cause
        assert str(failure) == "open failed for /tmp/missing: [Errno 2] No such file or directory"

    def test_watch_failure_operation(self):
        failure = WatchFailure(FileNotFoundError(errno.ENOENT, "gone"), "/tmp/x")
        assert failure.operation == "access check"
        assert "/tmp/x" in str(failure)

    def test_messages_name_the_path(self):
        assert "/tmp/a" in str(NotOpenError("/tmp/a"))
        assert "unstream()" in str(StillStreamingError("/tmp/a"))
        assert "16385" in str(BufferTooLargeError(16385, MAX_STREAMABLE_BUFFER_SIZE))
