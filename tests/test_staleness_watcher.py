"""
Tests for the StalenessWatcher.

Most tests replace the watchdog observer with a mock and drive the
registered handler directly; one slow test uses a real observer.
"""

import asyncio
import os
import threading
from unittest.mock import MagicMock, patch

import pytest
from watchdog.events import FileDeletedEvent, FileModifiedEvent

from filestreamer import FileStreamer
from filestreamer.errors import WatchFailure
from filestreamer.staleness_watcher import StalenessWatcher, require_readable


@pytest.fixture
def observer():
    """A mock watchdog observer."""
    return MagicMock(name="Observer")


@pytest.fixture
def failures():
    return []


@pytest.fixture
def watcher(observer, failures):
    return StalenessWatcher(failures.append, observer_factory=lambda: observer)


def registered_handler(observer):
    handler, watched_path = observer.schedule.call_args[0][:2]
    return handler, watched_path


class TestRequireReadable:
    """Test cases for the accessibility check."""

    def test_existing_file_passes(self, ten_byte_file):
        require_readable(str(ten_byte_file))

    def test_missing_file_raises(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            require_readable(str(temp_dir / "absent"))


class TestArming:
    """Test cases for start() and stop()."""

    @pytest.mark.asyncio
    async def test_start_schedules_file_path(self, watcher, observer, ten_byte_file):
        """Test the observer watches the absolute file path."""
        watcher.start(str(ten_byte_file))

        _, watched_path = registered_handler(observer)
        assert watched_path == os.path.abspath(ten_byte_file)
        assert watcher.is_armed
        assert watcher.path == watched_path
        observer.start.assert_called_once()

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, watcher, observer, ten_byte_file):
        """Test repeated arm/disarm calls start and stop the observer once."""
        watcher.start(str(ten_byte_file))
        watcher.start(str(ten_byte_file))
        watcher.stop()
        watcher.stop()

        observer.start.assert_called_once()
        observer.stop.assert_called_once()
        assert not watcher.is_armed

    @pytest.mark.asyncio
    async def test_stop_joins_observer_off_the_loop(self, watcher, observer, ten_byte_file):
        """Test stop() returns while the observer thread is still being joined."""
        release = threading.Event()
        joined = threading.Event()

        def slow_join(timeout=None):
            release.wait(timeout)
            joined.set()

        observer.join.side_effect = slow_join
        watcher.start(str(ten_byte_file))

        loop = asyncio.get_running_loop()
        started = loop.time()
        watcher.stop()

        assert loop.time() - started < 0.5, "stop() must not wait for the observer thread"
        assert not joined.is_set()

        release.set()
        await asyncio.wait_for(watcher.wait_stopped(), 2)
        assert joined.is_set()
        observer.join.assert_called_once_with(1.0)

    def test_stop_unarmed_watcher(self, watcher, observer):
        """Test stop() without start() does nothing."""
        watcher.stop()
        observer.stop.assert_not_called()

    @pytest.mark.asyncio
    async def test_unwatchable_path_raises_watch_failure(self, watcher, observer, temp_dir):
        """Test an observer error on start is reported as WatchFailure."""
        observer.schedule.side_effect = FileNotFoundError(2, "No such file or directory")

        with pytest.raises(WatchFailure):
            watcher.start(str(temp_dir / "absent"))
        assert not watcher.is_armed


class TestNotifications:
    """Test cases for change notifications."""

    @pytest.mark.asyncio
    async def test_modification_of_deleted_file_reports_failure(
        self, watcher, observer, failures, make_file, wait_until
    ):
        """Test a change on a vanished file reports once and disarms."""
        path = make_file("doomed.txt", b"data")
        watcher.start(str(path))
        handler, watched_path = registered_handler(observer)

        path.unlink()
        handler.dispatch(FileModifiedEvent(watched_path))
        await wait_until(lambda: failures)

        assert len(failures) == 1
        assert isinstance(failures[0], WatchFailure)
        assert failures[0].filename == watched_path
        assert not watcher.is_armed
        observer.stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_modification_of_readable_file_is_ignored(
        self, watcher, observer, failures, ten_byte_file
    ):
        """Test a change on a still-readable file keeps the watcher armed."""
        watcher.start(str(ten_byte_file))
        handler, watched_path = registered_handler(observer)

        handler.dispatch(FileModifiedEvent(watched_path))
        for _ in range(20):
            await asyncio.sleep(0.005)

        assert failures == []
        assert watcher.is_armed
        watcher.stop()

    @pytest.mark.asyncio
    async def test_delete_notification_is_not_used(self, watcher, observer, failures, make_file):
        """Test deletion events alone do not report a failure."""
        path = make_file("doomed.txt", b"data")
        watcher.start(str(path))
        handler, watched_path = registered_handler(observer)

        path.unlink()
        handler.dispatch(FileDeletedEvent(watched_path))
        for _ in range(20):
            await asyncio.sleep(0.005)

        assert failures == []
        watcher.stop()

    @pytest.mark.asyncio
    async def test_other_paths_are_ignored(self, watcher, observer, failures, temp_dir, make_file):
        """Test notifications for sibling files are filtered out."""
        path = make_file("watched.txt", b"data")
        watcher.start(str(path))
        handler, _ = registered_handler(observer)

        handler.dispatch(FileModifiedEvent(str(temp_dir / "missing-sibling.txt")))
        for _ in range(20):
            await asyncio.sleep(0.005)

        assert failures == []
        watcher.stop()

    @pytest.mark.asyncio
    async def test_check_after_stop_is_dropped(self, watcher, observer, failures, make_file, wait_until):
        """Test a notification racing with stop() reports nothing."""
        path = make_file("doomed.txt", b"data")
        watcher.start(str(path))
        handler, watched_path = registered_handler(observer)

        path.unlink()
        handler.dispatch(FileModifiedEvent(watched_path))
        watcher.stop()
        for _ in range(20):
            await asyncio.sleep(0.005)

        assert failures == []


class TestSessionWatching:
    """Test cases for watching through a FileStreamer session."""

    @pytest.mark.asyncio
    async def test_vanished_file_signals_error_and_keeps_descriptor(self, observer, make_file, wait_until):
        """Test the session reports WatchFailure yet stays open."""
        path = make_file("watched.txt", b"0123456789")
        with patch("filestreamer.staleness_watcher.Observer", return_value=observer):
            streamer = FileStreamer(error_on_missing=True)
            errors = []
            streamer.on("error", lambda event: errors.append(event.error))
            await streamer.open_async(path)

        assert streamer.watcher.is_armed
        handler, watched_path = registered_handler(observer)
        path.unlink()
        handler.dispatch(FileModifiedEvent(watched_path))
        await wait_until(lambda: errors)

        assert isinstance(errors[0], WatchFailure)
        assert not streamer.watcher.is_armed
        assert streamer.is_open

        chunks = [await streamer.stream().read()]
        assert chunks == [b"0123456789"]
        await streamer.promise("close")

    @pytest.mark.asyncio
    async def test_watcher_disarmed_without_error_on_missing(self, observer, ten_byte_file):
        """Test sessions only watch when asked to."""
        with patch("filestreamer.staleness_watcher.Observer", return_value=observer):
            streamer = FileStreamer()
            await streamer.open_async(ten_byte_file)

        assert not streamer.watcher.is_armed
        observer.start.assert_not_called()
        await streamer.close_async()

    @pytest.mark.asyncio
    async def test_close_disarms_watcher(self, observer, ten_byte_file):
        """Test close() stops the observer."""
        with patch("filestreamer.staleness_watcher.Observer", return_value=observer):
            streamer = FileStreamer(error_on_missing=True)
            await streamer.open_async(ten_byte_file)
        await streamer.close_async()

        assert not streamer.watcher.is_armed
        observer.stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_open_disarms_watcher(self, observer, temp_dir):
        """Test an open failure leaves no observer running."""
        with patch("filestreamer.staleness_watcher.Observer", return_value=observer):
            streamer = FileStreamer(error_on_missing=True)
            with pytest.raises(OSError):
                await streamer.open_async(temp_dir / "absent.txt")

        assert not streamer.watcher.is_armed
        assert not streamer.is_open

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_real_observer_reports_unlinked_file(self, make_file, wait_until):
        """Test deleting a watched open file with a real watchdog observer."""
        path = make_file("real.txt", b"data")
        streamer = FileStreamer(error_on_missing=True)
        errors = []
        streamer.on("error", lambda event: errors.append(event.error))
        await streamer.open_async(path)

        path.unlink()
        await wait_until(lambda: errors, timeout=5.0)

        assert isinstance(errors[0], WatchFailure)
        await streamer.close_async()
