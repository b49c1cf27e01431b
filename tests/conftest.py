"""
Shared test fixtures and configuration for filestreamer tests.

This module provides common fixtures and utilities used across
all test modules in the filestreamer test suite.
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from filestreamer.app_logger import NullAppLogger, set_default_logger
from filestreamer.io_pool import DescriptorIOPool


def pytest_addoption(parser):
    """Add command line options to enable specific test categories."""
    parser.addoption(
        "--enable-slow",
        action="store_true",
        default=False,
        help="Enable tests marked with @pytest.mark.slow (skipped by default)",
    )


def pytest_configure(config):
    """Register the custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow or timing dependent - skipped by default, use --enable-slow",
    )


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless enabled by flag or environment."""
    enable_slow = config.getoption("--enable-slow") or os.getenv(
        "ENABLE_SLOW_TESTS", ""
    ).lower() in ("true", "1", "yes")

    if not enable_slow:
        skip_slow = pytest.mark.skip(
            reason="Use --enable-slow or set ENABLE_SLOW_TESTS=true to run slow tests"
        )
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


@pytest.fixture(autouse=True)
def quiet_default_logger() -> Generator[None, None, None]:
    """Keep library logging out of test output."""
    set_default_logger(NullAppLogger())
    yield
    set_default_logger(None)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for testing.

    Yields:
        Path to the temporary directory
    """
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def make_file(temp_dir: Path) -> Callable[[str, bytes], Path]:
    """
    Return a factory writing files with the given bytes into temp_dir.
    """

    def factory(name: str, content: bytes) -> Path:
        path = temp_dir / name
        path.write_bytes(content)
        return path

    return factory


@pytest.fixture
def ten_byte_file(make_file) -> Path:
    """A file holding exactly ten bytes."""
    return make_file("ten.bin", b"0123456789")


@pytest.fixture
def sample_bytes() -> bytes:
    """Deterministic binary content spanning several chunk sizes."""
    return bytes((i * 37 + 11) % 256 for i in range(20000))


@pytest.fixture
def wait_until():
    """
    Return a coroutine function polling a predicate on the event loop.
    """

    async def waiter(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not reached before timeout")
            await asyncio.sleep(0.001)

    return waiter


class GatedIOPool(DescriptorIOPool):
    """Descriptor pool whose reads wait for the test to open a gate."""

    def __init__(self):
        super().__init__(max_workers=2, logger=NullAppLogger())
        self.gate = asyncio.Event()
        self.gate.set()
        self.read_calls = 0
        self.fail_reads_with = None

    async def run(self, fn, *args):
        if fn is os.read:
            self.read_calls += 1
            await self.gate.wait()
            if self.fail_reads_with is not None:
                raise self.fail_reads_with
        return await super().run(fn, *args)


@pytest.fixture
def gated_pool() -> Generator[GatedIOPool, None, None]:
    """
    Create a descriptor pool with controllable, counted reads.

    Yields:
        GatedIOPool with its gate open
    """
    pool = GatedIOPool()
    yield pool
    pool.shutdown(wait=False)
