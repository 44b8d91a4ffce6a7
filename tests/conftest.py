"""Pytest configuration and shared fixtures."""

import shutil
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator

import pytest  # type: ignore[import-not-found]

from tilo.core.storage import SQLiteBackend


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest."""
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: int) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at 2019-05-14 09:00:00."""
    return FakeClock(datetime(2019, 5, 14, 9, 0, 0))


@pytest.fixture
def backend() -> Iterator[SQLiteBackend]:
    """Initialized in-memory SQLite backend."""
    db = SQLiteBackend(":memory:")
    db.init()
    yield db
    db.close()


@pytest.fixture
def socket_dir() -> Iterator[Path]:
    """Short temporary directory for Unix sockets (paths are length-limited)."""
    path = Path(tempfile.mkdtemp(prefix="tilo", dir="/tmp"))
    yield path
    shutil.rmtree(path, ignore_errors=True)
