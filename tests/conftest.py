"""Pytest configuration and fixtures."""

import asyncio
import sys
from pathlib import Path

import pytest

# Add src directory to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from bundlewatch.models import ChangeEvent, ChangeKind  # noqa: E402


class FakeChangeSource:
    """In-memory change source. Tests call emit() instead of touching the disk."""

    def __init__(self, on_change, notify=None):
        self.on_change = on_change
        self.notify = notify
        self.watched_files: set[str] = set()
        self.started = False
        self.stopped = False
        self.failure: Exception | None = None
        self.health_checks = 0

    def add_watch(self, path):
        if path in self.watched_files:
            return False
        self.watched_files.add(path)
        return True

    def start(self):
        self.started = True

    def check_health(self):
        self.health_checks += 1
        if self.failure is not None:
            raise self.failure

    def stop(self):
        self.stopped = True

    def emit(self, path, kind=ChangeKind.UPDATE):
        path = str(path)
        if path in self.watched_files:
            self.on_change(ChangeEvent(path, kind))


@pytest.fixture
def backend_factory():
    """Factory producing FakeChangeSource instances; created ones are in .created."""
    created = []

    def factory(on_change, notify):
        source = FakeChangeSource(on_change, notify)
        created.append(source)
        return source

    factory.created = created
    return factory


@pytest.fixture
def project(tmp_path):
    """Create a project with a single entry module."""
    src = tmp_path / "src"
    src.mkdir()
    (src / "main.js").write_text("console.log(1)\n")
    return tmp_path


async def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> None:
    """Poll until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Timed out waiting for condition")
        await asyncio.sleep(interval)
