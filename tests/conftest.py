import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest
from app import create_app
from notifications.channel import reset_channels
from notifications.notification.queue import NotificationQueue
from notifications.preference.preference import InMemoryPreferenceStore
from runtime import build_runtime
from shared.settings import Settings
from shared.utils.db import create_engine, get_session_factory, setup_db


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        # Get the test file path relative to the tests directory
        test_path = Path(item.fspath)

        # Mark tests based on their directory
        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


class FrozenClock:
    """UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll ``predicate`` (sync or async) until it is truthy."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return result
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def eventually():
    return wait_until


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'ridestream.db'}",
        dispatch_tick_seconds=0.01,
        feed_reconnect_initial_seconds=0.01,
        feed_reconnect_max_seconds=0.05,
    )


@pytest.fixture
async def engine(settings):
    engine = create_engine(settings)
    await setup_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def queue(session_factory, clock):
    return NotificationQueue(session_factory, clock=clock)


@pytest.fixture(autouse=True)
def run_around_tests():
    """Reset channel adapters around every test"""
    reset_channels()
    yield
    reset_channels()


@pytest.fixture
async def runtime(settings):
    """Fully wired runtime on a fresh database; background loops are not started."""
    runtime = build_runtime(settings, preferences=InMemoryPreferenceStore())
    await runtime.setup()
    yield runtime
    await runtime.stop()


@pytest.fixture
async def client(runtime):
    transport = httpx.ASGITransport(app=create_app(runtime))
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
