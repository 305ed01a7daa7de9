"""Shared test fixtures for all test modules."""

import logging
from collections.abc import Iterator

import httpx
import pytest
from tests.helpers import FakeClock, RecordingNotifier, StaticProbe

from attendance_monitor.adapters.logging import PACKAGE_LOGGER
from attendance_monitor.app import MonitoringServices
from attendance_monitor.config import MonitoringSettings


@pytest.fixture(autouse=True)
def reset_package_logger() -> Iterator[None]:
    """Undo configure_logging() so caplog sees package records in every test."""
    yield
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def clock() -> FakeClock:
    """A clock frozen at START_TIME until advanced."""
    return FakeClock()


@pytest.fixture
def probe() -> StaticProbe:
    return StaticProbe()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings() -> MonitoringSettings:
    """In-memory settings unaffected by a local .env file."""
    return MonitoringSettings(cache_backend="memory", log_json=False, _env_file=None)


@pytest.fixture
def services(settings: MonitoringSettings, probe: StaticProbe) -> MonitoringServices:
    """Fresh monitoring services per test."""
    return MonitoringServices.build(settings, probe=probe)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-User-Id": "admin-1", "X-User-Role": "Admin", "X-School-Id": "school-1"}


@pytest.fixture
def teacher_headers() -> dict[str, str]:
    return {"X-User-Id": "teacher-1", "X-User-Role": "Teacher", "X-School-Id": "school-1"}


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Returns a callable that accepts an ASGI app and returns a client
    with ASGITransport configured. Application exceptions are turned into
    500 responses instead of being raised into the test.

    Usage:
        async def test_something(asgi_test_client, services):
            app = create_app(services=services)
            async with asgi_test_client(app) as client:
                response = await client.get("/monitoring/health")
    """

    def _get_client(app):
        """Return an AsyncClient context manager for the given app."""
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app, raise_app_exceptions=False),
            base_url="http://test",
        )

    return _get_client
