"""Shared fixtures for the TransSync driver maps test suite.

Provides a Flask test client, a controllable clock for cache TTL tests, and
a MapDataService wired to a mocked HTTP client.
"""

import atexit
import os
import shutil
import tempfile
from unittest.mock import MagicMock

import pytest

# Point credentials and the backend at throwaway values BEFORE importing
# config-reading modules (they read the environment at import time).
_test_dir = tempfile.mkdtemp(prefix="transsync-test-")
os.environ["TRANSSYNC_CREDENTIALS_PATH"] = os.path.join(_test_dir, "credentials.json")
os.environ["TRANSSYNC_API_URL"] = "http://maps.test"
os.environ.setdefault("TRANSSYNC_DEBUG_MODE", "false")
atexit.register(lambda: shutil.rmtree(_test_dir, ignore_errors=True))

import app as app_module  # noqa: E402
from map_http import MapHTTPClient  # noqa: E402
from map_service import MapDataService  # noqa: E402
from map_trace import clear_trace  # noqa: E402
from response_cache import ResponseCache  # noqa: E402


class FakeClock:
    """Monotonic clock stand-in advanced by hand."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(autouse=True)
def _reset_state():
    """Start every test with empty caches, recents and no trace."""
    clear_trace()
    app_module.map_service.clear_cache()
    app_module.recent_searches.clear()
    app_module.simulator.set_route(None)
    app_module.simulator.state.vehicle_position = None
    yield
    clear_trace()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def mock_client():
    """MapHTTPClient mock; configure return values per endpoint method."""
    return MagicMock(spec=MapHTTPClient)


@pytest.fixture()
def service(mock_client, clock):
    return MapDataService(client=mock_client, cache=ResponseCache(ttl_seconds=300, clock=clock))


@pytest.fixture()
def client():
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as c:
        yield c
