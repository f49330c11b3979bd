"""
Tests for the map backend health monitor.

Covers:
  - HealthMonitor passive tracking (record_call -> status computation)
  - Active probe of GET /map/health with mocked HTTP
  - Combined get_all_status() output
"""

import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from credentials import CredentialStore
from health_monitor import MAP_SERVICE, HealthMonitor


@pytest.fixture
def store(tmp_path):
    return CredentialStore(str(tmp_path / "credentials.json"))


@pytest.fixture
def monitor(store):
    """Fresh HealthMonitor instance (no background thread)."""
    return HealthMonitor(base_url="http://maps.test/api", credentials=store)


def _probe_response(status_code=200, json_data=None):
    resp = MagicMock()
    resp.status_code = status_code
    if json_data is not None:
        resp.json.return_value = json_data
    else:
        resp.json.side_effect = ValueError("No JSON")
    return resp


# ---------------------------------------------------------------------------
# Passive tracking
# ---------------------------------------------------------------------------

class TestPassiveTracking:

    def test_record_call_tracks_outcomes(self, monitor):
        monitor.record_call(MAP_SERVICE, True, 100)
        monitor.record_call(MAP_SERVICE, False, 200, "timeout")

        window = list(monitor._passive[MAP_SERVICE])
        assert len(window) == 2
        assert window[1].success is False
        assert window[1].error == "timeout"

    def test_unknown_when_empty(self, monitor):
        result = monitor._compute_passive_status(MAP_SERVICE)
        assert result.status == "unknown"
        assert result.details["sample_size"] == 0

    def test_healthy(self, monitor):
        for _ in range(20):
            monitor.record_call(MAP_SERVICE, True, 100)
        result = monitor._compute_passive_status(MAP_SERVICE)
        assert result.status == "healthy"
        assert result.details["success_rate"] == 1.0

    def test_degraded(self, monitor):
        """80% success rate -> 'degraded' (below 95%, above 70%)."""
        for _ in range(16):
            monitor.record_call(MAP_SERVICE, True, 100)
        for _ in range(4):
            monitor.record_call(MAP_SERVICE, False, 200, "http_error")
        result = monitor._compute_passive_status(MAP_SERVICE)
        assert result.status == "degraded"
        assert result.error == "http_error"

    def test_down(self, monitor):
        for _ in range(5):
            monitor.record_call(MAP_SERVICE, True, 100)
        for _ in range(5):
            monitor.record_call(MAP_SERVICE, False, 100, "connection_error")
        assert monitor._compute_passive_status(MAP_SERVICE).status == "down"

    def test_window_is_bounded(self, monitor):
        for _ in range(80):
            monitor.record_call(MAP_SERVICE, True, 10)
        assert len(monitor._passive[MAP_SERVICE]) == 50


# ---------------------------------------------------------------------------
# Active probe
# ---------------------------------------------------------------------------

class TestActiveCheck:

    @patch("health_monitor.requests.get")
    def test_healthy_envelope(self, mock_get, monitor):
        mock_get.return_value = _probe_response(200, {"success": True, "data": {"status": "ok"}})
        result = monitor._check_map_backend()
        assert result.status == "healthy"
        assert mock_get.call_args[0][0] == "http://maps.test/api/map/health"

    @patch("health_monitor.requests.get")
    def test_success_false_is_degraded(self, mock_get, monitor):
        mock_get.return_value = _probe_response(200, {"success": False})
        assert monitor._check_map_backend().status == "degraded"

    @patch("health_monitor.requests.get")
    def test_http_error_is_degraded(self, mock_get, monitor):
        mock_get.return_value = _probe_response(503)
        result = monitor._check_map_backend()
        assert result.status == "degraded"
        assert result.error == "HTTP 503"

    @patch("health_monitor.requests.get", side_effect=requests.Timeout("slow"))
    def test_timeout_is_down(self, mock_get, monitor):
        result = monitor._check_map_backend()
        assert result.status == "down"
        assert result.error == "timeout"

    @patch("health_monitor.requests.get", side_effect=requests.ConnectionError("refused"))
    def test_connection_error_is_down(self, mock_get, monitor):
        assert monitor._check_map_backend().status == "down"

    @patch("health_monitor.requests.get")
    def test_sends_stored_bearer_token(self, mock_get, monitor, store):
        store.save("tok", {"id": 7})
        mock_get.return_value = _probe_response(200, {"success": True})
        monitor._check_map_backend()
        headers = mock_get.call_args[1]["headers"]
        assert headers["Authorization"] == "Bearer tok"

    @patch("health_monitor.requests.get")
    def test_no_authorization_without_token(self, mock_get, monitor):
        mock_get.return_value = _probe_response(200, {"success": True})
        monitor._check_map_backend()
        assert "Authorization" not in mock_get.call_args[1]["headers"]


# ---------------------------------------------------------------------------
# Combined status
# ---------------------------------------------------------------------------

class TestGetAllStatus:

    def test_passive_when_no_active_check_yet(self, monitor):
        monitor.record_call(MAP_SERVICE, True, 42)
        status = monitor.get_all_status()
        assert status[MAP_SERVICE]["status"] == "healthy"
        assert status[MAP_SERVICE]["mode"] == "passive"

    @patch("health_monitor.requests.get")
    def test_active_result_preferred(self, mock_get, monitor):
        monitor.record_call(MAP_SERVICE, True, 42)
        mock_get.return_value = _probe_response(500)
        monitor.run_active_checks()

        status = monitor.get_all_status()[MAP_SERVICE]
        assert status["status"] == "degraded"
        assert status["mode"] == "active"
        assert status["error"] == "HTTP 500"


# ---------------------------------------------------------------------------
# Background thread
# ---------------------------------------------------------------------------

class TestMonitorThread:

    @patch("health_monitor.requests.get")
    def test_stop_then_start_resumes_checks(self, mock_get, store):
        checked = threading.Event()

        def respond(*args, **kwargs):
            checked.set()
            return _probe_response(200, {"success": True})

        mock_get.side_effect = respond
        monitor = HealthMonitor(base_url="http://maps.test/api", interval=0.01, credentials=store)

        monitor.start()
        assert checked.wait(timeout=2)
        monitor.stop()
        assert monitor._thread is None

        checked.clear()
        monitor.start()
        try:
            assert checked.wait(timeout=2)
            assert monitor._thread.is_alive()
        finally:
            monitor.stop()
        assert monitor._thread is None

    def test_stop_without_start_is_noop(self, monitor):
        monitor.stop()
        assert monitor._thread is None
