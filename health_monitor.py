"""
Health monitoring for the TransSync map backend.

Two monitoring modes:
  1. Active probe of GET /map/health, run by a background daemon thread
     every HEALTH_CHECK_INTERVAL seconds.
  2. Passive tracking of real calls made by MapHTTPClient via record_call().

The active result is preferred when available; otherwise status is derived
from the rolling window of passive outcomes.

Module-level singleton: all callers in this process share one HealthMonitor.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from config import API_BASE_URL, HEALTH_CHECK_INTERVAL
from credentials import CredentialStore

logger = logging.getLogger(__name__)

MAP_SERVICE = "map_api"

# HTTP timeout for the active probe (seconds).
_PROBE_TIMEOUT = 10

# Rolling window size for passive call tracking per service.
_PASSIVE_WINDOW_SIZE = 50

# Passive health thresholds (success rate).
_HEALTHY_THRESHOLD = 0.95
_DEGRADED_THRESHOLD = 0.70


@dataclass
class HealthCheckResult:
    """Health status for a single API dependency."""
    service: str
    status: str          # "healthy" | "degraded" | "down" | "unknown"
    latency_ms: int
    last_checked: str    # ISO-8601 timestamp
    error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


@dataclass
class _CallRecord:
    timestamp: float
    success: bool
    latency_ms: int
    error: Optional[str] = None


class HealthMonitor:
    """Thread-safe health status tracker for the map backend."""

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        interval: int = HEALTH_CHECK_INTERVAL,
        credentials: Optional[CredentialStore] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials if credentials is not None else CredentialStore()
        self.interval = interval
        self._lock = threading.Lock()
        self._active_result: Optional[HealthCheckResult] = None
        self._prev_status: Optional[str] = None
        self._passive: Dict[str, deque] = {
            MAP_SERVICE: deque(maxlen=_PASSIVE_WINDOW_SIZE),
        }
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Passive recording (called from MapHTTPClient)
    # ------------------------------------------------------------------

    def record_call(
        self,
        service: str,
        success: bool,
        latency_ms: int,
        error: Optional[str] = None,
    ) -> None:
        record = _CallRecord(
            timestamp=time.time(),
            success=success,
            latency_ms=latency_ms,
            error=error,
        )
        with self._lock:
            if service not in self._passive:
                self._passive[service] = deque(maxlen=_PASSIVE_WINDOW_SIZE)
            self._passive[service].append(record)

    def _compute_passive_status(self, service: str) -> HealthCheckResult:
        """Derive health status from the rolling window of real API calls."""
        with self._lock:
            window = list(self._passive.get(service, []))

        if not window:
            return HealthCheckResult(
                service=service,
                status="unknown",
                latency_ms=0,
                last_checked=datetime.now(timezone.utc).isoformat(),
                details={"mode": "passive", "sample_size": 0},
            )

        successes = sum(1 for r in window if r.success)
        total = len(window)
        rate = successes / total
        avg_latency = int(sum(r.latency_ms for r in window) / total)
        last_ts = max(r.timestamp for r in window)
        last_error = None
        for r in reversed(window):
            if not r.success and r.error:
                last_error = r.error
                break

        if rate >= _HEALTHY_THRESHOLD:
            status = "healthy"
        elif rate >= _DEGRADED_THRESHOLD:
            status = "degraded"
        else:
            status = "down"

        return HealthCheckResult(
            service=service,
            status=status,
            latency_ms=avg_latency,
            last_checked=datetime.fromtimestamp(last_ts, tz=timezone.utc).isoformat(),
            error=last_error,
            details={
                "mode": "passive",
                "success_rate": round(rate, 3),
                "sample_size": total,
            },
        )

    # ------------------------------------------------------------------
    # Active probe
    # ------------------------------------------------------------------

    def _check_map_backend(self) -> HealthCheckResult:
        """Probe GET /map/health. A 200 with success=false is 'degraded'."""
        t0 = time.time()
        url = f"{self.base_url}/map/health"
        try:
            headers = {"Accept": "application/json"}
            token = self.credentials.get_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"
            resp = requests.get(url, headers=headers, timeout=_PROBE_TIMEOUT)
            elapsed_ms = int((time.time() - t0) * 1000)
            body_ok = False
            if resp.status_code == 200:
                try:
                    body = resp.json()
                    body_ok = isinstance(body, dict) and body.get("success") is True
                except ValueError:
                    body_ok = False
            if body_ok:
                return HealthCheckResult(
                    service=MAP_SERVICE,
                    status="healthy",
                    latency_ms=elapsed_ms,
                    last_checked=datetime.now(timezone.utc).isoformat(),
                    details={"mode": "active"},
                )
            return HealthCheckResult(
                service=MAP_SERVICE,
                status="degraded",
                latency_ms=elapsed_ms,
                last_checked=datetime.now(timezone.utc).isoformat(),
                error=f"HTTP {resp.status_code}",
                details={"mode": "active"},
            )
        except requests.Timeout:
            elapsed_ms = int((time.time() - t0) * 1000)
            return HealthCheckResult(
                service=MAP_SERVICE,
                status="down",
                latency_ms=elapsed_ms,
                last_checked=datetime.now(timezone.utc).isoformat(),
                error="timeout",
                details={"mode": "active"},
            )
        except requests.RequestException as e:
            elapsed_ms = int((time.time() - t0) * 1000)
            return HealthCheckResult(
                service=MAP_SERVICE,
                status="down",
                latency_ms=elapsed_ms,
                last_checked=datetime.now(timezone.utc).isoformat(),
                error=str(e),
                details={"mode": "active"},
            )

    def run_active_checks(self) -> None:
        """Run the active probe and store the result. Called by the bg thread."""
        result = self._check_map_backend()
        with self._lock:
            prev = self._prev_status
            self._active_result = result
            self._prev_status = result.status

        if prev and prev != result.status:
            logger.warning(
                "[health] %s status changed: %s -> %s (error=%s)",
                MAP_SERVICE, prev, result.status, result.error,
            )
        else:
            logger.info("[health] %s: %s (%dms)", MAP_SERVICE, result.status, result.latency_ms)

    # ------------------------------------------------------------------
    # Combined status view
    # ------------------------------------------------------------------

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            active = self._active_result
        if active:
            return {MAP_SERVICE: self._result_to_dict(active)}
        return {MAP_SERVICE: self._result_to_dict(self._compute_passive_status(MAP_SERVICE))}

    @staticmethod
    def _result_to_dict(result: HealthCheckResult) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "status": result.status,
            "latency_ms": result.latency_ms,
            "last_checked": result.last_checked,
        }
        if result.error:
            d["error"] = result.error
        if result.details:
            d.update(result.details)
        return d

    # ------------------------------------------------------------------
    # Background thread lifecycle
    # ------------------------------------------------------------------

    def _loop(self, stop_event: threading.Event) -> None:
        logger.info("[health] Health monitor thread started (interval=%ds)", self.interval)
        while not stop_event.is_set():
            try:
                self.run_active_checks()
            except Exception:
                logger.exception("[health] Unexpected error in active health check")
            stop_event.wait(timeout=self.interval)
        logger.info("[health] Health monitor thread stopped")

    def start(self) -> None:
        """Start the background health monitor thread (idempotent)."""
        if self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set():
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._loop, args=(self._stop_event,), daemon=True)
        self._thread.start()

    def stop(self, timeout: float = _PROBE_TIMEOUT) -> None:
        """Stop the monitor thread, waiting at most ``timeout`` seconds for it to exit."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("[health] Monitor thread did not stop within %.1fs", timeout)
                return
        self._thread = None


# ---------------------------------------------------------------------------
# Module-level singleton and public API
# ---------------------------------------------------------------------------

_monitor = HealthMonitor()


def record_call(
    service: str,
    success: bool,
    latency_ms: int,
    error: Optional[str] = None,
) -> None:
    """Record an API call outcome for passive health tracking."""
    _monitor.record_call(service, success, latency_ms, error)


def get_status() -> Dict[str, Dict[str, Any]]:
    return _monitor.get_all_status()


def start_monitor() -> None:
    _monitor.start()


def stop_monitor() -> None:
    _monitor.stop()
