"""
HTTP layer for the TransSync map backend.

All map backend requests go through MapHTTPClient. It provides:
- Bearer token from the local credential store on every request
- Fixed request timeout (REQUEST_TIMEOUT, 15 s by default)
- Error classification: 429 -> MapRateLimitError; timeouts, connection
  failures, other non-2xx and non-JSON bodies -> MapQueryError; a
  {success: false} envelope -> MapUpstreamError
- 401 clears the stored credentials before raising
- map_trace and health_monitor integration for observability

No retries happen here. Callers decide what a failure means for their
operation (see map_service.py).
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import requests

from config import API_BASE_URL, DEBUG_MODE, REQUEST_TIMEOUT
from credentials import CredentialStore
from health_monitor import MAP_SERVICE, record_call
from map_trace import get_trace

logger = logging.getLogger(__name__)


class MapAPIError(Exception):
    """Base class for map backend failures. ``status_code`` is 0 when no
    HTTP response was received."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class MapRateLimitError(MapAPIError):
    """Raised when the backend answers 429 Too Many Requests."""

    pass


class MapQueryError(MapAPIError):
    """Raised on timeouts, connection errors, non-2xx statuses and unparseable bodies."""

    pass


class MapUpstreamError(MapAPIError):
    """Raised when the response envelope reports success != true."""

    pass


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or fallback)
    return fallback


class MapHTTPClient:
    DEFAULT_TIMEOUT = REQUEST_TIMEOUT

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        credentials: Optional[CredentialStore] = None,
        timeout: Optional[float] = None,
        debug: bool = DEBUG_MODE,
    ):
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials if credentials is not None else CredentialStore()
        self.timeout = timeout if timeout is not None else self.DEFAULT_TIMEOUT
        self.debug = debug

    # ------------------------------------------------------------------
    # Core request path
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        token = self.credentials.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _record(self, endpoint: str, elapsed_ms: int, status_code: int, provider_status: str = ""):
        trace = get_trace()
        if trace:
            trace.record_api_call(
                service=MAP_SERVICE,
                endpoint=endpoint,
                elapsed_ms=elapsed_ms,
                status_code=status_code,
                provider_status=provider_status,
            )
        record_call(MAP_SERVICE, not provider_status, elapsed_ms, provider_status or None)

    def _do_request(self, path: str, params: Optional[Dict[str, Any]], endpoint: str) -> Tuple[int, Any]:
        """Make a single GET request and return (status_code, parsed JSON body)."""
        url = f"{self.base_url}{path}"
        if self.debug:
            logger.info("API Request: GET %s params=%s", url, params)

        start = time.monotonic()
        try:
            # Fresh session per request: the data layer calls in from several threads.
            with requests.Session() as session:
                session.trust_env = False
                resp = session.get(url, params=params, headers=self._headers(), timeout=self.timeout)
        except requests.exceptions.Timeout:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            self._record(endpoint, elapsed_ms, 0, "timeout")
            raise MapQueryError(f"Map backend timeout after {self.timeout}s [endpoint={endpoint}]")
        except requests.exceptions.RequestException as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            self._record(endpoint, elapsed_ms, 0, "connection_error")
            raise MapQueryError(f"Map backend request failed: {e} [endpoint={endpoint}]") from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        status_code = resp.status_code

        try:
            body = resp.json()
        except ValueError:
            body = None

        if self.debug:
            logger.info("API Response: %d %s", status_code, body)

        if status_code == 429:
            self._record(endpoint, elapsed_ms, 429, "rate_limit")
            raise MapRateLimitError(
                _error_message(body, f"Map backend 429 Too Many Requests [endpoint={endpoint}]"),
                status_code=429,
            )
        if status_code == 401:
            self._record(endpoint, elapsed_ms, 401, "unauthorized")
            self.credentials.clear()
            raise MapQueryError(
                _error_message(body, f"Map backend HTTP 401 [endpoint={endpoint}]"),
                status_code=401,
            )
        if status_code >= 400:
            self._record(endpoint, elapsed_ms, status_code, "http_error")
            raise MapQueryError(
                _error_message(body, f"Map backend HTTP {status_code} [endpoint={endpoint}]"),
                status_code=status_code,
            )
        if body is None:
            self._record(endpoint, elapsed_ms, status_code, "parse_error")
            raise MapQueryError(
                f"Map backend returned non-JSON response (HTTP {status_code}) [endpoint={endpoint}]",
                status_code=status_code,
            )

        self._record(endpoint, elapsed_ms, status_code)
        return status_code, body

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None, endpoint: str = "unknown") -> Any:
        """GET and return the raw JSON body, without envelope checks."""
        _, body = self._do_request(path, params, endpoint)
        return body

    def get_envelope(self, path: str, params: Optional[Dict[str, Any]] = None, endpoint: str = "unknown") -> Dict[str, Any]:
        """GET and return a ``{success: true, data, ...}`` envelope.

        Raises:
            MapUpstreamError: if the body is not an envelope or success is not true.
        """
        status_code, body = self._do_request(path, params, endpoint)
        if not isinstance(body, dict) or body.get("success") is not True:
            raise MapUpstreamError(
                _error_message(body, f"Map backend reported failure [endpoint={endpoint}]"),
                status_code=status_code,
            )
        return body

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def search_places(self, query: str, limit: int, countrycodes: str) -> Dict[str, Any]:
        return self.get_envelope(
            f"/map/search/{quote(query, safe='')}",
            {"limit": str(limit), "countrycodes": countrycodes},
            endpoint="search",
        )

    def reverse_geocode(self, lat: float, lon: float, zoom: int) -> Dict[str, Any]:
        return self.get_envelope(f"/map/reverse/{lat}/{lon}", {"zoom": zoom}, endpoint="reverse")

    def find_nearby_places(self, lat: float, lon: float, place_type: str, radius: int) -> Dict[str, Any]:
        return self.get_envelope(
            f"/map/nearby/{lat}/{lon}/{quote(place_type, safe='')}",
            {"radius": radius},
            endpoint="nearby",
        )

    def calculate_route(
        self,
        start_lat: float,
        start_lon: float,
        end_lat: float,
        end_lon: float,
        profile: str,
    ) -> Dict[str, Any]:
        return self.get_envelope(
            f"/map/route/{start_lat}/{start_lon}/{end_lat}/{end_lon}",
            {"profile": profile},
            endpoint="route",
        )

    def get_place_details(self, place_id: str) -> Dict[str, Any]:
        return self.get_envelope(f"/map/place/{quote(str(place_id), safe='')}", endpoint="place")

    def get_map_types(self) -> Dict[str, Any]:
        return self.get_envelope("/map/types", endpoint="types")

    def get_map_health(self) -> Dict[str, Any]:
        return self.get_envelope("/map/health", endpoint="map_health")

    def get_api_health(self) -> Any:
        return self.get_json("/health", endpoint="health")
