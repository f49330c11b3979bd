"""
Map data access layer.

MapDataService sits between the driver-facing consumers (map screen, place
search, route summary) and the TransSync map backend. Every cached operation
follows the same path:

    validate input -> build cache key -> cache lookup -> (coalesced) remote
    call -> cache on success -> operation-specific recovery on failure

Recovery policy per operation:
  - search_places / find_nearby_places: empty list plus error detail.
    A 429 is reported as ErrorKind.RATE_LIMITED so the UI shows a
    "try again shortly" notice instead of retrying.
  - reverse_geocode / get_place_details: failure result, no local fallback.
  - calculate_route: never fails on transport errors; a straight-line
    Haversine estimate flagged is_fallback=True is returned instead and is
    not cached, so the next call tries the backend again.

Invalid coordinates raise InvalidCoordinatesError before any cache lookup or
network call. Everything else comes back as a MapResult.

Concurrent calls with the same cache key share a single in-flight request.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional

from config import ADDRESS_MIN_QUERY_LENGTH, DEFAULT_COUNTRY, SEARCH_MIN_QUERY_LENGTH
from geo import as_geo_point, build_fallback_route
from map_http import (
    MapAPIError,
    MapHTTPClient,
    MapRateLimitError,
    MapUpstreamError,
)
from map_trace import clear_trace, get_trace, set_trace
from health_monitor import MAP_SERVICE
from models import ErrorKind, MapResult, PlaceResult, RouteResult
from response_cache import ResponseCache, make_key

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Too many requests. Try again in a few moments."

# Payload shape problems surface as one of these while parsing.
_PARSE_ERRORS = (KeyError, IndexError, TypeError, ValueError)

# (label, backend place type, search radius in meters)
POPULAR_CATEGORIES = [
    ("Restaurants", "restaurant", 2000),
    ("Banks", "bank", 1000),
    ("Hospitals", "hospital", 5000),
    ("Pharmacies", "pharmacy", 1500),
    ("Bus stops", "bus_stop", 500),
]
POPULAR_PLACES_PER_CATEGORY = 3

DEFAULT_PROFILES = ("driving-car", "foot-walking")

# Served when /map/types is unreachable.
DEFAULT_MAP_TYPES = {
    "amenities": ["restaurant", "bank", "hospital", "school", "pharmacy", "fuel"],
    "shops": ["supermarket"],
    "transport": ["bus_stop"],
    "profiles": list(DEFAULT_PROFILES),
}


def _in_caller_trace(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Bind ``fn`` to the calling thread's trace so pool workers record into it."""
    trace = get_trace()

    def run(*args: Any) -> Any:
        set_trace(trace)
        try:
            return fn(*args)
        finally:
            clear_trace()

    return run


class MapDataService:
    def __init__(
        self,
        client: Optional[MapHTTPClient] = None,
        cache: Optional[ResponseCache] = None,
    ):
        self.client = client if client is not None else MapHTTPClient()
        self.cache = cache if cache is not None else ResponseCache()
        self._inflight: Dict[str, Future] = {}
        self._inflight_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Cache + coalescing
    # ------------------------------------------------------------------

    @staticmethod
    def _record_local(endpoint: str, provider_status: str) -> None:
        trace = get_trace()
        if trace:
            trace.record_api_call(
                service=MAP_SERVICE,
                endpoint=endpoint,
                elapsed_ms=0,
                status_code=0,
                provider_status=provider_status,
            )

    def _cached_call(self, key: str, endpoint: str, fetch: Callable[[], Any]) -> Any:
        """Return the cached value for ``key`` or run ``fetch`` once for it.

        Callers arriving while a fetch for the same key is outstanding wait
        for that fetch and receive its value or exception.
        """
        cached = self.cache.get(key)
        if cached is not None:
            self._record_local(endpoint, "cache_hit")
            return cached

        with self._inflight_lock:
            future = self._inflight.get(key)
            leader = future is None
            if leader:
                # A fetch may have completed between the lookup above and the lock.
                cached = self.cache.get(key)
                if cached is not None:
                    self._record_local(endpoint, "cache_hit")
                    return cached
                future = Future()
                self._inflight[key] = future

        if not leader:
            logger.debug("Joining in-flight map request %s", key)
            return future.result()

        try:
            value = fetch()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            self.cache.set(key, value)
            future.set_result(value)
            return value
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)

    def _guarded(self, key: str, endpoint: str, fetch: Callable[[], Any], empty: Any) -> MapResult:
        """Run a cached call and convert backend failures into a MapResult."""
        try:
            value = self._cached_call(key, endpoint, fetch)
        except MapRateLimitError as e:
            logger.warning("Map backend rate limited %s: %s", endpoint, e)
            return MapResult.failure(ErrorKind.RATE_LIMITED, RATE_LIMIT_MESSAGE, data=empty)
        except MapUpstreamError as e:
            logger.warning("Map backend reported failure for %s: %s", endpoint, e)
            return MapResult.failure(ErrorKind.UPSTREAM, str(e), data=empty)
        except MapAPIError as e:
            logger.warning("Map backend call %s failed: %s", endpoint, e)
            return MapResult.failure(ErrorKind.TRANSPORT, str(e), data=empty)
        except _PARSE_ERRORS as e:
            logger.warning("Malformed %s response from map backend: %s", endpoint, e)
            return MapResult.failure(ErrorKind.UPSTREAM, f"Malformed {endpoint} response", data=empty)

        # Copy lists so callers can't mutate the cached value.
        return MapResult.ok(list(value) if isinstance(value, list) else value)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_places(
        self,
        query: Optional[str],
        limit: int = 5,
        countrycodes: str = DEFAULT_COUNTRY,
    ) -> MapResult:
        """Search places by free text. Results keep the backend's relevance order.

        Queries shorter than two characters return an empty success without
        touching the network.
        """
        query = (query or "").strip()
        if len(query) < SEARCH_MIN_QUERY_LENGTH:
            return MapResult.ok([])

        key = make_key("search", query=query, limit=limit, countrycodes=countrycodes)

        def fetch() -> List[PlaceResult]:
            envelope = self.client.search_places(query, limit, countrycodes)
            return [PlaceResult.from_payload(p) for p in (envelope.get("data") or [])]

        return self._guarded(key, "search", fetch, empty=[])

    def search_addresses(
        self,
        query: Optional[str],
        limit: int = 5,
        countrycodes: str = DEFAULT_COUNTRY,
    ) -> MapResult:
        """Autocomplete variant of search_places with a three-character minimum."""
        if len((query or "").strip()) < ADDRESS_MIN_QUERY_LENGTH:
            return MapResult.ok([])
        return self.search_places(query, limit=limit, countrycodes=countrycodes)

    # ------------------------------------------------------------------
    # Geocoding / places
    # ------------------------------------------------------------------

    def reverse_geocode(self, point: Any, zoom: int = 18) -> MapResult:
        """Address record for a coordinate. Failures are returned, never approximated."""
        p = as_geo_point(point)
        key = make_key("reverse", lat=p.latitude, lon=p.longitude, zoom=zoom)

        def fetch() -> PlaceResult:
            envelope = self.client.reverse_geocode(p.latitude, p.longitude, zoom)
            raw = dict(envelope["data"])
            raw.setdefault("lat", p.latitude)
            raw.setdefault("lon", p.longitude)
            return PlaceResult.from_payload(raw)

        return self._guarded(key, "reverse", fetch, empty=None)

    def find_nearby_places(self, point: Any, category: str = "restaurant", radius: int = 1000) -> MapResult:
        p = as_geo_point(point)
        key = make_key("nearby", lat=p.latitude, lon=p.longitude, type=category, radius=radius)

        def fetch() -> List[PlaceResult]:
            envelope = self.client.find_nearby_places(p.latitude, p.longitude, category, radius)
            return [PlaceResult.from_payload(raw) for raw in (envelope.get("data") or [])]

        return self._guarded(key, "nearby", fetch, empty=[])

    def get_place_details(self, place_id: str) -> MapResult:
        if not place_id:
            raise ValueError("place_id is required")
        key = make_key("details", place_id=str(place_id))

        def fetch() -> PlaceResult:
            envelope = self.client.get_place_details(place_id)
            return PlaceResult.from_payload(envelope["data"])

        return self._guarded(key, "place", fetch, empty=None)

    def get_popular_places(self, point: Any) -> MapResult:
        """Top nearby places across the fixed popular categories.

        Categories whose lookup failed are left out rather than failing the
        whole call.
        """
        p = as_geo_point(point)
        nearby = _in_caller_trace(self.find_nearby_places)
        with ThreadPoolExecutor(max_workers=len(POPULAR_CATEGORIES)) as pool:
            futures = [
                (label, pool.submit(nearby, p, place_type, radius))
                for label, place_type, radius in POPULAR_CATEGORIES
            ]
            groups = []
            for label, fut in futures:
                result = fut.result()
                if result.success:
                    groups.append({
                        "category": label,
                        "places": result.data[:POPULAR_PLACES_PER_CATEGORY],
                    })
        return MapResult.ok(groups)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def calculate_route(self, origin: Any, destination: Any, profile: str = "driving-car") -> MapResult:
        """Route between two points; degrades to a straight-line estimate.

        The fallback carries is_fallback=True and the failure reason, and the
        MapResult is marked ``fallback`` so consumers can show the estimate
        as approximate.
        """
        o = as_geo_point(origin)
        d = as_geo_point(destination)
        key = make_key(
            "route",
            start_lat=o.latitude,
            start_lon=o.longitude,
            end_lat=d.latitude,
            end_lon=d.longitude,
            profile=profile,
        )

        def fetch() -> RouteResult:
            envelope = self.client.calculate_route(o.latitude, o.longitude, d.latitude, d.longitude, profile)
            return RouteResult.from_payload(envelope["data"], profile)

        try:
            route = self._cached_call(key, "route", fetch)
        except (MapAPIError,) + _PARSE_ERRORS as e:
            logger.warning("Route calculation failed (%s); using straight-line estimate", e)
            self._record_local("route", "fallback")
            return MapResult.ok(build_fallback_route(o, d, profile=profile, reason=str(e)), fallback=True)
        return MapResult.ok(route)

    def calculate_multiple_routes(
        self,
        origin: Any,
        destination: Any,
        profiles: Iterable[str] = DEFAULT_PROFILES,
    ) -> MapResult:
        """One route per travel profile, for side-by-side comparison."""
        o = as_geo_point(origin)
        d = as_geo_point(destination)
        profiles = list(profiles)
        if not profiles:
            return MapResult.ok([])
        route = _in_caller_trace(lambda prof: self.calculate_route(o, d, prof))
        with ThreadPoolExecutor(max_workers=len(profiles)) as pool:
            results = list(pool.map(route, profiles))
        return MapResult.ok([
            {"profile": prof, "route": result.data}
            for prof, result in zip(profiles, results)
        ])

    # ------------------------------------------------------------------
    # Metadata / connectivity
    # ------------------------------------------------------------------

    def get_available_types(self) -> MapResult:
        """Place categories and travel profiles the backend supports."""
        try:
            envelope = self.client.get_map_types()
            return MapResult.ok(envelope.get("data") or {})
        except MapAPIError as e:
            logger.warning("Could not load map types (%s); using built-in defaults", e)
            return MapResult.ok(
                {k: list(v) for k, v in DEFAULT_MAP_TYPES.items()},
                fallback=True,
            )

    def check_map_health(self) -> MapResult:
        try:
            envelope = self.client.get_map_health()
        except MapRateLimitError:
            return MapResult.failure(ErrorKind.RATE_LIMITED, RATE_LIMIT_MESSAGE)
        except MapUpstreamError as e:
            return MapResult.failure(ErrorKind.UPSTREAM, str(e))
        except MapAPIError as e:
            return MapResult.failure(ErrorKind.TRANSPORT, str(e))
        return MapResult.ok(envelope.get("data"))

    def test_connection(self) -> MapResult:
        """Reachability of the API root (GET /health)."""
        try:
            return MapResult.ok(self.client.get_api_health())
        except MapRateLimitError:
            return MapResult.failure(ErrorKind.RATE_LIMITED, RATE_LIMIT_MESSAGE)
        except MapAPIError as e:
            return MapResult.failure(ErrorKind.TRANSPORT, str(e))

    # ------------------------------------------------------------------
    # Cache lifecycle
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()
