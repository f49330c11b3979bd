"""
Simulated vehicle position for the driver map screen.

A fixed-interval timer advances the bus along the current route polyline
(or wanders slightly around its last fix when no route is set) and merges
the new position into MapState. It runs on its own daemon thread, independent
of the map data layer; MapState is only touched under the simulator's lock.

Start/stop follow the same stop-event pattern as the health monitor.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from config import SIMULATION_INTERVAL_SECONDS, SIMULATION_SPEED_KMH
from geo import GeoPoint, distance_meters, interpolate
from models import RouteResult

logger = logging.getLogger(__name__)

# Max per-tick drift (degrees, ~50 m) when no route is loaded.
DEFAULT_JITTER_DEGREES = 0.0005


@dataclass
class MapMarker:
    position: GeoPoint
    title: str
    description: str = ""
    color: str = "#2563eb"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.position.latitude,
            "longitude": self.position.longitude,
            "title": self.title,
            "description": self.description,
            "color": self.color,
        }


@dataclass
class MapState:
    """Everything the map screen draws: vehicle, active route, stop markers."""
    vehicle_position: Optional[GeoPoint] = None
    route: Optional[RouteResult] = None
    markers: List[MapMarker] = field(default_factory=list)
    route_progress_m: float = 0.0
    updates: int = 0
    updated_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vehicle_position": self.vehicle_position.to_dict() if self.vehicle_position else None,
            "route": self.route.to_dict() if self.route else None,
            "markers": [m.to_dict() for m in self.markers],
            "route_progress_m": self.route_progress_m,
            "updates": self.updates,
            "updated_at": self.updated_at,
        }


def _position_along(coordinates: List[GeoPoint], meters: float) -> GeoPoint:
    """Point ``meters`` along the polyline, clamped to its last vertex."""
    remaining = meters
    for a, b in zip(coordinates, coordinates[1:]):
        seg = distance_meters(a, b)
        if seg == 0:
            continue
        if remaining <= seg:
            return interpolate(a, b, remaining / seg)
        remaining -= seg
    return coordinates[-1]


def _path_length(coordinates: List[GeoPoint]) -> float:
    return sum(distance_meters(a, b) for a, b in zip(coordinates, coordinates[1:]))


class PositionSimulator:
    def __init__(
        self,
        state: Optional[MapState] = None,
        interval_seconds: float = SIMULATION_INTERVAL_SECONDS,
        speed_kmh: float = SIMULATION_SPEED_KMH,
        jitter_degrees: float = DEFAULT_JITTER_DEGREES,
        rng: Optional[random.Random] = None,
    ):
        self.state = state if state is not None else MapState()
        self.interval_seconds = interval_seconds
        self.speed_kmh = speed_kmh
        self.jitter_degrees = jitter_degrees
        self._rng = rng if rng is not None else random.Random()
        self._lock = threading.Lock()
        self._listeners: List[Callable[[GeoPoint], None]] = []
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # State updates from the screen
    # ------------------------------------------------------------------

    def set_route(self, route: Optional[RouteResult]) -> None:
        """Replace the active route and restart progress from its first point."""
        with self._lock:
            self.state.route = route
            self.state.route_progress_m = 0.0
            if route is not None and route.coordinates:
                self.state.vehicle_position = route.coordinates[0]

    def set_position(self, point: GeoPoint) -> None:
        with self._lock:
            self.state.vehicle_position = point
            self.state.updated_at = time.time()

    def set_markers(self, markers: List[MapMarker]) -> None:
        with self._lock:
            self.state.markers = list(markers)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self.state.to_dict()

    def current_view(self):
        """(route, vehicle_position) read atomically, for rendering."""
        with self._lock:
            return self.state.route, self.state.vehicle_position

    def subscribe(self, callback: Callable[[GeoPoint], None]) -> None:
        """Register a callback invoked with every simulated position."""
        self._listeners.append(callback)

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def _next_position(self) -> Optional[GeoPoint]:
        route = self.state.route
        if route is not None and len(route.coordinates) >= 2:
            step_m = self.speed_kmh * 1000 / 3600 * self.interval_seconds
            total = _path_length(route.coordinates)
            self.state.route_progress_m = min(self.state.route_progress_m + step_m, total)
            return _position_along(route.coordinates, self.state.route_progress_m)

        current = self.state.vehicle_position
        if current is None:
            return None
        j = self.jitter_degrees
        lat = min(90.0, max(-90.0, current.latitude + self._rng.uniform(-j, j)))
        lon = min(180.0, max(-180.0, current.longitude + self._rng.uniform(-j, j)))
        return GeoPoint(lat, lon)

    def step(self) -> Optional[GeoPoint]:
        """Advance one tick. Returns the new position, or None with no fix yet."""
        with self._lock:
            position = self._next_position()
            if position is None:
                return None
            self.state.vehicle_position = position
            self.state.updates += 1
            self.state.updated_at = time.time()

        for callback in list(self._listeners):
            try:
                callback(position)
            except Exception:
                logger.exception("[simulator] Position listener failed")
        return position

    # ------------------------------------------------------------------
    # Background thread lifecycle
    # ------------------------------------------------------------------

    def _loop(self, stop_event: threading.Event) -> None:
        logger.info("[simulator] Position simulation started (interval=%.1fs)", self.interval_seconds)
        while not stop_event.wait(timeout=self.interval_seconds):
            self.step()
        logger.info("[simulator] Position simulation stopped")

    def start(self) -> None:
        """Start the timer thread (idempotent)."""
        if self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set():
            return
        # Fresh event per thread: a thread that is still winding down keeps its own set event.
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._loop, args=(self._stop_event,), daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the timer thread and wait (bounded) for it to exit."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("[simulator] Timer thread did not stop within %.1fs", timeout)
                return
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()
