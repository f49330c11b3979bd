"""
Geographic primitives for the map data layer.

Coordinate validation, the GeoPoint value type, Haversine distance, and the
straight-line fallback route used when the routing backend is unavailable.
"""

import math
import numbers
from dataclasses import dataclass
from typing import Any, Optional

from config import FALLBACK_SPEED_KMH
from formatting import format_distance

# Earth's mean radius in meters
EARTH_RADIUS_M = 6371000.0


class InvalidCoordinatesError(ValueError):
    """Raised when a latitude/longitude pair is missing, non-numeric or out of range."""

    pass


def is_valid_coordinate(lat: Any, lon: Any) -> bool:
    """True iff both values are finite numbers inside the WGS84 ranges."""
    for value in (lat, lon):
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            return False
        if not math.isfinite(value):
            return False
    return -90 <= lat <= 90 and -180 <= lon <= 180


@dataclass(frozen=True)
class GeoPoint:
    """A validated WGS84 position."""
    latitude: float
    longitude: float

    def __post_init__(self):
        if not is_valid_coordinate(self.latitude, self.longitude):
            raise InvalidCoordinatesError(
                f"Invalid coordinates: lat={self.latitude!r}, lon={self.longitude!r}"
            )

    @property
    def lat(self) -> float:
        return self.latitude

    @property
    def lon(self) -> float:
        return self.longitude

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


def as_geo_point(value: Any) -> GeoPoint:
    """Coerce a GeoPoint, (lat, lon) pair, or lat/lon mapping into a GeoPoint.

    Mappings may use either ``lat``/``lon`` or ``latitude``/``longitude``
    keys, matching what device location reads and backend payloads carry.

    Raises:
        InvalidCoordinatesError: if the value cannot be read as a valid point.
    """
    if isinstance(value, GeoPoint):
        return value
    if isinstance(value, dict):
        lat = value.get("lat", value.get("latitude"))
        lon = value.get("lon", value.get("lng", value.get("longitude")))
        return GeoPoint(lat, lon)
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return GeoPoint(value[0], value[1])
    raise InvalidCoordinatesError(f"Cannot interpret {value!r} as a coordinate pair")


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """
    Great-circle distance between two points in meters (Haversine formula).

    Inputs are assumed valid; validate upstream.
    """
    lat1_rad = math.radians(a.latitude)
    lat2_rad = math.radians(b.latitude)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_M * c


def estimate_duration_seconds(meters: float, speed_kmh: float = FALLBACK_SPEED_KMH) -> float:
    """Travel time at a constant average speed."""
    return meters / (speed_kmh * 1000 / 3600)


def interpolate(a: GeoPoint, b: GeoPoint, fraction: float) -> GeoPoint:
    """Linear interpolation between two points (fine for short segments)."""
    fraction = max(0.0, min(1.0, fraction))
    return GeoPoint(
        a.latitude + (b.latitude - a.latitude) * fraction,
        a.longitude + (b.longitude - a.longitude) * fraction,
    )


def build_fallback_route(
    origin: GeoPoint,
    destination: GeoPoint,
    profile: str = "driving-car",
    reason: Optional[str] = None,
):
    """Straight-line route estimate for when the routing backend fails.

    The result is always flagged ``is_fallback`` so callers never mistake it
    for a routed path.
    """
    # Local import: models imports GeoPoint from this module.
    from models import RouteResult, RouteStep

    meters = distance_meters(origin, destination)
    seconds = estimate_duration_seconds(meters)
    return RouteResult(
        coordinates=[origin, destination],
        distance_meters=meters,
        duration_seconds=seconds,
        instructions=[
            RouteStep(
                instruction=f"Head toward the destination ({format_distance(meters)})",
                distance_meters=meters,
                duration_seconds=seconds,
            )
        ],
        is_fallback=True,
        profile=profile,
        fallback_reason=reason,
    )
