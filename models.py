"""
Typed results for the map data layer.

Backend payloads are parsed into these dataclasses at the HTTP boundary so
the rest of the code never passes raw response dicts around. MapResult is the
uniform return shape of every MapDataService operation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from formatting import format_address, format_distance, format_duration
from geo import GeoPoint


# =============================================================================
# Places
# =============================================================================

@dataclass(frozen=True)
class PlaceResult:
    """A place returned by search, reverse geocode, nearby or details calls."""
    id: str
    name: str
    formatted_address: str
    coordinates: GeoPoint
    category: str = ""
    type: str = ""
    distance_meters: Optional[float] = None   # nearby lookups only
    phone: Optional[str] = None
    website: Optional[str] = None
    opening_hours: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: Dict[str, Any]) -> "PlaceResult":
        """Parse one backend place record.

        Raises KeyError/TypeError/ValueError on malformed records; callers
        treat that as an upstream failure.
        """
        # Backend records use lat/lon; our own to_dict() output uses latitude/longitude.
        lat = raw["lat"] if "lat" in raw else raw["latitude"]
        lon = raw["lon"] if "lon" in raw else raw["longitude"]
        coordinates = GeoPoint(float(lat), float(lon))

        address = raw.get("address")
        if isinstance(address, dict):
            formatted = format_address(address) or raw.get("display_name") or ""
        else:
            formatted = address or raw.get("display_name") or raw.get("formatted_address") or ""

        place_id = raw.get("id", raw.get("place_id"))
        if place_id is None:
            place_id = f"{coordinates.latitude},{coordinates.longitude}"

        distance = raw.get("distance", raw.get("distance_meters"))
        return cls(
            id=str(place_id),
            name=raw.get("name") or raw.get("display_name") or "",
            formatted_address=formatted,
            coordinates=coordinates,
            category=raw.get("category") or "",
            type=raw.get("type") or "",
            distance_meters=float(distance) if distance is not None else None,
            phone=raw.get("phone"),
            website=raw.get("website"),
            opening_hours=raw.get("opening_hours"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "formatted_address": self.formatted_address,
            "latitude": self.coordinates.latitude,
            "longitude": self.coordinates.longitude,
            "category": self.category,
            "type": self.type,
            "distance_meters": self.distance_meters,
            "phone": self.phone,
            "website": self.website,
            "opening_hours": self.opening_hours,
        }


# =============================================================================
# Routes
# =============================================================================

@dataclass(frozen=True)
class RouteStep:
    instruction: str
    distance_meters: float = 0.0
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class RouteResult:
    """A calculated route. Replaced wholesale on every new calculation."""
    coordinates: List[GeoPoint]
    distance_meters: float
    duration_seconds: float
    instructions: List[RouteStep] = field(default_factory=list)
    is_fallback: bool = False
    profile: str = "driving-car"
    fallback_reason: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: Dict[str, Any], profile: str) -> "RouteResult":
        """Parse a backend route. Geometry arrives as GeoJSON [lon, lat] pairs."""
        coordinates = [
            GeoPoint(float(pair[1]), float(pair[0]))
            for pair in raw["geometry"]["coordinates"]
        ]
        steps = [
            RouteStep(
                instruction=step.get("instruction", ""),
                distance_meters=float(step.get("distance") or 0),
                duration_seconds=float(step.get("duration") or 0),
            )
            for step in (raw.get("instructions") or [])
        ]
        return cls(
            coordinates=coordinates,
            distance_meters=float(raw["distance"]),
            duration_seconds=float(raw["duration"]),
            instructions=steps,
            is_fallback=False,
            profile=profile,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coordinates": [p.to_dict() for p in self.coordinates],
            "distance_meters": self.distance_meters,
            "duration_seconds": self.duration_seconds,
            "distance_text": format_distance(self.distance_meters),
            "duration_text": format_duration(self.duration_seconds),
            "instructions": [
                {
                    "instruction": s.instruction,
                    "distance_meters": s.distance_meters,
                    "duration_seconds": s.duration_seconds,
                }
                for s in self.instructions
            ],
            "is_fallback": self.is_fallback,
            "profile": self.profile,
            "fallback_reason": self.fallback_reason,
        }


# =============================================================================
# Operation results
# =============================================================================

class ErrorKind(str, Enum):
    VALIDATION = "validation"
    TRANSPORT = "transport"        # timeout, connection failure, non-2xx, bad JSON
    RATE_LIMITED = "rate_limited"  # HTTP 429, caller should wait rather than retry
    UPSTREAM = "upstream"          # envelope came back with success != true


@dataclass
class MapResult:
    """Uniform outcome of a map data operation.

    ``success`` with an empty ``data`` list is a legitimate empty result, not
    an error. Failures always carry an ``error_kind``.
    """
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    count: Optional[int] = None
    fallback: bool = False

    @classmethod
    def ok(cls, data: Any, fallback: bool = False) -> "MapResult":
        count = len(data) if isinstance(data, list) else None
        return cls(success=True, data=data, count=count, fallback=fallback)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, data: Any = None) -> "MapResult":
        count = len(data) if isinstance(data, list) else None
        return cls(success=False, data=data, error=message, error_kind=kind, count=count)

    @property
    def rate_limited(self) -> bool:
        return self.error_kind is ErrorKind.RATE_LIMITED

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, "data": _serialize(self.data)}
        if self.count is not None:
            out["count"] = self.count
        if self.error is not None:
            out["error"] = self.error
        if self.error_kind is not None:
            out["error_kind"] = self.error_kind.value
        if self.rate_limited:
            out["rate_limited"] = True
        if self.fallback:
            out["fallback"] = True
        return out


def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    return value
