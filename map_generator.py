"""Server-side route map rendering using staticmap + OSM tiles."""

import base64
import io
import logging
from typing import List, Optional

from staticmap import CircleMarker, Line, StaticMap

from geo import GeoPoint
from models import PlaceResult, RouteResult

logger = logging.getLogger(__name__)


class DriverStaticMap(StaticMap):
    """StaticMap with zoom clamped to [10, 17]: city-wide to street level."""

    ZOOM_MIN = 10
    ZOOM_MAX = 17

    def _calculate_zoom(self):
        z = super()._calculate_zoom()
        return max(self.ZOOM_MIN, min(self.ZOOM_MAX, z))


USER_AGENT = "TransSync-Driver/1.0 (fleet driver map)"

ROUTE_COLOR = "#2563eb"            # blue
FALLBACK_ROUTE_COLOR = "#9ca3af"   # gray: straight-line estimate
PLACE_COLOR = "#15803d"            # green
VEHICLE_COLOR = "#ea580c"          # orange

# Half-width (degrees, ~0.5 km) of the view when only one point is drawn.
MIN_BBOX_DEG = 0.005


def _coord(point: GeoPoint):
    # staticmap uses (lng, lat) order
    return (point.longitude, point.latitude)


def render_route_map(
    route: Optional[RouteResult] = None,
    places: Optional[List[PlaceResult]] = None,
    vehicle: Optional[GeoPoint] = None,
    width: int = 640,
    height: int = 400,
) -> Optional[str]:
    """Render route, places and vehicle as a base64-encoded PNG string.

    Fallback routes are drawn thin and gray so the straight line is never
    mistaken for a routed path. Returns None when there is nothing to draw
    or rendering fails.
    """
    points: List[GeoPoint] = []
    if route is not None:
        points.extend(route.coordinates)
    points.extend(p.coordinates for p in (places or []))
    if vehicle is not None:
        points.append(vehicle)
    if not points:
        return None

    try:
        m = DriverStaticMap(
            width,
            height,
            padding_x=24,
            padding_y=24,
            url_template="http://a.tile.openstreetmap.org/{z}/{x}/{y}.png",
            tile_request_timeout=10,
            headers={"User-Agent": USER_AGENT},
        )

        if route is not None and len(route.coordinates) >= 2:
            if route.is_fallback:
                m.add_line(Line([_coord(p) for p in route.coordinates], FALLBACK_ROUTE_COLOR, 3))
            else:
                m.add_line(Line([_coord(p) for p in route.coordinates], ROUTE_COLOR, 5))

        for place in places or []:
            m.add_marker(CircleMarker(_coord(place.coordinates), PLACE_COLOR, 8))

        if vehicle is not None:
            m.add_marker(CircleMarker(_coord(vehicle), VEHICLE_COLOR, 14))
            m.add_marker(CircleMarker(_coord(vehicle), "white", 8))

        # A single point gives no extent; pad with invisible corners so the zoom stays local.
        if len(set(points)) == 1:
            only = points[0]
            d = MIN_BBOX_DEG
            for lat_offset, lng_offset in [(-d, -d), (-d, d), (d, -d), (d, d)]:
                m.add_marker(
                    CircleMarker(
                        (only.longitude + lng_offset, only.latitude + lat_offset),
                        "#ffffff",
                        1,
                    )
                )

        image = m.render()
        buffer = io.BytesIO()
        image.save(buffer, format="PNG", optimize=True)
        buffer.seek(0)
        return base64.b64encode(buffer.read()).decode("utf-8")

    except Exception:
        logger.exception("Failed to render route map")
        return None
