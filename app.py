"""
TransSync driver console: JSON API over the map data layer.

Serves place search, geocoding, nearby lookups, routing, recent searches,
the simulated vehicle position and a rendered map image for the driver
screen.
"""

import base64
import logging
import os
import uuid

from flask import Flask, Response, g, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from config import DEFAULT_COUNTRY, LOG_LEVEL, RATE_LIMIT_DEFAULT
from geo import GeoPoint, InvalidCoordinatesError
from health_monitor import get_status, start_monitor, stop_monitor
from map_generator import render_route_map
from map_service import MapDataService
from map_trace import TraceContext, clear_trace, get_trace, set_trace
from models import ErrorKind, MapResult, PlaceResult
from position_simulator import PositionSimulator
from recent_searches import RecentSearches

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = Flask(__name__)

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)

# Module-level singletons; looked up at call time so tests can swap them.
map_service = MapDataService()
recent_searches = RecentSearches()
simulator = PositionSimulator()


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------

@app.before_request
def _set_request_context():
    g.request_id = uuid.uuid4().hex[:12]
    set_trace(TraceContext(trace_id=g.request_id))


@app.after_request
def _after_request(response):
    trace = get_trace()
    if trace is not None and trace.api_calls:
        trace.log_summary()
    clear_trace()
    request_id = getattr(g, "request_id", None)
    if request_id:
        response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _float_arg(name):
    raw = request.args.get(name)
    if raw is None or raw.strip() == "":
        raise InvalidCoordinatesError(f"Missing parameter: {name}")
    try:
        return float(raw)
    except ValueError:
        raise InvalidCoordinatesError(f"Parameter {name} must be a number")


def _point_from_args():
    """GeoPoint from ?lat=&lon= query parameters."""
    return GeoPoint(_float_arg("lat"), _float_arg("lon"))


def _point_from_pair(name):
    """GeoPoint from a "lat,lon" query parameter."""
    raw = request.args.get(name, "")
    parts = raw.split(",")
    if len(parts) != 2:
        raise InvalidCoordinatesError(f"Parameter {name} must be 'lat,lon'")
    try:
        return GeoPoint(float(parts[0]), float(parts[1]))
    except ValueError:
        raise InvalidCoordinatesError(f"Parameter {name} must be 'lat,lon'")


def _int_arg(name, default):
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


def _result_response(result: MapResult):
    """JSON body for a MapResult; rate-limited failures keep the 429 status."""
    status = 429 if result.rate_limited else 200
    return jsonify(result.to_dict()), status


# ---------------------------------------------------------------------------
# Places
# ---------------------------------------------------------------------------

@app.route("/api/search")
def api_search():
    result = map_service.search_places(
        request.args.get("q", ""),
        limit=_int_arg("limit", 5),
        countrycodes=request.args.get("countrycodes", DEFAULT_COUNTRY),
    )
    return _result_response(result)


@app.route("/api/addresses")
def api_addresses():
    result = map_service.search_addresses(
        request.args.get("q", ""),
        limit=_int_arg("limit", 5),
        countrycodes=request.args.get("countrycodes", DEFAULT_COUNTRY),
    )
    return _result_response(result)


@app.route("/api/reverse")
def api_reverse():
    result = map_service.reverse_geocode(_point_from_args(), zoom=_int_arg("zoom", 18))
    return _result_response(result)


@app.route("/api/nearby")
def api_nearby():
    result = map_service.find_nearby_places(
        _point_from_args(),
        category=request.args.get("category", "restaurant"),
        radius=_int_arg("radius", 1000),
    )
    return _result_response(result)


@app.route("/api/popular")
def api_popular():
    return _result_response(map_service.get_popular_places(_point_from_args()))


@app.route("/api/place/<place_id>")
def api_place(place_id):
    return _result_response(map_service.get_place_details(place_id))


@app.route("/api/types")
def api_types():
    return _result_response(map_service.get_available_types())


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

@app.route("/api/route")
def api_route():
    """Route between ?from=lat,lon and ?to=lat,lon.

    ``profiles=a,b`` returns one route per profile. ``follow=1`` also loads
    the route into the vehicle simulator.
    """
    origin = _point_from_pair("from")
    destination = _point_from_pair("to")

    profiles = request.args.get("profiles")
    if profiles:
        names = [p.strip() for p in profiles.split(",") if p.strip()]
        return _result_response(map_service.calculate_multiple_routes(origin, destination, names))

    result = map_service.calculate_route(
        origin, destination, profile=request.args.get("profile", "driving-car"),
    )
    if result.success and request.args.get("follow") == "1":
        simulator.set_route(result.data)
    return _result_response(result)


# ---------------------------------------------------------------------------
# Recent searches
# ---------------------------------------------------------------------------

@app.route("/api/recent", methods=["GET"])
def api_recent_list():
    return _result_response(MapResult.ok(recent_searches.items()))


@app.route("/api/recent", methods=["POST"])
def api_recent_add():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify(MapResult.failure(ErrorKind.VALIDATION, "JSON place body required").to_dict()), 400
    try:
        place = PlaceResult.from_payload(body)
    except (KeyError, TypeError, ValueError) as e:
        return jsonify(MapResult.failure(ErrorKind.VALIDATION, f"Invalid place: {e}").to_dict()), 400
    recent_searches.add(place)
    return _result_response(MapResult.ok(recent_searches.items()))


@app.route("/api/recent", methods=["DELETE"])
def api_recent_clear():
    recent_searches.clear()
    return _result_response(MapResult.ok([]))


# ---------------------------------------------------------------------------
# Vehicle + map image
# ---------------------------------------------------------------------------

@app.route("/api/vehicle")
def api_vehicle():
    return jsonify({"success": True, "data": simulator.snapshot()})


@app.route("/api/map.png")
@limiter.limit("20/minute")
def api_map_image():
    route, vehicle = simulator.current_view()
    if vehicle is None and route is None:
        return jsonify({"success": False, "error": "Nothing to draw yet"}), 404

    encoded = render_route_map(
        route=route,
        vehicle=vehicle,
        width=_int_arg("width", 640),
        height=_int_arg("height", 400),
    )
    if encoded is None:
        return jsonify({"success": False, "error": "Map rendering failed"}), 503
    return Response(base64.b64decode(encoded), mimetype="image/png")


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------

@app.route("/api/cache/clear", methods=["POST"])
def api_cache_clear():
    map_service.clear_cache()
    return jsonify({"success": True, "data": map_service.cache_stats()})


@app.route("/healthz")
@limiter.exempt
def healthz():
    services = get_status()
    overall = "ok"
    if any(s.get("status") == "down" for s in services.values()):
        overall = "degraded"
    return jsonify({
        "status": overall,
        "services": services,
        "cache": map_service.cache_stats(),
        "simulator_running": simulator.running,
    })


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(InvalidCoordinatesError)
def invalid_coordinates(e):
    return jsonify(MapResult.failure(ErrorKind.VALIDATION, str(e)).to_dict()), 400


@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify({
        "success": False,
        "error": "Too many requests. Please wait and try again.",
        "rate_limited": True,
    }), 429


@app.errorhandler(404)
def not_found(e):
    return jsonify({"success": False, "error": "Not found"}), 404


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    start_monitor()
    simulator.start()
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    try:
        app.run(host="0.0.0.0", port=port, debug=debug)
    finally:
        simulator.stop()
        stop_monitor()
