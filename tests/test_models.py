"""Tests for models.py: payload parsing and MapResult serialization."""

import pytest

from geo import GeoPoint, InvalidCoordinatesError
from models import ErrorKind, MapResult, PlaceResult, RouteResult


# =========================================================================
# PlaceResult
# =========================================================================

class TestPlaceResultFromPayload:
    def test_search_record(self):
        place = PlaceResult.from_payload({
            "place_id": 1234,
            "display_name": "Museo del Oro, Bogotá, Colombia",
            "lat": "4.6018",
            "lon": "-74.0721",
            "category": "tourism",
            "type": "museum",
        })
        assert place.id == "1234"
        assert place.name == "Museo del Oro, Bogotá, Colombia"
        assert place.formatted_address == "Museo del Oro, Bogotá, Colombia"
        assert place.coordinates == GeoPoint(4.6018, -74.0721)
        assert place.type == "museum"
        assert place.distance_meters is None

    def test_structured_address_is_formatted(self):
        place = PlaceResult.from_payload({
            "id": "r1",
            "name": "Corner",
            "lat": 4.6,
            "lon": -74.08,
            "address": {"road": "Calle 26", "house_number": "13-19", "city": "Bogotá"},
        })
        assert place.formatted_address == "Calle 26, #13-19, Bogotá"

    def test_nearby_record_carries_distance(self):
        place = PlaceResult.from_payload({
            "id": "n1", "name": "Farmacia", "lat": 4.6, "lon": -74.08, "distance": "120.5",
        })
        assert place.distance_meters == 120.5

    def test_id_falls_back_to_coordinates(self):
        place = PlaceResult.from_payload({"name": "x", "lat": 4.6, "lon": -74.08})
        assert place.id == "4.6,-74.08"

    def test_accepts_own_serialized_form(self):
        original = PlaceResult(id="p1", name="Stop", formatted_address="Av 68", coordinates=GeoPoint(4.6, -74.1))
        assert PlaceResult.from_payload(original.to_dict()) == original

    def test_missing_coordinates_raise(self):
        with pytest.raises(KeyError):
            PlaceResult.from_payload({"id": "x", "name": "No coords"})

    def test_out_of_range_coordinates_raise(self):
        with pytest.raises(InvalidCoordinatesError):
            PlaceResult.from_payload({"id": "x", "lat": 120, "lon": 0})


# =========================================================================
# RouteResult
# =========================================================================

class TestRouteResultFromPayload:
    def test_geojson_order_is_swapped(self):
        route = RouteResult.from_payload({
            "geometry": {"coordinates": [[-74.08, 4.60], [-74.05, 4.65]]},
            "distance": 7200.5,
            "duration": 900,
            "instructions": [
                {"instruction": "Head north on Carrera 7", "distance": 500, "duration": 60},
                {"instruction": "Arrive", "distance": 0, "duration": 0},
            ],
        }, "driving-car")

        assert route.coordinates == [GeoPoint(4.60, -74.08), GeoPoint(4.65, -74.05)]
        assert route.distance_meters == 7200.5
        assert route.duration_seconds == 900.0
        assert route.is_fallback is False
        assert route.profile == "driving-car"
        assert [s.instruction for s in route.instructions] == ["Head north on Carrera 7", "Arrive"]

    def test_missing_instructions_ok(self):
        route = RouteResult.from_payload({
            "geometry": {"coordinates": [[-74.08, 4.60]]},
            "distance": 0,
            "duration": 0,
        }, "foot-walking")
        assert route.instructions == []

    def test_missing_geometry_raises(self):
        with pytest.raises(KeyError):
            RouteResult.from_payload({"distance": 1, "duration": 1}, "driving-car")

    def test_to_dict_carries_display_text(self):
        route = RouteResult(
            coordinates=[GeoPoint(4.60, -74.08), GeoPoint(4.65, -74.05)],
            distance_meters=8100,
            duration_seconds=1200,
        )
        out = route.to_dict()
        assert out["distance_text"] == "8.1 km"
        assert out["duration_text"] == "20m"
        assert out["distance_meters"] == 8100


# =========================================================================
# MapResult
# =========================================================================

class TestMapResult:
    def test_ok_list_has_count(self):
        result = MapResult.ok([1, 2, 3])
        assert result.success is True
        assert result.count == 3
        assert result.to_dict() == {"success": True, "data": [1, 2, 3], "count": 3}

    def test_empty_success_is_not_error(self):
        assert MapResult.ok([]).to_dict() == {"success": True, "data": [], "count": 0}

    def test_ok_object_has_no_count(self):
        assert "count" not in MapResult.ok({"a": 1}).to_dict()

    def test_rate_limited_failure(self):
        result = MapResult.failure(ErrorKind.RATE_LIMITED, "slow down", data=[])
        d = result.to_dict()
        assert result.rate_limited is True
        assert d["success"] is False
        assert d["error_kind"] == "rate_limited"
        assert d["rate_limited"] is True
        assert d["data"] == []

    def test_transport_failure_not_rate_limited(self):
        result = MapResult.failure(ErrorKind.TRANSPORT, "boom")
        assert result.rate_limited is False
        assert "rate_limited" not in result.to_dict()

    def test_fallback_flag_serialized(self):
        assert MapResult.ok({"x": 1}, fallback=True).to_dict()["fallback"] is True

    def test_nested_dataclasses_serialized(self):
        place = PlaceResult(id="1", name="A", formatted_address="", coordinates=GeoPoint(1, 2))
        d = MapResult.ok([{"category": "Banks", "places": [place]}]).to_dict()
        assert d["data"][0]["places"][0]["latitude"] == 1
