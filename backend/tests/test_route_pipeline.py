"""Tests for route normalization, polyline decoding and sampling."""

import pytest

from conftest import SAMPLE_POINTS, SAMPLE_POLYLINE, directions_route
from saferoute.services.polyline_sampler import (
    cells_for_points,
    decode_polyline,
    sample_points,
)
from saferoute.services.route_normalizer import (
    estimate_duration,
    format_distance,
    format_duration,
    normalize_route,
    normalize_routes,
)
from saferoute.schemas.routing import NO_DATA, RouteColor, RouteDistance
from saferoute.services import geohash_codec


# =============================================================================
# Route Normalizer Tests
# =============================================================================

class TestRouteNormalizer:
    """Tests for extracting polyline, distance and duration from provider shapes."""

    def test_directions_shape(self):
        route = normalize_route(directions_route(SAMPLE_POLYLINE, 4200, 900, summary="Market St"))

        assert route.polyline == SAMPLE_POLYLINE
        assert route.summary == "Market St"
        assert route.distance.meters == 4200
        assert route.distance.text == "4.2 km"
        assert route.duration.seconds == 900
        assert route.safety_score == NO_DATA
        assert route.color == RouteColor.GRAY

    def test_directions_multiple_legs_summed(self):
        raw = {
            "overview_polyline": {"points": SAMPLE_POLYLINE},
            "legs": [
                {"distance": {"text": "1 km", "value": 1000}, "duration": {"text": "5 mins", "value": 300}},
                {"distance": {"text": "2 km", "value": 2000}, "duration": {"text": "10 mins", "value": 600}},
            ],
        }
        route = normalize_route(raw)

        assert route.distance.meters == 3000
        assert route.duration.seconds == 900
        assert route.duration.text == "15 mins"

    def test_routes_v2_shape(self):
        raw = {
            "description": "via Mission St",
            "polyline": {"encodedPolyline": SAMPLE_POLYLINE},
            "distanceMeters": 1800,
            "duration": "754s",
        }
        route = normalize_route(raw)

        assert route.polyline == SAMPLE_POLYLINE
        assert route.summary == "via Mission St"
        assert route.distance.meters == 1800
        assert route.distance.text == "1.8 km"
        assert route.duration.seconds == 754
        assert route.duration.text == "13 mins"

    def test_routes_v2_localized_text_preferred(self):
        raw = {
            "polyline": {"encodedPolyline": SAMPLE_POLYLINE},
            "distanceMeters": 1800,
            "duration": "754s",
            "localizedValues": {
                "distance": {"text": "1.1 mi"},
                "duration": {"text": "13 min"},
            },
        }
        route = normalize_route(raw)

        assert route.distance.text == "1.1 mi"
        assert route.duration.text == "13 min"

    def test_plain_string_polyline(self):
        route = normalize_route({"polyline": SAMPLE_POLYLINE, "distanceMeters": 10})
        assert route.polyline == SAMPLE_POLYLINE

    def test_missing_duration_is_estimated(self):
        """Duration is synthesized from distance at the fallback speed."""
        raw = {"polyline": {"encodedPolyline": SAMPLE_POLYLINE}, "distanceMeters": 15000}
        route = normalize_route(raw, fallback_speed_kmh=30.0)

        assert route.duration.seconds == 1800
        assert route.duration.text.startswith("~")
        assert route.duration.text == "~30 mins"

    def test_no_distance_no_estimate(self):
        route = normalize_route({"polyline": {"encodedPolyline": SAMPLE_POLYLINE}})

        assert route.distance is None
        assert route.duration is None

    def test_route_without_polyline_dropped(self, caplog):
        raws = [
            {"summary": "no geometry", "legs": []},
            directions_route(SAMPLE_POLYLINE, 1000, 300, summary="ok"),
            "not a route",
        ]
        with caplog.at_level("WARNING"):
            routes = normalize_routes(raws)

        assert [r.summary for r in routes] == ["ok"]
        assert "no polyline" in caplog.text

    def test_malformed_field_falls_through_to_next_extractor(self):
        """A broken Directions-shaped field does not stop the v2 extractor."""
        raw = {
            "polyline": {"encodedPolyline": SAMPLE_POLYLINE},
            "legs": ["garbage"],
            "distanceMeters": 500,
        }
        route = normalize_route(raw)
        assert route.distance.meters == 500

    @pytest.mark.parametrize("meters,text", [(850, "850 m"), (999.6, "1000 m"), (12400, "12.4 km")])
    def test_format_distance(self, meters, text):
        assert format_distance(meters) == text

    @pytest.mark.parametrize("seconds,text", [(20, "1 min"), (600, "10 mins"), (3900, "1 hour 5 mins"), (7200, "2 hours")])
    def test_format_duration(self, seconds, text):
        assert format_duration(seconds) == text

    def test_estimate_duration(self):
        duration = estimate_duration(RouteDistance(text="5 km", meters=5000), speed_kmh=5.0)
        assert duration.seconds == 3600
        assert duration.text == "~1 hour"


# =============================================================================
# Polyline Sampler Tests
# =============================================================================

class TestPolylineDecoding:
    """Tests for polyline decoding and recovery."""

    def test_decode_clean_polyline(self):
        assert decode_polyline(SAMPLE_POLYLINE) == SAMPLE_POINTS

    def test_brace_wrapped_recovers_same_points(self):
        """A brace-wrapped payload decodes to the same points as the clean one."""
        assert decode_polyline("{" + SAMPLE_POLYLINE + "}") == decode_polyline(SAMPLE_POLYLINE)

    def test_doubled_backslashes_recovered(self):
        # Decodes to (0, 0), (2.0, -0.00015); the last character is a backslash
        clean = "??_seK\\"
        doubled = clean.replace("\\", "\\\\")

        assert decode_polyline(doubled) == decode_polyline(clean)
        assert decode_polyline(clean)

    def test_undecodable_returns_empty(self, caplog):
        with caplog.at_level("WARNING"):
            assert decode_polyline("not a polyline!") == []
        assert "unscored" in caplog.text

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_input(self, value):
        assert decode_polyline(value) == []


class TestSampling:
    """Tests for stride sampling and cell discretization."""

    def test_no_cap_keeps_all_points(self):
        points = [(float(i), 0.0) for i in range(100)]
        assert sample_points(points) == points

    def test_stride_is_ceiling(self):
        points = [(float(i), 0.0) for i in range(100)]
        sampled = sample_points(points, max_samples=30)

        # stride = ceil(100 / 30) = 4
        assert sampled == points[::4]
        assert len(sampled) == 25

    def test_cap_above_count_keeps_all(self):
        points = [(1.0, 1.0), (2.0, 2.0)]
        assert sample_points(points, max_samples=30) == points

    def test_cells_unique_in_path_order(self):
        a = (37.7749, -122.4194)
        b = (37.8080, -122.4177)
        cells = cells_for_points([a, a, b, a])

        assert cells == [geohash_codec.encode(*a), geohash_codec.encode(*b)]

    def test_no_points_no_cells(self):
        assert cells_for_points([]) == []
