import math

import pytest

from plot_enrich.geometry import (
    bbox_around_point,
    bbox_from_area,
    geometry_bbox,
    geometry_centroid,
    haversine_distance,
    is_valid_coordinate,
    point_in_geometry,
    progressive_search,
    reproject_geometry,
    select_best_candidate,
    spain_utm_epsg,
    to_utm,
)

from conftest import feature, square


def test_haversine_one_degree_of_latitude():
    assert haversine_distance(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)
    assert haversine_distance(38.7, -9.1, 38.7, -9.1) == 0


@pytest.mark.parametrize("lat, lon, expected", [
    (38.7, -9.1, True),
    (90, 180, True),
    (-90.0001, 0, False),
    (0, 180.5, False),
    (float("nan"), 0, False),
    (float("inf"), 0, False),
    ("38.7", -9.1, False),
    (True, 0, False),
    (None, 0, False),
])
def test_is_valid_coordinate(lat, lon, expected):
    assert is_valid_coordinate(lat, lon) is expected


def test_point_in_polygon_and_multipolygon():
    poly = square(-9.0, 38.0)
    assert point_in_geometry(-9.0, 38.0, poly)
    assert not point_in_geometry(-8.9, 38.0, poly)

    multi = {"type": "MultiPolygon", "coordinates": [square(0, 0)["coordinates"], poly["coordinates"]]}
    assert point_in_geometry(-9.0, 38.0, multi)
    assert not point_in_geometry(5, 5, {"type": "Point", "coordinates": [5, 5]})
    assert not point_in_geometry(0, 0, None)


def test_containment_uses_exterior_ring_only():
    outer = square(0, 0, half=1.0)["coordinates"][0]
    hole = square(0, 0, half=0.5)["coordinates"][0]
    assert point_in_geometry(0, 0, {"type": "Polygon", "coordinates": [outer, hole]})

    # L-shaped ring: the notch is outside
    ring = [[0, 0], [2, 0], [2, 1], [1, 1], [1, 2], [0, 2], [0, 0]]
    assert point_in_geometry(0.5, 1.5, {"type": "Polygon", "coordinates": [ring]})
    assert not point_in_geometry(1.5, 1.5, {"type": "Polygon", "coordinates": [ring]})
    assert not point_in_geometry(0, 0, {"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]})


def test_centroid_ignores_closing_vertex_and_uses_first_multipolygon_part():
    assert geometry_centroid(square(10.0, 20.0)) == pytest.approx((10.0, 20.0))

    multi = {"type": "MultiPolygon", "coordinates": [square(1, 1)["coordinates"], square(50, 50)["coordinates"]]}
    assert geometry_centroid(multi) == pytest.approx((1, 1))
    assert geometry_centroid({"type": "LineString", "coordinates": [[0, 0], [1, 1]]}) is None
    assert geometry_centroid({"type": "Polygon", "coordinates": []}) is None


def test_bbox_from_area_is_square_of_side_sqrt_area():
    box = bbox_from_area(0.0, 0.0, 10000)
    half_deg = 50 / 111320
    assert box["minLat"] == pytest.approx(-half_deg)
    assert box["maxLat"] == pytest.approx(half_deg)
    assert box["minLng"] == pytest.approx(-half_deg)
    assert box["maxLng"] == pytest.approx(half_deg)


def test_bbox_around_point_widens_longitude_with_latitude():
    min_lon, min_lat, max_lon, max_lat = bbox_around_point(10.0, 60.0, 1000)
    assert (max_lon - min_lon) == pytest.approx(2 * (max_lat - min_lat) / math.cos(math.radians(60)), rel=1e-6)


def test_geometry_bbox_walks_nested_coordinates():
    assert geometry_bbox(square(0, 0, half=1)) == (-1, -1, 1, 1)
    assert geometry_bbox({"type": "Polygon", "coordinates": []}) is None


class TestSelectBestCandidate:

    def test_containing_feature_wins_regardless_of_order(self):
        near = feature({"ref": "near"}, square(-9.0005, 38.0, half=0.0001))
        containing = feature({"ref": "inside"}, square(-9.0, 38.0, half=0.01))
        match = select_best_candidate([near, containing], -9.0, 38.0)
        assert match.feature["properties"]["ref"] == "inside"
        assert match.contains_point is True
        assert match.distance_meters == 0.0

    def test_nearest_centroid_when_nothing_contains_point(self):
        far = feature({"ref": "far"}, square(-9.01, 38.0, half=0.001))
        close = feature({"ref": "close"}, square(-9.003, 38.0, half=0.001))
        match = select_best_candidate([far, close], -9.0, 38.0)
        assert match.feature["properties"]["ref"] == "close"
        assert match.contains_point is False
        assert match.distance_meters > 0

    def test_ties_keep_earliest(self):
        a = feature({"ref": "a"}, square(-9.003, 38.0, half=0.001))
        b = feature({"ref": "b"}, square(-9.003, 38.0, half=0.001))
        assert select_best_candidate([a, b], -9.0, 38.0).feature["properties"]["ref"] == "a"

    def test_no_usable_geometry(self):
        assert select_best_candidate([feature({"ref": "x"})], 0, 0) is None
        assert select_best_candidate([], 0, 0) is None


class TestProgressiveSearch:

    def test_stops_at_first_non_empty_buffer(self):
        calls = []

        def fetch(buffer):
            calls.append(buffer)
            return [feature({"ref": buffer}, square(0, 0))] if buffer >= 100 else []

        result = progressive_search([250, 50, 100], fetch, 0, 0)
        assert calls == [50, 100]
        assert result.buffer_used == 100
        assert result.buffers_tried == [50, 100]
        assert result.match.contains_point

    def test_exhausted_buffers(self):
        calls = []
        assert progressive_search([1, 2, 3], lambda b: calls.append(b) or [], 0, 0) is None
        assert calls == [1, 2, 3]

    def test_features_without_geometry_end_search(self):
        calls = []

        def fetch(buffer):
            calls.append(buffer)
            return [feature({"ref": "no geometry"})]

        assert progressive_search([1, 2], fetch, 0, 0) is None
        assert calls == [1]


@pytest.mark.parametrize("lon, epsg", [(-8.5, 25829), (-6.0, 25830), (-3.7, 25830), (0.0, 25831), (2.17, 25831)])
def test_spain_utm_zone(lon, epsg):
    assert spain_utm_epsg(lon) == epsg


def test_to_utm_madrid():
    x, y = to_utm(-3.7038, 40.4168, 25830)
    assert x == pytest.approx(440290, abs=300)
    assert y == pytest.approx(4474250, abs=300)


def test_reproject_geometry_back_to_wgs84():
    x, y = to_utm(-3.7038, 40.4168, 25830)
    point = reproject_geometry({"type": "Point", "coordinates": [x, y]}, 25830)
    assert point["coordinates"] == pytest.approx([-3.7038, 40.4168], abs=1e-6)
