import math

import pytest

from offline.geo import (
    bbox_from_points, bbox_to_web_mercator, bearing_degrees, expand_bbox, haversine_m,
    polygon_bounds, polygon_rings, project_lonlat_to_web_mercator,
)


def test_projection_origin_and_limits():
    assert project_lonlat_to_web_mercator(0, 0) == (0.0, 0.0)
    x, _ = project_lonlat_to_web_mercator(180, 0)
    assert x == pytest.approx(20037508.34, abs=0.01)
    _, y_pole = project_lonlat_to_web_mercator(0, 90)
    _, y_limit = project_lonlat_to_web_mercator(0, 85.05112878)
    assert y_pole == y_limit
    assert y_limit == pytest.approx(20037508.34, abs=1)


def test_bbox_from_points_skips_missing_coordinates():
    points = [{'latitude': 49.45, 'longitude': -2.58}, {'latitude': None, 'longitude': 1},
              {'latitude': 49.46, 'longitude': -2.60}]
    assert bbox_from_points(points) == [-2.60, 49.45, -2.58, 49.46]
    assert bbox_from_points([{'latitude': None}]) is None


def test_expand_bbox_pads_by_ratio_with_minimum():
    assert expand_bbox([0, 0, 1, 2]) == pytest.approx([-0.12, -0.24, 1.12, 2.24])
    assert expand_bbox([5, 5, 5, 5]) == pytest.approx([4.999, 4.999, 5.001, 5.001])


def test_bbox_to_web_mercator_is_ordered():
    bbox = bbox_to_web_mercator([-2.6, 49.4, -2.5, 49.5])
    assert bbox[0] < bbox[2]
    assert bbox[1] < bbox[3]


def test_polygon_rings_drop_invalid_vertices():
    boundary = {'type': 'Polygon', 'coordinates': [
        [[0, 0], [1, 'x'], [float('nan'), 1], [1, 1], [2]],
    ]}
    assert list(polygon_rings(boundary)) == [[(0.0, 0.0), (1.0, 1.0)]]
    assert list(polygon_rings(None)) == []
    assert list(polygon_rings({'coordinates': 'nope'})) == []
    assert polygon_bounds(boundary) == [0.0, 0.0, 1.0, 1.0]
    assert polygon_bounds({'coordinates': [[]]}) is None


def test_bearing_cardinal_directions():
    assert bearing_degrees((0, 0), (1, 0)) == pytest.approx(0)
    assert bearing_degrees((0, 0), (0, 1)) == pytest.approx(90)
    assert bearing_degrees((0, 0), (-1, 0)) == pytest.approx(180)
    assert bearing_degrees((0, 0), (0, -1)) == pytest.approx(270)


def test_haversine_one_degree_of_latitude():
    assert haversine_m((0, 0), (1, 0)) == pytest.approx(6371000 * math.pi / 180, rel=1e-9)
    assert haversine_m((49.45, -2.58), (49.45, -2.58)) == 0
