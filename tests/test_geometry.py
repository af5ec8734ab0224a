from __future__ import annotations

import math

import pytest

from dropmap import config
from dropmap.geometry import (
    bounding_box,
    centroid,
    clamp_to_frame,
    is_drawable,
    is_simple,
    point_in_polygon,
    polygon_area,
    suggested_scale,
)

from conftest import TRIANGLE

# concave "L": the notch (75, 75) is outside
L_SHAPE = [(0, 0), (100, 0), (100, 50), (50, 50), (50, 100), (0, 100)]


@pytest.mark.parametrize("point", [(50, 30), (10, 5), (90, 5), (50, 95)])
def test_points_inside_triangle(point):
    assert point_in_polygon(point, TRIANGLE)


@pytest.mark.parametrize("point", [(-1, 50), (5, 90), (95, 90), (50, 101), (200, 200)])
def test_points_outside_triangle(point):
    assert not point_in_polygon(point, TRIANGLE)


def test_concave_polygon():
    assert point_in_polygon((25, 75), L_SHAPE)
    assert point_in_polygon((75, 25), L_SHAPE)
    assert not point_in_polygon((75, 75), L_SHAPE)


def test_ray_through_vertex_counts_once():
    diamond = [(50, 0), (100, 50), (50, 100), (0, 50)]
    # the ray from (10, 50) passes through the vertex (100, 50)
    assert point_in_polygon((10, 50), diamond)
    assert not point_in_polygon((-10, 50), diamond)


def test_malformed_polygons_hit_nothing():
    assert not point_in_polygon((0, 0), [])
    assert not point_in_polygon((0, 0), [(0, 0), (1, 1)])
    assert not point_in_polygon((1, 1), [(0, 0), (math.nan, 0), (0, 5)])
    assert not is_drawable([(0, 0), (1, math.inf), (2, 2)])


def test_centroid_is_vertex_mean():
    assert centroid(TRIANGLE) == pytest.approx((50.0, 100.0 / 3))
    assert centroid([]) is None


def test_bounding_box_and_area():
    assert bounding_box(TRIANGLE) == (0.0, 0.0, 100.0, 100.0)
    assert bounding_box([]) is None
    assert polygon_area(TRIANGLE) == pytest.approx(5000.0)
    assert polygon_area(L_SHAPE) == pytest.approx(7500.0)


def test_suggested_scale_clamps():
    # 100 units at 30% of 1000 -> 3.0
    assert suggested_scale(TRIANGLE) == pytest.approx(3.0)
    big = [(0, 0), (600, 0), (600, 600), (0, 600)]
    assert suggested_scale(big) == pytest.approx(config.FOCUS_MIN_SCALE)
    mid = [(0, 0), (150, 0), (150, 150)]
    assert suggested_scale(mid) == pytest.approx(2.0)
    assert suggested_scale([(5, 5), (5, 5), (5, 5)]) == config.MAX_SCALE


def test_is_simple_detects_bow_tie():
    assert is_simple(TRIANGLE)
    assert not is_simple([(0, 0), (100, 100), (100, 0), (0, 100)])


def test_clamp_to_frame():
    assert clamp_to_frame((-5, 1200)) == (0.0, 1000.0)
    assert clamp_to_frame((10, 20)) == (10, 20)
