import pytest

from walksim.geo import (
    bearing_between,
    bearing_to_compass,
    haversine_distance,
    interpolate,
    point_distance,
)
from walksim.models import RoutePoint


def test_haversine_hundredth_degree_at_equator():
    assert haversine_distance(0, 0, 0, 0.01) == pytest.approx(1111.95, abs=0.01)


def test_haversine_same_point_is_zero():
    assert haversine_distance(51.5, -0.12, 51.5, -0.12) == 0


def test_haversine_is_symmetric():
    a = haversine_distance(51.5, -0.12, 51.51, -0.1)
    b = haversine_distance(51.51, -0.1, 51.5, -0.12)
    assert a == pytest.approx(b)


@pytest.mark.parametrize("lat2, lon2, expected", [
    (0.01, 0, 0),
    (0, 0.01, 90),
    (-0.01, 0, 180),
    (0, -0.01, 270),
])
def test_bearing_cardinal_directions(lat2, lon2, expected):
    assert bearing_between(0, 0, lat2, lon2) == pytest.approx(expected)


@pytest.mark.parametrize("bearing, name", [
    (0, "north"),
    (44, "northeast"),
    (90, "east"),
    (181, "south"),
    (350, "north"),
])
def test_bearing_to_compass(bearing, name):
    assert bearing_to_compass(bearing) == name


def test_interpolate_endpoints_and_midpoint():
    a = RoutePoint(10.0, 20.0)
    b = RoutePoint(12.0, 24.0)
    assert interpolate(a, b, 0.0) == a
    assert interpolate(a, b, 1.0) == b
    assert interpolate(a, b, 0.5) == RoutePoint(11.0, 22.0)


def test_point_distance_matches_haversine():
    a = RoutePoint(0, 0)
    b = RoutePoint(0, 0.01)
    assert point_distance(a, b) == haversine_distance(0, 0, 0, 0.01)
