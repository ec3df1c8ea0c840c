"""
Tests for the shapely-backed geofence predicate.
"""

import pytest

from app.services.geofence import ShapelyGeofence, distance_m

SQUARE = [
    {"lat": 0.0, "lng": 0.0},
    {"lat": 0.0, "lng": 1.0},
    {"lat": 1.0, "lng": 1.0},
    {"lat": 1.0, "lng": 0.0},
]

fence = ShapelyGeofence()


def test_point_inside_ring():
    assert fence.contains(SQUARE, 0.5, 0.5)


def test_point_outside_ring():
    assert not fence.contains(SQUARE, 1.5, 0.5)


def test_point_on_edge_counts_as_inside():
    assert fence.contains(SQUARE, 0.0, 0.5)


def test_polygon_geometry():
    assert fence.contains({"type": "polygon", "ring": SQUARE}, 0.25, 0.75)


def test_circle_geometry():
    circle = {"type": "circle", "center": {"lat": 52.0, "lng": 4.0}, "radius_m": 10}
    assert fence.contains(circle, 52.00005, 4.0)  # about 5.6 m north
    assert not fence.contains(circle, 52.0002, 4.0)  # about 22 m north


@pytest.mark.parametrize("geometry", [None, [], SQUARE[:2], {"type": "polygon", "ring": []}])
def test_degenerate_geometry_contains_nothing(geometry):
    assert not fence.contains(geometry, 0.5, 0.5)


def test_unknown_geometry_type():
    with pytest.raises(ValueError):
        fence.contains({"type": "hexagon"}, 0.5, 0.5)


def test_distance_one_degree_of_latitude():
    assert distance_m(0.0, 0.0, 1.0, 0.0) == pytest.approx(110_574, rel=1e-3)
