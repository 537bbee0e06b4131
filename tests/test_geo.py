import math
import random

import numpy as np
import pytest

from skyline_sonar.geo import (
    circular_difference_deg,
    circular_difference_many,
    haversine_km,
    haversine_km_many,
    initial_bearing_deg,
    initial_bearing_deg_many,
    normalize_degrees,
)


def random_points(n: int, seed: int) -> list[tuple[float, float]]:
    rng = random.Random(seed)
    return [(rng.uniform(-90, 90), rng.uniform(-180, 180)) for _ in range(n)]


def test_distance_is_symmetric():
    points = random_points(200, seed=1)
    for (lat1, lon1), (lat2, lon2) in zip(points, reversed(points)):
        forward = haversine_km(lat1, lon1, lat2, lon2)
        backward = haversine_km(lat2, lon2, lat1, lon1)
        assert math.isclose(forward, backward, rel_tol=1e-12, abs_tol=1e-9)


def test_bearing_always_in_range():
    points = random_points(200, seed=2)
    points += [(0.0, 0.0), (90.0, 0.0), (-90.0, 0.0), (0.0, -180.0), (0.0, 179.999)]
    for lat1, lon1 in points[:60]:
        for lat2, lon2 in points[-60:]:
            bearing = initial_bearing_deg(lat1, lon1, lat2, lon2)
            assert 0.0 <= bearing < 360.0


def test_identical_points_have_zero_distance_and_bearing():
    assert haversine_km(35.6895, 139.6917, 35.6895, 139.6917) == 0.0
    assert initial_bearing_deg(35.6895, 139.6917, 35.6895, 139.6917) == 0.0


def test_known_distance_of_point_two_degrees_latitude():
    distance = haversine_km(35.6895, 139.6917, 35.8895, 139.6917)
    assert distance == pytest.approx(22.24, abs=0.01)


def test_cardinal_bearings():
    assert initial_bearing_deg(0.0, 0.0, 1.0, 0.0) == pytest.approx(0.0, abs=1e-9)
    assert initial_bearing_deg(0.0, 0.0, 0.0, 1.0) == pytest.approx(90.0)
    assert initial_bearing_deg(0.0, 0.0, -1.0, 0.0) == pytest.approx(180.0)
    assert initial_bearing_deg(0.0, 0.0, 0.0, -1.0) == pytest.approx(270.0)


def test_normalize_and_circular_difference():
    assert normalize_degrees(-90.0) == 270.0
    assert normalize_degrees(720.0) == 0.0
    assert 0.0 <= normalize_degrees(-1e-20) < 360.0
    assert circular_difference_deg(350.0, 10.0) == pytest.approx(20.0)
    assert circular_difference_deg(10.0, 350.0) == pytest.approx(20.0)
    assert circular_difference_deg(0.0, 180.0) == pytest.approx(180.0)


def test_vectorised_helpers_match_scalar_versions():
    origin = (35.6895, 139.6917)
    targets = random_points(50, seed=3)
    lats = np.array([p[0] for p in targets])
    lons = np.array([p[1] for p in targets])

    distances = haversine_km_many(origin[0], origin[1], lats, lons)
    bearings = initial_bearing_deg_many(origin[0], origin[1], lats, lons)

    for i, (lat, lon) in enumerate(targets):
        assert distances[i] == pytest.approx(haversine_km(origin[0], origin[1], lat, lon))
        assert bearings[i] == pytest.approx(initial_bearing_deg(origin[0], origin[1], lat, lon))
    assert np.all((bearings >= 0.0) & (bearings < 360.0))

    spread = circular_difference_many(np.array([350.0, 10.0, 180.0]), 0.0)
    assert spread.tolist() == pytest.approx([10.0, 10.0, 180.0])
