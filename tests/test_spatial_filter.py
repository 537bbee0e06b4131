import pytest

from skyline_sonar.models import Building, FilterPolicy, Heading, Pose, Position
from skyline_sonar.spatial_filter import SpatialFilter, apply_filter

TOKYO = (35.6895, 139.6917)


def building(bid: str, lat: float, lon: float, height: float | None = 30.0, usage: str | None = None) -> Building:
    return Building(
        id=bid,
        footprint=((lat, lon), (lat, lon + 0.0001), (lat + 0.0001, lon + 0.0001), (lat, lon)),
        height_m=height,
        usage_tag=usage,
    )


def pose_at(lat: float, lon: float, heading: float | None = None) -> Pose:
    return Pose(
        position=Position(latitude_deg=lat, longitude_deg=lon),
        heading=None if heading is None else Heading(degrees_from_north=heading),
    )


def test_building_at_user_position_is_selected():
    buildings = (building("here", *TOKYO),)
    result = SpatialFilter().apply(pose_at(*TOKYO), buildings, FilterPolicy(radius_km=8))

    assert len(result) == 1
    assert result[0].distance_km == pytest.approx(0.0, abs=1e-9)
    assert result[0].bearing_deg == 0.0


def test_distant_building_is_excluded():
    buildings = (building("far", TOKYO[0] + 0.2, TOKYO[1]),)
    result = SpatialFilter().apply(pose_at(*TOKYO), buildings, FilterPolicy(radius_km=8))
    assert result == []


def test_output_preserves_insertion_order():
    buildings = (
        building("c", TOKYO[0] + 0.01, TOKYO[1]),
        building("a", TOKYO[0] + 0.001, TOKYO[1]),
        building("out", TOKYO[0] + 0.5, TOKYO[1]),
        building("b", TOKYO[0] - 0.005, TOKYO[1]),
    )
    result = apply_filter(pose_at(*TOKYO), buildings, FilterPolicy(radius_km=2))
    assert [item.building.id for item in result] == ["c", "a", "b"]


def test_directional_cone_selects_buildings_ahead():
    buildings = (
        building("north", TOKYO[0] + 0.005, TOKYO[1]),
        building("east", TOKYO[0], TOKYO[1] + 0.005),
        building("south", TOKYO[0] - 0.005, TOKYO[1]),
    )
    policy = FilterPolicy(radius_km=2, directional=True, cone_half_width_deg=45)

    facing_north = apply_filter(pose_at(*TOKYO, heading=10.0), buildings, policy)
    facing_east = apply_filter(pose_at(*TOKYO, heading=80.0), buildings, policy)

    assert [item.building.id for item in facing_north] == ["north"]
    assert [item.building.id for item in facing_east] == ["east"]


def test_cone_wraps_around_north():
    buildings = (building("north", TOKYO[0] + 0.005, TOKYO[1]),)
    policy = FilterPolicy(radius_km=2, directional=True, cone_half_width_deg=20)
    result = apply_filter(pose_at(*TOKYO, heading=350.0), buildings, policy)
    assert len(result) == 1


def test_directional_without_heading_degrades_to_radius_only():
    buildings = tuple(
        building(f"b{i}", TOKYO[0] + dlat, TOKYO[1] + dlon)
        for i, (dlat, dlon) in enumerate([(0.005, 0), (0, 0.005), (-0.005, 0), (0.3, 0), (0, -0.004)])
    )
    pose = pose_at(*TOKYO)

    directional = apply_filter(pose, buildings, FilterPolicy(radius_km=2, directional=True, cone_half_width_deg=10))
    radius_only = apply_filter(pose, buildings, FilterPolicy(radius_km=2, directional=False))

    assert directional == radius_only
    assert len(radius_only) == 4


def test_filter_is_stateless_between_calls():
    buildings = (building("a", TOKYO[0] + 0.01, TOKYO[1]),)
    spatial_filter = SpatialFilter()
    policy = FilterPolicy(radius_km=2)

    first = spatial_filter.apply(pose_at(*TOKYO), buildings, policy)
    spatial_filter.apply(pose_at(TOKYO[0] + 1.0, TOKYO[1]), buildings, policy)
    again = spatial_filter.apply(pose_at(*TOKYO), buildings, policy)

    assert first == again


def test_empty_building_set():
    assert SpatialFilter().apply(pose_at(*TOKYO), (), FilterPolicy()) == []
