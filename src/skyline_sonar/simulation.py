from __future__ import annotations

import math
import random
from typing import Iterator, Optional

from .models import Building, BuildingSet
from .sensors import SensorRecord

# Shinjuku, Tokyo
DEFAULT_ORIGIN = (35.6895, 139.6917)

_USAGES = ["office", "residential", "industrial", "commercial", "school", None]


def _square(lat: float, lon: float, half_side_deg: float) -> tuple[tuple[float, float], ...]:
    d = half_side_deg
    return (
        (lat - d, lon - d),
        (lat - d, lon + d),
        (lat + d, lon + d),
        (lat + d, lon - d),
        (lat - d, lon - d),
    )


def synthetic_buildings(
    origin: tuple[float, float] = DEFAULT_ORIGIN,
    count: int = 40,
    spread_km: float = 3.0,
    seed: Optional[int] = None,
) -> BuildingSet:
    """Scatter square footprints around ``origin`` for demo runs."""
    rng = random.Random(seed)
    lat0, lon0 = origin
    buildings = []
    for index in range(count):
        distance_km = rng.uniform(0.05, spread_km)
        angle = math.radians(rng.uniform(0, 360))
        dlat = distance_km * math.cos(angle) / 111.32
        dlon = distance_km * math.sin(angle) / (111.32 * math.cos(math.radians(lat0)))
        height = None if rng.random() < 0.1 else round(rng.uniform(6, 240), 1)
        buildings.append(
            Building(
                id=f"sim-{index}",
                footprint=_square(lat0 + dlat, lon0 + dlon, 0.0001),
                height_m=height,
                usage_tag=rng.choice(_USAGES),
                name=f"Building {index}",
            )
        )
    return tuple(buildings)


def offline_sensor_stream(
    duration_s: float = 60.0,
    seed: Optional[int] = None,
    origin: tuple[float, float] = DEFAULT_ORIGIN,
    position_interval_s: float = 1.0,
    headings_per_position: int = 5,
    walk_speed_mps: float = 1.4,
) -> Iterator[SensorRecord]:
    """Yield a synthetic walk: sparse position fixes and denser, jittery headings."""
    rng = random.Random(seed)
    lat, lon = origin
    course = rng.uniform(0, 360)
    elapsed = 0.0
    heading_wait = position_interval_s / max(headings_per_position, 1)
    while elapsed < duration_s:
        course = (course + rng.gauss(0, 8)) % 360
        step_km = walk_speed_mps * position_interval_s / 1000.0
        lat += step_km * math.cos(math.radians(course)) / 111.32
        lon += step_km * math.sin(math.radians(course)) / (111.32 * math.cos(math.radians(lat)))
        yield "position", {
            "latitude": lat + rng.gauss(0, 0.00002),
            "longitude": lon + rng.gauss(0, 0.00002),
            "accuracy": rng.uniform(3, 15),
        }
        for _ in range(headings_per_position):
            # occasional null readings like a real compass
            alpha = None if rng.random() < 0.05 else (course + rng.gauss(0, 2)) % 360
            yield "heading", {"heading": alpha}
            yield "wait", {"seconds": heading_wait}
        elapsed += position_interval_s
