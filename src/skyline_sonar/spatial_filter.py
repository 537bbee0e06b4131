from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from .geo import circular_difference_many, haversine_km_many, initial_bearing_deg_many
from .models import Building, FilteredBuilding, FilterPolicy, Pose


logger = logging.getLogger(__name__)


def anchor_arrays(buildings: Sequence[Building]) -> tuple[np.ndarray, np.ndarray]:
    """Return (lats, lons) arrays of each building's representative point."""
    count = len(buildings)
    lats = np.fromiter((b.anchor[0] for b in buildings), dtype=np.float64, count=count)
    lons = np.fromiter((b.anchor[1] for b in buildings), dtype=np.float64, count=count)
    return lats, lons


class SpatialFilter:
    """Select the buildings relevant to a pose under a ``FilterPolicy``.

    Every call re-evaluates the whole building set; nothing is cached between
    calls, so the result depends only on the arguments.
    """

    def apply(
        self,
        pose: Pose,
        buildings: Sequence[Building],
        policy: FilterPolicy,
    ) -> list[FilteredBuilding]:
        if not buildings:
            return []

        lat = pose.position.latitude_deg
        lon = pose.position.longitude_deg
        lats, lons = anchor_arrays(buildings)

        distances = haversine_km_many(lat, lon, lats, lons)
        bearings = initial_bearing_deg_many(lat, lon, lats, lons)

        mask = distances <= policy.radius_km
        if policy.directional:
            if pose.heading is None:
                logger.debug("Directional policy without heading; degrading to radius-only")
            else:
                spread = circular_difference_many(bearings, pose.heading.degrees_from_north)
                mask &= spread <= policy.cone_half_width_deg

        selected = np.flatnonzero(mask)
        result = [
            FilteredBuilding(
                building=buildings[idx],
                distance_km=float(distances[idx]),
                bearing_deg=float(bearings[idx]),
            )
            for idx in selected
        ]
        logger.debug(
            "Filtered %s/%s buildings (radius=%.2f km, directional=%s, heading=%s)",
            len(result),
            len(buildings),
            policy.radius_km,
            policy.directional,
            None if pose.heading is None else round(pose.heading.degrees_from_north, 1),
        )
        return result


def apply_filter(pose: Pose, buildings: Sequence[Building], policy: FilterPolicy) -> list[FilteredBuilding]:
    return SpatialFilter().apply(pose, buildings, policy)
