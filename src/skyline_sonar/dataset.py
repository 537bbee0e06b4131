from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Mapping, Optional

from .errors import DatasetUnavailable
from .models import Building, BuildingSet


logger = logging.getLogger(__name__)


def _first_ring(geometry: Mapping[str, Any]) -> list[Any]:
    kind = geometry.get("type")
    coords = geometry.get("coordinates")
    if kind == "Point":
        return [coords]
    if kind == "Polygon":
        return coords[0]
    if kind == "MultiPolygon":
        return coords[0][0]
    raise ValueError(f"unsupported geometry type {kind!r}")


def _footprint(geometry: Any) -> tuple[tuple[float, float], ...]:
    """Convert GeoJSON (lon, lat) positions of the first ring into (lat, lon) pairs."""
    if not isinstance(geometry, Mapping):
        raise ValueError("feature has no geometry")
    ring = _first_ring(geometry)
    if not ring:
        raise ValueError("empty geometry")
    footprint = []
    for vertex in ring:
        lon, lat = float(vertex[0]), float(vertex[1])
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise ValueError("non-finite coordinate")
        footprint.append((lat, lon))
    return tuple(footprint)


def _height(properties: Mapping[str, Any]) -> Optional[float]:
    for key in ("height", "height_m", "building:height"):
        value = properties.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip().lower().removesuffix("m").strip()
        try:
            height = float(value)
        except (TypeError, ValueError):
            logger.debug("Ignoring non-numeric height %r", value)
            return None
        return height if math.isfinite(height) and height >= 0 else None
    return None


def _text(properties: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = properties.get(key)
        if value is not None and value != "":
            return str(value)
    return None


def parse_feature_collection(document: Any) -> BuildingSet:
    if not isinstance(document, Mapping) or document.get("type") != "FeatureCollection":
        raise DatasetUnavailable("document is not a GeoJSON FeatureCollection")
    features = document.get("features")
    if not isinstance(features, list):
        raise DatasetUnavailable("FeatureCollection has no feature list")

    buildings: list[Building] = []
    skipped = 0
    for index, feature in enumerate(features):
        if not isinstance(feature, Mapping):
            skipped += 1
            continue
        properties = feature.get("properties")
        if not isinstance(properties, Mapping):
            properties = {}
        try:
            footprint = _footprint(feature.get("geometry"))
        except (ValueError, TypeError, IndexError, KeyError) as exc:
            logger.debug("Skipping feature %s: %s", index, exc)
            skipped += 1
            continue
        building_id = _text(properties, "id") or (
            str(feature["id"]) if feature.get("id") is not None else str(index)
        )
        buildings.append(
            Building(
                id=building_id,
                footprint=footprint,
                height_m=_height(properties),
                usage_tag=_text(properties, "usage", "building", "use"),
                name=_text(properties, "name"),
            )
        )

    if skipped:
        logger.warning("Skipped %s features without a usable geometry", skipped)
    logger.info("Loaded %s buildings", len(buildings))
    return tuple(buildings)


def load_buildings(path: str | Path) -> BuildingSet:
    """Load a building set from a GeoJSON file, raising ``DatasetUnavailable`` on failure."""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise DatasetUnavailable(f"failed to load {path}: {exc}") from exc
    return parse_feature_collection(document)
