from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from .errors import MalformedSample
from .geo import circular_difference_deg, normalize_degrees
from .models import Capability, CapabilityState, CapabilityStatus, Heading, Pose, Position


logger = logging.getLogger(__name__)

PoseListener = Callable[[Pose], None]


@dataclass
class TrackerConfig:
    # ~11 m of latitude
    position_threshold_deg: float = 0.0001
    heading_threshold_deg: float = 1.0


def _number(raw: Mapping[str, Any], *keys: str) -> float:
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        if isinstance(value, bool):
            raise MalformedSample(f"field '{key}' is boolean")
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise MalformedSample(f"field '{key}' is not numeric: {value!r}") from exc
        if not math.isfinite(number):
            raise MalformedSample(f"field '{key}' is not finite")
        return number
    raise MalformedSample(f"missing field {'/'.join(keys)}")


def _timestamp(raw: Mapping[str, Any]) -> float:
    value = raw.get("timestamp")
    if value is None:
        return time.time()
    try:
        return float(value)
    except (TypeError, ValueError):
        return time.time()


def parse_position(raw: Mapping[str, Any]) -> Position:
    if not isinstance(raw, Mapping):
        raise MalformedSample("position sample is not a mapping")
    lat = _number(raw, "latitude", "lat")
    lon = _number(raw, "longitude", "lon", "lng")
    if not -90.0 <= lat <= 90.0:
        raise MalformedSample(f"latitude out of range: {lat}")
    if lon == 180.0:
        lon = -180.0
    if not -180.0 <= lon < 180.0:
        raise MalformedSample(f"longitude out of range: {lon}")
    accuracy = raw.get("accuracy")
    try:
        accuracy = None if accuracy is None else float(accuracy)
    except (TypeError, ValueError):
        accuracy = None
    return Position(latitude_deg=lat, longitude_deg=lon, sampled_at=_timestamp(raw), accuracy_m=accuracy)


def parse_heading(raw: Mapping[str, Any]) -> Heading:
    if not isinstance(raw, Mapping):
        raise MalformedSample("heading sample is not a mapping")
    degrees = _number(raw, "heading", "headingDegrees", "alpha")
    return Heading(degrees_from_north=normalize_degrees(degrees), sampled_at=_timestamp(raw))


class PoseTracker:
    """Turn a noisy stream of sensor samples into stable ``Pose`` updates.

    A sample is accepted only when it moves far enough from the last accepted
    value; accepted samples notify every listener synchronously.
    """

    def __init__(self, config: TrackerConfig | None = None) -> None:
        self.config = config or TrackerConfig()
        self._position: Optional[Position] = None
        self._heading: Optional[Heading] = None
        self._listeners: list[PoseListener] = []
        self.capabilities: dict[Capability, CapabilityStatus] = {
            Capability.POSITION: CapabilityStatus(),
            Capability.HEADING: CapabilityStatus(),
        }
        self.dropped_samples = 0

    @property
    def pose(self) -> Optional[Pose]:
        if self._position is None:
            return None
        return Pose(position=self._position, heading=self._heading)

    def subscribe(self, listener: PoseListener) -> None:
        self._listeners.append(listener)

    def ingest_position(self, raw: Mapping[str, Any]) -> Optional[Pose]:
        try:
            position = parse_position(raw)
        except MalformedSample as exc:
            self._drop("position", exc)
            return None
        self._mark_available(Capability.POSITION)

        previous = self._position
        if previous is not None:
            threshold = self.config.position_threshold_deg
            moved_lat = abs(position.latitude_deg - previous.latitude_deg) > threshold
            moved_lon = abs(position.longitude_deg - previous.longitude_deg) > threshold
            if not (moved_lat or moved_lon):
                logger.debug(
                    "Position (%.6f, %.6f) within threshold; ignored",
                    position.latitude_deg,
                    position.longitude_deg,
                )
                return None

        self._position = position
        logger.debug("Position accepted: (%.6f, %.6f)", position.latitude_deg, position.longitude_deg)
        return self._emit()

    def ingest_heading(self, raw: Mapping[str, Any]) -> Optional[Pose]:
        try:
            heading = parse_heading(raw)
        except MalformedSample as exc:
            self._drop("heading", exc)
            return None
        self._mark_available(Capability.HEADING)

        previous = self._heading
        if previous is not None:
            delta = circular_difference_deg(heading.degrees_from_north, previous.degrees_from_north)
            if delta <= self.config.heading_threshold_deg:
                return None

        self._heading = heading
        logger.debug("Heading accepted: %.1f", heading.degrees_from_north)
        if self._position is None:
            return None
        return self._emit()

    def report_error(self, capability: Capability | str, reason: str = "") -> None:
        """Record a capability as permanently unavailable for this session."""
        try:
            capability = Capability(capability)
        except ValueError:
            logger.warning("Ignoring error for unknown capability %r (%s)", capability, reason)
            return
        status = self.capabilities[capability]
        status.state = CapabilityState.UNAVAILABLE
        status.reason = reason
        if capability is Capability.HEADING:
            logger.warning("Heading unavailable (%s); continuing position-only", reason or "no reason given")
        else:
            logger.warning("Position unavailable (%s); holding last known pose", reason or "no reason given")

    def _mark_available(self, capability: Capability) -> None:
        status = self.capabilities[capability]
        if status.state is CapabilityState.PENDING:
            status.state = CapabilityState.AVAILABLE
            logger.info("%s samples available", capability.value.capitalize())

    def _drop(self, kind: str, exc: MalformedSample) -> None:
        self.dropped_samples += 1
        logger.debug("Dropping malformed %s sample: %s", kind, exc)

    def _emit(self) -> Pose:
        pose = self.pose
        assert pose is not None
        for listener in list(self._listeners):
            listener(pose)
        return pose
