from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Timbre(str, Enum):
    DEFAULT = "default"
    PERCUSSIVE = "percussive"
    SYNTH = "synth"
    FM = "fm"


class Command(str, Enum):
    TRIGGER = "trigger"
    TOGGLE_DIRECTIONAL = "toggle_directional"


class Capability(str, Enum):
    POSITION = "position"
    HEADING = "heading"


class CapabilityState(str, Enum):
    PENDING = "pending"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Position:
    latitude_deg: float
    longitude_deg: float
    sampled_at: float = 0.0
    accuracy_m: Optional[float] = None


@dataclass(frozen=True)
class Heading:
    degrees_from_north: float
    sampled_at: float = 0.0


@dataclass(frozen=True)
class Pose:
    position: Position
    heading: Optional[Heading] = None


@dataclass(frozen=True)
class Building:
    id: str
    footprint: tuple[tuple[float, float], ...]
    height_m: Optional[float] = None
    usage_tag: Optional[str] = None
    name: Optional[str] = None

    @property
    def anchor(self) -> tuple[float, float]:
        """Representative (lat, lon): first vertex of the first ring."""
        return self.footprint[0]


BuildingSet = tuple[Building, ...]


@dataclass(frozen=True)
class FilterPolicy:
    radius_km: float = 2.0
    directional: bool = False
    cone_half_width_deg: float = 45.0


@dataclass(frozen=True)
class FilteredBuilding:
    building: Building
    distance_km: float
    bearing_deg: float


@dataclass(frozen=True)
class SonificationEvent:
    pitch_hz: float
    duration_sec: float
    timbre: Timbre
    offset_ms: int
    building_id: str = ""


@dataclass
class CapabilityStatus:
    state: CapabilityState = CapabilityState.PENDING
    reason: str = ""

    @property
    def available(self) -> bool:
        return self.state is CapabilityState.AVAILABLE


@dataclass
class RenderState:
    pose: Optional[Pose]
    filtered: list[FilteredBuilding]
    policy: FilterPolicy = field(default_factory=FilterPolicy)
    capabilities: dict[Capability, CapabilityStatus] = field(default_factory=dict)
    error: Optional[str] = None
