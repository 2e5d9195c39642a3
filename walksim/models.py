"""Data classes for WalkSim."""

import time
from dataclasses import dataclass, asdict, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Phase(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"


@dataclass(frozen=True)
class RoutePoint:
    lat: float
    lon: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "RoutePoint":
        return cls(lat=float(d["lat"]), lon=float(d["lon"]))

    def to_pair(self) -> list[float]:
        return [self.lat, self.lon]

    @classmethod
    def from_pair(cls, pair) -> "RoutePoint":
        lat, lon = pair
        return cls(lat=float(lat), lon=float(lon))


@dataclass(frozen=True)
class Progress:
    """Cursor along a route: which segment we are on and how far into it"""
    segment_index: int
    distance_along_segment: float
    last_bearing: float


@dataclass(frozen=True)
class LocationUpdate:
    """A single emitted position fix"""
    point: RoutePoint
    bearing: float
    is_moving: bool
    speed_kmh: float
    vertex_index: Optional[int] = None  # set when the fix lies exactly on a route vertex
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "lat": self.point.lat,
            "lon": self.point.lon,
            "bearing": self.bearing,
            "is_moving": self.is_moving,
            "speed_kmh": self.speed_kmh,
            "vertex_index": self.vertex_index,
            "timestamp": self.timestamp,
        }


@dataclass
class StepStats:
    total_steps: int  # unsynced steps
    total_distance: float  # meters, whole walk
    walk_start_time: datetime
    last_sync_time: Optional[datetime] = None


@dataclass
class SavedWalk:
    """The walk record that survives a restart"""
    route: list[RoutePoint]
    path_history: list[RoutePoint]
    speed_kmh: float
