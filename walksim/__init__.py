"""WalkSim - Simulated pedestrian walk along a fixed route."""

from .config import CONFIG
from .errors import WalkSimError, InvalidRoute, InvalidSpeed, SyncFailure, PersistenceFailure
from .models import Phase, RoutePoint, Progress, LocationUpdate, StepStats, SavedWalk
from .logger import Logger
from .geo import (
    haversine_distance,
    bearing_between,
    bearing_to_compass,
    point_distance,
    point_bearing,
    interpolate,
)
from .route import Route, load_route
from .simulator import ProgressEngine
from .remaining import remaining_distance, travelled_distance, follow_path, format_estimated_time
from .steps import StepEstimator, calculate_steps
from .ledger import StepLedger, SQLiteStepLedger, HttpStepLedger
from .state import ProgressStore, restore_progress
from .recorder import PathRecorder
from .service import WalkSession
from .viewer import create_walk_map
from .__main__ import main

__all__ = [
    "CONFIG",
    "WalkSimError",
    "InvalidRoute",
    "InvalidSpeed",
    "SyncFailure",
    "PersistenceFailure",
    "Phase",
    "RoutePoint",
    "Progress",
    "LocationUpdate",
    "StepStats",
    "SavedWalk",
    "Logger",
    "haversine_distance",
    "bearing_between",
    "bearing_to_compass",
    "point_distance",
    "point_bearing",
    "interpolate",
    "Route",
    "load_route",
    "ProgressEngine",
    "remaining_distance",
    "travelled_distance",
    "follow_path",
    "format_estimated_time",
    "StepEstimator",
    "calculate_steps",
    "StepLedger",
    "SQLiteStepLedger",
    "HttpStepLedger",
    "ProgressStore",
    "restore_progress",
    "PathRecorder",
    "WalkSession",
    "create_walk_map",
    "main",
]
