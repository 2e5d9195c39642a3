"""Walk session: wires the engine, step tracking, remaining distance and persistence."""

import math
import threading
from datetime import datetime
from typing import Callable, Iterable, Optional, Union

from .config import CONFIG
from .errors import InvalidSpeed, PersistenceFailure, SyncFailure
from .geo import point_distance
from .ledger import StepLedger
from .logger import Logger
from .models import LocationUpdate, Phase, Progress, RoutePoint
from .remaining import format_estimated_time, remaining_distance
from .route import Route
from .simulator import ProgressEngine
from .state import ProgressStore, restore_progress
from .steps import StepEstimator

Sink = Callable[[LocationUpdate], None]


def validate_speed(speed_kmh) -> float:
    try:
        speed = float(speed_kmh)
    except (TypeError, ValueError):
        raise InvalidSpeed(f"Speed must be a number, got {speed_kmh!r}") from None
    if not math.isfinite(speed) or speed <= 0:
        raise InvalidSpeed(f"Speed must be positive, got {speed_kmh!r}")
    return speed


class WalkSession:
    """One simulated walk at a time.

    Every fix the engine emits is appended to the path history (in memory
    and in the store), turned into steps, used to refresh the remaining
    distance and handed to the sinks, all on the tick thread. Stopping or
    completing the walk finalizes step tracking and clears the stored walk,
    unless stop() is told to keep it for a later resume().
    """

    def __init__(self, store: ProgressStore, ledger: StepLedger,
                 logger: Optional[Logger] = None,
                 sinks: Iterable[Sink] = (),
                 tick_interval_ms: Optional[float] = None,
                 background_sync: bool = True,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.ledger = ledger
        self.logger = logger
        self.sinks: list[Sink] = list(sinks)
        self.tick_interval_ms = tick_interval_ms or CONFIG["tick_interval_ms"]

        self.engine = ProgressEngine(self._handle_location_update, self._handle_complete, logger)
        self.steps = StepEstimator(ledger, logger=logger, clock=clock, background=background_sync)

        self.route: Optional[Route] = None
        self.speed_kmh = 0.0
        self.path_history: list[RoutePoint] = []
        self.last_update: Optional[LocationUpdate] = None
        self.remaining_distance = 0.0
        self.durability_degraded = False
        self.last_persistence_error: Optional[str] = None

        self.lock = threading.Lock()  # guards path_history
        self._last_point: Optional[RoutePoint] = None
        self._close_lock = threading.Lock()
        self._closing = False
        self._closed = threading.Event()
        self._closed.set()

    def add_sink(self, sink: Sink):
        self.sinks.append(sink)

    @property
    def phase(self) -> Phase:
        return self.engine.phase

    def is_walking(self) -> bool:
        return self.engine.is_running()

    def start(self, points: Union[Route, Iterable[RoutePoint]], speed_kmh: float,
              schedule: bool = True) -> LocationUpdate:
        """Start a new walk. Raises InvalidSpeed / InvalidRoute."""
        speed = validate_speed(speed_kmh)
        route = points if isinstance(points, Route) else Route(points)
        route.require_motion()

        if self.engine.is_running():
            self.stop()
        self._persist(self.store.save, route, [], speed)
        return self._begin(route, speed, [], None, schedule)

    def resume(self, schedule: bool = True) -> bool:
        """Resume the stored walk, if any. Returns False when there is nothing to resume."""
        if self.engine.is_running():
            self.stop()
        saved = self.store.restore()
        if saved is None:
            return False
        speed = validate_speed(saved.speed_kmh)
        route, progress = restore_progress(saved)
        route.require_motion()

        self._log("Resuming walk", {
            "path_points": len(saved.path_history),
            "segment_index": progress.segment_index,
            "distance_along_segment": round(progress.distance_along_segment, 2),
        })
        self._begin(route, speed, saved.path_history, progress, schedule)
        return True

    def _begin(self, route: Route, speed_kmh: float, path_history: list[RoutePoint],
               progress: Optional[Progress], schedule: bool) -> LocationUpdate:
        with self.lock:
            self.route = route
            self.speed_kmh = speed_kmh
            self.path_history = list(path_history)
        self._last_point = None
        self.remaining_distance = route.total_distance
        self._closing = False
        self._closed.clear()

        self.steps.start()
        return self.engine.start(route, speed_kmh / 3.6, self.tick_interval_ms,
                                 progress=progress, schedule=schedule)

    def tick(self) -> list[LocationUpdate]:
        """Drive one tick by hand (for sessions started with schedule=False)"""
        return self.engine.tick()

    def stop(self, clear_state: bool = True):
        """Stop the walk and flush steps.

        With clear_state=False the stored walk is kept so it can be resumed later.
        """
        self.engine.stop()
        self._close("stopped", clear_state)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the walk has been stopped or completed and closed"""
        return self._closed.wait(timeout)

    def _handle_location_update(self, update: LocationUpdate):
        point = update.point
        with self.lock:
            # The stationary fix on resume repeats the last walked point
            repeat = (not update.is_moving and bool(self.path_history)
                      and point_distance(self.path_history[-1], point) < 0.01)
            if not repeat:
                self.path_history.append(point)
        if not repeat:
            self._persist(self.store.append_to_path, point)

        if update.is_moving and self._last_point is not None:
            distance = point_distance(self._last_point, point)
            if distance > 0:
                self.steps.record_movement(distance)
        self._last_point = point

        # The engine has already moved its cursor to this fix
        self.remaining_distance = remaining_distance(
            self.route, point, from_segment=self.engine.progress.segment_index
        )
        self.last_update = update

        for sink in self.sinks:
            try:
                sink(update)
            except Exception as e:
                self._log("Location sink failed", {"sink": repr(sink), "error": repr(e)})

    def _handle_complete(self):
        self._close("completed")

    def _close(self, reason: str, clear_state: bool = True):
        with self._close_lock:
            if self._closing or self._closed.is_set():
                return
            self._closing = True

        done = self.steps.finalize()
        if not done.wait(CONFIG["finalize_timeout"]):
            self._log("Step finalize timed out", {"timeout": CONFIG["finalize_timeout"]})

        if clear_state:
            self._persist(self.store.clear)
        stats = self.steps.stats
        self._log("Walk summary", {
            "reason": reason,
            "distance": round(stats.total_distance, 1),
            "steps": self.steps.walk_steps,
            "unsynced_steps": stats.total_steps,
            "remaining_distance": round(self.remaining_distance, 1),
            "last_sync": self.steps.last_sync_outcome,
        })
        self._closed.set()

    def _persist(self, action, *args):
        """Run a store write. Failures degrade durability but never stop the walk."""
        try:
            action(*args)
        except PersistenceFailure as e:
            if not self.durability_degraded:
                self._log("Progress store failed, continuing in memory", {"error": str(e)})
            self.durability_degraded = True
            self.last_persistence_error = str(e)

    def path_history_snapshot(self) -> Optional[tuple[RoutePoint, list[RoutePoint]]]:
        """Last walked point and the full walked path, or None before the first fix"""
        with self.lock:
            if not self.path_history:
                return None
            return self.path_history[-1], list(self.path_history)

    def steps_today(self) -> int:
        """Steps synced to the ledger since local midnight plus those not yet synced"""
        now = self.steps.clock()
        midnight = now.astimezone().replace(hour=0, minute=0, second=0, microsecond=0)
        try:
            synced = self.ledger.aggregate_steps_between(midnight, now)
        except SyncFailure as e:
            self._log("Could not read steps from ledger", {"error": str(e)})
            synced = 0
        return synced + self.steps.unsynced_steps

    def status(self) -> dict:
        remaining = self.remaining_distance
        with self.lock:
            path_points = len(self.path_history)
        return {
            "phase": self.phase.value,
            "speed_kmh": self.speed_kmh,
            "total_distance": round(self.route.total_distance, 1) if self.route else 0.0,
            "remaining_distance": round(remaining, 1),
            "remaining_time": format_estimated_time(self.speed_kmh, remaining),
            "walk_steps": self.steps.walk_steps,
            "unsynced_steps": self.steps.unsynced_steps,
            "last_sync": self.steps.last_sync_outcome,
            "sync_in_flight": self.steps.sync_in_flight,
            "durability_degraded": self.durability_degraded,
            "path_points": path_points,
        }

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)
