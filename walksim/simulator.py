"""Progress engine: advances a cursor along a route at constant speed."""

import math
import threading
from typing import Callable, Optional

from .config import CONFIG
from .errors import InvalidSpeed
from .geo import interpolate
from .logger import Logger
from .models import LocationUpdate, Phase, Progress, RoutePoint
from .route import Route


class ProgressEngine:
    """Tick-driven walk state machine.

    Every tick moves the cursor speed * interval meters along the route.
    A tick that crosses one or more vertices emits a fix exactly on each of
    them before the interpolated fix for the remainder, so no vertex is ever
    skipped. Reaching the last vertex completes the walk; leftover distance
    from that tick is discarded.

    Phases: IDLE -> RUNNING -> STOPPED | COMPLETED. Progress is only written
    by tick() (and start()), under self.lock.
    """

    def __init__(self, on_location_update: Callable[[LocationUpdate], None],
                 on_complete: Optional[Callable[[], None]] = None,
                 logger: Optional[Logger] = None):
        self.on_location_update = on_location_update
        self.on_complete = on_complete
        self.logger = logger
        # Reentrant so a sink may call stop() from inside a tick
        self.lock = threading.RLock()

        self._worker: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._route: Optional[Route] = None
        self._speed_mps = 0.0
        self._tick_interval_ms = CONFIG["tick_interval_ms"]
        self._progress = Progress(0, 0.0, 0.0)
        self._phase = Phase.IDLE
        # Set while a tick runs, so a sink calling tick() cannot advance twice
        self._ticking = False

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def progress(self) -> Progress:
        return self._progress

    @property
    def route(self) -> Optional[Route]:
        return self._route

    @property
    def speed_kmh(self) -> float:
        return self._speed_mps * 3.6

    @property
    def tick_interval_ms(self) -> float:
        return self._tick_interval_ms

    @property
    def step_distance(self) -> float:
        """Meters advanced per tick"""
        return self._speed_mps * self._tick_interval_ms / 1000.0

    @property
    def remaining_distance(self) -> float:
        route = self._route
        if route is None:
            return 0.0
        progress = self._progress
        if progress.segment_index >= route.last_index:
            return 0.0
        walked = route.distance_from_start(progress.segment_index) + progress.distance_along_segment
        return max(0.0, route.total_distance - walked)

    def is_running(self) -> bool:
        return self._phase is Phase.RUNNING

    def start(self, route: Route, speed_mps: float,
              tick_interval_ms: Optional[float] = None,
              progress: Optional[Progress] = None,
              schedule: bool = True) -> LocationUpdate:
        """Begin (or resume, when progress is given) a walk along route.

        Emits one stationary fix at the starting cursor and returns it.
        With schedule=False no timer is started and the caller drives tick().
        """
        route.require_motion()
        if not (isinstance(speed_mps, (int, float)) and math.isfinite(speed_mps) and speed_mps > 0):
            raise InvalidSpeed(f"Speed must be positive, got {speed_mps!r}")
        interval = tick_interval_ms if tick_interval_ms is not None else CONFIG["tick_interval_ms"]
        if interval <= 0:
            raise ValueError(f"Tick interval must be positive, got {interval!r}")

        if self._worker is not None:
            self.stop()

        with self.lock:
            self._route = route
            self._speed_mps = float(speed_mps)
            self._tick_interval_ms = interval
            self._progress = progress or Progress(0, 0.0, route.initial_bearing())
            self._stop_event = threading.Event()
            self._phase = Phase.RUNNING

            self._log("Walk started", {
                "points": len(route),
                "total_distance": round(route.total_distance, 1),
                "speed_kmh": round(self.speed_kmh, 2),
                "tick_interval_ms": interval,
                "segment_index": self._progress.segment_index,
                "distance_along_segment": round(self._progress.distance_along_segment, 2),
            })

            at_vertex = self._progress.distance_along_segment == 0
            initial = self._emit(
                self._cursor_position(),
                self._progress.last_bearing,
                is_moving=False,
                vertex_index=self._progress.segment_index if at_vertex else None,
            )

        if schedule:
            self._worker = threading.Thread(target=self._run, name="walksim-ticker", daemon=True)
            self._worker.start()
        return initial

    def tick(self) -> list[LocationUpdate]:
        """Advance one tick. Returns the fixes emitted.

        Empty unless RUNNING. A tick() issued from inside a tick (by a sink)
        is ignored.
        """
        with self.lock:
            if self._phase is not Phase.RUNNING or self._ticking:
                return []
            self._ticking = True
            try:
                return self._advance()
            finally:
                self._ticking = False
                # Completion is reported even if emitting the last fix failed
                if self._phase is Phase.COMPLETED:
                    self._log("Walk completed", {
                        "total_distance": round(self._route.total_distance, 1),
                    })
                    if self.on_complete:
                        self.on_complete()

    def stop(self):
        """Cancel the timer and wait for an in-flight tick to finish. Idempotent."""
        self._stop_event.set()
        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join()
        self._worker = None
        with self.lock:
            if self._phase is not Phase.STOPPED:
                self._log("Walk stopped", {
                    "previous_phase": self._phase.value,
                    "remaining_distance": round(self.remaining_distance, 1),
                })
                self._phase = Phase.STOPPED

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the ticker thread exits. Returns True if it has."""
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    def _run(self):
        interval = self._tick_interval_ms / 1000.0
        stop_event = self._stop_event
        while not stop_event.wait(interval):
            try:
                self.tick()
            except Exception as e:
                self._log("Tick failed", {"error": repr(e)})

    def _advance(self) -> list[LocationUpdate]:
        route = self._route
        last = route.last_index
        index = self._progress.segment_index
        bearing = self._progress.last_bearing
        updates: list[LocationUpdate] = []

        if index >= last:
            self._complete()
            return updates

        distance = self._progress.distance_along_segment + self.step_distance
        segment_length = route.segment_length(index)

        while distance >= segment_length:
            distance -= segment_length
            index += 1
            vertex_bearing = bearing

            if index >= last:
                self._progress = Progress(index, 0.0, bearing)
                self._complete()
                updates.append(self._emit(route[index], vertex_bearing, vertex_index=index))
                return updates

            bearing = route.segment_bearing(index)
            self._progress = Progress(index, 0.0, bearing)
            updates.append(self._emit(route[index], vertex_bearing, vertex_index=index))
            segment_length = route.segment_length(index)

        fraction = distance / segment_length if segment_length > 0 else 0.0
        point = interpolate(route[index], route[index + 1], fraction)
        self._progress = Progress(index, distance, bearing)
        updates.append(self._emit(point, bearing))
        return updates

    def _complete(self):
        self._phase = Phase.COMPLETED
        self._stop_event.set()

    def _cursor_position(self) -> RoutePoint:
        route = self._route
        progress = self._progress
        index = progress.segment_index
        if index >= route.last_index:
            return route[route.last_index]
        if progress.distance_along_segment == 0:
            return route[index]
        length = route.segment_length(index)
        fraction = progress.distance_along_segment / length if length > 0 else 0.0
        return interpolate(route[index], route[index + 1], fraction)

    def _emit(self, point: RoutePoint, bearing: float, is_moving: bool = True,
              vertex_index: Optional[int] = None) -> LocationUpdate:
        update = LocationUpdate(
            point=point,
            bearing=bearing,
            is_moving=is_moving,
            speed_kmh=self.speed_kmh,
            vertex_index=vertex_index,
        )
        self.on_location_update(update)
        return update

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)
