"""Step estimation from walked distance, with batched ledger sync."""

import math
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import CONFIG
from .errors import SyncFailure
from .ledger import StepLedger
from .logger import Logger
from .models import StepStats


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def calculate_steps(distance_meters: float, step_length: Optional[float] = None) -> int:
    """Steps for a movement, rounded half up. Any real movement counts as at least one step."""
    if distance_meters <= 0:
        return 0
    step_length = step_length or CONFIG["average_step_length"]
    return max(1, int(math.floor(distance_meters / step_length + 0.5)))


class StepEstimator:
    """Turns movement into step counts and syncs them to a ledger in batches.

    Unsynced steps accumulate in stats.total_steps. Once a batch interval has
    passed since the last sync (or the walk start) the accumulated count is
    written for the window [last_sync, now). Only one sync runs at a time; a
    failed batch stays in the counter and is retried at the next movement
    that qualifies, together with any steps recorded since.
    """

    def __init__(self, ledger: StepLedger, logger: Optional[Logger] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 background: bool = True,
                 on_step_update: Optional[Callable[[int], None]] = None,
                 batch_interval: Optional[float] = None,
                 step_length: Optional[float] = None):
        self.ledger = ledger
        self.logger = logger
        self.clock = clock or utc_now
        self.background = background
        self.on_step_update = on_step_update
        self.batch_interval = batch_interval if batch_interval is not None else CONFIG["step_batch_interval"]
        self.step_length = step_length or CONFIG["average_step_length"]

        self.lock = threading.Lock()  # guards stats
        self._sync_lock = threading.Lock()  # held for the duration of one sync
        self._sync_thread: Optional[threading.Thread] = None

        self._stats = StepStats(total_steps=0, total_distance=0.0, walk_start_time=self.clock())
        self.walk_steps = 0  # every step of the walk, synced or not
        self.last_sync_outcome: Optional[str] = None  # "ok" / "failed"
        self.last_sync_error: Optional[str] = None

    @property
    def stats(self) -> StepStats:
        with self.lock:
            return replace(self._stats)

    @property
    def unsynced_steps(self) -> int:
        return self._stats.total_steps

    @property
    def sync_in_flight(self) -> bool:
        return self._sync_lock.locked()

    def start(self, start_time: Optional[datetime] = None):
        """Reset stats for a new walk"""
        with self.lock:
            self._stats = StepStats(
                total_steps=0,
                total_distance=0.0,
                walk_start_time=start_time or self.clock(),
            )
            self.walk_steps = 0
            self.last_sync_outcome = None
            self.last_sync_error = None

    def record_movement(self, distance_meters: float) -> int:
        """Account for a movement. Returns the steps it added."""
        steps = calculate_steps(distance_meters, self.step_length)
        with self.lock:
            self._stats.total_steps += steps
            self._stats.total_distance += max(0.0, distance_meters)
            self.walk_steps += steps
            unsynced = self._stats.total_steps

        if self.on_step_update:
            self.on_step_update(unsynced)

        self._check_and_sync()
        return steps

    def _check_and_sync(self):
        if not self._sync_lock.acquire(blocking=False):
            return  # a sync is already in flight

        now = self.clock()
        with self.lock:
            window_start = self._stats.last_sync_time or self._stats.walk_start_time
            count = self._stats.total_steps
        due = (now - window_start).total_seconds() >= self.batch_interval and count > 0
        if not due:
            self._sync_lock.release()
            return

        if self.background:
            self._sync_thread = threading.Thread(
                target=self._sync_and_release, args=(window_start, now, count),
                name="walksim-step-sync", daemon=True,
            )
            self._sync_thread.start()
        else:
            self._sync_and_release(window_start, now, count)

    def _sync_and_release(self, start: datetime, end: datetime, count: int):
        try:
            self._write_batch(start, end, count)
        finally:
            self._sync_lock.release()

    def _write_batch(self, start: datetime, end: datetime, count: int) -> bool:
        """Write one batch. Must be called with _sync_lock held."""
        error = None
        try:
            ok = self.ledger.write_step_batch(start, end, count)
            if not ok:
                error = "ledger rejected batch"
        except SyncFailure as e:
            ok = False
            error = str(e)

        with self.lock:
            if ok:
                # Steps recorded while the write was in flight stay unsynced
                self._stats.total_steps = max(0, self._stats.total_steps - count)
                self._stats.last_sync_time = end
                self.last_sync_outcome = "ok"
                self.last_sync_error = None
            else:
                self.last_sync_outcome = "failed"
                self.last_sync_error = error

        if ok:
            self._log("Steps synced", {"count": count, "start": start, "end": end})
        else:
            self._log("Step sync failed", {"count": count, "error": error})
        return ok

    def join_sync(self, timeout: Optional[float] = None) -> bool:
        """Wait for a background sync to finish. Returns True if none is running."""
        thread = self._sync_thread
        if thread is not None:
            thread.join(timeout)
            return not thread.is_alive()
        return True

    def finalize(self, on_complete: Optional[Callable[[bool], None]] = None,
                 title: Optional[str] = None) -> threading.Event:
        """Flush unsynced steps and record the walk session.

        Returns an event that is set once both writes have been attempted;
        on_complete receives True if both succeeded.
        """
        done = threading.Event()

        def run():
            ok = False
            try:
                ok = self._finalize(title)
            finally:
                if on_complete:
                    on_complete(ok)
                done.set()

        if self.background:
            threading.Thread(target=run, name="walksim-step-finalize", daemon=True).start()
        else:
            run()
        return done

    def _finalize(self, title: Optional[str]) -> bool:
        acquired = self._sync_lock.acquire(timeout=CONFIG["ledger_timeout"])
        try:
            end = self.clock()
            with self.lock:
                window_start = self._stats.last_sync_time or self._stats.walk_start_time
                walk_start = self._stats.walk_start_time
                count = self._stats.total_steps

            flushed = True
            if count > 0:
                if acquired:
                    flushed = self._write_batch(window_start, end, count)
                else:
                    # Flushing now could overlap the stuck batch's window
                    flushed = False
                    self._log("Final step flush skipped, sync still in flight", {"count": count})

            try:
                recorded = self.ledger.write_session_record(
                    walk_start, end, title or CONFIG["session_title"]
                )
            except SyncFailure as e:
                recorded = False
                self._log("Session record failed", {"error": str(e)})
            else:
                self._log("Session recorded", {"start": walk_start, "end": end,
                                               "walk_steps": self.walk_steps})
            return flushed and recorded
        finally:
            if acquired:
                self._sync_lock.release()

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)
