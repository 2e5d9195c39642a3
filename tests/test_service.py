from datetime import datetime, timedelta, timezone

import pytest

from walksim.errors import InvalidRoute, InvalidSpeed, PersistenceFailure, SyncFailure
from walksim.ledger import SQLiteStepLedger
from walksim.logger import Logger
from walksim.models import Phase, RoutePoint
from walksim.service import WalkSession, validate_speed
from walksim.state import ProgressStore

from conftest import FakeClock, FakeLedger


@pytest.fixture
def store(tmp_path):
    store = ProgressStore(str(tmp_path / "state.db"))
    yield store
    store.close()


def make_session(store, ledger, clock, **kwargs):
    return WalkSession(store, ledger, background_sync=False, clock=clock, **kwargs)


def walk_to_end(session, max_ticks=1000):
    for _ in range(max_ticks):
        if session.phase is not Phase.RUNNING:
            break
        session.tick()


@pytest.mark.parametrize("speed", [0, -3, "fast", None, float("inf")])
def test_validate_speed_rejects(speed):
    with pytest.raises(InvalidSpeed):
        validate_speed(speed)


def test_start_persists_walk(store, ledger, clock, equator_route_points):
    session = make_session(store, ledger, clock)

    session.start(equator_route_points, 5.0, schedule=False)

    assert session.phase is Phase.RUNNING
    saved = store.restore()
    assert saved.route == equator_route_points
    assert saved.path_history == [equator_route_points[0]]
    assert saved.speed_kmh == 5.0
    assert session.remaining_distance == pytest.approx(session.route.total_distance)


def test_tick_records_path_and_steps(store, ledger, clock, equator_route_points):
    session = make_session(store, ledger, clock)
    session.start(equator_route_points, 5.0, schedule=False)

    session.tick()

    assert len(session.path_history) == 2
    assert store.restore().path_history == session.path_history
    # 1.39m at 0.762m per step
    assert session.steps.walk_steps == 2
    assert session.remaining_distance == pytest.approx(session.route.total_distance - 5 / 3.6)
    last, history = session.path_history_snapshot()
    assert last == history[-1]


def test_invalid_start_saves_nothing(store, ledger, clock, equator_route_points):
    session = make_session(store, ledger, clock)
    with pytest.raises(InvalidSpeed):
        session.start(equator_route_points, 0)
    with pytest.raises(InvalidRoute):
        session.start([RoutePoint(0, 0)], 5.0)
    assert store.restore() is None
    assert session.phase is Phase.IDLE


def test_stop_flushes_and_clears(store, ledger, clock, equator_route_points):
    session = make_session(store, ledger, clock)
    session.start(equator_route_points, 5.0, schedule=False)
    session.tick()

    session.stop()

    assert session.phase is Phase.STOPPED
    assert session.wait(0)
    assert store.restore() is None
    assert sum(batch[2] for batch in ledger.batches) == 2
    assert len(ledger.sessions) == 1


def test_stop_is_idempotent(store, ledger, clock, equator_route_points):
    session = make_session(store, ledger, clock)
    session.start(equator_route_points, 5.0, schedule=False)
    session.stop()
    session.stop()
    assert len(ledger.sessions) == 1


def test_interrupted_walk_resumes_where_it_left_off(store, ledger, clock, equator_route_points):
    session = make_session(store, ledger, clock)
    session.start(equator_route_points, 360.0, schedule=False)
    session.tick()
    session.tick()  # crosses vertex 1
    walked = list(session.path_history)
    session.stop(clear_state=False)
    assert len(walked) == 4
    assert store.is_walking()

    resumed = make_session(store, FakeLedger(), clock)
    assert resumed.resume(schedule=False)

    assert resumed.phase is Phase.RUNNING
    assert resumed.speed_kmh == 360.0
    assert resumed.path_history == walked
    assert store.restore().path_history == walked
    progress = resumed.engine.progress
    assert progress.segment_index == 1
    assert progress.distance_along_segment == pytest.approx(200 - resumed.route.cumulative[1])


def test_resume_without_saved_walk(store, ledger, clock):
    session = make_session(store, ledger, clock)
    assert not session.resume()
    assert session.phase is Phase.IDLE


def test_completion_closes_session(store, ledger, clock, equator_route_points):
    session = make_session(store, ledger, clock)
    session.start(equator_route_points, 360.0, schedule=False)

    walk_to_end(session)

    assert session.phase is Phase.COMPLETED
    assert session.wait(0)
    assert session.remaining_distance == 0
    assert session.path_history[-1] == equator_route_points[-1]
    assert store.restore() is None
    assert len(ledger.sessions) == 1
    assert sum(batch[2] for batch in ledger.batches) == session.steps.walk_steps
    assert session.status()["phase"] == "completed"


def test_store_failure_degrades_durability(tmp_path, ledger, clock, equator_route_points):
    class FailingStore(ProgressStore):
        def append_to_path(self, point):
            raise PersistenceFailure("disk full")

    store = FailingStore(str(tmp_path / "state.db"))
    messages = []
    logger = Logger(echo=False, callback=lambda message, data: messages.append(message))
    session = make_session(store, ledger, clock, logger=logger)

    session.start(equator_route_points, 5.0, schedule=False)
    session.tick()

    assert session.phase is Phase.RUNNING
    assert session.durability_degraded
    assert session.last_persistence_error == "disk full"
    assert session.status()["durability_degraded"]
    assert len(session.path_history) == 2
    assert messages.count("Progress store failed, continuing in memory") == 1
    store.close()


def test_failing_sink_does_not_stop_walk(store, ledger, clock, equator_route_points):
    messages = []
    logger = Logger(echo=False, callback=lambda message, data: messages.append(message))
    received = []

    def broken(update):
        raise RuntimeError("display gone")

    session = make_session(store, ledger, clock, logger=logger, sinks=[broken, received.append])
    session.start(equator_route_points, 5.0, schedule=False)
    session.tick()

    assert len(received) == 2
    assert messages.count("Location sink failed") == 2
    assert session.phase is Phase.RUNNING


def test_steps_today_includes_unsynced():
    clock = FakeClock(datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc))
    ledger = FakeLedger()
    ledger.batches.append((clock() - timedelta(seconds=60), clock() - timedelta(seconds=30), 40))

    session = WalkSession(None, ledger, background_sync=False, clock=clock)
    session.steps.record_movement(0.762 * 3)

    assert session.steps_today() == 43


def test_steps_today_when_ledger_unreachable(store, clock):
    class UnreachableLedger(FakeLedger):
        def aggregate_steps_between(self, start, end):
            raise SyncFailure("offline")

    session = make_session(store, UnreachableLedger(), clock)
    assert session.steps_today() == 0


def test_status_before_walk(store, ledger, clock):
    status = make_session(store, ledger, clock).status()
    assert status["phase"] == "idle"
    assert status["total_distance"] == 0.0
    assert status["walk_steps"] == 0
    assert not status["durability_degraded"]


def test_out_and_back_walk_tracks_return_leg(store, ledger, clock):
    route_points = [RoutePoint(0, 0), RoutePoint(0, 0.002), RoutePoint(0, 0)]
    session = make_session(store, ledger, clock)
    session.start(route_points, 360.0, schedule=False)
    for _ in range(3):
        session.tick()

    assert session.engine.progress.segment_index == 1
    assert session.remaining_distance == pytest.approx(session.route.total_distance - 300)
    session.stop(clear_state=False)

    resumed = make_session(store, FakeLedger(), clock)
    assert resumed.resume(schedule=False)
    assert resumed.engine.progress.segment_index == 1
    assert resumed.remaining_distance == pytest.approx(resumed.route.total_distance - 300)


def test_steps_today_survives_ledger_database_error(tmp_path, store, clock):
    ledger = SQLiteStepLedger(str(tmp_path / "ledger.db"))
    ledger.close()
    session = make_session(store, ledger, clock)
    assert session.steps_today() == 0
