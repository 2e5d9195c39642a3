import time

import pytest

from walksim.errors import InvalidRoute, InvalidSpeed
from walksim.geo import point_distance
from walksim.models import Phase, Progress, RoutePoint
from walksim.route import Route
from walksim.simulator import ProgressEngine

WALKING_SPEED = 5 / 3.6  # 5 km/h in m/s


class Collector:
    def __init__(self):
        self.updates = []
        self.completions = 0

    def __call__(self, update):
        self.updates.append(update)

    def complete(self):
        self.completions += 1


def make_engine():
    collector = Collector()
    engine = ProgressEngine(collector, collector.complete)
    return engine, collector


def run_to_completion(engine, max_ticks=10000):
    ticks = 0
    while engine.phase is Phase.RUNNING and ticks < max_ticks:
        engine.tick()
        ticks += 1
    return ticks


def test_start_emits_stationary_fix_at_first_vertex():
    engine, collector = make_engine()
    route = Route([RoutePoint(0, 0), RoutePoint(0, 0.01)])
    initial = engine.start(route, WALKING_SPEED, 1000, schedule=False)

    assert engine.phase is Phase.RUNNING
    assert collector.updates == [initial]
    assert initial.point == RoutePoint(0, 0)
    assert not initial.is_moving
    assert initial.vertex_index == 0
    assert initial.bearing == pytest.approx(90)


def test_first_tick_interpolates_along_segment():
    engine, collector = make_engine()
    route = Route([RoutePoint(0, 0), RoutePoint(0, 0.01)])
    engine.start(route, WALKING_SPEED, 1000, schedule=False)

    updates = engine.tick()

    assert len(updates) == 1
    fix = updates[0]
    assert fix.is_moving
    assert fix.vertex_index is None
    assert fix.point.lat == 0
    assert fix.point.lon == pytest.approx(0.01 * WALKING_SPEED / route.total_distance)
    assert point_distance(route[0], fix.point) == pytest.approx(WALKING_SPEED, rel=1e-6)
    assert engine.progress.distance_along_segment == pytest.approx(WALKING_SPEED)


def test_walk_completes_and_final_vertex_emitted_once():
    engine, collector = make_engine()
    route = Route([RoutePoint(0, 0), RoutePoint(0, 0.01)])
    engine.start(route, WALKING_SPEED, 1000, schedule=False)

    ticks = run_to_completion(engine)

    assert engine.phase is Phase.COMPLETED
    assert ticks == 801
    assert collector.completions == 1
    final = [u for u in collector.updates if u.vertex_index == 1]
    assert len(final) == 1
    assert collector.updates[-1] is final[0]
    assert final[0].point == route[1]


def test_no_updates_after_completion():
    engine, collector = make_engine()
    route = Route([RoutePoint(0, 0), RoutePoint(0, 0.001)])
    engine.start(route, 1000.0, 1000, schedule=False)
    engine.tick()
    assert engine.phase is Phase.COMPLETED

    emitted = len(collector.updates)
    assert engine.tick() == []
    assert len(collector.updates) == emitted
    assert engine.remaining_distance == 0
    assert collector.completions == 1


def test_large_step_emits_every_crossed_vertex(equator_route_points):
    engine, collector = make_engine()
    route = Route(equator_route_points)
    engine.start(route, 250.0, 1000, schedule=False)

    updates = engine.tick()

    assert [u.vertex_index for u in updates] == [1, 2, None]
    assert [u.point for u in updates[:2]] == [route[1], route[2]]
    assert engine.progress.segment_index == 2

    updates = engine.tick()
    assert [u.vertex_index for u in updates] == [3]
    assert engine.phase is Phase.COMPLETED


def test_dense_route_visits_every_vertex_in_order():
    engine, collector = make_engine()
    # ~1.1m between vertices, less than one tick of walking
    route = Route([RoutePoint(0, 0.00001 * i) for i in range(30)])
    engine.start(route, WALKING_SPEED, 1000, schedule=False)

    run_to_completion(engine)

    visited = [u.vertex_index for u in collector.updates if u.vertex_index is not None]
    assert visited == list(range(30))
    lons = [u.point.lon for u in collector.updates]
    assert all(b >= a - 1e-12 for a, b in zip(lons, lons[1:]))


def test_zero_length_segment_is_crossed_without_stalling():
    engine, collector = make_engine()
    route = Route([RoutePoint(0, 0), RoutePoint(0, 0.0001), RoutePoint(0, 0.0001), RoutePoint(0, 0.0002)])
    engine.start(route, WALKING_SPEED, 1000, schedule=False)

    run_to_completion(engine)

    visited = [u.vertex_index for u in collector.updates if u.vertex_index is not None]
    assert visited == [0, 1, 2, 3]
    assert engine.phase is Phase.COMPLETED


def test_vertex_fix_keeps_arriving_bearing():
    engine, collector = make_engine()
    route = Route([RoutePoint(0, 0), RoutePoint(0, 0.001), RoutePoint(0.001, 0.001)])
    engine.start(route, 150.0, 1000, schedule=False)

    updates = engine.tick()

    assert updates[0].vertex_index == 1
    assert updates[0].bearing == pytest.approx(90)
    assert updates[1].bearing == pytest.approx(0, abs=1e-6)


def test_start_from_saved_progress(equator_route_points):
    engine, collector = make_engine()
    route = Route(equator_route_points)
    progress = Progress(1, 50.0, route.segment_bearing(1))

    initial = engine.start(route, WALKING_SPEED, 1000, progress=progress, schedule=False)

    assert initial.vertex_index is None
    assert point_distance(route[1], initial.point) == pytest.approx(50.0, rel=1e-6)
    assert engine.remaining_distance == pytest.approx(route.total_distance - route.cumulative[1] - 50)


def test_invalid_speed_is_rejected():
    engine, _ = make_engine()
    route = Route([RoutePoint(0, 0), RoutePoint(0, 0.001)])
    for speed in (0, -1.0, float("nan")):
        with pytest.raises(InvalidSpeed):
            engine.start(route, speed, schedule=False)
    assert engine.phase is Phase.IDLE


def test_single_point_route_is_rejected():
    engine, _ = make_engine()
    with pytest.raises(InvalidRoute):
        engine.start(Route([RoutePoint(0, 0)]), WALKING_SPEED, schedule=False)


def test_stop_is_idempotent_and_halts_ticks():
    engine, collector = make_engine()
    route = Route([RoutePoint(0, 0), RoutePoint(0, 0.01)])
    engine.start(route, WALKING_SPEED, 1000, schedule=False)
    engine.tick()

    engine.stop()
    engine.stop()

    assert engine.phase is Phase.STOPPED
    assert engine.tick() == []


def test_timer_drives_ticks_until_stopped():
    engine, collector = make_engine()
    route = Route([RoutePoint(0, 0), RoutePoint(0, 0.01)])
    engine.start(route, WALKING_SPEED, tick_interval_ms=10)

    time.sleep(0.2)
    engine.stop()
    emitted = len(collector.updates)
    time.sleep(0.05)

    assert emitted > 1
    assert len(collector.updates) == emitted
    assert engine.phase is Phase.STOPPED
    assert engine.wait(0)


def test_timer_stops_on_completion():
    engine, collector = make_engine()
    route = Route([RoutePoint(0, 0), RoutePoint(0, 0.001)])
    engine.start(route, 1000.0, tick_interval_ms=10)

    assert engine.wait(2.0)
    assert engine.phase is Phase.COMPLETED
    assert collector.completions == 1


def test_tick_from_a_sink_does_not_advance_twice():
    route = Route([RoutePoint(0, 0), RoutePoint(0, 0.01)])
    nested = []

    def ticking_sink(update):
        if update.is_moving:
            nested.append(engine.tick())

    engine = ProgressEngine(ticking_sink)
    engine.start(route, 1.0, 1000, schedule=False)

    updates = engine.tick()

    assert len(updates) == 1
    assert nested == [[]]
    assert engine.progress.distance_along_segment == pytest.approx(1.0)

    engine.tick()
    assert engine.progress.distance_along_segment == pytest.approx(2.0)


def test_stop_from_a_sink():
    route = Route([RoutePoint(0, 0), RoutePoint(0, 0.01)])

    def stopping_sink(update):
        if update.is_moving:
            engine.stop()

    engine = ProgressEngine(stopping_sink)
    engine.start(route, WALKING_SPEED, 1000, schedule=False)
    engine.tick()

    assert engine.phase is Phase.STOPPED
    assert engine.tick() == []
