from datetime import datetime, timedelta, timezone

import pytest

from walksim.errors import SyncFailure
from walksim.ledger import StepLedger
from walksim.models import RoutePoint


class FakeClock:
    """Settable clock returning aware UTC datetimes"""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class FakeLedger(StepLedger):
    """In-memory ledger. Fails the next `fail_batches` batch writes."""

    def __init__(self):
        self.batches = []
        self.sessions = []
        self.fail_batches = 0
        self.fail_sessions = False
        self.closed = False

    def write_step_batch(self, start, end, count):
        if self.fail_batches > 0:
            self.fail_batches -= 1
            raise SyncFailure("ledger unavailable")
        if count <= 0:
            return False
        self.batches.append((start, end, count))
        return True

    def write_session_record(self, start, end, title=None):
        if self.fail_sessions:
            raise SyncFailure("ledger unavailable")
        self.sessions.append((start, end, title))
        return True

    def aggregate_steps_between(self, start, end):
        return sum(count for s, e, count in self.batches if s >= start and e <= end)

    def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def equator_route_points():
    """Four points ~111m apart heading east along the equator"""
    return [RoutePoint(0.0, 0.001 * i) for i in range(4)]
