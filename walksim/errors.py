"""Exceptions raised by WalkSim."""


class WalkSimError(Exception):
    """Base class for all WalkSim errors"""


class InvalidRoute(WalkSimError, ValueError):
    """Route has too few points for the requested operation"""


class InvalidSpeed(WalkSimError, ValueError):
    """Walking speed is zero, negative or not a number"""


class SyncFailure(WalkSimError):
    """A write to the step ledger failed. Retried at the next batch window."""


class PersistenceFailure(WalkSimError):
    """The progress store could not be read or written"""
