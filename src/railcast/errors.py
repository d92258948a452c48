"""Exceptions raised by the railcast engine."""


class RailcastError(Exception):
    """Base class for railcast errors."""


class MalformedRouteData(RailcastError, ValueError):
    """Route data violates stop ordering, schedule or geometry invariants."""


class ObservationRejected(RailcastError, ValueError):
    """A raw position record was dropped by the normalizer."""

    def __init__(self, message: str, vehicle_id: str = None):
        super().__init__(message)
        self.vehicle_id = vehicle_id


class InvalidObservation(ObservationRejected):
    """Missing or implausible fields."""


class StaleObservation(ObservationRejected):
    """Older than the vehicle's last accepted observation, or a duplicate."""


class FutureObservation(InvalidObservation):
    """Timestamped too far ahead of the current time."""

    def __init__(self, message: str, vehicle_id: str = None, timestamp=None):
        super().__init__(message, vehicle_id)
        self.timestamp = timestamp
