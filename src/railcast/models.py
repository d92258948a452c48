"""Data models for the railcast prediction engine."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Stop:
    """A stop on a line, positioned by cumulative distance and schedule."""
    stop_id: str
    name: str
    latitude: float
    longitude: float
    distance_km: float  # Cumulative distance from the line origin
    scheduled_offset: timedelta  # Scheduled arrival relative to run start


@dataclass(frozen=True)
class Line:
    """An ordered stop sequence a rail service runs along."""
    line_id: str
    name: str
    destination: str
    stops: Tuple[Stop, ...]
    vertices: Tuple[Tuple[float, float, float], ...]  # (lat, lon, progress_km)
    departures: Tuple[datetime, ...] = ()  # Aware datetimes of scheduled run starts
    daily_departures: Tuple[timedelta, ...] = ()  # Times of day, resolved in graph tz
    max_speed_kmh: float = 160.0

    @property
    def length_km(self) -> float:
        return self.stops[-1].distance_km

    @property
    def origin(self) -> Stop:
        return self.stops[0]

    @property
    def terminus(self) -> Stop:
        return self.stops[-1]

    def get_stop(self, stop_id: str) -> Optional[Stop]:
        for stop in self.stops:
            if stop.stop_id == stop_id:
                return stop
        return None


@dataclass(frozen=True)
class LineProjection:
    """Nearest point of a position on one line."""
    line: Line
    progress_km: float
    distance_km: float  # Perpendicular distance to the line geometry


@dataclass(frozen=True)
class Observation:
    """A validated, timestamped position report for one vehicle."""
    vehicle_id: str
    timestamp: datetime  # Aware, UTC
    latitude: float
    longitude: float
    line_hint: Optional[str] = None
    destination_hint: Optional[str] = None


@dataclass(frozen=True)
class MatchedPosition:
    """An observation assigned to a line and a progress value along it."""
    line_id: str
    progress_km: float
    distance_km: float
    scheduled_offset: timedelta
    new_run: bool = False  # Start of a run (first match, line change or turnback)
    turnback: bool = False


class UnmatchedReason(str, Enum):
    TOO_FAR = "too_far"
    BACKTRACK = "backtrack"


@dataclass(frozen=True)
class Unmatched:
    """Matching failure for one observation; vehicle state stays unchanged."""
    vehicle_id: str
    reason: UnmatchedReason
    nearest_km: Optional[float] = None


@dataclass(frozen=True)
class TrackPoint:
    """One accepted sample in a track's history window."""
    timestamp: datetime
    progress_km: float
    delay_s: float  # Raw delay of this sample in seconds


@dataclass(frozen=True)
class DelayEstimate:
    """Smoothed signed delay of a vehicle (positive = late)."""
    vehicle_id: str
    as_of: datetime
    delay: timedelta
    std_dev: timedelta
    sample_count: int

    @property
    def delay_minutes(self) -> float:
        return self.delay.total_seconds() / 60.0


@dataclass(frozen=True)
class VehicleTrack:
    """Immutable snapshot of one vehicle's state; replaced on every update."""
    vehicle_id: str
    line_id: str
    progress_km: float
    last_seen: datetime
    run_departure: datetime  # Scheduled start of the run this vehicle serves
    run_started: datetime  # First observation of the current run
    history: Tuple[TrackPoint, ...] = ()
    delay: Optional[DelayEstimate] = None
    observation_count: int = 1
    position: Optional[Tuple[float, float]] = None  # (lat, lon) of the last report

    @property
    def delay_samples(self) -> List[float]:
        return [point.delay_s for point in self.history]


@dataclass(frozen=True)
class EvictedTrack:
    """Terminal state of a track removed for inactivity."""
    track: VehicleTrack
    evicted_at: datetime


@dataclass(frozen=True)
class Forecast:
    """Predicted arrival of a vehicle at a downstream stop."""
    vehicle_id: str
    line_id: str
    stop_id: str
    predicted_arrival: datetime
    earliest: datetime
    latest: datetime
    scheduled_arrival: datetime

    @property
    def uncertainty(self) -> timedelta:
        """Half-width of the uncertainty band."""
        return (self.latest - self.earliest) / 2


class NoForecastReason(str, Enum):
    UNKNOWN_VEHICLE = "unknown_vehicle"
    EVICTED = "evicted"
    UNKNOWN_STOP = "unknown_stop"
    STOP_PASSED = "stop_passed"
    NO_LINE = "no_line"
    WRONG_LINE = "wrong_line"  # Vehicle is not running the requested line


@dataclass(frozen=True)
class NoForecast:
    """Insufficient data to forecast; a valid answer, not an error."""
    vehicle_id: str
    stop_id: str
    reason: NoForecastReason


@dataclass(frozen=True)
class TripLeg:
    """One ride in a trip plan."""
    vehicle_id: str
    line_id: str
    board_stop: str
    alight_stop: str
    transfer_slack: timedelta = timedelta(minutes=3)  # Needed before the next leg


@dataclass(frozen=True)
class LegForecast:
    """Forecasts at the boarding and alighting stop of a leg."""
    board: object  # Forecast | NoForecast | None
    alight: object  # Forecast | NoForecast


@dataclass(frozen=True)
class TransferCheck:
    """Feasibility of the transfer between two consecutive legs."""
    from_leg: int
    to_leg: int
    arrival: datetime
    departure: datetime
    slack: timedelta
    margin: timedelta  # departure - (arrival + slack)
    feasible: bool
    robust: bool  # Feasible even at the pessimistic ends of both bands


class PlanStatus(str, Enum):
    FEASIBLE = "feasible"
    INFEASIBLE = "infeasible"
    INDETERMINATE = "indeterminate"


@dataclass
class TripPlan:
    """A composed multi-leg journey with per-transfer feasibility."""
    legs: List[TripLeg]
    status: PlanStatus
    transfers: List[TransferCheck] = field(default_factory=list)
    missing: List[NoForecast] = field(default_factory=list)
    arrival: Optional[Forecast] = None  # Forecast at the final alighting stop

    @property
    def feasible(self) -> Optional[bool]:
        """True/False, or None when the plan is indeterminate."""
        if self.status == PlanStatus.INDETERMINATE:
            return None
        return self.status == PlanStatus.FEASIBLE


class IngestStatus(str, Enum):
    ACCEPTED = "accepted"
    INVALID = "invalid"
    STALE = "stale"
    UNMATCHED = "unmatched"


@dataclass(frozen=True)
class IngestResult:
    """Outcome of feeding one raw record to the engine."""
    status: IngestStatus
    vehicle_id: Optional[str] = None
    observation: Optional[Observation] = None
    match: object = None  # MatchedPosition | Unmatched
    track: Optional[VehicleTrack] = None
    reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.status == IngestStatus.ACCEPTED
