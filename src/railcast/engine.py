"""Prediction engine: ingestion path and query boundary."""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Union

from .config import EngineConfig
from .delay_estimator import DelayEstimator
from .errors import FutureObservation, InvalidObservation, StaleObservation
from .map_matcher import MapMatcher
from .models import (
    DelayEstimate,
    Forecast,
    IngestResult,
    IngestStatus,
    LegForecast,
    NoForecast,
    NoForecastReason,
    TripLeg,
    TripPlan,
    Unmatched,
    VehicleTrack,
)
from .normalizer import ObservationNormalizer
from .predictor import PositionPredictor
from .route_graph import RouteGraph, load_routes
from .track_store import VehicleTrackStore
from .trip_composer import compose

logger = logging.getLogger(__name__)


class PredictionEngine:
    """
    Tracks rail vehicles and forecasts their arrivals.

    This class provides methods to:
    - Ingest raw position records one at a time or from a lazy stream
    - Query the current delay of a vehicle
    - Forecast arrivals at downstream stops
    - Check the feasibility of multi-leg trips

    Ingestion is meant to run on a single path; queries may run concurrently
    with it and with each other. Eviction sweeps run cooperatively inside
    ingestion whenever the observation clock has advanced by sweep_interval.
    """

    def __init__(
        self,
        graph: RouteGraph,
        config: EngineConfig = None,
        store: VehicleTrackStore = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the engine.

        Args:
            graph: Loaded route graph.
            config: Thresholds; defaults to EngineConfig().
            store: Track store to use; a new one is created if omitted.
            clock: Returns the current aware time. Without one, the newest
                observation timestamp serves as the clock, which keeps replays
                deterministic. Records more than max_future_skew ahead of it
                are rejected until clock_jump_quorum vehicles agree on the jump.
        """
        self.graph = graph
        self.config = config or EngineConfig()
        self.normalizer = ObservationNormalizer(graph, self.config)
        self.matcher = MapMatcher(graph, self.config)
        self.estimator = DelayEstimator(self.config)
        self.store = store if store is not None else VehicleTrackStore(graph, self.estimator, self.config)
        self.predictor = PositionPredictor(graph, self.config)
        self.clock = clock
        self.stats: Counter = Counter()
        self._observation_clock: Optional[datetime] = None
        self._last_sweep: Optional[datetime] = None
        self._future_reports: Dict[str, datetime] = {}

    @classmethod
    def from_routes(cls, source: Any, config: EngineConfig = None, **kwargs) -> "PredictionEngine":
        """Load route data (dict, JSON path or URL) and build an engine."""
        return cls(load_routes(source, config), config=config, **kwargs)

    def now(self) -> Optional[datetime]:
        if self.clock is not None:
            return self.clock()
        return self._observation_clock

    def ingest(self, raw: Dict[str, Any], trusted: bool = False) -> IngestResult:
        """
        Process one raw position record.

        Never raises for a bad record: rejections and matching failures are
        reported in the result and counted in stats.

        Args:
            raw: Raw position record.
            trusted: The record was accepted before, e.g. when replaying an
                observation log. Skips the future check against the
                observation clock; an injected clock is still honoured.
        """
        vehicle_id = _peek_vehicle_id(raw)
        prior = self.store.get(vehicle_id) if vehicle_id else None

        if self.clock is not None:
            now = self.clock()
        else:
            now = None if trusted else self._observation_clock

        try:
            observation = self.normalizer.normalize(
                raw,
                last_accepted=prior.last_seen if prior else None,
                last_position=prior.position if prior else None,
                now=now,
            )
        except StaleObservation as e:
            self.stats["stale"] += 1
            logger.debug(f"Dropped stale observation: {e}")
            return IngestResult(IngestStatus.STALE, vehicle_id=vehicle_id, reason=str(e))
        except FutureObservation as e:
            if self.clock is None and self._clock_jump_confirmed(e.vehicle_id, e.timestamp):
                return self.ingest(raw, trusted)
            self.stats["invalid"] += 1
            logger.debug(f"Dropped future observation: {e}")
            return IngestResult(IngestStatus.INVALID, vehicle_id=vehicle_id, reason=str(e))
        except InvalidObservation as e:
            self.stats["invalid"] += 1
            logger.debug(f"Dropped invalid observation: {e}")
            return IngestResult(IngestStatus.INVALID, vehicle_id=vehicle_id, reason=str(e))

        self._advance_clock(observation.timestamp)

        match = self.matcher.match(observation, prior)
        if isinstance(match, Unmatched):
            self.stats["unmatched"] += 1
            logger.debug(f"Vehicle {observation.vehicle_id} unmatched: {match.reason.value}")
            result = IngestResult(
                IngestStatus.UNMATCHED,
                vehicle_id=observation.vehicle_id,
                observation=observation,
                match=match,
                track=prior,
                reason=match.reason.value,
            )
        else:
            track = self.store.upsert(
                observation.vehicle_id,
                match,
                observation.timestamp,
                position=(observation.latitude, observation.longitude),
            )
            self.stats["accepted"] += 1
            if match.turnback:
                self.stats["turnbacks"] += 1
            elif match.new_run:
                self.stats["new_runs"] += 1
            result = IngestResult(
                IngestStatus.ACCEPTED,
                vehicle_id=observation.vehicle_id,
                observation=observation,
                match=match,
                track=track,
            )

        self._maybe_sweep()
        return result

    def ingest_many(
        self,
        records: Iterable[Dict[str, Any]],
        trusted: bool = False,
    ) -> Iterator[IngestResult]:
        """Lazily ingest a stream of records, yielding one result per record."""
        for raw in records:
            yield self.ingest(raw, trusted)

    def consume(self, records: Iterable[Dict[str, Any]], trusted: bool = False) -> Counter:
        """Ingest a whole stream and return the outcome counts of this call."""
        outcomes: Counter = Counter()
        for result in self.ingest_many(records, trusted):
            outcomes[result.status.value] += 1
        return outcomes

    def _advance_clock(self, timestamp: datetime) -> None:
        if self._observation_clock is None or timestamp > self._observation_clock:
            self._observation_clock = timestamp
            skew = self.config.max_future_skew
            self._future_reports = {
                vid: ts for vid, ts in self._future_reports.items() if ts - timestamp > skew
            }

    def _clock_jump_confirmed(self, vehicle_id: str, timestamp: datetime) -> bool:
        """
        Note a report from beyond the observation clock.

        The clock only jumps once enough distinct vehicles report ahead of it:
        clock_jump_quorum, or every tracked vehicle when fewer are tracked. It
        then moves only as far as the earliest of those reports.
        """
        self._future_reports[vehicle_id] = timestamp
        quorum = max(1, min(self.config.clock_jump_quorum, len(self.store)))
        if len(self._future_reports) < quorum:
            return False

        jump_to = min(self._future_reports.values())
        logger.info(
            f"Observation clock jumps from {self._observation_clock.isoformat()} to "
            f"{jump_to.isoformat()}; {len(self._future_reports)} vehicles report ahead of it"
        )
        self._future_reports = {}
        self._observation_clock = jump_to
        return True

    def _maybe_sweep(self) -> None:
        now = self.now()
        if now is None:
            return
        if self._last_sweep is None:
            self._last_sweep = now
            return
        if now - self._last_sweep >= self.config.sweep_interval:
            self.evict_inactive(now)

    def evict_inactive(self, now: Optional[datetime] = None, timeout: timedelta = None) -> List[str]:
        """Evict tracks idle for longer than the inactivity timeout."""
        now = now or self.now()
        if now is None:
            return []
        self._last_sweep = now
        evicted = self.store.evict_inactive(now, timeout)
        self.stats["evicted"] += len(evicted)
        return evicted

    def get_track(self, vehicle_id: str) -> Optional[VehicleTrack]:
        return self.store.get(vehicle_id)

    def tracks(self) -> Dict[str, VehicleTrack]:
        """Snapshot of all live tracks."""
        return self.store.snapshot()

    def get_delay(self, vehicle_id: str) -> Optional[DelayEstimate]:
        """Current delay estimate of a vehicle, or None if it is not tracked."""
        track = self.store.get(vehicle_id)
        return track.delay if track else None

    def get_forecast(
        self,
        vehicle_id: str,
        stop_id: str,
        now: Optional[datetime] = None,
    ) -> Union[Forecast, NoForecast]:
        """Forecast a vehicle's arrival at a stop from its current snapshot."""
        track = self.store.get(vehicle_id)
        if track is None:
            return NoForecast(vehicle_id, stop_id, self._missing_reason(vehicle_id))
        return self.predictor.predict(track, stop_id, now=now or self.now())

    def get_forecasts(self, vehicle_id: str, now: Optional[datetime] = None) -> List[Forecast]:
        """Forecasts for every stop ahead of a vehicle; empty if not tracked."""
        track = self.store.get(vehicle_id)
        if track is None:
            return []
        return self.predictor.predict_all(track, now=now or self.now())

    def plan_trip(self, legs: Sequence[TripLeg], now: Optional[datetime] = None) -> TripPlan:
        """
        Check a multi-leg journey against current forecasts.

        Each vehicle's track is read once, so every forecast for that vehicle
        comes from the same snapshot even while ingestion continues. A leg
        whose vehicle is not running the leg's line gets NoForecast(wrong_line).
        """
        now = now or self.now()
        snapshots = {leg.vehicle_id: None for leg in legs}
        for vehicle_id in snapshots:
            snapshots[vehicle_id] = self.store.get(vehicle_id)
        forecasts = [
            LegForecast(
                board=self._leg_forecast(leg, snapshots[leg.vehicle_id], leg.board_stop, now),
                alight=self._leg_forecast(leg, snapshots[leg.vehicle_id], leg.alight_stop, now),
            )
            for leg in legs
        ]
        return compose(legs, forecasts)

    def _leg_forecast(
        self,
        leg: TripLeg,
        track: Optional[VehicleTrack],
        stop_id: str,
        now: Optional[datetime],
    ) -> Union[Forecast, NoForecast]:
        if track is None:
            return NoForecast(leg.vehicle_id, stop_id, self._missing_reason(leg.vehicle_id))
        if track.line_id != leg.line_id:
            return NoForecast(leg.vehicle_id, stop_id, NoForecastReason.WRONG_LINE)
        return self.predictor.predict(track, stop_id, now=now)

    def _missing_reason(self, vehicle_id: str) -> NoForecastReason:
        if self.store.was_evicted(vehicle_id):
            return NoForecastReason.EVICTED
        return NoForecastReason.UNKNOWN_VEHICLE


def _peek_vehicle_id(raw: Any) -> Optional[str]:
    if not isinstance(raw, dict):
        return None
    value = raw.get("vehicleId")
    if value is None:
        value = raw.get("vehicle_id")
    if value is None:
        return None
    return str(value).strip() or None
