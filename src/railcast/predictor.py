"""Arrival forecasts at downstream stops."""

import logging
import math
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterator, List, Optional, Tuple, Union

import numpy as np

from .config import EngineConfig
from .models import Forecast, Line, NoForecast, NoForecastReason, Stop, VehicleTrack
from .route_graph import RouteGraph

logger = logging.getLogger(__name__)


class PositionPredictor:
    """
    Forecasts arrivals from a track snapshot.

    The forecast starts from the scheduled arrival shifted by the smoothed
    delay. Close to the vehicle, the kinematic estimate (remaining distance
    at the observed speed) takes over; its weight decays with
    exp(-remaining_km / kinematic_horizon_km). The uncertainty band combines
    the delay estimate's spread, the distance still to travel and the time
    since the vehicle last reported.
    """

    def __init__(self, graph: RouteGraph, config: EngineConfig = None):
        self.graph = graph
        self.config = config or EngineConfig()

    def velocity_kmh(self, track: VehicleTrack, line: Line) -> float:
        """
        Current speed from the history window, clamped to plausible values.

        Uses a least squares fit of progress over time; with fewer than two
        distinct timestamps it falls back to the scheduled speed of the segment.
        """
        points = track.history
        speed = None
        if len(points) >= 2:
            origin = points[0].timestamp
            seconds = np.array([(p.timestamp - origin).total_seconds() for p in points])
            progress = np.array([p.progress_km for p in points])
            if np.ptp(seconds) > 0:
                slope = np.polyfit(seconds, progress, 1)[0]
                speed = float(slope * 3600.0)
        if speed is None:
            speed = self.graph.scheduled_speed_kmh(line, track.progress_km)
        return max(self.config.min_speed_kmh, min(line.max_speed_kmh, speed))

    def predict(
        self,
        track: VehicleTrack,
        stop_id: str,
        now: Optional[datetime] = None,
    ) -> Union[Forecast, NoForecast]:
        """
        Forecast the vehicle's arrival at a stop.

        Args:
            track: Snapshot of the vehicle's track.
            stop_id: Target stop on the track's line.
            now: Request time; widens the band for vehicles that went quiet.

        Returns:
            Forecast, or NoForecast if the stop is unknown or already passed.
        """
        line = self.graph.get_line(track.line_id)
        if line is None:
            return NoForecast(track.vehicle_id, stop_id, NoForecastReason.NO_LINE)
        stop = line.get_stop(stop_id)
        if stop is None:
            return NoForecast(track.vehicle_id, stop_id, NoForecastReason.UNKNOWN_STOP)
        if stop.distance_km < track.progress_km:
            return NoForecast(track.vehicle_id, stop_id, NoForecastReason.STOP_PASSED)

        for ahead, forecast in self._forecasts_ahead(track, line, now):
            if ahead is stop:
                return forecast
        return NoForecast(track.vehicle_id, stop_id, NoForecastReason.STOP_PASSED)

    def predict_all(self, track: VehicleTrack, now: Optional[datetime] = None) -> List[Forecast]:
        """Forecasts for every stop still ahead, non-decreasing along the route."""
        line = self.graph.get_line(track.line_id)
        if line is None:
            return []
        return [forecast for _, forecast in self._forecasts_ahead(track, line, now)]

    def _forecasts_ahead(
        self,
        track: VehicleTrack,
        line: Line,
        now: Optional[datetime],
    ) -> Iterator[Tuple[Stop, Forecast]]:
        """
        Forecasts for the stops ahead in route order.

        The kinematic blend alone can put a farther stop before a nearer one
        when the observed speed is far below the scheduled speed, so each
        forecast is floored at the one before it. predict and predict_all
        both go through here and always agree.
        """
        velocity = self.velocity_kmh(track, line)
        floor = track.last_seen
        for stop in line.stops:
            if stop.distance_km < track.progress_km:
                continue
            forecast = self._forecast(track, line, stop, velocity, now)
            if forecast.predicted_arrival < floor:
                forecast = replace(
                    forecast,
                    predicted_arrival=floor,
                    earliest=min(forecast.earliest, floor),
                    latest=max(forecast.latest, floor),
                )
            floor = forecast.predicted_arrival
            yield stop, forecast

    def _forecast(self, track, line, stop, velocity_kmh, now) -> Forecast:
        remaining_km = stop.distance_km - track.progress_km
        scheduled_arrival = track.run_departure + stop.scheduled_offset

        if track.delay is not None:
            delay_s = track.delay.delay.total_seconds()
            delay_std_s = track.delay.std_dev.total_seconds()
        else:
            delay_s = 0.0
            delay_std_s = self.config.initial_delay_std_s

        scheduled_remaining_s = (
            stop.scheduled_offset - self.graph.scheduled_time_at(line, track.progress_km)
        ).total_seconds()
        kinematic_remaining_s = remaining_km / velocity_kmh * 3600.0
        weight = math.exp(-remaining_km / self.config.kinematic_horizon_km)

        offset_s = delay_s + weight * (kinematic_remaining_s - scheduled_remaining_s)
        predicted = max(scheduled_arrival + timedelta(seconds=offset_s), track.last_seen)

        stale_s = 0.0
        if now is not None:
            stale_s = max(0.0, (now - track.last_seen).total_seconds())
        half_width_s = self.config.band_z * math.sqrt(
            delay_std_s ** 2
            + (self.config.growth_s_per_km * remaining_km) ** 2
            + (self.config.staleness_growth * stale_s) ** 2
        )
        half_width = timedelta(seconds=half_width_s)

        return Forecast(
            vehicle_id=track.vehicle_id,
            line_id=line.line_id,
            stop_id=stop.stop_id,
            predicted_arrival=predicted,
            earliest=max(predicted - half_width, track.last_seen),
            latest=predicted + half_width,
            scheduled_arrival=scheduled_arrival,
        )
