"""Tests for arrival forecasting."""

import unittest
from dataclasses import replace
from datetime import timedelta

from route_fixtures import T0, line_l, network

from railcast.config import EngineConfig
from railcast.delay_estimator import DelayEstimator
from railcast.models import (
    DelayEstimate,
    Forecast,
    MatchedPosition,
    NoForecast,
    NoForecastReason,
)
from railcast.predictor import PositionPredictor
from railcast.route_graph import load_routes
from railcast.track_store import VehicleTrackStore


class TestPositionPredictor(unittest.TestCase):
    """Test forecasts built from track snapshots."""

    def setUp(self):
        self.config = EngineConfig()
        self.graph = load_routes(network(line_l()))
        self.line = self.graph.get_line("L")
        self.store = VehicleTrackStore(self.graph, DelayEstimator(self.config), self.config)
        self.predictor = PositionPredictor(self.graph, self.config)

    def _observe(self, seconds, progress):
        matched = MatchedPosition(
            line_id="L",
            progress_km=progress,
            distance_km=0.0,
            scheduled_offset=self.graph.scheduled_time_at(self.line, progress),
        )
        return self.store.upsert("V1", matched, T0 + timedelta(seconds=seconds))

    def _scenario(self):
        """On time at A and B, then half a minute late at 8.5 km."""
        self._observe(0, 0.0)
        self._observe(600, 5.0)
        return self._observe(990, 8.5)

    def test_forecast_close_to_schedule_plus_delay(self):
        track = self._scenario()
        self.assertGreater(track.delay.delay.total_seconds(), 0)

        forecast = self.predictor.predict(track, "C", now=track.last_seen)

        self.assertIsInstance(forecast, Forecast)
        self.assertEqual(forecast.scheduled_arrival, T0 + timedelta(minutes=22))
        offset = (forecast.predicted_arrival - forecast.scheduled_arrival).total_seconds()
        self.assertGreater(offset, 0)
        self.assertLess(offset, 60)

    def test_band_contains_prediction(self):
        track = self._scenario()
        forecast = self.predictor.predict(track, "C", now=track.last_seen)
        self.assertLess(forecast.earliest, forecast.predicted_arrival)
        self.assertGreater(forecast.latest, forecast.predicted_arrival)
        half_width = (forecast.latest - forecast.predicted_arrival).total_seconds()
        self.assertGreater(half_width, 60)
        self.assertLess(half_width, 150)

    def test_band_widens_for_quiet_vehicle(self):
        track = self._scenario()
        fresh = self.predictor.predict(track, "C", now=track.last_seen)
        quiet = self.predictor.predict(track, "C", now=track.last_seen + timedelta(minutes=5))
        self.assertGreater(quiet.latest - quiet.predicted_arrival, fresh.latest - fresh.predicted_arrival)
        self.assertEqual(quiet.predicted_arrival, fresh.predicted_arrival)

    def test_band_grows_with_distance(self):
        self._observe(0, 0.0)
        track = self._observe(600, 5.0)
        at_b = self.predictor.predict(track, "B")
        at_c = self.predictor.predict(track, "C")
        self.assertGreater(at_c.uncertainty, at_b.uncertainty)

    def test_passed_and_unknown_stops(self):
        track = self._scenario()
        passed = self.predictor.predict(track, "B")
        self.assertIsInstance(passed, NoForecast)
        self.assertEqual(passed.reason, NoForecastReason.STOP_PASSED)

        unknown = self.predictor.predict(track, "Z")
        self.assertEqual(unknown.reason, NoForecastReason.UNKNOWN_STOP)

    def test_forecast_is_never_before_last_report(self):
        track = self._observe(600, 5.0)
        early = DelayEstimate("V1", track.last_seen, timedelta(minutes=-10), timedelta(seconds=30), 5)
        track = replace(track, delay=early)

        forecast = self.predictor.predict(track, "B")

        self.assertEqual(forecast.predicted_arrival, track.last_seen)
        self.assertGreaterEqual(forecast.earliest, track.last_seen)

    def test_predict_all_is_monotonic(self):
        self._observe(0, 0.0)
        track = self._observe(600, 5.0)
        forecasts = self.predictor.predict_all(track)
        self.assertEqual([f.stop_id for f in forecasts], ["B", "C"])
        for previous, current in zip(forecasts, forecasts[1:]):
            self.assertLessEqual(previous.predicted_arrival, current.predicted_arrival)

    def test_velocity_from_history(self):
        track = self._scenario()
        self.assertAlmostEqual(self.predictor.velocity_kmh(track, self.line), 30.8, delta=1.0)

    def test_velocity_falls_back_to_schedule(self):
        track = self._observe(240, 2.0)
        self.assertAlmostEqual(self.predictor.velocity_kmh(track, self.line), 30.0)

    def test_velocity_is_clamped(self):
        self._observe(0, 0.0)
        track = self._observe(30, 5.0)  # 600 km/h
        self.assertEqual(self.predictor.velocity_kmh(track, self.line), self.line.max_speed_kmh)


if __name__ == "__main__":
    unittest.main()
