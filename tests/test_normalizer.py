"""Tests for the observation normalizer."""

import unittest
from datetime import datetime, timedelta, timezone

from route_fixtures import T0, east, line_l, network, record

from railcast.config import EngineConfig
from railcast.errors import FutureObservation, InvalidObservation, StaleObservation
from railcast.normalizer import ObservationNormalizer, parse_timestamp
from railcast.route_graph import load_routes


class TestParseTimestamp(unittest.TestCase):
    """Test the accepted timestamp encodings."""

    def test_iso_with_zulu(self):
        self.assertEqual(parse_timestamp("2024-03-01T08:00:00Z"), T0)

    def test_iso_with_offset(self):
        self.assertEqual(parse_timestamp("2024-03-01T09:00:00+01:00"), T0)

    def test_naive_is_utc(self):
        self.assertEqual(parse_timestamp(datetime(2024, 3, 1, 8, 0)), T0)

    def test_epoch_seconds_and_millis(self):
        seconds = T0.timestamp()
        self.assertEqual(parse_timestamp(seconds), T0)
        self.assertEqual(parse_timestamp(seconds * 1000), T0)
        self.assertEqual(parse_timestamp(str(int(seconds))), T0)

    def test_garbage(self):
        for value in ("yesterday", None, "", [1], True):
            with self.assertRaises(InvalidObservation):
                parse_timestamp(value)


class TestObservationNormalizer(unittest.TestCase):
    """Test validation of raw records."""

    def setUp(self):
        self.graph = load_routes(network(line_l()))
        self.normalizer = ObservationNormalizer(self.graph, EngineConfig())

    def test_normalizes_valid_record(self):
        observation = self.normalizer.normalize(record("V1", 4, 2.0, lineHint=" S1 ", destinationHint=""))
        self.assertEqual(observation.vehicle_id, "V1")
        self.assertEqual(observation.timestamp, T0 + timedelta(minutes=4))
        self.assertEqual(observation.timestamp.tzinfo, timezone.utc)
        self.assertEqual(observation.line_hint, "S1")
        self.assertIsNone(observation.destination_hint)

    def test_accepts_snake_case_keys(self):
        lat, lon = east(1.0)
        observation = self.normalizer.normalize({
            "vehicle_id": 42,
            "timestamp": T0.timestamp(),
            "latitude": str(lat),
            "longitude": lon,
            "line_hint": "S1",
        })
        self.assertEqual(observation.vehicle_id, "42")
        self.assertEqual(observation.line_hint, "S1")

    def test_rejects_missing_fields(self):
        for key in ("vehicleId", "timestamp", "latitude", "longitude"):
            raw = record("V1", 4, 2.0)
            del raw[key]
            with self.assertRaises(InvalidObservation):
                self.normalizer.normalize(raw)

    def test_rejects_non_numeric_coordinates(self):
        raw = record("V1", 4, 2.0)
        raw["latitude"] = "north"
        with self.assertRaises(InvalidObservation):
            self.normalizer.normalize(raw)

    def test_rejects_out_of_range_and_out_of_network(self):
        raw = record("V1", 4, 2.0)
        raw["latitude"] = 95.0
        with self.assertRaises(InvalidObservation):
            self.normalizer.normalize(raw)

        raw["latitude"] = 52.5
        with self.assertRaises(InvalidObservation):
            self.normalizer.normalize(raw)

    def test_rejects_non_mapping(self):
        with self.assertRaises(InvalidObservation):
            self.normalizer.normalize(["V1", 0, 48.0, 11.5])

    def test_rejects_stale(self):
        last = T0 + timedelta(minutes=10)
        with self.assertRaises(StaleObservation):
            self.normalizer.normalize(record("V1", 9, 2.0), last_accepted=last)

    def test_reorders_within_skew_tolerance(self):
        last = T0 + timedelta(minutes=10)
        raw = record("V1", 10, 4.0)
        raw["timestamp"] = (last - timedelta(seconds=10)).isoformat()
        observation = self.normalizer.normalize(raw, last_accepted=last, last_position=east(3.9))
        self.assertEqual(observation.timestamp, last)

    def test_rejects_duplicate(self):
        last = T0 + timedelta(minutes=10)
        with self.assertRaises(StaleObservation):
            self.normalizer.normalize(record("V1", 10, 4.0), last_accepted=last, last_position=east(4.0))

    def test_rejects_future_when_clock_given(self):
        with self.assertRaises(FutureObservation) as raised:
            self.normalizer.normalize(record("V1", 30, 2.0), now=T0)
        self.assertIsInstance(raised.exception, InvalidObservation)
        self.assertEqual(raised.exception.timestamp, T0 + timedelta(minutes=30))
        self.assertEqual(raised.exception.vehicle_id, "V1")
        observation = self.normalizer.normalize(record("V1", 1, 2.0), now=T0)
        self.assertEqual(observation.vehicle_id, "V1")

    def test_does_not_hold_vehicle_state(self):
        first = self.normalizer.normalize(record("V1", 10, 4.0))
        second = self.normalizer.normalize(record("V1", 5, 2.0))
        self.assertGreater(first.timestamp, second.timestamp)


if __name__ == "__main__":
    unittest.main()
