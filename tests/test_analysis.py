"""Tests for the pandas reporting helpers."""

import unittest
from collections import Counter
from datetime import timedelta

from route_fixtures import T0

from railcast.analysis import delay_summary, ingest_summary, tracks_frame
from railcast.models import DelayEstimate, VehicleTrack


def track(vehicle_id, line_id, delay_min):
    delay = None
    if delay_min is not None:
        delay = DelayEstimate(vehicle_id, T0, timedelta(minutes=delay_min), timedelta(seconds=30), 4)
    return VehicleTrack(
        vehicle_id=vehicle_id,
        line_id=line_id,
        progress_km=1.0,
        last_seen=T0,
        run_departure=T0,
        run_started=T0,
        delay=delay,
    )


class TestAnalysis(unittest.TestCase):
    """Test per-line delay statistics."""

    def setUp(self):
        self.tracks = {
            t.vehicle_id: t
            for t in (
                track("V1", "S1", 0.5),
                track("V2", "S1", 6.0),
                track("V3", "S1", -2.0),
                track("V4", "S8", 1.0),
                track("V5", "S8", None),
            )
        }

    def test_tracks_frame(self):
        frame = tracks_frame(self.tracks)
        self.assertEqual(len(frame), 5)
        self.assertEqual(frame.set_index("vehicle_id").loc["V2", "delay_min"], 6.0)
        self.assertEqual(frame.set_index("vehicle_id").loc["V5", "samples"], 0)

    def test_delay_summary(self):
        summary = delay_summary(self.tracks)
        self.assertEqual(list(summary.index), ["S1", "S8"])
        s1 = summary.loc["S1"]
        self.assertEqual(s1["vehicles"], 3)
        self.assertAlmostEqual(s1["avg_delay"], 1.5)
        self.assertAlmostEqual(s1["median_delay"], 0.5)
        self.assertAlmostEqual(s1["pct_on_time"], 33.3)
        self.assertAlmostEqual(s1["pct_late"], 33.3)
        self.assertAlmostEqual(s1["pct_early"], 33.3)
        self.assertEqual(summary.loc["S8", "vehicles"], 1)
        self.assertEqual(summary.loc["S8", "pct_on_time"], 100.0)

    def test_delay_summary_empty(self):
        self.assertTrue(delay_summary({}).empty)

    def test_ingest_summary(self):
        summary = ingest_summary(Counter(accepted=3, invalid=1))
        self.assertEqual(summary["accepted"], 3)
        self.assertEqual(summary["stale"], 0)
        self.assertEqual(summary["acceptance_pct"], 75.0)
        self.assertEqual(ingest_summary(Counter())["acceptance_pct"], 0.0)


if __name__ == "__main__":
    unittest.main()
