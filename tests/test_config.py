"""Tests for engine configuration loading."""

import unittest
from datetime import timedelta

import route_fixtures  # noqa: F401

from railcast.config import EngineConfig


class TestEngineConfig(unittest.TestCase):
    """Test defaults and overrides."""

    def test_defaults(self):
        config = EngineConfig()
        self.assertEqual(config.inactivity_timeout, timedelta(minutes=10))
        self.assertEqual(config.max_match_distance_km, 0.3)
        self.assertEqual(config.history_window, 12)

    def test_from_dict_converts_seconds(self):
        config = EngineConfig.from_dict({"inactivity_timeout": 300, "band_z": 1.96})
        self.assertEqual(config.inactivity_timeout, timedelta(minutes=5))
        self.assertEqual(config.band_z, 1.96)

    def test_from_dict_ignores_unknown_keys(self):
        with self.assertLogs("railcast.config", level="WARNING") as logs:
            config = EngineConfig.from_dict({"warp_factor": 9})
        self.assertIn("warp_factor", logs.output[0])
        self.assertEqual(config, EngineConfig())

    def test_from_env(self):
        environ = {
            "RAILCAST_HISTORY_WINDOW": "20",
            "RAILCAST_RUN_RESTART_GAP": "600",
            "RAILCAST_TURNBACK_DISTANCE_KM": "0.5",
            "OTHER_HISTORY_WINDOW": "3",
        }
        config = EngineConfig.from_env(environ=environ)
        self.assertEqual(config.history_window, 20)
        self.assertIsInstance(config.history_window, int)
        self.assertEqual(config.run_restart_gap, timedelta(minutes=10))
        self.assertEqual(config.turnback_distance_km, 0.5)

    def test_from_env_rejects_garbage(self):
        with self.assertRaises(ValueError):
            EngineConfig.from_env(environ={"RAILCAST_BAND_Z": "wide"})


if __name__ == "__main__":
    unittest.main()
