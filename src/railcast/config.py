"""Engine configuration."""

import logging
import os
from dataclasses import dataclass, fields
from datetime import timedelta
from typing import Any, Dict

logger = logging.getLogger(__name__)

_DURATION_FIELDS = {
    "clock_skew_tolerance",
    "max_future_skew",
    "run_restart_gap",
    "inactivity_timeout",
    "sweep_interval",
}


@dataclass
class EngineConfig:
    """Tunable thresholds for matching, estimation and prediction."""

    # Normalizer
    clock_skew_tolerance: timedelta = timedelta(seconds=30)
    max_future_skew: timedelta = timedelta(minutes=5)
    clock_jump_quorum: int = 3  # Vehicles that must agree before the observation clock jumps ahead
    bounds_margin_km: float = 5.0

    # Map matching
    max_match_distance_km: float = 0.3
    continuity_epsilon_km: float = 0.05
    backtrack_tolerance_km: float = 0.2
    turnback_distance_km: float = 1.0  # How close to the terminus a reversal is plausible
    run_restart_gap: timedelta = timedelta(minutes=20)

    # Track store
    history_window: int = 12
    inactivity_timeout: timedelta = timedelta(minutes=10)
    sweep_interval: timedelta = timedelta(minutes=1)
    evicted_memory: int = 1000  # Recently evicted ids remembered for NoForecast reasons

    # Delay estimation (seconds)
    delay_decay: float = 0.8
    outlier_threshold_s: float = 180.0
    sensor_noise_s: float = 30.0
    initial_delay_std_s: float = 120.0

    # Prediction
    min_speed_kmh: float = 5.0
    kinematic_horizon_km: float = 2.0
    growth_s_per_km: float = 15.0
    staleness_growth: float = 0.5  # Seconds of band per second since the last report
    band_z: float = 1.64

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "EngineConfig":
        """Build a config from plain values; durations are given in seconds."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in values.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key '{key}'")
                continue
            if key in _DURATION_FIELDS and not isinstance(value, timedelta):
                value = timedelta(seconds=float(value))
            kwargs[key] = value
        return cls(**kwargs)

    @classmethod
    def from_env(cls, prefix: str = "RAILCAST_", environ: Dict[str, str] = None) -> "EngineConfig":
        """Read overrides such as RAILCAST_MAX_MATCH_DISTANCE_KM from the environment."""
        environ = os.environ if environ is None else environ
        defaults = cls()
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(prefix + f.name.upper())
            if raw is None:
                continue
            current = getattr(defaults, f.name)
            try:
                if isinstance(current, int) and not isinstance(current, bool):
                    values[f.name] = int(raw)
                else:
                    values[f.name] = float(raw)
            except ValueError:
                raise ValueError(f"Invalid value for {prefix + f.name.upper()}: {raw!r}")
        return cls.from_dict(values)
