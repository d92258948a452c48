"""Tabular summaries of engine state for reporting."""

import logging
from collections import Counter
from typing import Dict

import pandas as pd

from .models import VehicleTrack

logger = logging.getLogger(__name__)

# "On-time" definition in minutes: between 1 minute early and 3 minutes late
ON_TIME_MIN = -1.0
ON_TIME_MAX = 3.0

TRACK_COLUMNS = [
    "vehicle_id",
    "line_id",
    "progress_km",
    "last_seen",
    "delay_min",
    "delay_std_min",
    "samples",
]


def tracks_frame(tracks: Dict[str, VehicleTrack]) -> pd.DataFrame:
    """One row per tracked vehicle."""
    rows = []
    for track in tracks.values():
        rows.append({
            "vehicle_id": track.vehicle_id,
            "line_id": track.line_id,
            "progress_km": track.progress_km,
            "last_seen": track.last_seen,
            "delay_min": track.delay.delay_minutes if track.delay else None,
            "delay_std_min": track.delay.std_dev.total_seconds() / 60.0 if track.delay else None,
            "samples": track.delay.sample_count if track.delay else 0,
        })
    return pd.DataFrame(rows, columns=TRACK_COLUMNS)


def delay_summary(
    tracks: Dict[str, VehicleTrack],
    on_time_min: float = ON_TIME_MIN,
    on_time_max: float = ON_TIME_MAX,
) -> pd.DataFrame:
    """
    Delay statistics per line.

    Returns:
        DataFrame indexed by line_id with vehicles, avg_delay, median_delay,
        pct_on_time, pct_late and pct_early (delays in minutes).
    """
    frame = tracks_frame(tracks).dropna(subset=["delay_min"])
    columns = ["vehicles", "avg_delay", "median_delay", "pct_on_time", "pct_late", "pct_early"]
    if frame.empty:
        return pd.DataFrame(columns=columns).rename_axis("line_id")

    delay = frame["delay_min"].astype(float)
    frame = frame.assign(
        delay_min=delay,
        on_time=delay.between(on_time_min, on_time_max),
        late=delay > on_time_max,
        early=delay < on_time_min,
    )
    grouped = frame.groupby("line_id")
    summary = pd.DataFrame({
        "vehicles": grouped["vehicle_id"].count(),
        "avg_delay": grouped["delay_min"].mean().round(1),
        "median_delay": grouped["delay_min"].median().round(1),
        "pct_on_time": (100 * grouped["on_time"].mean()).round(1),
        "pct_late": (100 * grouped["late"].mean()).round(1),
        "pct_early": (100 * grouped["early"].mean()).round(1),
    })
    return summary[columns]


def ingest_summary(stats: Counter) -> pd.Series:
    """Counts of ingestion outcomes plus the share of records accepted."""
    keys = ("accepted", "invalid", "stale", "unmatched", "turnbacks", "new_runs", "evicted")
    counts = {key: stats.get(key, 0) for key in keys}
    total = counts["accepted"] + counts["invalid"] + counts["stale"] + counts["unmatched"]
    counts["acceptance_pct"] = round(100.0 * counts["accepted"] / total, 1) if total else 0.0
    return pd.Series(counts)
