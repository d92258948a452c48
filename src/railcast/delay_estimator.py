"""Smoothed delay estimation from a track's recent samples."""

import logging
from datetime import timedelta

import numpy as np

from .config import EngineConfig
from .models import DelayEstimate, VehicleTrack

logger = logging.getLogger(__name__)


class DelayEstimator:
    """
    Derives a signed delay (positive = late) from a track's delay samples.

    Each sample is the observed time minus the scheduled time at the matched
    progress. Samples further than outlier_threshold_s from the window median
    are dropped (once there are three or more), the rest are averaged with
    exponentially decaying weights so recent samples count most. The standard
    deviation shrinks with the effective sample size and grows with the spread
    of the samples.
    """

    def __init__(self, config: EngineConfig = None):
        self.config = config or EngineConfig()

    def estimate(self, track: VehicleTrack) -> DelayEstimate:
        samples = np.array(track.delay_samples, dtype=float)
        if samples.size == 0:
            return DelayEstimate(
                vehicle_id=track.vehicle_id,
                as_of=track.last_seen,
                delay=timedelta(0),
                std_dev=timedelta(seconds=self.config.initial_delay_std_s),
                sample_count=0,
            )

        keep = np.ones(samples.size, dtype=bool)
        if samples.size >= 3:
            median = np.median(samples)
            keep = np.abs(samples - median) <= self.config.outlier_threshold_s
            if not keep.any():
                keep[:] = True

        # Most recent sample has weight 1
        weights = self.config.delay_decay ** np.arange(samples.size - 1, -1, -1, dtype=float)
        weights = weights[keep]
        kept = samples[keep]

        mean = float(np.sum(weights * kept) / np.sum(weights))
        if kept.size == 1:
            std = self.config.initial_delay_std_s
        else:
            variance = float(np.sum(weights * (kept - mean) ** 2) / np.sum(weights))
            n_eff = float(np.sum(weights) ** 2 / np.sum(weights ** 2))
            std = float(np.sqrt((variance + self.config.sensor_noise_s ** 2) / n_eff))

        dropped = samples.size - kept.size
        if dropped:
            logger.debug(f"Vehicle {track.vehicle_id}: ignored {dropped} outlying delay samples")

        return DelayEstimate(
            vehicle_id=track.vehicle_id,
            as_of=track.last_seen,
            delay=timedelta(seconds=mean),
            std_dev=timedelta(seconds=std),
            sample_count=int(kept.size),
        )
