"""Per-vehicle track state with keyed locking and inactivity eviction."""

import logging
import threading
import zlib
from collections import OrderedDict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from .config import EngineConfig
from .delay_estimator import DelayEstimator
from .models import EvictedTrack, MatchedPosition, TrackPoint, VehicleTrack
from .route_graph import RouteGraph

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64


class VehicleTrackStore:
    """
    Owns every VehicleTrack, keyed by vehicle id.

    Tracks are frozen; an update builds a new track and swaps it in, so readers
    always get a complete snapshot without locking. Writers for the same
    vehicle are serialized by a striped lock; different vehicles rarely share
    a stripe and otherwise proceed in parallel.

    Eviction takes the same lock as updates and re-checks inactivity under it.
    An update that arrives after its track was evicted creates a fresh track;
    the evicted history is never resurrected.
    """

    def __init__(
        self,
        graph: RouteGraph,
        estimator: Optional[DelayEstimator] = None,
        config: EngineConfig = None,
    ):
        self.graph = graph
        self.config = config or EngineConfig()
        self.estimator = estimator if estimator is not None else DelayEstimator(self.config)
        self._tracks: Dict[str, VehicleTrack] = {}
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]
        self._evicted: "OrderedDict[str, datetime]" = OrderedDict()
        self._evicted_lock = threading.Lock()
        self._listeners: List[Callable[[EvictedTrack], None]] = []

    def _lock_for(self, vehicle_id: str) -> threading.Lock:
        return self._locks[zlib.crc32(vehicle_id.encode("utf-8")) % LOCK_STRIPES]

    def __len__(self) -> int:
        return len(self._tracks)

    def __contains__(self, vehicle_id: str) -> bool:
        return vehicle_id in self._tracks

    def get(self, vehicle_id: str) -> Optional[VehicleTrack]:
        """Current snapshot of a vehicle's track, or None."""
        return self._tracks.get(vehicle_id)

    def snapshot(self) -> Dict[str, VehicleTrack]:
        """Copy of all current tracks."""
        return dict(self._tracks)

    def was_evicted(self, vehicle_id: str) -> bool:
        """Whether the vehicle's track was recently evicted and not recreated."""
        with self._evicted_lock:
            return vehicle_id in self._evicted

    def add_eviction_listener(self, listener: Callable[[EvictedTrack], None]) -> None:
        """Register a callback invoked once per evicted track."""
        self._listeners.append(listener)

    def upsert(
        self,
        vehicle_id: str,
        matched: MatchedPosition,
        timestamp: datetime,
        position: Optional[Tuple[float, float]] = None,
    ) -> VehicleTrack:
        """
        Create or update a vehicle's track from a matched observation.

        A new run (first observation, line change, turnback, or update after
        eviction) binds the run to the nearest scheduled departure of the line
        and restarts the history window.

        Returns:
            The published track, including its recomputed delay estimate.
        """
        line = self.graph.get_line(matched.line_id)
        if line is None:
            raise KeyError(f"Unknown line {matched.line_id}")

        with self._lock_for(vehicle_id):
            current = self._tracks.get(vehicle_id)
            fresh_run = current is None or matched.new_run or current.line_id != matched.line_id

            if fresh_run:
                implied_start = timestamp - matched.scheduled_offset
                departure = self.graph.nearest_departure(line, implied_start) or implied_start
                history = ()
                run_started = timestamp
            else:
                departure = current.run_departure
                history = current.history
                run_started = current.run_started

            delay_s = (timestamp - (departure + matched.scheduled_offset)).total_seconds()
            point = TrackPoint(timestamp=timestamp, progress_km=matched.progress_km, delay_s=delay_s)
            history = (history + (point,))[-self.config.history_window:]

            track = VehicleTrack(
                vehicle_id=vehicle_id,
                line_id=matched.line_id,
                progress_km=matched.progress_km,
                last_seen=timestamp,
                run_departure=departure,
                run_started=run_started,
                history=history,
                observation_count=(current.observation_count + 1) if current else 1,
                position=position,
            )
            if self.estimator is not None:
                track = replace(track, delay=self.estimator.estimate(track))

            self._tracks[vehicle_id] = track

        if current is None:
            with self._evicted_lock:
                self._evicted.pop(vehicle_id, None)
            logger.debug(f"Created track for vehicle {vehicle_id} on line {matched.line_id}")
        return track

    def evict_inactive(self, now: datetime, timeout: timedelta = None) -> List[str]:
        """
        Remove tracks whose last observation predates now - timeout.

        Returns:
            Evicted vehicle ids.
        """
        timeout = timeout if timeout is not None else self.config.inactivity_timeout
        cutoff = now - timeout
        stale = [vid for vid, track in list(self._tracks.items()) if track.last_seen < cutoff]

        evicted: List[EvictedTrack] = []
        for vehicle_id in stale:
            with self._lock_for(vehicle_id):
                track = self._tracks.get(vehicle_id)
                if track is None or track.last_seen >= cutoff:
                    continue
                del self._tracks[vehicle_id]
            evicted.append(EvictedTrack(track=track, evicted_at=now))

        if evicted:
            with self._evicted_lock:
                for record in evicted:
                    self._evicted[record.track.vehicle_id] = now
                    self._evicted.move_to_end(record.track.vehicle_id)
                while len(self._evicted) > self.config.evicted_memory:
                    self._evicted.popitem(last=False)
            logger.info(f"Evicted {len(evicted)} inactive tracks")

        for record in evicted:
            logger.debug(
                f"Track of vehicle {record.track.vehicle_id} evicted; last seen "
                f"{record.track.last_seen.isoformat()}"
            )
            for listener in self._listeners:
                listener(record)

        return [record.track.vehicle_id for record in evicted]

    def clear(self) -> None:
        """Drop all tracks without eviction events."""
        self._tracks.clear()
        with self._evicted_lock:
            self._evicted.clear()
