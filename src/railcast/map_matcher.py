"""Assigns observations to a line and a progress value along it."""

import logging
from datetime import timedelta
from typing import List, Optional, Union

from .config import EngineConfig
from .models import (
    Line,
    LineProjection,
    MatchedPosition,
    Observation,
    Unmatched,
    UnmatchedReason,
    VehicleTrack,
)
from .route_graph import RouteGraph

logger = logging.getLogger(__name__)


class MapMatcher:
    """
    Matches observations against the route graph.

    Rules:
    1. Candidates are the vehicle's previous line plus lines named by its
       line/destination hint; with neither, every line. If no candidate is
       within the distance threshold, every line is tried.
    2. The nearest line wins, but the previous line is kept when it is within
       continuity_epsilon_km of the nearest one (no flapping on shared track).
    3. Progress on the same line never decreases. Small backward jitter is
       clamped; a large backward move is a turnback if the vehicle was near the
       terminus or silent for run_restart_gap, otherwise the observation is
       rejected as a backtrack.
    """

    def __init__(self, graph: RouteGraph, config: EngineConfig = None):
        self.graph = graph
        self.config = config or EngineConfig()

    def match(
        self,
        observation: Observation,
        prior: Optional[VehicleTrack] = None,
    ) -> Union[MatchedPosition, Unmatched]:
        """
        Match one observation.

        Args:
            observation: Normalized observation.
            prior: Snapshot of the vehicle's track, if it has one.

        Returns:
            MatchedPosition, or Unmatched when no line is close enough or the
            vehicle would move backwards implausibly.
        """
        prior_line = self.graph.get_line(prior.line_id) if prior else None

        candidates = self._candidate_lines(observation, prior_line)
        best = self._best_projection(observation, candidates, prior, prior_line)
        if best is None and len(candidates) < len(self.graph):
            best = self._best_projection(observation, self.graph.lines, prior, prior_line)

        if best is None:
            nearest = self.graph.nearest_points(observation.latitude, observation.longitude)
            nearest_km = nearest[0].distance_km if nearest else None
            return Unmatched(observation.vehicle_id, UnmatchedReason.TOO_FAR, nearest_km)

        line = best.line
        if prior_line is None:
            return self._matched(line, best, new_run=True)

        if line.line_id != prior_line.line_id:
            logger.debug(
                f"Vehicle {observation.vehicle_id} moved from line {prior_line.line_id} "
                f"to {line.line_id}"
            )
            return self._matched(line, best, new_run=True)

        if best.progress_km >= prior.progress_km - self.config.backtrack_tolerance_km:
            progress = max(best.progress_km, prior.progress_km)
            return MatchedPosition(
                line_id=line.line_id,
                progress_km=progress,
                distance_km=best.distance_km,
                scheduled_offset=self.graph.scheduled_time_at(line, progress),
            )

        if self._is_plausible_turnback(observation, prior, prior_line):
            return self._turnback(observation, prior_line)

        logger.debug(
            f"Vehicle {observation.vehicle_id} jumped back from {prior.progress_km:.2f} km "
            f"to {best.progress_km:.2f} km on line {line.line_id}"
        )
        return Unmatched(observation.vehicle_id, UnmatchedReason.BACKTRACK, best.distance_km)

    def _matched(self, line: Line, projection: LineProjection, new_run: bool) -> MatchedPosition:
        return MatchedPosition(
            line_id=line.line_id,
            progress_km=projection.progress_km,
            distance_km=projection.distance_km,
            scheduled_offset=self.graph.scheduled_time_at(line, projection.progress_km),
            new_run=new_run,
        )

    def _candidate_lines(self, observation: Observation, prior_line: Optional[Line]) -> List[Line]:
        hinted = self._hinted_lines(observation)
        candidates = list(hinted)
        if prior_line is not None and prior_line not in candidates:
            candidates.insert(0, prior_line)
        return candidates or self.graph.lines

    def _hinted_lines(self, observation: Observation) -> List[Line]:
        line_hint = (observation.line_hint or "").lower()
        destination_hint = (observation.destination_hint or "").lower()
        if not line_hint and not destination_hint:
            return []

        hinted = []
        for line in self.graph.lines:
            if line_hint and line_hint in (line.line_id.lower(), line.name.lower()):
                hinted.append(line)
            elif destination_hint and destination_hint in (
                line.destination.lower(),
                line.terminus.stop_id.lower(),
                line.terminus.name.lower(),
            ):
                hinted.append(line)
        return hinted

    def _best_projection(
        self,
        observation: Observation,
        lines: List[Line],
        prior: Optional[VehicleTrack],
        prior_line: Optional[Line],
    ) -> Optional[LineProjection]:
        projections = []
        prior_projection = None
        for line in lines:
            near = prior.progress_km if prior_line is not None and line is prior_line else None
            projection = self.graph.project(
                line, observation.latitude, observation.longitude, near_progress=near
            )
            if projection.distance_km > self.config.max_match_distance_km:
                continue
            projections.append(projection)
            if near is not None:
                prior_projection = projection

        if not projections:
            return None

        best = min(projections, key=lambda p: p.distance_km)
        if (
            prior_projection is not None
            and prior_projection.distance_km <= best.distance_km + self.config.continuity_epsilon_km
        ):
            return prior_projection
        return best

    def _is_plausible_turnback(
        self,
        observation: Observation,
        prior: VehicleTrack,
        prior_line: Line,
    ) -> bool:
        near_terminus = prior.progress_km >= prior_line.length_km - self.config.turnback_distance_km
        silent_for = observation.timestamp - prior.last_seen
        return near_terminus or silent_for >= self.config.run_restart_gap

    def _turnback(self, observation: Observation, prior_line: Line) -> Union[MatchedPosition, Unmatched]:
        """Start a new run on the line whose origin the vehicle is closest to."""
        lines = self._hinted_lines(observation) or self.graph.lines
        projections = [
            self.graph.project(line, observation.latitude, observation.longitude)
            for line in lines
        ]
        projections = [p for p in projections if p.distance_km <= self.config.max_match_distance_km]
        if not projections:
            return Unmatched(observation.vehicle_id, UnmatchedReason.TOO_FAR)

        chosen = min(projections, key=lambda p: (p.progress_km, p.distance_km))
        logger.info(
            f"Vehicle {observation.vehicle_id} turned back on line {prior_line.line_id}; "
            f"new run on line {chosen.line.line_id}"
        )
        return MatchedPosition(
            line_id=chosen.line.line_id,
            progress_km=0.0,
            distance_km=chosen.distance_km,
            scheduled_offset=timedelta(0),
            new_run=True,
            turnback=True,
        )
