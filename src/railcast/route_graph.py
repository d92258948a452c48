"""Static route graph: lines as ordered stop sequences with schedule and geometry."""

import json
import logging
from datetime import datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
import pytz
import requests

from .config import EngineConfig
from .errors import MalformedRouteData
from .geo import haversine_km, project_onto_segment
from .models import Line, LineProjection, Stop

logger = logging.getLogger(__name__)

# Stops further than this from a supplied shape are treated as bad data
MAX_STOP_SNAP_KM = 1.0
# Segments this close to the best one are considered equally near
PROJECTION_EPSILON_KM = 0.05


class RouteGraph:
    """Immutable set of lines; safe for shared concurrent reads."""

    def __init__(
        self,
        lines: Iterable[Line],
        bounds: Tuple[float, float, float, float],
        timezone: str = "UTC",
    ):
        self._lines: Dict[str, Line] = {line.line_id: line for line in lines}
        self.bounds = bounds  # (min_lat, min_lon, max_lat, max_lon)
        self.timezone = timezone
        self._tz = pytz.timezone(timezone)
        self._stop_distances: Dict[str, np.ndarray] = {}
        self._stop_offsets: Dict[str, np.ndarray] = {}
        for line in self._lines.values():
            self._stop_distances[line.line_id] = np.array([s.distance_km for s in line.stops])
            self._stop_offsets[line.line_id] = np.array(
                [s.scheduled_offset.total_seconds() for s in line.stops]
            )

    @property
    def lines(self) -> List[Line]:
        return list(self._lines.values())

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, line_id: str) -> bool:
        return line_id in self._lines

    def get_line(self, line_id: str) -> Optional[Line]:
        return self._lines.get(line_id)

    def contains(self, latitude: float, longitude: float) -> bool:
        """Whether a position lies within the network's bounding region."""
        min_lat, min_lon, max_lat, max_lon = self.bounds
        return min_lat <= latitude <= max_lat and min_lon <= longitude <= max_lon

    def project(
        self,
        line: Line,
        latitude: float,
        longitude: float,
        near_progress: Optional[float] = None,
    ) -> LineProjection:
        """
        Nearest point of a position on one line.

        Args:
            line: Line to project onto.
            latitude, longitude: Position to project.
            near_progress: If given, among segments about as near as the best one,
                pick the one whose progress is closest to this value. Keeps
                matches stable where a line passes the same place twice.

        Returns:
            LineProjection with progress along the line and perpendicular distance.
        """
        candidates = []
        vertices = line.vertices
        for (lat_a, lon_a, prog_a), (lat_b, lon_b, prog_b) in zip(vertices, vertices[1:]):
            t, distance = project_onto_segment(latitude, longitude, lat_a, lon_a, lat_b, lon_b)
            candidates.append((distance, prog_a + t * (prog_b - prog_a)))

        best_distance = min(distance for distance, _ in candidates)
        if near_progress is None:
            distance, progress = min(candidates)
        else:
            near = [c for c in candidates if c[0] <= best_distance + PROJECTION_EPSILON_KM]
            distance, progress = min(near, key=lambda c: (abs(c[1] - near_progress), c[0]))

        return LineProjection(line=line, progress_km=progress, distance_km=distance)

    def nearest_points(self, latitude: float, longitude: float) -> List[LineProjection]:
        """Project a position onto every line, nearest first."""
        projections = [self.project(line, latitude, longitude) for line in self._lines.values()]
        projections.sort(key=lambda p: p.distance_km)
        return projections

    def scheduled_time_at(self, line: Line, progress_km: float) -> timedelta:
        """Scheduled offset from run start at a progress, interpolated between stops."""
        seconds = np.interp(
            progress_km,
            self._stop_distances[line.line_id],
            self._stop_offsets[line.line_id],
        )
        return timedelta(seconds=float(seconds))

    def scheduled_speed_kmh(self, line: Line, progress_km: float) -> float:
        """Scheduled average speed of the segment containing a progress value."""
        distances = self._stop_distances[line.line_id]
        offsets = self._stop_offsets[line.line_id]
        index = int(np.searchsorted(distances, progress_km, side="right")) - 1
        index = max(0, min(index, len(distances) - 2))
        hours = (offsets[index + 1] - offsets[index]) / 3600.0
        return float((distances[index + 1] - distances[index]) / hours)

    def departures_near(self, line: Line, moment: datetime) -> List[datetime]:
        """Scheduled run starts of a line around a moment (aware datetimes)."""
        departures = list(line.departures)
        if line.daily_departures:
            local_date = moment.astimezone(self._tz).date()
            for day_offset in (-1, 0, 1):
                day = local_date + timedelta(days=day_offset)
                midnight = datetime.combine(day, time.min)
                for time_of_day in line.daily_departures:
                    local = self._tz.localize(midnight + time_of_day)
                    departures.append(local.astimezone(pytz.utc))
        return departures

    def nearest_departure(self, line: Line, implied_start: datetime) -> Optional[datetime]:
        """The scheduled run start closest to a start time implied by an observation."""
        departures = self.departures_near(line, implied_start)
        if not departures:
            return None
        return min(departures, key=lambda d: abs((d - implied_start).total_seconds()))


def load_routes(source: Any, config: EngineConfig = None) -> RouteGraph:
    """
    Load and validate a route graph.

    Args:
        source: A dict of route data, a path to a JSON file, or an http(s) URL.
        config: Engine config; supplies the bounds margin.

    Returns:
        RouteGraph.

    Raises:
        MalformedRouteData: If the data violates stop ordering or schedule invariants.
    """
    if isinstance(source, dict):
        data = source
    elif str(source).startswith(("http://", "https://")):
        data = _fetch_route_data(str(source))
    else:
        logger.info(f"Loading route data from {source}")
        try:
            with open(source, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise MalformedRouteData(f"Route file {source} is not valid JSON: {e}")

    graph = build_graph(data, config)
    logger.info(f"Loaded {len(graph)} lines")
    return graph


def _fetch_route_data(url: str) -> Dict[str, Any]:
    """Download route data as JSON."""
    logger.info(f"Downloading route data from {url}")
    try:
        response = requests.get(url, timeout=30)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"Failed to download route data: {e}")
        raise
    try:
        return response.json()
    except ValueError as e:
        raise MalformedRouteData(f"Route data at {url} is not valid JSON: {e}")


def load_routes_from_csv(
    stops_csv: Any,
    lines_csv: Any = None,
    timezone: str = "UTC",
    config: EngineConfig = None,
) -> RouteGraph:
    """
    Load a route graph from tabular data.

    The stops table has one row per (line, stop) with columns line_id, stop_id,
    lat, lon, arrival_min and optionally stop_name, distance_km and sequence.
    The optional lines table has line_id and any of name, destination,
    max_speed_kmh and departures (space separated).
    """
    stops = pd.read_csv(stops_csv, dtype={"line_id": str, "stop_id": str})
    required = {"line_id", "stop_id", "lat", "lon", "arrival_min"}
    missing = required - set(stops.columns)
    if missing:
        raise MalformedRouteData(f"Stops table is missing columns: {sorted(missing)}")

    if "sequence" in stops.columns:
        stops = stops.sort_values(["line_id", "sequence"], kind="stable")

    line_rows: Dict[str, Dict[str, Any]] = {}
    if lines_csv is not None:
        lines_table = pd.read_csv(lines_csv, dtype=str).fillna("")
        for row in lines_table.to_dict("records"):
            line_rows[row["line_id"]] = row

    lines = []
    for line_id, group in stops.groupby("line_id", sort=False):
        meta = line_rows.get(line_id, {})
        raw_line: Dict[str, Any] = {"id": line_id, "stops": []}
        if meta.get("name"):
            raw_line["name"] = meta["name"]
        if meta.get("destination"):
            raw_line["destination"] = meta["destination"]
        if meta.get("max_speed_kmh"):
            raw_line["max_speed_kmh"] = meta["max_speed_kmh"]
        if meta.get("departures"):
            raw_line["departures"] = meta["departures"].split()

        for row in group.to_dict("records"):
            raw_stop = {
                "id": row["stop_id"],
                "lat": row["lat"],
                "lon": row["lon"],
                "arrival_min": row["arrival_min"],
            }
            if not pd.isna(row.get("stop_name", np.nan)):
                raw_stop["name"] = row["stop_name"]
            if not pd.isna(row.get("distance_km", np.nan)):
                raw_stop["distance_km"] = row["distance_km"]
            raw_line["stops"].append(raw_stop)
        lines.append(raw_line)

    return build_graph({"timezone": timezone, "lines": lines}, config)


def build_graph(data: Dict[str, Any], config: EngineConfig = None) -> RouteGraph:
    """Validate raw route data and build a RouteGraph."""
    config = config or EngineConfig()
    timezone = data.get("timezone", "UTC")
    try:
        tz = pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError:
        raise MalformedRouteData(f"Unknown time zone '{timezone}'")

    raw_lines = data.get("lines")
    if not raw_lines:
        raise MalformedRouteData("Route data contains no lines")

    lines: Dict[str, Line] = {}
    for raw_line in raw_lines:
        line = _build_line(raw_line, tz)
        if line.line_id in lines:
            raise MalformedRouteData(f"Duplicate line id '{line.line_id}'")
        lines[line.line_id] = line

    if data.get("bounds"):
        try:
            bounds = tuple(float(v) for v in data["bounds"])
        except (TypeError, ValueError):
            raise MalformedRouteData(f"Invalid bounds {data['bounds']!r}")
        if len(bounds) != 4:
            raise MalformedRouteData("Bounds must be [min_lat, min_lon, max_lat, max_lon]")
    else:
        bounds = _bounding_box(lines.values(), config.bounds_margin_km)

    return RouteGraph(lines.values(), bounds, timezone)


def _bounding_box(lines: Iterable[Line], margin_km: float) -> Tuple[float, float, float, float]:
    lats = [v[0] for line in lines for v in line.vertices]
    lons = [v[1] for line in lines for v in line.vertices]
    lat_margin = margin_km / 111.0
    lon_margin = margin_km / (111.0 * max(0.01, np.cos(np.radians(max(abs(min(lats)), abs(max(lats)))))))
    return (min(lats) - lat_margin, min(lons) - lon_margin, max(lats) + lat_margin, max(lons) + lon_margin)


def _coordinate(value: Any, limit: float, what: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise MalformedRouteData(f"Invalid {what} {value!r}")
    if not -limit <= number <= limit or np.isnan(number):
        raise MalformedRouteData(f"Implausible {what} {number}")
    return number


def _build_line(raw: Dict[str, Any], tz) -> Line:
    if "id" not in raw:
        raise MalformedRouteData("Line without id")
    line_id = str(raw["id"])
    raw_stops = raw.get("stops") or []
    if len(raw_stops) < 2:
        raise MalformedRouteData(f"Line {line_id} needs at least two stops")

    stop_ids, names, coords, offsets, declared = [], [], [], [], []
    for raw_stop in raw_stops:
        if "id" not in raw_stop:
            raise MalformedRouteData(f"Line {line_id} has a stop without id")
        stop_id = str(raw_stop["id"])
        if stop_id in stop_ids:
            raise MalformedRouteData(f"Line {line_id} visits stop {stop_id} twice")
        stop_ids.append(stop_id)
        names.append(str(raw_stop.get("name") or stop_id))
        coords.append((
            _coordinate(raw_stop.get("lat"), 90.0, f"latitude of stop {stop_id}"),
            _coordinate(raw_stop.get("lon"), 180.0, f"longitude of stop {stop_id}"),
        ))
        try:
            offsets.append(float(raw_stop["arrival_min"]) * 60.0)
        except (KeyError, TypeError, ValueError):
            raise MalformedRouteData(f"Stop {stop_id} on line {line_id} has no valid arrival_min")
        declared.append(raw_stop.get("distance_km"))

    shape = raw.get("shape")
    if shape:
        points = [
            (_coordinate(p[0], 90.0, "shape latitude"), _coordinate(p[1], 180.0, "shape longitude"))
            for p in shape
        ]
        geometric = _snap_stops_to_shape(line_id, points, coords)
    else:
        points = coords
        geometric = _cumulative_lengths(points)

    if all(d is None for d in declared):
        distances = list(geometric)
    elif any(d is None for d in declared):
        raise MalformedRouteData(f"Line {line_id} declares distance_km for only some stops")
    else:
        try:
            distances = [float(d) for d in declared]
        except (TypeError, ValueError):
            raise MalformedRouteData(f"Line {line_id} has a non-numeric distance_km")

    for i in range(1, len(stop_ids)):
        if distances[i] <= distances[i - 1]:
            raise MalformedRouteData(
                f"Line {line_id}: stop {stop_ids[i]} distance {distances[i]} is not after "
                f"previous stop distance {distances[i - 1]}"
            )
        if offsets[i] <= offsets[i - 1]:
            raise MalformedRouteData(
                f"Line {line_id}: stop {stop_ids[i]} scheduled time is not after previous stop"
            )

    if shape:
        shape_lengths = _cumulative_lengths(points)
        progress = np.interp(shape_lengths, geometric, distances)
        vertices = tuple((lat, lon, float(p)) for (lat, lon), p in zip(points, progress))
    else:
        vertices = tuple((lat, lon, d) for (lat, lon), d in zip(coords, distances))

    stops = tuple(
        Stop(
            stop_id=stop_ids[i],
            name=names[i],
            latitude=coords[i][0],
            longitude=coords[i][1],
            distance_km=distances[i],
            scheduled_offset=timedelta(seconds=offsets[i]),
        )
        for i in range(len(stop_ids))
    )

    departures, daily = _parse_departures(line_id, raw.get("departures") or [], tz)

    try:
        max_speed = float(raw.get("max_speed_kmh", 160.0))
    except (TypeError, ValueError):
        raise MalformedRouteData(f"Line {line_id} has an invalid max_speed_kmh")
    if max_speed <= 0:
        raise MalformedRouteData(f"Line {line_id} has a non-positive max_speed_kmh")

    return Line(
        line_id=line_id,
        name=str(raw.get("name") or line_id),
        destination=str(raw.get("destination") or stops[-1].name),
        stops=stops,
        vertices=vertices,
        departures=tuple(sorted(departures)),
        daily_departures=tuple(sorted(daily)),
        max_speed_kmh=max_speed,
    )


def _cumulative_lengths(points: List[Tuple[float, float]]) -> List[float]:
    lengths = [0.0]
    for (lat_a, lon_a), (lat_b, lon_b) in zip(points, points[1:]):
        lengths.append(lengths[-1] + haversine_km(lat_a, lon_a, lat_b, lon_b))
    return lengths


def _snap_stops_to_shape(
    line_id: str,
    points: List[Tuple[float, float]],
    stop_coords: List[Tuple[float, float]],
) -> List[float]:
    """Geometric position of each stop along a shape, searching forward only."""
    if len(points) < 2:
        raise MalformedRouteData(f"Line {line_id} shape needs at least two points")
    lengths = _cumulative_lengths(points)

    positions = []
    start_segment = 0
    previous = -1.0
    for lat, lon in stop_coords:
        best = None
        for i in range(start_segment, len(points) - 1):
            t, distance = project_onto_segment(lat, lon, *points[i], *points[i + 1])
            position = lengths[i] + t * (lengths[i + 1] - lengths[i])
            if position <= previous:
                continue
            if best is None or distance < best[0]:
                best = (distance, position, i)
        if best is None or best[0] > MAX_STOP_SNAP_KM:
            raise MalformedRouteData(f"Line {line_id}: stops do not lie in order along the shape")
        previous = best[1]
        start_segment = best[2]
        positions.append(best[1])
    return positions


def _parse_departures(line_id: str, values: List[Any], tz) -> Tuple[List[datetime], List[timedelta]]:
    """Split departures into absolute datetimes and daily times of day."""
    absolute: List[datetime] = []
    daily: List[timedelta] = []
    for value in values:
        if isinstance(value, datetime):
            absolute.append(_as_utc(value, tz))
            continue
        text = str(value).strip()
        if "T" in text or "-" in text:
            try:
                absolute.append(_as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")), tz))
            except ValueError:
                raise MalformedRouteData(f"Line {line_id}: invalid departure '{text}'")
            continue
        parts = text.split(":")
        try:
            if len(parts) not in (2, 3):
                raise ValueError(text)
            hours, minutes = int(parts[0]), int(parts[1])
            seconds = int(parts[2]) if len(parts) == 3 else 0
            if not (0 <= minutes < 60 and 0 <= seconds < 60 and 0 <= hours < 30):
                raise ValueError(text)
        except ValueError:
            raise MalformedRouteData(f"Line {line_id}: invalid departure '{text}'")
        daily.append(timedelta(hours=hours, minutes=minutes, seconds=seconds))
    return absolute, daily


def _as_utc(value: datetime, tz) -> datetime:
    if value.tzinfo is None:
        value = tz.localize(value)
    return value.astimezone(pytz.utc)
