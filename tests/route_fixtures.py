"""Synthetic route data shared by the tests."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add src to path so we can import railcast
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from railcast.geo import offset_position

BASE_LAT = 48.0
BASE_LON = 11.5
T0 = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)


def east(km: float):
    """(lat, lon) of a point km east of the network origin."""
    return offset_position(BASE_LAT, BASE_LON, 0.0, km)


def north_of(km_east: float, km_north: float):
    return offset_position(BASE_LAT, BASE_LON, km_north, km_east)


def _stop(stop_id, km, minutes, name=None):
    lat, lon = east(km)
    return {"id": stop_id, "name": name or stop_id, "lat": lat, "lon": lon, "distance_km": km, "arrival_min": minutes}


def line_l(departures=None):
    """Stops A@0min/0km, B@10min/5km, C@22min/12km along an east-west track."""
    return {
        "id": "L",
        "name": "S1",
        "destination": "C",
        "max_speed_kmh": 120,
        "departures": departures if departures is not None else [T0.isoformat()],
        "stops": [_stop("A", 0.0, 0), _stop("B", 5.0, 10), _stop("C", 12.0, 22)],
    }


def line_k():
    """Closely spaced stops A@0/0km, B@1min/1km, X@5min/5km, Y@6min/6km."""
    return {
        "id": "K",
        "name": "S7",
        "destination": "Y",
        "departures": [T0.isoformat()],
        "stops": [_stop("A", 0.0, 0), _stop("B", 1.0, 1), _stop("X", 5.0, 5), _stop("Y", 6.0, 6)],
    }


def line_l_reverse():
    """Same track as L, driven from C back to A."""
    stops = []
    for stop_id, km, minutes in (("C", 12.0, 0), ("B", 5.0, 12), ("A", 0.0, 22)):
        lat, lon = east(km)
        stops.append({"id": stop_id, "lat": lat, "lon": lon, "distance_km": 12.0 - km, "arrival_min": minutes})
    return {
        "id": "L-rev",
        "name": "S1",
        "destination": "A",
        "departures": [(T0 + timedelta(minutes=30)).isoformat()],
        "stops": stops,
    }


def line_m():
    """Branch leaving B to the north: B@0/0km, D@8min/4km, E@15min/8km."""
    stops = []
    for stop_id, km_north, minutes in (("B", 0.0, 0), ("D", 4.0, 8), ("E", 8.0, 15)):
        lat, lon = north_of(5.0, km_north)
        stops.append({"id": stop_id, "lat": lat, "lon": lon, "distance_km": km_north, "arrival_min": minutes})
    return {
        "id": "M",
        "name": "S8",
        "destination": "E",
        "departures": ["08:10", "08:30"],
        "stops": stops,
    }


def network(*lines, bounds=None):
    data = {"timezone": "UTC", "lines": list(lines) or [line_l()]}
    if bounds is not None:
        data["bounds"] = bounds
    return data


def record(vehicle_id, minutes, km, **extra):
    """Raw record for a vehicle on the east-west track."""
    lat, lon = east(km)
    raw = {
        "vehicleId": vehicle_id,
        "timestamp": (T0 + timedelta(minutes=minutes)).isoformat(),
        "latitude": lat,
        "longitude": lon,
    }
    raw.update(extra)
    return raw
