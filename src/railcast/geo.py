"""Distance and projection helpers on geographic coordinates."""

from math import asin, cos, radians, sin, sqrt
from typing import Tuple

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometers."""
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * asin(sqrt(a))


def project_onto_segment(
    lat: float,
    lon: float,
    start_lat: float,
    start_lon: float,
    end_lat: float,
    end_lon: float,
) -> Tuple[float, float]:
    """
    Project a point onto a segment.

    Uses an equirectangular approximation around the segment start, which is
    accurate for segments of a few kilometers.

    Returns:
        (t, distance_km) where t in [0, 1] is the fraction along the segment of
        the nearest point and distance_km the distance to it.
    """
    k = radians(1.0) * EARTH_RADIUS_KM
    scale = cos(radians(start_lat))

    seg_x = (end_lon - start_lon) * scale * k
    seg_y = (end_lat - start_lat) * k
    pt_x = (lon - start_lon) * scale * k
    pt_y = (lat - start_lat) * k

    seg_length_sq = seg_x * seg_x + seg_y * seg_y
    if seg_length_sq == 0:
        return 0.0, sqrt(pt_x * pt_x + pt_y * pt_y)

    t = max(0.0, min(1.0, (pt_x * seg_x + pt_y * seg_y) / seg_length_sq))
    dx = pt_x - t * seg_x
    dy = pt_y - t * seg_y
    return t, sqrt(dx * dx + dy * dy)


def offset_position(lat: float, lon: float, north_km: float, east_km: float) -> Tuple[float, float]:
    """Move a point by the given distances; used to build synthetic geometry."""
    k = radians(1.0) * EARTH_RADIUS_KM
    return lat + north_km / k, lon + east_km / (k * cos(radians(lat)))
