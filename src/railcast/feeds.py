"""Adapters from provider feed formats to raw position records."""

import json
import logging
from collections import Counter
from typing import Any, Dict, Iterable, Iterator, List, Optional

import requests
from google.transit import gtfs_realtime_pb2

logger = logging.getLogger(__name__)

# geOps realtime websocket sources that carry vehicle trajectories
GEOPS_TRAJECTORY_SOURCES = ("trajectory", "trajectory_schematic")

# Provider properties passed through unchanged, keyed by record field
GEOPS_PROVIDER_FIELDS = {
    "providerDelay": "delay",
    "providerState": "state",
    "rideState": "ride_state",
}


def record_from_geops_message(text: str) -> Optional[Dict[str, Any]]:
    """
    Convert one geOps realtime websocket message into a raw record.

    Messages look like {"source": ..., "content": ..., "timestamp": <ms>}.
    Only trajectory messages carry positions; their content is a GeoJSON
    feature whose properties hold raw_coordinates as [lon, lat], the vehicle
    number and the line. The provider's own delay, state and ride_state are
    carried through as providerDelay, providerState and rideState so they can
    be compared with the engine's estimates; the engine ignores them.

    Returns:
        Raw record, or None for messages without a usable vehicle position.
    """
    try:
        message = json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug(f"Unable to parse geOps message: {e}")
        return None
    if not isinstance(message, dict) or message.get("source") not in GEOPS_TRAJECTORY_SOURCES:
        return None

    content = message.get("content")
    if not isinstance(content, dict) or content.get("type") != "Feature":
        return None
    properties = content.get("properties") or {}

    coordinates = properties.get("raw_coordinates")
    if not isinstance(coordinates, list) or len(coordinates) != 2:
        return None

    vehicle_id = properties.get("vehicle_number") or properties.get("train_id")
    if not vehicle_id:
        return None

    record: Dict[str, Any] = {
        "vehicleId": str(vehicle_id),
        "timestamp": message.get("timestamp"),
        "longitude": coordinates[0],
        "latitude": coordinates[1],
    }
    line = properties.get("line")
    if isinstance(line, dict) and line.get("name"):
        record["lineHint"] = line["name"]
    if properties.get("destination"):
        record["destinationHint"] = properties["destination"]
    for field_name, key in GEOPS_PROVIDER_FIELDS.items():
        if properties.get(key) is not None:
            record[field_name] = properties[key]
    return record


def records_from_geops_log(
    lines: Iterable[str],
    counts: Counter = None,
    property_counts: Counter = None,
) -> Iterator[Dict[str, Any]]:
    """
    Lazily convert a scraped geOps message log into raw records.

    Args:
        lines: Lines of the log, one message each.
        counts: Optional Counter updated with the source of every message,
            useful to see what a capture contains.
        property_counts: Optional Counter of (property, value) pairs for the
            line, delay, state and ride_state of every converted trajectory.
            Missing values are counted as None.
    """
    for line in lines:
        line = line.strip()
        if not line:
            continue
        if counts is not None:
            try:
                counts[json.loads(line).get("source", "unknown")] += 1
            except (json.JSONDecodeError, AttributeError):
                counts["unparseable"] += 1
        record = record_from_geops_message(line)
        if record is None:
            continue
        if property_counts is not None:
            property_counts[("line", record.get("lineHint"))] += 1
            for field_name, key in GEOPS_PROVIDER_FIELDS.items():
                property_counts[(key, record.get(field_name))] += 1
        yield record


def records_from_gtfs_rt(feed_data: bytes) -> List[Dict[str, Any]]:
    """
    Convert a GTFS-Realtime FeedMessage into raw records.

    Args:
        feed_data: Raw protobuf bytes.

    Returns:
        One record per vehicle entity with a position; the route id becomes
        the line hint.
    """
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.ParseFromString(feed_data)
    header_time = feed.header.timestamp if feed.header.HasField("timestamp") else None

    records: List[Dict[str, Any]] = []
    for entity in feed.entity:
        if not entity.HasField("vehicle"):
            continue
        vehicle = entity.vehicle
        if not vehicle.HasField("position"):
            continue

        vehicle_id = vehicle.vehicle.id or vehicle.vehicle.label or entity.id
        timestamp = vehicle.timestamp if vehicle.HasField("timestamp") else header_time
        record: Dict[str, Any] = {
            "vehicleId": vehicle_id,
            "timestamp": timestamp,
            "latitude": vehicle.position.latitude,
            "longitude": vehicle.position.longitude,
        }
        if vehicle.trip.route_id:
            record["lineHint"] = vehicle.trip.route_id
        records.append(record)

    logger.debug(f"Parsed {len(records)} vehicle positions from GTFS-Realtime feed")
    return records


def fetch_gtfs_rt(feed_url: str, headers: Dict[str, str] = None, timeout: float = 10) -> List[Dict[str, Any]]:
    """
    Download a GTFS-Realtime vehicle positions feed and convert it.

    Args:
        feed_url: Full URL to the feed.
        headers: Extra request headers, e.g. an API key.
        timeout: Request timeout in seconds.

    Returns:
        Raw records, see records_from_gtfs_rt.
    """
    logger.debug(f"Fetching {feed_url}")
    try:
        response = requests.get(feed_url, headers=headers, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"Failed to fetch {feed_url}: {e}")
        raise
    return records_from_gtfs_rt(response.content)
