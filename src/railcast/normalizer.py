"""Validation and normalization of raw position records."""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .config import EngineConfig
from .errors import FutureObservation, InvalidObservation, StaleObservation
from .models import Observation
from .route_graph import RouteGraph

logger = logging.getLogger(__name__)

# Epoch values above this are taken as milliseconds
EPOCH_MILLIS_THRESHOLD = 1e11


class ObservationNormalizer:
    """
    Turns raw records into Observations.

    Holds only the network bounds and tolerances; the chronological check uses
    the vehicle's last accepted timestamp passed in by the caller, so the
    normalizer never reads or writes vehicle state itself.
    """

    def __init__(self, graph: RouteGraph, config: EngineConfig = None):
        self.graph = graph
        self.config = config or EngineConfig()

    def normalize(
        self,
        raw: Dict[str, Any],
        last_accepted: Optional[datetime] = None,
        last_position: Optional[Tuple[float, float]] = None,
        now: Optional[datetime] = None,
    ) -> Observation:
        """
        Validate a raw record.

        Args:
            raw: Record with vehicleId, timestamp, latitude, longitude and
                optional lineHint / destinationHint.
            last_accepted: Timestamp of the vehicle's last accepted observation.
            last_position: (lat, lon) of that observation, for duplicate detection.
            now: Current time; if given, records more than max_future_skew
                ahead of it are rejected.

        Returns:
            Observation with an aware UTC timestamp.

        Raises:
            InvalidObservation: Missing or implausible fields.
            FutureObservation: Too far ahead of now.
            StaleObservation: Older than last_accepted beyond the clock skew
                tolerance, or a duplicate of it.
        """
        if not isinstance(raw, dict):
            raise InvalidObservation(f"Record is not a mapping: {type(raw).__name__}")

        vehicle_id = _first(raw, "vehicleId", "vehicle_id")
        if vehicle_id is None or str(vehicle_id).strip() == "":
            raise InvalidObservation("Record has no vehicle id")
        vehicle_id = str(vehicle_id).strip()

        timestamp = parse_timestamp(raw.get("timestamp"), vehicle_id)
        latitude = _number(raw.get("latitude"), "latitude", vehicle_id)
        longitude = _number(raw.get("longitude"), "longitude", vehicle_id)

        if not -90.0 <= latitude <= 90.0 or not -180.0 <= longitude <= 180.0:
            raise InvalidObservation(
                f"Coordinates ({latitude}, {longitude}) out of range", vehicle_id
            )
        if not self.graph.contains(latitude, longitude):
            raise InvalidObservation(
                f"Position ({latitude:.5f}, {longitude:.5f}) outside the network", vehicle_id
            )

        if now is not None and timestamp - now > self.config.max_future_skew:
            raise FutureObservation(
                f"Timestamp {timestamp.isoformat()} is more than {self.config.max_future_skew} "
                f"ahead of {now.isoformat()}",
                vehicle_id,
                timestamp,
            )

        if last_accepted is not None:
            if timestamp < last_accepted - self.config.clock_skew_tolerance:
                raise StaleObservation(
                    f"Timestamp {timestamp.isoformat()} precedes last accepted "
                    f"{last_accepted.isoformat()}",
                    vehicle_id,
                )
            if timestamp <= last_accepted and last_position == (latitude, longitude):
                raise StaleObservation("Duplicate of last accepted observation", vehicle_id)
            # Small clock skew: keep order by pinning to the last accepted time
            timestamp = max(timestamp, last_accepted)

        return Observation(
            vehicle_id=vehicle_id,
            timestamp=timestamp,
            latitude=latitude,
            longitude=longitude,
            line_hint=_hint(_first(raw, "lineHint", "line_hint")),
            destination_hint=_hint(_first(raw, "destinationHint", "destination_hint")),
        )


def parse_timestamp(value: Any, vehicle_id: str = None) -> datetime:
    """Parse an ISO-8601 string, epoch seconds/milliseconds or datetime into aware UTC."""
    if value is None or value == "":
        raise InvalidObservation("Record has no timestamp", vehicle_id)

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = _from_epoch(float(value), vehicle_id)
    elif isinstance(value, str):
        text = value.strip()
        try:
            parsed = _from_epoch(float(text), vehicle_id)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                raise InvalidObservation(f"Unparseable timestamp '{value}'", vehicle_id)
    else:
        raise InvalidObservation(f"Unsupported timestamp type {type(value).__name__}", vehicle_id)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _from_epoch(value: float, vehicle_id: str) -> datetime:
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise InvalidObservation(f"Invalid epoch timestamp {value}", vehicle_id)
    if value > EPOCH_MILLIS_THRESHOLD:
        value /= 1000.0
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError):
        raise InvalidObservation(f"Epoch timestamp {value} out of range", vehicle_id)


def _number(value: Any, field_name: str, vehicle_id: str) -> float:
    if value is None or isinstance(value, bool):
        raise InvalidObservation(f"Record has no {field_name}", vehicle_id)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidObservation(f"Invalid {field_name} {value!r}", vehicle_id)
    if math.isnan(number) or math.isinf(number):
        raise InvalidObservation(f"Invalid {field_name} {value!r}", vehicle_id)
    return number


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _hint(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
