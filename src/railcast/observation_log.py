"""Append-only JSON-lines log of normalized observations, and replay from it."""

import json
import logging
import threading
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterator, Union

from .models import Observation

logger = logging.getLogger(__name__)


def observation_to_record(observation: Observation) -> Dict[str, Any]:
    """Raw record form of an observation, accepted back by the normalizer."""
    record: Dict[str, Any] = {
        "vehicle_id": observation.vehicle_id,
        "timestamp": observation.timestamp.isoformat(),
        "latitude": observation.latitude,
        "longitude": observation.longitude,
    }
    if observation.line_hint is not None:
        record["line_hint"] = observation.line_hint
    if observation.destination_hint is not None:
        record["destination_hint"] = observation.destination_hint
    return record


class ObservationLog:
    """One observation per line; appends are serialized and flushed."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, observation: Observation) -> None:
        line = json.dumps(observation_to_record(observation), separators=(",", ":"))
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return read_observation_log(self.path)


def read_observation_log(path: Union[str, Path]) -> Iterator[Dict[str, Any]]:
    """
    Lazily yield records from a log file.

    Blank lines are skipped; corrupt lines are logged and skipped so a torn
    final write does not stop a replay. Calling again restarts from the top.
    """
    with open(path, "r", encoding="utf-8") as f:
        for number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping corrupt log line {number} in {path}: {e}")
                continue
            if not isinstance(record, dict):
                logger.warning(f"Skipping non-object log line {number} in {path}")
                continue
            yield record


def replay(engine, path: Union[str, Path]) -> Counter:
    """
    Rebuild engine state from a log; returns outcome counts.

    Logged observations were accepted once already, so they are ingested as
    trusted and gaps in the log move the observation clock straight away.
    """
    logger.info(f"Replaying observations from {path}")
    outcomes = engine.consume(read_observation_log(path), trusted=True)
    logger.info(f"Replay finished: {dict(outcomes)}")
    return outcomes
