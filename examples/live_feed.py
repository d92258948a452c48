#!/usr/bin/env python3
"""
Poll a GTFS-Realtime vehicle positions feed, track vehicles and log
accepted observations for later replay.
"""

import logging
import os
import sys
import time
from pathlib import Path

import requests

# Add src to path so we can import railcast
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from railcast import EngineConfig, PredictionEngine
from railcast.analysis import delay_summary
from railcast.feeds import fetch_gtfs_rt
from railcast.observation_log import ObservationLog

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

POLL_INTERVAL = 30  # seconds


def main():
    routes = os.environ.get("RAILCAST_ROUTES")
    feed_url = os.environ.get("RAILCAST_FEED_URL")
    if not routes or not feed_url:
        print("Set RAILCAST_ROUTES and RAILCAST_FEED_URL")
        sys.exit(1)

    headers = {}
    if os.environ.get("RAILCAST_FEED_KEY"):
        headers["x-api-key"] = os.environ["RAILCAST_FEED_KEY"]

    engine = PredictionEngine.from_routes(routes, config=EngineConfig.from_env())
    log = ObservationLog(os.environ.get("RAILCAST_LOG", "observations.jsonl"))
    engine.store.add_eviction_listener(
        lambda evicted: logger.info(f"Lost vehicle {evicted.track.vehicle_id}")
    )

    while True:
        try:
            records = fetch_gtfs_rt(feed_url, headers=headers)
        except requests.RequestException:
            time.sleep(POLL_INTERVAL)
            continue

        for result in engine.ingest_many(records):
            if result.accepted:
                log.append(result.observation)

        summary = delay_summary(engine.tracks())
        if not summary.empty:
            logger.info(f"Tracking {len(engine.tracks())} vehicles\n{summary.to_string()}")
        time.sleep(POLL_INTERVAL)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nStopped")
