"""Example usage of PredictionEngine: replay a capture and query forecasts."""

import logging
import sys
from pathlib import Path

# Add src to path so we can import railcast
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from railcast import PredictionEngine
from railcast.analysis import delay_summary, ingest_summary
from railcast.errors import MalformedRouteData
from railcast.feeds import records_from_geops_log
from railcast.models import Forecast
from railcast.observation_log import read_observation_log

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def load_capture(engine: PredictionEngine, capture: str):
    """
    Feed a capture file into the engine.

    Args:
        capture: Either an observation log written by ObservationLog, or a
            raw geOps websocket capture (one message per line).
    """
    with open(capture, "r", encoding="utf-8") as f:
        first_line = f.readline()

    if '"source"' in first_line:
        with open(capture, "r", encoding="utf-8") as f:
            outcomes = engine.consume(records_from_geops_log(f))
    else:
        outcomes = engine.consume(read_observation_log(capture), trusted=True)
    logger.info(f"Ingested {sum(outcomes.values())} records: {dict(outcomes)}")


def print_vehicle(engine: PredictionEngine, vehicle_id: str):
    """Display the delay and remaining forecasts of one vehicle."""
    track = engine.get_track(vehicle_id)
    if track is None:
        reason = "evicted" if engine.store.was_evicted(vehicle_id) else "unknown"
        print(f"No data for {vehicle_id} ({reason})")
        return

    line = engine.graph.get_line(track.line_id)
    print(f"\nVehicle {vehicle_id} on {line.name} to {line.destination}")
    print(f"Progress: {track.progress_km:.1f} of {line.length_km:.1f} km")
    if track.delay:
        print(f"Delay: {track.delay.delay_minutes:+.1f} min (± {track.delay.std_dev.total_seconds():.0f} s)")

    print("-" * 70)
    for forecast in engine.get_forecasts(vehicle_id):
        stop = line.get_stop(forecast.stop_id)
        print(
            f"  {stop.name:<30} {forecast.predicted_arrival.strftime('%H:%M:%S')}"
            f"  [{forecast.earliest.strftime('%H:%M')} - {forecast.latest.strftime('%H:%M')}]"
        )


def print_report(engine: PredictionEngine):
    print(f"\n{'='*70}")
    print("INGESTION:")
    print(ingest_summary(engine.stats).to_string())
    print(f"\n{'='*70}")
    print("DELAYS BY LINE (minutes):")
    summary = delay_summary(engine.tracks())
    print(summary.to_string() if not summary.empty else "  No tracked vehicles")
    print(f"{'='*70}\n")


def interactive_mode(engine: PredictionEngine):
    """Query vehicles and stops until the user quits."""
    print("Enter a vehicle id, or '<vehicle> <stop>' for a single forecast")
    print("(Type 'quit' to exit)\n")

    while True:
        try:
            user_input = input("Query (or 'quit'): ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if user_input.lower() in ["quit", "q", "exit"]:
            print("Goodbye!")
            break
        if not user_input:
            continue

        parts = user_input.split()
        if len(parts) == 1:
            print_vehicle(engine, parts[0])
            continue

        forecast = engine.get_forecast(parts[0], parts[1])
        if isinstance(forecast, Forecast):
            print(
                f"{parts[0]} at {parts[1]}: {forecast.predicted_arrival.strftime('%H:%M:%S')}"
                f" (± {forecast.uncertainty.total_seconds():.0f} s)"
            )
        else:
            print(f"No forecast: {forecast.reason.value}")


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage: example.py ROUTES CAPTURE [VEHICLE ...]")
        sys.exit(1)

    try:
        engine = PredictionEngine.from_routes(sys.argv[1])
    except MalformedRouteData as e:
        print(f"Error: {e}")
        sys.exit(1)

    load_capture(engine, sys.argv[2])
    print_report(engine)

    if len(sys.argv) > 3:
        for vehicle_id in sys.argv[3:]:
            print_vehicle(engine, vehicle_id)
    else:
        interactive_mode(engine)
