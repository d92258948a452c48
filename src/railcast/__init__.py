"""railcast - Delay estimation and arrival forecasts for commuter rail vehicles."""

__version__ = "0.1.0"

from .config import EngineConfig
from .engine import PredictionEngine
from .errors import InvalidObservation, MalformedRouteData, StaleObservation
from .models import (
    DelayEstimate,
    Forecast,
    IngestResult,
    IngestStatus,
    NoForecast,
    Observation,
    PlanStatus,
    TripLeg,
    TripPlan,
    VehicleTrack,
)
from .route_graph import RouteGraph, load_routes, load_routes_from_csv

__all__ = [
    "PredictionEngine",
    "EngineConfig",
    "RouteGraph",
    "load_routes",
    "load_routes_from_csv",
    "MalformedRouteData",
    "InvalidObservation",
    "StaleObservation",
    "Observation",
    "VehicleTrack",
    "DelayEstimate",
    "Forecast",
    "NoForecast",
    "IngestResult",
    "IngestStatus",
    "TripLeg",
    "TripPlan",
    "PlanStatus",
]
