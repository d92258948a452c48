"""Feasibility of multi-leg journeys from per-vehicle forecasts."""

import logging
from typing import List, Sequence

from .models import (
    Forecast,
    LegForecast,
    NoForecast,
    NoForecastReason,
    PlanStatus,
    TransferCheck,
    TripLeg,
    TripPlan,
)

logger = logging.getLogger(__name__)


def compose(legs: Sequence[TripLeg], forecasts_by_leg: Sequence[LegForecast]) -> TripPlan:
    """
    Combine leg forecasts into a trip plan.

    A transfer from leg i to leg i+1 is feasible when the predicted arrival of
    leg i plus its transfer slack is no later than the predicted departure of
    leg i+1's vehicle at the boarding stop. It is robust when that still holds
    for the latest arrival and the earliest departure of the bands.

    Every leg needs an alighting forecast and every leg after the first a
    boarding forecast. If any is missing the plan is indeterminate: missing
    data says nothing about whether the connection works.

    Args:
        legs: Ordered legs of the journey.
        forecasts_by_leg: One LegForecast per leg.

    Returns:
        TripPlan with status feasible, infeasible or indeterminate.
    """
    legs = list(legs)
    forecasts = list(forecasts_by_leg)
    if len(legs) != len(forecasts):
        raise ValueError(f"Got {len(forecasts)} forecasts for {len(legs)} legs")
    if not legs:
        raise ValueError("A trip plan needs at least one leg")

    missing: List[NoForecast] = []
    for index, (leg, forecast) in enumerate(zip(legs, forecasts)):
        if not isinstance(forecast.alight, Forecast):
            missing.append(_as_missing(forecast.alight, leg, leg.alight_stop))
        if index > 0 and not isinstance(forecast.board, Forecast):
            missing.append(_as_missing(forecast.board, leg, leg.board_stop))

    final = forecasts[-1].alight if isinstance(forecasts[-1].alight, Forecast) else None

    if missing:
        logger.debug(f"Trip plan indeterminate; {len(missing)} forecasts missing")
        return TripPlan(legs=legs, status=PlanStatus.INDETERMINATE, missing=missing, arrival=final)

    transfers = []
    for index in range(len(legs) - 1):
        arrival = forecasts[index].alight
        departure = forecasts[index + 1].board
        slack = legs[index].transfer_slack
        margin = departure.predicted_arrival - (arrival.predicted_arrival + slack)
        transfers.append(TransferCheck(
            from_leg=index,
            to_leg=index + 1,
            arrival=arrival.predicted_arrival,
            departure=departure.predicted_arrival,
            slack=slack,
            margin=margin,
            feasible=margin.total_seconds() >= 0,
            robust=departure.earliest >= arrival.latest + slack,
        ))

    status = PlanStatus.FEASIBLE if all(t.feasible for t in transfers) else PlanStatus.INFEASIBLE
    return TripPlan(legs=legs, status=status, transfers=transfers, arrival=final)


def _as_missing(value, leg: TripLeg, stop_id: str) -> NoForecast:
    if isinstance(value, NoForecast):
        return value
    return NoForecast(leg.vehicle_id, stop_id, NoForecastReason.UNKNOWN_VEHICLE)
