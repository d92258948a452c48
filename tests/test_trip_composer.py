"""Tests for multi-leg trip feasibility."""

import unittest
from datetime import timedelta

from route_fixtures import T0

from railcast.models import (
    Forecast,
    LegForecast,
    NoForecast,
    NoForecastReason,
    PlanStatus,
    TripLeg,
)
from railcast.trip_composer import compose


def forecast(vehicle_id, stop_id, minutes, band_s=60):
    predicted = T0 + timedelta(minutes=minutes)
    band = timedelta(seconds=band_s)
    return Forecast(
        vehicle_id=vehicle_id,
        line_id="L",
        stop_id=stop_id,
        predicted_arrival=predicted,
        earliest=predicted - band,
        latest=predicted + band,
        scheduled_arrival=predicted,
    )


LEGS = [
    TripLeg("V1", "L", "A", "B"),
    TripLeg("V2", "M", "B", "E"),
]


class TestCompose(unittest.TestCase):
    """Test transfer checks between consecutive legs."""

    def test_feasible_with_comfortable_margin(self):
        plan = compose(LEGS, [
            LegForecast(forecast("V1", "A", 0), forecast("V1", "B", 10)),
            LegForecast(forecast("V2", "B", 20), forecast("V2", "E", 35)),
        ])
        self.assertEqual(plan.status, PlanStatus.FEASIBLE)
        self.assertTrue(plan.feasible)
        transfer = plan.transfers[0]
        self.assertEqual(transfer.margin, timedelta(minutes=7))
        self.assertTrue(transfer.robust)
        self.assertEqual(plan.arrival.stop_id, "E")

    def test_feasible_but_not_robust(self):
        plan = compose(LEGS, [
            LegForecast(forecast("V1", "A", 0), forecast("V1", "B", 10, band_s=120)),
            LegForecast(forecast("V2", "B", 14, band_s=120), forecast("V2", "E", 30)),
        ])
        self.assertEqual(plan.status, PlanStatus.FEASIBLE)
        self.assertFalse(plan.transfers[0].robust)

    def test_infeasible_when_slack_does_not_fit(self):
        plan = compose(LEGS, [
            LegForecast(forecast("V1", "A", 0), forecast("V1", "B", 10)),
            LegForecast(forecast("V2", "B", 12), forecast("V2", "E", 27)),
        ])
        self.assertEqual(plan.status, PlanStatus.INFEASIBLE)
        self.assertFalse(plan.feasible)
        self.assertEqual(plan.transfers[0].margin, timedelta(minutes=-1))

    def test_custom_slack(self):
        legs = [TripLeg("V1", "L", "A", "B", transfer_slack=timedelta(minutes=1)), LEGS[1]]
        plan = compose(legs, [
            LegForecast(forecast("V1", "A", 0), forecast("V1", "B", 10)),
            LegForecast(forecast("V2", "B", 12), forecast("V2", "E", 27)),
        ])
        self.assertEqual(plan.status, PlanStatus.FEASIBLE)

    def test_missing_forecast_is_indeterminate(self):
        unknown = NoForecast("V2", "B", NoForecastReason.UNKNOWN_VEHICLE)
        plan = compose(LEGS, [
            LegForecast(forecast("V1", "A", 0), forecast("V1", "B", 10)),
            LegForecast(unknown, NoForecast("V2", "E", NoForecastReason.UNKNOWN_VEHICLE)),
        ])
        self.assertEqual(plan.status, PlanStatus.INDETERMINATE)
        self.assertIsNone(plan.feasible)
        self.assertIn(unknown, plan.missing)
        self.assertEqual(plan.transfers, [])

    def test_first_leg_may_have_passed_its_boarding_stop(self):
        passed = NoForecast("V1", "A", NoForecastReason.STOP_PASSED)
        plan = compose(LEGS, [
            LegForecast(passed, forecast("V1", "B", 10)),
            LegForecast(forecast("V2", "B", 20), forecast("V2", "E", 35)),
        ])
        self.assertEqual(plan.status, PlanStatus.FEASIBLE)

    def test_single_leg(self):
        plan = compose(LEGS[:1], [LegForecast(None, forecast("V1", "B", 10))])
        self.assertEqual(plan.status, PlanStatus.FEASIBLE)
        self.assertEqual(plan.transfers, [])

    def test_mismatched_lengths(self):
        with self.assertRaises(ValueError):
            compose(LEGS, [LegForecast(None, forecast("V1", "B", 10))])
        with self.assertRaises(ValueError):
            compose([], [])


if __name__ == "__main__":
    unittest.main()
