from datetime import timedelta

import pytest

from habit.defaults import default_habits
from habit.depletion import (
    InventoryForecaster,
    categorize_urgency,
    forecast,
    is_inventory_habit,
    upcoming_use_days,
)
from factories import NOW, make_habit

MON_WED_FRI = [0, 2, 4]
SUNDAY = 6


def test_sunday_forecast_runs_out_on_friday():
    result = forecast(stock=3, rate=1, use_weekdays=MON_WED_FRI, today_weekday=SUNDAY)
    assert result.days_until_depletion == 5
    assert result.urgency == "low"
    assert result.friction_boost == pytest.approx(0.05)
    assert result.sessions_until_empty == 3
    assert result.stock_after_next_use == 2
    assert result.recommended_action_in_days == 3


def test_use_days_are_offsets_from_today():
    assert upcoming_use_days(MON_WED_FRI, SUNDAY, lookahead=7) == [1, 3, 5]
    assert upcoming_use_days([], SUNDAY) == []


@pytest.mark.parametrize(
    "days,urgency",
    [(-1, "critical"), (0, "critical"), (1, "high"), (2, "medium"), (3, "medium"), (4, "low"), (5, "low"), (6, "none")],
)
def test_urgency_bands(days, urgency):
    assert categorize_urgency(days) == urgency


def test_empty_and_unused_stock():
    assert forecast(0, 1, MON_WED_FRI, SUNDAY).urgency == "high"
    assert forecast(0, 1, [], SUNDAY).urgency == "critical"
    assert forecast(2, 1, [], SUNDAY).days_until_depletion == 14
    assert forecast(20, 1, MON_WED_FRI, SUNDAY).urgency == "none"


def test_forecaster_writes_predicted_date_and_moves_stock():
    laundry = next(h for h in default_habits() if h.id == "laundry")
    assert is_inventory_habit(laundry)
    assert not is_inventory_habit(make_habit())

    sunday = NOW + timedelta(days=4)
    forecaster = InventoryForecaster()
    laundry.metadata["clean_count"] = 1
    result = forecaster.forecast_for(laundry, sunday)
    assert result.urgency == "high"
    assert laundry.metadata["predicted_depletion_date"] == (sunday + timedelta(days=1)).isoformat()
    assert forecaster.friction_boost(laundry, sunday) == pytest.approx(0.3)

    forecaster.consume(laundry)
    assert laundry.metadata["clean_count"] == 0
    assert laundry.metadata["dirty_count"] == 1
    forecaster.consume(laundry)
    assert laundry.metadata["clean_count"] == 0
    assert laundry.metadata["dirty_count"] == 1

    forecaster.replenish(laundry, sunday)
    assert laundry.metadata["clean_count"] == 1
    assert laundry.metadata["dirty_count"] == 0
    assert laundry.last_completion_timestamp == sunday
