"""Depletion forecasting for inventory-backed habits.

A habit is inventory-backed when its metadata tracks a consumable stock
(``clean_count``) that is used up on scheduled weekdays (``gym_days``) and
replenished by completing the habit itself (a wash).
"""
from __future__ import annotations
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List

from loguru import logger

from .models import HabitState

LOOKAHEAD_DAYS = 14

URGENCY_BOOST = {
    "critical": 0.5,
    "high": 0.3,
    "medium": 0.15,
    "low": 0.05,
    "none": 0.0,
}

INVENTORY_KEYS = ("total_gym_clothes", "clean_count", "gym_days")


@dataclass
class DepletionForecast:
    days_until_depletion: int
    recommended_action_in_days: int
    urgency: str
    sessions_until_empty: int
    stock_after_next_use: float

    @property
    def friction_boost(self) -> float:
        return URGENCY_BOOST[self.urgency]


def upcoming_use_days(use_weekdays: Iterable[int], today_weekday: int, lookahead: int = LOOKAHEAD_DAYS) -> List[int]:
    days = set(use_weekdays)
    return [d for d in range(1, lookahead + 1) if (today_weekday + d) % 7 in days]


def categorize_urgency(days_until_depletion: int) -> str:
    if days_until_depletion <= 0:
        return "critical"
    if days_until_depletion <= 1:
        return "high"
    if days_until_depletion <= 3:
        return "medium"
    if days_until_depletion <= 5:
        return "low"
    return "none"


def forecast(stock: float, rate: float, use_weekdays: Iterable[int], today_weekday: int,
             lookahead: int = LOOKAHEAD_DAYS) -> DepletionForecast:
    remaining = stock
    days_until = 0
    for offset in upcoming_use_days(use_weekdays, today_weekday, lookahead):
        remaining -= rate
        if remaining <= 0:
            days_until = offset
            break
    if remaining > 0:
        days_until = lookahead

    buffer = 2 if days_until > 3 else 1
    return DepletionForecast(
        days_until_depletion=days_until,
        recommended_action_in_days=max(0, days_until - buffer),
        urgency=categorize_urgency(days_until),
        sessions_until_empty=math.floor(stock / rate) if rate > 0 else 0,
        stock_after_next_use=max(0, stock - rate),
    )


def is_inventory_habit(habit: HabitState) -> bool:
    return all(key in (habit.metadata or {}) for key in INVENTORY_KEYS)


class InventoryForecaster:
    """Applies ``forecast`` to inventory habits and mutates their stock counters."""

    def __init__(self, lookahead: int = LOOKAHEAD_DAYS):
        self.lookahead = lookahead

    def forecast_for(self, habit: HabitState, now: datetime) -> DepletionForecast | None:
        if not is_inventory_habit(habit):
            return None
        meta = habit.metadata
        result = forecast(
            stock=float(meta.get("clean_count", 0)),
            rate=float(meta.get("avg_clothes_per_session", 1) or 1),
            use_weekdays=meta.get("gym_days", []),
            today_weekday=now.weekday(),
            lookahead=self.lookahead,
        )
        meta["predicted_depletion_date"] = (now + timedelta(days=result.days_until_depletion)).isoformat()
        return result

    def friction_boost(self, habit: HabitState, now: datetime) -> float:
        result = self.forecast_for(habit, now)
        return result.friction_boost if result else 0.0

    def consume(self, habit: HabitState) -> HabitState:
        meta = habit.metadata
        clean = meta.get("clean_count", 0)
        new_clean = max(0, clean - meta.get("avg_clothes_per_session", 1))
        meta["clean_count"] = new_clean
        meta["dirty_count"] = meta.get("dirty_count", 0) + (clean - new_clean)
        logger.debug(f"{habit.id}: consumed {clean - new_clean}, clean={new_clean}")
        return habit

    def replenish(self, habit: HabitState, now: datetime) -> HabitState:
        meta = habit.metadata
        meta["clean_count"] = meta.get("clean_count", 0) + meta.get("dirty_count", 0)
        meta["dirty_count"] = 0
        meta["last_wash_timestamp"] = now.isoformat()
        habit.last_completion_timestamp = now
        return habit
