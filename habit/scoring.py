"""Deterministic momentum / friction / resistance scoring.

raw = 0.25*streak + 0.30*recency + 0.25*completion_rate_7d
      - 0.10*friction - 0.10*resistance
momentum = round(clamp(raw * 100, 0, 100))
"""
from __future__ import annotations
import math
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

import numpy as np

from context.snapshot import ContextSnapshot
from .models import HabitState, NudgeRecord

W_STREAK = 0.25
W_RECENCY = 0.30
W_SUCCESS = 0.25
W_FRICTION = 0.10
W_RESISTANCE = 0.10

STREAK_SATURATION = 14
RECENCY_HALF_LIFE_HOURS = 36.0
RESISTANCE_WINDOW = 10
NEUTRAL_RESISTANCE = 0.2
MILESTONE_STREAKS = (3, 7, 14, 21, 30, 60, 100)

NEGATIVE_OUTCOMES = ("dismissed", "ignored")


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def streak_factor(streak: int) -> float:
    return min(streak / STREAK_SATURATION, 1.0)


def hours_since(ts: Optional[datetime], now: datetime) -> Optional[float]:
    if ts is None:
        return None
    return (now - ts).total_seconds() / 3600.0


def recency_factor(hours: Optional[float]) -> float:
    if hours is None:
        return 0.0
    if hours < 0:
        # clock skew, completion stamped in the future
        return 1.0
    return 0.5 ** (hours / RECENCY_HALF_LIFE_HOURS)


def compute_momentum(habit: HabitState, now: datetime) -> int:
    raw = (
        W_STREAK * streak_factor(habit.streak_count)
        + W_RECENCY * recency_factor(hours_since(habit.last_completion_timestamp, now))
        + W_SUCCESS * habit.completion_rate_7d
        - W_FRICTION * habit.friction_score
        - W_RESISTANCE * habit.resistance_score
    )
    return int(round(clamp(raw * 100, 0, 100)))


def momentum_tier(score: float) -> str:
    if score < 15:
        return "critical"
    if score < 35:
        return "low"
    if score < 55:
        return "building"
    if score < 80:
        return "steady"
    return "peak"


def is_in_recovery(habit: HabitState) -> bool:
    return habit.momentum_score < 20 and habit.streak_count == 0


def is_milestone(habit: HabitState) -> bool:
    return habit.streak_count in MILESTONE_STREAKS


def predict_momentum_decay(habit: HabitState, now: datetime, target_score: int = 15) -> Optional[int]:
    """Days until momentum falls to ``target_score`` if nothing is completed (None beyond a week)."""
    if habit.momentum_score <= target_score:
        return 0
    broken = replace(habit, streak_count=0)
    for hours in range(1, 169):
        if compute_momentum(broken, now + timedelta(hours=hours)) <= target_score:
            return math.ceil(hours / 24)
    return None


def in_preferred_window(habit: HabitState, context: ContextSnapshot) -> bool:
    tod = context.time_of_day
    return any(w.contains(tod.day_of_week, tod.hour) for w in habit.preferred_time_windows)


def compute_friction(habit: HabitState, context: ContextSnapshot, depletion_boost: float = 0.0) -> float:
    friction = 0.0
    if context.calendar.current_event:
        friction += 0.4
    if context.motion.state == "driving":
        friction += 0.5

    hour = context.time_of_day.hour
    if hour < 6 or hour > 23:
        friction += 0.6
    elif hour < 7 or hour > 22:
        friction += 0.3

    if context.screen.continuous_usage_minutes > 30:
        friction += 0.15
    if in_preferred_window(habit, context):
        friction -= 0.25
    if context.time_of_day.is_weekend:
        friction -= 0.1

    return min(1.0, clamp(friction) + depletion_boost)


def compute_resistance(outcomes: Sequence[NudgeRecord] | Iterable[NudgeRecord]) -> float:
    """Recency-weighted share of negative outcomes over the last 10 nudges."""
    recent = list(outcomes)[-RESISTANCE_WINDOW:]
    if not recent:
        return NEUTRAL_RESISTANCE
    weights = np.arange(1, len(recent) + 1, dtype=float) / len(recent)
    negative = np.array([r.outcome in NEGATIVE_OUTCOMES for r in recent])
    total = float(weights.sum())
    if total == 0:
        return NEUTRAL_RESISTANCE
    return clamp(float(weights[negative].sum()) / total)
