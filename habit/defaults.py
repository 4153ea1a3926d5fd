from __future__ import annotations
from typing import List

from .models import HabitState, TimeWindow

WEEKDAYS = [0, 1, 2, 3, 4]
WEEKEND = [5, 6]
EVERY_DAY = [0, 1, 2, 3, 4, 5, 6]


def default_habits() -> List[HabitState]:
    """Starter habit set written on first run."""
    return [
        HabitState(
            id="gym",
            name="Gym Workout",
            category="fitness",
            preferred_time_windows=[TimeWindow(6, 9, WEEKDAYS, 0.8), TimeWindow(17, 20, WEEKDAYS, 0.6)],
            resistance_score=0.3,
        ),
        HabitState(
            id="laundry",
            name="Gym Laundry",
            category="hygiene",
            preferred_time_windows=[TimeWindow(19, 22, [2, 5, 6], 0.7)],
            resistance_score=0.4,
            metadata={
                "total_gym_clothes": 7,
                "clean_count": 7,
                "dirty_count": 0,
                "last_wash_timestamp": None,
                "gym_days": [0, 2, 4],
                "avg_clothes_per_session": 1,
                "depletion_rate": 0.43,
                "predicted_depletion_date": None,
                "consumed_by": "gym",
            },
        ),
        HabitState(
            id="reading",
            name="Reading",
            category="learning",
            preferred_time_windows=[TimeWindow(21, 23, EVERY_DAY, 0.9), TimeWindow(7, 9, WEEKEND, 0.5)],
            resistance_score=0.15,
        ),
        HabitState(
            id="meditation",
            name="Meditation",
            category="mindfulness",
            preferred_time_windows=[TimeWindow(6, 8, EVERY_DAY, 0.9), TimeWindow(20, 22, EVERY_DAY, 0.6)],
            resistance_score=0.2,
            metadata={"target_minutes": 10},
        ),
        HabitState(
            id="hydration",
            name="Drink Water",
            category="health",
            preferred_time_windows=[TimeWindow(8, 20, EVERY_DAY, 0.5)],
            resistance_score=0.05,
            metadata={"glasses_target": 8, "glasses_today": 0},
        ),
        HabitState(
            id="walking",
            name="Daily Walk",
            category="fitness",
            preferred_time_windows=[TimeWindow(12, 14, WEEKDAYS, 0.7), TimeWindow(17, 19, WEEKEND, 0.8)],
            resistance_score=0.1,
            metadata={"step_goal": 8000},
        ),
    ]
