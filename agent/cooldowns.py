from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from loguru import logger

from habit.models import utcnow
from habit.storage import HabitStore

log = logger.bind(source="agent")


class CooldownController:
    """Single writer of ``cooldown_until``.

    A cooldown only ever moves forward while it is active: extending an
    active cooldown to an earlier instant keeps the later one.
    """

    def __init__(self, storage: HabitStore, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.clock = clock

    async def set_cooldown(self, habit_id: str, minutes: float) -> Optional[datetime]:
        habit = await self.storage.get_habit(habit_id)
        if habit is None:
            return None
        now = self.clock()
        proposed = now + timedelta(minutes=minutes)
        if habit.is_cooling_down(now) and habit.cooldown_until >= proposed:
            return habit.cooldown_until
        habit.cooldown_until = proposed
        await self.storage.save_habit(habit)
        log.info(f"{habit_id} cooling down until {proposed:%H:%M}")
        return proposed

    async def is_cooling_down(self, habit_id: str) -> bool:
        habit = await self.storage.get_habit(habit_id)
        return bool(habit and habit.is_cooling_down(self.clock()))
