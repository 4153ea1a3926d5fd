from __future__ import annotations
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from loguru import logger

from context.snapshot import ContextSnapshot
from tools.fields import FieldUpdate
from .depletion import InventoryForecaster, is_inventory_habit
from .models import HabitState, NudgeRecord, utcnow
from .scoring import clamp, compute_friction, compute_momentum, compute_resistance
from .storage import HabitStore

STREAK_GAP = timedelta(hours=36)
RATE_DECAY = 0.85

log = logger.bind(source="scoring")


class ScoringEngine:
    """Sole writer of friction, resistance and momentum, and of streak bookkeeping.

    Every operation on an unknown habit id returns None without raising.
    """

    def __init__(self, storage: HabitStore, forecaster: InventoryForecaster | None = None,
                 clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.forecaster = forecaster or InventoryForecaster()
        self.clock = clock

    async def recalculate_all(self, context: ContextSnapshot) -> List[HabitState]:
        now = context.timestamp
        habits = await self.storage.get_all_habits()
        updated: List[HabitState] = []
        for habit in habits:
            boost = self.forecaster.friction_boost(habit, now) if is_inventory_habit(habit) else 0.0
            habit.friction_score = compute_friction(habit, context, boost)
            habit.resistance_score = compute_resistance(habit.recent_nudge_outcomes)
            habit.momentum_score = compute_momentum(habit, now)
            await self._save(habit)
            updated.append(habit)
        log.debug(f"Recalculated {len(updated)} habits")
        return updated

    async def record_completion(self, habit_id: str) -> Optional[HabitState]:
        habit = await self.storage.get_habit(habit_id)
        if habit is None:
            return None
        now = self.clock()
        last = habit.last_completion_timestamp
        if last is not None and now - last <= STREAK_GAP:
            habit.streak_count += 1
        else:
            habit.streak_count = 1
        habit.last_completion_timestamp = now
        habit.completion_rate_7d = min(1.0, habit.completion_rate_7d * RATE_DECAY + (1 - RATE_DECAY))
        if is_inventory_habit(habit):
            self.forecaster.replenish(habit, now)
        habit.momentum_score = compute_momentum(habit, now)
        await self._save(habit)
        log.info(f"{habit.name} completed: streak={habit.streak_count} momentum={habit.momentum_score}")
        await self._consume_linked_inventory(habit_id)
        return habit

    async def record_nudge_outcome(self, habit_id: str, record: NudgeRecord) -> Optional[HabitState]:
        habit = await self.storage.get_habit(habit_id)
        if habit is None:
            return None
        habit.add_nudge(record)
        self._rescore(habit)
        await self._save(habit)
        return habit

    async def resolve_latest_nudge(self, habit_id: str, outcome: str) -> Optional[HabitState]:
        """Set ``outcome`` on the newest unresolved nudge of a habit."""
        habit = await self.storage.get_habit(habit_id)
        if habit is None:
            return None
        for record in reversed(habit.recent_nudge_outcomes):
            if record.outcome is None:
                record.outcome = outcome
                break
        else:
            habit.add_nudge(NudgeRecord(self.clock(), "gentle", "", outcome))
        self._rescore(habit)
        await self._save(habit)
        return habit

    async def apply_field_update(self, habit_id: str, update: FieldUpdate) -> Optional[HabitState]:
        habit = await self.storage.get_habit(habit_id)
        if habit is None:
            return None
        previous = update.apply(habit)
        habit.momentum_score = compute_momentum(habit, self.clock())
        await self._save(habit)
        log.info(f"{habit_id}.{update.field.value}: {previous} -> {update.value}")
        return habit

    async def adjust_resistance(self, habit_id: str, delta: float) -> Optional[HabitState]:
        habit = await self.storage.get_habit(habit_id)
        if habit is None:
            return None
        habit.resistance_score = clamp(habit.resistance_score + delta)
        habit.momentum_score = compute_momentum(habit, self.clock())
        await self._save(habit)
        return habit

    async def consume_inventory(self, habit_id: str) -> Optional[HabitState]:
        habit = await self.storage.get_habit(habit_id)
        if habit is None or not is_inventory_habit(habit):
            return None
        self.forecaster.consume(habit)
        await self._save(habit)
        return habit

    async def _consume_linked_inventory(self, habit_id: str):
        # inventory habits name the habit that uses their stock via metadata.consumed_by
        for other in await self.storage.get_all_habits():
            if other.id != habit_id and is_inventory_habit(other) and other.metadata.get("consumed_by") == habit_id:
                self.forecaster.consume(other)
                await self._save(other)

    def _rescore(self, habit: HabitState):
        habit.resistance_score = compute_resistance(habit.recent_nudge_outcomes)
        habit.momentum_score = compute_momentum(habit, self.clock())

    async def _save(self, habit: HabitState):
        try:
            await self.storage.save_habit(habit)
        except Exception:
            logger.exception(f"Persisting habit {habit.id} failed")
