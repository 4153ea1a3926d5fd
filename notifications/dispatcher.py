from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Deque, List, Optional

from loguru import logger

from core.side_effects import fire_and_forget
from habit.models import utcnow

TONE_TITLES = {
    "gentle": "Momentum 💫",
    "firm": "Momentum ⚡",
    "playful": "Momentum 👉",
}

log = logger.bind(source="notify")


@dataclass
class NudgePayload:
    habit_id: str
    tone: str
    message: str
    timestamp: datetime

    @property
    def title(self) -> str:
        return TONE_TITLES.get(self.tone, TONE_TITLES["gentle"])


class NotificationDispatcher:
    """Delivers nudges to subscribed presenters and keeps a short history.

    Presenter failures never propagate to the caller. User reactions to a
    nudge come back through ``handle_action``.
    """

    def __init__(self, engine: Any = None, aggregator: Any = None, history_size: int = 100,
                 clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self.aggregator = aggregator
        self.clock = clock
        self._history: Deque[NudgePayload] = deque(maxlen=history_size)
        self._listeners: List[Callable[[NudgePayload], Any]] = []

    def subscribe(self, listener: Callable[[NudgePayload], Any]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def send(self, habit_id: str, tone: str, message: str, timestamp: Optional[datetime] = None) -> NudgePayload:
        payload = NudgePayload(habit_id, tone, message, timestamp or self.clock())
        self._history.append(payload)
        for listener in list(self._listeners):
            await fire_and_forget(lambda l=listener: l(payload), f"nudge presenter for {habit_id}")
        log.info(f"[{tone}] {habit_id} -> \"{message}\"")
        return payload

    def history(self) -> List[NudgePayload]:
        return list(self._history)

    def last(self) -> Optional[NudgePayload]:
        return self._history[-1] if self._history else None

    async def handle_action(self, habit_id: str, outcome: str):
        """Record how the user reacted to the latest nudge of ``habit_id``."""
        if self.aggregator is not None:
            self.aggregator.record_nudge_interaction(outcome)
        if self.engine is None:
            return
        await self.engine.resolve_latest_nudge(habit_id, outcome)
        if outcome == "completed":
            await self.engine.record_completion(habit_id)
        log.info(f"{habit_id}: user {outcome}")
