"""Event-driven decision cycle.

One cycle collects context, rescores every habit, routes and runs inference,
executes at most one tool call, persists the result and emits it. A cycle
always completes and always emits, whatever fails along the way.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from context.aggregator import ContextAggregator
from context.snapshot import ContextSnapshot
from core.side_effects import fire_and_forget
from habit.engine import ScoringEngine
from habit.models import HabitState, utcnow
from habit.storage import HabitStore
from inference.client import InferenceClient, InferenceRequest
from inference.parser import ToolCall
from inference.router import RoutingDecision, score_prompt_complexity
from integrations.accounts import AccountIntegration
from tools.executor import ToolExecutor, ToolResult
from .cooldowns import CooldownController
from .prompt_builder import build_system_prompt, build_user_prompt

SCROLL_POLL_SECONDS = 30
INACTIVITY_POLL_SECONDS = 60
JITTER_FRACTION = 0.2

log = logger.bind(source="agent")


class TriggerKind(str, Enum):
    INTERVAL = "interval"
    CALENDAR_EVENT_ENDED = "calendar_event_ended"
    PROLONGED_SCROLLING = "prolonged_scrolling"
    PROLONGED_INACTIVITY = "prolonged_inactivity"
    HABIT_COMPLETED = "habit_completed"
    HEALTH_MILESTONE = "health_milestone"
    SLEEP_DETECTED = "sleep_detected"
    EXERCISE_DETECTED = "exercise_detected"
    MANUAL = "manual"
    DEMO = "demo"


@dataclass
class CycleResult:
    trigger: TriggerKind
    timestamp: datetime
    context: ContextSnapshot
    habit_states: List[HabitState]
    prompt_sent: str
    raw_response: str
    tool_call: Optional[ToolCall]
    tool_result: Optional[ToolResult]
    routing_decision: RoutingDecision
    confidence: float
    cycle_duration_ms: float
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "trigger": self.trigger.value,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context.to_dict(),
            "habit_states": [h.to_dict() for h in self.habit_states],
            "prompt_sent": self.prompt_sent,
            "raw_response": self.raw_response,
            "parsed_action": self.tool_call.to_dict() if self.tool_call else None,
            "tool_result": self.tool_result.to_dict() if self.tool_result else None,
            "routing_decision": self.routing_decision.value,
            "confidence": self.confidence,
            "cycle_duration_ms": round(self.cycle_duration_ms, 1),
        }


class DecisionOrchestrator:
    def __init__(
        self,
        aggregator: ContextAggregator,
        engine: ScoringEngine,
        client: InferenceClient,
        executor: ToolExecutor,
        storage: HabitStore,
        cooldowns: Optional[CooldownController] = None,
        integrations: Optional[AccountIntegration] = None,
        interval_minutes: float = 12,
        scroll_threshold_minutes: float = 15,
        inactivity_threshold_minutes: float = 30,
        single_flight: bool = True,
        scheduler: Optional[AsyncIOScheduler] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.aggregator = aggregator
        self.engine = engine
        self.client = client
        self.executor = executor
        self.storage = storage
        self.cooldowns = cooldowns or CooldownController(storage, clock)
        self.integrations = integrations
        self.interval_minutes = interval_minutes
        self.scroll_threshold_minutes = scroll_threshold_minutes
        self.inactivity_threshold_minutes = inactivity_threshold_minutes
        self.single_flight = single_flight
        self.scheduler = scheduler
        self.clock = clock
        self.last_result: Optional[CycleResult] = None
        self._listeners: List[Callable[[CycleResult], Any]] = []
        self._lock = asyncio.Lock()
        self._running = False
        self._scroll_armed = True
        self._inactivity_armed = True

    @property
    def is_running(self) -> bool:
        return self._running

    def subscribe(self, listener: Callable[[CycleResult], Any]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # --- scheduling ---
    def _interval_trigger(self) -> IntervalTrigger:
        # APScheduler adds uniform(0, jitter), so start early to centre the window
        seconds = self.interval_minutes * 60
        return IntervalTrigger(seconds=seconds * (1 - JITTER_FRACTION), jitter=int(seconds * 2 * JITTER_FRACTION))

    async def start(self) -> Optional[CycleResult]:
        if self._running:
            return None
        self._running = True
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(self._on_interval, self._interval_trigger(), id="interval",
                               max_instances=1, coalesce=True, replace_existing=True)
        self.scheduler.add_job(self.poll_scroll, IntervalTrigger(seconds=SCROLL_POLL_SECONDS), id="scroll_poll",
                               max_instances=1, coalesce=True, replace_existing=True)
        self.scheduler.add_job(self.poll_inactivity, IntervalTrigger(seconds=INACTIVITY_POLL_SECONDS),
                               id="inactivity_poll", max_instances=1, coalesce=True, replace_existing=True)
        if not self.scheduler.running:
            self.scheduler.start()
        log.info(
            f"Started, interval {self.interval_minutes:g}min, scroll threshold {self.scroll_threshold_minutes:g}min, "
            f"inactivity threshold {self.inactivity_threshold_minutes:g}min"
        )
        return await self.trigger(TriggerKind.INTERVAL)

    def stop(self):
        self._running = False
        if self.scheduler is not None:
            for job_id in ("interval", "scroll_poll", "inactivity_poll"):
                if self.scheduler.get_job(job_id):
                    self.scheduler.remove_job(job_id)
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)
            self.scheduler = None
        log.info("Stopped")

    def set_interval(self, minutes: float):
        if minutes <= 0:
            raise ValueError("interval must be positive")
        self.interval_minutes = minutes
        if self._running and self.scheduler is not None and self.scheduler.get_job("interval"):
            self.scheduler.reschedule_job("interval", trigger=self._interval_trigger())
        log.info(f"Interval set to {minutes:g}min")

    async def _on_interval(self):
        await self.trigger(TriggerKind.INTERVAL)

    async def poll_scroll(self) -> Optional[CycleResult]:
        """Fire ``prolonged_scrolling`` once each time scrolling crosses the threshold."""
        scroll = self.aggregator.scroll.snapshot(self.clock())
        if scroll.continuous_scroll_minutes < self.scroll_threshold_minutes:
            self._scroll_armed = True
            return None
        if not self._scroll_armed:
            return None
        self._scroll_armed = False
        return await self.trigger(TriggerKind.PROLONGED_SCROLLING)

    async def poll_inactivity(self) -> Optional[CycleResult]:
        motion = self.aggregator.motion.snapshot(self.clock())
        if motion.state != "still" or motion.duration_minutes < self.inactivity_threshold_minutes:
            self._inactivity_armed = True
            return None
        if not self._inactivity_armed:
            return None
        self._inactivity_armed = False
        return await self.trigger(TriggerKind.PROLONGED_INACTIVITY)

    async def set_cooldown(self, habit_id: str, minutes: float) -> Optional[datetime]:
        return await self.cooldowns.set_cooldown(habit_id, minutes)

    # --- the cycle ---
    async def trigger(self, kind: TriggerKind | str) -> CycleResult:
        kind = TriggerKind(kind)
        if not self.single_flight:
            return await self._run_cycle(kind)
        if self._lock.locked():
            log.debug(f"{kind.value} queued behind the running cycle")
        async with self._lock:
            return await self._run_cycle(kind)

    async def _run_cycle(self, kind: TriggerKind) -> CycleResult:
        started = time.perf_counter()
        now = self.clock()

        try:
            context = self.aggregator.collect(now)
        except Exception:
            logger.exception("Context collection failed, deciding on a bare snapshot")
            zone = self.aggregator.zone
            context = ContextSnapshot.at(now.astimezone(zone) if zone is not None else now)
        tod = context.time_of_day
        log.info(
            f"{tod.hour}:{tod.minute:02d} {'weekend' if tod.is_weekend else 'weekday'} | "
            f"screen {context.screen.continuous_usage_minutes:.0f}min | "
            f"scroll {context.scroll.continuous_scroll_minutes:.0f}min"
            f"{' [DOOM]' if context.scroll.is_doom_scrolling else ''}"
        )

        try:
            habits = await self.engine.recalculate_all(context)
        except Exception:
            logger.exception("Rescoring failed, deciding without habits")
            habits = []
        log.info(f"Trigger: {kind.value} | Habits: " + ", ".join(f"{h.name}={h.momentum_score}%" for h in habits))

        complexity = score_prompt_complexity(context, habits)
        hint = self.client.router.route(context, complexity)

        signed_in = bool(self.integrations and self.integrations.is_signed_in)
        system_prompt = build_system_prompt(signed_in)
        user_prompt = build_user_prompt(context, habits, signed_in, forecaster=self.engine.forecaster)
        request = InferenceRequest(
            messages=[{"role": "system", "content": system_prompt}, {"role": "user", "content": user_prompt}],
            tools=self.executor.registry.openai_schemas(),
            context=context,
            habits=habits,
        )

        raw_response = ""
        tool_call: Optional[ToolCall] = None
        path = RoutingDecision.MOCK
        confidence = 0.0
        try:
            response = await self.client.complete(request, hint)
            raw_response = response.text
            tool_call = response.first_call
            path = response.path
            confidence = response.confidence
        except Exception as e:
            logger.exception("Inference raised past the client boundary")
            raw_response = f"ERROR: {e}"

        tool_result: Optional[ToolResult] = None
        if tool_call is not None:
            tool_result = await self.executor.execute(tool_call)
            log.info(f"Executed: {tool_call.name} -> {'OK' if tool_result.success else 'FAIL'}")

        result = CycleResult(
            trigger=kind,
            timestamp=now,
            context=context,
            habit_states=habits,
            prompt_sent=f"{system_prompt}\n\n{user_prompt}",
            raw_response=raw_response,
            tool_call=tool_call,
            tool_result=tool_result,
            routing_decision=path,
            confidence=confidence,
            cycle_duration_ms=(time.perf_counter() - started) * 1000,
        )

        try:
            await self.storage.append_cycle_result(result.to_dict())
            await self.storage.set_last_context(context.to_dict())
        except Exception:
            logger.exception("Persisting cycle result failed")

        self.last_result = result
        for listener in list(self._listeners):
            await fire_and_forget(lambda l=listener: l(result), "cycle listener")

        log.info(
            f"Cycle done: {kind.value} -> {tool_call.name if tool_call else 'no_action'} "
            f"via {path.value} ({result.cycle_duration_ms:.0f}ms)"
        )
        return result
