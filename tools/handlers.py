"""Action handlers for every registered tool.

Handlers receive arguments already coerced and checked against the tool
schema, then validate ranges and preconditions before any side effect. They
return a ToolResult for every expected failure; the executor converts
anything they raise.
"""
from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from agent.cooldowns import CooldownController
from core.errors import ExternalIntegrationError, ValidationError
from core.side_effects import spawn
from habit.engine import ScoringEngine
from habit.models import NudgeRecord, utcnow
from habit.storage import HabitStore
from integrations.accounts import AccountIntegration
from notifications.dispatcher import NotificationDispatcher
from . import definitions as d
from .executor import ToolRegistry, ToolResult
from .fields import parse_field_update

MAX_COOLDOWN_MINUTES = 120
MAX_REMINDER_MINUTES = 480
DIFFICULTY_STEP = 0.1
MAX_DIFFICULTY_ADJUSTMENTS = 20
MAX_MILESTONES = 50
MAX_HEALTH_ACTIVITIES = 100
PATTERN_CYCLES = 50
WORKOUT_ACTIVITIES = ("gym", "workout", "exercise")
NOT_SIGNED_IN = "Not signed in. User needs to sign in first."

log = logger.bind(source="tools")


def _append_capped(meta: Dict[str, Any], key: str, entry: Dict[str, Any], limit: int):
    items = list(meta.get(key) or [])
    items.append(entry)
    meta[key] = items[-limit:]


class ActionHandlers:
    def __init__(
        self,
        engine: ScoringEngine,
        storage: HabitStore,
        dispatcher: NotificationDispatcher,
        cooldowns: CooldownController,
        integrations: Optional[AccountIntegration] = None,
        nudge_cooldown_minutes: float = 30,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.storage = storage
        self.dispatcher = dispatcher
        self.cooldowns = cooldowns
        self.integrations = integrations
        self.nudge_cooldown_minutes = nudge_cooldown_minutes
        self.clock = clock
        self.scheduled: List[asyncio.Task] = []

    def register(self, registry: ToolRegistry) -> ToolRegistry:
        registry.register(d.SEND_NUDGE, self.send_nudge)
        registry.register(d.UPDATE_HABIT_STATE, self.update_habit_state)
        registry.register(d.INCREASE_COOLDOWN, self.increase_cooldown)
        registry.register(d.DELAY_NUDGE, self.delay_nudge)
        registry.register(d.SCHEDULE_REMINDER, self.schedule_reminder)
        registry.register(d.ADJUST_DIFFICULTY, self.adjust_difficulty)
        registry.register(d.CELEBRATE_MILESTONE, self.celebrate_milestone)
        registry.register(d.SUGGEST_HABIT_STACK, self.suggest_habit_stack)
        registry.register(d.LOG_HEALTH_ACTIVITY, self.log_health_activity)
        registry.register(d.ANALYZE_PATTERN, self.analyze_pattern)
        if self.integrations is not None:
            registry.register(d.CREATE_CALENDAR_BLOCK, self.create_calendar_block)
            registry.register(d.FETCH_CALENDAR_EVENTS, self.fetch_calendar_events)
            registry.register(d.ADD_SHOPPING_ITEM, self.add_shopping_item)
            registry.register(d.GET_SHOPPING_LIST, self.get_shopping_list)
        return registry

    async def _habit_or_fail(self, tool: str, habit_id: str):
        habit = await self.storage.get_habit(habit_id)
        if habit is None:
            return None, ToolResult.fail(tool, f"Habit {habit_id} not found")
        return habit, None

    # --- nudging ---
    async def send_nudge(self, args: Dict[str, Any]) -> ToolResult:
        habit_id, tone, message = args["habit_id"], args["tone"], args["message"].strip()
        habit, err = await self._habit_or_fail("send_nudge", habit_id)
        if err:
            return err
        now = self.clock()
        if habit.is_cooling_down(now):
            return ToolResult.fail("send_nudge", f"Habit {habit_id} is cooling down until {habit.cooldown_until.isoformat()}")
        try:
            await self.dispatcher.send(habit_id, tone, message, now)
        except ExternalIntegrationError as e:
            return ToolResult.fail("send_nudge", f"Failed to send nudge: {e}")
        await self.engine.record_nudge_outcome(habit_id, NudgeRecord(now, tone, message, None))
        cooldown_until = await self.cooldowns.set_cooldown(habit_id, self.nudge_cooldown_minutes)
        return ToolResult.ok(
            "send_nudge", habit_id=habit_id, tone=tone, message=message, sent_at=now.isoformat(),
            cooldown_until=cooldown_until.isoformat() if cooldown_until else None,
        )

    async def delay_nudge(self, args: Dict[str, Any]) -> ToolResult:
        log.info(f"Holding off on {args['habit_id']}: {args['reason']}")
        return ToolResult.ok("delay_nudge", habit_id=args["habit_id"], reason=args["reason"], action="no_nudge")

    async def increase_cooldown(self, args: Dict[str, Any]) -> ToolResult:
        minutes = args["minutes"]
        if minutes <= 0:
            return ToolResult.fail("increase_cooldown", "minutes must be a positive number")
        capped = min(minutes, MAX_COOLDOWN_MINUTES)
        until = await self.cooldowns.set_cooldown(args["habit_id"], capped)
        if until is None:
            return ToolResult.fail("increase_cooldown", f"Habit {args['habit_id']} not found")
        return ToolResult.ok("increase_cooldown", habit_id=args["habit_id"], minutes=capped, cooldown_until=until.isoformat())

    async def schedule_reminder(self, args: Dict[str, Any]) -> ToolResult:
        habit_id, message, delay = args["habit_id"], args["message"], args["delay_minutes"]
        if delay <= 0:
            return ToolResult.fail("schedule_reminder", "delay_minutes must be a positive number")
        capped = min(delay, MAX_REMINDER_MINUTES)
        scheduled_at = self.clock() + timedelta(minutes=capped)

        async def _remind():
            await asyncio.sleep(capped * 60)
            await self.dispatcher.send(habit_id, "gentle", f"[Scheduled] {message}")

        self.scheduled = [t for t in self.scheduled if not t.done()]
        self.scheduled.append(spawn(_remind(), f"reminder for {habit_id}"))
        log.info(f"Reminder for {habit_id} in {capped:g}min: \"{message}\"")
        return ToolResult.ok("schedule_reminder", habit_id=habit_id, delay_minutes=capped,
                             scheduled_at=scheduled_at.isoformat())

    async def celebrate_milestone(self, args: Dict[str, Any]) -> ToolResult:
        habit_id, milestone, message = args["habit_id"], args["milestone"], args["message"]
        habit, err = await self._habit_or_fail("celebrate_milestone", habit_id)
        if err:
            return err
        now = self.clock()
        _append_capped(habit.metadata, "milestones",
                       {"milestone": milestone, "timestamp": now.isoformat(), "message": message}, MAX_MILESTONES)
        await self.storage.save_habit(habit)
        await self.dispatcher.send(habit_id, "playful", message, now)
        return ToolResult.ok("celebrate_milestone", habit_id=habit_id, milestone=milestone, message=message)

    async def suggest_habit_stack(self, args: Dict[str, Any]) -> ToolResult:
        primary, stacked = args["primary_habit_id"], args["stacked_habit_id"]
        if primary == stacked:
            return ToolResult.fail("suggest_habit_stack", "primary and stacked habit must differ")
        for habit_id in (primary, stacked):
            _, err = await self._habit_or_fail("suggest_habit_stack", habit_id)
            if err:
                return err
        anchor = args.get("anchor", "after")
        await self.dispatcher.send(stacked, "gentle", args["message"])
        return ToolResult.ok("suggest_habit_stack", primary_habit_id=primary, stacked_habit_id=stacked,
                             anchor=anchor, message=args["message"])

    # --- habit state ---
    async def update_habit_state(self, args: Dict[str, Any]) -> ToolResult:
        try:
            update = parse_field_update(args["field"], args["value"])
        except ValidationError as e:
            return ToolResult.fail("update_habit_state", str(e))
        habit = await self.engine.apply_field_update(args["habit_id"], update)
        if habit is None:
            return ToolResult.fail("update_habit_state", f"Habit {args['habit_id']} not found")
        return ToolResult.ok("update_habit_state", habit_id=habit.id, field=update.field.value,
                             value=update.value, momentum=habit.momentum_score)

    async def adjust_difficulty(self, args: Dict[str, Any]) -> ToolResult:
        habit_id, direction = args["habit_id"], args["direction"]
        habit, err = await self._habit_or_fail("adjust_difficulty", habit_id)
        if err:
            return err
        before = habit.resistance_score
        delta = -DIFFICULTY_STEP if direction == "easier" else DIFFICULTY_STEP
        habit = await self.engine.adjust_resistance(habit_id, delta)
        _append_capped(habit.metadata, "difficulty_adjustments", {
            "timestamp": self.clock().isoformat(),
            "direction": direction,
            "reason": args["reason"],
            "resistance_before": before,
            "resistance_after": habit.resistance_score,
        }, MAX_DIFFICULTY_ADJUSTMENTS)
        await self.storage.save_habit(habit)
        log.info(f"Difficulty {direction} for {habit_id}: {before:.2f} -> {habit.resistance_score:.2f}")
        return ToolResult.ok("adjust_difficulty", habit_id=habit_id, direction=direction, reason=args["reason"],
                             resistance_before=before, resistance_after=habit.resistance_score)

    async def log_health_activity(self, args: Dict[str, Any]) -> ToolResult:
        habit_id, activity = args["habit_id"], args["activity_type"].strip().lower()
        duration = args.get("duration_minutes", 0)
        steps = args.get("steps", 0)
        if duration < 0 or steps < 0:
            return ToolResult.fail("log_health_activity", "duration_minutes and steps cannot be negative")
        habit, err = await self._habit_or_fail("log_health_activity", habit_id)
        if err:
            return err
        entry = {
            "timestamp": self.clock().isoformat(),
            "activity_type": activity,
            "duration_minutes": duration,
            "steps": int(steps),
            "note": args.get("note", ""),
        }
        _append_capped(habit.metadata, "health_activities", entry, MAX_HEALTH_ACTIVITIES)
        await self.storage.save_habit(habit)
        completed = activity in WORKOUT_ACTIVITIES
        if completed:
            await self.engine.record_completion(habit_id)
        return ToolResult.ok("log_health_activity", habit_id=habit_id, completed=completed, **entry)

    async def analyze_pattern(self, args: Dict[str, Any]) -> ToolResult:
        habit_id, pattern = args["habit_id"], args["pattern_type"]
        habit, err = await self._habit_or_fail("analyze_pattern", habit_id)
        if err:
            return err
        cycles = [
            c for c in await self.storage.get_recent_cycles(PATTERN_CYCLES)
            if ((c.get("parsed_action") or {}).get("arguments") or {}).get("habit_id") == habit_id
        ]
        if pattern == "best_time":
            hours = Counter(
                c["context"]["time_of_day"]["hour"] for c in cycles
                if c["parsed_action"]["name"] == "send_nudge"
            )
            best = hours.most_common(1)
            analysis = {
                "best_hour": best[0][0] if best else None,
                "hourly_distribution": dict(hours),
                "sample_size": sum(hours.values()),
            }
        elif pattern == "streak_risk":
            last = habit.last_completion_timestamp
            days = (self.clock() - last).total_seconds() / 86400 if last else None
            analysis = {
                "days_since_completion": round(days, 1) if days is not None else None,
                "streak_at_risk": days is None or days > 1,
                "current_streak": habit.streak_count,
                "momentum": habit.momentum_score,
            }
        else:
            outcomes = habit.recent_nudge_outcomes[-10:]
            dismissed = sum(1 for o in outcomes if o.outcome in ("dismissed", "ignored"))
            completed = sum(1 for o in outcomes if o.outcome == "completed")
            trend = "increasing" if dismissed > completed else "decreasing" if completed > dismissed else "stable"
            analysis = {
                "recent_dismissed": dismissed,
                "recent_completed": completed,
                "resistance_score": habit.resistance_score,
                "trend": trend,
            }
        log.info(f"Pattern analysis {pattern} for {habit_id} over {len(cycles)} cycles")
        return ToolResult.ok("analyze_pattern", habit_id=habit_id, pattern_type=pattern, analysis=analysis)

    # --- account integrations ---
    def _signed_in(self, tool: str) -> Optional[ToolResult]:
        if self.integrations is None or not self.integrations.is_signed_in:
            return ToolResult.fail(tool, NOT_SIGNED_IN)
        return None

    async def create_calendar_block(self, args: Dict[str, Any]) -> ToolResult:
        if err := self._signed_in("create_calendar_block"):
            return err
        duration = args["duration_minutes"]
        offset = args.get("offset_minutes", 0)
        if duration <= 0 or offset < 0:
            return ToolResult.fail("create_calendar_block", "duration_minutes must be positive and offset_minutes not negative")
        start = self.clock() + timedelta(minutes=offset)
        try:
            entry = await self.integrations.create_event(args["title"], start, int(duration),
                                                         f"Habit block for {args['habit_id']}")
        except ExternalIntegrationError as e:
            return ToolResult.fail("create_calendar_block", f"Calendar write failed: {e}")
        return ToolResult.ok("create_calendar_block", habit_id=args["habit_id"], event=entry.to_dict())

    async def fetch_calendar_events(self, args: Dict[str, Any]) -> ToolResult:
        if err := self._signed_in("fetch_calendar_events"):
            return err
        hours = args.get("hours_ahead", 24)
        if hours <= 0:
            return ToolResult.fail("fetch_calendar_events", "hours_ahead must be positive")
        now = self.clock()
        try:
            events = await self.integrations.list_events(now, now + timedelta(hours=hours))
        except ExternalIntegrationError as e:
            return ToolResult.fail("fetch_calendar_events", f"Calendar fetch failed: {e}")
        return ToolResult.ok("fetch_calendar_events", event_count=len(events), events=[e.to_dict() for e in events])

    async def add_shopping_item(self, args: Dict[str, Any]) -> ToolResult:
        if err := self._signed_in("add_shopping_item"):
            return err
        try:
            item = await self.integrations.add_shopping_item(args["item"], args.get("notes", ""))
        except ExternalIntegrationError as e:
            return ToolResult.fail("add_shopping_item", f"Adding item failed: {e}")
        return ToolResult.ok("add_shopping_item", item=item.to_dict())

    async def get_shopping_list(self, args: Dict[str, Any]) -> ToolResult:
        if err := self._signed_in("get_shopping_list"):
            return err
        try:
            items = await self.integrations.list_shopping_items()
        except ExternalIntegrationError as e:
            return ToolResult.fail("get_shopping_list", f"Reading list failed: {e}")
        return ToolResult.ok("get_shopping_list", item_count=len(items), items=[i.to_dict() for i in items])
