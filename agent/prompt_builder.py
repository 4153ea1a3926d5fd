"""Prompt construction for one decision cycle.

The system prompt carries the voice and decision rules, the user prompt a
plain-language rendering of the current context and every habit.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Dict, List, Optional, Sequence

from context.snapshot import ContextSnapshot
from habit.depletion import InventoryForecaster, is_inventory_habit
from habit.models import HabitState
from habit.scoring import is_in_recovery, is_milestone, momentum_tier

SYSTEM_PROMPT = """You are the user's habit buddy. You text them like a close friend who can see their phone, calendar, health data and habit history.

Your job: decide the BEST single action right now and call exactly one tool.

Voice rules:
- Talk like you're texting a friend. Lowercase, casual, warm.
- Reference SPECIFIC things from their context: scroll time, meeting names, step count, sleep hours, streaks.
- Never sound like an app notification or a corporate wellness tool.
- Keep messages to 1-2 sentences. One emoji at most.

Decision rules:
- If they dismissed the last nudge, back off with increase_cooldown.
- If they snoozed, use delay_nudge.
- If nothing needs attention, use delay_nudge. Don't nudge for the sake of it.
- Never nudge a habit marked on cooldown.
- For a milestone (streak milestone, first completion, peak momentum) use celebrate_milestone.
- After a detected workout use log_health_activity and consider suggest_habit_stack.
- If they're struggling, use adjust_difficulty to make it easier.
- If they slept poorly, be extra gentle.
- For complex situations, analyze_pattern first.
- Use schedule_reminder when the timing is off but a follow-up makes sense.
{integrations}
When you use send_nudge, the "message" field IS the notification they see. Make it personal."""

INTEGRATIONS_CONNECTED = """
Account connected ({name}):
- create_calendar_block puts a habit session on their real calendar when they have a free block.
- fetch_calendar_events shows what's coming up.
- add_shopping_item puts habit supplies on their shopping list; get_shopping_list reads it.
"""

INTEGRATIONS_MISSING = """
Account NOT connected:
- create_calendar_block, fetch_calendar_events, add_shopping_item and get_shopping_list will fail.
- Suggest they sign in when it would clearly help.
"""


def build_system_prompt(signed_in: bool = False, account_name: Optional[str] = None,
                        tools_description: str = "") -> str:
    section = INTEGRATIONS_CONNECTED.format(name=account_name or "signed in") if signed_in else INTEGRATIONS_MISSING
    prompt = SYSTEM_PROMPT.format(integrations=section)
    if tools_description:
        prompt += f"\n\nAvailable tools:\n{tools_description}"
    return prompt


def _clock_line(context: ContextSnapshot) -> str:
    tod = context.time_of_day
    ampm = "pm" if tod.hour >= 12 else "am"
    h12 = tod.hour % 12 or 12
    day = "weekend" if tod.is_weekend else "weekday"
    return f"Right now it's {h12}:{tod.minute:02d}{ampm} on a {day}."


def _context_lines(context: ContextSnapshot) -> List[str]:
    lines = []
    screen, scroll, cal = context.screen, context.scroll, context.calendar
    if screen.continuous_usage_minutes > 5:
        lines.append(f"They've been on their phone for {screen.continuous_usage_minutes:.0f} minutes straight.")
    if screen.foreground_app:
        lines.append(f"Currently using: {screen.foreground_app}.")
    if scroll.is_doom_scrolling:
        lines.append(f"They've been scrolling for {scroll.continuous_scroll_minutes:.0f} minutes non-stop.")
    elif scroll.continuous_scroll_minutes > 3:
        lines.append(f"They've been scrolling for about {scroll.continuous_scroll_minutes:.0f} minutes.")

    if cal.current_event:
        lines.append(f'They\'re currently in "{cal.current_event}".')
    elif cal.just_ended_event:
        lines.append(f'"{cal.just_ended_event}" just ended.')
    if cal.next_event:
        lines.append(f'Next up: "{cal.next_event}" in {cal.next_event_in_minutes} minutes.')
    lines.append(f"They have about {cal.free_block_minutes} free minutes.")

    hd = context.health
    if hd.steps_today > 0:
        lines.append(f"Steps today: {hd.steps_today:,}.")
    if hd.sleep_hours_last_night is not None:
        sleep = hd.sleep_hours_last_night
        quality = " (poor sleep)" if sleep < 6 else " (well rested)" if sleep >= 8 else ""
        lines.append(f"Sleep last night: {sleep:g}h{quality}.")
    if hd.resting_heart_rate is not None:
        lines.append(f"Resting heart rate: {hd.resting_heart_rate} bpm.")
    if hd.active_minutes_today > 0:
        lines.append(f"Active minutes today: {hd.active_minutes_today}.")
    if hd.exercise_sessions_today > 0:
        lines.append(f"Exercise sessions today: {hd.exercise_sessions_today} (last: {hd.last_exercise_type or 'unknown'}).")
    if hd.calories_burned_today > 0:
        lines.append(f"Calories burned today: {hd.calories_burned_today}.")

    motion = context.motion
    if motion.state == "still" and motion.duration_minutes > 30:
        lines.append(f"They've been sitting still for {motion.duration_minutes:.0f} minutes.")
    elif motion.state == "walking":
        lines.append(f"They're walking right now ({motion.duration_minutes:.0f} min).")

    if context.notifications.last_nudge_response:
        lines.append(f"Last nudge response: {context.notifications.last_nudge_response}.")
    if context.battery.level < 0.2:
        lines.append(f"Battery low: {round(context.battery.level * 100)}%.")
    return lines


def _habit_line(habit: HabitState, context: ContextSnapshot) -> str:
    tier = momentum_tier(habit.momentum_score)
    desc = f"- {habit.name} (id: {habit.id}): momentum {habit.momentum_score}% ({tier})"
    if habit.streak_count > 0:
        desc += f", {habit.streak_count}-day streak"
    if is_in_recovery(habit):
        desc += " [recovering, be gentle]"
    if habit.is_cooling_down(context.timestamp):
        desc += " [on cooldown, do NOT nudge]"
    if is_milestone(habit):
        desc += f" [MILESTONE: {habit.streak_count}-day streak!]"
    if tier == "peak":
        desc += " [PEAK momentum!]"
    last = habit.last_completion_timestamp
    if habit.streak_count == 1 and last is not None and context.timestamp - last < timedelta(days=1):
        desc += " [just started!]"
    return desc


def build_user_prompt(context: ContextSnapshot, habits: Sequence[HabitState], signed_in: bool = False,
                      account_name: Optional[str] = None,
                      forecaster: Optional[InventoryForecaster] = None) -> str:
    forecaster = forecaster or InventoryForecaster()
    lines = [_clock_line(context), *_context_lines(context)]
    if signed_in:
        lines.append(f"Account connected ({account_name or 'signed in'}).")
    else:
        lines.append("Account NOT connected.")

    lines += ["", "Their habits:"]
    for habit in habits:
        lines.append(_habit_line(habit, context))
        if is_inventory_habit(habit):
            forecast = forecaster.forecast_for(habit, context.timestamp)
            meta = habit.metadata
            lines.append(
                f"  Clean gym clothes: {meta['clean_count']:g}/{meta['total_gym_clothes']:g}. "
                f"Runs out in ~{forecast.days_until_depletion} days ({forecast.urgency})."
            )
    return "\n".join(lines)


def build_messages(context: ContextSnapshot, habits: Sequence[HabitState], signed_in: bool = False,
                   account_name: Optional[str] = None, tools_description: str = "") -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": build_system_prompt(signed_in, account_name, tools_description)},
        {"role": "user", "content": build_user_prompt(context, habits, signed_in, account_name)},
    ]
