"""Tool schemas shown to the model and used to validate its calls."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ToolParameter:
    type: str  # string|number|integer|boolean
    description: str
    enum: Optional[List[str]] = None
    required: bool = False


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: Dict[str, ToolParameter] = field(default_factory=dict)

    @property
    def required(self) -> List[str]:
        return [name for name, p in self.parameters.items() if p.required]

    def to_dict(self) -> Dict[str, Any]:
        properties: Dict[str, Any] = {}
        for name, p in self.parameters.items():
            prop: Dict[str, Any] = {"type": p.type, "description": p.description}
            if p.enum:
                prop["enum"] = list(p.enum)
            properties[name] = prop
        return {
            "name": self.name,
            "description": self.description,
            "parameters": {"type": "object", "properties": properties, "required": self.required},
        }

    def to_openai_schema(self) -> Dict[str, Any]:
        return {"type": "function", "function": self.to_dict()}

    def format_for_prompt(self) -> str:
        lines = [f"  {self.name}: {self.description}"]
        for name, p in self.parameters.items():
            enum = f" (one of: {', '.join(p.enum)})" if p.enum else ""
            req = " [required]" if p.required else ""
            lines.append(f"    - {name}: {p.type}{enum}{req}: {p.description}")
        return "\n".join(lines)


def _p(type_: str, description: str, enum: Optional[List[str]] = None, required: bool = True) -> ToolParameter:
    return ToolParameter(type_, description, enum, required)


HABIT_ID = _p("string", 'The ID of the habit (e.g. "gym", "laundry", "reading")')

SEND_NUDGE = ToolDefinition(
    "send_nudge",
    "Send a context-aware habit nudge notification. Use when conditions are right and momentum would benefit from a timely push.",
    {
        "habit_id": HABIT_ID,
        "tone": _p("string", "The emotional tone of the nudge", ["gentle", "firm", "playful"]),
        "message": _p("string", "Concise, motivating, context-specific message shown to the user"),
    },
)

UPDATE_HABIT_STATE = ToolDefinition(
    "update_habit_state",
    "Update one field of a habit based on observed patterns.",
    {
        "habit_id": HABIT_ID,
        "field": _p("string", "Field to update: resistance_score, streak_count, completion_rate_7d, "
                              "clean_count, dirty_count or avg_clothes_per_session"),
        "value": _p("string", "The new value; converted to the field's type"),
    },
)

INCREASE_COOLDOWN = ToolDefinition(
    "increase_cooldown",
    "Pause nudges for a habit. Use after a recent nudge or a dismissal.",
    {
        "habit_id": HABIT_ID,
        "minutes": _p("number", "Minutes of cooldown (max 120)"),
    },
)

DELAY_NUDGE = ToolDefinition(
    "delay_nudge",
    "Explicitly decide NOT to nudge right now, with a reason.",
    {
        "habit_id": HABIT_ID,
        "reason": _p("string", "Why the nudge is being delayed"),
    },
)

SCHEDULE_REMINDER = ToolDefinition(
    "schedule_reminder",
    "Schedule a follow-up reminder for a habit later on.",
    {
        "habit_id": HABIT_ID,
        "message": _p("string", "The reminder message"),
        "delay_minutes": _p("number", "Minutes from now to send it (max 480)"),
    },
)

ADJUST_DIFFICULTY = ToolDefinition(
    "adjust_difficulty",
    'Scale a habit\'s difficulty. "easier" when the user is struggling or recovering, "harder" with strong momentum.',
    {
        "habit_id": HABIT_ID,
        "direction": _p("string", "Scale direction", ["easier", "harder"]),
        "reason": _p("string", "Why the adjustment is being made"),
    },
)

CELEBRATE_MILESTONE = ToolDefinition(
    "celebrate_milestone",
    "Send a celebration for an achievement (streak milestone, peak momentum, first completion).",
    {
        "habit_id": HABIT_ID,
        "milestone": _p("string", 'Milestone name (e.g. "7_day_streak", "peak_momentum")'),
        "message": _p("string", "The celebratory message"),
    },
)

SUGGEST_HABIT_STACK = ToolDefinition(
    "suggest_habit_stack",
    'Suggest pairing two habits, e.g. "after your gym session, throw in a load of laundry".',
    {
        "primary_habit_id": _p("string", "The anchor habit they already do"),
        "stacked_habit_id": _p("string", "The habit to stack onto it"),
        "anchor": _p("string", "When to do the stacked habit", ["before", "after"], required=False),
        "message": _p("string", "The suggestion message"),
    },
)

LOG_HEALTH_ACTIVITY = ToolDefinition(
    "log_health_activity",
    "Log a detected health or fitness activity. Workouts complete the matching habit.",
    {
        "habit_id": HABIT_ID,
        "activity_type": _p("string", "Type of activity (gym, running, walking, yoga, ...)"),
        "duration_minutes": _p("number", "Duration of the activity", required=False),
        "steps": _p("number", "Steps taken during the activity", required=False),
        "note": _p("string", "Optional note", required=False),
    },
)

ANALYZE_PATTERN = ToolDefinition(
    "analyze_pattern",
    "Analyze recent behaviour for a habit: best times, streak risk or resistance trend.",
    {
        "habit_id": HABIT_ID,
        "pattern_type": _p("string", "Type of analysis", ["best_time", "streak_risk", "resistance_trend"]),
    },
)

CREATE_CALENDAR_BLOCK = ToolDefinition(
    "create_calendar_block",
    "Block time on the user's calendar for a habit session when they have a free window.",
    {
        "habit_id": HABIT_ID,
        "title": _p("string", 'Event title (e.g. "Gym Session")'),
        "duration_minutes": _p("number", "Length of the block in minutes"),
        "offset_minutes": _p("number", "Minutes from now to start (0 = now)", required=False),
    },
)

FETCH_CALENDAR_EVENTS = ToolDefinition(
    "fetch_calendar_events",
    "Fetch upcoming events from the user's connected calendar.",
    {
        "hours_ahead": _p("number", "How many hours ahead to look (default 24)", required=False),
    },
)

ADD_SHOPPING_ITEM = ToolDefinition(
    "add_shopping_item",
    "Add a habit-related item (protein powder, running shoes, books) to the user's shopping list.",
    {
        "item": _p("string", "The item to add"),
        "notes": _p("string", "Optional notes", required=False),
    },
)

GET_SHOPPING_LIST = ToolDefinition(
    "get_shopping_list",
    "Retrieve the pending items of the user's shopping list.",
    {},
)

CORE_TOOLS = [
    SEND_NUDGE,
    UPDATE_HABIT_STATE,
    INCREASE_COOLDOWN,
    DELAY_NUDGE,
    SCHEDULE_REMINDER,
    ADJUST_DIFFICULTY,
    CELEBRATE_MILESTONE,
    SUGGEST_HABIT_STACK,
    LOG_HEALTH_ACTIVITY,
    ANALYZE_PATTERN,
]

INTEGRATION_TOOLS = [
    CREATE_CALENDAR_BLOCK,
    FETCH_CALENDAR_EVENTS,
    ADD_SHOPPING_ITEM,
    GET_SHOPPING_LIST,
]
