"""Immutable per-cycle view of every context signal."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

MOTION_STATES = ("still", "walking", "running", "driving", "unknown")
DOOM_SCROLL_MINUTES = 15


@dataclass(frozen=True)
class TimeOfDay:
    hour: int
    minute: int
    day_of_week: int  # Mon=0 .. Sun=6
    is_weekend: bool

    @classmethod
    def from_datetime(cls, now: datetime) -> "TimeOfDay":
        weekday = now.weekday()
        return cls(hour=now.hour, minute=now.minute, day_of_week=weekday, is_weekend=weekday >= 5)


@dataclass(frozen=True)
class CalendarState:
    current_event: Optional[str] = None
    next_event: Optional[str] = None
    next_event_in_minutes: Optional[int] = None
    free_block_minutes: int = 240
    just_ended_event: Optional[str] = None


@dataclass(frozen=True)
class ScreenState:
    is_active: bool = False
    continuous_usage_minutes: float = 0.0
    foreground_app: Optional[str] = None


@dataclass(frozen=True)
class MotionState:
    state: str = "unknown"
    duration_minutes: float = 0.0


@dataclass(frozen=True)
class ScrollState:
    continuous_scroll_minutes: float = 0.0
    is_doom_scrolling: bool = False


@dataclass(frozen=True)
class NotificationState:
    recent_interaction_count: int = 0
    last_nudge_response: Optional[str] = None


@dataclass(frozen=True)
class BatteryState:
    level: float = 0.8
    is_charging: bool = False


@dataclass(frozen=True)
class HealthState:
    steps_today: int = 0
    sleep_hours_last_night: Optional[float] = None
    resting_heart_rate: Optional[int] = None
    active_minutes_today: int = 0
    exercise_sessions_today: int = 0
    last_exercise_type: Optional[str] = None
    last_exercise_timestamp: Optional[datetime] = None
    calories_burned_today: int = 0

    @property
    def has_data(self) -> bool:
        return bool(self.steps_today or self.sleep_hours_last_night or self.exercise_sessions_today)


@dataclass(frozen=True)
class ConnectivityState:
    is_connected: bool = True
    connection_type: str = "wifi"  # wifi|cellular|none


@dataclass(frozen=True)
class ContextSnapshot:
    timestamp: datetime
    time_of_day: TimeOfDay
    calendar: CalendarState = field(default_factory=CalendarState)
    screen: ScreenState = field(default_factory=ScreenState)
    motion: MotionState = field(default_factory=MotionState)
    scroll: ScrollState = field(default_factory=ScrollState)
    notifications: NotificationState = field(default_factory=NotificationState)
    battery: BatteryState = field(default_factory=BatteryState)
    health: HealthState = field(default_factory=HealthState)
    connectivity: ConnectivityState = field(default_factory=ConnectivityState)

    @classmethod
    def at(cls, now: Optional[datetime] = None, **parts: Any) -> "ContextSnapshot":
        """Snapshot with default signals at ``now``; any part may be overridden."""
        now = now or datetime.now(timezone.utc)
        return cls(timestamp=now, time_of_day=TimeOfDay.from_datetime(now), **parts)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        ts = data["health"].get("last_exercise_timestamp")
        if isinstance(ts, datetime):
            data["health"]["last_exercise_timestamp"] = ts.isoformat()
        return data
