"""Pull-based signal providers.

Every provider exposes ``snapshot(now)`` with no side effects. The providers
here keep their state on the instance and are driven by explicit setters or
activity reports, so they double as simulators for demos and tests. A
platform integration replaces any of them with an object exposing the same
``snapshot`` method.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import List, Optional, Protocol, TypeVar

from .snapshot import (
    DOOM_SCROLL_MINUTES,
    MOTION_STATES,
    BatteryState,
    CalendarState,
    ConnectivityState,
    HealthState,
    MotionState,
    ScreenState,
    ScrollState,
    TimeOfDay,
)

T = TypeVar("T", covariant=True)

SCROLL_GAP = timedelta(seconds=30)
JUST_ENDED_WINDOW = timedelta(minutes=5)
MAX_FREE_BLOCK_MINUTES = 240


class SignalProvider(Protocol[T]):
    def snapshot(self, now: datetime) -> T: ...


def _minutes(delta: timedelta) -> int:
    return int(round(delta.total_seconds() / 60))


class ClockProvider:
    def snapshot(self, now: datetime) -> TimeOfDay:
        return TimeOfDay.from_datetime(now)


@dataclass
class CalendarEvent:
    title: str
    start: datetime
    end: datetime


class CalendarProvider:
    def __init__(self, events: Optional[List[CalendarEvent]] = None):
        self.events: List[CalendarEvent] = list(events or [])

    def set_events(self, events: List[CalendarEvent]):
        self.events = list(events)

    def snapshot(self, now: datetime) -> CalendarState:
        current = next((e for e in self.events if e.start <= now < e.end), None)
        ended = sorted(
            (e for e in self.events if now - JUST_ENDED_WINDOW < e.end <= now),
            key=lambda e: e.end,
            reverse=True,
        )
        upcoming = sorted((e for e in self.events if e.start > now), key=lambda e: e.start)
        nxt = upcoming[0] if upcoming else None
        next_in = _minutes(nxt.start - now) if nxt else None
        return CalendarState(
            current_event=current.title if current else None,
            next_event=nxt.title if nxt else None,
            next_event_in_minutes=next_in,
            free_block_minutes=min(next_in, MAX_FREE_BLOCK_MINUTES) if next_in else MAX_FREE_BLOCK_MINUTES,
            just_ended_event=ended[0].title if ended else None,
        )


class ScreenProvider:
    def __init__(self, active: bool = False, since: Optional[datetime] = None, app: Optional[str] = None):
        self.active = active
        self.active_since = since
        self.foreground_app = app

    def set_active(self, active: bool, now: datetime, app: Optional[str] = None):
        if active and (not self.active or self.active_since is None):
            self.active_since = now
        self.active = active
        if app is not None:
            self.foreground_app = app

    def snapshot(self, now: datetime) -> ScreenState:
        if not self.active or self.active_since is None:
            return ScreenState(is_active=False)
        return ScreenState(
            is_active=True,
            continuous_usage_minutes=_minutes(now - self.active_since),
            foreground_app=self.foreground_app,
        )


class MotionProvider:
    def __init__(self, state: str = "unknown", since: Optional[datetime] = None):
        self.state = state
        self.since = since

    def set_state(self, state: str, now: datetime):
        if state not in MOTION_STATES:
            raise ValueError(f"Unknown motion state: {state}")
        if state != self.state or self.since is None:
            self.since = now
        self.state = state

    def snapshot(self, now: datetime) -> MotionState:
        duration = _minutes(now - self.since) if self.since else 0
        return MotionState(state=self.state, duration_minutes=max(0, duration))


class ScrollProvider:
    """Continuous scroll session; a gap longer than 30s ends the session."""

    def __init__(self, doom_threshold_minutes: float = DOOM_SCROLL_MINUTES):
        self.doom_threshold_minutes = doom_threshold_minutes
        self.scrolling_since: Optional[datetime] = None
        self.last_activity: Optional[datetime] = None

    def report_activity(self, now: datetime):
        if self.scrolling_since is None or self.last_activity is None or now - self.last_activity > SCROLL_GAP:
            self.scrolling_since = now
        self.last_activity = now

    def simulate(self, minutes: float, now: datetime):
        self.scrolling_since = now - timedelta(minutes=minutes)
        self.last_activity = now

    def reset(self):
        self.scrolling_since = None
        self.last_activity = None

    def snapshot(self, now: datetime) -> ScrollState:
        if self.scrolling_since is None or self.last_activity is None or now - self.last_activity > SCROLL_GAP:
            return ScrollState()
        minutes = _minutes(now - self.scrolling_since)
        return ScrollState(continuous_scroll_minutes=minutes, is_doom_scrolling=minutes >= self.doom_threshold_minutes)


class BatteryProvider:
    def __init__(self, level: float = 0.8, charging: bool = False):
        self.level = level
        self.charging = charging

    def snapshot(self, now: datetime) -> BatteryState:
        return BatteryState(level=self.level, is_charging=self.charging)


class HealthProvider:
    def __init__(self, state: Optional[HealthState] = None):
        self.state = state or HealthState()

    def update(self, **fields):
        self.state = replace(self.state, **fields)

    def snapshot(self, now: datetime) -> HealthState:
        return self.state


class ConnectivityProvider:
    def __init__(self, connected: bool = True, connection_type: str = "wifi"):
        self.connected = connected
        self.connection_type = connection_type

    def set_connected(self, connected: bool, connection_type: Optional[str] = None):
        self.connected = connected
        self.connection_type = connection_type or ("wifi" if connected else "none")

    def snapshot(self, now: datetime) -> ConnectivityState:
        return ConnectivityState(
            is_connected=self.connected,
            connection_type=self.connection_type if self.connected else "none",
        )
