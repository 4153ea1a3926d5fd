from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Callable, Optional

from habit.models import local_now
from .providers import (
    BatteryProvider,
    CalendarProvider,
    ClockProvider,
    ConnectivityProvider,
    HealthProvider,
    MotionProvider,
    ScreenProvider,
    ScrollProvider,
    SignalProvider,
)
from .snapshot import ContextSnapshot, NotificationState


class ContextAggregator:
    """Merges provider snapshots into one ContextSnapshot per cycle.

    Also tracks how the user responded to recent notifications, which is the
    only context state produced by the engine itself.
    """

    def __init__(
        self,
        clock: SignalProvider = None,
        calendar: SignalProvider = None,
        screen: SignalProvider = None,
        motion: SignalProvider = None,
        scroll: SignalProvider = None,
        battery: SignalProvider = None,
        health: SignalProvider = None,
        connectivity: SignalProvider = None,
        now: Callable[[], datetime] = local_now,
        zone: Optional[tzinfo] = None,
    ):
        self.clock = clock or ClockProvider()
        self.calendar = calendar or CalendarProvider()
        self.screen = screen or ScreenProvider()
        self.motion = motion or MotionProvider()
        self.scroll = scroll or ScrollProvider()
        self.battery = battery or BatteryProvider()
        self.health = health or HealthProvider()
        self.connectivity = connectivity or ConnectivityProvider()
        self.now = now
        self.zone = zone
        self.last_nudge_response: Optional[str] = None
        self.recent_interaction_count = 0

    def record_nudge_interaction(self, outcome: str):
        self.last_nudge_response = outcome
        self.recent_interaction_count += 1

    def reset_notification_counters(self):
        self.last_nudge_response = None
        self.recent_interaction_count = 0

    def collect(self, now: Optional[datetime] = None) -> ContextSnapshot:
        now = now or self.now()
        # wall-clock fields (hour, weekday) are read in the user's zone
        if self.zone is not None:
            now = now.astimezone(self.zone)
        return ContextSnapshot(
            timestamp=now,
            time_of_day=self.clock.snapshot(now),
            calendar=self.calendar.snapshot(now),
            screen=self.screen.snapshot(now),
            motion=self.motion.snapshot(now),
            scroll=self.scroll.snapshot(now),
            notifications=NotificationState(
                recent_interaction_count=self.recent_interaction_count,
                last_nudge_response=self.last_nudge_response,
            ),
            battery=self.battery.snapshot(now),
            health=self.health.snapshot(now),
            connectivity=self.connectivity.snapshot(now),
        )
