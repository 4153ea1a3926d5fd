import time
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from context.aggregator import ContextAggregator
from habit.models import resolve_zone
from habit.scoring import compute_friction
from factories import FakeClock, make_habit

LA = ZoneInfo("America/Los_Angeles")
# Monday 04:00 UTC is Sunday 21:00 in Los Angeles
MONDAY_4AM_UTC = datetime(2026, 3, 9, 4, 0, tzinfo=timezone.utc)


@pytest.fixture
def host_tz(monkeypatch):
    monkeypatch.setenv("TZ", "America/Los_Angeles")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def test_collect_reads_wall_clock_in_the_user_zone():
    clock = FakeClock(MONDAY_4AM_UTC)
    local = ContextAggregator(now=clock, zone=LA).collect()
    assert local.timestamp == MONDAY_4AM_UTC
    assert local.timestamp.utcoffset() == timedelta(hours=-7)
    assert (local.time_of_day.hour, local.time_of_day.day_of_week) == (21, 6)
    assert local.time_of_day.is_weekend

    utc = ContextAggregator(now=clock, zone=timezone.utc).collect()
    assert (utc.time_of_day.hour, utc.time_of_day.day_of_week) == (4, 0)
    assert not utc.time_of_day.is_weekend

    habit = make_habit()
    assert compute_friction(habit, local) < compute_friction(habit, utc)


def test_collect_converts_an_explicit_timestamp():
    snapshot = ContextAggregator(zone=LA).collect(MONDAY_4AM_UTC)
    assert snapshot.time_of_day.hour == 21


def test_default_clock_follows_the_host_zone(host_tz):
    snapshot = ContextAggregator().collect()
    assert snapshot.timestamp.utcoffset() == LA.utcoffset(snapshot.timestamp.replace(tzinfo=None))
    assert snapshot.time_of_day.hour == snapshot.timestamp.astimezone(LA).hour


def test_resolve_zone():
    assert resolve_zone("Europe/Warsaw") == ZoneInfo("Europe/Warsaw")
    assert resolve_zone(None).utcoffset(datetime.now()) == datetime.now().astimezone().utcoffset()
