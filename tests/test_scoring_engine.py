from datetime import timedelta

import pytest

from context.snapshot import ContextSnapshot
from habit.defaults import default_habits
from habit.engine import ScoringEngine
from habit.models import NudgeRecord
from tools.fields import parse_field_update
from factories import NOW, make_habit


async def test_completion_extends_streak_within_36h(store, clock):
    await store.save_habit(make_habit(streak_count=3, completion_rate_7d=0.5,
                                      last_completion_timestamp=NOW - timedelta(hours=20)))
    engine = ScoringEngine(store, clock=clock)

    habit = await engine.record_completion("gym")
    assert habit.streak_count == 4
    assert habit.completion_rate_7d == pytest.approx(0.5 * 0.85 + 0.15)
    assert habit.last_completion_timestamp == NOW

    clock.advance(hours=40)
    habit = await engine.record_completion("gym")
    assert habit.streak_count == 1
    stored = await store.get_habit("gym")
    assert stored.streak_count == 1
    assert stored.momentum_score == habit.momentum_score


async def test_streak_window_includes_exactly_36h(store, clock):
    await store.save_habit(make_habit(streak_count=2, last_completion_timestamp=NOW - timedelta(hours=36)))
    engine = ScoringEngine(store, clock=clock)
    assert (await engine.record_completion("gym")).streak_count == 3

    clock.advance(hours=36, seconds=1)
    assert (await engine.record_completion("gym")).streak_count == 1


async def test_completion_rate_never_exceeds_one(store, clock):
    await store.save_habit(make_habit(completion_rate_7d=1.0))
    habit = await ScoringEngine(store, clock=clock).record_completion("gym")
    assert habit.completion_rate_7d == 1.0


async def test_unknown_habit_is_a_no_op(store, clock):
    engine = ScoringEngine(store, clock=clock)
    assert await engine.record_completion("nope") is None
    assert await engine.record_nudge_outcome("nope", NudgeRecord(NOW, "gentle", "hi")) is None
    assert await engine.adjust_resistance("nope", 0.1) is None
    assert await engine.apply_field_update("nope", parse_field_update("streak_count", "2")) is None


async def test_gym_uses_laundry_and_washing_restocks(store, clock):
    await store.seed_defaults(default_habits())
    engine = ScoringEngine(store, clock=clock)

    await engine.record_completion("gym")
    laundry = await store.get_habit("laundry")
    assert laundry.metadata["clean_count"] == 6
    assert laundry.metadata["dirty_count"] == 1

    clock.advance(hours=2)
    laundry = await engine.record_completion("laundry")
    assert laundry.metadata["clean_count"] == 7
    assert laundry.metadata["dirty_count"] == 0
    assert laundry.metadata["last_wash_timestamp"] == clock.now.isoformat()


async def test_recalculate_applies_depletion_friction(store, clock):
    await store.seed_defaults(default_habits())
    laundry = await store.get_habit("laundry")
    laundry.metadata["clean_count"] = 1
    await store.save_habit(laundry)

    sunday_morning = ContextSnapshot.at(NOW + timedelta(days=4))
    habits = {h.id: h for h in await ScoringEngine(store, clock=clock).recalculate_all(sunday_morning)}
    assert habits["laundry"].friction_score == pytest.approx(0.3)
    assert habits["reading"].friction_score == 0.0
    assert all(0 <= h.momentum_score <= 100 for h in habits.values())
    assert (await store.get_habit("laundry")).metadata["predicted_depletion_date"] is not None


async def test_nudge_outcomes_feed_resistance(store, clock):
    await store.save_habit(make_habit())
    engine = ScoringEngine(store, clock=clock)
    for _ in range(3):
        await engine.record_nudge_outcome("gym", NudgeRecord(NOW, "firm", "go"))
        await engine.resolve_latest_nudge("gym", "dismissed")
    habit = await store.get_habit("gym")
    assert [r.outcome for r in habit.recent_nudge_outcomes] == ["dismissed"] * 3
    assert habit.resistance_score == 1.0

    habit = await engine.resolve_latest_nudge("gym", "completed")
    assert habit.recent_nudge_outcomes[-1].outcome == "completed"
    assert habit.resistance_score < 1.0


async def test_field_update_and_difficulty(store, clock):
    await store.seed_defaults(default_habits())
    engine = ScoringEngine(store, clock=clock)

    habit = await engine.apply_field_update("laundry", parse_field_update("metadata.clean_count", "4"))
    assert habit.metadata["clean_count"] == 4
    habit = await engine.apply_field_update("gym", parse_field_update("streak_count", 5))
    assert habit.streak_count == 5

    habit = await engine.adjust_resistance("gym", -0.5)
    assert habit.resistance_score == 0.0
