from datetime import timedelta

from agent.prompt_builder import build_messages, build_system_prompt, build_user_prompt
from context.snapshot import BatteryState, CalendarState, ContextSnapshot, HealthState, ScrollState
from habit.defaults import default_habits
from factories import NOW, make_habit


def test_system_prompt_reflects_account_state():
    missing = build_system_prompt()
    assert "Account NOT connected" in missing
    assert "{integrations}" not in missing

    connected = build_system_prompt(True, "sam@example.com", tools_description="- send_nudge")
    assert "Account connected (sam@example.com)" in connected
    assert connected.endswith("Available tools:\n- send_nudge")


def test_user_prompt_renders_context():
    context = ContextSnapshot.at(
        NOW,
        scroll=ScrollState(22, True),
        calendar=CalendarState(just_ended_event="Design review", free_block_minutes=45),
        health=HealthState(steps_today=12345, sleep_hours_last_night=5.5),
        battery=BatteryState(level=0.12),
    )
    prompt = build_user_prompt(context, [])
    assert prompt.startswith("Right now it's 10:00am on a weekday.")
    assert "scrolling for 22 minutes non-stop" in prompt
    assert '"Design review" just ended.' in prompt
    assert "about 45 free minutes" in prompt
    assert "Steps today: 12,345." in prompt
    assert "Sleep last night: 5.5h (poor sleep)." in prompt
    assert "Battery low: 12%." in prompt
    assert "Account NOT connected." in prompt


def test_habit_lines_carry_flags_and_inventory():
    context = ContextSnapshot.at(NOW + timedelta(days=4))  # Sunday
    habits = default_habits()
    gym, laundry = habits[0], habits[1]
    gym.streak_count = 7
    gym.momentum_score = 85
    gym.cooldown_until = context.timestamp + timedelta(minutes=20)
    laundry.metadata["clean_count"] = 3
    started = make_habit("reading", name="Reading", streak_count=1, momentum_score=30,
                         last_completion_timestamp=context.timestamp - timedelta(hours=2))

    prompt = build_user_prompt(context, [gym, laundry, started], signed_in=True)
    lines = prompt.splitlines()
    gym_line = next(l for l in lines if "(id: gym)" in l)
    assert "momentum 85% (peak), 7-day streak" in gym_line
    assert "[on cooldown, do NOT nudge]" in gym_line
    assert "[MILESTONE: 7-day streak!]" in gym_line
    assert "[PEAK momentum!]" in gym_line

    assert "[recovering, be gentle]" in next(l for l in lines if "(id: laundry)" in l)
    assert "Clean gym clothes: 3/7. Runs out in ~5 days (low)." in prompt
    assert "[just started!]" in next(l for l in lines if "(id: reading)" in l)
    assert "Account connected (signed in)." in prompt


def test_build_messages_pairs_system_and_user():
    messages = build_messages(ContextSnapshot.at(NOW), default_habits(), tools_description="- delay_nudge")
    assert [m["role"] for m in messages] == ["system", "user"]
    assert "delay_nudge" in messages[0]["content"]
    assert "Their habits:" in messages[1]["content"]
