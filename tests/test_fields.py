import pytest

from core.errors import ValidationError
from tools.fields import UpdatableField, parse_field_update, resolve_field
from factories import make_habit


@pytest.mark.parametrize(
    "name,raw,expected",
    [
        ("resistance_score", "0.35", 0.35),
        ("streak_count", "12", 12),
        ("streak_count", 3.0, 3),
        ("completion_rate_7d", 1, 1.0),
        ("clean_count", "0", 0),
        ("metadata.dirty_count", "2", 2),
        ("avg_clothes_per_session", "1.5", 1.5),
    ],
)
def test_valid_updates_are_typed(name, raw, expected):
    update = parse_field_update(name, raw)
    assert update.value == expected
    assert type(update.value) is type(expected)


@pytest.mark.parametrize(
    "name,raw",
    [
        ("momentum_score", "50"),  # derived, never settable
        ("cooldown_until", "0"),
        ("resistance_score", "1.5"),
        ("completion_rate_7d", "-0.1"),
        ("streak_count", "2.5"),
        ("streak_count", "-1"),
        ("avg_clothes_per_session", "0"),
        ("clean_count", "lots"),
        ("clean_count", True),
        ("resistance_score", "nan"),
    ],
)
def test_invalid_updates_are_rejected(name, raw):
    with pytest.raises(ValidationError):
        parse_field_update(name, raw)


def test_apply_targets_attribute_or_metadata():
    habit = make_habit(streak_count=1, metadata={"clean_count": 5})
    assert parse_field_update("streak_count", "4").apply(habit) == 1
    assert habit.streak_count == 4
    assert parse_field_update("clean_count", "2").apply(habit) == 5
    assert habit.metadata["clean_count"] == 2
    assert "clean_count" not in vars(habit)


def test_error_lists_allowed_fields():
    with pytest.raises(ValidationError) as exc:
        resolve_field("friction_score")
    for field in UpdatableField:
        assert field.value in str(exc.value)
