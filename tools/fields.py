"""Closed set of habit fields an action may update, each with a fixed value type."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from core.errors import ValidationError
from habit.models import HabitState


class UpdatableField(str, Enum):
    RESISTANCE_SCORE = "resistance_score"
    STREAK_COUNT = "streak_count"
    COMPLETION_RATE_7D = "completion_rate_7d"
    CLEAN_COUNT = "clean_count"
    DIRTY_COUNT = "dirty_count"
    AVG_CLOTHES_PER_SESSION = "avg_clothes_per_session"


@dataclass(frozen=True)
class FieldSpec:
    value_type: type
    in_metadata: bool = False
    minimum: float | None = None
    maximum: float | None = None
    exclusive_minimum: bool = False


FIELD_SPECS: dict[UpdatableField, FieldSpec] = {
    UpdatableField.RESISTANCE_SCORE: FieldSpec(float, minimum=0.0, maximum=1.0),
    UpdatableField.STREAK_COUNT: FieldSpec(int, minimum=0),
    UpdatableField.COMPLETION_RATE_7D: FieldSpec(float, minimum=0.0, maximum=1.0),
    UpdatableField.CLEAN_COUNT: FieldSpec(int, in_metadata=True, minimum=0),
    UpdatableField.DIRTY_COUNT: FieldSpec(int, in_metadata=True, minimum=0),
    UpdatableField.AVG_CLOTHES_PER_SESSION: FieldSpec(float, in_metadata=True, minimum=0.0, exclusive_minimum=True),
}

# accepted spellings from model output, e.g. "metadata.clean_count"
_ALIASES = {f"metadata.{f.value}": f for f, spec in FIELD_SPECS.items() if spec.in_metadata}


@dataclass(frozen=True)
class FieldUpdate:
    field: UpdatableField
    value: Union[int, float]

    def apply(self, habit: HabitState) -> Any:
        """Write the value onto ``habit`` and return the previous value."""
        if FIELD_SPECS[self.field].in_metadata:
            previous = habit.metadata.get(self.field.value)
            habit.metadata[self.field.value] = self.value
        else:
            previous = getattr(habit, self.field.value)
            setattr(habit, self.field.value, self.value)
        return previous


def resolve_field(name: str) -> UpdatableField:
    key = (name or "").strip()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return UpdatableField(key)
    except ValueError:
        allowed = ", ".join(f.value for f in UpdatableField)
        raise ValidationError(f'Field "{name}" is not updatable. Allowed: {allowed}') from None


def parse_field_update(name: str, raw: Any) -> FieldUpdate:
    field = resolve_field(name)
    spec = FIELD_SPECS[field]
    if isinstance(raw, bool):
        raise ValidationError(f"Invalid value for {field.value}: {raw!r}")
    try:
        number = float(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid value for {field.value}: {raw!r}") from None
    if number != number:  # NaN
        raise ValidationError(f"Invalid value for {field.value}: {raw!r}")
    if spec.value_type is int:
        if not number.is_integer():
            raise ValidationError(f"{field.value} must be a whole number, got {raw!r}")
        value: Union[int, float] = int(number)
    else:
        value = number

    if spec.minimum is not None:
        if value < spec.minimum or (spec.exclusive_minimum and value == spec.minimum):
            raise ValidationError(f"{field.value} out of range: {value}")
    if spec.maximum is not None and value > spec.maximum:
        raise ValidationError(f"{field.value} out of range: {value}")
    return FieldUpdate(field, value)
