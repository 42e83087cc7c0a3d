from __future__ import annotations

from typing import Optional, Sequence

from converters import ExerciseSet, RecurrenceType

MAX_NAME_LENGTH = 100


class ValidationError(ValueError):
    """Raised when a field violates its contract; ``field`` names the culprit."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field} - {message}")
        self.field = field
        self.message = message


def validate_name(name: str, field: str = "name") -> None:
    if not name:
        raise ValidationError(field, "Name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            field, f"Name cannot exceed {MAX_NAME_LENGTH} characters"
        )


def validate_sets(sets: Sequence[ExerciseSet]) -> None:
    if not sets:
        raise ValidationError("sets", "Must have at least one set")
    for i, item in enumerate(sets):
        if item.rest is not None and item.rest < 1:
            raise ValidationError(
                f"sets[{i}].rest", "Set rest must be >= 1 second when set"
            )


def validate_rest(rest: Optional[int]) -> Optional[int]:
    """Return ``rest`` with ``0`` normalized to ``None``."""
    if rest is None or rest == 0:
        return None
    if rest < 1:
        raise ValidationError("rest", "Rest must be >= 1 second when set")
    return rest


def validate_order_index(order_index: int) -> None:
    if order_index < 0:
        raise ValidationError("orderIndex", "Order index must be >= 0")


def validate_offset_days(
    recurrence_type: RecurrenceType, offset_days: Optional[int]
) -> None:
    # offset_days is kept but ignored for the other recurrence types
    if RecurrenceType(recurrence_type) is RecurrenceType.OFFSET:
        if offset_days is None or offset_days < 1:
            raise ValidationError(
                "offsetDays", "Offset days must be >= 1 for offset recurrence"
            )


def validate_xor_constraint(
    exercise_id: Optional[int],
    workout_exercise_id: Optional[int],
    fields: tuple[str, str] = ("exerciseId", "workoutExerciseId"),
) -> None:
    if (exercise_id is not None) == (workout_exercise_id is not None):
        raise ValidationError(
            "/".join(fields),
            f"Exactly one of {fields[0]} or {fields[1]} must be set",
        )
