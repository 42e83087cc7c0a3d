"""Typed records returned by the repositories.

Each record class knows its column list (``COLUMNS``) and how to build itself
from a row selected in that order.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence, Tuple, Union

from converters import (
    ExerciseMode,
    ExerciseSet,
    RecurrenceType,
    decode_sets,
    parse_day,
    parse_timestamp,
)


def _sets(value: Sequence[ExerciseSet]) -> Tuple[ExerciseSet, ...]:
    return tuple(value)


def _normalize(record) -> None:
    # accept plain strings and lists from callers
    object.__setattr__(record, "mode", ExerciseMode(record.mode))
    object.__setattr__(record, "sets", _sets(record.sets))


@dataclass(frozen=True)
class Exercise:
    id: int
    name: str
    mode: ExerciseMode
    sets: Tuple[ExerciseSet, ...]
    is_default: bool = False
    is_disabled: bool = False
    rest_after_exercise: Optional[int] = None

    def __post_init__(self) -> None:
        _normalize(self)

    COLUMNS = "id, name, mode, sets, is_default, is_disabled, rest_after_exercise"

    @classmethod
    def from_row(cls, row: tuple) -> "Exercise":
        return cls(
            id=row[0],
            name=row[1],
            mode=ExerciseMode(row[2]),
            sets=_sets(decode_sets(row[3])),
            is_default=bool(row[4]),
            is_disabled=bool(row[5]),
            rest_after_exercise=row[6],
        )

    def copy_with(self, **changes) -> "Exercise":
        return replace(self, **changes)


@dataclass(frozen=True)
class Workout:
    id: int
    name: str
    icon_code_point: int
    is_disabled: bool = False

    COLUMNS = "id, name, icon_code_point, is_disabled"

    @classmethod
    def from_row(cls, row: tuple) -> "Workout":
        return cls(id=row[0], name=row[1], icon_code_point=row[2], is_disabled=bool(row[3]))

    def copy_with(self, **changes) -> "Workout":
        return replace(self, **changes)


@dataclass(frozen=True)
class WorkoutExercise:
    id: int
    workout_id: int
    exercise_id: int
    mode: ExerciseMode
    order_index: int
    sets: Tuple[ExerciseSet, ...]
    rest_after_exercise: Optional[int] = None

    def __post_init__(self) -> None:
        _normalize(self)

    COLUMNS = "id, workout_id, exercise_id, mode, order_index, sets, rest_after_exercise"

    @classmethod
    def from_row(cls, row: tuple) -> "WorkoutExercise":
        return cls(
            id=row[0],
            workout_id=row[1],
            exercise_id=row[2],
            mode=ExerciseMode(row[3]),
            order_index=row[4],
            sets=_sets(decode_sets(row[5])),
            rest_after_exercise=row[6],
        )

    def copy_with(self, **changes) -> "WorkoutExercise":
        return replace(self, **changes)


@dataclass(frozen=True)
class Schedule:
    id: int
    workout_id: int
    start_date: datetime.date
    recurrence_type: RecurrenceType
    offset_days: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "recurrence_type", RecurrenceType(self.recurrence_type))

    COLUMNS = "id, workout_id, start_date, recurrence_type, offset_days"

    @classmethod
    def from_row(cls, row: tuple) -> "Schedule":
        return cls(
            id=row[0],
            workout_id=row[1],
            start_date=parse_day(row[2]),
            recurrence_type=RecurrenceType(row[3]),
            offset_days=row[4],
        )

    def copy_with(self, **changes) -> "Schedule":
        return replace(self, **changes)


@dataclass(frozen=True)
class ScheduleOverride:
    id: int
    schedule_id: int
    date: datetime.date

    COLUMNS = "id, schedule_id, date"

    @classmethod
    def from_row(cls, row: tuple) -> "ScheduleOverride":
        return cls(id=row[0], schedule_id=row[1], date=parse_day(row[2]))


@dataclass(frozen=True)
class OverrideExercise:
    """An exercise line of an override.

    Exactly one of ``workout_exercise_id`` (carried over from the template)
    and ``exercise_id`` (added for this date only) is set.
    """

    id: int
    override_id: int
    exercise_id: Optional[int]
    workout_exercise_id: Optional[int]
    mode: ExerciseMode
    order_index: int
    sets: Tuple[ExerciseSet, ...]
    rest_after_exercise: Optional[int] = None

    def __post_init__(self) -> None:
        _normalize(self)

    COLUMNS = (
        "id, override_id, exercise_id, workout_exercise_id, mode, order_index, "
        "sets, rest_after_exercise"
    )

    @classmethod
    def from_row(cls, row: tuple) -> "OverrideExercise":
        return cls(
            id=row[0],
            override_id=row[1],
            exercise_id=row[2],
            workout_exercise_id=row[3],
            mode=ExerciseMode(row[4]),
            order_index=row[5],
            sets=_sets(decode_sets(row[6])),
            rest_after_exercise=row[7],
        )

    def copy_with(self, **changes) -> "OverrideExercise":
        return replace(self, **changes)


@dataclass(frozen=True)
class CompletedWorkout:
    id: int
    workout_id: int
    date: datetime.datetime
    completed_at: datetime.datetime

    COLUMNS = "id, workout_id, date, completed_at"

    @classmethod
    def from_row(cls, row: tuple) -> "CompletedWorkout":
        return cls(
            id=row[0],
            workout_id=row[1],
            date=parse_timestamp(row[2]),
            completed_at=parse_timestamp(row[3]),
        )


@dataclass(frozen=True)
class CompletedExercise:
    id: int
    completed_workout_id: int
    exercise_id: int
    mode: ExerciseMode
    order_index: int
    sets: Tuple[ExerciseSet, ...]
    rest_after_exercise: Optional[int] = None

    def __post_init__(self) -> None:
        _normalize(self)

    COLUMNS = (
        "id, completed_workout_id, exercise_id, mode, order_index, sets, "
        "rest_after_exercise"
    )

    @classmethod
    def from_row(cls, row: tuple) -> "CompletedExercise":
        return cls(
            id=row[0],
            completed_workout_id=row[1],
            exercise_id=row[2],
            mode=ExerciseMode(row[3]),
            order_index=row[4],
            sets=_sets(decode_sets(row[5])),
            rest_after_exercise=row[6],
        )

    def copy_with(self, **changes) -> "CompletedExercise":
        return replace(self, **changes)


@dataclass(frozen=True)
class ExerciseData:
    """Input for the multi-row inserts; the position comes from list order."""

    exercise_id: int
    mode: ExerciseMode
    sets: Tuple[ExerciseSet, ...] = field(default_factory=tuple)
    rest_after_exercise: Optional[int] = None

    def __post_init__(self) -> None:
        _normalize(self)


# Per-mode defaults. Each variant carries only the fields its mode uses.


@dataclass(frozen=True)
class RepsDefaults:
    sets: int = 4
    reps: int = 10
    weight: float = 0.0
    rest: Optional[int] = None
    mode: ExerciseMode = field(default=ExerciseMode.REPS, init=False)

    def to_sets(self) -> list[ExerciseSet]:
        return _uniform(self.sets, self.reps, self.weight, self.rest)


@dataclass(frozen=True)
class VariableSetsDefaults:
    reps_per_set: Tuple[int, ...] = (10, 10, 10, 10)
    weight: float = 0.0
    rest_per_set: Optional[Tuple[Optional[int], ...]] = None
    mode: ExerciseMode = field(default=ExerciseMode.VARIABLE_SETS, init=False)

    def to_sets(self) -> list[ExerciseSet]:
        last = len(self.reps_per_set) - 1
        result = []
        for i, reps in enumerate(self.reps_per_set):
            if self.rest_per_set is not None and i < len(self.rest_per_set):
                rest = self.rest_per_set[i]
            else:
                rest = None
            result.append(ExerciseSet(reps, self.weight, None if i == last else rest))
        return result


@dataclass(frozen=True)
class PyramidDefaults:
    top: int = 10
    weight: float = 0.0
    rest: Optional[int] = None
    mode: ExerciseMode = field(default=ExerciseMode.PYRAMID, init=False)

    def to_sets(self) -> list[ExerciseSet]:
        values = list(range(1, self.top + 1)) + list(range(self.top - 1, 0, -1))
        last = len(values) - 1
        return [
            ExerciseSet(v, self.weight, None if i == last else self.rest)
            for i, v in enumerate(values)
        ]


@dataclass(frozen=True)
class StaticDefaults:
    sets: int = 4
    seconds: int = 30
    weight: float = 0.0
    rest: Optional[int] = None
    mode: ExerciseMode = field(default=ExerciseMode.STATIC, init=False)

    def to_sets(self) -> list[ExerciseSet]:
        return _uniform(self.sets, self.seconds, self.weight, self.rest)


ModeDefaults = Union[RepsDefaults, VariableSetsDefaults, PyramidDefaults, StaticDefaults]

_DEFAULTS_BY_MODE = {
    ExerciseMode.REPS: RepsDefaults,
    ExerciseMode.VARIABLE_SETS: VariableSetsDefaults,
    ExerciseMode.PYRAMID: PyramidDefaults,
    ExerciseMode.STATIC: StaticDefaults,
}


def defaults_for(mode: ExerciseMode) -> ModeDefaults:
    return _DEFAULTS_BY_MODE[mode]()


def _uniform(count: int, value: int, weight: float, rest: Optional[int]) -> list[ExerciseSet]:
    # no rest after the final set
    return [
        ExerciseSet(value, weight, None if i == count - 1 else rest)
        for i in range(count)
    ]
