"""Value types shared by the schema, validators and repositories.

Set lists are persisted as a JSON array of ``{"value", "weight", "rest"}``
objects. A rest of ``0`` means "no rest" and is normalized to ``None``
whenever a set is built, encoded or decoded.
"""

from __future__ import annotations

import datetime
import json
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional


class ExerciseMode(str, Enum):
    """How an exercise is measured."""

    REPS = "reps"
    VARIABLE_SETS = "variableSets"
    PYRAMID = "pyramid"
    STATIC = "static"

    @property
    def unit(self) -> str:
        return "seconds" if self is ExerciseMode.STATIC else "reps"


class RecurrenceType(str, Enum):
    """How a schedule repeats."""

    ONE_OFF = "oneOff"
    WEEKLY = "weekly"
    OFFSET = "offset"


@dataclass(frozen=True)
class ExerciseSet:
    """One set: reps or seconds, weight in kg and optional rest in seconds."""

    value: int
    weight: float = 0.0
    rest: Optional[int] = None

    def __post_init__(self) -> None:
        if self.rest == 0:
            object.__setattr__(self, "rest", None)
        object.__setattr__(self, "weight", float(self.weight))

    def to_json(self) -> dict:
        return {"value": self.value, "weight": self.weight, "rest": self.rest}

    @classmethod
    def from_json(cls, data: dict) -> "ExerciseSet":
        rest = data.get("rest")
        return cls(
            value=int(data["value"]),
            weight=float(data.get("weight", 0)),
            rest=None if rest in (None, 0) else int(rest),
        )


def encode_sets(sets: Iterable[ExerciseSet]) -> str:
    return json.dumps([s.to_json() for s in sets])


def decode_sets(raw: str) -> List[ExerciseSet]:
    items = json.loads(raw) if raw else []
    if not isinstance(items, list):
        raise ValueError("set list must be a JSON array")
    return [ExerciseSet.from_json(item) for item in items]


def to_day(value: datetime.date | datetime.datetime) -> datetime.date:
    """Truncate a date or datetime to its calendar day."""
    if isinstance(value, datetime.datetime):
        return value.date()
    return value


def day_key(value: datetime.date | datetime.datetime) -> str:
    return to_day(value).isoformat()


def parse_day(raw: str) -> datetime.date:
    return datetime.date.fromisoformat(raw[:10])


def to_timestamp(value: datetime.date | datetime.datetime) -> str:
    if not isinstance(value, datetime.datetime):
        value = datetime.datetime(value.year, value.month, value.day)
    return value.replace(tzinfo=None, microsecond=0).isoformat(timespec="seconds")


def parse_timestamp(raw: str) -> datetime.datetime:
    return datetime.datetime.fromisoformat(raw)


def day_bounds(value: datetime.date | datetime.datetime) -> tuple[str, str]:
    """Return ``[start, next day start)`` timestamps for a calendar day."""
    day = to_day(value)
    return to_timestamp(day), to_timestamp(day + datetime.timedelta(days=1))
