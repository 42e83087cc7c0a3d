from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from algorithms import ScheduleRecurrence
from converters import to_day
from db import (
    CompletedWorkoutRepository,
    ExerciseRepository,
    ScheduleRepository,
    WorkoutRepository,
)
from models import (
    CompletedExercise,
    CompletedWorkout,
    ExerciseData,
    Schedule,
    ScheduleOverride,
    Workout,
    WorkoutExercise,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduledWorkout:
    """One occurrence of a schedule on a calendar day."""

    schedule: Schedule
    workout: Workout
    date: datetime.date
    override: Optional[ScheduleOverride] = None


class ScheduleService:
    """Answers calendar questions by combining schedules, workouts and overrides."""

    def __init__(
        self,
        schedule_repo: ScheduleRepository,
        workout_repo: WorkoutRepository,
    ) -> None:
        self.schedules = schedule_repo
        self.workouts = workout_repo

    async def scheduled_workouts_for_date(self, date: datetime.date) -> List[ScheduledWorkout]:
        day = to_day(date)
        result: List[ScheduledWorkout] = []
        for schedule in await self.schedules.list_for_date(day):
            workout = await self.workouts.get_by_id(schedule.workout_id)
            if workout is None or workout.is_disabled:
                continue
            override = await self.schedules.get_override(schedule.id, day)
            result.append(ScheduledWorkout(schedule, workout, day, override))
        return result

    async def dates_with_workouts(
        self, from_date: datetime.date, to_date: datetime.date
    ) -> Set[datetime.date]:
        enabled = {w.id for w in await self.workouts.list_enabled()}
        dates: Set[datetime.date] = set()
        for schedule in await self.schedules.list_all():
            if schedule.workout_id not in enabled:
                continue
            dates.update(
                ScheduleRecurrence.occurrences_in_range(
                    schedule.start_date,
                    schedule.recurrence_type,
                    schedule.offset_days,
                    from_date,
                    to_date,
                )
            )
        return dates

    async def has_override(self, schedule_id: int, date: datetime.date) -> bool:
        return await self.schedules.get_override(schedule_id, date) is not None

    async def get_or_create_override(
        self, schedule_id: int, date: datetime.date
    ) -> ScheduleOverride:
        existing = await self.schedules.get_override(schedule_id, date)
        if existing is not None:
            return existing
        await self.schedules.insert_override(schedule_id, date)
        return await self.schedules.get_override(schedule_id, date)

    async def copy_workout_exercises_to_override(
        self, schedule_id: int, date: datetime.date
    ) -> Optional[ScheduleOverride]:
        """Seed the override for ``date`` with the template's exercises.

        Returns ``None`` when the schedule does not exist.
        """
        schedule = await self.schedules.get_by_id(schedule_id)
        if schedule is None:
            return None
        override = await self.get_or_create_override(schedule_id, date)
        template = await self.workouts.list_exercises(schedule.workout_id)
        await self.schedules.copy_workout_exercises(override.id, template)
        logger.info(
            "copied %d exercises into override %s", len(template), override.id
        )
        return override


class WorkoutService:
    """Template-level helpers on top of the workout and exercise repositories."""

    def __init__(
        self,
        workout_repo: WorkoutRepository,
        exercise_repo: ExerciseRepository,
    ) -> None:
        self.workouts = workout_repo
        self.exercises = exercise_repo

    async def get_with_exercises(
        self, workout_id: int
    ) -> Optional[Tuple[Workout, List[WorkoutExercise]]]:
        workout = await self.workouts.get_by_id(workout_id)
        if workout is None:
            return None
        return workout, await self.workouts.list_exercises(workout_id)

    async def list_with_exercises(self) -> List[Tuple[Workout, List[WorkoutExercise]]]:
        return [
            (w, await self.workouts.list_exercises(w.id))
            for w in await self.workouts.list_enabled()
        ]

    async def is_name_available(self, name: str, exclude_id: Optional[int] = None) -> bool:
        return not await self.workouts.name_exists(name, exclude_id)

    async def replace_exercises(self, workout_id: int, items: Sequence[ExerciseData]) -> None:
        await self.workouts.replace_exercises(workout_id, items)

    async def exercise_data_from_exercise(self, exercise_id: int) -> ExerciseData:
        exercise = await self.exercises.get_by_id(exercise_id)
        if exercise is None:
            raise ValueError("exercise not found")
        return ExerciseData(
            exercise_id=exercise.id,
            mode=exercise.mode,
            sets=exercise.sets,
            rest_after_exercise=exercise.rest_after_exercise,
        )


class CompletionService:
    """Records and queries completed workouts."""

    def __init__(
        self,
        completed_repo: CompletedWorkoutRepository,
        workout_repo: WorkoutRepository,
    ) -> None:
        self.completed = completed_repo
        self.workouts = workout_repo

    async def complete_workout(
        self,
        workout_id: int,
        date: datetime.date,
        items: Sequence[ExerciseData],
        completed_at: Optional[datetime.datetime] = None,
    ) -> int:
        completed_id = await self.completed.insert_with_exercises(
            workout_id, date, items, completed_at
        )
        logger.info("workout %s completed for %s", workout_id, to_day(date))
        return completed_id

    async def complete_from_template(
        self,
        workout_id: int,
        date: datetime.date,
        completed_at: Optional[datetime.datetime] = None,
    ) -> int:
        """Complete a workout exactly as its template prescribes."""
        if await self.workouts.get_by_id(workout_id) is None:
            raise ValueError("workout not found")
        items = [
            ExerciseData(we.exercise_id, we.mode, we.sets, we.rest_after_exercise)
            for we in await self.workouts.list_exercises(workout_id)
        ]
        return await self.complete_workout(workout_id, date, items, completed_at)

    async def uncomplete(self, completed_workout_id: int) -> int:
        return await self.completed.delete(completed_workout_id)

    async def completed_dates_in_range(
        self, from_date: datetime.date, to_date: datetime.date
    ) -> Set[datetime.date]:
        start, end = to_day(from_date), to_day(to_date)
        return {
            c.date.date()
            for c in await self.completed.list_all()
            if start <= c.date.date() <= end
        }

    async def all_completed_for_date(
        self, date: datetime.date, workout_ids: Iterable[int]
    ) -> bool:
        ids = list(workout_ids)
        if not ids:
            return False
        done = {c.workout_id for c in await self.completed.list_for_date(date)}
        return all(wid in done for wid in ids)

    async def completed_with_details_for_date(
        self, date: datetime.date
    ) -> List[Tuple[CompletedWorkout, List[CompletedExercise]]]:
        return [
            (c, await self.completed.list_exercises(c.id))
            for c in await self.completed.list_for_date(date)
        ]
