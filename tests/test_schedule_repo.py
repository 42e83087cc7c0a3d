import datetime
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from converters import ExerciseMode, ExerciseSet, RecurrenceType
from db import (
    ExerciseRepository,
    ForeignKeyViolation,
    ScheduleRepository,
    UniqueViolation,
    WorkoutRepository,
)
from models import ExerciseData
from validators import ValidationError

SETS = [ExerciseSet(5, 0, 60), ExerciseSet(5, 0, None)]
MONDAY = datetime.date(2024, 1, 1)


@pytest.fixture
def db_file(tmp_path):
    return str(tmp_path / "schedule.db")


async def _workout(db_file):
    exercises = ExerciseRepository(db_file, seed_defaults=False)
    workouts = WorkoutRepository(db_file)
    eid = await exercises.insert("Squat", ExerciseMode.REPS, SETS)
    wid = await workouts.insert_with_exercises(
        "Legs", 1, [ExerciseData(eid, ExerciseMode.REPS, SETS)]
    )
    return wid, eid, (await workouts.list_exercises(wid))[0].id


@pytest.mark.asyncio
async def test_insert_truncates_start_date(db_file):
    wid, _eid, _we = await _workout(db_file)
    repo = ScheduleRepository(db_file)
    sid = await repo.insert(wid, datetime.datetime(2024, 1, 1, 18, 30), RecurrenceType.WEEKLY)
    schedule = await repo.get_by_id(sid)
    assert schedule.start_date == MONDAY
    assert schedule.recurrence_type is RecurrenceType.WEEKLY
    assert [s.id for s in await repo.list_for_workout(wid)] == [sid]
    assert await repo.get_by_id(999) is None


@pytest.mark.asyncio
async def test_offset_requires_positive_days(db_file):
    wid, _eid, _we = await _workout(db_file)
    repo = ScheduleRepository(db_file)
    with pytest.raises(ValidationError) as info:
        await repo.insert(wid, MONDAY, RecurrenceType.OFFSET)
    assert info.value.field == "offsetDays"
    sid = await repo.insert(wid, MONDAY, RecurrenceType.WEEKLY, offset_days=0)
    schedule = await repo.get_by_id(sid)
    assert schedule.offset_days == 0
    with pytest.raises(ValidationError):
        await repo.update(schedule.copy_with(recurrence_type=RecurrenceType.OFFSET))
    assert await repo.update(
        schedule.copy_with(recurrence_type=RecurrenceType.OFFSET, offset_days=2)
    )


@pytest.mark.asyncio
async def test_unknown_workout_rejected(db_file):
    repo = ScheduleRepository(db_file)
    with pytest.raises(ForeignKeyViolation):
        await repo.insert(42, MONDAY, RecurrenceType.ONE_OFF)


@pytest.mark.asyncio
async def test_list_for_date_uses_recurrence(db_file):
    wid, _eid, _we = await _workout(db_file)
    repo = ScheduleRepository(db_file)
    weekly = await repo.insert(wid, MONDAY, RecurrenceType.WEEKLY)
    once = await repo.insert(wid, MONDAY + datetime.timedelta(days=2), RecurrenceType.ONE_OFF)
    every3 = await repo.insert(wid, MONDAY, RecurrenceType.OFFSET, 3)
    assert [s.id for s in await repo.list_for_date(MONDAY)] == [weekly, every3]
    assert [s.id for s in await repo.list_for_date(datetime.date(2024, 1, 3))] == [once]
    assert [s.id for s in await repo.list_for_date(datetime.date(2024, 1, 22))] == [weekly, every3]
    assert await repo.list_for_date(datetime.date(2023, 12, 25)) == []


@pytest.mark.asyncio
async def test_override_keyed_by_day(db_file):
    wid, _eid, _we = await _workout(db_file)
    repo = ScheduleRepository(db_file)
    sid = await repo.insert(wid, MONDAY, RecurrenceType.WEEKLY)
    oid = await repo.insert_override(sid, datetime.datetime(2024, 1, 3, 7, 0))
    override = await repo.get_override(sid, datetime.datetime(2024, 1, 3, 23, 0))
    assert override.id == oid
    assert override.date == datetime.date(2024, 1, 3)
    with pytest.raises(UniqueViolation):
        await repo.insert_override(sid, datetime.date(2024, 1, 3))
    assert await repo.delete_override(sid, datetime.date(2024, 1, 3)) == 1
    assert await repo.get_override(sid, datetime.date(2024, 1, 3)) is None


@pytest.mark.asyncio
async def test_override_exercises_xor(db_file):
    wid, eid, we_id = await _workout(db_file)
    repo = ScheduleRepository(db_file)
    sid = await repo.insert(wid, MONDAY, RecurrenceType.WEEKLY)
    oid = await repo.insert_override(sid, MONDAY)
    carried = await repo.add_override_exercise_from_workout(oid, we_id, ExerciseMode.REPS, 0, SETS)
    added = await repo.add_override_exercise_new(oid, eid, ExerciseMode.STATIC, 1, SETS)
    listed = await repo.list_override_exercises(oid)
    assert [(o.id, o.exercise_id, o.workout_exercise_id) for o in listed] == [
        (carried, None, we_id),
        (added, eid, None),
    ]
    with pytest.raises(ValidationError) as info:
        await repo.update_override_exercise(listed[0].copy_with(exercise_id=eid))
    assert info.value.field == "exerciseId/workoutExerciseId"
    with pytest.raises(ValidationError):
        await repo.update_override_exercise(listed[1].copy_with(exercise_id=None))
    assert await repo.update_override_exercise(
        listed[1].copy_with(exercise_id=None, workout_exercise_id=we_id, order_index=5)
    )
    assert (await repo.get_override_exercise(added)).order_index == 5
    assert await repo.remove_override_exercise(carried) == 1
    assert [o.id for o in await repo.list_override_exercises(oid)] == [added]


@pytest.mark.asyncio
async def test_override_exercise_validation_before_write(db_file):
    wid, eid, _we = await _workout(db_file)
    repo = ScheduleRepository(db_file)
    sid = await repo.insert(wid, MONDAY, RecurrenceType.WEEKLY)
    oid = await repo.insert_override(sid, MONDAY)
    with pytest.raises(ValidationError) as info:
        await repo.add_override_exercise_new(oid, eid, ExerciseMode.REPS, 0, [ExerciseSet(5, 0, -1)])
    assert info.value.field == "sets[0].rest"
    assert await repo.list_override_exercises(oid) == []


@pytest.mark.asyncio
async def test_delete_schedule_cascades(db_file):
    wid, eid, we_id = await _workout(db_file)
    repo = ScheduleRepository(db_file)
    sid = await repo.insert(wid, MONDAY, RecurrenceType.WEEKLY)
    oid = await repo.insert_override(sid, MONDAY)
    await repo.add_override_exercise_from_workout(oid, we_id, ExerciseMode.REPS, 0, SETS)
    await repo.add_override_exercise_new(oid, eid, ExerciseMode.REPS, 1, SETS)
    assert await repo.delete(sid) == 1
    assert await repo.get_override(sid, MONDAY) is None
    assert await repo.list_override_exercises(oid) == []
    assert await repo.fetch_all("SELECT id FROM override_exercises") == []


@pytest.mark.asyncio
async def test_workout_exercise_in_override_is_restricted(db_file):
    wid, _eid, we_id = await _workout(db_file)
    repo = ScheduleRepository(db_file)
    workouts = WorkoutRepository(db_file)
    sid = await repo.insert(wid, MONDAY, RecurrenceType.WEEKLY)
    oid = await repo.insert_override(sid, MONDAY)
    await repo.add_override_exercise_from_workout(oid, we_id, ExerciseMode.REPS, 0, SETS)
    with pytest.raises(ForeignKeyViolation):
        await workouts.remove_exercise(we_id)


@pytest.mark.asyncio
async def test_copy_workout_exercises(db_file):
    wid, _eid, we_id = await _workout(db_file)
    repo = ScheduleRepository(db_file)
    workouts = WorkoutRepository(db_file)
    sid = await repo.insert(wid, MONDAY, RecurrenceType.WEEKLY)
    oid = await repo.insert_override(sid, MONDAY)
    await repo.copy_workout_exercises(oid, await workouts.list_exercises(wid))
    copied = await repo.list_override_exercises(oid)
    assert [(o.workout_exercise_id, o.order_index, o.sets) for o in copied] == [
        (we_id, 0, tuple(SETS))
    ]


@pytest.mark.asyncio
async def test_update_accepts_plain_kind_strings(db_file):
    wid, _eid, _we = await _workout(db_file)
    repo = ScheduleRepository(db_file)
    sid = await repo.insert(wid, MONDAY, "weekly")
    schedule = await repo.get_by_id(sid)
    with pytest.raises(ValidationError) as info:
        await repo.update(schedule.copy_with(recurrence_type="offset", offset_days=None))
    assert info.value.field == "offsetDays"
    assert (await repo.get_by_id(sid)).recurrence_type is RecurrenceType.WEEKLY
    assert await repo.update(schedule.copy_with(recurrence_type="offset", offset_days=2))
    assert (await repo.get_by_id(sid)).recurrence_type is RecurrenceType.OFFSET


@pytest.mark.asyncio
async def test_override_exercise_update_with_plain_mode(db_file):
    wid, eid, _we = await _workout(db_file)
    repo = ScheduleRepository(db_file)
    sid = await repo.insert(wid, MONDAY, RecurrenceType.WEEKLY)
    oid = await repo.insert_override(sid, MONDAY)
    line_id = await repo.add_override_exercise_new(oid, eid, "reps", 0, SETS)
    line = await repo.get_override_exercise(line_id)
    assert await repo.update_override_exercise(line.copy_with(mode="static"))
    assert (await repo.get_override_exercise(line_id)).mode is ExerciseMode.STATIC
