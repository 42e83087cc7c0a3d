import argparse
import asyncio
import datetime
import logging
import shutil

from config import YamlConfig
from converters import RecurrenceType
from db import Database, ExerciseRepository, ScheduleRepository, WorkoutRepository
from models import ExerciseData
from planner_service import ScheduleService
from settings_schema import StoreSettings

logger = logging.getLogger(__name__)

DEMO_WORKOUT = "Full Body"
DEMO_EXERCISES = ("Pull Ups", "Push Ups", "Dips")
# fitness_center
DEMO_ICON = 0xE28D


def init_db(settings: StoreSettings) -> None:
    Database(settings.database_path, seed_defaults=settings.seed_defaults)
    logger.info("store ready at %s", settings.database_path)


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


async def demo_data(settings: StoreSettings) -> bool:
    """Insert a weekly demo workout if the store has no workouts yet."""
    db_path = settings.database_path
    exercises = ExerciseRepository(db_path, seed_defaults=settings.seed_defaults)
    workouts = WorkoutRepository(db_path)
    schedules = ScheduleRepository(db_path)
    if await workouts.list_all():
        print("Database already contains workouts")
        return False
    items = []
    for name in DEMO_EXERCISES:
        exercise = await exercises.find_by_name(name)
        if exercise is not None:
            items.append(
                ExerciseData(
                    exercise.id, exercise.mode, exercise.sets, exercise.rest_after_exercise
                )
            )
    workout_id = await workouts.insert_with_exercises(DEMO_WORKOUT, DEMO_ICON, items)
    await schedules.insert(workout_id, datetime.date.today(), RecurrenceType.WEEKLY)
    print("Demo data inserted")
    return True


async def print_calendar(
    settings: StoreSettings, from_date: datetime.date, to_date: datetime.date
) -> None:
    db_path = settings.database_path
    service = ScheduleService(ScheduleRepository(db_path), WorkoutRepository(db_path))
    day = from_date
    while day <= to_date:
        scheduled = await service.scheduled_workouts_for_date(day)
        names = ", ".join(s.workout.name for s in scheduled) or "-"
        print(f"{day.isoformat()}  {names}")
        day += datetime.timedelta(days=1)


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Workout store maintenance")
    parser.add_argument("--config", default="settings.yaml")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("init")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")

    sub.add_parser("demo")

    cal = sub.add_parser("calendar")
    cal.add_argument("--from", dest="from_date", type=datetime.date.fromisoformat,
                     default=datetime.date.today())
    cal.add_argument("--to", dest="to_date", type=datetime.date.fromisoformat)

    args = parser.parse_args(argv)
    settings = YamlConfig(args.config).settings()
    logging.basicConfig(level=settings.log_level)

    if args.cmd == "init":
        init_db(settings)
    elif args.cmd == "backup":
        backup_db(settings.database_path, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, settings.database_path)
    elif args.cmd == "demo":
        asyncio.run(demo_data(settings))
    elif args.cmd == "calendar":
        to_date = args.to_date or args.from_date + datetime.timedelta(days=6)
        asyncio.run(print_calendar(settings, args.from_date, to_date))


if __name__ == "__main__":
    main()
