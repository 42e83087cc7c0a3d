import asyncio
import datetime
import logging
import os
import re
import sqlite3
from contextlib import asynccontextmanager, contextmanager
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import aiosqlite

from algorithms import ScheduleRecurrence
from converters import (
    ExerciseMode,
    ExerciseSet,
    RecurrenceType,
    day_bounds,
    day_key,
    encode_sets,
    to_timestamp,
)
from models import (
    CompletedExercise,
    CompletedWorkout,
    Exercise,
    ExerciseData,
    OverrideExercise,
    Schedule,
    ScheduleOverride,
    Workout,
    WorkoutExercise,
)
from validators import (
    validate_name,
    validate_offset_days,
    validate_order_index,
    validate_rest,
    validate_sets,
    validate_xor_constraint,
)

logger = logging.getLogger(__name__)


class DataLayerError(Exception):
    """Base class for storage failures."""


class IntegrityViolation(DataLayerError):
    """A storage constraint rejected the write."""


class ForeignKeyViolation(IntegrityViolation):
    """A referenced row is missing, or a restricted row is still in use."""


class UniqueViolation(IntegrityViolation):
    """A unique column already holds the value."""


class NotNullViolation(IntegrityViolation):
    """A required column was left empty."""


def _integrity_violation(exc: sqlite3.IntegrityError) -> IntegrityViolation:
    message = str(exc)
    if "FOREIGN KEY" in message:
        return ForeignKeyViolation(message)
    if "UNIQUE" in message:
        return UniqueViolation(message)
    if "NOT NULL" in message:
        return NotNullViolation(message)
    return IntegrityViolation(message)


class ChangeNotifier:
    """Wakes subscriptions whose tables were written by a committed transaction.

    One notifier exists per database file while it has listeners; it is
    dropped from the registry when the last listener detaches.
    """

    _registry: Dict[str, "ChangeNotifier"] = {}

    def __init__(self, key: str) -> None:
        self._key = key
        self._listeners: Dict[int, Tuple[frozenset, asyncio.Event]] = {}
        self._next_token = 0

    @classmethod
    def for_path(cls, db_path: str) -> "ChangeNotifier":
        key = os.path.abspath(db_path)
        if key not in cls._registry:
            cls._registry[key] = cls(key)
        return cls._registry[key]

    @classmethod
    def publish(cls, db_path: str, tables: Set[str]) -> None:
        notifier = cls._registry.get(os.path.abspath(db_path))
        if notifier is not None:
            notifier.notify(tables)

    def add_listener(self, tables: Iterable[str], event: asyncio.Event) -> int:
        self._next_token += 1
        self._listeners[self._next_token] = (frozenset(tables), event)
        return self._next_token

    def remove_listener(self, token: int) -> None:
        self._listeners.pop(token, None)
        if not self._listeners and self._registry.get(self._key) is self:
            del self._registry[self._key]

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def notify(self, tables: Set[str]) -> None:
        if not tables:
            return
        for watched, event in list(self._listeners.values()):
            if watched & tables:
                event.set()


class QuerySubscription:
    """Live query result.

    The first ``__anext__`` yields the current result. Each later one waits
    for a committed write to a watched table, re-runs the query and yields
    the new result if it differs from the last one. ``cancel()`` (or leaving
    ``async with``) detaches the listener and ends iteration.
    """

    def __init__(
        self,
        notifier: ChangeNotifier,
        tables: Iterable[str],
        query: Callable[[], Awaitable],
    ) -> None:
        self._notifier = notifier
        self._query = query
        self._changed = asyncio.Event()
        self._token = notifier.add_listener(tables, self._changed)
        self._primed = False
        self._pending = False
        self._closed = False
        self._last = None
        logger.debug("subscription %s opened on %s", self._token, sorted(tables))

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "QuerySubscription":
        return self

    async def __anext__(self):
        if self._closed:
            raise StopAsyncIteration
        if not self._primed:
            self._last = await self._query()
            self._primed = True
            return self._last
        while True:
            if not self._pending:
                await self._changed.wait()
                self._changed.clear()
                if self._closed:
                    raise StopAsyncIteration
                self._pending = True
            value = await self._query()
            self._pending = False
            if value != self._last:
                self._last = value
                return value

    def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._notifier.remove_listener(self._token)
        self._changed.set()
        logger.debug("subscription %s cancelled", self._token)

    async def __aenter__(self) -> "QuerySubscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.cancel()


DEFAULT_EXERCISES: List[Tuple[str, ExerciseMode, int]] = [
    ("Pull Ups", ExerciseMode.REPS, 10),
    ("Push Ups", ExerciseMode.REPS, 10),
    ("Dips", ExerciseMode.REPS, 10),
    ("Leg Press", ExerciseMode.REPS, 10),
    ("Bench Press", ExerciseMode.REPS, 10),
    ("Dead Lift", ExerciseMode.REPS, 10),
    ("Planche", ExerciseMode.STATIC, 30),
    ("Dead Hang", ExerciseMode.STATIC, 30),
    ("Front Lever", ExerciseMode.STATIC, 30),
    ("Back Lever", ExerciseMode.STATIC, 30),
]


def default_sets(value: int, count: int = 4, rest: int = 90) -> List[ExerciseSet]:
    return [
        ExerciseSet(value=value, weight=0, rest=None if i == count - 1 else rest)
        for i in range(count)
    ]


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "exercises": (
            """CREATE TABLE exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL COLLATE NOCASE UNIQUE
                        CHECK (length(name) BETWEEN 1 AND 100),
                    mode TEXT NOT NULL,
                    sets TEXT NOT NULL,
                    is_default INTEGER NOT NULL DEFAULT 0,
                    is_disabled INTEGER NOT NULL DEFAULT 0,
                    rest_after_exercise INTEGER
                );""",
            [
                "id",
                "name",
                "mode",
                "sets",
                "is_default",
                "is_disabled",
                "rest_after_exercise",
            ],
        ),
        "workouts": (
            """CREATE TABLE workouts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL COLLATE NOCASE UNIQUE
                        CHECK (length(name) BETWEEN 1 AND 100),
                    icon_code_point INTEGER NOT NULL,
                    is_disabled INTEGER NOT NULL DEFAULT 0
                );""",
            ["id", "name", "icon_code_point", "is_disabled"],
        ),
        "workout_exercises": (
            """CREATE TABLE workout_exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workout_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    mode TEXT NOT NULL,
                    order_index INTEGER NOT NULL CHECK (order_index >= 0),
                    sets TEXT NOT NULL,
                    rest_after_exercise INTEGER,
                    FOREIGN KEY(workout_id) REFERENCES workouts(id) ON DELETE RESTRICT,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE RESTRICT
                );""",
            [
                "id",
                "workout_id",
                "exercise_id",
                "mode",
                "order_index",
                "sets",
                "rest_after_exercise",
            ],
        ),
        "schedules": (
            """CREATE TABLE schedules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workout_id INTEGER NOT NULL,
                    start_date TEXT NOT NULL,
                    recurrence_type TEXT NOT NULL,
                    offset_days INTEGER,
                    FOREIGN KEY(workout_id) REFERENCES workouts(id) ON DELETE RESTRICT
                );""",
            ["id", "workout_id", "start_date", "recurrence_type", "offset_days"],
        ),
        "schedule_overrides": (
            """CREATE TABLE schedule_overrides (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    schedule_id INTEGER NOT NULL,
                    date TEXT NOT NULL,
                    FOREIGN KEY(schedule_id) REFERENCES schedules(id)
                        ON DELETE CASCADE ON UPDATE CASCADE
                );""",
            ["id", "schedule_id", "date"],
        ),
        "override_exercises": (
            """CREATE TABLE override_exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    override_id INTEGER NOT NULL,
                    exercise_id INTEGER,
                    workout_exercise_id INTEGER,
                    mode TEXT NOT NULL,
                    order_index INTEGER NOT NULL CHECK (order_index >= 0),
                    sets TEXT NOT NULL,
                    rest_after_exercise INTEGER,
                    FOREIGN KEY(override_id) REFERENCES schedule_overrides(id)
                        ON DELETE CASCADE ON UPDATE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE RESTRICT,
                    FOREIGN KEY(workout_exercise_id) REFERENCES workout_exercises(id)
                        ON DELETE RESTRICT
                );""",
            [
                "id",
                "override_id",
                "exercise_id",
                "workout_exercise_id",
                "mode",
                "order_index",
                "sets",
                "rest_after_exercise",
            ],
        ),
        "completed_workouts": (
            """CREATE TABLE completed_workouts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workout_id INTEGER NOT NULL,
                    date TEXT NOT NULL,
                    completed_at TEXT NOT NULL,
                    FOREIGN KEY(workout_id) REFERENCES workouts(id) ON DELETE RESTRICT
                );""",
            ["id", "workout_id", "date", "completed_at"],
        ),
        "completed_exercises": (
            """CREATE TABLE completed_exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    completed_workout_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    mode TEXT NOT NULL,
                    order_index INTEGER NOT NULL CHECK (order_index >= 0),
                    sets TEXT NOT NULL,
                    rest_after_exercise INTEGER,
                    FOREIGN KEY(completed_workout_id) REFERENCES completed_workouts(id)
                        ON DELETE CASCADE ON UPDATE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE RESTRICT
                );""",
            [
                "id",
                "completed_workout_id",
                "exercise_id",
                "mode",
                "order_index",
                "sets",
                "rest_after_exercise",
            ],
        ),
    }

    _INDEXES = [
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_schedule_overrides_day "
        "ON schedule_overrides (schedule_id, date);",
        "CREATE INDEX IF NOT EXISTS idx_workout_exercises_workout "
        "ON workout_exercises (workout_id, order_index);",
        "CREATE INDEX IF NOT EXISTS idx_completed_workouts_day "
        "ON completed_workouts (workout_id, date);",
    ]

    # tables whose rows disappear with a parent row
    _CASCADES = {
        "schedules": ("schedule_overrides",),
        "schedule_overrides": ("override_exercises",),
        "completed_workouts": ("completed_exercises",),
    }

    def __init__(self, db_path: str = "gym_assistant.db", seed_defaults: bool = True) -> None:
        self._db_path = db_path
        created = self._ensure_schema()
        if seed_defaults and "exercises" in created:
            self._seed_default_exercises()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        connection.execute("PRAGMA foreign_keys = ON;")
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> Set[str]:
        created: Set[str] = set()
        with self._connection() as conn:
            conn.execute("PRAGMA foreign_keys = OFF;")
            conn.execute("PRAGMA legacy_alter_table = ON;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                if self._ensure_table(conn, table, sql, columns):
                    created.add(table)
            for sql in self._INDEXES:
                conn.execute(sql)
            conn.commit()
            conn.execute("PRAGMA legacy_alter_table = OFF;")
            conn.execute("PRAGMA foreign_keys = ON;")
        if created:
            logger.info("created tables: %s", ", ".join(sorted(created)))
        return created

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> bool:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return True

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return False

        logger.info("migrating table %s from columns %s", table, existing_cols)
        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col in ("is_default", "is_disabled", "icon_code_point"):
                        return "0"
                    if col == "mode":
                        return "'reps'"
                    if col == "sets":
                        return "'[]'"
                    if col == "completed_at" and "date" in existing_cols:
                        return "date"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")
        return False

    def _seed_default_exercises(self) -> None:
        with self._connection() as conn:
            for name, mode, value in DEFAULT_EXERCISES:
                conn.execute(
                    "INSERT INTO exercises (name, mode, sets, is_default) VALUES (?, ?, ?, 1);",
                    (name, mode.value, encode_sets(default_sets(value))),
                )
        logger.info("seeded %d default exercises", len(DEFAULT_EXERCISES))


_WRITE_TARGET = re.compile(
    r"^\s*(?:INSERT(?:\s+OR\s+\w+)?\s+INTO|UPDATE|DELETE\s+FROM)\s+(\w+)",
    re.IGNORECASE,
)


class Transaction:
    """Statements run on one connection; commits or rolls back as a unit."""

    def __init__(self, conn: aiosqlite.Connection, cascades: Dict[str, Tuple[str, ...]]) -> None:
        self._conn = conn
        self._cascades = cascades
        self.tables: Set[str] = set()

    def _touch(self, table: str) -> None:
        if table in self.tables:
            return
        self.tables.add(table)
        for child in self._cascades.get(table, ()):
            self._touch(child)

    async def execute(self, query: str, params: Tuple = ()) -> aiosqlite.Cursor:
        try:
            cursor = await self._conn.execute(query, params)
        except sqlite3.IntegrityError as exc:
            logger.warning("constraint violation: %s", exc)
            raise _integrity_violation(exc) from exc
        match = _WRITE_TARGET.match(query)
        if match and cursor.rowcount:
            self._touch(match.group(1))
        return cursor

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        cursor = await self._conn.execute(query, params)
        return list(await cursor.fetchall())


class AsyncDatabase(Database):
    """Provides asynchronous connection, transaction and subscription management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            await conn.execute("PRAGMA foreign_keys = ON;")
            yield conn
            await conn.commit()
        finally:
            await conn.close()

    @asynccontextmanager
    async def transaction(self):
        """Run several statements atomically; notify subscribers after commit."""
        async with self._async_connection() as conn:
            tx = Transaction(conn, self._CASCADES)
            try:
                yield tx
            except Exception as exc:
                await conn.rollback()
                logger.warning("transaction rolled back: %s", exc)
                raise
        ChangeNotifier.publish(self._db_path, tx.tables)

    def _watch(self, tables: Iterable[str], query: Callable[[], Awaitable]) -> QuerySubscription:
        return QuerySubscription(ChangeNotifier.for_path(self._db_path), tables, query)


class AsyncBaseRepository(AsyncDatabase):
    """Base repository providing helper methods."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self.transaction() as tx:
            cursor = await tx.execute(query, params)
            return cursor.lastrowid

    async def execute_count(self, query: str, params: Tuple = ()) -> int:
        async with self.transaction() as tx:
            cursor = await tx.execute(query, params)
            return cursor.rowcount

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return list(rows)

    async def fetch_one(self, query: str, params: Tuple = ()) -> Optional[Tuple]:
        rows = await self.fetch_all(query, params)
        return rows[0] if rows else None


class ExerciseRepository(AsyncBaseRepository):
    """Repository for the exercise library."""

    _SELECT = f"SELECT {Exercise.COLUMNS} FROM exercises"

    async def _select(self, where: str = "", params: Tuple = ()) -> List[Exercise]:
        rows = await self.fetch_all(f"{self._SELECT} {where} ORDER BY name;", params)
        return [Exercise.from_row(r) for r in rows]

    async def list_enabled(self) -> List[Exercise]:
        return await self._select("WHERE is_disabled = 0")

    async def list_all(self) -> List[Exercise]:
        return await self._select()

    async def list_custom(self) -> List[Exercise]:
        return await self._select("WHERE is_default = 0")

    def watch_enabled(self) -> QuerySubscription:
        return self._watch({"exercises"}, self.list_enabled)

    def watch_all(self) -> QuerySubscription:
        return self._watch({"exercises"}, self.list_all)

    def watch_custom(self) -> QuerySubscription:
        return self._watch({"exercises"}, self.list_custom)

    async def list_names(self) -> List[str]:
        return [e.name for e in await self.list_enabled()]

    async def get_by_id(self, exercise_id: int) -> Optional[Exercise]:
        row = await self.fetch_one(f"{self._SELECT} WHERE id = ?;", (exercise_id,))
        return Exercise.from_row(row) if row else None

    async def find_by_name(self, name: str) -> Optional[Exercise]:
        row = await self.fetch_one(
            f"{self._SELECT} WHERE lower(name) = lower(?);", (name,)
        )
        return Exercise.from_row(row) if row else None

    async def name_exists(self, name: str, exclude_id: Optional[int] = None) -> bool:
        query = "SELECT id FROM exercises WHERE lower(name) = lower(?)"
        params: list = [name]
        if exclude_id is not None:
            query += " AND id != ?"
            params.append(exclude_id)
        return await self.fetch_one(query + ";", tuple(params)) is not None

    async def insert(
        self,
        name: str,
        mode: ExerciseMode,
        sets: Sequence[ExerciseSet],
        is_default: bool = False,
        rest_after_exercise: Optional[int] = None,
    ) -> int:
        validate_name(name)
        validate_sets(sets)
        rest = validate_rest(rest_after_exercise)
        return await self.execute(
            "INSERT INTO exercises (name, mode, sets, is_default, rest_after_exercise) VALUES (?, ?, ?, ?, ?);",
            (name, ExerciseMode(mode).value, encode_sets(sets), int(is_default), rest),
        )

    async def update(self, exercise: Exercise) -> bool:
        """Replace the stored row; ``False`` if it no longer exists."""
        validate_name(exercise.name)
        validate_sets(exercise.sets)
        rest = validate_rest(exercise.rest_after_exercise)
        count = await self.execute_count(
            "UPDATE exercises SET name = ?, mode = ?, sets = ?, is_default = ?, is_disabled = ?, rest_after_exercise = ? WHERE id = ?;",
            (
                exercise.name,
                exercise.mode.value,
                encode_sets(exercise.sets),
                int(exercise.is_default),
                int(exercise.is_disabled),
                rest,
                exercise.id,
            ),
        )
        return count > 0

    async def disable(self, exercise_id: int) -> int:
        return await self.execute_count(
            "UPDATE exercises SET is_disabled = 1 WHERE id = ?;", (exercise_id,)
        )

    async def enable(self, exercise_id: int) -> int:
        return await self.execute_count(
            "UPDATE exercises SET is_disabled = 0 WHERE id = ?;", (exercise_id,)
        )

    async def delete(self, exercise_id: int) -> int:
        """Hard delete; raises ``ForeignKeyViolation`` while the exercise is in use."""
        return await self.execute_count(
            "DELETE FROM exercises WHERE id = ?;", (exercise_id,)
        )


class WorkoutRepository(AsyncBaseRepository):
    """Repository for workout templates and their exercises."""

    _SELECT = f"SELECT {Workout.COLUMNS} FROM workouts"
    _SELECT_EXERCISES = f"SELECT {WorkoutExercise.COLUMNS} FROM workout_exercises"

    async def list_enabled(self) -> List[Workout]:
        rows = await self.fetch_all(f"{self._SELECT} WHERE is_disabled = 0 ORDER BY name;")
        return [Workout.from_row(r) for r in rows]

    async def list_all(self) -> List[Workout]:
        rows = await self.fetch_all(f"{self._SELECT} ORDER BY name;")
        return [Workout.from_row(r) for r in rows]

    def watch_enabled(self) -> QuerySubscription:
        return self._watch({"workouts"}, self.list_enabled)

    def watch_all(self) -> QuerySubscription:
        return self._watch({"workouts"}, self.list_all)

    async def get_by_id(self, workout_id: int) -> Optional[Workout]:
        row = await self.fetch_one(f"{self._SELECT} WHERE id = ?;", (workout_id,))
        return Workout.from_row(row) if row else None

    async def find_by_name(self, name: str) -> Optional[Workout]:
        row = await self.fetch_one(
            f"{self._SELECT} WHERE lower(name) = lower(?);", (name,)
        )
        return Workout.from_row(row) if row else None

    async def name_exists(self, name: str, exclude_id: Optional[int] = None) -> bool:
        query = "SELECT id FROM workouts WHERE lower(name) = lower(?)"
        params: list = [name]
        if exclude_id is not None:
            query += " AND id != ?"
            params.append(exclude_id)
        return await self.fetch_one(query + ";", tuple(params)) is not None

    async def insert(self, name: str, icon_code_point: int) -> int:
        validate_name(name)
        return await self.execute(
            "INSERT INTO workouts (name, icon_code_point) VALUES (?, ?);",
            (name, icon_code_point),
        )

    async def update(self, workout: Workout) -> bool:
        validate_name(workout.name)
        count = await self.execute_count(
            "UPDATE workouts SET name = ?, icon_code_point = ?, is_disabled = ? WHERE id = ?;",
            (workout.name, workout.icon_code_point, int(workout.is_disabled), workout.id),
        )
        return count > 0

    async def disable(self, workout_id: int) -> int:
        return await self.execute_count(
            "UPDATE workouts SET is_disabled = 1 WHERE id = ?;", (workout_id,)
        )

    async def enable(self, workout_id: int) -> int:
        return await self.execute_count(
            "UPDATE workouts SET is_disabled = 0 WHERE id = ?;", (workout_id,)
        )

    async def delete(self, workout_id: int) -> int:
        """Hard delete; exercises, schedules and completions must be gone first."""
        return await self.execute_count(
            "DELETE FROM workouts WHERE id = ?;", (workout_id,)
        )

    async def list_exercises(self, workout_id: int) -> List[WorkoutExercise]:
        rows = await self.fetch_all(
            f"{self._SELECT_EXERCISES} WHERE workout_id = ? ORDER BY order_index, id;",
            (workout_id,),
        )
        return [WorkoutExercise.from_row(r) for r in rows]

    def watch_exercises(self, workout_id: int) -> QuerySubscription:
        return self._watch(
            {"workout_exercises"}, lambda: self.list_exercises(workout_id)
        )

    async def get_exercise(self, workout_exercise_id: int) -> Optional[WorkoutExercise]:
        row = await self.fetch_one(
            f"{self._SELECT_EXERCISES} WHERE id = ?;", (workout_exercise_id,)
        )
        return WorkoutExercise.from_row(row) if row else None

    async def add_exercise(
        self,
        workout_id: int,
        exercise_id: int,
        mode: ExerciseMode,
        order_index: int,
        sets: Sequence[ExerciseSet],
        rest_after_exercise: Optional[int] = None,
    ) -> int:
        validate_sets(sets)
        validate_order_index(order_index)
        rest = validate_rest(rest_after_exercise)
        return await self.execute(
            "INSERT INTO workout_exercises (workout_id, exercise_id, mode, order_index, sets, rest_after_exercise) VALUES (?, ?, ?, ?, ?, ?);",
            (workout_id, exercise_id, ExerciseMode(mode).value, order_index, encode_sets(sets), rest),
        )

    async def update_exercise(self, workout_exercise: WorkoutExercise) -> bool:
        validate_sets(workout_exercise.sets)
        validate_order_index(workout_exercise.order_index)
        rest = validate_rest(workout_exercise.rest_after_exercise)
        count = await self.execute_count(
            "UPDATE workout_exercises SET workout_id = ?, exercise_id = ?, mode = ?, order_index = ?, sets = ?, rest_after_exercise = ? WHERE id = ?;",
            (
                workout_exercise.workout_id,
                workout_exercise.exercise_id,
                workout_exercise.mode.value,
                workout_exercise.order_index,
                encode_sets(workout_exercise.sets),
                rest,
                workout_exercise.id,
            ),
        )
        return count > 0

    async def remove_exercise(self, workout_exercise_id: int) -> int:
        return await self.execute_count(
            "DELETE FROM workout_exercises WHERE id = ?;", (workout_exercise_id,)
        )

    async def clear_exercises(self, workout_id: int) -> int:
        return await self.execute_count(
            "DELETE FROM workout_exercises WHERE workout_id = ?;", (workout_id,)
        )

    async def reorder_exercises(self, workout_id: int, order: Sequence[int]) -> None:
        """Rewrite positions to ``0..n-1`` following ``order`` in one transaction."""
        async with self.transaction() as tx:
            existing = [
                row[0]
                for row in await tx.fetch_all(
                    "SELECT id FROM workout_exercises WHERE workout_id = ?;",
                    (workout_id,),
                )
            ]
            if set(order) != set(existing) or len(order) != len(existing):
                raise ValueError("invalid order")
            for pos, we_id in enumerate(order):
                await tx.execute(
                    "UPDATE workout_exercises SET order_index = ? WHERE id = ?;",
                    (pos, we_id),
                )

    @staticmethod
    def _validate_items(items: Sequence[ExerciseData]) -> None:
        for item in items:
            validate_sets(item.sets)
            validate_rest(item.rest_after_exercise)

    async def _add_items(self, tx: Transaction, workout_id: int, items: Sequence[ExerciseData]) -> None:
        for pos, item in enumerate(items):
            await tx.execute(
                "INSERT INTO workout_exercises (workout_id, exercise_id, mode, order_index, sets, rest_after_exercise) VALUES (?, ?, ?, ?, ?, ?);",
                (
                    workout_id,
                    item.exercise_id,
                    ExerciseMode(item.mode).value,
                    pos,
                    encode_sets(item.sets),
                    validate_rest(item.rest_after_exercise),
                ),
            )

    async def insert_with_exercises(
        self, name: str, icon_code_point: int, exercises: Sequence[ExerciseData]
    ) -> int:
        """Create a workout and its exercises atomically; positions follow list order."""
        validate_name(name)
        self._validate_items(exercises)
        async with self.transaction() as tx:
            cursor = await tx.execute(
                "INSERT INTO workouts (name, icon_code_point) VALUES (?, ?);",
                (name, icon_code_point),
            )
            workout_id = cursor.lastrowid
            await self._add_items(tx, workout_id, exercises)
        return workout_id

    async def replace_exercises(self, workout_id: int, exercises: Sequence[ExerciseData]) -> None:
        """Swap a workout's exercise list for ``exercises`` atomically."""
        self._validate_items(exercises)
        async with self.transaction() as tx:
            await tx.execute(
                "DELETE FROM workout_exercises WHERE workout_id = ?;", (workout_id,)
            )
            await self._add_items(tx, workout_id, exercises)


class ScheduleRepository(AsyncBaseRepository):
    """Repository for schedules, their per-date overrides and override exercises."""

    _SELECT = f"SELECT {Schedule.COLUMNS} FROM schedules"
    _SELECT_OVERRIDE = f"SELECT {ScheduleOverride.COLUMNS} FROM schedule_overrides"
    _SELECT_OVERRIDE_EXERCISES = f"SELECT {OverrideExercise.COLUMNS} FROM override_exercises"

    async def list_all(self) -> List[Schedule]:
        rows = await self.fetch_all(f"{self._SELECT} ORDER BY id;")
        return [Schedule.from_row(r) for r in rows]

    def watch_all(self) -> QuerySubscription:
        return self._watch({"schedules"}, self.list_all)

    async def get_by_id(self, schedule_id: int) -> Optional[Schedule]:
        row = await self.fetch_one(f"{self._SELECT} WHERE id = ?;", (schedule_id,))
        return Schedule.from_row(row) if row else None

    async def list_for_workout(self, workout_id: int) -> List[Schedule]:
        rows = await self.fetch_all(
            f"{self._SELECT} WHERE workout_id = ? ORDER BY id;", (workout_id,)
        )
        return [Schedule.from_row(r) for r in rows]

    async def list_for_date(self, date: datetime.date) -> List[Schedule]:
        """Schedules with an occurrence on ``date``, filtered by the recurrence rule."""
        return [
            s
            for s in await self.list_all()
            if ScheduleRecurrence.occurs_on(
                s.start_date, s.recurrence_type, s.offset_days, date
            )
        ]

    def watch_for_date(self, date: datetime.date) -> QuerySubscription:
        return self._watch({"schedules"}, lambda: self.list_for_date(date))

    async def insert(
        self,
        workout_id: int,
        start_date: datetime.date,
        recurrence_type: RecurrenceType,
        offset_days: Optional[int] = None,
    ) -> int:
        recurrence_type = RecurrenceType(recurrence_type)
        validate_offset_days(recurrence_type, offset_days)
        return await self.execute(
            "INSERT INTO schedules (workout_id, start_date, recurrence_type, offset_days) VALUES (?, ?, ?, ?);",
            (workout_id, day_key(start_date), recurrence_type.value, offset_days),
        )

    async def update(self, schedule: Schedule) -> bool:
        validate_offset_days(schedule.recurrence_type, schedule.offset_days)
        count = await self.execute_count(
            "UPDATE schedules SET workout_id = ?, start_date = ?, recurrence_type = ?, offset_days = ? WHERE id = ?;",
            (
                schedule.workout_id,
                day_key(schedule.start_date),
                schedule.recurrence_type.value,
                schedule.offset_days,
                schedule.id,
            ),
        )
        return count > 0

    async def delete(self, schedule_id: int) -> int:
        """Delete a schedule together with its overrides."""
        return await self.execute_count(
            "DELETE FROM schedules WHERE id = ?;", (schedule_id,)
        )

    async def get_override(
        self, schedule_id: int, date: datetime.date
    ) -> Optional[ScheduleOverride]:
        row = await self.fetch_one(
            f"{self._SELECT_OVERRIDE} WHERE schedule_id = ? AND date = ?;",
            (schedule_id, day_key(date)),
        )
        return ScheduleOverride.from_row(row) if row else None

    def watch_override(self, schedule_id: int, date: datetime.date) -> QuerySubscription:
        return self._watch(
            {"schedule_overrides"}, lambda: self.get_override(schedule_id, date)
        )

    async def list_overrides(self, schedule_id: int) -> List[ScheduleOverride]:
        rows = await self.fetch_all(
            f"{self._SELECT_OVERRIDE} WHERE schedule_id = ? ORDER BY date;",
            (schedule_id,),
        )
        return [ScheduleOverride.from_row(r) for r in rows]

    async def insert_override(self, schedule_id: int, date: datetime.date) -> int:
        return await self.execute(
            "INSERT INTO schedule_overrides (schedule_id, date) VALUES (?, ?);",
            (schedule_id, day_key(date)),
        )

    async def delete_override(self, schedule_id: int, date: datetime.date) -> int:
        """Delete the override for one occurrence together with its exercises."""
        return await self.execute_count(
            "DELETE FROM schedule_overrides WHERE schedule_id = ? AND date = ?;",
            (schedule_id, day_key(date)),
        )

    async def delete_override_by_id(self, override_id: int) -> int:
        return await self.execute_count(
            "DELETE FROM schedule_overrides WHERE id = ?;", (override_id,)
        )

    async def list_override_exercises(self, override_id: int) -> List[OverrideExercise]:
        rows = await self.fetch_all(
            f"{self._SELECT_OVERRIDE_EXERCISES} WHERE override_id = ? ORDER BY order_index, id;",
            (override_id,),
        )
        return [OverrideExercise.from_row(r) for r in rows]

    def watch_override_exercises(self, override_id: int) -> QuerySubscription:
        return self._watch(
            {"override_exercises"}, lambda: self.list_override_exercises(override_id)
        )

    async def get_override_exercise(self, override_exercise_id: int) -> Optional[OverrideExercise]:
        row = await self.fetch_one(
            f"{self._SELECT_OVERRIDE_EXERCISES} WHERE id = ?;", (override_exercise_id,)
        )
        return OverrideExercise.from_row(row) if row else None

    async def _add_override_exercise(
        self,
        override_id: int,
        exercise_id: Optional[int],
        workout_exercise_id: Optional[int],
        mode: ExerciseMode,
        order_index: int,
        sets: Sequence[ExerciseSet],
        rest_after_exercise: Optional[int],
    ) -> int:
        validate_sets(sets)
        validate_order_index(order_index)
        rest = validate_rest(rest_after_exercise)
        validate_xor_constraint(exercise_id, workout_exercise_id)
        return await self.execute(
            "INSERT INTO override_exercises (override_id, exercise_id, workout_exercise_id, mode, order_index, sets, rest_after_exercise) VALUES (?, ?, ?, ?, ?, ?, ?);",
            (
                override_id,
                exercise_id,
                workout_exercise_id,
                ExerciseMode(mode).value,
                order_index,
                encode_sets(sets),
                rest,
            ),
        )

    async def add_override_exercise_from_workout(
        self,
        override_id: int,
        workout_exercise_id: int,
        mode: ExerciseMode,
        order_index: int,
        sets: Sequence[ExerciseSet],
        rest_after_exercise: Optional[int] = None,
    ) -> int:
        return await self._add_override_exercise(
            override_id, None, workout_exercise_id, mode, order_index, sets, rest_after_exercise
        )

    async def add_override_exercise_new(
        self,
        override_id: int,
        exercise_id: int,
        mode: ExerciseMode,
        order_index: int,
        sets: Sequence[ExerciseSet],
        rest_after_exercise: Optional[int] = None,
    ) -> int:
        return await self._add_override_exercise(
            override_id, exercise_id, None, mode, order_index, sets, rest_after_exercise
        )

    async def update_override_exercise(self, override_exercise: OverrideExercise) -> bool:
        validate_sets(override_exercise.sets)
        validate_order_index(override_exercise.order_index)
        rest = validate_rest(override_exercise.rest_after_exercise)
        validate_xor_constraint(
            override_exercise.exercise_id, override_exercise.workout_exercise_id
        )
        count = await self.execute_count(
            "UPDATE override_exercises SET override_id = ?, exercise_id = ?, workout_exercise_id = ?, mode = ?, order_index = ?, sets = ?, rest_after_exercise = ? WHERE id = ?;",
            (
                override_exercise.override_id,
                override_exercise.exercise_id,
                override_exercise.workout_exercise_id,
                override_exercise.mode.value,
                override_exercise.order_index,
                encode_sets(override_exercise.sets),
                rest,
                override_exercise.id,
            ),
        )
        return count > 0

    async def remove_override_exercise(self, override_exercise_id: int) -> int:
        return await self.execute_count(
            "DELETE FROM override_exercises WHERE id = ?;", (override_exercise_id,)
        )

    async def copy_workout_exercises(
        self, override_id: int, workout_exercises: Sequence[WorkoutExercise]
    ) -> None:
        """Append template exercises to an override, positions ``0..n-1``, atomically."""
        for we in workout_exercises:
            validate_sets(we.sets)
        async with self.transaction() as tx:
            for pos, we in enumerate(workout_exercises):
                await tx.execute(
                    "INSERT INTO override_exercises (override_id, workout_exercise_id, mode, order_index, sets, rest_after_exercise) VALUES (?, ?, ?, ?, ?, ?);",
                    (
                        override_id,
                        we.id,
                        we.mode.value,
                        pos,
                        encode_sets(we.sets),
                        validate_rest(we.rest_after_exercise),
                    ),
                )


class CompletedWorkoutRepository(AsyncBaseRepository):
    """Repository for completion history."""

    _SELECT = f"SELECT {CompletedWorkout.COLUMNS} FROM completed_workouts"
    _SELECT_EXERCISES = f"SELECT {CompletedExercise.COLUMNS} FROM completed_exercises"

    async def list_all(self) -> List[CompletedWorkout]:
        rows = await self.fetch_all(f"{self._SELECT} ORDER BY date DESC, id DESC;")
        return [CompletedWorkout.from_row(r) for r in rows]

    def watch_all(self) -> QuerySubscription:
        return self._watch({"completed_workouts"}, self.list_all)

    async def get_by_id(self, completed_workout_id: int) -> Optional[CompletedWorkout]:
        row = await self.fetch_one(
            f"{self._SELECT} WHERE id = ?;", (completed_workout_id,)
        )
        return CompletedWorkout.from_row(row) if row else None

    async def list_for_date(self, date: datetime.date) -> List[CompletedWorkout]:
        start, end = day_bounds(date)
        rows = await self.fetch_all(
            f"{self._SELECT} WHERE date >= ? AND date < ? ORDER BY date, id;",
            (start, end),
        )
        return [CompletedWorkout.from_row(r) for r in rows]

    def watch_for_date(self, date: datetime.date) -> QuerySubscription:
        return self._watch({"completed_workouts"}, lambda: self.list_for_date(date))

    async def find_by_workout_and_date(
        self, workout_id: int, date: datetime.date
    ) -> Optional[CompletedWorkout]:
        start, end = day_bounds(date)
        row = await self.fetch_one(
            f"{self._SELECT} WHERE workout_id = ? AND date >= ? AND date < ? ORDER BY id LIMIT 1;",
            (workout_id, start, end),
        )
        return CompletedWorkout.from_row(row) if row else None

    async def is_completed(self, workout_id: int, date: datetime.date) -> bool:
        return await self.find_by_workout_and_date(workout_id, date) is not None

    async def insert(
        self,
        workout_id: int,
        date: datetime.date,
        completed_at: Optional[datetime.datetime] = None,
    ) -> int:
        completed_at = completed_at or datetime.datetime.now()
        return await self.execute(
            "INSERT INTO completed_workouts (workout_id, date, completed_at) VALUES (?, ?, ?);",
            (workout_id, to_timestamp(date), to_timestamp(completed_at)),
        )

    async def delete(self, completed_workout_id: int) -> int:
        """Delete a completion together with its exercise snapshots."""
        return await self.execute_count(
            "DELETE FROM completed_workouts WHERE id = ?;", (completed_workout_id,)
        )

    async def list_exercises(self, completed_workout_id: int) -> List[CompletedExercise]:
        rows = await self.fetch_all(
            f"{self._SELECT_EXERCISES} WHERE completed_workout_id = ? ORDER BY order_index, id;",
            (completed_workout_id,),
        )
        return [CompletedExercise.from_row(r) for r in rows]

    def watch_exercises(self, completed_workout_id: int) -> QuerySubscription:
        return self._watch(
            {"completed_exercises"}, lambda: self.list_exercises(completed_workout_id)
        )

    async def list_history_for_exercise(self, exercise_id: int) -> List[CompletedExercise]:
        rows = await self.fetch_all(
            f"{self._SELECT_EXERCISES} WHERE exercise_id = ? ORDER BY completed_workout_id DESC, order_index;",
            (exercise_id,),
        )
        return [CompletedExercise.from_row(r) for r in rows]

    def watch_history_for_exercise(self, exercise_id: int) -> QuerySubscription:
        return self._watch(
            {"completed_exercises"}, lambda: self.list_history_for_exercise(exercise_id)
        )

    async def add_exercise(
        self,
        completed_workout_id: int,
        exercise_id: int,
        mode: ExerciseMode,
        order_index: int,
        sets: Sequence[ExerciseSet],
        rest_after_exercise: Optional[int] = None,
    ) -> int:
        validate_sets(sets)
        validate_order_index(order_index)
        rest = validate_rest(rest_after_exercise)
        return await self.execute(
            "INSERT INTO completed_exercises (completed_workout_id, exercise_id, mode, order_index, sets, rest_after_exercise) VALUES (?, ?, ?, ?, ?, ?);",
            (
                completed_workout_id,
                exercise_id,
                ExerciseMode(mode).value,
                order_index,
                encode_sets(sets),
                rest,
            ),
        )

    async def update_exercise(self, completed_exercise: CompletedExercise) -> bool:
        validate_sets(completed_exercise.sets)
        validate_order_index(completed_exercise.order_index)
        rest = validate_rest(completed_exercise.rest_after_exercise)
        count = await self.execute_count(
            "UPDATE completed_exercises SET completed_workout_id = ?, exercise_id = ?, mode = ?, order_index = ?, sets = ?, rest_after_exercise = ? WHERE id = ?;",
            (
                completed_exercise.completed_workout_id,
                completed_exercise.exercise_id,
                completed_exercise.mode.value,
                completed_exercise.order_index,
                encode_sets(completed_exercise.sets),
                rest,
                completed_exercise.id,
            ),
        )
        return count > 0

    async def insert_with_exercises(
        self,
        workout_id: int,
        date: datetime.date,
        exercises: Sequence[ExerciseData],
        completed_at: Optional[datetime.datetime] = None,
    ) -> int:
        """Record a completion and its exercise snapshots atomically.

        Positions are assigned ``0..n-1`` from list order.
        """
        for item in exercises:
            validate_sets(item.sets)
            validate_rest(item.rest_after_exercise)
        completed_at = completed_at or datetime.datetime.now()
        async with self.transaction() as tx:
            cursor = await tx.execute(
                "INSERT INTO completed_workouts (workout_id, date, completed_at) VALUES (?, ?, ?);",
                (workout_id, to_timestamp(date), to_timestamp(completed_at)),
            )
            completed_id = cursor.lastrowid
            for pos, item in enumerate(exercises):
                await tx.execute(
                    "INSERT INTO completed_exercises (completed_workout_id, exercise_id, mode, order_index, sets, rest_after_exercise) VALUES (?, ?, ?, ?, ?, ?);",
                    (
                        completed_id,
                        item.exercise_id,
                        ExerciseMode(item.mode).value,
                        pos,
                        encode_sets(item.sets),
                        validate_rest(item.rest_after_exercise),
                    ),
                )
        return completed_id
