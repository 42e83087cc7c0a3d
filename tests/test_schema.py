import os
import sqlite3
import sys

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from converters import decode_sets
from db import DEFAULT_EXERCISES, Database


def _rows(db_file, query):
    conn = sqlite3.connect(str(db_file))
    try:
        return conn.execute(query).fetchall()
    finally:
        conn.close()


class TestSchemaCreation:
    def test_creates_all_tables(self, tmp_path):
        db_file = tmp_path / "test.db"
        Database(str(db_file))
        names = {r[0] for r in _rows(db_file, "SELECT name FROM sqlite_master WHERE type='table'")}
        assert set(Database._TABLE_DEFINITIONS) <= names

    def test_seeds_default_exercises_once(self, tmp_path):
        db_file = tmp_path / "test.db"
        Database(str(db_file))
        Database(str(db_file))
        rows = _rows(db_file, "SELECT name, mode, sets, is_default FROM exercises ORDER BY id")
        assert [r[0] for r in rows] == [name for name, _mode, _value in DEFAULT_EXERCISES]
        assert all(r[3] == 1 for r in rows)
        pull_ups = decode_sets(rows[0][2])
        assert [s.value for s in pull_ups] == [10, 10, 10, 10]
        assert [s.rest for s in pull_ups] == [90, 90, 90, None]
        planche = decode_sets(rows[6][2])
        assert rows[6][1] == "static"
        assert [s.value for s in planche] == [30, 30, 30, 30]

    def test_seeding_can_be_skipped(self, tmp_path):
        db_file = tmp_path / "test.db"
        Database(str(db_file), seed_defaults=False)
        assert _rows(db_file, "SELECT COUNT(*) FROM exercises") == [(0,)]

    def test_override_dates_are_unique_per_schedule(self, tmp_path):
        db_file = tmp_path / "test.db"
        Database(str(db_file))
        indexes = _rows(db_file, "PRAGMA index_list(schedule_overrides)")
        assert any(r[1] == "idx_schedule_overrides_day" and r[2] == 1 for r in indexes)


class TestSchemaMigration:
    def test_adds_missing_columns_and_keeps_rows(self, tmp_path):
        db_file = tmp_path / "test.db"
        conn = sqlite3.connect(str(db_file))
        conn.execute(
            "CREATE TABLE workouts (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, icon_code_point INTEGER NOT NULL)"
        )
        conn.execute("INSERT INTO workouts (name, icon_code_point) VALUES ('Legs', 5)")
        conn.execute("CREATE TABLE workouts_old (id INTEGER)")
        conn.commit()
        conn.close()

        Database(str(db_file))

        assert _rows(db_file, "SELECT name FROM sqlite_master WHERE name='workouts_old'") == []
        cols = [r[1] for r in _rows(db_file, "PRAGMA table_info(workouts)")]
        assert cols == ["id", "name", "icon_code_point", "is_disabled"]
        assert _rows(db_file, "SELECT name, icon_code_point, is_disabled FROM workouts") == [
            ("Legs", 5, 0)
        ]

    def test_completed_at_backfilled_from_date(self, tmp_path):
        db_file = tmp_path / "test.db"
        Database(str(db_file))
        conn = sqlite3.connect(str(db_file))
        conn.execute("DROP TABLE completed_exercises")
        conn.execute("DROP TABLE completed_workouts")
        conn.execute(
            "CREATE TABLE completed_workouts (id INTEGER PRIMARY KEY AUTOINCREMENT, workout_id INTEGER NOT NULL, date TEXT NOT NULL)"
        )
        conn.execute("INSERT INTO workouts (name, icon_code_point) VALUES ('Legs', 5)")
        conn.execute(
            "INSERT INTO completed_workouts (workout_id, date) VALUES (1, '2024-01-02T00:00:00')"
        )
        conn.commit()
        conn.close()

        Database(str(db_file))

        assert _rows(db_file, "SELECT date, completed_at FROM completed_workouts") == [
            ("2024-01-02T00:00:00", "2024-01-02T00:00:00")
        ]

    def test_rebuild_keeps_child_references(self, tmp_path):
        db_file = tmp_path / "test.db"
        Database(str(db_file))
        conn = sqlite3.connect(str(db_file))
        conn.execute("ALTER TABLE workouts ADD COLUMN legacy TEXT")
        conn.commit()
        conn.close()

        Database(str(db_file))

        cols = [r[1] for r in _rows(db_file, "PRAGMA table_info(workouts)")]
        assert "legacy" not in cols
        fks = _rows(db_file, "PRAGMA foreign_key_list(schedules)")
        assert [r[2] for r in fks] == ["workouts"]
