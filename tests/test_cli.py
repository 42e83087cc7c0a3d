import datetime
import os
import sqlite3
import sys

import pytest
import yaml

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
import cli


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("GYM_DB_PATH", raising=False)
    path = tmp_path / "settings.yaml"
    path.write_text(
        yaml.safe_dump({"database_path": str(tmp_path / "cli.db"), "log_level": "WARNING"}),
        encoding="utf-8",
    )
    return str(path)


def _count(db_file, table):
    conn = sqlite3.connect(db_file)
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        conn.close()


def test_init_seeds_store(config_file, tmp_path):
    cli.main(["--config", config_file, "init"])
    assert _count(str(tmp_path / "cli.db"), "exercises") == 10


def test_backup_and_restore(config_file, tmp_path):
    db_file = str(tmp_path / "cli.db")
    backup = str(tmp_path / "backup.db")
    cli.main(["--config", config_file, "init"])
    cli.main(["--config", config_file, "backup", "--out", backup])
    conn = sqlite3.connect(db_file)
    conn.execute("DELETE FROM exercises")
    conn.commit()
    conn.close()
    cli.main(["--config", config_file, "restore", "--in", backup])
    assert _count(db_file, "exercises") == 10


def test_demo_runs_once_and_shows_in_calendar(config_file, tmp_path, capsys):
    cli.main(["--config", config_file, "demo"])
    cli.main(["--config", config_file, "demo"])
    out = capsys.readouterr().out
    assert "Demo data inserted" in out
    assert "already contains workouts" in out
    db_file = str(tmp_path / "cli.db")
    assert _count(db_file, "workout_exercises") == len(cli.DEMO_EXERCISES)
    assert _count(db_file, "schedules") == 1

    today = datetime.date.today()
    cli.main(["--config", config_file, "calendar", "--from", today.isoformat()])
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 7
    assert lines[0] == f"{today.isoformat()}  {cli.DEMO_WORKOUT}"
    assert lines[1].endswith("  -")
