import datetime
import os
import sqlite3
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import (
    COMPLETION_LIMIT,
    AsyncExerciseHistoryRepository,
    AsyncTrainingCompletionRepository,
    AsyncTrainingProgressRepository,
    CustomExerciseRepository,
    Database,
    ExerciseDefaultsRepository,
    ExerciseHistoryRepository,
    StorageRepository,
    TrainingCompletionRepository,
    TrainingProgressRepository,
    UserExerciseDataRepository,
    merge_history_entry,
)
from models import ExerciseHistoryEntry, SetData


def _entry(date: str, weight: float = 50.0, repeats: int = 10) -> ExerciseHistoryEntry:
    return ExerciseHistoryEntry(
        date=date,
        weight=weight,
        repeats=repeats,
        rest_time=60,
        completed_sets=3,
        total_sets=3,
        sets_data=[SetData(weight=weight, repeats=repeats)] * 3,
    )


class TestHistoryMerge:
    def test_newest_first(self):
        entries = merge_history_entry([], _entry("2024-01-01T10:00:00+00:00"))
        entries = merge_history_entry(entries, _entry("2024-01-02T10:00:00+00:00", 55.0))
        assert [e.weight for e in entries] == [55.0, 50.0]

    def test_entry_within_one_second_replaces(self):
        entries = merge_history_entry([], _entry("2024-01-01T10:00:00.000+00:00"))
        entries = merge_history_entry(
            entries, _entry("2024-01-01T10:00:00.500+00:00", 60.0)
        )
        assert len(entries) == 1
        assert entries[0].weight == 60.0

    def test_entries_one_second_apart_are_kept(self):
        entries = merge_history_entry([], _entry("2024-01-01T10:00:00+00:00"))
        entries = merge_history_entry(entries, _entry("2024-01-01T10:00:01+00:00"))
        assert len(entries) == 2

    def test_capped_at_limit(self):
        entries = []
        start = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
        for day in range(60):
            ts = (start + datetime.timedelta(days=day)).isoformat()
            entries = merge_history_entry(entries, _entry(ts, float(day)), limit=50)
        assert len(entries) == 50
        assert entries[0].weight == 59.0
        assert entries[-1].weight == 10.0


class TestExerciseHistoryRepository:
    def test_append_and_fetch(self, tmp_path):
        repo = ExerciseHistoryRepository(str(tmp_path / "h.db"))
        repo.append("Squat", _entry("2024-01-01T10:00:00+00:00", 40.0, 8))
        repo.append("Squat", _entry("2024-01-03T10:00:00+00:00", 45.0, 9))
        history = repo.fetch_history("Squat")
        assert [e.weight for e in history] == [45.0, 40.0]
        assert history[0].repeats == 9
        assert list(repo.fetch_all_history()) == ["Squat"]
        assert repo.fetch_history("Bench") == []
        assert repo.has_any_history(["Bench", "Squat"])
        assert not repo.has_any_history(["Bench"])

    def test_limit_from_settings(self, tmp_path):
        repo = ExerciseHistoryRepository(str(tmp_path / "h.db"), limit=3)
        for day in range(1, 6):
            repo.append("Row", _entry(f"2024-01-0{day}T10:00:00+00:00", float(day)))
        assert [e.weight for e in repo.fetch_history("Row")] == [5.0, 4.0, 3.0]

    def test_corrupt_history_reads_as_empty(self, tmp_path):
        db_file = str(tmp_path / "h.db")
        repo = ExerciseHistoryRepository(db_file)
        repo.execute(
            "INSERT INTO exercise_history (exercise_name, entries) VALUES (?, ?);",
            ("Squat", "{not json"),
        )
        assert repo.fetch_history("Squat") == []
        repo.append("Squat", _entry("2024-01-01T10:00:00+00:00"))
        assert len(repo.fetch_history("Squat")) == 1

    def test_update_todays_entry(self, tmp_path):
        repo = ExerciseHistoryRepository(str(tmp_path / "h.db"))
        now = datetime.datetime.now().astimezone()
        repo.append("Squat", _entry(now.isoformat(), 40.0, 8))
        changed = repo.update_todays_entry(
            "Squat", [SetData(weight=42.5, repeats=7), SetData(weight=42.5, repeats=6)]
        )
        assert changed
        latest = repo.fetch_history("Squat")[0]
        assert latest.weight == 42.5
        assert latest.repeats == 7
        assert len(latest.sets_data) == 2
        assert not repo.update_todays_entry("Bench", [SetData(weight=1, repeats=1)])

    def test_delete_all(self, tmp_path):
        repo = ExerciseHistoryRepository(str(tmp_path / "h.db"))
        repo.append("Squat", _entry("2024-01-01T10:00:00+00:00"))
        repo.delete_all()
        assert repo.fetch_all_history() == {}


class TestDefaultsRepository:
    def test_save_keeps_positive_values(self, tmp_path):
        repo = ExerciseDefaultsRepository(str(tmp_path / "d.db"))
        assert repo.fetch("Squat").is_empty()
        repo.save("Squat", weight=50.0, rest_time=0, repeats=None)
        stored = repo.fetch("Squat")
        assert stored.weight == 50.0
        assert stored.rest_time is None
        repo.save("Squat", repeats=8)
        stored = repo.fetch("Squat")
        assert stored.weight == 50.0
        assert stored.repeats == 8
        assert repo.has_any(["Squat"])
        assert not repo.has_any(["Bench"])


class TestProgressRepository:
    def test_counts_only_today(self, tmp_path):
        repo = TrainingProgressRepository(str(tmp_path / "p.db"))
        repo.save("A", "Squat", 2, date="2024-01-01")
        assert repo.fetch_for_training("A", date="2024-01-01") == {"Squat": 2}
        assert repo.fetch_for_training("A") == {}
        repo.save("A", "Bench", 1)
        assert repo.fetch_for_training("A", date="2024-01-01") == {}
        assert repo.fetch_for_training("A") == {"Bench": 1}


class TestCompletionRepository:
    def test_counts_and_cap(self, tmp_path):
        repo = TrainingCompletionRepository(str(tmp_path / "c.db"))
        for _ in range(COMPLETION_LIMIT + 5):
            repo.add("A", ["Squat"], date="2024-01-01")
        repo.add("B", ["Row"], date="2024-01-02")
        assert repo.counts() == {"A": COMPLETION_LIMIT, "B": 1}
        assert repo.last_dates()["B"] == "2024-01-02"


class TestStorageAndBackups:
    def test_corrupt_json_is_none(self, tmp_path):
        repo = StorageRepository(str(tmp_path / "s.db"))
        repo.set_text("plans", "[{broken")
        assert repo.get_json("plans") is None
        repo.set_json("plans", [{"version": "1"}])
        assert repo.get_json("plans") == [{"version": "1"}]
        assert repo.get_text("missing") is None

    def test_backup_records(self, tmp_path):
        repo = UserExerciseDataRepository(str(tmp_path / "u.db"))
        repo.add({"exerciseName": "Squat"}, timestamp="2024-01-01T00:00:00")
        repo.add({"exerciseName": "Row"}, fallback=True)
        records = repo.fetch_all_records()
        assert records[0] == {"exerciseName": "Squat", "timestamp": "2024-01-01T00:00:00"}
        assert "fallback" not in records[0]
        assert records[1]["fallback"] is True

    def test_custom_exercise_display(self, tmp_path):
        repo = CustomExerciseRepository(str(tmp_path / "x.db"))
        assert repo.display_title("Squat") == "Squat"
        repo.save("Squat", custom_title="Back squat")
        assert repo.display_title("Squat") == "Back squat"
        assert repo.display_note("Squat", "depth") == "depth"


class TestSchemaMigration:
    def test_adds_missing_column_and_drops_backup(self, tmp_path):
        db_file = tmp_path / "m.db"
        conn = sqlite3.connect(str(db_file))
        conn.execute(
            "CREATE TABLE user_exercise_data (id INTEGER PRIMARY KEY AUTOINCREMENT, payload TEXT, timestamp TEXT)"
        )
        conn.execute("INSERT INTO user_exercise_data (payload, timestamp) VALUES ('{}', 't')")
        conn.execute("CREATE TABLE user_exercise_data_old (id INTEGER)")
        conn.commit()
        conn.close()

        Database(str(db_file))

        conn = sqlite3.connect(str(db_file))
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='user_exercise_data_old'"
        )
        assert cur.fetchone() is None
        rows = conn.execute("SELECT payload, fallback FROM user_exercise_data").fetchall()
        assert rows == [("{}", 0)]
        conn.close()


@pytest.mark.asyncio
async def test_async_writers(tmp_path):
    db_file = str(tmp_path / "a.db")
    history = AsyncExerciseHistoryRepository(db_file)
    await history.append("Squat", _entry("2024-01-01T10:00:00+00:00"))
    await history.append("Squat", _entry("2024-01-01T10:00:00.200+00:00", 52.5))
    rows = ExerciseHistoryRepository(db_file).fetch_history("Squat")
    assert [e.weight for e in rows] == [52.5]

    progress = AsyncTrainingProgressRepository(db_file)
    await progress.save("A", "Squat", 2)
    assert TrainingProgressRepository(db_file).fetch_for_training("A") == {"Squat": 2}

    completions = AsyncTrainingCompletionRepository(db_file)
    await completions.add("A", ["Squat"])
    assert TrainingCompletionRepository(db_file).counts() == {"A": 1}
