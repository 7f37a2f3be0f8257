import sqlite3
import aiosqlite
import datetime
import json
from contextlib import contextmanager, asynccontextmanager
from typing import List, Tuple, Optional, Iterable

from loguru import logger

from models import ExerciseDefaults, ExerciseHistoryEntry, SetData

DEFAULT_HISTORY_LIMIT = 50
COMPLETION_LIMIT = 100
DUPLICATE_WINDOW_SECONDS = 1.0


def _parse_timestamp(value: str) -> Optional[datetime.datetime]:
    try:
        parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def merge_history_entry(
    entries: List[ExerciseHistoryEntry],
    entry: ExerciseHistoryEntry,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> List[ExerciseHistoryEntry]:
    """Return ``entries`` with ``entry`` merged in, newest first.

    An entry stamped within one second of ``entry`` is replaced rather than
    duplicated. The result holds at most ``limit`` entries.
    """
    merged = list(entries)
    new_ts = _parse_timestamp(entry.date)
    for idx, existing in enumerate(merged):
        old_ts = _parse_timestamp(existing.date)
        if (
            new_ts is not None
            and old_ts is not None
            and abs((new_ts - old_ts).total_seconds()) < DUPLICATE_WINDOW_SECONDS
        ):
            merged[idx] = entry
            break
    else:
        merged.insert(0, entry)
    return merged[:limit]


def _decode_history(name: str, raw: Optional[str]) -> List[ExerciseHistoryEntry]:
    if not raw:
        return []
    try:
        return [ExerciseHistoryEntry.model_validate(e) for e in json.loads(raw)]
    except (ValueError, TypeError) as e:
        logger.warning(f"Discarding unreadable history for {name!r}: {e}")
        return []


def _encode_history(entries: Iterable[ExerciseHistoryEntry]) -> str:
    return json.dumps([e.to_json_dict() for e in entries])


def _today() -> str:
    return datetime.date.today().isoformat()


_HISTORY_SELECT = "SELECT entries FROM exercise_history WHERE exercise_name = ?;"
_HISTORY_UPSERT = (
    "INSERT INTO exercise_history (exercise_name, entries, updated_at) VALUES (?, ?, ?) "
    "ON CONFLICT(exercise_name) DO UPDATE SET entries=excluded.entries, updated_at=excluded.updated_at;"
)
_PROGRESS_PRUNE = "DELETE FROM training_progress WHERE training_type = ? AND date <> ?;"
_PROGRESS_UPSERT = (
    "INSERT INTO training_progress (training_type, exercise_name, date, completed_sets) "
    "VALUES (?, ?, ?, ?) "
    "ON CONFLICT(training_type, exercise_name) DO UPDATE SET date=excluded.date, "
    "completed_sets=excluded.completed_sets;"
)
_COMPLETION_INSERT = (
    "INSERT INTO training_completions (training_type, date, completed_exercises) VALUES (?, ?, ?);"
)
_COMPLETION_TRIM = (
    "DELETE FROM training_completions WHERE training_type = ? AND id NOT IN "
    "(SELECT id FROM training_completions WHERE training_type = ? ORDER BY id DESC LIMIT ?);"
)


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "storage": (
            """CREATE TABLE storage (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );""",
            ["key", "value"],
        ),
        "exercise_history": (
            """CREATE TABLE exercise_history (
                    exercise_name TEXT PRIMARY KEY,
                    entries TEXT NOT NULL,
                    updated_at TEXT
                );""",
            ["exercise_name", "entries", "updated_at"],
        ),
        "exercise_defaults": (
            """CREATE TABLE exercise_defaults (
                    exercise_name TEXT PRIMARY KEY,
                    weight REAL,
                    rest_time INTEGER,
                    repeats INTEGER
                );""",
            ["exercise_name", "weight", "rest_time", "repeats"],
        ),
        "training_progress": (
            """CREATE TABLE training_progress (
                    training_type TEXT NOT NULL,
                    exercise_name TEXT NOT NULL,
                    date TEXT NOT NULL,
                    completed_sets INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (training_type, exercise_name)
                );""",
            ["training_type", "exercise_name", "date", "completed_sets"],
        ),
        "training_completions": (
            """CREATE TABLE training_completions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    training_type TEXT NOT NULL,
                    date TEXT NOT NULL,
                    completed_exercises TEXT NOT NULL
                );""",
            ["id", "training_type", "date", "completed_exercises"],
        ),
        "custom_exercise_data": (
            """CREATE TABLE custom_exercise_data (
                    exercise_name TEXT PRIMARY KEY,
                    custom_title TEXT,
                    custom_note TEXT
                );""",
            ["exercise_name", "custom_title", "custom_note"],
        ),
        "user_exercise_data": (
            """CREATE TABLE user_exercise_data (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    payload TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    fallback INTEGER NOT NULL DEFAULT 0
                );""",
            ["id", "payload", "timestamp", "fallback"],
        ),
    }

    def __init__(self, db_path: str = "trainee.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        logger.info(f"Migrating table {table}: {existing_cols} -> {columns}")
        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col in ("fallback", "completed_sets"):
                        return "0"
                    if col == "date":
                        return "''"
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


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def _delete_all(self, table: str) -> None:
        self.execute(f"DELETE FROM {table};")


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return rows


class StorageRepository(BaseRepository):
    """Key/value storage for small pieces of application state."""

    def get_text(self, key: str, default: Optional[str] = None) -> Optional[str]:
        rows = self.fetch_all("SELECT value FROM storage WHERE key = ?;", (key,))
        return rows[0][0] if rows else default

    def set_text(self, key: str, value: str) -> None:
        self.execute(
            "INSERT INTO storage (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (key, value),
        )

    def get_json(self, key: str):
        """Return the decoded value for ``key`` or ``None`` if absent or corrupt."""
        raw = self.get_text(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring corrupt stored value for {key!r}")
            return None

    def set_json(self, key: str, value) -> None:
        self.set_text(key, json.dumps(value))


class ExerciseHistoryRepository(BaseRepository):
    """Repository for per-exercise completion history."""

    def __init__(self, db_path: str = "trainee.db", limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        super().__init__(db_path)
        self.limit = limit

    def fetch_history(self, exercise_name: str) -> List[ExerciseHistoryEntry]:
        rows = self.fetch_all(_HISTORY_SELECT, (exercise_name,))
        return _decode_history(exercise_name, rows[0][0] if rows else None)

    def fetch_all_history(self) -> dict[str, List[ExerciseHistoryEntry]]:
        rows = self.fetch_all(
            "SELECT exercise_name, entries FROM exercise_history ORDER BY exercise_name;"
        )
        return {name: _decode_history(name, raw) for name, raw in rows}

    def append(self, exercise_name: str, entry: ExerciseHistoryEntry) -> List[ExerciseHistoryEntry]:
        """Merge ``entry`` into the history and rewrite the list in one transaction."""
        with self._connection() as conn:
            row = conn.execute(_HISTORY_SELECT, (exercise_name,)).fetchone()
            entries = merge_history_entry(
                _decode_history(exercise_name, row[0] if row else None),
                entry,
                self.limit,
            )
            conn.execute(
                _HISTORY_UPSERT,
                (exercise_name, _encode_history(entries), datetime.datetime.now().isoformat()),
            )
        return entries

    def update_todays_entry(
        self,
        exercise_name: str,
        sets_data: List[SetData],
        today: Optional[datetime.date] = None,
    ) -> bool:
        """Replace the set data of today's entry. Returns ``False`` if none exists."""
        today = today or datetime.date.today()
        with self._connection() as conn:
            row = conn.execute(_HISTORY_SELECT, (exercise_name,)).fetchone()
            entries = _decode_history(exercise_name, row[0] if row else None)
            for idx, entry in enumerate(entries):
                ts = _parse_timestamp(entry.date)
                if ts is None or ts.astimezone().date() != today:
                    continue
                first = sets_data[0] if sets_data else SetData()
                entries[idx] = entry.model_copy(
                    update={
                        "weight": first.weight,
                        "repeats": first.repeats,
                        "sets_data": list(sets_data),
                    }
                )
                conn.execute(
                    _HISTORY_UPSERT,
                    (exercise_name, _encode_history(entries), datetime.datetime.now().isoformat()),
                )
                return True
        return False

    def has_any_history(self, exercise_names: Iterable[str]) -> bool:
        return any(self.fetch_history(name) for name in exercise_names)

    def delete_all(self) -> None:
        self._delete_all("exercise_history")


class ExerciseDefaultsRepository(BaseRepository):
    """Repository for user-specified default overrides."""

    def fetch(self, exercise_name: str) -> ExerciseDefaults:
        rows = self.fetch_all(
            "SELECT weight, rest_time, repeats FROM exercise_defaults WHERE exercise_name = ?;",
            (exercise_name,),
        )
        if not rows:
            return ExerciseDefaults()
        weight, rest_time, repeats = rows[0]
        return ExerciseDefaults(weight=weight, rest_time=rest_time, repeats=repeats)

    def save(
        self,
        exercise_name: str,
        weight: Optional[float] = None,
        rest_time: Optional[int] = None,
        repeats: Optional[int] = None,
    ) -> None:
        """Store positive values; fields left ``None`` keep their previous value."""
        weight = weight if weight is not None and weight > 0 else None
        rest_time = rest_time if rest_time is not None and rest_time > 0 else None
        repeats = repeats if repeats is not None and repeats > 0 else None
        self.execute(
            "INSERT INTO exercise_defaults (exercise_name, weight, rest_time, repeats) "
            "VALUES (?, ?, ?, ?) "
            "ON CONFLICT(exercise_name) DO UPDATE SET "
            "weight=COALESCE(excluded.weight, weight), "
            "rest_time=COALESCE(excluded.rest_time, rest_time), "
            "repeats=COALESCE(excluded.repeats, repeats);",
            (exercise_name, weight, rest_time, repeats),
        )

    def has_any(self, exercise_names: Iterable[str]) -> bool:
        return any(not self.fetch(name).is_empty() for name in exercise_names)

    def delete_all(self) -> None:
        self._delete_all("exercise_defaults")


class TrainingProgressRepository(BaseRepository):
    """Same-day set counters used to resume a partially completed session."""

    def save(
        self,
        training_type: str,
        exercise_name: str,
        completed_sets: int,
        date: Optional[str] = None,
    ) -> None:
        date = date or _today()
        with self._connection() as conn:
            conn.execute(_PROGRESS_PRUNE, (training_type, date))
            conn.execute(
                _PROGRESS_UPSERT, (training_type, exercise_name, date, completed_sets)
            )

    def fetch_for_training(self, training_type: str, date: Optional[str] = None) -> dict[str, int]:
        rows = self.fetch_all(
            "SELECT exercise_name, completed_sets FROM training_progress "
            "WHERE training_type = ? AND date = ?;",
            (training_type, date or _today()),
        )
        return {name: int(sets) for name, sets in rows}

    def delete_all(self) -> None:
        self._delete_all("training_progress")


class TrainingCompletionRepository(BaseRepository):
    """Log of finished training sessions per training type."""

    def add(
        self,
        training_type: str,
        completed_exercises: List[str],
        date: Optional[str] = None,
    ) -> int:
        with self._connection() as conn:
            cursor = conn.execute(
                _COMPLETION_INSERT,
                (training_type, date or _today(), json.dumps(completed_exercises)),
            )
            conn.execute(_COMPLETION_TRIM, (training_type, training_type, COMPLETION_LIMIT))
            return cursor.lastrowid

    def counts(self) -> dict[str, int]:
        rows = self.fetch_all(
            "SELECT training_type, COUNT(*) FROM training_completions GROUP BY training_type;"
        )
        return {t: int(c) for t, c in rows}

    def last_dates(self) -> dict[str, str]:
        rows = self.fetch_all(
            "SELECT training_type, MAX(date) FROM training_completions GROUP BY training_type;"
        )
        return {t: d for t, d in rows}

    def delete_all(self) -> None:
        self._delete_all("training_completions")


class CustomExerciseRepository(BaseRepository):
    """Trainee supplied titles and notes for exercises."""

    def save(self, exercise_name: str, custom_title: str = "", custom_note: str = "") -> None:
        self.execute(
            "INSERT INTO custom_exercise_data (exercise_name, custom_title, custom_note) "
            "VALUES (?, ?, ?) ON CONFLICT(exercise_name) DO UPDATE SET "
            "custom_title=excluded.custom_title, custom_note=excluded.custom_note;",
            (exercise_name, custom_title or None, custom_note or None),
        )

    def _fetch(self, exercise_name: str) -> Tuple[Optional[str], Optional[str]]:
        rows = self.fetch_all(
            "SELECT custom_title, custom_note FROM custom_exercise_data WHERE exercise_name = ?;",
            (exercise_name,),
        )
        return rows[0] if rows else (None, None)

    def display_title(self, exercise_name: str) -> str:
        return self._fetch(exercise_name)[0] or exercise_name

    def display_note(self, exercise_name: str, original_note: Optional[str] = None) -> str:
        return self._fetch(exercise_name)[1] or original_note or ""

    def delete_all(self) -> None:
        self._delete_all("custom_exercise_data")


class UserExerciseDataRepository(BaseRepository):
    """Local backup of every completion record sent to the server."""

    def add(self, payload: dict, fallback: bool = False, timestamp: Optional[str] = None) -> int:
        return self.execute(
            "INSERT INTO user_exercise_data (payload, timestamp, fallback) VALUES (?, ?, ?);",
            (
                json.dumps(payload),
                timestamp or datetime.datetime.now(datetime.timezone.utc).isoformat(),
                int(fallback),
            ),
        )

    def fetch_all_records(self) -> List[dict]:
        rows = self.fetch_all(
            "SELECT payload, timestamp, fallback FROM user_exercise_data ORDER BY id;"
        )
        records = []
        for payload, timestamp, fallback in rows:
            record = json.loads(payload)
            record["timestamp"] = timestamp
            if fallback:
                record["fallback"] = True
            records.append(record)
        return records

    def delete_all(self) -> None:
        self._delete_all("user_exercise_data")


class AsyncExerciseHistoryRepository(AsyncBaseRepository):
    """Async repository used by the session coordinator for history writes."""

    def __init__(self, db_path: str = "trainee.db", limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        super().__init__(db_path)
        self.limit = limit

    async def append(
        self, exercise_name: str, entry: ExerciseHistoryEntry
    ) -> List[ExerciseHistoryEntry]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(_HISTORY_SELECT, (exercise_name,))
            row = await cursor.fetchone()
            entries = merge_history_entry(
                _decode_history(exercise_name, row[0] if row else None),
                entry,
                self.limit,
            )
            await conn.execute(
                _HISTORY_UPSERT,
                (exercise_name, _encode_history(entries), datetime.datetime.now().isoformat()),
            )
        return entries


class AsyncTrainingProgressRepository(AsyncBaseRepository):
    """Async writer for same-day set counters."""

    async def save(
        self,
        training_type: str,
        exercise_name: str,
        completed_sets: int,
        date: Optional[str] = None,
    ) -> None:
        date = date or _today()
        async with self._async_connection() as conn:
            await conn.execute(_PROGRESS_PRUNE, (training_type, date))
            await conn.execute(
                _PROGRESS_UPSERT, (training_type, exercise_name, date, completed_sets)
            )


class AsyncTrainingCompletionRepository(AsyncBaseRepository):
    """Async writer for the training completion log."""

    async def add(
        self,
        training_type: str,
        completed_exercises: List[str],
        date: Optional[str] = None,
    ) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(
                _COMPLETION_INSERT,
                (training_type, date or _today(), json.dumps(completed_exercises)),
            )
            await conn.execute(_COMPLETION_TRIM, (training_type, training_type, COMPLETION_LIMIT))
            return cursor.lastrowid
