import sqlite3
import aiosqlite
import datetime
import json
import logging
from contextlib import contextmanager, asynccontextmanager
from typing import Dict, Iterable, List, Optional, Tuple

from live_query import ChangeBus, track_read
from models import (
    DailyLog,
    Exercise,
    Record,
    RecordValidationError,
    Routine,
    ScheduleEntry,
    SetLog,
    UserProfile,
    validate_record,
)
from tools import DateTools

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 7

COLLECTIONS = ("exercises", "routines", "schedule", "profile", "daily_logs", "sets")

DEFAULT_EXERCISES = [
    ("Bench Press", "Chest", "strength"),
    ("Squat", "Legs", "strength"),
    ("Deadlift", "Back", "strength"),
    ("Overhead Press", "Shoulders", "strength"),
    ("Pull Up", "Back", "strength"),
    ("Incline Walk", "Cardio", "cardio"),
    ("Plank", "Core", "isometric"),
]

SEED_EXERCISES_SQL = (
    "INSERT INTO exercises (name, target_muscle, category, is_custom) VALUES (?, ?, ?, 0);"
)
SEED_SCHEDULE_SQL = "INSERT OR IGNORE INTO schedule (day_index, routine_id) VALUES (?, NULL);"


class StoreWriteError(RuntimeError):
    """Raised when SQLite rejects a write or a collection forbids it."""


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "exercises": (
            """CREATE TABLE exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL CHECK (length(trim(name)) > 0),
                    target_muscle TEXT NOT NULL DEFAULT 'Custom',
                    category TEXT NOT NULL DEFAULT 'strength'
                        CHECK (category IN ('strength', 'cardio', 'isometric')),
                    is_custom INTEGER NOT NULL DEFAULT 0
                );""",
            ["id", "name", "target_muscle", "category", "is_custom"],
        ),
        "routines": (
            """CREATE TABLE routines (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL CHECK (length(trim(name)) > 0),
                    elements TEXT NOT NULL DEFAULT '[]'
                );""",
            ["id", "name", "elements"],
        ),
        "schedule": (
            """CREATE TABLE schedule (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    day_index INTEGER NOT NULL UNIQUE
                        CHECK (day_index BETWEEN 0 AND 6),
                    routine_id INTEGER
                );""",
            ["id", "day_index", "routine_id"],
        ),
        "profile": (
            """CREATE TABLE profile (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL DEFAULT '',
                    gender TEXT NOT NULL DEFAULT 'male'
                        CHECK (gender IN ('male', 'female')),
                    birth_year INTEGER NOT NULL,
                    height REAL NOT NULL,
                    starting_weight REAL NOT NULL,
                    current_weight REAL NOT NULL,
                    goal_weight REAL NOT NULL,
                    goal TEXT NOT NULL DEFAULT 'maintain'
                        CHECK (goal IN ('loss', 'maintain', 'gain')),
                    daily_calorie_target REAL NOT NULL DEFAULT 2000,
                    daily_protein_target REAL NOT NULL DEFAULT 150,
                    onboarding_complete INTEGER NOT NULL DEFAULT 0
                );""",
            [
                "id",
                "name",
                "gender",
                "birth_year",
                "height",
                "starting_weight",
                "current_weight",
                "goal_weight",
                "goal",
                "daily_calorie_target",
                "daily_protein_target",
                "onboarding_complete",
            ],
        ),
        "daily_logs": (
            """CREATE TABLE daily_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date TEXT NOT NULL UNIQUE,
                    calories REAL NOT NULL DEFAULT 0,
                    protein REAL NOT NULL DEFAULT 0,
                    logged_weight REAL
                );""",
            ["id", "date", "calories", "protein", "logged_weight"],
        ),
        "sets": (
            """CREATE TABLE sets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    exercise_id INTEGER NOT NULL,
                    weight REAL NOT NULL DEFAULT 0,
                    reps REAL NOT NULL DEFAULT 0,
                    calories REAL,
                    is_warmup INTEGER NOT NULL DEFAULT 0,
                    timestamp INTEGER NOT NULL
                );""",
            ["id", "exercise_id", "weight", "reps", "calories", "is_warmup", "timestamp"],
        ),
    }

    _INDEXES = [
        "CREATE INDEX IF NOT EXISTS idx_sets_timestamp ON sets(timestamp);",
        "CREATE INDEX IF NOT EXISTS idx_sets_exercise ON sets(exercise_id, timestamp);",
        "CREATE INDEX IF NOT EXISTS idx_exercises_name ON exercises(name);",
    ]

    def __init__(self, db_path: str = "ironlog.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

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
            version = conn.execute("PRAGMA user_version;").fetchone()[0]
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            for sql in self._INDEXES:
                conn.execute(sql)
            if version == 0:
                self._populate(conn)
            if version != SCHEMA_VERSION:
                conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")

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

        logger.info("migrating table %s to %d columns", table, len(columns))
        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)
        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            # columns missing from the old table take their DEFAULT
            conn.execute(f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;")
        conn.execute(f"DROP TABLE {table}_old;")

    def _populate(self, conn: sqlite3.Connection) -> None:
        """Seed a fresh database with default exercises and an empty week."""
        if conn.execute("SELECT COUNT(*) FROM exercises;").fetchone()[0] == 0:
            conn.executemany(SEED_EXERCISES_SQL, DEFAULT_EXERCISES)
        conn.executemany(SEED_SCHEDULE_SQL, [(day,) for day in range(7)])
        logger.info("seeded %s with default exercises and schedule", self._db_path)


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous repository base publishing committed writes on a bus."""

    def __init__(self, db_path: str = "ironlog.db", bus: ChangeBus | None = None) -> None:
        super().__init__(db_path)
        self.bus = bus or ChangeBus()

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.lastrowid

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return list(rows)

    @asynccontextmanager
    async def _write(self, *tables: str):
        """Run a write transaction on ``tables``.

        The tables are marked busy on the bus before the transaction opens
        and released once the connection is closed, whether or not the
        write succeeded.
        """
        self.bus.begin(tables)
        try:
            async with self._async_connection() as conn:
                await conn.execute("BEGIN IMMEDIATE;")
                yield conn
        except sqlite3.Error as e:
            logger.warning("write to %s rejected: %s", ", ".join(tables), e)
            raise StoreWriteError(str(e)) from e
        finally:
            self.bus.publish(tables)


class CollectionRepository(AsyncBaseRepository):
    """Generic CRUD over one collection table."""

    table: str = ""
    model: type[Record] = Record
    json_fields: Tuple[str, ...] = ()
    bool_fields: Tuple[str, ...] = ()

    @property
    def columns(self) -> List[str]:
        return self._TABLE_DEFINITIONS[self.table][1]

    def _validate(self, record: dict) -> dict:
        return validate_record(self.model, record)

    def _to_row(self, record: dict) -> dict:
        row = dict(record)
        for field in self.json_fields:
            row[field] = json.dumps(row[field])
        for field in self.bool_fields:
            row[field] = int(bool(row[field]))
        return row

    def _from_row(self, row: Tuple) -> dict:
        record = dict(zip(self.columns, row))
        for field in self.json_fields:
            record[field] = json.loads(record[field]) if record[field] else []
        for field in self.bool_fields:
            record[field] = bool(record[field])
        return record

    async def _insert(self, conn: aiosqlite.Connection, record: dict) -> int:
        row = self._to_row(record)
        cols = [c for c in self.columns if c in row and not (c == "id" and row[c] is None)]
        cursor = await conn.execute(
            f"INSERT INTO {self.table} ({', '.join(cols)}) "
            f"VALUES ({', '.join('?' for _ in cols)});",
            tuple(row[c] for c in cols),
        )
        return cursor.lastrowid

    async def _update_row(self, conn: aiosqlite.Connection, record: dict) -> int:
        row = self._to_row(record)
        cols = [c for c in self.columns if c != "id"]
        cursor = await conn.execute(
            f"UPDATE {self.table} SET {', '.join(f'{c} = ?' for c in cols)} WHERE id = ?;",
            tuple(row[c] for c in cols) + (record["id"],),
        )
        return cursor.rowcount

    async def _select(self, where: str = "", params: Tuple = (), order: str = "id") -> List[dict]:
        track_read(self.table)
        query = f"SELECT {', '.join(self.columns)} FROM {self.table}"
        if where:
            query += f" WHERE {where}"
        rows = await self.fetch_all(f"{query} ORDER BY {order};", params)
        return [self._from_row(r) for r in rows]

    async def _first(self, where: str, params: Tuple = (), order: str = "id") -> Optional[dict]:
        rows = await self._select(where, params, order)
        return rows[0] if rows else None

    async def add(self, record: dict) -> int:
        data = self._validate(record)
        async with self._write(self.table) as conn:
            return await self._insert(conn, data)

    async def bulk_add(self, records: Iterable[dict]) -> List[int]:
        rows = [self._validate(r) for r in records]
        ids: List[int] = []
        if not rows:
            return ids
        async with self._write(self.table) as conn:
            for row in rows:
                ids.append(await self._insert(conn, row))
        return ids

    async def update(self, record_id: int, changes: dict) -> int:
        """Merge ``changes`` into the stored record; return rows updated."""
        async with self._write(self.table) as conn:
            cursor = await conn.execute(
                f"SELECT {', '.join(self.columns)} FROM {self.table} WHERE id = ?;",
                (record_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                return 0
            merged = {**self._from_row(row), **changes, "id": record_id}
            return await self._update_row(conn, self._validate(merged))

    async def delete(self, record_id: int) -> None:
        async with self._write(self.table) as conn:
            await conn.execute(f"DELETE FROM {self.table} WHERE id = ?;", (record_id,))

    async def clear(self) -> None:
        async with self._write(self.table) as conn:
            await conn.execute(f"DELETE FROM {self.table};")

    async def get(self, record_id: int) -> Optional[dict]:
        if record_id is None:
            return None
        return await self._first("id = ?", (record_id,))

    async def to_array(self) -> List[dict]:
        return await self._select()

    async def count(self) -> int:
        track_read(self.table)
        rows = await self.fetch_all(f"SELECT COUNT(*) FROM {self.table};")
        return int(rows[0][0])

    async def where(self, field: str, value) -> List[dict]:
        if field not in self.columns:
            raise ValueError(f"unknown field {field!r} for {self.table}")
        if field in self.bool_fields:
            value = int(bool(value))
        return await self._select(f"{field} = ?", (value,))


class ExerciseRepository(CollectionRepository):
    table = "exercises"
    model = Exercise
    bool_fields = ("is_custom",)

    async def find_by_name(self, name: str) -> Optional[dict]:
        return await self._first("name = ? COLLATE NOCASE", (name.strip(),))


class RoutineRepository(CollectionRepository):
    table = "routines"
    model = Routine
    json_fields = ("elements",)


class ScheduleRepository(CollectionRepository):
    """Seven rows, one per weekday; rows are reassigned, never removed."""

    table = "schedule"
    model = ScheduleEntry

    async def delete(self, record_id: int) -> None:
        raise StoreWriteError("schedule rows cannot be deleted")

    async def clear(self) -> None:
        raise StoreWriteError("schedule rows cannot be deleted")

    async def for_day(self, day_index: int) -> Optional[dict]:
        return await self._first("day_index = ?", (day_index,))

    async def week(self) -> List[dict]:
        return await self._select(order="day_index")

    async def assign(self, day_index: int, routine_id: Optional[int]) -> int:
        """Point ``day_index`` at ``routine_id`` (``None`` for a rest day)."""
        data = self._validate({"day_index": day_index, "routine_id": routine_id})
        async with self._write(self.table) as conn:
            cursor = await conn.execute(
                "UPDATE schedule SET routine_id = ? WHERE day_index = ?;",
                (data["routine_id"], data["day_index"]),
            )
            if cursor.rowcount:
                cursor = await conn.execute(
                    "SELECT id FROM schedule WHERE day_index = ?;", (day_index,)
                )
                return (await cursor.fetchone())[0]
            return await self._insert(conn, data)


class ProfileRepository(CollectionRepository):
    """Singleton collection holding the user profile."""

    table = "profile"
    model = UserProfile
    bool_fields = ("onboarding_complete",)

    async def add(self, record: dict) -> int:
        data = self._validate(record)
        async with self._write(self.table) as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM profile;")
            if (await cursor.fetchone())[0]:
                raise StoreWriteError("a profile already exists")
            return await self._insert(conn, data)

    async def bulk_add(self, records: Iterable[dict]) -> List[int]:
        records = list(records)
        if len(records) > 1:
            raise StoreWriteError("only one profile can be stored")
        return [await self.add(r) for r in records]

    async def save(self, record: dict) -> int:
        """Replace the stored profile with ``record``."""
        data = self._validate(record)
        async with self._write(self.table) as conn:
            if data["id"] is None:
                cursor = await conn.execute("SELECT id FROM profile ORDER BY id LIMIT 1;")
                row = await cursor.fetchone()
                data["id"] = row[0] if row else None
            await conn.execute("DELETE FROM profile;")
            return await self._insert(conn, data)

    async def current(self) -> Optional[dict]:
        rows = await self._select()
        return rows[0] if rows else None


class DailyLogRepository(CollectionRepository):
    table = "daily_logs"
    model = DailyLog

    async def for_date(self, date_key: str) -> Optional[dict]:
        return await self._first("date = ?", (date_key,))

    async def between(self, start_key: str, end_key: str) -> List[dict]:
        return await self._select("date BETWEEN ? AND ?", (start_key, end_key), order="date")

    async def upsert(self, date_key: str, **fields) -> int:
        """Create or update the log for ``date_key`` keeping unspecified fields."""
        async with self._write(self.table) as conn:
            cursor = await conn.execute(
                f"SELECT {', '.join(self.columns)} FROM daily_logs WHERE date = ?;",
                (date_key,),
            )
            row = await cursor.fetchone()
            existing = self._from_row(row) if row else {"date": date_key}
            data = self._validate({**existing, **fields, "date": date_key})
            if row is None:
                return await self._insert(conn, data)
            await self._update_row(conn, data)
            return data["id"]


class SetRepository(CollectionRepository):
    """Append-only log of performed sets."""

    table = "sets"
    model = SetLog
    bool_fields = ("is_warmup",)

    async def update(self, record_id: int, changes: dict) -> int:
        raise StoreWriteError("logged sets cannot be edited")

    async def between(self, start_ms: int, end_ms: int) -> List[dict]:
        return await self._select(
            "timestamp BETWEEN ? AND ?", (start_ms, end_ms), order="timestamp, id"
        )

    async def count_between(self, start_ms: int, end_ms: int) -> int:
        track_read(self.table)
        rows = await self.fetch_all(
            "SELECT COUNT(*) FROM sets WHERE timestamp BETWEEN ? AND ?;",
            (start_ms, end_ms),
        )
        return int(rows[0][0])

    async def for_day(self, day: datetime.date) -> List[dict]:
        start_ms, end_ms = DateTools.day_bounds(DateTools.parse_day(day))
        return await self.between(start_ms, end_ms)

    async def for_exercise(self, exercise_id: int) -> List[dict]:
        return await self._select("exercise_id = ?", (exercise_id,), order="timestamp, id")

    async def ordered(self, descending: bool = False) -> List[dict]:
        order = "timestamp DESC, id DESC" if descending else "timestamp, id"
        return await self._select(order=order)

    async def last_for_exercise(self, exercise_id: int) -> Optional[dict]:
        return await self._first(
            "exercise_id = ?", (exercise_id,), order="timestamp DESC, id DESC"
        )

    async def log(
        self,
        exercise_id: int,
        weight: float,
        reps: float,
        *,
        calories: Optional[float] = None,
        is_warmup: bool = False,
        date: Optional[datetime.date] = None,
        now: Optional[datetime.datetime] = None,
    ) -> int:
        """Log a set now, or on ``date`` at the current time of day."""
        now = now or datetime.datetime.now()
        if date is None:
            timestamp = DateTools.to_millis(now)
        else:
            timestamp = DateTools.backlog_timestamp(DateTools.parse_day(date), now)
        return await self.add(
            {
                "exercise_id": exercise_id,
                "weight": weight,
                "reps": reps,
                "calories": calories,
                "is_warmup": is_warmup,
                "timestamp": timestamp,
            }
        )


class Store(AsyncBaseRepository):
    """Composition root for the collection repositories."""

    def __init__(self, db_path: str = "ironlog.db", bus: ChangeBus | None = None) -> None:
        super().__init__(db_path, bus)
        self.exercises = ExerciseRepository(db_path, self.bus)
        self.routines = RoutineRepository(db_path, self.bus)
        self.schedule = ScheduleRepository(db_path, self.bus)
        self.profile = ProfileRepository(db_path, self.bus)
        self.daily_logs = DailyLogRepository(db_path, self.bus)
        self.sets = SetRepository(db_path, self.bus)

    @property
    def repositories(self) -> Dict[str, CollectionRepository]:
        return {name: getattr(self, name) for name in COLLECTIONS}

    async def snapshot(self) -> Dict[str, List[dict]]:
        """Return every collection as lists of records."""
        return {name: await repo.to_array() for name, repo in self.repositories.items()}

    async def replace_all(self, collections: Dict[str, List[dict]]) -> None:
        """Replace the contents of every collection in one transaction.

        Record ids are kept. Weekdays absent from ``schedule`` become rest
        days so the store always holds seven schedule rows.
        """
        unknown = set(collections) - set(COLLECTIONS)
        if unknown:
            raise RecordValidationError(f"unknown collections: {sorted(unknown)}")
        validated: Dict[str, List[dict]] = {}
        for name, repo in self.repositories.items():
            validated[name] = [repo._validate(r) for r in collections.get(name) or []]
        if len(validated["profile"]) > 1:
            raise RecordValidationError("at most one profile is allowed")
        days = {row["day_index"] for row in validated["schedule"]}
        for day in range(7):
            if day not in days:
                validated["schedule"].append({"id": None, "day_index": day, "routine_id": None})

        async with self._write(*COLLECTIONS) as conn:
            for name, repo in self.repositories.items():
                await conn.execute(f"DELETE FROM {name};")
                for row in validated[name]:
                    await repo._insert(conn, row)
        logger.info(
            "replaced store contents: %s",
            ", ".join(f"{n}={len(rows)}" for n, rows in validated.items()),
        )

    async def reset(self) -> None:
        """Erase every collection and reseed the first-run defaults.

        Ids start again at 1, as on a freshly created database.
        """
        placeholders = ", ".join("?" for _ in COLLECTIONS)
        async with self._write(*COLLECTIONS) as conn:
            for name in COLLECTIONS:
                await conn.execute(f"DELETE FROM {name};")
            await conn.execute(
                f"DELETE FROM sqlite_sequence WHERE name IN ({placeholders});", COLLECTIONS
            )
            await conn.executemany(SEED_EXERCISES_SQL, DEFAULT_EXERCISES)
            await conn.executemany(SEED_SCHEDULE_SQL, [(day,) for day in range(7)])
        logger.warning("factory reset of %s", self._db_path)
