from __future__ import annotations

import asyncio
import sqlite3
import aiosqlite
import datetime
import logging
import os
import threading
import time
from contextlib import contextmanager, asynccontextmanager
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from errors import (
    ConstraintViolation,
    Forbidden,
    InvalidStateTransition,
    NotFoundError,
    StorageUnavailable,
    translate_sqlite_error,
)
from models import (
    DEFAULT_USER_ID,
    SYSTEM_OWNER_ID,
    PersonalRecord,
    RecordType,
    TemplateCategory,
    TemplateExercise,
    User,
    UserPreferences,
    Workout,
    WorkoutExercise,
    WorkoutSet,
    WorkoutStatus,
    WorkoutTemplate,
    as_utc,
    from_iso,
    join_list,
    merge_duplicate_exercises,
    new_id,
    split_list,
    to_iso,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLite refuses statements with too many bound parameters.
_IN_CHUNK = 500


def _chunks(items: Sequence[str], size: int = _IN_CHUNK) -> Iterable[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class Database:
    """Provides SQLite connection management and schema initialization."""

    _STATUS_CHECK = "CHECK (status IN ('planned', 'inProgress', 'completed', 'cancelled'))"

    # table -> (columns, table constraints). Columns missing from an existing
    # table are added with ALTER TABLE, so new columns need a default or NULL.
    _TABLE_DEFINITIONS = {
        "users": (
            [
                ("user_id", "TEXT PRIMARY KEY"),
                ("name", "TEXT NOT NULL"),
                ("created_at", "TEXT NOT NULL"),
                ("last_active_at", "TEXT NOT NULL"),
            ],
            [],
        ),
        "user_preferences": (
            [
                ("user_id", "TEXT PRIMARY KEY"),
                ("weight_unit", "TEXT NOT NULL DEFAULT 'kg'"),
                ("default_rest_seconds", "INTEGER NOT NULL DEFAULT 90"),
                ("favorite_body_parts", "TEXT"),
                ("sound_enabled", "INTEGER NOT NULL DEFAULT 1"),
                ("vibration_enabled", "INTEGER NOT NULL DEFAULT 1"),
            ],
            ["FOREIGN KEY(user_id) REFERENCES users(user_id) ON DELETE CASCADE"],
        ),
        "workouts": (
            [
                ("id", "TEXT PRIMARY KEY"),
                ("owner_id", "TEXT NOT NULL"),
                ("name", "TEXT NOT NULL"),
                ("target_body_parts", "TEXT"),
                ("planned_duration_minutes", "INTEGER NOT NULL DEFAULT 45"),
                ("status", f"TEXT NOT NULL DEFAULT 'planned' {_STATUS_CHECK}"),
                ("created_at", "TEXT NOT NULL"),
                ("started_at", "TEXT"),
                ("completed_at", "TEXT"),
                ("notes", "TEXT"),
            ],
            [],
        ),
        "workout_exercises": (
            [
                ("id", "TEXT PRIMARY KEY"),
                ("workout_id", "TEXT NOT NULL"),
                ("exercise_id", "TEXT NOT NULL"),
                ("exercise_name", "TEXT NOT NULL"),
                ("body_parts", "TEXT"),
                ("notes", "TEXT"),
                ("order_index", "INTEGER NOT NULL"),
            ],
            ["FOREIGN KEY(workout_id) REFERENCES workouts(id) ON DELETE CASCADE"],
        ),
        "workout_sets": (
            [
                ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
                ("workout_exercise_id", "TEXT NOT NULL"),
                ("weight", "REAL NOT NULL CHECK (weight >= 0)"),
                ("reps", "INTEGER NOT NULL CHECK (reps > 0)"),
                ("set_number", "INTEGER NOT NULL"),
                ("is_completed", "INTEGER NOT NULL DEFAULT 0"),
                ("completed_at", "TEXT"),
                ("notes", "TEXT"),
                ("rest_time_seconds", "INTEGER"),
            ],
            [
                "UNIQUE (workout_exercise_id, set_number)",
                "FOREIGN KEY(workout_exercise_id) REFERENCES workout_exercises(id) ON DELETE CASCADE",
            ],
        ),
        "workout_templates": (
            [
                ("id", "TEXT PRIMARY KEY"),
                ("owner_id", "TEXT NOT NULL"),
                ("name", "TEXT NOT NULL"),
                ("description", "TEXT"),
                ("target_body_parts", "TEXT"),
                ("estimated_duration_minutes", "INTEGER"),
                ("difficulty", "TEXT NOT NULL DEFAULT 'beginner'"),
                ("category", "TEXT NOT NULL DEFAULT 'custom'"),
                ("is_favorite", "INTEGER NOT NULL DEFAULT 0"),
                ("usage_count", "INTEGER NOT NULL DEFAULT 0"),
                ("last_used_at", "TEXT"),
                ("created_at", "TEXT NOT NULL"),
                ("updated_at", "TEXT NOT NULL"),
            ],
            [],
        ),
        "template_exercises": (
            [
                ("id", "TEXT PRIMARY KEY"),
                ("template_id", "TEXT NOT NULL"),
                ("exercise_id", "TEXT NOT NULL"),
                ("exercise_name", "TEXT NOT NULL"),
                ("body_parts", "TEXT"),
                ("order_index", "INTEGER NOT NULL"),
                ("suggested_sets", "INTEGER NOT NULL DEFAULT 3"),
                ("suggested_reps_min", "INTEGER NOT NULL DEFAULT 8"),
                ("suggested_reps_max", "INTEGER NOT NULL DEFAULT 12"),
                ("suggested_weight", "REAL"),
                ("rest_time_seconds", "INTEGER NOT NULL DEFAULT 90"),
                ("notes", "TEXT"),
            ],
            ["FOREIGN KEY(template_id) REFERENCES workout_templates(id) ON DELETE CASCADE"],
        ),
        "personal_records": (
            [
                ("id", "TEXT PRIMARY KEY"),
                ("owner_id", "TEXT NOT NULL"),
                ("exercise_id", "TEXT NOT NULL"),
                ("exercise_name", "TEXT NOT NULL"),
                ("record_type", "TEXT NOT NULL CHECK (record_type IN ('weight', 'volume', 'reps'))"),
                ("value", "REAL NOT NULL"),
                ("secondary_value", "REAL"),
                ("workout_id", "TEXT"),
                ("achieved_at", "TEXT NOT NULL"),
            ],
            ["UNIQUE (owner_id, exercise_id, record_type)"],
        ),
    }

    _INDEX_DEFINITIONS = [
        "CREATE INDEX IF NOT EXISTS idx_workouts_owner ON workouts (owner_id);",
        "CREATE INDEX IF NOT EXISTS idx_workouts_status ON workouts (owner_id, status);",
        "CREATE INDEX IF NOT EXISTS idx_workouts_created_at ON workouts (owner_id, created_at);",
        "CREATE INDEX IF NOT EXISTS idx_workout_exercises_workout ON workout_exercises (workout_id, order_index);",
        "CREATE INDEX IF NOT EXISTS idx_workout_sets_exercise ON workout_sets (workout_exercise_id, set_number);",
        "CREATE INDEX IF NOT EXISTS idx_templates_owner ON workout_templates (owner_id);",
        "CREATE INDEX IF NOT EXISTS idx_templates_category ON workout_templates (owner_id, category);",
        "CREATE INDEX IF NOT EXISTS idx_template_exercises_template ON template_exercises (template_id, order_index);",
        "CREATE INDEX IF NOT EXISTS idx_personal_records_owner ON personal_records (owner_id, achieved_at);",
    ]

    _init_lock = threading.RLock()
    _ready_paths: set[str] = set()

    def __init__(
        self,
        db_path: str = "workout.db",
        busy_timeout: float = 30.0,
        retry_backoff: float = 0.05,
    ) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._retry_backoff = retry_backoff
        self.open()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _key(self) -> str:
        return os.path.abspath(self._db_path)

    def _mark_stale(self) -> None:
        Database._ready_paths.discard(self._key())

    @contextmanager
    def _connection(self):
        try:
            connection = sqlite3.connect(
                self._db_path, timeout=self._busy_timeout, isolation_level=None
            )
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"cannot open {self._db_path}: {exc}") from exc
        connection.row_factory = sqlite3.Row
        try:
            connection.execute("PRAGMA foreign_keys=ON;")
            yield connection
        finally:
            connection.close()

    @contextmanager
    def _transaction(self, immediate: bool = False):
        """Yield a connection inside BEGIN/COMMIT, rolling back on any error."""
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE;" if immediate else "BEGIN;")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK;")
                raise
            conn.execute("COMMIT;")

    def open(self) -> None:
        """Create the database file and schema once per path and process."""
        key = self._key()
        if key in Database._ready_paths:
            return
        with Database._init_lock:
            if key in Database._ready_paths:
                return
            try:
                self._ensure_schema()
            except sqlite3.Error as exc:
                raise StorageUnavailable(f"cannot initialise {self._db_path}: {exc}") from exc
            Database._ready_paths.add(key)
            logger.info("schema ready at %s", self._db_path)

    @classmethod
    def _create_sql(cls, table: str) -> str:
        columns, constraints = cls._TABLE_DEFINITIONS[table]
        parts = [f"{name} {decl}" for name, decl in columns] + list(constraints)
        return f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(parts)});"

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")
        with self._transaction(immediate=True) as conn:
            for table in self._TABLE_DEFINITIONS:
                self._ensure_table(conn, table)
            for sql in self._INDEX_DEFINITIONS:
                conn.execute(sql)

    def _ensure_table(self, conn: sqlite3.Connection, table: str) -> None:
        conn.execute(self._create_sql(table))
        existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table});")}
        columns, _constraints = self._TABLE_DEFINITIONS[table]
        for name, decl in columns:
            if name not in existing:
                logger.info("adding column %s.%s", table, name)
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl};")

    def health_check(self) -> bool:
        """Return whether the file opens and every table exists.

        An unhealthy result marks the path for re-initialisation on the next
        access; the file itself is never removed.
        """
        try:
            with self._connection() as conn:
                rows = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table';"
                ).fetchall()
        except (sqlite3.Error, StorageUnavailable) as exc:
            logger.warning("health check failed for %s: %s", self._db_path, exc)
            self._mark_stale()
            return False
        names = {row[0] for row in rows}
        missing = [t for t in self._TABLE_DEFINITIONS if t not in names]
        if missing:
            logger.warning("health check: missing tables %s", ", ".join(missing))
            self._mark_stale()
            return False
        return True

    def reset(self) -> None:
        """Drop every table and recreate the schema. All data is lost."""
        with Database._init_lock:
            with self._connection() as conn:
                conn.execute("PRAGMA foreign_keys=OFF;")
                for table in reversed(list(self._TABLE_DEFINITIONS)):
                    conn.execute(f"DROP TABLE IF EXISTS {table};")
            self._mark_stale()
            self.open()
        logger.warning("database %s was reset", self._db_path)

    def vacuum(self) -> None:
        """Run SQLite VACUUM to reduce database size."""
        with self._connection() as conn:
            conn.execute("VACUUM;")

    def info(self) -> dict:
        counts = self._run(
            lambda conn: {
                table: conn.execute(f"SELECT COUNT(*) FROM {table};").fetchone()[0]
                for table in self._TABLE_DEFINITIONS
            }
        )
        return {"path": self._db_path, "healthy": self.health_check(), "tables": counts}

    @staticmethod
    def generate_id(prefix: str) -> str:
        return new_id(prefix)

    @staticmethod
    def generate_child_id(parent_id: str, child_key: str) -> str:
        """Deterministic child id, so resubmitting a child maps to the same row."""
        return f"{parent_id}_{child_key}"

    def _attempt(self, work: Callable[[sqlite3.Connection], T], immediate: bool) -> T:
        self.open()
        try:
            with self._transaction(immediate) as conn:
                return work(conn)
        except sqlite3.Error as exc:
            raise translate_sqlite_error(exc) from exc

    def _run(self, work: Callable[[sqlite3.Connection], T], immediate: bool = False) -> T:
        """Run ``work`` in one transaction, retrying once if storage is unavailable."""
        try:
            return self._attempt(work, immediate)
        except StorageUnavailable as exc:
            logger.warning("storage unavailable (%s); reopening %s", exc, self._db_path)
            self._mark_stale()
            time.sleep(self._retry_backoff)
            return self._attempt(work, immediate)

    def ensure_default_user(
        self,
        user_id: str | None = None,
        name: str | None = None,
        preferences: UserPreferences | None = None,
    ) -> str:
        """Create the local user and its preferences once; return its id."""
        uid = user_id or DEFAULT_USER_ID
        name = name or "Fitness Enthusiast"
        prefs = preferences or UserPreferences()
        now = to_iso(utcnow())

        def work(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT INTO users (user_id, name, created_at, last_active_at) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(user_id) DO NOTHING;",
                (uid, name, now, now),
            )
            conn.execute(
                "INSERT INTO user_preferences (user_id, weight_unit, default_rest_seconds, favorite_body_parts, sound_enabled, vibration_enabled) "
                "VALUES (?, ?, ?, ?, ?, ?) ON CONFLICT(user_id) DO NOTHING;",
                (
                    uid,
                    prefs.weight_unit,
                    prefs.default_rest_seconds,
                    join_list(prefs.favorite_body_parts),
                    int(prefs.sound_enabled),
                    int(prefs.vibration_enabled),
                ),
            )

        self._run(work, immediate=True)
        return uid


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = (), immediate: bool = True) -> int:
        return self._run(lambda conn: conn.execute(query, params).lastrowid, immediate)

    def fetch_all(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        return self._run(lambda conn: conn.execute(query, params).fetchall())


# Row mapping shared by the sync and async workout repositories.

_WORKOUT_COLUMNS = (
    "id, owner_id, name, target_body_parts, planned_duration_minutes, status, "
    "created_at, started_at, completed_at, notes"
)
_EXERCISE_COLUMNS = "id, workout_id, exercise_id, exercise_name, body_parts, notes, order_index"
_SET_COLUMNS = (
    "ws.workout_exercise_id, ws.weight, ws.reps, ws.set_number, ws.is_completed, "
    "ws.completed_at, ws.notes, ws.rest_time_seconds"
)


def _exercise_sql(count: int) -> str:
    return (
        f"SELECT {_EXERCISE_COLUMNS} FROM workout_exercises "
        f"WHERE workout_id IN ({_placeholders(count)}) ORDER BY workout_id, order_index;"
    )


def _set_sql(count: int) -> str:
    return (
        f"SELECT {_SET_COLUMNS} FROM workout_sets ws "
        "JOIN workout_exercises we ON we.id = ws.workout_exercise_id "
        f"WHERE we.workout_id IN ({_placeholders(count)}) "
        "ORDER BY ws.workout_exercise_id, ws.set_number;"
    )


def _set_from_row(row) -> WorkoutSet:
    return WorkoutSet(
        weight=float(row["weight"]),
        reps=int(row["reps"]),
        set_number=int(row["set_number"]),
        is_completed=bool(row["is_completed"]),
        completed_at=from_iso(row["completed_at"]),
        notes=row["notes"],
        rest_time_seconds=row["rest_time_seconds"],
    )


def _assemble_workouts(headers, exercise_rows, set_rows) -> List[Workout]:
    sets_by_exercise: dict[str, list[WorkoutSet]] = {}
    for row in set_rows:
        sets_by_exercise.setdefault(row["workout_exercise_id"], []).append(_set_from_row(row))
    exercises_by_workout: dict[str, list[WorkoutExercise]] = {}
    for row in exercise_rows:
        exercises_by_workout.setdefault(row["workout_id"], []).append(
            WorkoutExercise(
                id=row["id"],
                exercise_id=row["exercise_id"],
                exercise_name=row["exercise_name"],
                body_parts=split_list(row["body_parts"]),
                notes=row["notes"],
                order_index=int(row["order_index"]),
                sets=sets_by_exercise.get(row["id"], []),
            )
        )
    return [
        Workout(
            id=h["id"],
            owner_id=h["owner_id"],
            name=h["name"],
            target_body_parts=split_list(h["target_body_parts"]),
            planned_duration_minutes=int(h["planned_duration_minutes"]),
            status=WorkoutStatus(h["status"]),
            created_at=from_iso(h["created_at"]),
            started_at=from_iso(h["started_at"]),
            completed_at=from_iso(h["completed_at"]),
            notes=h["notes"],
            exercises=exercises_by_workout.get(h["id"], []),
        )
        for h in headers
    ]


def _range_bounds(
    start: datetime.date | datetime.datetime, end: datetime.date | datetime.datetime
) -> Tuple[str, str]:
    """Return inclusive ISO bounds; plain dates cover whole days."""
    if not isinstance(start, datetime.datetime):
        start = datetime.datetime.combine(start, datetime.time.min)
    if not isinstance(end, datetime.datetime):
        end = datetime.datetime.combine(end, datetime.time.max)
    return to_iso(start), to_iso(end)


def _list_query(
    owner_id: str,
    status: WorkoutStatus | str | None,
    limit: int | None,
    offset: int | None,
) -> Tuple[str, list]:
    query = f"SELECT {_WORKOUT_COLUMNS} FROM workouts WHERE owner_id = ?"
    params: list[str | int] = [owner_id]
    if status is not None:
        query += " AND status = ?"
        params.append(WorkoutStatus(status).value)
    query += " ORDER BY created_at DESC, id DESC"
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    if offset is not None:
        if limit is None:
            query += " LIMIT -1"
        query += " OFFSET ?"
        params.append(offset)
    return query + ";", params


class WorkoutRepository(BaseRepository):
    """Repository for the workout aggregate (header, exercises and sets)."""

    # action -> (allowed source states, target state, timestamp column)
    _TRANSITIONS = {
        "start": ({WorkoutStatus.PLANNED}, WorkoutStatus.IN_PROGRESS, "started_at"),
        "complete": ({WorkoutStatus.IN_PROGRESS}, WorkoutStatus.COMPLETED, "completed_at"),
        "cancel": (
            {WorkoutStatus.PLANNED, WorkoutStatus.IN_PROGRESS},
            WorkoutStatus.CANCELLED,
            None,
        ),
    }

    @staticmethod
    def _validate(workout: Workout) -> None:
        if not workout.owner_id or not workout.owner_id.strip():
            raise ConstraintViolation("workout owner id is required")
        if workout.status in (WorkoutStatus.IN_PROGRESS, WorkoutStatus.COMPLETED):
            if workout.started_at is None:
                raise ConstraintViolation(f"{workout.status.value} workout needs started_at")
        if workout.status is WorkoutStatus.COMPLETED and workout.completed_at is None:
            raise ConstraintViolation("completed workout needs completed_at")
        if workout.status is WorkoutStatus.PLANNED and (
            workout.started_at is not None or workout.completed_at is not None
        ):
            raise ConstraintViolation("planned workout cannot carry started_at or completed_at")
        if workout.status is WorkoutStatus.IN_PROGRESS and workout.completed_at is not None:
            raise ConstraintViolation("inProgress workout cannot carry completed_at")
        if (
            workout.started_at is not None
            and workout.completed_at is not None
            and workout.completed_at < workout.started_at
        ):
            raise ConstraintViolation("completed_at precedes started_at")

    @staticmethod
    def _prepare_exercises(workout: Workout, merge_duplicates: bool) -> List[WorkoutExercise]:
        exercises = (
            merge_duplicate_exercises(workout.exercises)
            if merge_duplicates
            else workout.exercises
        )
        seen: set[str] = set()
        for exercise in exercises:
            if exercise.exercise_id in seen:
                raise ConstraintViolation(
                    f"exercise {exercise.exercise_id} appears twice; merge duplicates first"
                )
            seen.add(exercise.exercise_id)
        return exercises

    def _insert_children(
        self, conn: sqlite3.Connection, workout_id: str, exercises: List[WorkoutExercise]
    ) -> None:
        for index, exercise in enumerate(exercises):
            child_id = self.generate_child_id(workout_id, exercise.exercise_id)
            conn.execute(
                "INSERT INTO workout_exercises (id, workout_id, exercise_id, exercise_name, body_parts, notes, order_index) "
                "VALUES (?, ?, ?, ?, ?, ?, ?);",
                (
                    child_id,
                    workout_id,
                    exercise.exercise_id,
                    exercise.exercise_name,
                    join_list(exercise.body_parts),
                    exercise.notes,
                    index,
                ),
            )
            conn.executemany(
                "INSERT INTO workout_sets (workout_exercise_id, weight, reps, set_number, is_completed, completed_at, notes, rest_time_seconds) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?);",
                [
                    (
                        child_id,
                        s.weight,
                        s.reps,
                        number,
                        int(s.is_completed),
                        to_iso(s.completed_at),
                        s.notes,
                        s.rest_time_seconds,
                    )
                    for number, s in enumerate(exercise.sets, start=1)
                ],
            )

    @staticmethod
    def _delete_children(conn: sqlite3.Connection, workout_id: str) -> None:
        conn.execute(
            "DELETE FROM workout_sets WHERE workout_exercise_id IN "
            "(SELECT id FROM workout_exercises WHERE workout_id = ?);",
            (workout_id,),
        )
        conn.execute("DELETE FROM workout_exercises WHERE workout_id = ?;", (workout_id,))

    def save(self, workout: Workout, merge_duplicates: bool = False) -> str:
        """Insert a new workout with all exercises and sets in one transaction."""
        self._validate(workout)
        exercises = self._prepare_exercises(workout, merge_duplicates)

        def work(conn: sqlite3.Connection) -> str:
            conn.execute(
                f"INSERT INTO workouts ({_WORKOUT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
                (
                    workout.id,
                    workout.owner_id,
                    workout.name,
                    join_list(workout.target_body_parts),
                    workout.planned_duration_minutes,
                    workout.status.value,
                    to_iso(workout.created_at),
                    to_iso(workout.started_at),
                    to_iso(workout.completed_at),
                    workout.notes,
                ),
            )
            self._insert_children(conn, workout.id, exercises)
            return workout.id

        workout_id = self._run(work, immediate=True)
        logger.debug("saved workout %s with %d exercises", workout_id, len(exercises))
        return workout_id

    def update(self, workout: Workout, merge_duplicates: bool = False) -> None:
        """Replace the header fields and the whole exercise/set subtree.

        Child rows are deleted and re-inserted, so their row ids change. The
        stored status and its timestamps are owned by start/complete/cancel.
        """
        if not workout.owner_id or not workout.owner_id.strip():
            raise ConstraintViolation("workout owner id is required")
        exercises = self._prepare_exercises(workout, merge_duplicates)

        def work(conn: sqlite3.Connection) -> None:
            row = conn.execute(
                "SELECT owner_id, status FROM workouts WHERE id = ?;", (workout.id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"workout {workout.id} not found")
            if row["owner_id"] != workout.owner_id:
                raise ConstraintViolation("workout owner cannot change")
            if row["status"] != workout.status.value:
                raise InvalidStateTransition(workout.id, row["status"], workout.status.value)
            conn.execute(
                "UPDATE workouts SET name = ?, target_body_parts = ?, planned_duration_minutes = ?, notes = ? WHERE id = ?;",
                (
                    workout.name,
                    join_list(workout.target_body_parts),
                    workout.planned_duration_minutes,
                    workout.notes,
                    workout.id,
                ),
            )
            self._delete_children(conn, workout.id)
            self._insert_children(conn, workout.id, exercises)

        self._run(work, immediate=True)
        logger.debug("updated workout %s", workout.id)

    @staticmethod
    def _load(conn: sqlite3.Connection, headers: List[sqlite3.Row]) -> List[Workout]:
        ids = [h["id"] for h in headers]
        exercise_rows: list = []
        set_rows: list = []
        for chunk in _chunks(ids):
            exercise_rows.extend(conn.execute(_exercise_sql(len(chunk)), tuple(chunk)).fetchall())
            set_rows.extend(conn.execute(_set_sql(len(chunk)), tuple(chunk)).fetchall())
        return _assemble_workouts(headers, exercise_rows, set_rows)

    def get(self, workout_id: str) -> Optional[Workout]:
        def work(conn: sqlite3.Connection) -> Optional[Workout]:
            headers = conn.execute(
                f"SELECT {_WORKOUT_COLUMNS} FROM workouts WHERE id = ?;", (workout_id,)
            ).fetchall()
            if not headers:
                return None
            return self._load(conn, headers)[0]

        return self._run(work)

    def delete(self, workout_id: str) -> None:
        def work(conn: sqlite3.Connection) -> None:
            self._delete_children(conn, workout_id)
            conn.execute("DELETE FROM workouts WHERE id = ?;", (workout_id,))

        self._run(work, immediate=True)

    def list(
        self,
        owner_id: str,
        status: WorkoutStatus | str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> List[Workout]:
        """Return workouts newest first, optionally filtered by status."""
        query, params = _list_query(owner_id, status, limit, offset)
        return self._run(lambda conn: self._load(conn, conn.execute(query, tuple(params)).fetchall()))

    def list_by_date_range(
        self,
        owner_id: str,
        start: datetime.date | datetime.datetime,
        end: datetime.date | datetime.datetime,
    ) -> List[Workout]:
        low, high = _range_bounds(start, end)
        query = (
            f"SELECT {_WORKOUT_COLUMNS} FROM workouts WHERE owner_id = ? "
            "AND created_at >= ? AND created_at <= ? ORDER BY created_at DESC, id DESC;"
        )
        return self._run(
            lambda conn: self._load(conn, conn.execute(query, (owner_id, low, high)).fetchall())
        )

    def search(self, owner_id: str, query: str) -> list[tuple[str, str]]:
        """Return (id, name) of workouts whose name or notes match the query."""
        like = f"%{query.lower()}%"
        rows = self.fetch_all(
            "SELECT id, name FROM workouts WHERE owner_id = ? AND (lower(name) LIKE ? OR lower(notes) LIKE ?) "
            "ORDER BY created_at DESC;",
            (owner_id, like, like),
        )
        return [(r["id"], r["name"]) for r in rows]

    def _transition(
        self, workout_id: str, action: str, at: datetime.datetime | None = None
    ) -> None:
        sources, target, stamp_column = self._TRANSITIONS[action]
        when = as_utc(at) if at is not None else utcnow()
        stamp = to_iso(when)

        def work(conn: sqlite3.Connection) -> None:
            row = conn.execute(
                "SELECT status, started_at FROM workouts WHERE id = ?;", (workout_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"workout {workout_id} not found")
            current = WorkoutStatus(row["status"])
            if current not in sources:
                raise InvalidStateTransition(workout_id, current.value, target.value)
            started = from_iso(row["started_at"])
            if stamp_column == "completed_at" and started is not None and when < started:
                raise ConstraintViolation(
                    f"workout {workout_id} cannot complete before it started ({row['started_at']})"
                )
            if stamp_column is None:
                conn.execute(
                    "UPDATE workouts SET status = ? WHERE id = ?;",
                    (target.value, workout_id),
                )
            else:
                conn.execute(
                    f"UPDATE workouts SET status = ?, {stamp_column} = ? WHERE id = ?;",
                    (target.value, stamp, workout_id),
                )

        self._run(work, immediate=True)
        logger.info("workout %s -> %s", workout_id, target.value)

    def start(self, workout_id: str, at: datetime.datetime | None = None) -> None:
        self._transition(workout_id, "start", at)

    def complete(self, workout_id: str, at: datetime.datetime | None = None) -> None:
        self._transition(workout_id, "complete", at)

    def cancel(self, workout_id: str) -> None:
        self._transition(workout_id, "cancel")

    def fetch_headers(self, owner_id: str) -> list[tuple[str, str, str | None, str | None]]:
        """Return (id, status, started_at, completed_at) for every workout of ``owner_id``."""
        return self._run(lambda conn: self._headers(conn, owner_id))

    def fetch_exercise_volumes(self, owner_id: str) -> list[tuple[str, list[str], float]]:
        """Return (workout_id, body_parts, volume) per workout exercise."""
        return self._run(lambda conn: self._exercise_volumes(conn, owner_id))

    def fetch_stats_rows(self, owner_id: str):
        """Return headers and exercise volumes from a single snapshot."""
        return self._run(
            lambda conn: (self._headers(conn, owner_id), self._exercise_volumes(conn, owner_id))
        )

    def fetch_completed_sessions(
        self, owner_id: str
    ) -> list[tuple[str, str | None, str | None, float, int]]:
        """Return (id, started_at, completed_at, volume, set_count) per completed workout.

        Rows come oldest completion first. Volume and set count include every
        set of the workout.
        """
        rows = self.fetch_all(
            "SELECT w.id, w.started_at, w.completed_at, "
            "COALESCE(SUM(ws.weight * ws.reps), 0) AS volume, COUNT(ws.id) AS set_count "
            "FROM workouts w "
            "LEFT JOIN workout_exercises we ON we.workout_id = w.id "
            "LEFT JOIN workout_sets ws ON ws.workout_exercise_id = we.id "
            "WHERE w.owner_id = ? AND w.status = ? "
            "GROUP BY w.id ORDER BY w.completed_at, w.id;",
            (owner_id, WorkoutStatus.COMPLETED.value),
        )
        return [
            (r["id"], r["started_at"], r["completed_at"], float(r["volume"]), int(r["set_count"]))
            for r in rows
        ]

    @staticmethod
    def _headers(conn: sqlite3.Connection, owner_id: str):
        rows = conn.execute(
            "SELECT id, status, started_at, completed_at FROM workouts WHERE owner_id = ?;",
            (owner_id,),
        ).fetchall()
        return [(r["id"], r["status"], r["started_at"], r["completed_at"]) for r in rows]

    @staticmethod
    def _exercise_volumes(conn: sqlite3.Connection, owner_id: str):
        rows = conn.execute(
            "SELECT we.workout_id, we.body_parts, COALESCE(SUM(ws.weight * ws.reps), 0) AS volume "
            "FROM workout_exercises we "
            "JOIN workouts w ON w.id = we.workout_id "
            "LEFT JOIN workout_sets ws ON ws.workout_exercise_id = we.id "
            "WHERE w.owner_id = ? GROUP BY we.id ORDER BY we.workout_id, we.order_index;",
            (owner_id,),
        ).fetchall()
        return [(r["workout_id"], split_list(r["body_parts"]), float(r["volume"])) for r in rows]


_TEMPLATE_COLUMNS = (
    "id, owner_id, name, description, target_body_parts, estimated_duration_minutes, "
    "difficulty, category, is_favorite, usage_count, last_used_at, created_at, updated_at"
)
_TEMPLATE_EXERCISE_COLUMNS = (
    "id, template_id, exercise_id, exercise_name, body_parts, order_index, suggested_sets, "
    "suggested_reps_min, suggested_reps_max, suggested_weight, rest_time_seconds, notes"
)


class TemplateRepository(BaseRepository):
    """Repository for workout templates and their exercises."""

    def __init__(
        self,
        db_path: str = "workout.db",
        system_owner_id: str = SYSTEM_OWNER_ID,
        **kwargs,
    ) -> None:
        super().__init__(db_path, **kwargs)
        self.system_owner_id = system_owner_id

    def _insert_exercises(
        self, conn: sqlite3.Connection, template_id: str, exercises: List[TemplateExercise]
    ) -> None:
        seen: set[str] = set()
        for index, exercise in enumerate(exercises):
            if exercise.exercise_id in seen:
                raise ConstraintViolation(
                    f"exercise {exercise.exercise_id} appears twice in template {template_id}"
                )
            seen.add(exercise.exercise_id)
            conn.execute(
                f"INSERT INTO template_exercises ({_TEMPLATE_EXERCISE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
                (
                    self.generate_child_id(template_id, exercise.exercise_id),
                    template_id,
                    exercise.exercise_id,
                    exercise.exercise_name,
                    join_list(exercise.body_parts),
                    index,
                    exercise.suggested_sets,
                    exercise.suggested_reps_min,
                    exercise.suggested_reps_max,
                    exercise.suggested_weight,
                    exercise.rest_time_seconds,
                    exercise.notes,
                ),
            )

    def _guard(self, conn: sqlite3.Connection, template_id: str, action: str) -> Optional[sqlite3.Row]:
        row = conn.execute(
            "SELECT owner_id, is_favorite FROM workout_templates WHERE id = ?;", (template_id,)
        ).fetchone()
        if row is not None and row["owner_id"] == self.system_owner_id:
            raise Forbidden(f"cannot {action} system template {template_id}")
        return row

    def save(self, template: WorkoutTemplate) -> str:
        if not template.owner_id or not template.owner_id.strip():
            raise ConstraintViolation("template owner id is required")

        def work(conn: sqlite3.Connection) -> str:
            conn.execute(
                f"INSERT INTO workout_templates ({_TEMPLATE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
                (
                    template.id,
                    template.owner_id,
                    template.name,
                    template.description,
                    join_list(template.target_body_parts),
                    template.estimated_duration_minutes,
                    template.difficulty.value,
                    template.category.value,
                    int(template.is_favorite),
                    template.usage_count,
                    to_iso(template.last_used_at),
                    to_iso(template.created_at),
                    to_iso(template.updated_at),
                ),
            )
            self._insert_exercises(conn, template.id, template.exercises)
            return template.id

        return self._run(work, immediate=True)

    def update(self, template: WorkoutTemplate) -> None:
        """Rewrite the template header and replace its exercises.

        Usage bookkeeping (count and last use) is kept from storage.
        """
        now = to_iso(utcnow())

        def work(conn: sqlite3.Connection) -> None:
            if self._guard(conn, template.id, "edit") is None:
                raise NotFoundError(f"template {template.id} not found")
            conn.execute(
                "UPDATE workout_templates SET name = ?, description = ?, target_body_parts = ?, "
                "estimated_duration_minutes = ?, difficulty = ?, category = ?, is_favorite = ?, updated_at = ? "
                "WHERE id = ?;",
                (
                    template.name,
                    template.description,
                    join_list(template.target_body_parts),
                    template.estimated_duration_minutes,
                    template.difficulty.value,
                    template.category.value,
                    int(template.is_favorite),
                    now,
                    template.id,
                ),
            )
            conn.execute("DELETE FROM template_exercises WHERE template_id = ?;", (template.id,))
            self._insert_exercises(conn, template.id, template.exercises)

        self._run(work, immediate=True)

    @staticmethod
    def _assemble(conn: sqlite3.Connection, headers: List[sqlite3.Row]) -> List[WorkoutTemplate]:
        ids = [h["id"] for h in headers]
        by_template: dict[str, list[TemplateExercise]] = {}
        for chunk in _chunks(ids):
            rows = conn.execute(
                f"SELECT {_TEMPLATE_EXERCISE_COLUMNS} FROM template_exercises "
                f"WHERE template_id IN ({_placeholders(len(chunk))}) ORDER BY template_id, order_index;",
                tuple(chunk),
            ).fetchall()
            for r in rows:
                by_template.setdefault(r["template_id"], []).append(
                    TemplateExercise(
                        id=r["id"],
                        exercise_id=r["exercise_id"],
                        exercise_name=r["exercise_name"],
                        body_parts=split_list(r["body_parts"]),
                        order_index=int(r["order_index"]),
                        suggested_sets=int(r["suggested_sets"]),
                        suggested_reps_min=int(r["suggested_reps_min"]),
                        suggested_reps_max=int(r["suggested_reps_max"]),
                        suggested_weight=r["suggested_weight"],
                        rest_time_seconds=int(r["rest_time_seconds"]),
                        notes=r["notes"],
                    )
                )
        return [
            WorkoutTemplate(
                id=h["id"],
                owner_id=h["owner_id"],
                name=h["name"],
                description=h["description"],
                target_body_parts=split_list(h["target_body_parts"]),
                estimated_duration_minutes=h["estimated_duration_minutes"],
                difficulty=h["difficulty"],
                category=h["category"],
                is_favorite=bool(h["is_favorite"]),
                usage_count=int(h["usage_count"]),
                last_used_at=from_iso(h["last_used_at"]),
                created_at=from_iso(h["created_at"]),
                updated_at=from_iso(h["updated_at"]),
                exercises=by_template.get(h["id"], []),
            )
            for h in headers
        ]

    def _query(self, query: str, params: Tuple) -> List[WorkoutTemplate]:
        return self._run(lambda conn: self._assemble(conn, conn.execute(query, params).fetchall()))

    def get(self, template_id: str) -> Optional[WorkoutTemplate]:
        found = self._query(
            f"SELECT {_TEMPLATE_COLUMNS} FROM workout_templates WHERE id = ?;", (template_id,)
        )
        return found[0] if found else None

    def delete(self, template_id: str) -> None:
        def work(conn: sqlite3.Connection) -> None:
            self._guard(conn, template_id, "delete")
            conn.execute("DELETE FROM template_exercises WHERE template_id = ?;", (template_id,))
            conn.execute("DELETE FROM workout_templates WHERE id = ?;", (template_id,))

        self._run(work, immediate=True)

    def list(
        self,
        owner_id: str,
        category: TemplateCategory | str | None = None,
        favorites_only: bool = False,
        search: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> List[WorkoutTemplate]:
        query = f"SELECT {_TEMPLATE_COLUMNS} FROM workout_templates WHERE owner_id = ?"
        params: list[str | int] = [owner_id]
        if category is not None:
            query += " AND category = ?"
            params.append(TemplateCategory(category).value)
        if favorites_only:
            query += " AND is_favorite = 1"
        if search:
            like = f"%{search.lower()}%"
            query += " AND (lower(name) LIKE ? OR lower(description) LIKE ?)"
            params.extend([like, like])
        query += " ORDER BY updated_at DESC, id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        if offset is not None:
            if limit is None:
                query += " LIMIT -1"
            query += " OFFSET ?"
            params.append(offset)
        return self._query(query + ";", tuple(params))

    def list_recent(self, owner_id: str, n: int = 5) -> List[WorkoutTemplate]:
        return self._query(
            f"SELECT {_TEMPLATE_COLUMNS} FROM workout_templates "
            "WHERE owner_id = ? AND last_used_at IS NOT NULL ORDER BY last_used_at DESC LIMIT ?;",
            (owner_id, n),
        )

    def list_popular(self, owner_id: str, n: int = 5) -> List[WorkoutTemplate]:
        return self._query(
            f"SELECT {_TEMPLATE_COLUMNS} FROM workout_templates "
            "WHERE owner_id = ? ORDER BY usage_count DESC, updated_at DESC LIMIT ?;",
            (owner_id, n),
        )

    def toggle_favorite(self, template_id: str) -> bool:
        """Flip the favorite flag and return its new value."""

        def work(conn: sqlite3.Connection) -> bool:
            row = self._guard(conn, template_id, "favorite")
            if row is None:
                raise NotFoundError(f"template {template_id} not found")
            flag = not bool(row["is_favorite"])
            conn.execute(
                "UPDATE workout_templates SET is_favorite = ? WHERE id = ?;",
                (int(flag), template_id),
            )
            return flag

        return self._run(work, immediate=True)

    def record_usage(self, template_id: str, at: datetime.datetime | None = None) -> None:
        stamp = to_iso(at or utcnow())

        def work(conn: sqlite3.Connection) -> None:
            cur = conn.execute(
                "UPDATE workout_templates SET usage_count = usage_count + 1, last_used_at = ? WHERE id = ?;",
                (stamp, template_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"template {template_id} not found")

        self._run(work, immediate=True)

    def stats(self, owner_id: str) -> dict:
        rows = self.fetch_all(
            "SELECT COUNT(*) AS total, COALESCE(SUM(is_favorite), 0) AS favorites, "
            "COALESCE(SUM(usage_count), 0) AS usage, COALESCE(AVG(usage_count), 0) AS avg_usage, "
            "COUNT(last_used_at) AS used FROM workout_templates WHERE owner_id = ?;",
            (owner_id,),
        )
        row = rows[0]
        total = int(row["total"])
        used = int(row["used"])
        return {
            "total_templates": total,
            "favorite_templates": int(row["favorites"]),
            "total_usage": int(row["usage"]),
            "average_usage": round(float(row["avg_usage"]), 2),
            "used_templates": used,
            "usage_rate": used / total if total else 0.0,
        }


_RECORD_COLUMNS = (
    "id, owner_id, exercise_id, exercise_name, record_type, value, secondary_value, workout_id, achieved_at"
)


def _record_from_row(row) -> PersonalRecord:
    return PersonalRecord(
        id=row["id"],
        owner_id=row["owner_id"],
        exercise_id=row["exercise_id"],
        exercise_name=row["exercise_name"],
        record_type=RecordType(row["record_type"]),
        value=float(row["value"]),
        secondary_value=row["secondary_value"],
        workout_id=row["workout_id"],
        achieved_at=from_iso(row["achieved_at"]),
    )


class PersonalRecordRepository(BaseRepository):
    """Repository for the current personal record per exercise and type."""

    def current(
        self, owner_id: str, exercise_id: str, record_type: RecordType | str
    ) -> Optional[PersonalRecord]:
        rows = self.fetch_all(
            f"SELECT {_RECORD_COLUMNS} FROM personal_records WHERE owner_id = ? AND exercise_id = ? AND record_type = ?;",
            (owner_id, exercise_id, RecordType(record_type).value),
        )
        return _record_from_row(rows[0]) if rows else None

    def record_if_better(self, candidates: List[PersonalRecord]) -> List[PersonalRecord]:
        """Store each candidate that beats the current value; return those stored.

        Comparison and write share one immediate transaction, so concurrent
        callers can never lower a record.
        """

        def work(conn: sqlite3.Connection) -> List[PersonalRecord]:
            stored: List[PersonalRecord] = []
            for candidate in candidates:
                row = conn.execute(
                    "SELECT id, value FROM personal_records WHERE owner_id = ? AND exercise_id = ? AND record_type = ?;",
                    (candidate.owner_id, candidate.exercise_id, candidate.record_type.value),
                ).fetchone()
                if row is not None and candidate.value <= float(row["value"]):
                    continue
                record = candidate if row is None else candidate.model_copy(update={"id": row["id"]})
                conn.execute(
                    f"INSERT INTO personal_records ({_RECORD_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(owner_id, exercise_id, record_type) DO UPDATE SET "
                    "exercise_name = excluded.exercise_name, value = excluded.value, "
                    "secondary_value = excluded.secondary_value, workout_id = excluded.workout_id, "
                    "achieved_at = excluded.achieved_at;",
                    (
                        record.id,
                        record.owner_id,
                        record.exercise_id,
                        record.exercise_name,
                        record.record_type.value,
                        record.value,
                        record.secondary_value,
                        record.workout_id,
                        to_iso(record.achieved_at),
                    ),
                )
                stored.append(record)
            return stored

        return self._run(work, immediate=True)

    def fetch_recent(self, owner_id: str, limit: int = 10) -> List[PersonalRecord]:
        rows = self.fetch_all(
            f"SELECT {_RECORD_COLUMNS} FROM personal_records WHERE owner_id = ? "
            "ORDER BY achieved_at DESC, id LIMIT ?;",
            (owner_id, limit),
        )
        return [_record_from_row(r) for r in rows]

    def fetch_for_exercise(self, owner_id: str, exercise_id: str) -> List[PersonalRecord]:
        rows = self.fetch_all(
            f"SELECT {_RECORD_COLUMNS} FROM personal_records WHERE owner_id = ? AND exercise_id = ? "
            "ORDER BY record_type;",
            (owner_id, exercise_id),
        )
        return [_record_from_row(r) for r in rows]

    def counts(self, owner_id: str, since: datetime.datetime) -> dict:
        rows = self.fetch_all(
            "SELECT COUNT(*) AS total, "
            "COALESCE(SUM(CASE WHEN achieved_at >= ? THEN 1 ELSE 0 END), 0) AS recent, "
            "COUNT(DISTINCT exercise_id) AS exercises "
            "FROM personal_records WHERE owner_id = ?;",
            (to_iso(since), owner_id),
        )
        row = rows[0]
        return {
            "total": int(row["total"]),
            "since": int(row["recent"]),
            "unique_exercises": int(row["exercises"]),
        }

    def delete(self, record_id: str) -> None:
        self.execute("DELETE FROM personal_records WHERE id = ?;", (record_id,))


class UserRepository(BaseRepository):
    """Repository for the local user and its preferences."""

    def get(self, user_id: str) -> Optional[User]:
        rows = self.fetch_all(
            "SELECT u.user_id, u.name, u.created_at, u.last_active_at, p.weight_unit, "
            "p.default_rest_seconds, p.favorite_body_parts, p.sound_enabled, p.vibration_enabled "
            "FROM users u LEFT JOIN user_preferences p ON p.user_id = u.user_id WHERE u.user_id = ?;",
            (user_id,),
        )
        if not rows:
            return None
        r = rows[0]
        prefs = UserPreferences()
        if r["weight_unit"] is not None:
            prefs = UserPreferences(
                weight_unit=r["weight_unit"],
                default_rest_seconds=int(r["default_rest_seconds"]),
                favorite_body_parts=split_list(r["favorite_body_parts"]),
                sound_enabled=bool(r["sound_enabled"]),
                vibration_enabled=bool(r["vibration_enabled"]),
            )
        return User(
            user_id=r["user_id"],
            name=r["name"],
            created_at=from_iso(r["created_at"]),
            last_active_at=from_iso(r["last_active_at"]),
            preferences=prefs,
        )

    def set_preferences(self, user_id: str, prefs: UserPreferences) -> None:
        def work(conn: sqlite3.Connection) -> None:
            if conn.execute("SELECT 1 FROM users WHERE user_id = ?;", (user_id,)).fetchone() is None:
                raise NotFoundError(f"user {user_id} not found")
            conn.execute(
                "INSERT INTO user_preferences (user_id, weight_unit, default_rest_seconds, favorite_body_parts, sound_enabled, vibration_enabled) "
                "VALUES (?, ?, ?, ?, ?, ?) ON CONFLICT(user_id) DO UPDATE SET "
                "weight_unit = excluded.weight_unit, default_rest_seconds = excluded.default_rest_seconds, "
                "favorite_body_parts = excluded.favorite_body_parts, sound_enabled = excluded.sound_enabled, "
                "vibration_enabled = excluded.vibration_enabled;",
                (
                    user_id,
                    prefs.weight_unit,
                    prefs.default_rest_seconds,
                    join_list(prefs.favorite_body_parts),
                    int(prefs.sound_enabled),
                    int(prefs.vibration_enabled),
                ),
            )

        self._run(work, immediate=True)

    def touch(self, user_id: str) -> None:
        self.execute(
            "UPDATE users SET last_active_at = ? WHERE user_id = ?;",
            (to_iso(utcnow()), user_id),
        )


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        try:
            conn = await aiosqlite.connect(
                self._db_path, timeout=self._busy_timeout, isolation_level=None
            )
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"cannot open {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            await conn.execute("PRAGMA foreign_keys=ON;")
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def _async_transaction(self, immediate: bool = False):
        async with self._async_connection() as conn:
            await conn.execute("BEGIN IMMEDIATE;" if immediate else "BEGIN;")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    await conn.execute("ROLLBACK;")
                raise
            await conn.execute("COMMIT;")

    async def _attempt_async(self, work, immediate: bool):
        await asyncio.to_thread(self.open)
        try:
            async with self._async_transaction(immediate) as conn:
                return await work(conn)
        except sqlite3.Error as exc:
            raise translate_sqlite_error(exc) from exc

    async def _run_async(self, work, immediate: bool = False):
        try:
            return await self._attempt_async(work, immediate)
        except StorageUnavailable as exc:
            logger.warning("storage unavailable (%s); reopening %s", exc, self._db_path)
            self._mark_stale()
            await asyncio.sleep(self._retry_backoff)
            return await self._attempt_async(work, immediate)


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Tuple = (), immediate: bool = True) -> int:
        async def work(conn):
            cursor = await conn.execute(query, params)
            return cursor.lastrowid

        return await self._run_async(work, immediate)

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        async def work(conn):
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()

        return await self._run_async(work)


class AsyncWorkoutRepository(AsyncBaseRepository):
    """Async read side of the workout aggregate for event-loop callers."""

    @staticmethod
    async def _load(conn, headers) -> List[Workout]:
        ids = [h["id"] for h in headers]
        exercise_rows: list = []
        set_rows: list = []
        for chunk in _chunks(ids):
            cursor = await conn.execute(_exercise_sql(len(chunk)), tuple(chunk))
            exercise_rows.extend(await cursor.fetchall())
            cursor = await conn.execute(_set_sql(len(chunk)), tuple(chunk))
            set_rows.extend(await cursor.fetchall())
        return _assemble_workouts(headers, exercise_rows, set_rows)

    async def _select(self, query: str, params: Tuple) -> List[Workout]:
        async def work(conn):
            cursor = await conn.execute(query, params)
            headers = await cursor.fetchall()
            return await self._load(conn, headers)

        return await self._run_async(work)

    async def get(self, workout_id: str) -> Optional[Workout]:
        found = await self._select(
            f"SELECT {_WORKOUT_COLUMNS} FROM workouts WHERE id = ?;", (workout_id,)
        )
        return found[0] if found else None

    async def list(
        self,
        owner_id: str,
        status: WorkoutStatus | str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> List[Workout]:
        query, params = _list_query(owner_id, status, limit, offset)
        return await self._select(query, tuple(params))

    async def list_by_date_range(
        self,
        owner_id: str,
        start: datetime.date | datetime.datetime,
        end: datetime.date | datetime.datetime,
    ) -> List[Workout]:
        low, high = _range_bounds(start, end)
        return await self._select(
            f"SELECT {_WORKOUT_COLUMNS} FROM workouts WHERE owner_id = ? "
            "AND created_at >= ? AND created_at <= ? ORDER BY created_at DESC, id DESC;",
            (owner_id, low, high),
        )

    async def delete(self, workout_id: str) -> None:
        async def work(conn) -> None:
            await conn.execute(
                "DELETE FROM workout_sets WHERE workout_exercise_id IN "
                "(SELECT id FROM workout_exercises WHERE workout_id = ?);",
                (workout_id,),
            )
            await conn.execute("DELETE FROM workout_exercises WHERE workout_id = ?;", (workout_id,))
            await conn.execute("DELETE FROM workouts WHERE id = ?;", (workout_id,))

        await self._run_async(work, immediate=True)
