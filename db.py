import asyncio
import sqlite3
import aiosqlite
import csv
import os
import io
import json
import uuid
import datetime
import logging
from contextlib import contextmanager, asynccontextmanager
from typing import Any, Dict, List, Tuple, Optional, Iterable

from errors import NotFoundError, StoreError, ValidationError
from tools import DateTools, MathTools

logger = logging.getLogger(__name__)

EXERCISE_DATA_PATH = os.path.join(
    os.path.dirname(os.path.abspath(__file__)), "data", "exercises.json"
)


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "users": (
            """CREATE TABLE users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    username TEXT,
                    name TEXT,
                    image TEXT,
                    email_verified INTEGER NOT NULL DEFAULT 0,
                    theme TEXT NOT NULL DEFAULT 'dark',
                    weight_unit TEXT NOT NULL DEFAULT 'kg',
                    created_at TEXT,
                    updated_at TEXT
                );""",
            [
                "id",
                "email",
                "username",
                "name",
                "image",
                "email_verified",
                "theme",
                "weight_unit",
                "created_at",
                "updated_at",
            ],
        ),
        "accounts": (
            """CREATE TABLE accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    account_id TEXT NOT NULL,
                    access_token TEXT,
                    refresh_token TEXT,
                    scope TEXT,
                    expires_at TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    UNIQUE (provider, account_id),
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );""",
            [
                "id",
                "user_id",
                "provider",
                "account_id",
                "access_token",
                "refresh_token",
                "scope",
                "expires_at",
                "created_at",
                "updated_at",
            ],
        ),
        "exercise_categories": (
            """CREATE TABLE exercise_categories (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT
                );""",
            ["id", "name", "description"],
        ),
        "exercises": (
            """CREATE TABLE exercises (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    category_id TEXT NOT NULL,
                    force TEXT,
                    level TEXT,
                    mechanic TEXT,
                    equipment TEXT,
                    primary_muscles TEXT NOT NULL DEFAULT '[]',
                    secondary_muscles TEXT NOT NULL DEFAULT '[]',
                    instructions TEXT NOT NULL DEFAULT '[]',
                    images TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT,
                    updated_at TEXT,
                    FOREIGN KEY(category_id) REFERENCES exercise_categories(id)
                );""",
            [
                "id",
                "name",
                "category_id",
                "force",
                "level",
                "mechanic",
                "equipment",
                "primary_muscles",
                "secondary_muscles",
                "instructions",
                "images",
                "created_at",
                "updated_at",
            ],
        ),
        "workout_sessions": (
            """CREATE TABLE workout_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    name TEXT,
                    date TEXT NOT NULL,
                    start_time TEXT,
                    end_time TEXT,
                    notes TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );""",
            [
                "id",
                "user_id",
                "name",
                "date",
                "start_time",
                "end_time",
                "notes",
                "created_at",
                "updated_at",
            ],
        ),
        "workout_sets": (
            """CREATE TABLE workout_sets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id INTEGER NOT NULL,
                    exercise_id TEXT NOT NULL,
                    set_number INTEGER NOT NULL,
                    reps INTEGER,
                    weight REAL,
                    rest_time INTEGER,
                    notes TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    FOREIGN KEY(session_id) REFERENCES workout_sessions(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id)
                );""",
            [
                "id",
                "session_id",
                "exercise_id",
                "set_number",
                "reps",
                "weight",
                "rest_time",
                "notes",
                "created_at",
                "updated_at",
            ],
        ),
    }

    _INDEXES = [
        "CREATE INDEX IF NOT EXISTS idx_sessions_user_date ON workout_sessions (user_id, date);",
        "CREATE INDEX IF NOT EXISTS idx_sets_session ON workout_sets (session_id, set_number);",
        "CREATE INDEX IF NOT EXISTS idx_sets_exercise ON workout_sets (exercise_id);",
        "CREATE INDEX IF NOT EXISTS idx_exercises_category ON exercises (category_id);",
    ]

    CATEGORIES = [
        (
            "strength",
            "Strength",
            "Strength training exercises including weightlifting and resistance training",
        ),
        ("cardio", "Cardio", "Cardiovascular exercises for endurance and heart health"),
        ("stretching", "Stretching", "Flexibility and mobility exercises"),
        ("plyometrics", "Plyometrics", "Explosive power and jumping exercises"),
        (
            "powerlifting",
            "Powerlifting",
            "Powerlifting focused exercises (squat, bench, deadlift variations)",
        ),
        (
            "olympic-weightlifting",
            "Olympic Weightlifting",
            "Olympic lifting movements (snatch, clean & jerk, etc.)",
        ),
        (
            "strongman",
            "Strongman",
            "Strongman training exercises with specialized equipment",
        ),
    ]

    def __init__(self, db_path: str = "fitness.db") -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._ensure_indexes()
        self._import_categories()
        self._import_exercise_data()

    @property
    def db_path(self) -> str:
        return self._db_path

    @contextmanager
    def _connection(self):
        try:
            connection = sqlite3.connect(self._db_path)
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        try:
            connection.execute("PRAGMA foreign_keys = ON;")
            yield connection
            connection.commit()
        except sqlite3.Error as e:
            connection.rollback()
            raise StoreError(str(e)) from e
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            conn.execute("PRAGMA foreign_keys=off;")
            # keep references in other tables pointing at the rebuilt name
            conn.execute("PRAGMA legacy_alter_table=on;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            conn.execute("PRAGMA legacy_alter_table=off;")
            conn.execute("PRAGMA foreign_keys=on;")

    def _ensure_indexes(self) -> None:
        with self._connection() as conn:
            for sql in self._INDEXES:
                conn.execute(sql)

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

        logger.info("Rebuilding table %s for new columns", table)
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col == "theme":
                        return "'dark'"
                    if col == "weight_unit":
                        return "'kg'"
                    if col in ("email_verified",):
                        return "0"
                    if col == "set_number":
                        return "1"
                    if col in (
                        "primary_muscles",
                        "secondary_muscles",
                        "instructions",
                        "images",
                    ):
                        return "'[]'"
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

    def _import_categories(self) -> None:
        with self._connection() as conn:
            for cid, name, description in self.CATEGORIES:
                conn.execute(
                    "INSERT OR IGNORE INTO exercise_categories (id, name, description) VALUES (?, ?, ?);",
                    (cid, name, description),
                )

    @staticmethod
    def map_category(category: Optional[str]) -> str:
        """Map a dataset category label to a category id."""
        mapping = {
            "strength": "strength",
            "cardio": "cardio",
            "stretching": "stretching",
            "plyometrics": "plyometrics",
            "powerlifting": "powerlifting",
            "olympic weightlifting": "olympic-weightlifting",
            "strongman": "strongman",
        }
        return mapping.get((category or "").lower(), "strength")

    def _import_exercise_data(self, path: str = EXERCISE_DATA_PATH) -> None:
        if not os.path.exists(path):
            return
        with self._connection() as conn:
            count = conn.execute("SELECT COUNT(*) FROM exercises;").fetchone()[0]
        if count:
            return
        with open(path, encoding="utf-8") as f:
            records = json.load(f)
        imported = self.import_exercises(records)
        logger.info("Seeded %d exercises from %s", imported, path)

    def import_exercises(self, records: Iterable[dict]) -> int:
        """Insert or replace exercises given in the bundled dataset format."""
        now = DateTools.now_iso()
        count = 0
        with self._connection() as conn:
            for ex in records:
                conn.execute(
                    "INSERT INTO exercises (id, name, category_id, force, level, mechanic, equipment, "
                    "primary_muscles, secondary_muscles, instructions, images, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(id) DO UPDATE SET name=excluded.name, category_id=excluded.category_id, "
                    "force=excluded.force, level=excluded.level, mechanic=excluded.mechanic, "
                    "equipment=excluded.equipment, primary_muscles=excluded.primary_muscles, "
                    "secondary_muscles=excluded.secondary_muscles, instructions=excluded.instructions, "
                    "images=excluded.images, updated_at=excluded.updated_at;",
                    (
                        ex["id"],
                        ex["name"],
                        self.map_category(ex.get("category")),
                        ex.get("force"),
                        ex.get("level"),
                        ex.get("mechanic"),
                        ex.get("equipment"),
                        json.dumps(ex.get("primaryMuscles") or []),
                        json.dumps(ex.get("secondaryMuscles") or []),
                        json.dumps(ex.get("instructions") or []),
                        json.dumps(ex.get("images") or []),
                        now,
                        now,
                    ),
                )
                count += 1
        return count

    def check_integrity(self) -> bool:
        with self._connection() as conn:
            row = conn.execute("PRAGMA integrity_check;").fetchone()
        return bool(row) and row[0] == "ok"


def _row_dict(columns: List[str], row: Tuple) -> Dict[str, Any]:
    return dict(zip(columns, row))


def _validate_date(value: str, name: str = "date") -> str:
    if not DateTools.is_iso_date(value):
        raise ValidationError(f"{name} must be in YYYY-MM-DD format")
    return value


def _validate_set_values(
    reps: Optional[int],
    weight: Optional[float],
    rest_time: Optional[int] = None,
    set_number: Optional[int] = None,
) -> None:
    if reps is not None and reps < 0:
        raise ValidationError("reps must be non-negative")
    if weight is not None and weight < 0:
        raise ValidationError("weight must be non-negative")
    if rest_time is not None and rest_time < 0:
        raise ValidationError("rest_time must be non-negative")
    if set_number is not None and set_number < 1:
        raise ValidationError("set_number must be positive")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def execute_count(self, query: str, params: Tuple = ()) -> int:
        """Run ``query`` and return the number of affected rows."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.rowcount

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()


class UserRepository(BaseRepository):
    """Repository for users and their linked OAuth accounts."""

    COLUMNS = [
        "id",
        "email",
        "username",
        "name",
        "image",
        "email_verified",
        "theme",
        "weight_unit",
        "created_at",
        "updated_at",
    ]
    THEMES = {"light", "dark"}
    WEIGHT_UNITS = {"kg", "lbs"}

    def _to_dict(self, row: Tuple) -> dict:
        data = _row_dict(self.COLUMNS, row)
        data["email_verified"] = bool(data["email_verified"])
        return data

    def create(
        self,
        email: str,
        username: str | None = None,
        name: str | None = None,
        image: str | None = None,
        email_verified: bool = False,
        theme: str = "dark",
        weight_unit: str = "kg",
        user_id: str | None = None,
    ) -> str:
        if not email:
            raise ValidationError("email is required")
        if theme not in self.THEMES:
            raise ValidationError("theme must be 'light' or 'dark'")
        if weight_unit not in self.WEIGHT_UNITS:
            raise ValidationError("weight_unit must be 'kg' or 'lbs'")
        uid = user_id or uuid.uuid4().hex
        now = DateTools.now_iso()
        self.execute(
            "INSERT INTO users (id, email, username, name, image, email_verified, theme, weight_unit, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
            (
                uid,
                email,
                username,
                name,
                image,
                int(email_verified),
                theme,
                weight_unit,
                now,
                now,
            ),
        )
        return uid

    def fetch_detail(self, user_id: str) -> dict:
        rows = self.fetch_all(
            f"SELECT {', '.join(self.COLUMNS)} FROM users WHERE id = ?;", (user_id,)
        )
        if not rows:
            raise NotFoundError("user not found")
        return self._to_dict(rows[0])

    def fetch_by_email(self, email: str) -> Optional[dict]:
        rows = self.fetch_all(
            f"SELECT {', '.join(self.COLUMNS)} FROM users WHERE email = ?;", (email,)
        )
        return self._to_dict(rows[0]) if rows else None

    def count(self) -> int:
        return int(self.fetch_all("SELECT COUNT(*) FROM users;")[0][0])

    def update_preferences(
        self,
        user_id: str,
        theme: str | None = None,
        weight_unit: str | None = None,
    ) -> dict:
        self.fetch_detail(user_id)
        if theme is not None and theme not in self.THEMES:
            raise ValidationError("theme must be 'light' or 'dark'")
        if weight_unit is not None and weight_unit not in self.WEIGHT_UNITS:
            raise ValidationError("weight_unit must be 'kg' or 'lbs'")
        self.execute(
            "UPDATE users SET theme = COALESCE(?, theme), weight_unit = COALESCE(?, weight_unit), "
            "updated_at = ? WHERE id = ?;",
            (theme, weight_unit, DateTools.now_iso(), user_id),
        )
        return self.fetch_detail(user_id)

    def delete(self, user_id: str) -> None:
        if not self.execute_count("DELETE FROM users WHERE id = ?;", (user_id,)):
            raise NotFoundError("user not found")

    def upsert_oauth(
        self,
        provider: str,
        account_id: str,
        email: str,
        name: str | None = None,
        image: str | None = None,
        email_verified: bool = False,
        access_token: str | None = None,
        refresh_token: str | None = None,
        scope: str | None = None,
        expires_at: str | None = None,
    ) -> str:
        """Return the user linked to an OAuth identity, creating it if needed.

        An existing account link wins; otherwise a user with the same email
        is linked; otherwise a new user is created.
        """
        rows = self.fetch_all(
            "SELECT user_id FROM accounts WHERE provider = ? AND account_id = ?;",
            (provider, account_id),
        )
        now = DateTools.now_iso()
        if rows:
            user_id = rows[0][0]
        else:
            existing = self.fetch_by_email(email)
            if existing is not None:
                user_id = existing["id"]
            else:
                user_id = self.create(
                    email, name=name, image=image, email_verified=email_verified
                )
        self.execute(
            "UPDATE users SET name = COALESCE(?, name), image = COALESCE(?, image), "
            "email_verified = MAX(email_verified, ?), updated_at = ? WHERE id = ?;",
            (name, image, int(email_verified), now, user_id),
        )
        self.execute(
            "INSERT INTO accounts (user_id, provider, account_id, access_token, refresh_token, scope, expires_at, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(provider, account_id) DO UPDATE SET access_token=excluded.access_token, "
            "refresh_token=COALESCE(excluded.refresh_token, accounts.refresh_token), "
            "scope=excluded.scope, expires_at=excluded.expires_at, updated_at=excluded.updated_at;",
            (
                user_id,
                provider,
                account_id,
                access_token,
                refresh_token,
                scope,
                expires_at,
                now,
                now,
            ),
        )
        return user_id

    def fetch_accounts(self, user_id: str) -> List[Tuple[str, str]]:
        return self.fetch_all(
            "SELECT provider, account_id FROM accounts WHERE user_id = ? ORDER BY id;",
            (user_id,),
        )

    def stats(self, user_id: str) -> dict:
        self.fetch_detail(user_id)
        rows = self.fetch_all(
            "SELECT COUNT(DISTINCT s.id), COUNT(ws.id), COUNT(DISTINCT ws.exercise_id), "
            "COALESCE(SUM(COALESCE(ws.weight, 0) * COALESCE(ws.reps, 0)), 0), "
            "MAX(s.date), MIN(s.date) "
            "FROM workout_sessions s LEFT JOIN workout_sets ws ON ws.session_id = s.id "
            "WHERE s.user_id = ?;",
            (user_id,),
        )
        sessions, sets, exercises, volume, last, first = rows[0]
        return {
            "total_workouts": int(sessions),
            "total_sets": int(sets),
            "unique_exercises": int(exercises),
            "total_volume": float(volume),
            "last_workout_date": last,
            "first_workout_date": first,
        }


class WorkoutSessionRepository(BaseRepository):
    """Repository for workout session operations used by scripts."""

    def create(
        self,
        user_id: str,
        date: str | None = None,
        name: str | None = None,
        notes: str | None = None,
        start_time: str | None = None,
        end_time: str | None = None,
    ) -> int:
        date = _validate_date(date or datetime.date.today().isoformat())
        now = DateTools.now_iso()
        return self.execute(
            "INSERT INTO workout_sessions (user_id, name, date, start_time, end_time, notes, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?);",
            (user_id, name, date, start_time or now, end_time, notes, now, now),
        )

    def fetch_for_user(
        self, user_id: str
    ) -> List[Tuple[int, str, Optional[str], Optional[str], Optional[str], Optional[str]]]:
        return self.fetch_all(
            "SELECT id, date, name, start_time, end_time, notes FROM workout_sessions "
            "WHERE user_id = ? ORDER BY date, start_time, id;",
            (user_id,),
        )

    def count_for_user(self, user_id: str) -> int:
        rows = self.fetch_all(
            "SELECT COUNT(*) FROM workout_sessions WHERE user_id = ?;", (user_id,)
        )
        return int(rows[0][0])


class WorkoutSetRepository(BaseRepository):
    """Repository for workout set operations used by scripts."""

    def add(
        self,
        session_id: int,
        exercise_id: str,
        set_number: int,
        reps: Optional[int],
        weight: Optional[float] = None,
        rest_time: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> int:
        _validate_set_values(reps, weight, rest_time, set_number)
        now = DateTools.now_iso()
        return self.execute(
            "INSERT INTO workout_sets (session_id, exercise_id, set_number, reps, weight, rest_time, notes, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);",
            (session_id, exercise_id, set_number, reps, weight, rest_time, notes, now, now),
        )

    def fetch_for_session(
        self, session_id: int
    ) -> List[Tuple[str, str, int, Optional[int], Optional[float], Optional[int], Optional[str]]]:
        return self.fetch_all(
            "SELECT ws.exercise_id, COALESCE(e.name, ws.exercise_id), ws.set_number, ws.reps, ws.weight, "
            "ws.rest_time, ws.notes "
            "FROM workout_sets ws LEFT JOIN exercises e ON ws.exercise_id = e.id "
            "WHERE ws.session_id = ? ORDER BY ws.set_number, ws.created_at, ws.id;",
            (session_id,),
        )

    def export_session_csv(self, session_id: int) -> str:
        rows = self.fetch_for_session(session_id)
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(
            ["Exercise ID", "Exercise", "Set", "Reps", "Weight", "Rest Time", "Volume", "Notes"]
        )
        for ex_id, ex_name, number, reps, weight, rest, notes in rows:
            writer.writerow(
                [
                    ex_id,
                    ex_name,
                    number,
                    reps if reps is not None else "",
                    weight if weight is not None else "",
                    rest if rest is not None else "",
                    MathTools.set_volume(weight, reps),
                    notes or "",
                ]
            )
        return output.getvalue()

    def export_session_json(self, session_id: int) -> str:
        rows = self.fetch_for_session(session_id)
        data = [
            {
                "exercise_id": ex_id,
                "exercise": ex_name,
                "set_number": number,
                "reps": reps,
                "weight": weight,
                "rest_time": rest,
                "volume": MathTools.set_volume(weight, reps),
                "notes": notes,
            }
            for ex_id, ex_name, number, reps, weight, rest, notes in rows
        ]
        return json.dumps(data)


class AsyncDatabase(Database):
    """Provides asynchronous connection management.

    ``open`` keeps one connection for the lifetime of the hosting process;
    without it every call opens and closes its own connection.
    """

    def __init__(self, db_path: str = "fitness.db") -> None:
        super().__init__(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def open(self) -> None:
        if self._conn is not None:
            return
        try:
            self._conn = await aiosqlite.connect(self._db_path)
            await self._conn.execute("PRAGMA foreign_keys = ON;")
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @asynccontextmanager
    async def _async_connection(self):
        if self._conn is not None:
            # One transaction at a time on the shared connection.
            async with self._lock:
                try:
                    yield self._conn
                    await self._conn.commit()
                except sqlite3.Error as e:
                    await self._conn.rollback()
                    raise StoreError(str(e)) from e
                except BaseException:
                    await self._conn.rollback()
                    raise
            return
        try:
            conn = await aiosqlite.connect(self._db_path)
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        try:
            await conn.execute("PRAGMA foreign_keys = ON;")
            yield conn
            await conn.commit()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.lastrowid

    async def execute_count(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return [tuple(r) for r in rows]


class AsyncExerciseRepository(AsyncBaseRepository):
    """Async repository for the exercise library."""

    COLUMNS = [
        "id",
        "name",
        "category_id",
        "force",
        "level",
        "mechanic",
        "equipment",
        "primary_muscles",
        "secondary_muscles",
        "instructions",
        "images",
        "category_name",
    ]
    _SELECT = (
        "SELECT e.id, e.name, e.category_id, e.force, e.level, e.mechanic, e.equipment, "
        "e.primary_muscles, e.secondary_muscles, e.instructions, e.images, ec.name "
        "FROM exercises e JOIN exercise_categories ec ON e.category_id = ec.id"
    )

    def _to_dict(self, row: Tuple) -> dict:
        data = _row_dict(self.COLUMNS, row)
        for key in ("primary_muscles", "secondary_muscles", "instructions", "images"):
            data[key] = json.loads(data[key] or "[]")
        return data

    async def fetch_detail(self, exercise_id: str) -> dict:
        rows = await self.fetch_all(f"{self._SELECT} WHERE e.id = ?;", (exercise_id,))
        if not rows:
            raise NotFoundError("exercise not found")
        return self._to_dict(rows[0])

    async def search(
        self,
        query: str | None = None,
        category_id: str | None = None,
        equipment: str | None = None,
        muscle_group: str | None = None,
        level: str | None = None,
        force: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[dict], int]:
        conditions: list[str] = []
        params: list[str | int] = []
        if query:
            term = f"%{query}%"
            conditions.append(
                "(e.name LIKE ? OR e.primary_muscles LIKE ? OR e.secondary_muscles LIKE ?)"
            )
            params.extend([term, term, term])
        if category_id:
            conditions.append("e.category_id = ?")
            params.append(category_id)
        if equipment:
            conditions.append("e.equipment = ?")
            params.append(equipment)
        if level:
            conditions.append("e.level = ?")
            params.append(level)
        if force:
            conditions.append("e.force = ?")
            params.append(force)
        if muscle_group:
            conditions.append(
                "(EXISTS (SELECT 1 FROM json_each(e.primary_muscles) WHERE json_each.value = ?) "
                "OR EXISTS (SELECT 1 FROM json_each(e.secondary_muscles) WHERE json_each.value = ?))"
            )
            params.extend([muscle_group, muscle_group])
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        total_rows = await self.fetch_all(
            "SELECT COUNT(*) FROM exercises e JOIN exercise_categories ec ON e.category_id = ec.id"
            + where
            + ";",
            tuple(params),
        )
        rows = await self.fetch_all(
            f"{self._SELECT}{where} ORDER BY e.name LIMIT ? OFFSET ?;",
            tuple(params + [limit, offset]),
        )
        return [self._to_dict(r) for r in rows], int(total_rows[0][0])

    async def fetch_equipment_types(self) -> List[str]:
        rows = await self.fetch_all(
            "SELECT DISTINCT equipment FROM exercises "
            "WHERE equipment IS NOT NULL AND equipment != '' ORDER BY equipment;"
        )
        return [r[0] for r in rows]

    async def fetch_muscle_groups(self) -> List[str]:
        rows = await self.fetch_all(
            "SELECT DISTINCT json_each.value AS muscle FROM exercises, json_each(exercises.primary_muscles) "
            "WHERE json_each.value IS NOT NULL "
            "UNION "
            "SELECT DISTINCT json_each.value AS muscle FROM exercises, json_each(exercises.secondary_muscles) "
            "WHERE json_each.value IS NOT NULL "
            "ORDER BY muscle;"
        )
        return [r[0] for r in rows]

    async def fetch_categories(self) -> List[dict]:
        rows = await self.fetch_all(
            "SELECT ec.id, ec.name, ec.description, COUNT(e.id) FROM exercise_categories ec "
            "LEFT JOIN exercises e ON ec.id = e.category_id "
            "GROUP BY ec.id, ec.name, ec.description ORDER BY ec.name;"
        )
        return [
            {"id": cid, "name": name, "description": desc, "exercise_count": int(count)}
            for cid, name, desc, count in rows
        ]

    async def fetch_for_user(self, user_id: str) -> List[dict]:
        """Exercises the user has logged at least one set for."""
        rows = await self.fetch_all(
            "SELECT DISTINCT e.id, e.name, ec.name FROM exercises e "
            "JOIN workout_sets ws ON e.id = ws.exercise_id "
            "JOIN workout_sessions s ON ws.session_id = s.id "
            "LEFT JOIN exercise_categories ec ON e.category_id = ec.id "
            "WHERE s.user_id = ? ORDER BY e.name, e.id;",
            (user_id,),
        )
        return [{"id": eid, "name": name, "category_name": cat} for eid, name, cat in rows]


class AsyncWorkoutSessionRepository(AsyncBaseRepository):
    """Async repository for workout session operations."""

    COLUMNS = [
        "id",
        "user_id",
        "name",
        "date",
        "start_time",
        "end_time",
        "notes",
        "created_at",
        "updated_at",
    ]
    UPDATABLE = ("name", "date", "notes", "start_time", "end_time")

    async def create(
        self,
        user_id: str,
        date: str | None = None,
        name: str | None = None,
        notes: str | None = None,
        start_time: str | None = None,
        end_time: str | None = None,
    ) -> int:
        if not user_id:
            raise ValidationError("user_id is required")
        date = _validate_date(date or datetime.date.today().isoformat())
        now = DateTools.now_iso()
        return await self.execute(
            "INSERT INTO workout_sessions (user_id, name, date, start_time, end_time, notes, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?);",
            (user_id, name, date, start_time or now, end_time, notes, now, now),
        )

    async def fetch_detail(self, session_id: int) -> dict:
        rows = await self.fetch_all(
            f"SELECT {', '.join(self.COLUMNS)} FROM workout_sessions WHERE id = ?;",
            (session_id,),
        )
        if not rows:
            raise NotFoundError("session not found")
        return _row_dict(self.COLUMNS, rows[0])

    async def update(self, session_id: int, **fields: Any) -> dict:
        current = await self.fetch_detail(session_id)
        unknown = set(fields) - set(self.UPDATABLE)
        if unknown:
            raise ValidationError(f"cannot update fields: {', '.join(sorted(unknown))}")
        if not fields:
            return current
        if "end_time" in fields and fields["end_time"] is None and current["end_time"]:
            raise ValidationError("end_time cannot be cleared once the session is complete")
        if "date" in fields:
            _validate_date(fields["date"])
        assignments = ", ".join(f"{key} = ?" for key in fields)
        params = list(fields.values()) + [DateTools.now_iso(), session_id]
        await self.execute(
            f"UPDATE workout_sessions SET {assignments}, updated_at = ? WHERE id = ?;",
            tuple(params),
        )
        return await self.fetch_detail(session_id)

    async def complete(self, session_id: int, timestamp: str | None = None) -> dict:
        now = DateTools.now_iso()
        changed = await self.execute_count(
            "UPDATE workout_sessions SET end_time = ?, updated_at = ? WHERE id = ? AND end_time IS NULL;",
            (timestamp or now, now, session_id),
        )
        if not changed:
            raise NotFoundError("Session not found or already completed")
        return await self.fetch_detail(session_id)

    async def delete(self, session_id: int) -> None:
        if not await self.execute_count(
            "DELETE FROM workout_sessions WHERE id = ?;", (session_id,)
        ):
            raise NotFoundError("session not found")

    async def fetch_for_user(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> Tuple[List[dict], int]:
        total = await self.fetch_all(
            "SELECT COUNT(*) FROM workout_sessions WHERE user_id = ?;", (user_id,)
        )
        rows = await self.fetch_all(
            f"SELECT {', '.join(self.COLUMNS)} FROM workout_sessions WHERE user_id = ? "
            "ORDER BY date DESC, start_time DESC, id DESC LIMIT ? OFFSET ?;",
            (user_id, limit, offset),
        )
        return [_row_dict(self.COLUMNS, r) for r in rows], int(total[0][0])

    async def fetch_in_range(
        self, user_id: str, start_date: str, end_date: str
    ) -> List[Tuple[int, str, Optional[str], str, Optional[str], Optional[str], Optional[str]]]:
        """Sessions dated within ``[start_date, end_date]`` in chronological order."""
        return await self.fetch_all(
            "SELECT id, user_id, name, date, start_time, end_time, notes FROM workout_sessions "
            "WHERE user_id = ? AND date BETWEEN ? AND ? "
            "ORDER BY date, start_time, id;",
            (user_id, start_date, end_date),
        )

    async def fetch_dates(self, user_id: str) -> List[str]:
        """Dates of every session of the user, oldest first."""
        rows = await self.fetch_all(
            "SELECT date FROM workout_sessions WHERE user_id = ? ORDER BY date, id;",
            (user_id,),
        )
        return [r[0] for r in rows]

    async def date_range(self, user_id: str) -> Optional[Dict[str, str]]:
        rows = await self.fetch_all(
            "SELECT MIN(date), MAX(date) FROM workout_sessions WHERE user_id = ?;",
            (user_id,),
        )
        earliest, latest = rows[0]
        if earliest is None:
            return None
        return {"earliest": earliest, "latest": latest}


class AsyncWorkoutSetRepository(AsyncBaseRepository):
    """Async repository for workout set operations."""

    COLUMNS = [
        "id",
        "session_id",
        "exercise_id",
        "set_number",
        "reps",
        "weight",
        "rest_time",
        "notes",
        "created_at",
        "updated_at",
        "exercise_name",
    ]
    UPDATABLE = ("exercise_id", "set_number", "reps", "weight", "rest_time", "notes")
    _SELECT = (
        "SELECT ws.id, ws.session_id, ws.exercise_id, ws.set_number, ws.reps, ws.weight, "
        "ws.rest_time, ws.notes, ws.created_at, ws.updated_at, e.name "
        "FROM workout_sets ws LEFT JOIN exercises e ON ws.exercise_id = e.id"
    )

    async def _ensure_refs(
        self, session_id: int | None, exercise_id: str | None
    ) -> None:
        if session_id is not None:
            rows = await self.fetch_all(
                "SELECT 1 FROM workout_sessions WHERE id = ?;", (session_id,)
            )
            if not rows:
                raise NotFoundError("session not found")
        if exercise_id is not None:
            rows = await self.fetch_all(
                "SELECT 1 FROM exercises WHERE id = ?;", (exercise_id,)
            )
            if not rows:
                raise NotFoundError("exercise not found")

    async def add(
        self,
        session_id: int,
        exercise_id: str,
        set_number: int,
        reps: Optional[int],
        weight: Optional[float] = None,
        rest_time: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> int:
        _validate_set_values(reps, weight, rest_time, set_number)
        await self._ensure_refs(session_id, exercise_id)
        now = DateTools.now_iso()
        return await self.execute(
            "INSERT INTO workout_sets (session_id, exercise_id, set_number, reps, weight, rest_time, notes, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);",
            (session_id, exercise_id, set_number, reps, weight, rest_time, notes, now, now),
        )

    async def fetch_detail(self, set_id: int) -> dict:
        rows = await self.fetch_all(f"{self._SELECT} WHERE ws.id = ?;", (set_id,))
        if not rows:
            raise NotFoundError("Workout set not found")
        return _row_dict(self.COLUMNS, rows[0])

    async def update(self, set_id: int, **fields: Any) -> dict:
        current = await self.fetch_detail(set_id)
        unknown = set(fields) - set(self.UPDATABLE)
        if unknown:
            raise ValidationError(f"cannot update fields: {', '.join(sorted(unknown))}")
        if not fields:
            return current
        _validate_set_values(
            fields.get("reps"),
            fields.get("weight"),
            fields.get("rest_time"),
            fields.get("set_number"),
        )
        if "set_number" in fields and fields["set_number"] is None:
            raise ValidationError("set_number must be positive")
        if "exercise_id" in fields:
            await self._ensure_refs(None, fields["exercise_id"])
        assignments = ", ".join(f"{key} = ?" for key in fields)
        params = list(fields.values()) + [DateTools.now_iso(), set_id]
        await self.execute(
            f"UPDATE workout_sets SET {assignments}, updated_at = ? WHERE id = ?;",
            tuple(params),
        )
        return await self.fetch_detail(set_id)

    async def remove(self, set_id: int) -> None:
        if not await self.execute_count("DELETE FROM workout_sets WHERE id = ?;", (set_id,)):
            raise NotFoundError("Workout set not found")

    async def fetch_for_session(self, session_id: int) -> List[dict]:
        rows = await self.fetch_all(
            f"{self._SELECT} WHERE ws.session_id = ? "
            "ORDER BY ws.set_number, ws.created_at, ws.id;",
            (session_id,),
        )
        return [_row_dict(self.COLUMNS, r) for r in rows]

    async def fetch_progress_rows(
        self,
        user_id: str,
        start_date: str,
        end_date: str,
        exercise_ids: Optional[List[str]] = None,
        limit: int = 1000,
    ) -> List[
        Tuple[int, int, str, int, Optional[float], Optional[int], str, str, str]
    ]:
        """Sets of a user within a date range joined with session date and exercise name.

        Rows are ``(id, session_id, exercise_id, set_number, weight, reps,
        created_at, exercise_name, date)`` ordered by date, exercise and set
        number.
        """
        query = (
            "SELECT ws.id, ws.session_id, ws.exercise_id, ws.set_number, ws.weight, ws.reps, "
            "ws.created_at, e.name, s.date "
            "FROM workout_sets ws "
            "JOIN exercises e ON ws.exercise_id = e.id "
            "JOIN workout_sessions s ON ws.session_id = s.id "
            "WHERE s.user_id = ? AND s.date >= ? AND s.date <= ?"
        )
        params: list[str | int] = [user_id, start_date, end_date]
        if exercise_ids:
            placeholders = ", ".join(["?" for _ in exercise_ids])
            query += f" AND ws.exercise_id IN ({placeholders})"
            params.extend(exercise_ids)
        query += " ORDER BY s.date ASC, ws.exercise_id, ws.set_number ASC, ws.id LIMIT ?;"
        params.append(limit)
        return await self.fetch_all(query, tuple(params))
