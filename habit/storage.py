from __future__ import annotations
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Protocol
from loguru import logger

from core.errors import PersistenceError
from .models import HabitState

MAX_CYCLE_HISTORY = 200

DEFAULT_SETTINGS: Dict[str, Any] = {
    "agent_interval_minutes": 12,
    "scroll_threshold_minutes": 15,
    "inactivity_threshold_minutes": 30,
    "demo_mode": False,
    "time_acceleration_factor": 1,
    "model_loaded": False,
    "onboarding_complete": False,
}


class HabitStore(Protocol):
    """Persistence collaborator used by the scoring engine and the orchestrator."""

    async def get_all_habits(self) -> List[HabitState]: ...

    async def get_habit(self, habit_id: str) -> HabitState | None: ...

    async def save_habit(self, habit: HabitState) -> None: ...

    async def append_cycle_result(self, result: Dict[str, Any]) -> None: ...

    async def get_recent_cycles(self, n: int = 10) -> List[Dict[str, Any]]: ...

    async def get_settings(self) -> Dict[str, Any]: ...

    async def update_settings(self, patch: Dict[str, Any]) -> Dict[str, Any]: ...

    async def set_last_context(self, context: Dict[str, Any]) -> None: ...


class SQLiteHabitStore:
    """SQLite-backed habit/cycle/settings store.

    Writes assume a single concurrent writer per record (no merge); the last
    save of a habit wins.
    """

    def __init__(self, db_path: str = "momentum_data.db", max_cycles: int = MAX_CYCLE_HISTORY):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.max_cycles = max_cycles
        self._conn: sqlite3.Connection | None = None
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    @contextmanager
    def _cursor(self):
        conn = self._get_conn()
        cur = conn.cursor()
        try:
            yield cur
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            cur.close()

    def _ensure_schema(self):
        with self._get_conn() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS habits (
                    id TEXT PRIMARY KEY,
                    state TEXT NOT NULL,
                    updated_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cycles (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT,
                    ts TEXT NOT NULL,
                    trigger TEXT,
                    payload TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_cycles_ts ON cycles(ts)")

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # --- Habits ---
    async def get_all_habits(self) -> List[HabitState]:
        with self._cursor() as cur:
            cur.execute("SELECT state FROM habits ORDER BY rowid")
            rows = cur.fetchall()
        return [HabitState.from_dict(json.loads(r["state"])) for r in rows]

    async def get_habit(self, habit_id: str) -> HabitState | None:
        with self._cursor() as cur:
            cur.execute("SELECT state FROM habits WHERE id=?", (habit_id,))
            r = cur.fetchone()
        if not r:
            return None
        return HabitState.from_dict(json.loads(r["state"]))

    async def save_habit(self, habit: HabitState) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO habits (id, state, updated_at) VALUES (?,?,?)
                ON CONFLICT(id) DO UPDATE SET state=excluded.state, updated_at=excluded.updated_at
                """,
                (habit.id, json.dumps(habit.to_dict()), datetime.now(timezone.utc).isoformat()),
            )

    async def seed_defaults(self, habits: Iterable[HabitState]) -> int:
        """Insert ``habits`` when the store is empty; returns how many were written."""
        with self._cursor() as cur:
            cur.execute("SELECT COUNT(*) AS n FROM habits")
            if cur.fetchone()["n"]:
                return 0
        count = 0
        for habit in habits:
            await self.save_habit(habit)
            count += 1
        logger.info(f"Seeded {count} default habits into {self.db_path}")
        return count

    # --- Cycles ---
    async def append_cycle_result(self, result: Dict[str, Any]) -> None:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO cycles (id, ts, trigger, payload) VALUES (?,?,?,?)",
                (result.get("id"), result.get("timestamp") or datetime.now(timezone.utc).isoformat(),
                 result.get("trigger"), json.dumps(result, default=str)),
            )
            cur.execute(
                "DELETE FROM cycles WHERE seq NOT IN (SELECT seq FROM cycles ORDER BY seq DESC LIMIT ?)",
                (self.max_cycles,),
            )

    async def get_recent_cycles(self, n: int = 10) -> List[Dict[str, Any]]:
        """Most recent ``n`` cycles, oldest first."""
        with self._cursor() as cur:
            cur.execute("SELECT payload FROM cycles ORDER BY seq DESC LIMIT ?", (n,))
            rows = cur.fetchall()
        return [json.loads(r["payload"]) for r in reversed(rows)]

    async def count_cycles(self) -> int:
        with self._cursor() as cur:
            cur.execute("SELECT COUNT(*) AS n FROM cycles")
            return int(cur.fetchone()["n"])

    # --- Settings / context ---
    def _get_kv(self, key: str) -> Any:
        with self._cursor() as cur:
            cur.execute("SELECT value FROM kv WHERE key=?", (key,))
            r = cur.fetchone()
        return json.loads(r["value"]) if r else None

    def _set_kv(self, key: str, value: Any):
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO kv (key, value) VALUES (?,?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, json.dumps(value, default=str)),
            )

    async def get_settings(self) -> Dict[str, Any]:
        stored = self._get_kv("settings") or {}
        return {**DEFAULT_SETTINGS, **stored}

    async def update_settings(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        settings = {**(await self.get_settings()), **patch}
        self._set_kv("settings", settings)
        return settings

    async def set_last_context(self, context: Dict[str, Any]) -> None:
        self._set_kv("last_context", context)

    async def get_last_context(self) -> Dict[str, Any] | None:
        return self._get_kv("last_context")
