"""SQLite store for fieldcron.

4 tables:
    users, crons, integrations, cron_runs
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from loguru import logger

from fieldcron.core.cron.types import (
    CronCreate,
    CronStatus,
    CronTask,
    Integration,
    IntegrationStatus,
    TaskRunResult,
)
from fieldcron.core.errors import PersistenceError

_CRON_JSON_COLS = ("types_of_work_order", "requested_wo_ids")


class SQLiteStore:
    """SQLite: single source of truth for crons and integrations."""

    def __init__(self, db_path: str = "data/fieldcron.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"SQLiteStore initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            self._migrate(conn)
            conn.commit()

    def _migrate(self, conn) -> None:
        """Add columns missing in existing databases."""
        cron_cols = {row[1] for row in conn.execute("PRAGMA table_info(crons)").fetchall()}
        for col, ddl in [
            ("timezone", "TEXT"),
            ("last_run_at", "TIMESTAMP"),
        ]:
            if col not in cron_cols:
                conn.execute(f"ALTER TABLE crons ADD COLUMN {col} {ddl}")

    # ════════════════════════════════════════════════════════════
    # USERS
    # ════════════════════════════════════════════════════════════

    def get_or_create_user(
        self, user_id: str, name: str | None = None, is_admin: bool = False
    ) -> str:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT user_id FROM users WHERE user_id = ?", (user_id,)
            ).fetchone()
            if row:
                return user_id
            conn.execute(
                "INSERT INTO users (user_id, name, is_admin) VALUES (?, ?, ?)",
                (user_id, name, int(is_admin)),
            )
            conn.commit()
            logger.info(f"New user created: {user_id}")
        return user_id

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT user_id, name, is_admin, created_at FROM users WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if not row:
            return None
        user = dict(row)
        user["is_admin"] = bool(user["is_admin"])
        return user

    def user_exists(self, user_id: str) -> bool:
        return self.get_user(user_id) is not None

    def is_admin(self, user_id: str) -> bool:
        user = self.get_user(user_id)
        return bool(user and user["is_admin"])

    def set_admin(self, user_id: str, is_admin: bool = True) -> None:
        with self._get_conn() as conn:
            conn.execute(
                "UPDATE users SET is_admin = ? WHERE user_id = ?",
                (int(is_admin), user_id),
            )
            conn.commit()

    def list_users(self) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT user_id, name, is_admin, created_at FROM users ORDER BY created_at"
            ).fetchall()
        return [{**dict(r), "is_admin": bool(r["is_admin"])} for r in rows]

    def delete_user(self, user_id: str) -> bool:
        """Delete a user, soft-deleting their crons. Returns True if user existed."""
        with self._get_conn() as conn:
            conn.execute(
                """UPDATE crons SET deleted = 1, updated_at = CURRENT_TIMESTAMP
                   WHERE user_id = ? AND deleted = 0""",
                (user_id,),
            )
            conn.execute("DELETE FROM integrations WHERE user_id = ?", (user_id,))
            cursor = conn.execute("DELETE FROM users WHERE user_id = ?", (user_id,))
            conn.commit()
        return cursor.rowcount > 0

    # ════════════════════════════════════════════════════════════
    # CRONS
    # ════════════════════════════════════════════════════════════

    def add_cron(self, user_id: str, data: CronCreate) -> CronTask:
        """Insert a new cron with empty run state."""
        self.get_or_create_user(user_id)
        with self._get_conn() as conn:
            cursor = conn.execute(
                """INSERT INTO crons
                   (user_id, center_zip, driving_radius, cron_start_at, cron_end_at,
                    working_window_start_at, working_window_end_at, timezone,
                    types_of_work_order, requested_wo_ids, total_requested, status)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, '[]', 0, ?)""",
                (
                    user_id,
                    data.center_zip,
                    data.driving_radius,
                    data.cron_start_at.isoformat(),
                    data.cron_end_at.isoformat(),
                    data.working_window_start_at.isoformat(),
                    data.working_window_end_at.isoformat(),
                    data.timezone,
                    json.dumps(data.types_of_work_order),
                    data.status.value,
                ),
            )
            conn.commit()
            cron_id = cursor.lastrowid
        return self.get_cron(cron_id)

    def get_cron(self, cron_id: int, include_deleted: bool = False) -> CronTask | None:
        query = "SELECT * FROM crons WHERE cron_id = ?"
        if not include_deleted:
            query += " AND deleted = 0"
        with self._get_conn() as conn:
            row = conn.execute(query, (cron_id,)).fetchone()
        return _row_to_cron(row) if row else None

    def list_crons(self, user_id: str | None = None) -> list[CronTask]:
        """Non-deleted crons, optionally for one user."""
        with self._get_conn() as conn:
            if user_id:
                rows = conn.execute(
                    "SELECT * FROM crons WHERE user_id = ? AND deleted = 0 ORDER BY cron_id",
                    (user_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM crons WHERE deleted = 0 ORDER BY cron_id"
                ).fetchall()
        return [_row_to_cron(r) for r in rows]

    def load_active_crons(self) -> list[CronTask]:
        """Crons the dispatcher should consider. Raises PersistenceError."""
        try:
            with self._get_conn() as conn:
                rows = conn.execute(
                    "SELECT * FROM crons WHERE status = ? AND deleted = 0 ORDER BY cron_id",
                    (CronStatus.ACTIVE.value,),
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to load active crons: {e}") from e
        return [_row_to_cron(r) for r in rows]

    def update_cron(self, cron_id: int, changes: dict[str, Any]) -> CronTask | None:
        """Overwrite only the given definition fields."""
        if not changes:
            return self.get_cron(cron_id)
        assignments = []
        values: list[Any] = []
        for col, value in changes.items():
            assignments.append(f"{col} = ?")
            values.append(_to_column(col, value))
        with self._get_conn() as conn:
            conn.execute(
                f"""UPDATE crons SET {', '.join(assignments)}, updated_at = CURRENT_TIMESTAMP
                    WHERE cron_id = ? AND deleted = 0""",
                (*values, cron_id),
            )
            conn.commit()
        return self.get_cron(cron_id)

    def soft_delete_cron(self, cron_id: int) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute(
                """UPDATE crons SET deleted = 1, updated_at = CURRENT_TIMESTAMP
                   WHERE cron_id = ? AND deleted = 0""",
                (cron_id,),
            )
            conn.commit()
        return cursor.rowcount > 0

    def persist_run_state(self, task: CronTask) -> CronTask:
        """Atomically store ``task``'s requested ids.

        Ids already stored are kept even if missing from ``task``, so the set
        never shrinks. ``total_requested`` is rewritten as the set size.
        Raises PersistenceError.
        """
        try:
            with self._get_conn() as conn:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT requested_wo_ids FROM crons WHERE cron_id = ?",
                    (task.cron_id,),
                ).fetchone()
                if row is None:
                    raise PersistenceError(f"Cron {task.cron_id} vanished before persist")
                stored = json.loads(row["requested_wo_ids"] or "[]")
                merged = list(dict.fromkeys([*stored, *task.requested_wo_ids]))
                conn.execute(
                    """UPDATE crons
                       SET requested_wo_ids = ?, total_requested = ?,
                           last_run_at = CURRENT_TIMESTAMP
                       WHERE cron_id = ?""",
                    (json.dumps(merged), len(merged), task.cron_id),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to persist cron {task.cron_id}: {e}") from e
        return task.model_copy(
            update={"requested_wo_ids": merged, "total_requested": len(merged)}
        )

    # ── Cron run log ─────────────────────────────────────────

    def log_cron_run(self, result: TaskRunResult) -> None:
        """Record a dispatcher run."""
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO cron_runs
                   (cron_id, state, fetched, submitted, already_taken, failed,
                    error, duration_ms)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    result.cron_id,
                    result.state.value,
                    result.fetched,
                    json.dumps(result.submitted),
                    json.dumps(result.already_taken),
                    json.dumps(result.failed),
                    result.error or result.reason,
                    result.duration_ms,
                ),
            )
            conn.commit()

    def get_cron_runs(self, cron_id: int, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent runs first."""
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM cron_runs
                   WHERE cron_id = ? ORDER BY id DESC LIMIT ?""",
                (cron_id, limit),
            ).fetchall()
        runs = []
        for r in rows:
            run = dict(r)
            for col in ("submitted", "already_taken", "failed"):
                run[col] = json.loads(run[col] or "[]")
            runs.append(run)
        return runs

    # ════════════════════════════════════════════════════════════
    # INTEGRATIONS
    # ════════════════════════════════════════════════════════════

    def get_integration(self, user_id: str) -> Integration | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM integrations WHERE user_id = ?", (user_id,)
            ).fetchone()
        if not row:
            return None
        data = dict(row)
        data.pop("updated_at", None)
        return Integration(**data)

    def save_integration(self, integration: Integration) -> None:
        """Insert or replace the user's single integration record."""
        self.get_or_create_user(integration.user_id)
        last = integration.last_connected_at
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO integrations
                   (user_id, fn_user_id, fn_username, access_token, refresh_token,
                    integration_status, last_connected_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       fn_user_id = excluded.fn_user_id,
                       fn_username = excluded.fn_username,
                       access_token = excluded.access_token,
                       refresh_token = excluded.refresh_token,
                       integration_status = excluded.integration_status,
                       last_connected_at = excluded.last_connected_at,
                       updated_at = CURRENT_TIMESTAMP""",
                (
                    integration.user_id,
                    integration.fn_user_id,
                    integration.fn_username,
                    integration.access_token,
                    integration.refresh_token,
                    integration.integration_status.value,
                    last.isoformat() if last else None,
                ),
            )
            conn.commit()

    def set_integration_status(self, user_id: str, status: IntegrationStatus) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """UPDATE integrations
                   SET integration_status = ?, updated_at = CURRENT_TIMESTAMP
                   WHERE user_id = ?""",
                (status.value, user_id),
            )
            conn.commit()
        logger.info(f"Integration status for {user_id}: {status.value}")


def _to_column(col: str, value: Any) -> Any:
    """Python value → SQLite column value."""
    if col in _CRON_JSON_COLS:
        return json.dumps(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if isinstance(value, CronStatus):
        return value.value
    return value


def _row_to_cron(row: sqlite3.Row) -> CronTask:
    data = dict(row)
    for col in _CRON_JSON_COLS:
        data[col] = json.loads(data[col] or "[]")
    data["deleted"] = bool(data["deleted"])
    return CronTask(**data)


_SCHEMA = """
-- 1. Users (owners of crons and integrations)
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    name TEXT,
    is_admin INTEGER DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- 2. Crons (definition + run state)
CREATE TABLE IF NOT EXISTS crons (
    cron_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    center_zip TEXT NOT NULL,
    driving_radius REAL NOT NULL,
    cron_start_at TEXT NOT NULL,
    cron_end_at TEXT NOT NULL,
    working_window_start_at TEXT NOT NULL,
    working_window_end_at TEXT NOT NULL,
    timezone TEXT,
    types_of_work_order TEXT NOT NULL DEFAULT '[]',
    requested_wo_ids TEXT NOT NULL DEFAULT '[]',
    total_requested INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'active',
    deleted INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    last_run_at TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_crons_user ON crons(user_id);
CREATE INDEX IF NOT EXISTS idx_crons_active ON crons(status, deleted);

-- 3. Integrations (one Field Nation link per user)
CREATE TABLE IF NOT EXISTS integrations (
    user_id TEXT PRIMARY KEY,
    fn_user_id INTEGER,
    fn_username TEXT,
    access_token TEXT,
    refresh_token TEXT,
    integration_status TEXT NOT NULL DEFAULT 'Not Connected',
    last_connected_at TEXT,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- 4. Cron run log
CREATE TABLE IF NOT EXISTS cron_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cron_id INTEGER NOT NULL,
    executed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    state TEXT NOT NULL,
    fetched INTEGER DEFAULT 0,
    submitted TEXT DEFAULT '[]',
    already_taken TEXT DEFAULT '[]',
    failed TEXT DEFAULT '[]',
    error TEXT,
    duration_ms INTEGER DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_cron_runs_cron ON cron_runs(cron_id, executed_at DESC);
"""
