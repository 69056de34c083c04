"""SQLite persistence for sessions, devices, completions and badges.

At-most-once completion and badge awards are enforced by the schema
(``UNIQUE(user_id, task_id)`` and ``PRIMARY KEY(user_id, badge_code)``), so a
duplicate insert is reported as "nothing inserted" rather than raising.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

from .devices import Device
from .errors import StorageError
from .vfs import FilesystemState

LOGGER = logging.getLogger(__name__)

SCHEMA_VERSION = 1


@dataclass(frozen=True)
class CompletionRecord:
    user_id: str
    task_id: str
    scenario_id: str
    score_awarded: int
    time_ms: Optional[int]
    completed_at: str


@dataclass(frozen=True)
class BadgeAward:
    user_id: str
    badge_code: str
    points_awarded: int
    awarded_at: str


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: str
    total_score: int
    tasks_completed: int


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Store:
    """Database access layer shared by all console sessions."""

    def __init__(self, db_path: Union[Path, str]) -> None:
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_path)
        else:
            target = db_path
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(target, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._guard():
            self._apply_migrations()

    @contextmanager
    def _guard(self) -> Iterator[sqlite3.Connection]:
        """Serialize connection use and translate driver errors."""
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as exc:
                LOGGER.error("Database error: %s", exc)
                raise StorageError(str(exc)) from exc

    def _apply_migrations(self) -> None:
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema version {current} is newer than supported {SCHEMA_VERSION}."
            )
        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")

    def _migrate_to_v1(self) -> None:
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS vfs_state (
                    user_id TEXT NOT NULL,
                    scenario_id TEXT NOT NULL,
                    vfs_data TEXT NOT NULL,
                    cwd TEXT NOT NULL DEFAULT '/home/user',
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, scenario_id)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS devices (
                    user_id TEXT NOT NULL,
                    scenario_id TEXT NOT NULL,
                    device_name TEXT NOT NULL,
                    device_type TEXT NOT NULL,
                    size TEXT NOT NULL,
                    partition_name TEXT NOT NULL,
                    mounted INTEGER NOT NULL DEFAULT 0,
                    mount_point TEXT,
                    read_only INTEGER NOT NULL DEFAULT 0,
                    device_data TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    attached_at REAL NOT NULL,
                    PRIMARY KEY (user_id, scenario_id, device_name)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS task_completions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    scenario_id TEXT NOT NULL,
                    score_awarded INTEGER NOT NULL,
                    time_ms INTEGER,
                    completed_at TEXT NOT NULL,
                    UNIQUE (user_id, task_id)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS badge_awards (
                    user_id TEXT NOT NULL,
                    badge_code TEXT NOT NULL,
                    points_awarded INTEGER NOT NULL,
                    awarded_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, badge_code)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS hint_usage (
                    user_id TEXT NOT NULL,
                    scenario_id TEXT NOT NULL,
                    hints_used INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (user_id, scenario_id)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS unlocked_hints (
                    user_id TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    unlocked_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, task_id)
                )
                """)

    # ---------- Session state ----------

    def load_filesystem(self, user_id: str, scenario_id: str) -> Optional[FilesystemState]:
        with self._guard() as conn:
            row = conn.execute(
                "SELECT vfs_data, cwd FROM vfs_state WHERE user_id = ? AND scenario_id = ?",
                (user_id, scenario_id),
            ).fetchone()
        if row is None:
            return None
        return FilesystemState.from_dict({"vfs": json.loads(row["vfs_data"]), "cwd": row["cwd"]})

    def save_filesystem(self, user_id: str, scenario_id: str, fs: FilesystemState) -> None:
        data = fs.to_dict()
        with self._guard() as conn, conn:
            conn.execute(
                """
                INSERT INTO vfs_state (user_id, scenario_id, vfs_data, cwd, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, scenario_id) DO UPDATE SET
                    vfs_data = excluded.vfs_data,
                    cwd = excluded.cwd,
                    updated_at = excluded.updated_at
                """,
                (user_id, scenario_id, json.dumps(data["vfs"]), data["cwd"], _now()),
            )

    def load_devices(self, user_id: str, scenario_id: str) -> List[Device]:
        with self._guard() as conn:
            rows = conn.execute(
                """
                SELECT * FROM devices
                WHERE user_id = ? AND scenario_id = ?
                ORDER BY position ASC
                """,
                (user_id, scenario_id),
            ).fetchall()
        return [
            Device(
                name=str(row["device_name"]),
                type=str(row["device_type"]),
                size=str(row["size"]),
                partition_name=str(row["partition_name"]),
                mounted=bool(row["mounted"]),
                mount_point=row["mount_point"],
                read_only=bool(row["read_only"]),
                content=json.loads(row["device_data"]),
                attached_at=float(row["attached_at"]),
            )
            for row in rows
        ]

    def save_devices(self, user_id: str, scenario_id: str, devices: List[Device]) -> None:
        """Replace the session's device records with ``devices`` in one transaction."""
        with self._guard() as conn, conn:
            conn.execute(
                "DELETE FROM devices WHERE user_id = ? AND scenario_id = ?",
                (user_id, scenario_id),
            )
            conn.executemany(
                """
                INSERT INTO devices (
                    user_id, scenario_id, device_name, device_type, size,
                    partition_name, mounted, mount_point, read_only,
                    device_data, position, attached_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        user_id,
                        scenario_id,
                        device.name,
                        device.type,
                        device.size,
                        device.partition_name,
                        int(device.mounted),
                        device.mount_point,
                        int(device.read_only),
                        json.dumps(device.content),
                        position,
                        device.attached_at,
                    )
                    for position, device in enumerate(devices)
                ],
            )

    def reset_session(self, user_id: str, scenario_id: str) -> None:
        """Forget the session tree and every device of (user, scenario)."""
        with self._guard() as conn, conn:
            conn.execute(
                "DELETE FROM vfs_state WHERE user_id = ? AND scenario_id = ?",
                (user_id, scenario_id),
            )
            conn.execute(
                "DELETE FROM devices WHERE user_id = ? AND scenario_id = ?",
                (user_id, scenario_id),
            )

    # ---------- Completions and badges ----------

    def insert_completion(
        self,
        user_id: str,
        task_id: str,
        scenario_id: str,
        score_awarded: int,
        time_ms: Optional[int] = None,
    ) -> bool:
        """Record a completion. Returns False if (user, task) was already recorded."""
        with self._guard() as conn, conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO task_completions
                    (user_id, task_id, scenario_id, score_awarded, time_ms, completed_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, task_id, scenario_id, score_awarded, time_ms, _now()),
            )
        return cursor.rowcount > 0

    def has_completion(self, user_id: str, task_id: str) -> bool:
        with self._guard() as conn:
            row = conn.execute(
                "SELECT 1 FROM task_completions WHERE user_id = ? AND task_id = ?",
                (user_id, task_id),
            ).fetchone()
        return row is not None

    def completions(
        self, user_id: str, scenario_id: Optional[str] = None
    ) -> List[CompletionRecord]:
        query = "SELECT * FROM task_completions WHERE user_id = ?"
        params: Tuple = (user_id,)
        if scenario_id is not None:
            query += " AND scenario_id = ?"
            params = (user_id, scenario_id)
        with self._guard() as conn:
            rows = conn.execute(query + " ORDER BY id ASC", params).fetchall()
        return [
            CompletionRecord(
                user_id=str(row["user_id"]),
                task_id=str(row["task_id"]),
                scenario_id=str(row["scenario_id"]),
                score_awarded=int(row["score_awarded"]),
                time_ms=int(row["time_ms"]) if row["time_ms"] is not None else None,
                completed_at=str(row["completed_at"]),
            )
            for row in rows
        ]

    def award_badge(self, user_id: str, badge_code: str, points: int) -> bool:
        """Insert a badge award. Returns False if the user already holds it."""
        with self._guard() as conn, conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO badge_awards (user_id, badge_code, points_awarded, awarded_at)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, badge_code, points, _now()),
            )
        return cursor.rowcount > 0

    def badges(self, user_id: str) -> List[BadgeAward]:
        with self._guard() as conn:
            rows = conn.execute(
                "SELECT * FROM badge_awards WHERE user_id = ? ORDER BY awarded_at ASC",
                (user_id,),
            ).fetchall()
        return [
            BadgeAward(
                user_id=str(row["user_id"]),
                badge_code=str(row["badge_code"]),
                points_awarded=int(row["points_awarded"]),
                awarded_at=str(row["awarded_at"]),
            )
            for row in rows
        ]

    def total_score(self, user_id: str) -> int:
        with self._guard() as conn:
            row = conn.execute(
                """
                SELECT
                    COALESCE((SELECT SUM(score_awarded) FROM task_completions WHERE user_id = ?), 0)
                  + COALESCE((SELECT SUM(points_awarded) FROM badge_awards WHERE user_id = ?), 0)
                    AS total
                """,
                (user_id, user_id),
            ).fetchone()
        return int(row["total"])

    def leaderboard(self, limit: int = 100) -> List[LeaderboardEntry]:
        """Users ordered by total score, then tasks completed, then id."""
        with self._guard() as conn:
            rows = conn.execute(
                """
                WITH users AS (
                    SELECT user_id FROM task_completions
                    UNION
                    SELECT user_id FROM badge_awards
                )
                SELECT
                    u.user_id AS user_id,
                    COALESCE((SELECT SUM(c.score_awarded) FROM task_completions c
                              WHERE c.user_id = u.user_id), 0)
                  + COALESCE((SELECT SUM(b.points_awarded) FROM badge_awards b
                              WHERE b.user_id = u.user_id), 0) AS total_score,
                    (SELECT COUNT(*) FROM task_completions c
                     WHERE c.user_id = u.user_id) AS tasks_completed
                FROM users u
                ORDER BY total_score DESC, tasks_completed DESC, u.user_id ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            LeaderboardEntry(
                user_id=str(row["user_id"]),
                total_score=int(row["total_score"]),
                tasks_completed=int(row["tasks_completed"]),
            )
            for row in rows
        ]

    # ---------- Hints ----------

    def increment_hint_usage(self, user_id: str, scenario_id: str) -> int:
        with self._guard() as conn, conn:
            conn.execute(
                """
                INSERT INTO hint_usage (user_id, scenario_id, hints_used) VALUES (?, ?, 1)
                ON CONFLICT(user_id, scenario_id) DO UPDATE SET hints_used = hints_used + 1
                """,
                (user_id, scenario_id),
            )
            row = conn.execute(
                "SELECT hints_used FROM hint_usage WHERE user_id = ? AND scenario_id = ?",
                (user_id, scenario_id),
            ).fetchone()
        return int(row["hints_used"])

    def hint_usage(self, user_id: str, scenario_id: str) -> int:
        with self._guard() as conn:
            row = conn.execute(
                "SELECT hints_used FROM hint_usage WHERE user_id = ? AND scenario_id = ?",
                (user_id, scenario_id),
            ).fetchone()
        return int(row["hints_used"]) if row is not None else 0

    def unlock_hint(self, user_id: str, task_id: str) -> None:
        with self._guard() as conn, conn:
            conn.execute(
                "INSERT OR IGNORE INTO unlocked_hints (user_id, task_id, unlocked_at) VALUES (?, ?, ?)",
                (user_id, task_id, _now()),
            )

    def is_hint_unlocked(self, user_id: str, task_id: str) -> bool:
        with self._guard() as conn:
            row = conn.execute(
                "SELECT 1 FROM unlocked_hints WHERE user_id = ? AND task_id = ?",
                (user_id, task_id),
            ).fetchone()
        return row is not None

    def delete_user_progress(self, user_id: str) -> None:
        """Remove completions, badges and hint data of a user."""
        with self._guard() as conn, conn:
            for table in ("task_completions", "badge_awards", "hint_usage", "unlocked_hints"):
                conn.execute(f"DELETE FROM {table} WHERE user_id = ?", (user_id,))

    def close(self) -> None:
        with self._lock:
            self._conn.close()
