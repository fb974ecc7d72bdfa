"""
Task Assistant — Task Database.

Tasks, users and dispatch claims persist in SQLite across restarts.
Every instant is written as a UTC ISO-8601 string with second precision,
so string comparison in SQL matches chronological order.

The scheduler's at-most-once guarantee rests on three things here:
reminder flags set with a conditional UPDATE, last_digest_at set with a
compare-and-set, and short leases in dispatch_claims that keep two
overlapping sweeps from sending the same notification.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

from src.data.models import STATUS_DONE, STATUS_OPEN, Task, TaskEvent, User

logger = logging.getLogger(__name__)

REMINDER_KINDS = ("pre", "due")


def _to_db(dt: datetime) -> str:
    """Serialize an aware datetime as a fixed-width UTC string."""
    if dt.tzinfo is None:
        raise ValueError(f"Naive datetime not allowed: {dt!r}")
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


def _from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _resolve_path(db_path: str | None) -> str:
    if db_path is None:
        from src.config import settings
        db_path = settings.DATABASE_PATH
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return db_path


class TaskDB:
    """SQLite-backed storage for tasks and their audit log."""

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = _resolve_path(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the tasks and task_events tables, and migrate schema."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id           INTEGER NOT NULL,
                    title             TEXT    NOT NULL,
                    due_at            TEXT    NOT NULL,
                    status            TEXT    NOT NULL DEFAULT 'open',
                    pre_reminder_sent INTEGER NOT NULL DEFAULT 0,
                    due_reminder_sent INTEGER NOT NULL DEFAULT 0,
                    created_at        TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_events (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id    INTEGER NOT NULL,
                    chat_id    INTEGER NOT NULL,
                    event_type TEXT    NOT NULL,
                    payload    TEXT    NOT NULL DEFAULT '{}',
                    created_at TEXT    NOT NULL
                )
            """)
            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(tasks)").fetchall()
            }
            if "completed_at" not in existing_cols:
                conn.execute("ALTER TABLE tasks ADD COLUMN completed_at TEXT")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_status_due ON tasks (status, due_at)"
            )
        logger.debug("Tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            due_at=_from_db(row["due_at"]),
            status=row["status"],
            pre_reminder_sent=bool(row["pre_reminder_sent"]),
            due_reminder_sent=bool(row["due_reminder_sent"]),
            created_at=_from_db(row["created_at"]),
            completed_at=_from_db(row["completed_at"]),
        )

    def add_tasks(
        self, user_id: int, items: list[tuple[str, datetime]],
        now: datetime | None = None,
    ) -> list[Task]:
        """Insert one open task per (title, due_at) pair in a single transaction."""
        created_at = _to_db(now or _utcnow())
        ids: list[int] = []
        with self._connect() as conn:
            for title, due_at in items:
                cursor = conn.execute(
                    """
                    INSERT INTO tasks
                        (user_id, title, due_at, status,
                         pre_reminder_sent, due_reminder_sent, created_at)
                    VALUES (?, ?, ?, ?, 0, 0, ?)
                    """,
                    (user_id, title, _to_db(due_at), STATUS_OPEN, created_at),
                )
                ids.append(cursor.lastrowid)

        tasks = [
            Task(
                id=task_id,
                user_id=user_id,
                title=title,
                due_at=_from_db(_to_db(due_at)),
                created_at=_from_db(created_at),
            )
            for task_id, (title, due_at) in zip(ids, items)
        ]
        for task in tasks:
            logger.info("Task added: #%d '%s' due %s", task.id, task.title, task.due_at)
        return tasks

    def add_task(
        self, user_id: int, title: str, due_at: datetime,
        now: datetime | None = None,
    ) -> Task:
        return self.add_tasks(user_id, [(title, due_at)], now=now)[0]

    def get_task(self, task_id: int) -> Task | None:
        """Fetch a single task by ID."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE id = ?", (task_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_open(self, user_id: int) -> list[Task]:
        """Open tasks of a user, soonest first (ties broken by creation order)."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE user_id = ? AND status = ? ORDER BY due_at, id",
                (user_id, STATUS_OPEN),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def mark_done(self, task_id: int, now: datetime | None = None) -> bool:
        """Close an open task. Returns False if it was already done or missing."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE tasks SET status = ?, completed_at = ? WHERE id = ? AND status = ?",
                (STATUS_DONE, _to_db(now or _utcnow()), task_id, STATUS_OPEN),
            )
        updated = cursor.rowcount > 0
        if updated:
            logger.info("Task #%d marked done", task_id)
        return updated

    def reschedule(self, task_id: int, due_at: datetime) -> bool:
        """Move an open task's due_at and re-arm both reminders."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE tasks
                   SET due_at = ?, pre_reminder_sent = 0, due_reminder_sent = 0
                 WHERE id = ? AND status = ?
                """,
                (_to_db(due_at), task_id, STATUS_OPEN),
            )
        updated = cursor.rowcount > 0
        if updated:
            logger.info("Task #%d rescheduled to %s", task_id, due_at)
        return updated

    # ------------------------------------------------------------------
    # Scheduler query shapes
    # ------------------------------------------------------------------

    def fetch_pre_reminder_candidates(
        self, now: datetime, window: timedelta,
    ) -> list[Task]:
        """Open tasks due within (now, now + window] whose pre-reminder is unsent."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM tasks
                 WHERE status = ? AND pre_reminder_sent = 0 AND due_reminder_sent = 0
                   AND due_at > ? AND due_at <= ?
                 ORDER BY due_at, id
                """,
                (STATUS_OPEN, _to_db(now), _to_db(now + window)),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def fetch_due_reminder_candidates(self, now: datetime) -> list[Task]:
        """Open tasks whose due_at has passed and whose due-reminder is unsent."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM tasks
                 WHERE status = ? AND due_reminder_sent = 0 AND due_at <= ?
                 ORDER BY due_at, id
                """,
                (STATUS_OPEN, _to_db(now)),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def mark_reminder_sent(self, task_id: int, kind: str, due_at: datetime) -> bool:
        """Set the reminder flag for `kind`, only if the task still has `due_at`.

        A snooze that lands between send and flag-set changes due_at, so the
        stale flag is not written and the re-armed reminder still fires.
        """
        if kind not in REMINDER_KINDS:
            raise ValueError(f"Unknown reminder kind: {kind!r}")
        column = f"{kind}_reminder_sent"
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE tasks SET {column} = 1 WHERE id = ? AND due_at = ? AND status = ?",
                (task_id, _to_db(due_at), STATUS_OPEN),
            )
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def log_event(
        self, task_id: int, chat_id: int, event_type: str,
        payload: dict | None = None,
    ) -> TaskEvent:
        """Append an audit entry for a task."""
        payload = payload or {}
        now = _to_db(_utcnow())
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO task_events (task_id, chat_id, event_type, payload, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (task_id, chat_id, event_type, json.dumps(payload), now),
            )
            event_id = cursor.lastrowid
        logger.debug("Task #%d event logged: %s", task_id, event_type)
        return TaskEvent(
            id=event_id,
            task_id=task_id,
            chat_id=chat_id,
            event_type=event_type,
            payload=payload,
            created_at=_from_db(now),
        )

    def list_events(self, task_id: int) -> list[TaskEvent]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM task_events WHERE task_id = ? ORDER BY id",
                (task_id,),
            ).fetchall()
        return [
            TaskEvent(
                id=r["id"],
                task_id=r["task_id"],
                chat_id=r["chat_id"],
                event_type=r["event_type"],
                payload=json.loads(r["payload"]),
                created_at=_from_db(r["created_at"]),
            )
            for r in rows
        ]


class UserDB:
    """SQLite-backed storage for chat users."""

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = _resolve_path(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    telegram_user_id INTEGER PRIMARY KEY,
                    chat_id          INTEGER NOT NULL,
                    timezone         TEXT,
                    last_digest_at   TEXT,
                    created_at       TEXT NOT NULL
                )
            """)
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            telegram_user_id=row["telegram_user_id"],
            chat_id=row["chat_id"],
            timezone=row["timezone"],
            last_digest_at=_from_db(row["last_digest_at"]),
            created_at=_from_db(row["created_at"]),
        )

    def upsert_user(self, telegram_user_id: int, chat_id: int) -> User:
        """Register a user on first contact, or refresh their chat id."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users (telegram_user_id, chat_id, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT (telegram_user_id) DO UPDATE SET chat_id = excluded.chat_id
                """,
                (telegram_user_id, chat_id, _to_db(_utcnow())),
            )
            row = conn.execute(
                "SELECT * FROM users WHERE telegram_user_id = ?",
                (telegram_user_id,),
            ).fetchone()
        return self._row_to_user(row)

    def get_user(self, telegram_user_id: int) -> User | None:
        """Fetch a user by Telegram user ID."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE telegram_user_id = ?",
                (telegram_user_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> list[User]:
        """Return all registered users."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM users ORDER BY created_at"
            ).fetchall()
        return [self._row_to_user(r) for r in rows]

    def set_timezone(self, telegram_user_id: int, tz_name: str | None) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET timezone = ? WHERE telegram_user_id = ?",
                (tz_name, telegram_user_id),
            )
        logger.info("Timezone set for user %d: %s", telegram_user_id, tz_name)

    def record_digest(
        self, telegram_user_id: int, sent_at: datetime,
        previous: datetime | None,
    ) -> bool:
        """Compare-and-set last_digest_at. False if another sweep got there first."""
        prev = _to_db(previous) if previous is not None else None
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE users SET last_digest_at = ?
                 WHERE telegram_user_id = ? AND last_digest_at IS ?
                """,
                (_to_db(sent_at), telegram_user_id, prev),
            )
        return cursor.rowcount > 0


class DispatchDB:
    """Short-lived leases marking a notification as in flight.

    A lease is keyed by (entity, kind), e.g. ("task:7", "pre") or
    ("user:42", "digest:2026-10-19"). It is released after the send
    either way; a lease left behind by a crash expires after lease_seconds.
    """

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = _resolve_path(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS dispatch_claims (
                    entity     TEXT NOT NULL,
                    kind       TEXT NOT NULL,
                    claimed_at TEXT NOT NULL,
                    PRIMARY KEY (entity, kind)
                )
            """)
        logger.debug("Dispatch claims table initialized at %s", self._db_path)

    def claim(
        self, entity: str, kind: str, now: datetime, lease_seconds: int,
    ) -> bool:
        """Take the lease for (entity, kind). False if someone else holds a live one."""
        stale_before = _to_db(now - timedelta(seconds=lease_seconds))
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO dispatch_claims (entity, kind, claimed_at) VALUES (?, ?, ?)",
                (entity, kind, _to_db(now)),
            )
            if cursor.rowcount > 0:
                return True
            cursor = conn.execute(
                """
                UPDATE dispatch_claims SET claimed_at = ?
                 WHERE entity = ? AND kind = ? AND claimed_at <= ?
                """,
                (_to_db(now), entity, kind, stale_before),
            )
            if cursor.rowcount > 0:
                logger.warning("Took over expired dispatch lease %s/%s", entity, kind)
                return True
        return False

    def release(self, entity: str, kind: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM dispatch_claims WHERE entity = ? AND kind = ?",
                (entity, kind),
            )
