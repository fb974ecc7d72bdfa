"""
Task Assistant — Data Models.

Users and their tasks persist in SQLite so reminders survive bot restarts.
All instants are timezone-aware; the database stores them in UTC.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

STATUS_OPEN = "open"
STATUS_DONE = "done"


@dataclass
class User:
    """A chat user. Created on their first message, never deleted."""

    telegram_user_id: int
    chat_id: int
    timezone: str | None = None            # IANA name, None → settings.TIMEZONE
    last_digest_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class Task:
    """A single to-do item with a concrete due instant.

    The 1-based number a user types (/done 2) is not stored here; it is
    the task's position among the user's open tasks sorted by due_at.
    """

    id: int
    user_id: int
    title: str
    due_at: datetime
    status: str = STATUS_OPEN
    pre_reminder_sent: bool = False
    due_reminder_sent: bool = False
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status == STATUS_OPEN


@dataclass
class TaskEvent:
    """Audit log entry for something that happened to a task."""

    id: int
    task_id: int
    chat_id: int
    event_type: str       # "task_created" | "task_done" | "task_snoozed" | "reminder_pre" | "reminder_due"
    payload: dict
    created_at: datetime
