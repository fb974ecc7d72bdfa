"""
Task Assistant — Task Lifecycle Manager.

Applies create / list / done / snooze to stored tasks. Task numbers typed by
users are positions in the live list of open tasks sorted by due time; they
are recomputed on every call, so a stale number can only miss, never hit a
different task than the one listed when it was recomputed.

This service never sends messages: it mutates state and returns the affected
records. Callers confirm to the user and write the audit log.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.data.models import STATUS_DONE

if TYPE_CHECKING:
    from src.core.task_extractor import TaskCandidate
    from src.data.db import TaskDB, UserDB
    from src.data.models import Task, User

logger = logging.getLogger(__name__)

DUE_FORMAT = "%d %b, %I:%M %p"     # 20 Oct, 06:00 PM
TIME_FORMAT = "%I:%M %p"


def resolve_index(tasks: list[Task], index: int) -> Task | None:
    """Map a 1-based task number onto the given (already sorted) open tasks."""
    if index < 1 or index > len(tasks):
        return None
    return tasks[index - 1]


def format_due(due_at: datetime, tz: ZoneInfo, fmt: str = DUE_FORMAT) -> str:
    return due_at.astimezone(tz).strftime(fmt)


def format_task(task: Task, index: int, tz: ZoneInfo, fmt: str = DUE_FORMAT) -> str:
    """One listing line: "2. Call mom — 20 Oct, 06:00 PM"."""
    return f"{index}. {task.title} — {format_due(task.due_at, tz, fmt)}"


class TaskService:
    """Task state operations for one store, shared by bot handlers and jobs."""

    def __init__(
        self, task_db: TaskDB, user_db: UserDB, default_timezone: str,
    ) -> None:
        self._task_db = task_db
        self._user_db = user_db
        self._default_tz = ZoneInfo(default_timezone)

    @property
    def task_db(self) -> TaskDB:
        return self._task_db

    @property
    def user_db(self) -> UserDB:
        return self._user_db

    # ------------------------------------------------------------------
    # Users and time
    # ------------------------------------------------------------------

    def upsert_user(self, telegram_user_id: int, chat_id: int) -> User:
        return self._user_db.upsert_user(telegram_user_id, chat_id)

    def user_tz(self, user: User) -> ZoneInfo:
        """The user's own timezone, or the default if unset/unknown."""
        if not user.timezone:
            return self._default_tz
        try:
            return ZoneInfo(user.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                "User %d has unknown timezone %r, using default",
                user.telegram_user_id, user.timezone,
            )
            return self._default_tz

    def local_now(self, user: User, now: datetime | None = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        return now.astimezone(self.user_tz(user))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_tasks(
        self, user: User, candidates: list[TaskCandidate],
        now: datetime | None = None,
    ) -> list[Task]:
        """Store one open task per candidate, in input order."""
        items = []
        for candidate in candidates:
            if candidate.due_at is None:
                raise ValueError(f"Task {candidate.title!r} has no due time")
            if not candidate.title.strip():
                raise ValueError("Task title must not be empty")
            items.append((candidate.title.strip(), candidate.due_at))
        if not items:
            return []
        return self._task_db.add_tasks(user.telegram_user_id, items, now=now)

    def list_open_tasks(self, user: User) -> list[Task]:
        return self._task_db.list_open(user.telegram_user_id)

    def indexed_open_tasks(self, user: User) -> list[tuple[int, Task]]:
        """Open tasks paired with the number a user would type for them."""
        return list(enumerate(self.list_open_tasks(user), start=1))

    def list_today_tasks(self, user: User, now: datetime | None = None) -> list[Task]:
        """Open tasks due on the user's current local calendar day."""
        today = self.local_now(user, now).date()
        tz = self.user_tz(user)
        return [
            task for task in self.list_open_tasks(user)
            if task.due_at.astimezone(tz).date() == today
        ]

    def mark_task_done(
        self, user: User, index: int, now: datetime | None = None,
    ) -> Task | None:
        """Close the index-th open task. None if there is no such task."""
        task = resolve_index(self.list_open_tasks(user), index)
        if task is None:
            logger.info("Done: user %d has no open task #%d", user.telegram_user_id, index)
            return None
        now = now or datetime.now(timezone.utc)
        if not self._task_db.mark_done(task.id, now=now):
            # Closed by a concurrent command between listing and update
            return None
        return replace(task, status=STATUS_DONE, completed_at=now)

    def snooze_task(
        self, user: User, index: int, target: timedelta | datetime,
        now: datetime | None = None,
    ) -> Task | None:
        """Move the index-th open task to now + target (or to target itself).

        Both reminder flags are cleared so the task can remind again.
        None if there is no such open task.
        """
        if isinstance(target, timedelta):
            new_due = (now or datetime.now(timezone.utc)) + target
        else:
            new_due = target
        if new_due.tzinfo is None:
            raise ValueError("Snooze target must be timezone-aware")

        task = resolve_index(self.list_open_tasks(user), index)
        if task is None or not task.is_open:
            logger.info("Snooze: user %d has no open task #%d", user.telegram_user_id, index)
            return None
        if not self._task_db.reschedule(task.id, new_due):
            return None
        return replace(
            task, due_at=new_due, pre_reminder_sent=False, due_reminder_sent=False,
        )
