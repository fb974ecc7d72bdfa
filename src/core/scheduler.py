"""
Task Assistant — Reminder & Digest Schedulers.

Reminder sweep: "reminder soon" shortly before a task is due, "time now"
once it is due. Digest sweep: one morning summary per user per local day.

Both sweeps are safe to run repeatedly and concurrently. Each dispatch is
its own unit: take a lease in dispatch_claims, send, set the durable flag,
release the lease. A failed send releases the lease and leaves the flag
unset, so the next sweep tries again; it never aborts the rest of the sweep.

This module is provider-agnostic: it depends on the NotificationPort
protocol, not on Telegram.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from src.config import settings
from src.core.task_service import TIME_FORMAT, format_due

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

    from src.core.task_service import TaskService
    from src.data.db import DispatchDB
    from src.data.models import Task, User
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """What one sweep did. ok is False only when the sweep could not start."""

    ok: bool = True
    sent: int = 0
    failed: int = 0
    skipped: int = 0


# ---------------------------------------------------------------------------
# Message texts
# ---------------------------------------------------------------------------


def format_reminder(task: Task, kind: str, tz: ZoneInfo) -> str:
    due = format_due(task.due_at, tz)
    if kind == "pre":
        return f"⏰ Reminder soon: {task.title} at {due}"
    return f"⏰ Time now: {task.title} ({due})"


def format_digest(tasks: list[tuple[int, Task]], tz: ZoneInfo) -> str:
    """Morning summary; `tasks` pairs each task with its /done number."""
    if not tasks:
        return "Good morning! You have no tasks for today. ✅"
    lines = [
        f"{index}. {task.title} — {format_due(task.due_at, tz, TIME_FORMAT)}"
        for index, task in tasks
    ]
    return "Good morning! Here's your plan for today:\n" + "\n".join(lines)


# ---------------------------------------------------------------------------
# Reminder sweep
# ---------------------------------------------------------------------------


async def run_reminder_sweep(
    service: TaskService,
    dispatch_db: DispatchDB,
    notifier: NotificationPort,
    now: datetime | None = None,
    pre_window: timedelta | None = None,
    lease_seconds: int | None = None,
) -> SweepResult:
    """Send pending pre- and due-reminders once each."""
    now = now or datetime.now(timezone.utc)
    if pre_window is None:
        pre_window = timedelta(minutes=settings.PRE_REMINDER_MINUTES)
    if lease_seconds is None:
        lease_seconds = settings.DISPATCH_LEASE_SECONDS

    result = SweepResult()
    try:
        pre_tasks = service.task_db.fetch_pre_reminder_candidates(now, pre_window)
        due_tasks = service.task_db.fetch_due_reminder_candidates(now)
    except Exception as exc:
        logger.error("Reminder sweep: failed to load candidates: %s", exc)
        result.ok = False
        return result

    users: dict[int, User | None] = {}
    batches = (("pre", pre_tasks), ("due", due_tasks))
    for kind, tasks in batches:
        for task in tasks:
            try:
                if task.user_id not in users:
                    users[task.user_id] = service.user_db.get_user(task.user_id)
                user = users[task.user_id]
                if user is None:
                    logger.warning("Task #%d belongs to unknown user %d", task.id, task.user_id)
                    result.failed += 1
                    continue
                sent = await _dispatch_reminder(
                    service, dispatch_db, notifier, task, user, kind, now, lease_seconds,
                )
                if sent:
                    result.sent += 1
                else:
                    result.skipped += 1
            except Exception as exc:
                logger.error("Failed to send %s reminder for task #%d: %s", kind, task.id, exc)
                result.failed += 1

    logger.info(
        "Reminder sweep done: %d sent, %d failed, %d skipped",
        result.sent, result.failed, result.skipped,
    )
    return result


async def _dispatch_reminder(
    service: TaskService,
    dispatch_db: DispatchDB,
    notifier: NotificationPort,
    task: Task,
    user: User,
    kind: str,
    now: datetime,
    lease_seconds: int,
) -> bool:
    """Send one reminder and set its flag. False if another sweep holds it."""
    entity = f"task:{task.id}"
    if not dispatch_db.claim(entity, kind, now, lease_seconds):
        logger.debug("Reminder %s for task #%d already in flight", kind, task.id)
        return False

    try:
        # Re-read under the lease: an earlier sweep may have finished meanwhile
        fresh = service.task_db.get_task(task.id)
        if (
            fresh is None
            or not fresh.is_open
            or fresh.due_at != task.due_at
            or getattr(fresh, f"{kind}_reminder_sent")
        ):
            dispatch_db.release(entity, kind)
            return False
        text = format_reminder(task, kind, service.user_tz(user))
        await notifier.send_message(user.chat_id, text)
    except Exception:
        dispatch_db.release(entity, kind)
        raise

    try:
        flagged = service.task_db.mark_reminder_sent(task.id, kind, task.due_at)
    finally:
        dispatch_db.release(entity, kind)

    if not flagged:
        logger.info("Task #%d changed while its %s reminder was sent", task.id, kind)
    service.task_db.log_event(
        task.id, user.chat_id, f"reminder_{kind}", {"due_at": task.due_at.isoformat()},
    )
    logger.info("%s reminder sent for task #%d", kind.capitalize(), task.id)
    return True


# ---------------------------------------------------------------------------
# Digest sweep
# ---------------------------------------------------------------------------


async def run_digest_sweep(
    service: TaskService,
    dispatch_db: DispatchDB,
    notifier: NotificationPort,
    now: datetime | None = None,
    digest_hour: int | None = None,
    lease_seconds: int | None = None,
) -> SweepResult:
    """Send each user at most one digest per local calendar day.

    A user is due once their local clock has reached digest_hour and their
    last digest was sent on an earlier local day. Users with no tasks still
    get (and use up) their digest.
    """
    now = now or datetime.now(timezone.utc)
    if digest_hour is None:
        digest_hour = settings.DIGEST_HOUR
    if lease_seconds is None:
        lease_seconds = settings.DISPATCH_LEASE_SECONDS

    result = SweepResult()
    try:
        users = service.user_db.list_users()
    except Exception as exc:
        logger.error("Digest sweep: failed to load users: %s", exc)
        result.ok = False
        return result

    for user in users:
        try:
            sent = await _send_digest(
                service, dispatch_db, notifier, user, now, digest_hour, lease_seconds,
            )
            if sent:
                result.sent += 1
            else:
                result.skipped += 1
        except Exception as exc:
            logger.error(
                "Failed to send digest to %d: %s", user.telegram_user_id, exc,
            )
            result.failed += 1

    logger.info(
        "Digest sweep done: %d sent, %d failed, %d skipped",
        result.sent, result.failed, result.skipped,
    )
    return result


def needs_digest(user: User, local_now: datetime, digest_hour: int) -> bool:
    """True if the user's digest for local_now's day is due and not yet sent."""
    if local_now.hour < digest_hour:
        return False
    if user.last_digest_at is None:
        return True
    last_local = user.last_digest_at.astimezone(local_now.tzinfo).date()
    return last_local < local_now.date()


async def _send_digest(
    service: TaskService,
    dispatch_db: DispatchDB,
    notifier: NotificationPort,
    user: User,
    now: datetime,
    digest_hour: int,
    lease_seconds: int,
) -> bool:
    local_now = service.local_now(user, now)
    if not needs_digest(user, local_now, digest_hour):
        return False

    entity = f"user:{user.telegram_user_id}"
    kind = f"digest:{local_now.date().isoformat()}"
    if not dispatch_db.claim(entity, kind, now, lease_seconds):
        logger.debug("Digest for user %d already in flight", user.telegram_user_id)
        return False

    try:
        fresh = service.user_db.get_user(user.telegram_user_id)
        if fresh is None or not needs_digest(fresh, local_now, digest_hour):
            dispatch_db.release(entity, kind)
            return False
        user = fresh
        today_ids = {t.id for t in service.list_today_tasks(user, now)}
        tasks = [(i, t) for i, t in service.indexed_open_tasks(user) if t.id in today_ids]
        text = format_digest(tasks, service.user_tz(user))
        await notifier.send_message(user.chat_id, text)
    except Exception:
        dispatch_db.release(entity, kind)
        raise

    try:
        recorded = service.user_db.record_digest(
            user.telegram_user_id, now, previous=user.last_digest_at,
        )
    finally:
        dispatch_db.release(entity, kind)

    if not recorded:
        logger.warning("Digest for user %d was recorded by another sweep", user.telegram_user_id)
    logger.info("Digest sent to user %d (%d tasks)", user.telegram_user_id, len(tasks))
    return True
