"""
Task Assistant — Message Turn Orchestration.

One inbound chat message in, zero or more outbound messages out:

    slash command      → task operation (/add, /next, /today, /list, /done, /snooze)
    natural intent     → same operations ("what's next", "mark task 2 done")
    anything else      → task extraction → new tasks

Every parse miss becomes a usage hint, never an error. Unexpected failures
are logged and answered with a generic apology; they never escape a turn.

UI-agnostic: replies go through the NotificationPort, so the Telegram
handlers, tests and any future transport share this code.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from src.core.intent_parser import (
    Command,
    NaturalIntent,
    interpret_natural_intent,
    parse_command,
    parse_index,
    parse_snooze_target,
)
from src.core.task_extractor import POLICY_END_OF_DAY, extract_tasks_from_text
from src.core.task_service import format_due, format_task

if TYPE_CHECKING:
    from src.core.task_service import TaskService
    from src.data.models import Task, User
    from src.ports.notification_port import NotificationPort
    from src.ports.transcription_port import TranscriptionPort

logger = logging.getLogger(__name__)

NEXT_LIMIT = 3

WELCOME_TEXT = (
    "Hi! I'm your task assistant.\n\n"
    "• Send me a text or voice message to add tasks, e.g. "
    "'buy milk; call mom tomorrow 6pm'\n"
    "• I'll remind you shortly before and when each task is due\n"
    "• Every morning you get a short plan for the day\n\n"
    "Type /help for all commands."
)
HELP_TEXT = (
    "Commands:\n"
    "/add <task> [time] — add task(s), e.g. /add pay rent tomorrow 10am\n"
    "/next — the next 3 tasks\n"
    "/today — tasks due today\n"
    "/list — all open tasks\n"
    "/done <taskNumber> — mark a task done\n"
    "/snooze <taskNumber> <duration> — e.g. /snooze 3 2h or /snooze 3 tomorrow 9am\n\n"
    "Task numbers are the ones shown in /list."
)
EMPTY_MESSAGE_TEXT = "Send me a task or use /add to create one."
ADD_USAGE_TEXT = "Usage: /add <task> [time]. Example: /add call mom tomorrow 6pm"
NO_TASKS_DETECTED_TEXT = "I couldn't detect any tasks. Try rephrasing or use /add."
DONE_USAGE_TEXT = "Please specify which task number to mark done. Example: /done 2"
SNOOZE_USAGE_TEXT = "Usage: /snooze <taskNumber> <duration>. Example: /snooze 3 2h"
NOT_FOUND_TEXT = "I couldn't find that task number."
NOTHING_PENDING_TEXT = "You have nothing pending. Enjoy your free time! ✅"
NO_TASKS_TEXT = "No tasks yet. Add one with /add or send me a note."
NO_TASKS_TODAY_TEXT = "Nothing due today. Add one with /add or send me a note."
TRANSCRIPTION_FAILED_TEXT = "I couldn't transcribe that voice note. Try again?"
GENERIC_FAILURE_TEXT = "Sorry, something went wrong. Please try again."
CLARIFY_TEXT = "When is \"{title}\" due? Send it again with a time, e.g. '{title} tomorrow 6pm'."


class TaskAssistant:
    """Handles one chat turn at a time; holds no per-user state."""

    def __init__(
        self,
        service: TaskService,
        notifier: NotificationPort,
        transcribe: TranscriptionPort | None = None,
        undated_policy: str = POLICY_END_OF_DAY,
    ) -> None:
        self._service = service
        self._notifier = notifier
        self._transcribe = transcribe
        self._undated_policy = undated_policy

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_incoming_message(
        self,
        telegram_user_id: int,
        chat_id: int,
        text: str | None,
        now: datetime | None = None,
    ) -> None:
        """Interpret one message and reply. Never raises."""
        now = now or datetime.now(timezone.utc)
        try:
            user = self._service.upsert_user(telegram_user_id, chat_id)
            text = (text or "").strip()
            if not text:
                await self._reply(user, EMPTY_MESSAGE_TEXT)
                return

            command = parse_command(text)
            if command is not None:
                await self._handle_command(user, command, now)
                return
            if text.startswith("/"):
                # Unknown verb: treat the words as task text
                await self._handle_task_creation(user, text.lstrip("/"), now)
                return

            intent = interpret_natural_intent(text)
            if intent is not None:
                await self._handle_intent(user, intent, now)
                return

            await self._handle_task_creation(user, text, now)
        except Exception as exc:
            logger.error("Message turn failed for user %s: %s", telegram_user_id, exc, exc_info=True)
            await self._reply_failure(chat_id)

    async def handle_voice_message(
        self,
        telegram_user_id: int,
        chat_id: int,
        audio_path: str,
        now: datetime | None = None,
    ) -> None:
        """Transcribe a voice note, echo it, then handle it like typed text."""
        transcribe = self._transcribe
        if transcribe is None:
            from src.core.transcriber import transcribe_audio
            transcribe = transcribe_audio

        try:
            text = await transcribe(audio_path)
        except Exception as exc:
            logger.error("Voice transcription failed for user %s: %s", telegram_user_id, exc)
            try:
                await self._notifier.send_message(chat_id, TRANSCRIPTION_FAILED_TEXT)
            except Exception as send_exc:
                logger.error("Could not tell chat %s about transcription failure: %s", chat_id, send_exc)
            return

        logger.info("Voice transcribed: %s", text[:80])
        if text.strip():
            try:
                await self._notifier.send_message(chat_id, f"🎤 I heard: {text}")
            except Exception as exc:
                logger.warning("Could not echo transcription to chat %s: %s", chat_id, exc)
        await self.handle_incoming_message(telegram_user_id, chat_id, text, now=now)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _handle_command(self, user: User, command: Command, now: datetime) -> None:
        verb = command.verb
        if verb == "start":
            await self._reply(user, WELCOME_TEXT)
        elif verb == "help":
            await self._reply(user, HELP_TEXT)
        elif verb == "add":
            if not command.payload:
                await self._reply(user, ADD_USAGE_TEXT)
                return
            await self._handle_task_creation(user, command.payload, now)
        elif verb == "next":
            await self._show_next(user)
        elif verb == "today":
            await self._show_today(user, now)
        elif verb == "list":
            await self._show_list(user)
        elif verb == "done":
            index = parse_index(command.args[0]) if command.args else None
            if index is None:
                await self._reply(user, DONE_USAGE_TEXT)
                return
            await self._mark_done(user, index, now)
        elif verb == "snooze":
            await self._snooze(user, command.args, now)

    async def _handle_intent(self, user: User, intent: NaturalIntent, now: datetime) -> None:
        if intent.kind == "next":
            await self._show_next(user)
        elif intent.kind == "today":
            await self._show_today(user, now)
        elif intent.kind == "list":
            await self._show_list(user)
        elif intent.kind == "done" and intent.index is not None:
            await self._mark_done(user, intent.index, now)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def _handle_task_creation(self, user: User, text: str, now: datetime) -> None:
        local_now = self._service.local_now(user, now)
        candidates = extract_tasks_from_text(text, local_now, self._undated_policy)
        if not candidates:
            await self._reply(user, NO_TASKS_DETECTED_TEXT)
            return

        dated = [c for c in candidates if c.due_at is not None]
        undated = [c for c in candidates if c.due_at is None]
        created = self._service.create_tasks(user, dated, now=now)

        tz = self._service.user_tz(user)
        lines = [f"Task added: {t.title} — {format_due(t.due_at, tz)} ✅" for t in created]
        lines += [CLARIFY_TEXT.format(title=c.title) for c in undated]
        await self._reply(user, "\n".join(lines))

        for task in created:
            self._audit(task, user, "task_created", {"taskId": task.id, "title": task.title})

    async def _show_next(self, user: User) -> None:
        indexed = self._service.indexed_open_tasks(user)
        if not indexed:
            await self._reply(user, NOTHING_PENDING_TEXT)
            return
        tz = self._service.user_tz(user)
        lines = [f"• {format_task(t, i, tz)}" for i, t in indexed[:NEXT_LIMIT]]
        await self._reply(user, "Next up:\n" + "\n".join(lines))

    async def _show_today(self, user: User, now: datetime) -> None:
        today_ids = {t.id for t in self._service.list_today_tasks(user, now)}
        indexed = [(i, t) for i, t in self._service.indexed_open_tasks(user) if t.id in today_ids]
        await self._reply_listing(user, indexed, NO_TASKS_TODAY_TEXT)

    async def _show_list(self, user: User) -> None:
        await self._reply_listing(user, self._service.indexed_open_tasks(user), NO_TASKS_TEXT)

    async def _mark_done(self, user: User, index: int, now: datetime) -> None:
        task = self._service.mark_task_done(user, index, now=now)
        if task is None:
            await self._reply(user, NOT_FOUND_TEXT)
            return
        await self._reply(user, f"Marked done: {task.title} ✅")
        self._audit(task, user, "task_done", {"taskId": task.id, "index": index})

    async def _snooze(self, user: User, args: list[str], now: datetime) -> None:
        index = parse_index(args[0]) if args else None
        target = parse_snooze_target(args[1:], self._service.local_now(user, now))
        if index is None or target is None:
            await self._reply(user, SNOOZE_USAGE_TEXT)
            return
        task = self._service.snooze_task(user, index, target, now=now)
        if task is None:
            await self._reply(user, NOT_FOUND_TEXT)
            return
        due = format_due(task.due_at, self._service.user_tz(user))
        await self._reply(user, f"Snoozed: {task.title} ⏰ Now due {due}")
        self._audit(
            task, user, "task_snoozed", {"taskId": task.id, "dueAt": task.due_at.isoformat()},
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _reply_listing(
        self, user: User, indexed: list[tuple[int, Task]], empty_text: str,
    ) -> None:
        if not indexed:
            await self._reply(user, empty_text)
            return
        tz = self._service.user_tz(user)
        await self._reply(user, "\n".join(f"• {format_task(t, i, tz)}" for i, t in indexed))

    async def _reply(self, user: User, text: str) -> None:
        await self._notifier.send_message(user.chat_id, text)

    async def _reply_failure(self, chat_id: int) -> None:
        try:
            await self._notifier.send_message(chat_id, GENERIC_FAILURE_TEXT)
        except Exception as exc:
            logger.error("Could not send failure notice to chat %s: %s", chat_id, exc)

    def _audit(self, task: Task, user: User, event_type: str, payload: dict) -> None:
        try:
            self._service.task_db.log_event(task.id, user.chat_id, event_type, payload)
        except Exception as exc:
            logger.error("Audit log write failed for task #%d (%s): %s", task.id, event_type, exc)
