"""
Task Assistant — Telegram Bot.

Telegram is the only user interface. Every interaction (text capture,
voice capture, task commands, reminders, daily digest) flows through
this bot. Handlers stay thin: they unpack the Update and hand the text to
TaskAssistant, which does all interpretation and replies via the notifier.
"""

from __future__ import annotations

import logging
import tempfile
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from telegram import Bot, Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.config import settings
from src.core.intent_parser import COMMAND_VERBS

if TYPE_CHECKING:
    from src.core.assistant import TaskAssistant
    from src.core.scheduler import SweepResult
    from src.core.task_service import TaskService
    from src.data.db import DispatchDB
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle commands, plain text and captions. Messages with neither get a hint."""
    message = update.effective_message
    if message is None:
        return
    user = update.effective_user
    chat_id = message.chat_id
    user_id = user.id if user is not None else chat_id
    text = message.text or message.caption or ""

    assistant: TaskAssistant = context.bot_data["assistant"]
    await assistant.handle_incoming_message(user_id, chat_id, text)


async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle voice messages — transcribe via Whisper, then interpret."""
    message = update.effective_message
    user = update.effective_user
    chat_id = message.chat_id
    user_id = user.id if user is not None else chat_id
    assistant: TaskAssistant = context.bot_data["assistant"]

    tmp_path: str | None = None
    try:
        # Download voice file to a temp directory
        voice_file = await context.bot.get_file(message.voice.file_id)
        with tempfile.NamedTemporaryFile(suffix=".ogg", delete=False) as tmp:
            tmp_path = tmp.name
        await voice_file.download_to_drive(tmp_path)
    except Exception as exc:
        logger.error("Voice download error: %s", exc)
        await message.reply_text("I couldn't transcribe that voice note. Try again?")
        if tmp_path:
            Path(tmp_path).unlink(missing_ok=True)
        return

    try:
        await context.bot.send_chat_action(chat_id=chat_id, action="typing")
    except Exception as exc:
        logger.debug("send_chat_action failed: %s", exc)

    try:
        await assistant.handle_voice_message(user_id, chat_id, tmp_path)
    finally:
        # Cleanup temp file
        try:
            Path(tmp_path).unlink(missing_ok=True)
        except OSError as exc:
            logger.debug("Could not remove %s: %s", tmp_path, exc)


# ---------------------------------------------------------------------------
# Scheduled sweeps
# ---------------------------------------------------------------------------


async def _reminder_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    from src.core.scheduler import run_reminder_sweep

    data = context.job.data
    result = await run_reminder_sweep(data["service"], data["dispatch_db"], data["notifier"])
    if not result.ok:
        logger.error("Reminder sweep could not run")


async def _digest_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    from src.core.scheduler import run_digest_sweep

    data = context.job.data
    result = await run_digest_sweep(data["service"], data["dispatch_db"], data["notifier"])
    if not result.ok:
        logger.error("Digest sweep could not run")


def _setup_sweeps(
    app: Application,
    service: TaskService,
    dispatch_db: DispatchDB,
    notifier: NotificationPort,
) -> None:
    """Run both sweeps every SWEEP_INTERVAL_MINUTES. They are idempotent."""
    interval = timedelta(minutes=settings.SWEEP_INTERVAL_MINUTES)
    data = {"service": service, "dispatch_db": dispatch_db, "notifier": notifier}

    app.job_queue.run_repeating(
        _reminder_job, interval=interval, first=10, name="reminder_sweep", data=data,
    )
    app.job_queue.run_repeating(
        _digest_job, interval=interval, first=20, name="digest_sweep", data=data,
    )

    logger.info(
        "Sweeps scheduled every %d min (digest from %02d:00 local, default tz %s)",
        settings.SWEEP_INTERVAL_MINUTES,
        settings.DIGEST_HOUR,
        settings.TIMEZONE,
    )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def _build_core(notifier: NotificationPort) -> tuple[TaskService, DispatchDB, TaskAssistant]:
    from src.core.assistant import TaskAssistant
    from src.core.task_service import TaskService
    from src.data.db import DispatchDB, TaskDB, UserDB

    service = TaskService(TaskDB(), UserDB(), settings.TIMEZONE)
    dispatch_db = DispatchDB()
    assistant = TaskAssistant(
        service, notifier, undated_policy=settings.UNDATED_TASK_POLICY,
    )
    return service, dispatch_db, assistant


def build_app(notifier: NotificationPort | None = None) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if notifier is None:
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    service, dispatch_db, assistant = _build_core(notifier)

    # Store collaborators in bot_data for handler access
    app.bot_data["assistant"] = assistant
    app.bot_data["service"] = service
    app.bot_data["notifier"] = notifier

    # Commands, all interpreted by the assistant
    for verb in sorted(COMMAND_VERBS):
        app.add_handler(CommandHandler(verb, handle_text))

    # Voice messages
    app.add_handler(MessageHandler(filters.VOICE, handle_voice))

    # Everything else: text, captions, unknown commands, empty messages
    app.add_handler(MessageHandler(filters.UpdateType.MESSAGE, handle_text))

    _setup_sweeps(app, service, dispatch_db, notifier)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


async def run_sweep_once(name: str) -> SweepResult:
    """Run a single sweep outside the bot, e.g. from cron.

    Args:
        name: "reminders" or "digest".
    """
    from src.adapters.telegram_notifier import TelegramNotifier
    from src.core.scheduler import run_digest_sweep, run_reminder_sweep

    sweeps = {"reminders": run_reminder_sweep, "digest": run_digest_sweep}
    if name not in sweeps:
        raise ValueError(f"Unknown sweep {name!r}, expected one of {sorted(sweeps)}")

    async with Bot(settings.TELEGRAM_BOT_TOKEN) as bot:
        notifier = TelegramNotifier(bot)
        service, dispatch_db, _ = _build_core(notifier)
        result = await sweeps[name](service, dispatch_db, notifier)
    logger.info("Sweep %s finished: %s", name, result)
    return result


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Task Assistant bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
