"""Tests for src.data.models."""

from datetime import datetime, timezone

from src.data.models import STATUS_DONE, STATUS_OPEN, Task, User


def _task(**overrides):
    fields = dict(
        id=1,
        user_id=12345,
        title="Buy milk",
        due_at=datetime(2026, 10, 19, 18, 29, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return Task(**fields)


class TestTask:
    def test_defaults(self):
        task = _task()
        assert task.status == STATUS_OPEN
        assert task.pre_reminder_sent is False
        assert task.due_reminder_sent is False
        assert task.completed_at is None

    def test_is_open(self):
        assert _task().is_open is True
        assert _task(status=STATUS_DONE).is_open is False


class TestUser:
    def test_defaults(self):
        user = User(telegram_user_id=12345, chat_id=555)
        assert user.timezone is None
        assert user.last_digest_at is None
