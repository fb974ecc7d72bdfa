"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like temp DBs and a fixed reference time.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("OPENAI_API_KEY", "fake-openai-key-for-tests")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "Asia/Kolkata")

from datetime import datetime
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest


@pytest.fixture
def tz():
    """Reference timezone used throughout the tests (UTC+05:30, no DST)."""
    return ZoneInfo("Asia/Kolkata")


@pytest.fixture
def now(tz):
    """Monday 2026-10-19, 10:00 local."""
    return datetime(2026, 10, 19, 10, 0, tzinfo=tz)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_tasks.db")


@pytest.fixture
def task_db(tmp_db_path):
    """Return a TaskDB instance backed by a temp file."""
    from src.data.db import TaskDB
    return TaskDB(db_path=tmp_db_path)


@pytest.fixture
def user_db(tmp_db_path):
    """Return a UserDB instance sharing the task DB file."""
    from src.data.db import UserDB
    return UserDB(db_path=tmp_db_path)


@pytest.fixture
def dispatch_db(tmp_db_path):
    """Return a DispatchDB instance sharing the task DB file."""
    from src.data.db import DispatchDB
    return DispatchDB(db_path=tmp_db_path)


@pytest.fixture
def service(task_db, user_db):
    """Return a TaskService over the temp DBs with the reference timezone."""
    from src.core.task_service import TaskService
    return TaskService(task_db, user_db, "Asia/Kolkata")


@pytest.fixture
def user(service):
    """A registered user (telegram id 12345, chat 555)."""
    return service.upsert_user(12345, 555)


@pytest.fixture
def notifier():
    """A NotificationPort double that records every send."""
    mock = AsyncMock()
    mock.send_message = AsyncMock(return_value=None)
    return mock
