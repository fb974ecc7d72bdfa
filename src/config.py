"""
Task Assistant — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

UNDATED_POLICIES = ("end_of_day", "clarify")


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # Audio: OpenAI Whisper (transcription only)
    OPENAI_API_KEY: str = ""
    TRANSCRIPTION_LANGUAGE: str = ""   # empty → let Whisper detect

    # SQLite
    DATABASE_PATH: str = "data/tasks.db"

    # Reference timezone for users without their own
    TIMEZONE: str = "Asia/Kolkata"

    # Reminders
    PRE_REMINDER_MINUTES: int = 30
    SWEEP_INTERVAL_MINUTES: int = 5
    DISPATCH_LEASE_SECONDS: int = 300

    # Daily digest (local hour, per user timezone)
    DIGEST_HOUR: int = 8

    # What to do with a task that names no time: "end_of_day" | "clarify"
    UNDATED_TASK_POLICY: str = "end_of_day"

    @field_validator(
        "PRE_REMINDER_MINUTES", "SWEEP_INTERVAL_MINUTES",
        "DISPATCH_LEASE_SECONDS", "DIGEST_HOUR",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("DIGEST_HOUR")
    @classmethod
    def check_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError(f"DIGEST_HOUR must be 0-23, got {v}")
        return v

    @field_validator("TIMEZONE")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown TIMEZONE {v!r}") from exc
        return v

    @field_validator("UNDATED_TASK_POLICY", mode="before")
    @classmethod
    def parse_policy(cls, v: str) -> str:
        policy = (v or "end_of_day").strip().lower()
        if policy not in UNDATED_POLICIES:
            raise ValueError(
                f"UNDATED_TASK_POLICY must be one of {UNDATED_POLICIES}, got {v!r}"
            )
        return policy


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
        TRANSCRIPTION_LANGUAGE=os.getenv("TRANSCRIPTION_LANGUAGE", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/tasks.db"),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Kolkata"),
        PRE_REMINDER_MINUTES=os.getenv("PRE_REMINDER_MINUTES", "30"),
        SWEEP_INTERVAL_MINUTES=os.getenv("SWEEP_INTERVAL_MINUTES", "5"),
        DISPATCH_LEASE_SECONDS=os.getenv("DISPATCH_LEASE_SECONDS", "300"),
        DIGEST_HOUR=os.getenv("DIGEST_HOUR", "8"),
        UNDATED_TASK_POLICY=os.getenv("UNDATED_TASK_POLICY", "end_of_day"),
    )


# Singleton, imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
