"""Transcription port — turns a recorded voice note into text.

Raises on failure; the caller tells the user and drops the message.
"""

from __future__ import annotations

from typing import Protocol


class TranscriptionPort(Protocol):
    """Abstract speech-to-text interface used by core modules."""

    async def __call__(self, file_path: str) -> str: ...
