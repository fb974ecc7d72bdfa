"""
Task Assistant — Audio Transcriber.

Voice is the fastest capture method — speaking is faster than typing.
After transcription, text flows into the same interpreter as typed messages.

This is the only module in the project that uses the OpenAI SDK; it is used
exclusively for Whisper audio transcription.
"""

from __future__ import annotations

import logging
from pathlib import Path

from openai import AsyncOpenAI

from src.config import settings

logger = logging.getLogger(__name__)

_client: AsyncOpenAI | None = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


async def transcribe_audio(file_path: str) -> str:
    """Transcribe an audio file using OpenAI Whisper.

    Args:
        file_path: Path to the audio file (OGG, MP3, etc.).

    Returns:
        Transcribed text string (may be empty for silence).

    Raises:
        Exception: If the Whisper API call fails.
    """
    kwargs = {}
    if settings.TRANSCRIPTION_LANGUAGE:
        kwargs["language"] = settings.TRANSCRIPTION_LANGUAGE
    try:
        with open(file_path, "rb") as audio_file:
            response = await _get_client().audio.transcriptions.create(
                model="whisper-1",
                file=audio_file,
                **kwargs,
            )
        text = response.text.strip()
        logger.info("Transcribed %d chars from %s", len(text), Path(file_path).name)
        return text
    except Exception as exc:
        logger.error("Whisper transcription failed for %s: %s", file_path, exc)
        raise
