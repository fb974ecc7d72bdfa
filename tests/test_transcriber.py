"""Tests for src.core.transcriber — Whisper transcription (API mocked)."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.core.transcriber import transcribe_audio


def _mock_client(text=None, error=None):
    client = MagicMock()
    if error is not None:
        client.audio.transcriptions.create = AsyncMock(side_effect=error)
    else:
        client.audio.transcriptions.create = AsyncMock(return_value=MagicMock(text=text))
    return client


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "voice.ogg"
    path.write_bytes(b"OggS fake audio")
    return str(path)


class TestTranscribeAudio:
    @pytest.mark.asyncio
    async def test_returns_stripped_text(self, audio_file):
        client = _mock_client(text="  buy milk tomorrow  ")
        with patch("src.core.transcriber._get_client", return_value=client):
            text = await transcribe_audio(audio_file)

        assert text == "buy milk tomorrow"
        kwargs = client.audio.transcriptions.create.await_args.kwargs
        assert kwargs["model"] == "whisper-1"
        assert "language" not in kwargs

    @pytest.mark.asyncio
    async def test_passes_configured_language(self, audio_file):
        client = _mock_client(text="doodh lana")
        with patch("src.core.transcriber._get_client", return_value=client), \
             patch("src.core.transcriber.settings") as mock_settings:
            mock_settings.TRANSCRIPTION_LANGUAGE = "hi"
            await transcribe_audio(audio_file)

        assert client.audio.transcriptions.create.await_args.kwargs["language"] == "hi"

    @pytest.mark.asyncio
    async def test_api_error_propagates(self, audio_file):
        client = _mock_client(error=RuntimeError("rate limited"))
        with patch("src.core.transcriber._get_client", return_value=client):
            with pytest.raises(RuntimeError):
                await transcribe_audio(audio_file)

    @pytest.mark.asyncio
    async def test_missing_file_propagates(self, tmp_path):
        client = _mock_client(text="never")
        with patch("src.core.transcriber._get_client", return_value=client):
            with pytest.raises(FileNotFoundError):
                await transcribe_audio(str(tmp_path / "missing.ogg"))
        client.audio.transcriptions.create.assert_not_awaited()
