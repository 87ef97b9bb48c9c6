"""
fam.ly — Audio Transcriber.

Voice notes sent to the bot are transcribed with OpenAI Whisper. The
resulting text is treated as a finalized utterance and flows into the same
chat session as typed messages.

This is the only module that talks to the OpenAI SDK directly for audio; the
chat completion provider is chosen separately in famly.core.llm.
"""

from __future__ import annotations

import logging
from pathlib import Path

from openai import AsyncOpenAI

from famly.core.errors import TranscriptionError

logger = logging.getLogger(__name__)

_client: AsyncOpenAI | None = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        from famly.config import settings
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY or None)
    return _client


async def transcribe_audio(file_path: str, language: str | None = None) -> str:
    """Transcribe an audio file using OpenAI Whisper.

    Args:
        file_path: Path to the audio file (OGG, MP3, etc.).
        language: ISO-639-1 hint; defaults to WHISPER_LANGUAGE, empty lets
            Whisper detect it.

    Returns:
        Transcribed text string.

    Raises:
        TranscriptionError: If the file cannot be read or the Whisper API call fails.
    """
    if language is None:
        from famly.config import settings
        language = settings.WHISPER_LANGUAGE

    kwargs = {"model": "whisper-1"}
    if language:
        kwargs["language"] = language

    try:
        with open(file_path, "rb") as audio_file:
            response = await _get_client().audio.transcriptions.create(file=audio_file, **kwargs)
    except Exception as exc:
        logger.error("Whisper transcription failed for %s: %s", file_path, exc)
        raise TranscriptionError(f"Could not transcribe {Path(file_path).name}: {exc}") from exc

    text = response.text.strip()
    logger.info("Transcribed %d chars from %s", len(text), Path(file_path).name)
    return text
