"""Voice-note transcription.

Downloads a report's voice attachment and sends it to an OpenAI-compatible
transcription endpoint (OpenAI itself, or a local whisper server via
``TRANSCRIPTION_BASE_URL``). Transcription is best-effort: the worker
continues without a transcript when this returns None.
"""

import logging
from pathlib import PurePosixPath
from urllib.parse import urlparse

from openai import AsyncOpenAI

from config import Config
from tools.fetch import fetch_bytes

logger = logging.getLogger(__name__)


class TranscriptionError(Exception):
    """The transcription endpoint rejected or failed the request."""


def _filename_for(audio_url: str) -> str:
    name = PurePosixPath(urlparse(audio_url).path).name
    return name or "voice.m4a"


class Transcriber:
    """Speech-to-text for voice attachments.

    Disabled (``enabled`` is False) when no TRANSCRIPTION_MODEL is set.

    Example:
        >>> transcriber = Transcriber(config)
        >>> text = await transcriber.transcribe_from_url(url, language="en")
    """

    def __init__(self, config: Config, client: AsyncOpenAI | None = None):
        self.model = config.transcription_model
        self.timeout = config.ai_timeout_seconds
        self._client = client
        if self._client is None and self.model:
            self._client = AsyncOpenAI(
                api_key=config.openai_api_key or "local-model",
                base_url=config.transcription_base_url or None,
                timeout=config.ai_timeout_seconds,
            )

    @property
    def enabled(self) -> bool:
        return bool(self.model) and self._client is not None

    async def transcribe_from_url(self, audio_url: str, language: str = "en") -> str | None:
        """Download and transcribe an audio attachment.

        Args:
            audio_url: URL or path of the audio file
            language: ISO-639-1 language hint

        Returns:
            Transcript text, or None if disabled or the audio could not be fetched

        Raises:
            TranscriptionError: The endpoint call failed
        """
        if not self.enabled:
            logger.debug("Transcription disabled; skipping | url=%s", audio_url)
            return None

        audio = await fetch_bytes(audio_url, timeout=self.timeout)
        if audio is None:
            return None

        try:
            response = await self._client.audio.transcriptions.create(
                model=self.model,
                file=(_filename_for(audio_url), audio),
                language=language,
            )
        except Exception as e:
            raise TranscriptionError(f"{type(e).__name__}: {e}") from e

        text = (getattr(response, "text", "") or "").strip()
        logger.info("Voice transcribed | model=%s chars=%d", self.model, len(text))
        return text or None
