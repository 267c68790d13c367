"""Speech proxies: ElevenLabs in-process, or the TomoSpeak HTTP server."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from .config import MAX_MESSAGE_LENGTH, SpeechConfig
from .errors import SpeechError, SpeechErrorKind
from .models import SpeechAudio

logger = logging.getLogger(__name__)

ELEVENLABS_API_BASE = "https://api.elevenlabs.io/v1"
DEFAULT_CONTENT_TYPE = "audio/mpeg"


class SpeechBackend(Protocol):
    """Anything that can turn text into encoded audio."""

    async def synthesize(self, text: str) -> SpeechAudio:
        """Return encoded audio for ``text``."""
        ...


def validate_text(text: str | None) -> str:
    """Trim and check speech input.

    Raises:
        SpeechError: EMPTY_TEXT or TEXT_TOO_LONG
    """
    cleaned = (text or "").strip()
    if not cleaned:
        raise SpeechError(SpeechErrorKind.EMPTY_TEXT)
    if len(cleaned) > MAX_MESSAGE_LENGTH:
        raise SpeechError(SpeechErrorKind.TEXT_TOO_LONG)
    return cleaned


class ElevenLabsSpeechProxy:
    """Text-to-speech through the ElevenLabs REST API."""

    def __init__(
        self,
        api_key: str,
        voice_id: str = "6FGZjfQDtuhZjLHFuM90",
        model_id: str = "eleven_turbo_v2_5",
        stability: float = 0.4,
        similarity_boost: float = 0.75,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.voice_settings = {
            "stability": stability,
            "similarity_boost": similarity_boost,
        }
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @classmethod
    def from_config(
        cls, config: SpeechConfig, api_key: str, client: httpx.AsyncClient | None = None
    ) -> ElevenLabsSpeechProxy:
        """Build a proxy from the ``speech`` config section."""
        return cls(
            api_key=api_key,
            voice_id=config.voice_id,
            model_id=config.model_id,
            stability=config.stability,
            similarity_boost=config.similarity_boost,
            timeout=config.timeout,
            client=client,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def synthesize(self, text: str) -> SpeechAudio:
        """Synthesize speech for ``text``.

        Raises:
            SpeechError: EMPTY_TEXT, TEXT_TOO_LONG or UNAVAILABLE
        """
        cleaned = validate_text(text)
        try:
            response = await self.client.post(
                f"{ELEVENLABS_API_BASE}/text-to-speech/{self.voice_id}",
                headers={
                    "Content-Type": "application/json",
                    "Accept": DEFAULT_CONTENT_TYPE,
                    "xi-api-key": self.api_key,
                },
                json={
                    "text": cleaned,
                    "model_id": self.model_id,
                    "voice_settings": self.voice_settings,
                },
            )
        except httpx.HTTPError as e:
            logger.warning(f"ElevenLabs request failed: {e}")
            raise SpeechError(SpeechErrorKind.UNAVAILABLE, "TTS_FAILED") from e

        if response.status_code != 200:
            logger.warning(f"ElevenLabs returned HTTP {response.status_code}")
            raise SpeechError(SpeechErrorKind.UNAVAILABLE, "TTS_FAILED")

        return SpeechAudio(
            data=response.content,
            content_type=response.headers.get("content-type", DEFAULT_CONTENT_TYPE),
        )


class HttpSpeechClient:
    """Speech proxy that calls ``POST /api/tts`` on a TomoSpeak server."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def synthesize(self, text: str) -> SpeechAudio:
        """Fetch synthesized speech from the server."""
        try:
            response = await self.client.post(f"{self.base_url}/api/tts", json={"text": text})
        except httpx.HTTPError as e:
            logger.warning(f"TTS request failed: {e}")
            raise SpeechError(SpeechErrorKind.UNAVAILABLE, "TTS_FAILED") from e

        if response.status_code != 200:
            code = "TTS_FAILED"
            try:
                payload = response.json()
                if isinstance(payload, dict) and isinstance(payload.get("error"), str):
                    code = payload["error"]
            except ValueError:
                pass
            kind = {
                "EMPTY_TEXT": SpeechErrorKind.EMPTY_TEXT,
                "TEXT_TOO_LONG": SpeechErrorKind.TEXT_TOO_LONG,
            }.get(code, SpeechErrorKind.UNAVAILABLE)
            raise SpeechError(kind, code)

        if not response.content:
            raise SpeechError(SpeechErrorKind.UNAVAILABLE, "EMPTY_AUDIO")

        return SpeechAudio(
            data=response.content,
            content_type=response.headers.get("content-type", DEFAULT_CONTENT_TYPE),
        )
