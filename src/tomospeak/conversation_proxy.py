"""Conversation proxies: Gemini in-process, or the TomoSpeak HTTP server.

Both take the ordered lesson history as ``{role, content}`` pairs and return
one ``ConversationReply`` or raise ``ConversationError``.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Protocol

import httpx
from google import genai
from google.genai import types

from .config import MAX_MESSAGE_LENGTH, ChatConfig
from .errors import ConversationError, ConversationErrorKind
from .models import ConversationReply, clamp_progress
from .prompts import SYSTEM_PROMPT, split_progress_line

logger = logging.getLogger(__name__)


class ConversationBackend(Protocol):
    """Anything that can answer a lesson turn."""

    async def complete(self, messages: list[dict[str, str]]) -> ConversationReply:
        """Return the assistant reply for the given history."""
        ...


def validate_history(messages: Any) -> None:
    """Check the conversation proxy input contract.

    Raises:
        ConversationError: INVALID_INPUT with the wire error code
    """
    if not isinstance(messages, list) or not messages:
        raise ConversationError(ConversationErrorKind.INVALID_INPUT, "INVALID_MESSAGES")

    last = messages[-1]
    if not isinstance(last, dict) or last.get("role") != "user":
        raise ConversationError(ConversationErrorKind.INVALID_INPUT, "LAST_MESSAGE_NOT_USER")

    for message in messages:
        if (
            not isinstance(message, dict)
            or message.get("role") not in ("user", "assistant")
            or not isinstance(message.get("content"), str)
        ):
            raise ConversationError(ConversationErrorKind.INVALID_INPUT, "INVALID_MESSAGE_FORMAT")
        if len(message["content"]) > MAX_MESSAGE_LENGTH:
            raise ConversationError(ConversationErrorKind.INVALID_INPUT, "MESSAGE_TOO_LONG")


class GeminiConversationProxy:
    """Conversation proxy backed by the Google GenAI SDK.

    Enforces its own execution budget: a generation that outlives ``timeout``
    is cancelled and reported as TIMEOUT.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gemini-2.5-flash",
        timeout: float = 20.0,
        system_prompt: str = SYSTEM_PROMPT,
        temperature: float = 0.6,
        top_p: float = 0.9,
        top_k: int = 40,
        max_output_tokens: int = 512,
        client: Any = None,
    ):
        """Initialize the proxy.

        Args:
            api_key: Gemini API key (ignored when ``client`` is given)
            model: Gemini model name
            timeout: Generation budget in seconds
            system_prompt: Tutor instructions
            client: Pre-built ``genai.Client`` (tests inject a fake)
        """
        self._client = client or genai.Client(api_key=api_key)
        self.model = model
        self.timeout = timeout
        self.system_prompt = system_prompt
        self._generation = {
            "temperature": temperature,
            "top_p": top_p,
            "top_k": top_k,
            "max_output_tokens": max_output_tokens,
        }

    @classmethod
    def from_config(
        cls, config: ChatConfig, api_key: str | None, system_prompt: str, client: Any = None
    ) -> GeminiConversationProxy:
        """Build a proxy from the ``chat`` config section."""
        return cls(
            api_key=api_key,
            model=config.model,
            timeout=config.timeout,
            system_prompt=system_prompt,
            temperature=config.temperature,
            top_p=config.top_p,
            top_k=config.top_k,
            max_output_tokens=config.max_output_tokens,
            client=client,
        )

    @staticmethod
    def _convert_messages(messages: list[dict[str, str]]) -> list[types.Content]:
        """Convert lesson history to Gemini contents (assistant -> model)."""
        return [
            types.Content(
                role="user" if message["role"] == "user" else "model",
                parts=[types.Part(text=message["content"])],
            )
            for message in messages
        ]

    @staticmethod
    def _extract_content(response: Any) -> str:
        """Extract text from a Gemini response, tolerating blocked/empty candidates."""
        candidates = getattr(response, "candidates", None)
        if candidates:
            candidate = candidates[0]
            content = getattr(candidate, "content", None)
            if content and content.parts:
                texts = [part.text for part in content.parts if getattr(part, "text", None)]
                if texts:
                    return "".join(texts)

        try:
            return response.text or ""
        except (ValueError, AttributeError):
            return ""

    async def complete(self, messages: list[dict[str, str]]) -> ConversationReply:
        """Generate the next tutor reply.

        Raises:
            ConversationError: INVALID_INPUT, TIMEOUT, SERVICE_UNAVAILABLE
                or EMPTY_RESPONSE
        """
        validate_history(messages)

        config = types.GenerateContentConfig(
            system_instruction=self.system_prompt,
            **self._generation,
        )

        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self.model,
                    contents=self._convert_messages(messages),
                    config=config,
                ),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            logger.warning(f"Gemini generation exceeded {self.timeout}s")
            raise ConversationError(ConversationErrorKind.TIMEOUT) from e
        except Exception as e:
            logger.warning(f"Gemini generation failed: {e}")
            raise ConversationError(
                ConversationErrorKind.SERVICE_UNAVAILABLE, "AI_SERVICE_FAILED"
            ) from e

        text = self._extract_content(response).strip()
        if not text:
            raise ConversationError(ConversationErrorKind.EMPTY_RESPONSE)

        content, progress = split_progress_line(text)
        if not content:
            raise ConversationError(ConversationErrorKind.EMPTY_RESPONSE)
        return ConversationReply(content=content, progress=progress)


def _coerce_progress(value: Any) -> int | None:
    """Progress from a JSON payload: numbers are clamped, anything else is absent."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return clamp_progress(value)


# Wire error codes that are not plain INVALID_INPUT / SERVICE_UNAVAILABLE
_ERROR_CODE_KINDS = {
    "TIMEOUT": ConversationErrorKind.TIMEOUT,
    "EMPTY_RESPONSE": ConversationErrorKind.EMPTY_RESPONSE,
}


class HttpConversationClient:
    """Conversation proxy that calls ``POST /api/chat`` on a TomoSpeak server."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def complete(self, messages: list[dict[str, str]]) -> ConversationReply:
        """Submit history to the server and parse its reply."""
        try:
            response = await self.client.post(
                f"{self.base_url}/api/chat", json={"messages": messages}
            )
        except httpx.TimeoutException as e:
            raise ConversationError(ConversationErrorKind.TIMEOUT) from e
        except httpx.RequestError as e:
            logger.warning(f"Chat request failed: {e}")
            raise ConversationError(
                ConversationErrorKind.SERVICE_UNAVAILABLE, "AI_SERVICE_FAILED"
            ) from e

        if response.status_code != 200:
            raise self._error_from_response(response)

        try:
            data = response.json()
        except ValueError as e:
            raise ConversationError(
                ConversationErrorKind.SERVICE_UNAVAILABLE, "MALFORMED_RESPONSE"
            ) from e

        assistant = data.get("assistantMessage") if isinstance(data, dict) else None
        content = assistant.get("content") if isinstance(assistant, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ConversationError(ConversationErrorKind.EMPTY_RESPONSE)

        return ConversationReply(
            content=content.strip(),
            progress=_coerce_progress(data.get("progress")),
        )

    @staticmethod
    def _error_from_response(response: httpx.Response) -> ConversationError:
        code = "AI_SERVICE_FAILED"
        try:
            payload = response.json()
            if isinstance(payload, dict) and isinstance(payload.get("error"), str):
                code = payload["error"]
        except ValueError:
            pass

        if code in _ERROR_CODE_KINDS:
            return ConversationError(_ERROR_CODE_KINDS[code], code)
        if response.status_code == 400:
            return ConversationError(ConversationErrorKind.INVALID_INPUT, code)
        return ConversationError(ConversationErrorKind.SERVICE_UNAVAILABLE, code)
