"""Conversation proxy endpoint."""

from typing import Literal

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ...conversation_proxy import validate_history
from ...errors import ConversationError, ConversationErrorKind

router = APIRouter()

_STATUS_BY_KIND = {
    ConversationErrorKind.INVALID_INPUT: 400,
    ConversationErrorKind.TIMEOUT: 504,
    ConversationErrorKind.EMPTY_RESPONSE: 502,
    ConversationErrorKind.SERVICE_UNAVAILABLE: 502,
}


class AssistantMessage(BaseModel):
    """Assistant reply as returned to clients."""

    role: Literal["assistant"] = "assistant"
    content: str


class ChatResponse(BaseModel):
    """Successful chat response body."""

    assistantMessage: AssistantMessage
    progress: int | None = None


def _error(code: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": code}, status_code=status_code)


@router.post("/chat")
async def chat(request: Request):
    """Answer one lesson turn.

    Body: ``{"messages": [{"role": ..., "content": ...}, ...]}``

    Returns:
        ``{"assistantMessage": {...}, "progress": int | null}`` or ``{"error": code}``
    """
    try:
        payload = await request.json()
    except ValueError:
        return _error("INVALID_JSON", 400)

    messages = payload.get("messages", []) if isinstance(payload, dict) else None

    try:
        validate_history(messages)
    except ConversationError as e:
        return _error(e.code, 400)

    proxy = request.app.state.conversation_proxy
    if proxy is None:
        return _error("MISSING_API_KEY", 500)

    try:
        reply = await proxy.complete(messages)
    except ConversationError as e:
        code = "AI_SERVICE_FAILED" if e.kind == ConversationErrorKind.SERVICE_UNAVAILABLE else e.code
        return _error(code, _STATUS_BY_KIND[e.kind])

    body = ChatResponse(
        assistantMessage=AssistantMessage(content=reply.content),
        progress=reply.progress,
    )
    return body.model_dump()
