"""Speech proxy endpoint."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from ...errors import SpeechError, SpeechErrorKind
from ...speech_proxy import validate_text

router = APIRouter()


@router.post("/tts")
async def tts(request: Request):
    """Synthesize speech for ``{"text": ...}``.

    Returns:
        Raw audio bytes with the upstream content type, or ``{"error": code}``
    """
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse({"error": "INVALID_JSON"}, status_code=400)

    text = payload.get("text") if isinstance(payload, dict) else None
    if not isinstance(text, str):
        text = ""

    try:
        text = validate_text(text)
    except SpeechError as e:
        return JSONResponse({"error": e.kind.value}, status_code=400)

    proxy = request.app.state.speech_proxy
    if proxy is None:
        return JSONResponse({"error": "MISSING_TTS_API_KEY"}, status_code=500)

    try:
        audio = await proxy.synthesize(text)
    except SpeechError as e:
        if e.kind in (SpeechErrorKind.EMPTY_TEXT, SpeechErrorKind.TEXT_TOO_LONG):
            return JSONResponse({"error": e.kind.value}, status_code=400)
        return JSONResponse({"error": "TTS_FAILED"}, status_code=502)

    return Response(
        content=audio.data,
        media_type=audio.content_type,
        headers={"Cache-Control": "no-store"},
    )
