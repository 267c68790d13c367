"""System health endpoint."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Quick health check.

    Returns:
        Service status and whether each upstream proxy is configured
    """
    config = request.app.state.config
    chat_proxy = request.app.state.conversation_proxy
    speech_proxy = request.app.state.speech_proxy

    return {
        "status": "ok" if chat_proxy and speech_proxy else "degraded",
        "service": "tomospeak",
        "chat": {
            "status": "configured" if chat_proxy else "not_configured",
            "model": config.chat.model if config else None,
        },
        "tts": {
            "status": "configured" if speech_proxy else "not_configured",
            "voice_id": config.speech.voice_id if config else None,
        },
    }
