"""FastAPI proxy server exposing the conversation and speech proxies."""

from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

if TYPE_CHECKING:
    from ..config import TomoSpeakConfig
    from ..conversation_proxy import ConversationBackend
    from ..speech_proxy import SpeechBackend


def create_app(
    conversation_proxy: "ConversationBackend | None" = None,
    speech_proxy: "SpeechBackend | None" = None,
    config: "TomoSpeakConfig | None" = None,
) -> FastAPI:
    """Create FastAPI app with injected proxies.

    Args:
        conversation_proxy: Gemini proxy; None when GEMINI_API_KEY is missing
        speech_proxy: ElevenLabs proxy; None when ELEVENLABS_API_KEY is missing
        config: TomoSpeakConfig for system info

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="TomoSpeak",
        description="Conversation and speech proxies for TomoSpeak lessons",
        version="0.1.0",
    )

    # CORS for browser clients during development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.conversation_proxy = conversation_proxy
    app.state.speech_proxy = speech_proxy
    app.state.config = config

    from .routes import chat, system, tts

    app.include_router(chat.router, prefix="/api", tags=["chat"])
    app.include_router(tts.router, prefix="/api", tags=["tts"])
    app.include_router(system.router, tags=["system"])

    return app
