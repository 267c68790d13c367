"""Proxy server API routes."""

from . import chat, system, tts

__all__ = ["chat", "system", "tts"]
