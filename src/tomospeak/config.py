"""TomoSpeak configuration loader."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

# Shared cap for user messages, chat history entries and speech text
MAX_MESSAGE_LENGTH = 2000


@dataclass
class ChatConfig:
    """Gemini text generation settings."""

    model: str = "gemini-2.5-flash"
    timeout: float = 20.0
    temperature: float = 0.6
    top_p: float = 0.9
    top_k: int = 40
    max_output_tokens: int = 512
    system_prompt_path: str = ".tomospeak/prompts/tutor.md"


@dataclass
class SpeechConfig:
    """ElevenLabs text-to-speech settings."""

    voice_id: str = "6FGZjfQDtuhZjLHFuM90"
    model_id: str = "eleven_turbo_v2_5"
    stability: float = 0.4
    similarity_boost: float = 0.75
    timeout: float = 30.0


@dataclass
class TomoSpeakConfig:
    """Main configuration for TomoSpeak."""

    db_path: str = ".tomospeak/state.sqlite"
    audio_dir: str | None = None

    chat: ChatConfig = field(default_factory=ChatConfig)
    speech: SpeechConfig = field(default_factory=SpeechConfig)

    # Lesson client
    server_url: str = "http://localhost:8000"
    request_timeout: float = 20.0
    autoplay: bool = True

    # Proxy server
    server_host: str = "127.0.0.1"
    server_port: int = 8000

    @classmethod
    def load(cls, config_path: str = ".tomospeak/config.yaml") -> "TomoSpeakConfig":
        """Load config from YAML file.

        Args:
            config_path: Path to config file (relative or absolute)

        Returns:
            Loaded configuration, defaults when the file is missing
        """
        path = Path(config_path)
        if not path.exists():
            config = cls()
        else:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            config = cls._from_dict(data)

        voice_override = os.environ.get("ELEVENLABS_VOICE_ID")
        if voice_override:
            config.speech.voice_id = voice_override
        return config

    @classmethod
    def _from_dict(cls, data: dict) -> "TomoSpeakConfig":
        storage_data = data.get("storage", {})
        chat_data = data.get("chat", {})
        speech_data = data.get("speech", {})
        client_data = data.get("client", {})
        server_data = data.get("server", {})

        defaults = ChatConfig()
        chat = ChatConfig(
            model=chat_data.get("model", defaults.model),
            timeout=float(chat_data.get("timeout", defaults.timeout)),
            temperature=float(chat_data.get("temperature", defaults.temperature)),
            top_p=float(chat_data.get("top_p", defaults.top_p)),
            top_k=int(chat_data.get("top_k", defaults.top_k)),
            max_output_tokens=int(chat_data.get("max_output_tokens", defaults.max_output_tokens)),
            system_prompt_path=chat_data.get("system_prompt_path", defaults.system_prompt_path),
        )

        speech_defaults = SpeechConfig()
        speech = SpeechConfig(
            voice_id=speech_data.get("voice_id", speech_defaults.voice_id),
            model_id=speech_data.get("model_id", speech_defaults.model_id),
            stability=float(speech_data.get("stability", speech_defaults.stability)),
            similarity_boost=float(
                speech_data.get("similarity_boost", speech_defaults.similarity_boost)
            ),
            timeout=float(speech_data.get("timeout", speech_defaults.timeout)),
        )

        return cls(
            db_path=storage_data.get("db_path", ".tomospeak/state.sqlite"),
            audio_dir=storage_data.get("audio_dir"),
            chat=chat,
            speech=speech,
            server_url=client_data.get("server_url", "http://localhost:8000"),
            request_timeout=float(client_data.get("request_timeout", 20.0)),
            autoplay=bool(client_data.get("autoplay", True)),
            server_host=server_data.get("host", "127.0.0.1"),
            server_port=int(server_data.get("port", 8000)),
        )

    @staticmethod
    def gemini_api_key() -> str | None:
        """Gemini key from the environment (GEMINI_API_KEY, then GOOGLE_API_KEY)."""
        return os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")

    @staticmethod
    def elevenlabs_api_key() -> str | None:
        """ElevenLabs key from the environment."""
        return os.environ.get("ELEVENLABS_API_KEY")
