"""Data models for TomoSpeak lessons."""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Literal
from uuid import uuid4

from .errors import SpeechErrorKind

MessageRole = Literal["user", "assistant"]

AudioStatus = Literal["loading", "ready", "error"]

PROGRESS_MIN = 0
PROGRESS_MAX = 100


def clamp_progress(value: float) -> int:
    """Round and clamp a progress value to [0, 100]."""
    return max(PROGRESS_MIN, min(PROGRESS_MAX, int(round(value))))


@dataclass(frozen=True)
class ChatMessage:
    """A single lesson message. Immutable once created."""

    role: MessageRole
    content: str
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def create(cls, role: MessageRole, content: str) -> "ChatMessage":
        """Create a message with a fresh id and timestamp."""
        return cls(role=role, content=content)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.created_at.isoformat(),
        }

    def to_payload(self) -> dict[str, str]:
        """Role/content pair sent to the conversation proxy."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict) -> "ChatMessage":
        """Create from dictionary.

        Raises:
            ValueError: If the entry is not a well-formed message
        """
        if not isinstance(data, dict):
            raise ValueError("message entry must be an object")
        role = data.get("role")
        if role not in ("user", "assistant"):
            raise ValueError(f"unknown role: {role!r}")
        content = data.get("content")
        message_id = data.get("id")
        if not isinstance(content, str) or not isinstance(message_id, str) or not message_id:
            raise ValueError("message entry needs string id and content")
        timestamp = data.get("timestamp")
        created_at = datetime.fromisoformat(timestamp) if timestamp else datetime.now(UTC)
        return cls(role=role, content=content, id=message_id, created_at=created_at)


@dataclass
class ConversationReply:
    """Assistant reply returned by a conversation proxy."""

    content: str
    progress: int | None = None


@dataclass
class SpeechAudio:
    """Encoded audio returned by a speech proxy."""

    data: bytes
    content_type: str = "audio/mpeg"


class AudioHandle:
    """Owned audio resource: a file holding one message's encoded speech.

    The audio manager is the only owner; ``release`` deletes the file.
    """

    def __init__(self, path: Path, content_type: str = "audio/mpeg"):
        self.path = Path(path)
        self.content_type = content_type
        self.released = False

    def release(self) -> None:
        """Delete the backing file."""
        self.released = True
        self.path.unlink(missing_ok=True)

    def __repr__(self) -> str:
        state = "released" if self.released else "live"
        return f"AudioHandle({self.path.name}, {state})"


@dataclass(frozen=True)
class AudioState:
    """Per-message speech state: loading, ready(handle) or error(kind)."""

    status: AudioStatus
    handle: AudioHandle | None = None
    error: SpeechErrorKind | None = None

    @classmethod
    def loading(cls) -> "AudioState":
        return cls(status="loading")

    @classmethod
    def ready(cls, handle: AudioHandle) -> "AudioState":
        return cls(status="ready", handle=handle)

    @classmethod
    def failed(cls, kind: SpeechErrorKind) -> "AudioState":
        return cls(status="error", error=kind)

    @property
    def is_ready(self) -> bool:
        return self.status == "ready"
