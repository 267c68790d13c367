"""Session-level state for a TomoSpeak lesson.

This tracks the in-memory view of the lesson that the controller mutates:
- Message history and lesson progress (mirrored to the LessonStore)
- The in-flight flag for the single outstanding send
- The retry-eligible pending message and the last error

Audio state is not kept here; the AudioLifecycleManager owns it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .errors import SendErrorKind
from .models import ChatMessage


@dataclass
class LessonSession:
    """Runtime state for one lesson session."""

    messages: list[ChatMessage] = field(default_factory=list)
    progress: int | None = None

    initialized: bool = False
    in_flight: bool = False

    pending_send: ChatMessage | None = None
    last_error: SendErrorKind | None = None

    # Bumped on reset so replies to an older history are dropped
    generation: int = 0

    @property
    def last_message(self) -> ChatMessage | None:
        return self.messages[-1] if self.messages else None

    @property
    def last_assistant(self) -> ChatMessage | None:
        """Most recent assistant message, if any."""
        for message in reversed(self.messages):
            if message.role == "assistant":
                return message
        return None

    @property
    def can_retry(self) -> bool:
        """A pending message exists and the last failure was a transport error."""
        return (
            self.pending_send is not None
            and self.last_error is not None
            and not self.last_error.is_validation
        )

    def message_ids(self) -> list[str]:
        return [m.id for m in self.messages]

    def start_over(self, greeting: ChatMessage) -> None:
        """Replace history with a single greeting and clear transient state."""
        self.messages = [greeting]
        self.progress = None
        self.pending_send = None
        self.last_error = None
        self.generation += 1
