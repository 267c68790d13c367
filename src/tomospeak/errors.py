"""Error kinds for the lesson client and its proxies.

Each component has a closed set of failure kinds carried by one exception
type, so callers can match on ``error.kind`` instead of message strings.
"""

from enum import Enum


class SendErrorKind(str, Enum):
    """Why a controller send did not produce an assistant reply."""

    EMPTY_INPUT = "EMPTY_INPUT"
    MESSAGE_TOO_LONG = "MESSAGE_TOO_LONG"
    TIMEOUT = "TIMEOUT"
    SERVICE_FAILED = "AI_SERVICE_FAILED"

    @property
    def is_validation(self) -> bool:
        """Validation failures are rejected locally and never retried."""
        return self in (SendErrorKind.EMPTY_INPUT, SendErrorKind.MESSAGE_TOO_LONG)


class ConversationErrorKind(str, Enum):
    """Failure kinds of the conversation proxy."""

    INVALID_INPUT = "INVALID_INPUT"
    TIMEOUT = "TIMEOUT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    EMPTY_RESPONSE = "EMPTY_RESPONSE"


class SpeechErrorKind(str, Enum):
    """Failure kinds of the speech proxy."""

    EMPTY_TEXT = "EMPTY_TEXT"
    TEXT_TOO_LONG = "TEXT_TOO_LONG"
    UNAVAILABLE = "UNAVAILABLE"


# User-facing text for each send failure
SEND_ERROR_MESSAGES: dict[SendErrorKind, str] = {
    SendErrorKind.TIMEOUT: "The AI service is taking too long. Please retry.",
    SendErrorKind.SERVICE_FAILED: "The AI service failed. Please retry.",
    SendErrorKind.MESSAGE_TOO_LONG: "Your message is too long. Keep it under 2000 characters.",
    SendErrorKind.EMPTY_INPUT: "Type something to continue.",
}


class SendError(Exception):
    """Raised by the controller when a send fails."""

    def __init__(self, kind: SendErrorKind, detail: str | None = None):
        self.kind = kind
        self.detail = detail
        super().__init__(SEND_ERROR_MESSAGES[kind])


class ConversationError(Exception):
    """Raised by conversation proxies.

    ``code`` is the wire-level error string (e.g. ``MESSAGE_TOO_LONG``) used by
    the HTTP surface; ``kind`` is the closed classification.
    """

    def __init__(self, kind: ConversationErrorKind, code: str | None = None):
        self.kind = kind
        self.code = code or kind.value
        super().__init__(f"{kind.value}: {self.code}")


class SpeechError(Exception):
    """Raised by speech proxies."""

    def __init__(self, kind: SpeechErrorKind, detail: str | None = None):
        self.kind = kind
        self.detail = detail
        super().__init__(detail or kind.value)
