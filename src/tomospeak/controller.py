"""Conversation controller: the lesson's orchestration core.

Owns message history and progress, drives send/retry/reset, and keeps the
audio manager in step with history. At most one send is outstanding: the
in-flight flag is checked and set with no await in between, and it is cleared
in a ``finally`` so every send releases it exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Literal

from .audio_manager import AudioLifecycleManager
from .config import MAX_MESSAGE_LENGTH
from .conversation_proxy import ConversationBackend
from .errors import ConversationError, ConversationErrorKind, SendError, SendErrorKind
from .models import ChatMessage, clamp_progress
from .prompts import FIRST_ASSISTANT_MESSAGE
from .session_state import LessonSession
from .state import LessonStore

logger = logging.getLogger(__name__)

ControllerEvent = Literal["history", "progress", "in_flight", "error"]
ControllerListener = Callable[[ControllerEvent], None]


class ConversationController:
    """Single-user lesson controller."""

    def __init__(
        self,
        store: LessonStore,
        conversation: ConversationBackend,
        audio: AudioLifecycleManager,
        request_timeout: float = 20.0,
        greeting: str = FIRST_ASSISTANT_MESSAGE,
    ):
        """Initialize the controller.

        Args:
            store: Persistence for history and progress
            conversation: Conversation proxy answering each turn
            audio: Audio manager notified of every history change
            request_timeout: Wall-clock budget for one conversation request
            greeting: First assistant message of a fresh lesson
        """
        self.store = store
        self.conversation = conversation
        self.audio = audio
        self.request_timeout = request_timeout
        self.greeting = greeting
        self.session = LessonSession()
        self._listeners: list[ControllerListener] = []

    # --- Observable state ---

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self.session.messages)

    @property
    def progress(self) -> int | None:
        return self.session.progress

    @property
    def in_flight(self) -> bool:
        return self.session.in_flight

    @property
    def pending_send(self) -> ChatMessage | None:
        return self.session.pending_send

    @property
    def last_error(self) -> SendErrorKind | None:
        return self.session.last_error

    @property
    def last_assistant(self) -> ChatMessage | None:
        return self.session.last_assistant

    @property
    def can_retry(self) -> bool:
        return self.session.can_retry

    def add_listener(self, callback: ControllerListener) -> None:
        """Add a callback notified with the kind of each state change."""
        self._listeners.append(callback)

    def remove_listener(self, callback: ControllerListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, event: ControllerEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Controller listener failed on {event}: {e}")

    # --- Lifecycle ---

    async def initialize(self) -> list[ChatMessage]:
        """Load the persisted lesson, or start one with the greeting.

        Safe to call more than once; later calls return the current history.
        """
        if self.session.initialized:
            return self.messages

        messages = self.store.load_messages()
        self.session.progress = self.store.load_progress()
        if not messages:
            messages = [ChatMessage.create("assistant", self.greeting)]
            self.store.save_messages(messages)

        self.session.messages = messages
        self.session.initialized = True
        self.audio.sync(self.session.messages)

        self._notify("history")
        self._notify("progress")
        return self.messages

    async def reset(self) -> list[ChatMessage]:
        """Discard the lesson and start over with a fresh greeting."""
        self.audio.release_all()
        self.store.clear_messages()
        self.store.save_progress(None)

        self.session.start_over(ChatMessage.create("assistant", self.greeting))
        self.session.initialized = True
        self.store.save_messages(self.session.messages)
        self.audio.sync(self.session.messages)

        self._notify("history")
        self._notify("progress")
        self._notify("error")
        return self.messages

    async def teardown(self) -> None:
        """Release audio resources; the store is closed by its owner."""
        await self.audio.aclose()

    # --- Sending ---

    async def send(self, content: str, is_retry: bool = False) -> ChatMessage | None:
        """Send a user message and wait for the assistant reply.

        Args:
            content: Message text (ignored for retries, which resend the
                pending message unchanged)
            is_retry: Resubmit the pending message instead of appending a new one

        Returns:
            The new assistant message, or None when the send was a no-op
            (another send in flight, nothing to retry, or the lesson was reset
            while waiting)

        Raises:
            SendError: EMPTY_INPUT, MESSAGE_TOO_LONG, TIMEOUT or SERVICE_FAILED
        """
        session = self.session
        if session.in_flight:
            logger.debug("Send ignored: a request is already in flight")
            return None
        if not session.initialized:
            raise RuntimeError("initialize() must be called before send()")

        pending = session.pending_send if is_retry else None
        if is_retry and pending is None:
            return None

        text = (pending.content if pending else content or "").strip()
        if not text:
            self._reject(SendErrorKind.EMPTY_INPUT)
        if len(text) > MAX_MESSAGE_LENGTH:
            self._reject(SendErrorKind.MESSAGE_TOO_LONG)

        session.in_flight = True
        session.last_error = None
        self.audio.set_autoplay_target(None)
        generation = session.generation
        try:
            if pending is None:
                message = ChatMessage.create("user", text)
                session.messages = [*session.messages, message]
                session.pending_send = message
                self.store.save_messages(session.messages)
                self._notify("history")
            self._notify("in_flight")
            return await self._exchange(generation)
        finally:
            session.in_flight = False
            self._notify("in_flight")

    async def retry(self) -> ChatMessage | None:
        """Resubmit the pending message after a failed exchange."""
        pending = self.session.pending_send
        if pending is None:
            return None
        return await self.send(pending.content, is_retry=True)

    def _reject(self, kind: SendErrorKind) -> None:
        self.session.last_error = kind
        self._notify("error")
        raise SendError(kind)

    def _fail(self, generation: int, kind: SendErrorKind, cause: BaseException) -> None:
        """Record and raise a transport failure unless the lesson was reset."""
        if generation != self.session.generation:
            logger.info(f"Ignoring {kind.value} for a lesson that was reset")
            return
        self.session.last_error = kind
        self._notify("error")
        raise SendError(kind, str(cause) or None) from cause

    async def _exchange(self, generation: int) -> ChatMessage | None:
        session = self.session
        payload = [m.to_payload() for m in session.messages]

        try:
            reply = await asyncio.wait_for(
                self.conversation.complete(payload), timeout=self.request_timeout
            )
        except TimeoutError as e:
            logger.warning(f"Conversation request exceeded {self.request_timeout}s")
            self._fail(generation, SendErrorKind.TIMEOUT, e)
            return None
        except ConversationError as e:
            logger.warning(f"Conversation request failed: {e}")
            kind = (
                SendErrorKind.TIMEOUT
                if e.kind == ConversationErrorKind.TIMEOUT
                else SendErrorKind.SERVICE_FAILED
            )
            self._fail(generation, kind, e)
            return None
        except Exception as e:
            logger.exception("Unexpected conversation failure")
            self._fail(generation, SendErrorKind.SERVICE_FAILED, e)
            return None

        if generation != session.generation:
            logger.info("Dropping reply for a lesson that was reset")
            return None

        content = (reply.content or "").strip() if reply is not None else ""
        if not content:
            self._fail(generation, SendErrorKind.SERVICE_FAILED, ValueError("empty reply"))
            return None

        assistant = ChatMessage.create("assistant", content)
        session.messages = [*session.messages, assistant]
        session.pending_send = None
        self.store.save_messages(session.messages)

        if reply.progress is not None:
            session.progress = clamp_progress(reply.progress)
            self.store.save_progress(session.progress)
            self._notify("progress")

        self.audio.set_autoplay_target(assistant.id)
        self.audio.sync(session.messages)
        self._notify("history")
        return assistant
