"""Per-message speech lifecycle for TomoSpeak.

Every assistant message gets an independent audio state. Speech fetches run
as background tasks so a slow synthesis never blocks the text conversation.
Fetches are never cancelled by newer work: a superseded or orphaned result is
released on arrival without touching state.

Ownership rules:
- the manager is the only owner of ``AudioHandle`` objects
- at most one live handle per message id
- every handle change goes through ``_transfer_handle``, which releases the
  previous handle before storing the next one
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

import aiofiles

from .errors import SpeechError, SpeechErrorKind
from .models import AudioHandle, AudioState, ChatMessage, SpeechAudio
from .speech_proxy import SpeechBackend

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/ogg": ".ogg",
    "audio/flac": ".flac",
}


class AudioPlayer(Protocol):
    """Plays an audio handle. May reject playback by raising."""

    async def play(self, handle: AudioHandle) -> None:
        """Start playback of ``handle``."""
        ...

    def stop(self) -> None:
        """Stop any current playback."""
        ...


class HandleFactory(Protocol):
    """Turns fetched audio bytes into an owned handle."""

    async def create(self, audio: SpeechAudio) -> AudioHandle:
        ...


class TempFileHandleFactory:
    """Writes each fetched clip to its own temporary file."""

    def __init__(self, directory: str | Path | None = None, prefix: str = "tomospeak-"):
        self.directory = Path(directory) if directory else None
        self.prefix = prefix

    async def create(self, audio: SpeechAudio) -> AudioHandle:
        media_type = audio.content_type.split(";")[0].strip().lower()
        suffix = _EXTENSIONS.get(media_type, ".bin")
        if self.directory is not None:
            self.directory.mkdir(parents=True, exist_ok=True)

        fd, path = tempfile.mkstemp(prefix=self.prefix, suffix=suffix, dir=self.directory)
        os.close(fd)
        try:
            async with aiofiles.open(path, "wb") as f:
                await f.write(audio.data)
        except BaseException:
            Path(path).unlink(missing_ok=True)
            raise
        return AudioHandle(Path(path), audio.content_type)


class AudioLifecycleManager:
    """Maps assistant messages to speech fetch/playback state."""

    def __init__(
        self,
        speech: SpeechBackend,
        player: AudioPlayer | None = None,
        handles: HandleFactory | None = None,
        autoplay: bool = True,
    ):
        """Initialize the manager.

        Args:
            speech: Speech proxy used for every fetch
            player: Playback device; None disables playback entirely
            handles: Factory producing owned audio handles
            autoplay: Whether ready targets are played automatically
        """
        self.speech = speech
        self.player = player
        self.handles = handles or TempFileHandleFactory()
        self.autoplay = autoplay

        self.states: dict[str, AudioState] = {}
        self._handles: dict[str, AudioHandle] = {}
        self._message_ids: set[str] = set()

        # Latest fetch per message; older fetches are stale on arrival
        self._fetch_tokens: dict[str, int] = {}
        self._token_counter = itertools.count(1)

        self._autoplay_target: str | None = None
        self._played: set[str] = set()

        self._tasks: set[asyncio.Task] = set()

    # --- Inspection ---

    @property
    def autoplay_target(self) -> str | None:
        return self._autoplay_target

    @property
    def live_handles(self) -> dict[str, AudioHandle]:
        """Snapshot of currently owned handles by message id."""
        return dict(self._handles)

    def get_state(self, message_id: str) -> AudioState | None:
        return self.states.get(message_id)

    def has_played(self, message_id: str) -> bool:
        return message_id in self._played

    # --- Ownership ---

    def _transfer_handle(self, message_id: str, handle: AudioHandle | None) -> None:
        """Release the current handle for ``message_id`` and store ``handle``."""
        previous = self._handles.pop(message_id, None)
        if previous is not None:
            previous.release()
        if handle is not None:
            self._handles[message_id] = handle

    def _forget(self, message_id: str) -> None:
        self._transfer_handle(message_id, None)
        self.states.pop(message_id, None)
        self._fetch_tokens.pop(message_id, None)
        self._played.discard(message_id)

    def _track_task(self, task: asyncio.Task) -> None:
        """Track a background fetch and drop it on completion."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _is_current(self, message_id: str, token: int) -> bool:
        return message_id in self._message_ids and self._fetch_tokens.get(message_id) == token

    # --- Fetching ---

    def ensure_audio(self, message: ChatMessage) -> asyncio.Task:
        """Start (or restart) the speech fetch for ``message``.

        Any existing state is superseded: its handle is released and the entry
        goes back to loading. Must be called from a running event loop.

        Returns:
            The background fetch task
        """
        self._message_ids.add(message.id)
        self._transfer_handle(message.id, None)
        token = next(self._token_counter)
        self._fetch_tokens[message.id] = token
        self.states[message.id] = AudioState.loading()

        task = asyncio.create_task(self._fetch(message, token), name=f"speech-{message.id}")
        self._track_task(task)
        return task

    async def _fetch(self, message: ChatMessage, token: int) -> None:
        try:
            audio = await self.speech.synthesize(message.content)
        except SpeechError as e:
            self._fail(message.id, token, e.kind)
            return
        except Exception as e:
            logger.warning(f"Speech fetch for {message.id} failed: {e}")
            self._fail(message.id, token, SpeechErrorKind.UNAVAILABLE)
            return

        try:
            handle = await self.handles.create(audio)
        except OSError as e:
            logger.warning(f"Could not store audio for {message.id}: {e}")
            self._fail(message.id, token, SpeechErrorKind.UNAVAILABLE)
            return

        if not self._is_current(message.id, token):
            logger.debug(f"Discarding stale audio for {message.id}")
            handle.release()
            return

        self._transfer_handle(message.id, handle)
        self.states[message.id] = AudioState.ready(handle)
        await self._maybe_autoplay(message.id)

    def _fail(self, message_id: str, token: int, kind: SpeechErrorKind) -> None:
        if not self._is_current(message_id, token):
            return
        logger.info(f"Audio unavailable for {message_id}: {kind.value}")
        self.states[message_id] = AudioState.failed(kind)

    # --- History changes ---

    def reconcile(self, current_message_ids: Iterable[str]) -> None:
        """Drop state and release handles for messages no longer in history."""
        current = set(current_message_ids)
        self._message_ids = current
        for message_id in list(self.states):
            if message_id not in current:
                self._forget(message_id)
        self._played &= current
        if self._autoplay_target not in current:
            self._autoplay_target = None

    def sync(self, messages: list[ChatMessage]) -> list[asyncio.Task]:
        """Reconcile with ``messages`` and fetch audio for new assistant messages."""
        self.reconcile(m.id for m in messages)
        return [
            self.ensure_audio(m)
            for m in messages
            if m.role == "assistant" and m.id not in self.states
        ]

    # --- Playback ---

    def set_autoplay_target(self, message_id: str | None) -> None:
        """Mark ``message_id`` to be played once its audio is ready."""
        self._autoplay_target = message_id
        if message_id is not None:
            self._played.discard(message_id)

    async def _maybe_autoplay(self, message_id: str) -> None:
        if self._autoplay_target != message_id or message_id in self._played:
            return
        state = self.states.get(message_id)
        if state is None or not state.is_ready:
            return

        self._played.add(message_id)
        self._autoplay_target = None
        if self.player is None or not self.autoplay:
            return
        try:
            await self.player.play(state.handle)
        except Exception as e:
            # Playback policy rejections leave the ready state as is
            logger.info(f"Autoplay for {message_id} was rejected: {e}")

    async def play(self, message_id: str) -> bool:
        """Play a ready message on demand.

        Returns:
            True if playback started
        """
        state = self.states.get(message_id)
        if self.player is None or state is None or not state.is_ready:
            return False
        try:
            await self.player.play(state.handle)
        except Exception as e:
            logger.warning(f"Playback for {message_id} failed: {e}")
            return False
        return True

    # --- Teardown ---

    def release_all(self) -> None:
        """Release every handle and forget all audio state."""
        for message_id in list(self._handles):
            self._transfer_handle(message_id, None)
        self.states.clear()
        self._fetch_tokens.clear()
        self._message_ids.clear()
        self._played.clear()
        self._autoplay_target = None

    async def drain(self) -> None:
        """Wait for all outstanding fetches to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding fetches, stop playback and release everything."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self.player is not None:
            self.player.stop()
        self.release_all()
