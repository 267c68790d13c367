"""Tests for per-message speech lifecycle - with fake speech and player."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from tomospeak.audio_manager import AudioLifecycleManager, TempFileHandleFactory
from tomospeak.errors import SpeechError, SpeechErrorKind
from tomospeak.models import AudioHandle, ChatMessage, SpeechAudio


class FakeSpeech:
    """Speech proxy returning scripted outcomes, optionally held behind gates."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.gates: dict[int, asyncio.Event] = {}
        self.calls: list[str] = []

    async def synthesize(self, text: str) -> SpeechAudio:
        self.calls.append(text)
        call_number = len(self.calls)
        outcome = self.outcomes.pop(0) if self.outcomes else b"audio"
        gate = self.gates.get(call_number)
        if gate is not None:
            await gate.wait()
        if isinstance(outcome, Exception):
            raise outcome
        return SpeechAudio(outcome)


class CountingHandles:
    """Handle factory that records every handle it creates."""

    def __init__(self, directory: Path):
        self.directory = directory
        self.created: list[AudioHandle] = []

    async def create(self, audio: SpeechAudio) -> AudioHandle:
        handle = AudioHandle(self.directory / f"clip-{len(self.created)}.mp3", audio.content_type)
        self.created.append(handle)
        return handle

    @property
    def live(self) -> list[AudioHandle]:
        return [h for h in self.created if not h.released]


@pytest.fixture
def handles(tmp_path: Path):
    return CountingHandles(tmp_path)


@pytest.fixture
def player():
    player = MagicMock()
    player.play = AsyncMock()
    return player


def _assistant(text: str = "¡Hola!") -> ChatMessage:
    return ChatMessage.create("assistant", text)


class TestFetching:
    """Tests for fetch state transitions."""

    @pytest.mark.asyncio
    async def test_loading_then_ready(self, handles):
        manager = AudioLifecycleManager(FakeSpeech(), handles=handles)
        message = _assistant()

        manager.ensure_audio(message)
        assert manager.get_state(message.id).status == "loading"

        await manager.drain()
        state = manager.get_state(message.id)
        assert state.is_ready
        assert state.handle is handles.created[0]
        assert manager.live_handles == {message.id: state.handle}

    @pytest.mark.asyncio
    async def test_speech_error_sets_error_state(self, handles):
        speech = FakeSpeech([SpeechError(SpeechErrorKind.UNAVAILABLE, "TTS_FAILED")])
        manager = AudioLifecycleManager(speech, handles=handles)
        message = _assistant()

        manager.ensure_audio(message)
        await manager.drain()

        state = manager.get_state(message.id)
        assert state.status == "error"
        assert state.error == SpeechErrorKind.UNAVAILABLE
        assert handles.created == []

    @pytest.mark.asyncio
    async def test_unexpected_error_is_unavailable(self, handles):
        manager = AudioLifecycleManager(FakeSpeech([RuntimeError("boom")]), handles=handles)
        message = _assistant()

        manager.ensure_audio(message)
        await manager.drain()

        assert manager.get_state(message.id).error == SpeechErrorKind.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_retry_after_error(self, handles):
        """Error -> Loading -> Ready on a manual retry."""
        speech = FakeSpeech([SpeechError(SpeechErrorKind.UNAVAILABLE), b"ok"])
        manager = AudioLifecycleManager(speech, handles=handles)
        message = _assistant()

        manager.ensure_audio(message)
        await manager.drain()
        assert manager.get_state(message.id).status == "error"

        manager.ensure_audio(message)
        assert manager.get_state(message.id).status == "loading"
        await manager.drain()
        assert manager.get_state(message.id).is_ready
        assert len(handles.live) == 1

    @pytest.mark.asyncio
    async def test_refetch_releases_previous_handle(self, handles):
        manager = AudioLifecycleManager(FakeSpeech(), handles=handles)
        message = _assistant()

        manager.ensure_audio(message)
        await manager.drain()
        first = manager.get_state(message.id).handle

        manager.ensure_audio(message)
        assert first.released
        await manager.drain()

        assert len(handles.live) == 1
        assert manager.get_state(message.id).handle is handles.live[0]

    @pytest.mark.asyncio
    async def test_stale_fetch_is_released_on_arrival(self, handles):
        """A superseded fetch that finishes late never overwrites newer state."""
        speech = FakeSpeech([b"old", b"new"])
        gate = asyncio.Event()
        speech.gates[1] = gate
        manager = AudioLifecycleManager(speech, handles=handles)
        message = _assistant()

        manager.ensure_audio(message)
        await asyncio.sleep(0)
        await manager.ensure_audio(message)

        current = manager.get_state(message.id).handle
        assert manager.get_state(message.id).is_ready

        gate.set()
        await manager.drain()

        assert manager.get_state(message.id).handle is current
        assert handles.live == [current]
        assert all(h.released for h in handles.created if h is not current)

    @pytest.mark.asyncio
    async def test_stale_failure_is_ignored(self, handles):
        speech = FakeSpeech([SpeechError(SpeechErrorKind.UNAVAILABLE), b"new"])
        gate = asyncio.Event()
        speech.gates[1] = gate
        manager = AudioLifecycleManager(speech, handles=handles)
        message = _assistant()

        manager.ensure_audio(message)
        await asyncio.sleep(0)
        await manager.ensure_audio(message)

        gate.set()
        await manager.drain()
        assert manager.get_state(message.id).is_ready


class TestHistoryChanges:
    """Tests for reconcile/sync against message history."""

    @pytest.mark.asyncio
    async def test_sync_fetches_assistant_messages_once(self, handles):
        speech = FakeSpeech()
        manager = AudioLifecycleManager(speech, handles=handles)
        messages = [_assistant("one"), ChatMessage.create("user", "hi"), _assistant("two")]

        manager.sync(messages)
        await manager.drain()
        manager.sync(messages)
        await manager.drain()

        assert speech.calls == ["one", "two"]
        assert manager.get_state(messages[1].id) is None

    @pytest.mark.asyncio
    async def test_reconcile_releases_removed_messages(self, handles):
        manager = AudioLifecycleManager(FakeSpeech(), handles=handles)
        keep, drop = _assistant("keep"), _assistant("drop")
        manager.sync([keep, drop])
        await manager.drain()

        manager.reconcile([keep.id])

        assert manager.get_state(drop.id) is None
        assert set(manager.live_handles) == {keep.id}
        assert len(handles.live) == 1

    @pytest.mark.asyncio
    async def test_orphaned_fetch_is_released(self, handles):
        """A fetch for a message removed mid-flight releases its handle on arrival."""
        speech = FakeSpeech()
        gate = asyncio.Event()
        speech.gates[1] = gate
        manager = AudioLifecycleManager(speech, handles=handles)
        message = _assistant()

        manager.ensure_audio(message)
        await asyncio.sleep(0)
        manager.reconcile([])

        gate.set()
        await manager.drain()

        assert manager.get_state(message.id) is None
        assert len(handles.created) == 1
        assert handles.live == []

    @pytest.mark.asyncio
    async def test_reconcile_clears_missing_autoplay_target(self, handles):
        manager = AudioLifecycleManager(FakeSpeech(), handles=handles)
        manager.set_autoplay_target("gone")
        manager.reconcile([])
        assert manager.autoplay_target is None

    @pytest.mark.asyncio
    async def test_release_all(self, handles):
        manager = AudioLifecycleManager(FakeSpeech(), handles=handles)
        manager.sync([_assistant("a"), _assistant("b")])
        await manager.drain()

        manager.release_all()

        assert handles.live == []
        assert manager.states == {}
        assert manager.live_handles == {}


class TestAutoplay:
    """Tests for one-shot autoplay."""

    @pytest.mark.asyncio
    async def test_autoplays_target_once(self, handles, player):
        manager = AudioLifecycleManager(FakeSpeech(), player=player, handles=handles)
        message = _assistant()

        manager.set_autoplay_target(message.id)
        manager.ensure_audio(message)
        await manager.drain()

        handle = manager.get_state(message.id).handle
        player.play.assert_awaited_once_with(handle)
        assert manager.autoplay_target is None
        assert manager.has_played(message.id)

        # A later refetch of the same message is not autoplayed again
        manager.ensure_audio(message)
        await manager.drain()
        player.play.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_non_target_is_not_played(self, handles, player):
        manager = AudioLifecycleManager(FakeSpeech(), player=player, handles=handles)
        manager.sync([_assistant()])
        await manager.drain()
        player.play.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_autoplay_after_error_retry(self, handles, player):
        speech = FakeSpeech([SpeechError(SpeechErrorKind.UNAVAILABLE), b"ok"])
        manager = AudioLifecycleManager(speech, player=player, handles=handles)
        message = _assistant()

        manager.set_autoplay_target(message.id)
        manager.ensure_audio(message)
        await manager.drain()
        player.play.assert_not_awaited()

        manager.ensure_audio(message)
        await manager.drain()
        player.play.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rejected_playback_keeps_ready_state(self, handles, player):
        player.play.side_effect = PermissionError("autoplay blocked")
        manager = AudioLifecycleManager(FakeSpeech(), player=player, handles=handles)
        message = _assistant()

        manager.set_autoplay_target(message.id)
        manager.ensure_audio(message)
        await manager.drain()

        assert manager.get_state(message.id).is_ready
        assert manager.has_played(message.id)
        assert manager.autoplay_target is None

    @pytest.mark.asyncio
    async def test_autoplay_disabled(self, handles, player):
        manager = AudioLifecycleManager(
            FakeSpeech(), player=player, handles=handles, autoplay=False
        )
        message = _assistant()

        manager.set_autoplay_target(message.id)
        manager.ensure_audio(message)
        await manager.drain()

        player.play.assert_not_awaited()
        assert manager.autoplay_target is None

    @pytest.mark.asyncio
    async def test_manual_play(self, handles, player):
        manager = AudioLifecycleManager(FakeSpeech(), player=player, handles=handles)
        message = _assistant()

        assert await manager.play(message.id) is False

        manager.ensure_audio(message)
        await manager.drain()
        assert await manager.play(message.id) is True
        player.play.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_manual_play_without_player(self, handles):
        manager = AudioLifecycleManager(FakeSpeech(), handles=handles)
        message = _assistant()
        manager.ensure_audio(message)
        await manager.drain()
        assert await manager.play(message.id) is False


class TestTeardown:
    """Tests for shutdown."""

    @pytest.mark.asyncio
    async def test_aclose_cancels_and_releases(self, handles, player):
        speech = FakeSpeech()
        speech.gates[2] = asyncio.Event()
        manager = AudioLifecycleManager(speech, player=player, handles=handles)
        ready, pending = _assistant("ready"), _assistant("pending")

        await manager.ensure_audio(ready)
        manager.ensure_audio(pending)
        await asyncio.sleep(0)

        await manager.aclose()

        player.stop.assert_called_once()
        assert handles.live == []
        assert manager.states == {}
        assert not manager._tasks


class TestTempFileHandleFactory:
    """Tests for file-backed audio handles."""

    @pytest.mark.asyncio
    async def test_writes_and_releases_file(self, tmp_path: Path):
        factory = TempFileHandleFactory(tmp_path / "audio")
        handle = await factory.create(SpeechAudio(b"ID3data", "audio/mpeg"))

        assert handle.path.parent == tmp_path / "audio"
        assert handle.path.suffix == ".mp3"
        assert handle.path.read_bytes() == b"ID3data"

        handle.release()
        assert not handle.path.exists()
        assert handle.released

    @pytest.mark.asyncio
    async def test_unknown_media_type(self, tmp_path: Path):
        factory = TempFileHandleFactory(tmp_path)
        handle = await factory.create(SpeechAudio(b"x", "application/octet-stream"))
        assert handle.path.suffix == ".bin"
        handle.release()
