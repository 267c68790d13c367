"""Local speaker playback for lesson audio."""

import asyncio
import logging

import numpy as np
import sounddevice as sd
import soundfile as sf

from .models import AudioHandle

logger = logging.getLogger(__name__)


class SoundDevicePlayer:
    """Plays audio handles on the default (or named) output device.

    ``play`` returns once playback has started; a new clip interrupts the
    previous one.
    """

    def __init__(self, device: str | int | None = None, volume: float = 1.0):
        """Initialize the player.

        Args:
            device: sounddevice output device name or index
            volume: Linear gain applied before playback (0.0-1.0)
        """
        self.device = device
        self.volume = volume

    async def play(self, handle: AudioHandle) -> None:
        """Decode ``handle`` and start playback.

        Raises:
            RuntimeError: If the handle was already released
        """
        if handle.released:
            raise RuntimeError(f"{handle!r} was released")

        data, sample_rate = await asyncio.to_thread(sf.read, str(handle.path), dtype="float32")
        if self.volume != 1.0:
            data = np.clip(data * self.volume, -1.0, 1.0)

        logger.debug(f"Playing {handle.path.name} ({len(data) / sample_rate:.1f}s)")
        sd.play(data, sample_rate, device=self.device)

    def stop(self) -> None:
        """Stop playback."""
        sd.stop()
