"""
Microphone capture and muted playback for live sessions.

sounddevice is imported when a device is opened rather than at module
import, since loading it requires the PortAudio shared library.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

import numpy as np

from transcuraboo.services.common.errors import InputUnavailable
from transcuraboo.utils import LiveTranscriptionConstants

logger = logging.getLogger(__name__)


def apply_gain(pcm: bytes, gain: float) -> bytes:
    """Scale 16-bit PCM by ``gain``; the output has the same length as the input."""
    whole = len(pcm) - len(pcm) % 2
    samples = np.frombuffer(pcm[:whole], dtype="<i2").astype(np.float32)
    scaled = np.clip(samples * gain, -32768, 32767).astype("<i2").tobytes()
    # A trailing half sample is rendered as silence
    return scaled + b"\x00" * (len(pcm) - whole)


# -------------------------------------------------------------- #
# Input
# -------------------------------------------------------------- #


class BaseAudioInput(ABC):
    """A source of fixed-size 16-bit mono PCM frames."""

    @abstractmethod
    async def open(self) -> None:
        """
        Acquire the device and begin capturing.

        Raises:
            InputUnavailable: if no input device can be opened
        """
        pass

    @abstractmethod
    async def read(self) -> bytes | None:
        """Next captured frame, or None once the input has been closed."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Stop capturing and release the device."""
        pass


class SoundDeviceMicrophone(BaseAudioInput):
    """Default system microphone captured through a PortAudio input stream."""

    def __init__(
        self,
        sample_rate: int = LiveTranscriptionConstants.INPUT_SAMPLE_RATE,
        channels: int = LiveTranscriptionConstants.INPUT_CHANNELS,
        frame_samples: int = LiveTranscriptionConstants.FRAME_SAMPLES,
        max_pending_frames: int = LiveTranscriptionConstants.MAX_PENDING_FRAMES,
        device: int | str | None = None,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.frame_samples = frame_samples
        self.device = device

        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=max_pending_frames)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stream = None
        self._dropped_frames = 0

    async def open(self) -> None:
        self._loop = asyncio.get_running_loop()
        try:
            import sounddevice as sd
        except OSError as e:
            raise InputUnavailable(f"Audio input is not supported: {e}") from e

        try:
            self._stream = sd.RawInputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=self.frame_samples,
                callback=self._audio_callback,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self._stream = None
            raise InputUnavailable(f"Could not open microphone: {e}") from e

        logger.info(
            "Microphone capture started: %s Hz, %s ch, %s samples per frame",
            self.sample_rate,
            self.channels,
            self.frame_samples,
        )

    def _audio_callback(self, indata, frames, time, status) -> None:
        if status:
            logger.warning("Audio callback status: %s", status)
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._enqueue, bytes(indata))

    def _enqueue(self, frame: bytes | None) -> None:
        if self._queue.full():
            # Drop the oldest frame rather than stall the capture thread
            self._queue.get_nowait()
            self._dropped_frames += 1
            if self._dropped_frames % 16 == 1:
                logger.warning("Dropped %s captured frames", self._dropped_frames)
        self._queue.put_nowait(frame)

    async def read(self) -> bytes | None:
        return await self._queue.get()

    async def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()
            logger.info("Microphone capture stopped")
        self._enqueue(None)


# -------------------------------------------------------------- #
# Output
# -------------------------------------------------------------- #


class BaseAudioOutput(ABC):
    """A sink for 16-bit mono PCM emitted by the live service."""

    @abstractmethod
    async def open(self) -> None:
        pass

    @abstractmethod
    async def play(self, pcm: bytes) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class MutedSoundDevicePlayback(BaseAudioOutput):
    """
    Plays service audio through an output stream at zero gain.

    The audio is consumed and rendered silently so the live channel keeps
    flowing; nothing is audible.
    """

    def __init__(
        self,
        sample_rate: int = LiveTranscriptionConstants.OUTPUT_SAMPLE_RATE,
        channels: int = LiveTranscriptionConstants.OUTPUT_CHANNELS,
        gain: float = LiveTranscriptionConstants.OUTPUT_GAIN,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.gain = gain
        self._stream = None
        self._write_lock = asyncio.Lock()

    async def open(self) -> None:
        try:
            import sounddevice as sd

            stream = sd.RawOutputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
            )
            stream.start()
        except Exception as e:
            # Service audio is then consumed without rendering
            logger.warning("Muted output unavailable, service audio will not be rendered: %s", e)
            return
        self._stream = stream

    async def play(self, pcm: bytes) -> None:
        if self._stream is None:
            return
        muted = apply_gain(pcm, self.gain)
        loop = asyncio.get_running_loop()
        async with self._write_lock:
            await loop.run_in_executor(None, self._stream.write, muted)

    async def close(self) -> None:
        async with self._write_lock:
            stream, self._stream = self._stream, None
            if stream is not None:
                stream.stop()
                stream.close()

