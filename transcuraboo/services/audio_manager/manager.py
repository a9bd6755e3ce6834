"""
Audio decode, slice and transport-encode service.

Decoded audio is held in memory as float32 frames of shape
(total_samples, channels). Segments are copied out of that buffer and
wrapped as 16-bit PCM WAV before being base64-encoded for the
transcription service.
"""

import asyncio
import base64
import io
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
import soundfile as sf

if TYPE_CHECKING:
    from transcuraboo.context import Context
    from transcuraboo.services.transcription_job_manager.planner import Segment

from transcuraboo.services.common.errors import DecodeFailure
from transcuraboo.services.manager import BaseAudioServiceManager

# -------------------------------------------------------------- #
# Audio Source
# -------------------------------------------------------------- #


@dataclass(frozen=True)
class AudioSource:
    """Decoded audio with its format description."""

    sample_rate: int
    channels: int
    total_samples: int
    samples: np.ndarray = field(repr=False, compare=False)

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return self.total_samples / self.sample_rate

    @classmethod
    def from_frames(cls, frames: np.ndarray, sample_rate: int) -> "AudioSource":
        """Build a source from a (samples,) or (samples, channels) array."""
        if frames.ndim == 1:
            frames = frames.reshape(-1, 1)
        frames = np.ascontiguousarray(frames, dtype=np.float32)
        return cls(
            sample_rate=int(sample_rate),
            channels=int(frames.shape[1]),
            total_samples=int(frames.shape[0]),
            samples=frames,
        )


def pcm16_to_float32(pcm: bytes, channels: int = 1) -> np.ndarray:
    """Convert interleaved 16-bit little-endian PCM to float32 frames."""
    data = np.frombuffer(pcm, dtype="<i2").astype(np.float32) / 32768.0
    usable = len(data) - (len(data) % channels)
    return data[:usable].reshape(-1, channels)


# -------------------------------------------------------------- #
# Audio Manager Service
# -------------------------------------------------------------- #


class AudioManagerService(BaseAudioServiceManager):
    """Service that turns uploaded bytes into segment payloads."""

    def __init__(self, context: "Context"):
        super().__init__(context)

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("AudioManagerService initialized")

    # -------------------------------------------------------------- #
    # Decoding
    # -------------------------------------------------------------- #

    async def decode(self, data: bytes, filename: str = "") -> AudioSource:
        """
        Decode raw file bytes into an AudioSource.

        Containers libsndfile understands are decoded directly. Anything
        else is transcoded to PCM by the FFmpeg service first.

        Raises:
            DecodeFailure: if the bytes cannot be decoded as audio
        """
        if not data:
            raise DecodeFailure(f"Audio file is empty: {filename or '<memory>'}")

        loop = asyncio.get_running_loop()
        try:
            frames, sample_rate = await loop.run_in_executor(None, self._read_native, data)
            return AudioSource.from_frames(frames, sample_rate)
        except (sf.LibsndfileError, RuntimeError, TypeError) as e:
            native_error = e

        await self.services.logging_service.debug(
            f"soundfile could not read {filename or '<memory>'} ({native_error}); "
            "falling back to FFmpeg"
        )

        ffmpeg = self.services.ffmpeg_service_manager
        if not await ffmpeg.is_available():
            raise DecodeFailure(
                f"Unsupported audio format for {filename or '<memory>'}: {native_error}"
            )

        pcm, sample_rate, channels = await ffmpeg.transcode_to_pcm(data)
        frames = await loop.run_in_executor(None, pcm16_to_float32, pcm, channels)
        return AudioSource.from_frames(frames, sample_rate)

    @staticmethod
    def _read_native(data: bytes) -> tuple[np.ndarray, int]:
        frames, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
        return frames, sample_rate

    # -------------------------------------------------------------- #
    # Slicing and Encoding
    # -------------------------------------------------------------- #

    def extract_segment(self, source: AudioSource, segment: "Segment") -> np.ndarray:
        """Copy a segment's sample range into a standalone buffer."""
        return source.samples[segment.start_sample : segment.end_sample].copy()

    async def encode_transport_payload(self, samples: np.ndarray, sample_rate: int) -> str:
        """Encode samples as a base64 16-bit PCM WAV payload."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, encode_wav_base64, samples, sample_rate)


def encode_wav_base64(samples: np.ndarray, sample_rate: int) -> str:
    """Wrap samples in a 16-bit PCM WAV container and base64-encode it."""
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format="WAV", subtype="PCM_16")
    return base64.b64encode(buffer.getvalue()).decode("ascii")
