import asyncio
import subprocess
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from transcuraboo.context import Context

from transcuraboo.services.common.errors import DecodeFailure
from transcuraboo.services.manager import BaseFFmpegServiceManager

# -------------------------------------------------------------- #
# FFmpeg Handler
# -------------------------------------------------------------- #


class FFmpegHandler:
    def __init__(self, ffmpeg_path: str, timeout: float = 300.0):
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout

    # -------------------------------------------------------------- #
    # FFmpeg Management Methods
    # -------------------------------------------------------------- #

    async def validate_ffmpeg(self) -> bool:
        """Validate that FFmpeg is installed and accessible."""
        try:
            loop = asyncio.get_running_loop()
            result = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: subprocess.run(
                        [self.ffmpeg_path, "-version"],
                        capture_output=True,
                        timeout=5,
                    ),
                ),
                timeout=6.0,  # Slightly longer than subprocess timeout
            )
            return result.returncode == 0
        except (OSError, subprocess.TimeoutExpired, asyncio.TimeoutError):
            return False

    # -------------------------------------------------------------- #
    # Media Conversion Methods
    # -------------------------------------------------------------- #

    async def convert_bytes(self, data: bytes, options: dict) -> tuple[bool, bytes, str]:
        """
        Convert in-memory media using FFmpeg pipes.

        Args:
            data: Input container bytes (fed on stdin)
            options: Output options (e.g. {'-f': 'wav', '-acodec': 'pcm_s16le'})

        Returns:
            Tuple of (success: bool, stdout bytes, stderr text)
        """
        cmd = [self.ffmpeg_path, "-hide_banner", "-loglevel", "error", "-i", "pipe:0"]
        for key, value in options.items():
            cmd.append(key)
            if value is not None:
                cmd.append(str(value))
        cmd.append("pipe:1")

        try:
            loop = asyncio.get_running_loop()
            result = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: subprocess.run(
                        cmd,
                        input=data,
                        capture_output=True,
                        timeout=self.timeout,
                    ),
                ),
                timeout=self.timeout + 10.0,
            )
        except (subprocess.TimeoutExpired, asyncio.TimeoutError):
            return False, b"", "FFmpeg process timed out"
        except OSError as e:
            return False, b"", str(e)

        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        return result.returncode == 0, result.stdout, stderr


# -------------------------------------------------------------- #
# FFmpeg Manager Service
# -------------------------------------------------------------- #


class FFmpegManagerService(BaseFFmpegServiceManager):
    """Service for transcoding containers soundfile cannot read."""

    PCM_SAMPLE_RATE = 16000
    PCM_CHANNELS = 1
    PCM_OPTIONS = {
        "-vn": None,
        "-f": "s16le",
        "-acodec": "pcm_s16le",
        "-ar": PCM_SAMPLE_RATE,
        "-ac": PCM_CHANNELS,
    }

    def __init__(self, context: "Context", ffmpeg_path: str = "ffmpeg"):
        super().__init__(context)

        self.ffmpeg_path = ffmpeg_path
        self.handler = FFmpegHandler(ffmpeg_path)
        self._available: bool | None = None

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)

        self._available = await self.handler.validate_ffmpeg()
        if self._available:
            await self.services.logging_service.info(
                f"FFmpeg validated at path: {self.ffmpeg_path}"
            )
        else:
            await self.services.logging_service.warning(
                f"FFmpeg validation failed at path: {self.ffmpeg_path}; "
                "only natively supported containers can be decoded"
            )

    # -------------------------------------------------------------- #
    # FFmpeg Methods
    # -------------------------------------------------------------- #

    def get_ffmpeg_path(self) -> str:
        return self.ffmpeg_path

    async def is_available(self) -> bool:
        if self._available is None:
            self._available = await self.handler.validate_ffmpeg()
        return self._available

    async def transcode_to_pcm(self, data: bytes) -> tuple[bytes, int, int]:
        """
        Transcode arbitrary container bytes into raw 16-bit little-endian PCM.

        Returns:
            Tuple of (pcm bytes, sample rate, channel count)

        Raises:
            DecodeFailure: if FFmpeg is missing or cannot read the input
        """
        if not await self.is_available():
            raise DecodeFailure(f"FFmpeg is not available at {self.ffmpeg_path}")

        success, output, stderr = await self.handler.convert_bytes(data, self.PCM_OPTIONS)
        if not success or not output:
            raise DecodeFailure(f"FFmpeg could not decode audio: {stderr or 'no output'}")
        return output, self.PCM_SAMPLE_RATE, self.PCM_CHANNELS
