from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    import numpy as np

    from transcuraboo.context import Context
    from transcuraboo.services.audio_manager.manager import AudioSource
    from transcuraboo.services.transcription_job_manager.compiler import TranscriptionTurn
    from transcuraboo.services.transcription_job_manager.planner import Segment


# -------------------------------------------------------------- #
# Services Manager Class
# -------------------------------------------------------------- #


class ServicesManager:
    """Manager for handling multiple service instances."""

    def __init__(
        self,
        context: Context,
        logging_service: BaseAsyncLoggingService,
        ffmpeg_service_manager: BaseFFmpegServiceManager,
        audio_service_manager: BaseAudioServiceManager,
        transcription_job_manager: BaseTranscriptionJobManagerService | None = None,
        live_transcription_manager: BaseLiveTranscriptionServiceManager | None = None,
        transcript_export_manager: BaseTranscriptExportServiceManager | None = None,
    ):
        self.context = context
        self.server = context.server_manager

        self.logging_service = logging_service

        # Audio handling
        self.ffmpeg_service_manager = ffmpeg_service_manager
        self.audio_service_manager = audio_service_manager

        # Batch file transcription
        self.transcription_job_manager = transcription_job_manager

        # Real-time transcription
        self.live_transcription_manager = live_transcription_manager

        # Transcript files
        self.transcript_export_manager = transcript_export_manager

    async def initialize_all(self) -> None:
        """Initialize all service managers."""

        # Logging
        await self.logging_service.on_start(self)

        # Audio handling
        await self.ffmpeg_service_manager.on_start(self)
        await self.audio_service_manager.on_start(self)

        # Transcription job manager
        if self.transcription_job_manager:
            await self.transcription_job_manager.on_start(self)

        # Live transcription manager
        if self.live_transcription_manager:
            await self.live_transcription_manager.on_start(self)

        # Transcript export
        if self.transcript_export_manager:
            await self.transcript_export_manager.on_start(self)

    async def shutdown_all(self, timeout: float = 60.0) -> None:
        """
        Gracefully shutdown all service managers, waiting for ongoing work to complete.

        This method ensures that:
        1. No new work is accepted
        2. The active live session is stopped
        3. The job queue completes its current job
        4. All servers are disconnected
        5. All logs are flushed

        Args:
            timeout: Maximum time in seconds to wait for services to shutdown (default: 60s)
        """
        import asyncio

        await self.logging_service.info("Starting graceful shutdown of all services...")

        if self.context:
            self.context.mark_shutdown_started()

        try:
            # Phase 1: stop the live session (releases microphone and channel)
            if self.live_transcription_manager:
                await asyncio.wait_for(
                    self.live_transcription_manager.on_close(), timeout=timeout * 0.25
                )

            # Phase 2: let the active batch job finish
            if self.transcription_job_manager:
                await asyncio.wait_for(
                    self.transcription_job_manager.on_close(), timeout=timeout * 0.5
                )

            if self.transcript_export_manager:
                await self.transcript_export_manager.on_close()

            # Phase 3: audio services
            await self.audio_service_manager.on_close()
            await self.ffmpeg_service_manager.on_close()

            # Phase 4: disconnect from the transcription services
            if self.context and self.context.server_manager:
                await self.context.server_manager.disconnect_all()

            await self.logging_service.info("Graceful shutdown completed successfully")

        except asyncio.TimeoutError:
            await self.logging_service.error(
                f"Shutdown timeout exceeded ({timeout}s) - forcing shutdown"
            )
        except Exception as e:
            await self.logging_service.error(f"Error during shutdown: {e}")

        # Always flush and close logging (even if there were errors)
        try:
            await asyncio.wait_for(self.logging_service.on_close(), timeout=5.0)
        except asyncio.TimeoutError:
            pass  # Don't wait forever for logging to flush


# -------------------------------------------------------------- #
# Base Service Manager Class
# -------------------------------------------------------------- #


class Manager(ABC):
    """Base class for all manager services."""

    def __init__(self, context: Context):
        self.context = context
        self.server = context.server_manager
        self.services: ServicesManager | None = None

        # check if server has been initialized
        if self.server is not None and not self.server.is_initialized:
            raise RuntimeError(
                "ServerManager must be initialized before creating Manager instances."
            )

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        """Actions to perform on manager start."""
        self.services = services

    async def on_close(self) -> None:
        """Actions to perform on manager close."""
        pass


# -------------------------------------------------------------- #
# Specialized Manager Classes
# -------------------------------------------------------------- #


class BaseAsyncLoggingService(Manager):
    """Specialized manager for asynchronous logging services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def log(self, message: str, level: str = "INFO") -> None:
        """Log a message asynchronously."""
        pass

    @abstractmethod
    async def debug(self, message: str) -> None:
        """Log a debug message asynchronously."""
        pass

    @abstractmethod
    async def info(self, message: str) -> None:
        """Log an info message asynchronously."""
        pass

    @abstractmethod
    async def warning(self, message: str) -> None:
        """Log a warning message asynchronously."""
        pass

    @abstractmethod
    async def error(self, message: str) -> None:
        """Log an error message asynchronously."""
        pass

    @abstractmethod
    async def critical(self, message: str) -> None:
        """Log a critical message asynchronously."""
        pass


class BaseFFmpegServiceManager(Manager):
    """Specialized manager for FFmpeg services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    def get_ffmpeg_path(self) -> str:
        """Get the FFmpeg executable path."""
        pass

    @abstractmethod
    async def is_available(self) -> bool:
        """Whether the FFmpeg executable can be run."""
        pass

    @abstractmethod
    async def transcode_to_pcm(self, data: bytes) -> tuple[bytes, int, int]:
        """
        Transcode arbitrary container bytes into raw 16-bit little-endian PCM.

        Returns:
            Tuple of (pcm bytes, sample rate, channel count)

        Raises:
            DecodeFailure: if FFmpeg cannot read the input
        """
        pass


class BaseAudioServiceManager(Manager):
    """Specialized manager for decoding, slicing and encoding audio."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def decode(self, data: bytes, filename: str = "") -> AudioSource:
        """Decode raw file bytes into an AudioSource."""
        pass

    @abstractmethod
    def extract_segment(self, source: AudioSource, segment: Segment) -> np.ndarray:
        """Copy a segment's sample range into a standalone buffer."""
        pass

    @abstractmethod
    async def encode_transport_payload(self, samples: np.ndarray, sample_rate: int) -> str:
        """Encode samples as a base64 WAV payload."""
        pass


class BaseTranscriptionJobManagerService(Manager):
    """Base class for the batch transcription job manager service."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def submit_audio(self, filename: str, data: bytes) -> str:
        """Create a job for in-memory audio and queue it."""
        pass

    @abstractmethod
    async def submit_files(self, paths: list[str]) -> list[str]:
        """Create and queue one job per audio file path."""
        pass

    @abstractmethod
    async def get_job_status(self, job_id: str) -> dict:
        """Get the status of a specific job."""
        pass

    @abstractmethod
    async def get_queue_statistics(self) -> dict:
        """Get statistics about the job queue."""
        pass

    @abstractmethod
    def add_listener(self, callback: Callable[[Any], Any]) -> None:
        """Register a callback invoked whenever a job changes."""
        pass


class BaseLiveTranscriptionServiceManager(Manager):
    """Specialized manager for real-time transcription sessions."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def start_session(self) -> Any:
        """Start the single live session."""
        pass

    @abstractmethod
    async def stop_session(self) -> bool:
        """Stop the live session if one is recording."""
        pass


class BaseTranscriptExportServiceManager(Manager):
    """Specialized manager for writing transcripts to files."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    def render(self, turns: list[TranscriptionTurn], export_format: str) -> str:
        """Render turns in the given export format."""
        pass

    @abstractmethod
    async def export(
        self, turns: list[TranscriptionTurn], name: str, export_format: str = "txt"
    ) -> str:
        """Write turns to a file and return its path."""
        pass
