import os
from collections.abc import Callable
from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from transcuraboo.context import Context
    from transcuraboo.services.live_transcription_manager.audio_devices import (
        BaseAudioInput,
        BaseAudioOutput,
    )

from transcuraboo.constructor import ServerManagerType
from transcuraboo.services.audio_manager.manager import AudioManagerService
from transcuraboo.services.ffmpeg_manager.manager import FFmpegManagerService
from transcuraboo.services.live_transcription_manager.manager import (
    LiveTranscriptionManagerService,
)
from transcuraboo.services.logger import AsyncLoggingService
from transcuraboo.services.manager import ServicesManager
from transcuraboo.services.transcript_export_manager.manager import (
    TranscriptExportManagerService,
)
from transcuraboo.services.transcription_job_manager.manager import (
    TranscriptionJobManagerService,
)
from transcuraboo.utils import TranscriptionConstants, env_int

# prefer a project-local .env.local file, then the process environment
load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Services Manager
# -------------------------------------------------------------- #


def construct_services_manager(
    service_type: ServerManagerType,
    context: "Context",
    default_logging_path: str | None = None,
    log_file: str | None = None,
    use_timestamp_logs: bool = True,
    console_logs: bool = True,
    chunk_seconds: float | None = None,
    concurrency: int | None = None,
    input_factory: "Callable[[], BaseAudioInput] | None" = None,
    output_factory: "Callable[[], BaseAudioOutput] | None" = None,
    export_path: str | None = None,
) -> ServicesManager:
    """Construct and return a services manager for the given environment type.

    Args:
        service_type: Type of server manager (DEVELOPMENT, PRODUCTION or TESTING)
        context: Context instance containing the connected server manager
        default_logging_path: Directory to store log files (default: LOG_DIR or "logs")
        log_file: Specific log file name (optional, overrides use_timestamp_logs)
        use_timestamp_logs: If True and log_file is None, creates timestamped log files
        console_logs: Echo service log lines to stdout
        chunk_seconds: Segment length (default: CHUNK_SIZE_SECONDS or 20)
        concurrency: Segment requests per wave (default: CONCURRENCY_LIMIT or 10)
        input_factory: Builds the live session microphone
        output_factory: Builds the live session muted output
        export_path: Directory for exported transcripts (default: EXPORT_DIR or "exports")
    """
    if service_type not in (
        ServerManagerType.DEVELOPMENT,
        ServerManagerType.PRODUCTION,
        ServerManagerType.TESTING,
    ):
        raise ValueError(f"Unsupported service type: {service_type}")

    # create logger
    logging_service = AsyncLoggingService(
        context=context,
        log_dir=default_logging_path or os.getenv("LOG_DIR", "logs"),
        log_file=log_file,
        use_timestamp=use_timestamp_logs,
        console_output=console_logs,
        min_level="DEBUG" if service_type == ServerManagerType.DEVELOPMENT else "INFO",
    )

    # -------------------------------------------------------------- #
    # Audio Services Setup
    # -------------------------------------------------------------- #

    ffmpeg_service_manager = FFmpegManagerService(
        context=context, ffmpeg_path=os.getenv("FFMPEG_PATH", "ffmpeg")
    )
    audio_service_manager = AudioManagerService(context=context)

    # -------------------------------------------------------------- #
    # Transcription Job Manager Setup
    # -------------------------------------------------------------- #

    transcription_job_manager = TranscriptionJobManagerService(
        context=context,
        chunk_seconds=chunk_seconds
        or env_int("CHUNK_SIZE_SECONDS", TranscriptionConstants.CHUNK_SIZE_SECONDS),
        concurrency=concurrency
        or env_int("CONCURRENCY_LIMIT", TranscriptionConstants.CONCURRENCY_LIMIT),
    )

    # -------------------------------------------------------------- #
    # Live Transcription Manager Setup
    # -------------------------------------------------------------- #

    live_kwargs = {}
    if input_factory is not None:
        live_kwargs["input_factory"] = input_factory
    if output_factory is not None:
        live_kwargs["output_factory"] = output_factory
    live_transcription_manager = LiveTranscriptionManagerService(context=context, **live_kwargs)

    # -------------------------------------------------------------- #
    # Transcript Export Setup
    # -------------------------------------------------------------- #

    transcript_export_manager = TranscriptExportManagerService(
        context=context, export_path=export_path or os.getenv("EXPORT_DIR", "exports")
    )

    return ServicesManager(
        context=context,
        logging_service=logging_service,
        ffmpeg_service_manager=ffmpeg_service_manager,
        audio_service_manager=audio_service_manager,
        transcription_job_manager=transcription_job_manager,
        live_transcription_manager=live_transcription_manager,
        transcript_export_manager=transcript_export_manager,
    )
