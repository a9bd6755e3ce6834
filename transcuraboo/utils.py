import logging
import os
import uuid
from datetime import datetime
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Constants
# -------------------------------------------------------------- #


JOB_ID_SUFFIX_LENGTH = 8  # random suffix appended to job ids


class TranscriptionConstants:
    """Configuration constants for batch file transcription."""

    # Segmenting and dispatch (overridable through the environment)
    CHUNK_SIZE_SECONDS = 20  # Smaller chunks give faster feedback
    CONCURRENCY_LIMIT = 10  # Segment requests in flight per wave

    # Progress bookkeeping
    DECODE_PROGRESS = 5  # reserved for decoding the source
    TRANSCRIBE_PROGRESS_SPAN = 90  # spread across the waves
    DONE_PROGRESS = 100

    # Transport
    TRANSPORT_MIME_TYPE = "audio/wav"
    ERROR_MARKER = "Error:"

    TRANSCRIBE_INSTRUCTION = (
        "Transcribe the following audio. The language is likely English or Filipino. "
        "Please accurately detect the language and provide only the transcription text. "
        "This may be a segment of a larger audio file. "
        "Do not add any extra commentary or formatting."
    )


class LiveTranscriptionConstants:
    """Configuration constants for real-time transcription."""

    # Microphone capture (16 kHz mono, ~0.25s per frame)
    INPUT_SAMPLE_RATE = 16000
    INPUT_CHANNELS = 1
    FRAME_SAMPLES = 4096
    INPUT_MIME_TYPE = f"audio/pcm;rate={INPUT_SAMPLE_RATE}"

    # Audio emitted by the live service, played back muted
    OUTPUT_SAMPLE_RATE = 24000
    OUTPUT_CHANNELS = 1
    OUTPUT_GAIN = 0.0

    # Capture queue bound (~16s of frames) before frames are dropped
    MAX_PENDING_FRAMES = 64

    SYSTEM_INSTRUCTION = """You are an expert real-time transcriptionist, specializing in mixed-language conversations involving English and Filipino (Tagalog). Your primary goal is to produce a clean, accurate, and highly readable transcript.

Follow these instructions carefully:
1.  **Language Handling**: The user will switch between English and Filipino. Transcribe the words exactly as they are spoken in their original language. For Filipino words, use the standard English alphabet (do not use any special characters or diacritics). **Do not translate** the content.
2.  **Contextual Accuracy**: Pay close attention to the context of the entire conversation to resolve ambiguities. For example, correctly distinguish between words that sound similar (e.g., "their," "there," "they're") based on the surrounding dialogue.
3.  **Formatting**: Apply proper punctuation (periods, commas, question marks), capitalization, and create new paragraphs where appropriate to structure the text for readability.
4.  **Output**: Provide only the transcribed text. Do not include any additional commentary, notes, or language tags."""


# -------------------------------------------------------------- #
# Generators
# -------------------------------------------------------------- #


def generate_variable_char_uuid(length: int) -> str:
    """Generate a unique identifier of specified length."""
    if length <= 0 or length > 32:
        raise ValueError("Length must be between 1 and 32")
    return uuid.uuid4().hex[:length]


def generate_job_id(filename: str) -> str:
    """Generate a job id from a file name plus a random suffix."""
    stem = os.path.basename(filename) or "audio"
    return f"{stem}-{generate_variable_char_uuid(JOB_ID_SUFFIX_LENGTH)}"


# -------------------------------------------------------------- #
# Util Functions
# -------------------------------------------------------------- #


def get_current_timestamp() -> datetime:
    """Get the current local timestamp."""
    return datetime.now(ZoneInfo(os.getenv("TRANSCURABOO_TIMEZONE", "UTC")))


def format_display_timestamp(total_seconds: float) -> str:
    """
    Format an elapsed time for display.

    Returns MM:SS, or HH:MM:SS once the time reaches one hour.
    """
    total = max(0, int(total_seconds))
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"


def env_int(name: str, default: int) -> int:
    """Read a positive integer from the environment, falling back to the default."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer value for {name}: {raw!r}")
        return default
    if value <= 0:
        logger.warning(f"Ignoring non-positive value for {name}: {value}")
        return default
    return value
