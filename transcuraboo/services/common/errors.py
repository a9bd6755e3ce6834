"""
Error taxonomy for batch and live transcription.

Every error carries a human-readable message that is surfaced on the
job or session object that failed.
"""

from typing import Any


class TranscuraError(RuntimeError):
    """Base class for all transcription pipeline errors."""


class DecodeFailure(TranscuraError):
    """The audio source is malformed or in an unsupported format."""


class SegmentTranscriptionFailure(TranscuraError):
    """The transcription service returned an error sentinel or the request failed."""

    def __init__(self, message: str, segment_index: int | None = None):
        super().__init__(message)
        self.segment_index = segment_index


class ChannelFailure(TranscuraError):
    """The live streaming channel reported an error."""


class InputUnavailable(TranscuraError):
    """Microphone access was denied or no input device is available."""


class WaveFailure(TranscuraError):
    """
    Raised by the wave executor when any item of a wave fails.

    Attributes:
        failed_index: Index of the first failing item (lowest index in the wave)
        completed: (index, result) pairs of the items of that wave that succeeded
        cause: The exception raised by the failing item
    """

    def __init__(
        self,
        failed_index: int,
        completed: list[tuple[int, Any]],
        cause: BaseException,
    ):
        super().__init__(str(cause) or type(cause).__name__)
        self.failed_index = failed_index
        self.completed = completed
        self.cause = cause
