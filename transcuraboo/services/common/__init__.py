"""Common service utilities and base classes."""

from transcuraboo.services.common.errors import (
    ChannelFailure,
    DecodeFailure,
    InputUnavailable,
    SegmentTranscriptionFailure,
    TranscuraError,
    WaveFailure,
)
from transcuraboo.services.common.job import Job, JobQueue, JobStatus
from transcuraboo.services.common.waves import run_in_waves

__all__ = [
    "ChannelFailure",
    "DecodeFailure",
    "InputUnavailable",
    "Job",
    "JobQueue",
    "JobStatus",
    "SegmentTranscriptionFailure",
    "TranscuraError",
    "WaveFailure",
    "run_in_waves",
]
