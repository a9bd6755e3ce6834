"""
Transcription result aggregation.

Segment results arrive out of order within a wave; the compiled
transcript is always the set of known results sorted by start time.
"""

from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class TranscriptionTurn:
    """One timestamped piece of transcript."""

    start_time: float
    end_time: float
    text: str

    def to_dict(self) -> dict:
        return {"start_time": self.start_time, "end_time": self.end_time, "text": self.text}


def compile_transcript(results: Iterable[TranscriptionTurn | None]) -> list[TranscriptionTurn]:
    """
    Merge known segment results into a transcript ordered by start time.

    Entries that are None (segments without a result yet) are skipped.
    The sort is stable, so repeated calls over a growing result set only
    ever extend the transcript.
    """
    return sorted((turn for turn in results if turn is not None), key=lambda t: t.start_time)


def compute_progress(processed: int, total: int, base: int = 5, span: int = 90) -> int:
    """Progress percentage after ``processed`` of ``total`` segments."""
    if total <= 0:
        return base + span
    return base + round(span * processed / total)
