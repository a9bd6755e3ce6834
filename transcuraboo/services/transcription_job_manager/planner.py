"""
Chunk planner.

Splits a decoded source into fixed-length, contiguous, non-overlapping
segments. Time bounds are derived from sample bounds, so the last
segment ends exactly at the source duration.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from transcuraboo.services.audio_manager.manager import AudioSource


@dataclass(frozen=True)
class Segment:
    """A fixed-duration slice of an audio source."""

    index: int
    start_sample: int
    end_sample: int
    start_time: float
    end_time: float

    @property
    def sample_count(self) -> int:
        return self.end_sample - self.start_sample


def segment_sample_count(sample_rate: int, segment_seconds: float) -> int:
    """Number of samples in one full-length segment."""
    return max(1, int(round(segment_seconds * sample_rate)))


def plan_segments(source: AudioSource, segment_seconds: float) -> list[Segment]:
    """
    Plan the segments of a source.

    Args:
        source: Decoded audio source
        segment_seconds: Nominal segment length in seconds

    Returns:
        ceil(total_samples / segment_samples) segments in index order, or an
        empty list when the source holds no samples.

    Raises:
        ValueError: if segment_seconds is not positive
    """
    if segment_seconds <= 0:
        raise ValueError(f"Segment length must be positive, got {segment_seconds}")

    total = source.total_samples
    if total <= 0 or source.sample_rate <= 0:
        return []

    step = segment_sample_count(source.sample_rate, segment_seconds)
    count = math.ceil(total / step)

    segments = []
    for index in range(count):
        start = index * step
        end = min(start + step, total)
        segments.append(
            Segment(
                index=index,
                start_sample=start,
                end_sample=end,
                start_time=start / source.sample_rate,
                end_time=min(end / source.sample_rate, source.duration),
            )
        )
    return segments
