"""
Turn segmentation for live transcription.

Partial transcript fragments are appended to a single active turn until the
live service signals a turn boundary, the channel fails, or the session is
stopped. A turn whose text is blank at that point is discarded.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

from transcuraboo.server.services import LiveEvent, LiveEventType
from transcuraboo.services.transcription_job_manager.compiler import TranscriptionTurn


@dataclass
class ActiveTurn:
    """The turn currently being spoken."""

    start_time: float
    text: str

    def close(self, end_time: float) -> TranscriptionTurn:
        return TranscriptionTurn(
            start_time=self.start_time,
            end_time=max(end_time, self.start_time),
            text=self.text,
        )


class TurnSegmenter:
    """
    Two-state machine (no active turn / turn in progress) over live events.

    Times are seconds elapsed since ``begin()`` as measured by ``clock``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._session_start: float | None = None
        self._turns: list[TranscriptionTurn] = []
        self._active: ActiveTurn | None = None

    # -------------------------------------------------------------- #
    # Lifecycle
    # -------------------------------------------------------------- #

    def begin(self) -> None:
        """Start a new session: clear all turns and take the start reference."""
        self._turns = []
        self._active = None
        self._session_start = self._clock()

    def reset(self) -> None:
        """Forget all turns without starting a session."""
        self._turns = []
        self._active = None
        self._session_start = None

    def elapsed(self) -> float:
        """Seconds since the session started."""
        if self._session_start is None:
            return 0.0
        return max(0.0, self._clock() - self._session_start)

    # -------------------------------------------------------------- #
    # Transitions
    # -------------------------------------------------------------- #

    def on_partial_text(self, text: str) -> bool:
        """Append a fragment to the active turn, opening one if needed."""
        if not text:
            return False
        if self._active is None:
            self._active = ActiveTurn(start_time=self.elapsed(), text=text)
        else:
            self._active.text += text
        return True

    def on_turn_complete(self) -> TranscriptionTurn | None:
        """Close the active turn. Returns the finalized turn, if it had text."""
        return self.finalize()

    def finalize(self) -> TranscriptionTurn | None:
        """Finalize the active turn at the current elapsed time."""
        active = self._active
        self._active = None
        if active is None or not active.text.strip():
            return None
        turn = active.close(self.elapsed())
        self._turns.append(turn)
        return turn

    def handle_event(self, event: LiveEvent) -> bool:
        """
        Apply a transcript event.

        Returns True when the visible transcript changed. Channel errors and
        closes finalize the active turn; audio events are ignored here.
        """
        if event.type is LiveEventType.PARTIAL_TEXT:
            return self.on_partial_text(event.text)
        if event.type in (
            LiveEventType.TURN_COMPLETE,
            LiveEventType.CHANNEL_ERROR,
            LiveEventType.CHANNEL_CLOSED,
        ):
            had_turn = self._active is not None
            self.finalize()
            return had_turn
        return False

    # -------------------------------------------------------------- #
    # Observation
    # -------------------------------------------------------------- #

    @property
    def turns(self) -> list[TranscriptionTurn]:
        """Finalized turns in start-time order."""
        return list(self._turns)

    @property
    def current_turn(self) -> ActiveTurn | None:
        """The in-progress turn, if any."""
        if self._active is None:
            return None
        return ActiveTurn(self._active.start_time, self._active.text)

    def full_transcript(self) -> list[TranscriptionTurn]:
        """Finalized turns plus the in-progress turn closed at the current time."""
        turns = list(self._turns)
        if self._active is not None and self._active.text.strip():
            turns.append(self._active.close(self.elapsed()))
        return turns
