"""
Live Transcription Manager Service.

A live session streams microphone frames to the live transcription
service and turns the inbound event stream into timestamped turns. Only
one session exists at a time; it owns the microphone, the channel and the
muted output for as long as it is listening.
"""

from __future__ import annotations

import asyncio
import enum
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from transcuraboo.context import Context
    from transcuraboo.server.services import LiveChannel, LiveTranscriptionServerHandler
    from transcuraboo.services.manager import ServicesManager

from transcuraboo.server.services import LiveChannelConfig, LiveEvent, LiveEventType
from transcuraboo.services.live_transcription_manager.audio_devices import (
    BaseAudioInput,
    BaseAudioOutput,
    MutedSoundDevicePlayback,
    SoundDeviceMicrophone,
)
from transcuraboo.services.live_transcription_manager.turns import ActiveTurn, TurnSegmenter
from transcuraboo.services.manager import BaseLiveTranscriptionServiceManager
from transcuraboo.services.transcription_job_manager.compiler import TranscriptionTurn
from transcuraboo.utils import LiveTranscriptionConstants

DEFAULT_CHANNEL_ERROR = "A network error occurred with the transcription service."


class LiveSessionState(enum.Enum):
    """Lifecycle of the live session."""

    IDLE = "Idle"
    LISTENING = "Listening"
    CLOSED = "Closed"


def build_channel_config() -> LiveChannelConfig:
    """Channel configuration for mixed-language input transcription."""
    return LiveChannelConfig(
        system_instruction=LiveTranscriptionConstants.SYSTEM_INSTRUCTION,
        input_mime_type=LiveTranscriptionConstants.INPUT_MIME_TYPE,
        response_modalities=["AUDIO"],
        transcribe_input=True,
    )


# -------------------------------------------------------------- #
# Live Session Handler
# -------------------------------------------------------------- #


class LiveSessionHandler:
    """Owns the resources and transcript of the single live session."""

    def __init__(
        self,
        services: ServicesManager,
        live_client: LiveTranscriptionServerHandler,
        input_factory: Callable[[], BaseAudioInput] = SoundDeviceMicrophone,
        output_factory: Callable[[], BaseAudioOutput] = MutedSoundDevicePlayback,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.services = services
        self.live_client = live_client
        self.input_factory = input_factory
        self.output_factory = output_factory

        self.state = LiveSessionState.IDLE
        self.error: str | None = None

        self._segmenter = TurnSegmenter(clock)
        self._listeners: list[Callable[[LiveSessionHandler], Any]] = []

        self._microphone: BaseAudioInput | None = None
        self._output: BaseAudioOutput | None = None
        self._channel: LiveChannel | None = None
        self._playback_queue: asyncio.Queue[bytes] | None = None

        self._forward_task: asyncio.Task | None = None
        self._receive_task: asyncio.Task | None = None
        self._playback_task: asyncio.Task | None = None
        self._stopping: asyncio.Event | None = None

    # -------------------------------------------------------------- #
    # Observation
    # -------------------------------------------------------------- #

    @property
    def is_listening(self) -> bool:
        return self.state == LiveSessionState.LISTENING

    @property
    def transcript(self) -> list[TranscriptionTurn]:
        """Finalized turns in start-time order."""
        return self._segmenter.turns

    @property
    def current_turn(self) -> ActiveTurn | None:
        """The in-progress turn, if any."""
        return self._segmenter.current_turn

    def full_transcript(self) -> list[TranscriptionTurn]:
        """Finalized turns plus the in-progress turn closed at the current time."""
        return self._segmenter.full_transcript()

    def elapsed(self) -> float:
        """Seconds since the session started."""
        return self._segmenter.elapsed()

    def add_listener(self, callback: Callable[[LiveSessionHandler], Any]) -> None:
        """Register a sync or async callback invoked whenever the transcript changes."""
        self._listeners.append(callback)

    # -------------------------------------------------------------- #
    # Lifecycle
    # -------------------------------------------------------------- #

    async def start(self) -> None:
        """
        Start recording.

        Clears the previous transcript, acquires the microphone, opens the
        live channel and the muted output, then starts streaming.

        Raises:
            RuntimeError: if the session is already listening
            InputUnavailable: if the microphone cannot be opened
            Exception: any failure opening the channel; error is set and
                every resource acquired so far is released
        """
        if self._stopping is not None:
            await self._stopping.wait()
        if self.is_listening:
            raise RuntimeError("Live session is already recording; stop it first")

        self.error = None
        self._segmenter.begin()
        self.state = LiveSessionState.LISTENING
        await self._notify()

        try:
            self._microphone = self.input_factory()
            await self._microphone.open()

            self._channel = await self.live_client.open_channel(build_channel_config())

            self._output = self.output_factory()
            await self._output.open()
        except Exception as e:
            self.error = f"Failed to start recording: {e}"
            await self.services.logging_service.error(self.error)
            await self._release_resources()
            self.state = LiveSessionState.CLOSED
            await self._notify()
            raise

        self._playback_queue = asyncio.Queue()
        self._playback_task = asyncio.create_task(self._playback_loop())
        self._forward_task = asyncio.create_task(self._forward_audio())
        self._receive_task = asyncio.create_task(self._receive_events())

        await self.services.logging_service.info("Live session started")

    async def stop(self) -> bool:
        """
        Stop recording and finalize the in-progress turn.

        The in-progress turn is finalized before any resource is released,
        and a caller arriving while another stop is still tearing down waits
        for that teardown to finish.

        Returns:
            False if this call did not stop the session, True otherwise
        """
        if self._stopping is not None:
            await self._stopping.wait()
            return False
        if not self.is_listening:
            return False
        self.state = LiveSessionState.CLOSED
        self._segmenter.finalize()

        self._stopping = asyncio.Event()
        try:
            await self._release_resources()
            await self.services.logging_service.info(
                f"Live session stopped with {len(self._segmenter.turns)} turns"
            )
            await self._notify()
        finally:
            stopping, self._stopping = self._stopping, None
            stopping.set()
        return True

    async def wait_until_stopped(self, timeout: float | None = None) -> bool:
        """
        Wait until the session stops listening and its teardown has finished.

        Args:
            timeout: Seconds to wait at most, or None to wait indefinitely

        Returns:
            True if the session stopped, False if the timeout elapsed first
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self.is_listening:
            if deadline is not None and loop.time() >= deadline:
                return False
            await asyncio.sleep(0.05)
        if self._stopping is not None:
            await self._stopping.wait()
        return True

    async def reset(self) -> None:
        """Clear the transcript and error of a stopped session."""
        if self._stopping is not None:
            await self._stopping.wait()
        if self.is_listening:
            raise RuntimeError("Cannot reset while recording")
        self._segmenter.reset()
        self.error = None
        self.state = LiveSessionState.IDLE
        await self._notify()

    # -------------------------------------------------------------- #
    # Streaming Tasks
    # -------------------------------------------------------------- #

    async def _forward_audio(self) -> None:
        """Send every captured frame without waiting for a reply."""
        microphone, channel = self._microphone, self._channel
        while True:
            frame = await microphone.read()
            if frame is None:
                return
            try:
                await channel.send_audio(frame)
            except Exception as e:
                await self._fail(str(e))
                return

    async def _receive_events(self) -> None:
        """Feed inbound channel events to the turn segmenter."""
        channel = self._channel
        try:
            async for event in channel.events():
                if event.type is LiveEventType.MODEL_AUDIO:
                    self._playback_queue.put_nowait(event.audio)
                elif event.type is LiveEventType.CHANNEL_ERROR:
                    await self._fail(event.error)
                    return
                elif event.type is LiveEventType.CHANNEL_CLOSED:
                    await self.stop()
                    await self.services.logging_service.info("Live channel closed by the service")
                    return
                elif self._segmenter.handle_event(event):
                    await self._notify()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._fail(str(e))

    async def _playback_loop(self) -> None:
        """Render service audio on the muted output."""
        while True:
            pcm = await self._playback_queue.get()
            try:
                await self._output.play(pcm)
            except Exception as e:
                await self.services.logging_service.warning(f"Muted playback failed: {e}")

    async def _fail(self, message: str) -> None:
        """Surface a channel failure and tear the session down."""
        if not self.is_listening:
            return
        self.error = f"Error: {message or DEFAULT_CHANNEL_ERROR}"
        await self.services.logging_service.error(f"Live session error: {self.error}")
        self._segmenter.handle_event(LiveEvent.channel_error(message))
        await self.stop()

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _release_resources(self) -> None:
        """Release microphone, channel and output; channel close errors are logged only."""
        current = asyncio.current_task()

        microphone, self._microphone = self._microphone, None
        if microphone is not None:
            try:
                await microphone.close()
            except Exception as e:
                await self.services.logging_service.warning(f"Error closing microphone: {e}")

        tasks = [self._forward_task, self._playback_task]
        self._forward_task = self._playback_task = None

        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                await channel.close()
            except Exception as e:
                await self.services.logging_service.error(f"Error closing session: {e}")

        tasks.append(self._receive_task)
        self._receive_task = None

        pending = [task for task in tasks if task is not None and task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        output, self._output = self._output, None
        if output is not None:
            try:
                await output.close()
            except Exception as e:
                await self.services.logging_service.warning(f"Error closing muted output: {e}")
        self._playback_queue = None

    async def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                result = callback(self)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                await self.services.logging_service.error(
                    f"Live listener failed: {type(e).__name__}: {e}"
                )


# -------------------------------------------------------------- #
# Live Transcription Manager Service
# -------------------------------------------------------------- #


class LiveTranscriptionManagerService(BaseLiveTranscriptionServiceManager):
    """Service exposing the single live transcription session."""

    def __init__(
        self,
        context: Context,
        input_factory: Callable[[], BaseAudioInput] = SoundDeviceMicrophone,
        output_factory: Callable[[], BaseAudioOutput] = MutedSoundDevicePlayback,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(context)
        self.input_factory = input_factory
        self.output_factory = output_factory
        self.clock = clock
        self._session: LiveSessionHandler | None = None

    async def on_start(self, services: ServicesManager) -> None:
        await super().on_start(services)
        self._session = LiveSessionHandler(
            services=services,
            live_client=self.server.live_client,
            input_factory=self.input_factory,
            output_factory=self.output_factory,
            clock=self.clock,
        )
        await self.services.logging_service.info("Live Transcription Manager initialized")

    async def on_close(self) -> None:
        await self.stop_session()
        await super().on_close()

    @property
    def session(self) -> LiveSessionHandler:
        if self._session is None:
            raise RuntimeError("Live transcription manager has not been started")
        return self._session

    async def start_session(self) -> LiveSessionHandler:
        """Start the live session and return its handler."""
        await self.session.start()
        return self.session

    async def stop_session(self) -> bool:
        """Stop the live session if it is recording."""
        if self._session is None:
            return False
        return await self._session.stop()
