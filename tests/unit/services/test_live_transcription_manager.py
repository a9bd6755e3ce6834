"""
Unit tests for the Live Transcription Manager Service.

Tests cover:
- Starting a session and streaming microphone frames
- Turn segmentation from channel events
- Channel errors and service-initiated closes
- Stop idempotence and resource release
- Start failures (microphone and channel)
"""

import asyncio

import pytest

from transcuraboo.server.services import LiveEvent
from transcuraboo.services.common.errors import InputUnavailable
from transcuraboo.services.live_transcription_manager.manager import (
    DEFAULT_CHANNEL_ERROR,
    LiveSessionState,
)
from transcuraboo.utils import LiveTranscriptionConstants


@pytest.fixture
def live_manager(services_manager):
    return services_manager.live_transcription_manager


@pytest.fixture
def live_client(test_server_manager):
    return test_server_manager.live_client


@pytest.fixture
async def session(live_manager):
    """A started live session."""
    session = await live_manager.start_session()
    yield session
    await live_manager.stop_session()


# ============================================================================
# Streaming
# ============================================================================


@pytest.mark.unit
class TestLiveSessionStreaming:
    """Test a running session."""

    async def test_start_opens_resources(
        self, session, live_client, fake_microphone, fake_playback
    ):
        """Starting acquires the microphone, the channel and the muted output."""
        # Assert
        assert session.is_listening
        assert session.state == LiveSessionState.LISTENING
        assert session.error is None
        assert fake_microphone.opened
        assert fake_playback.opened

        channel = live_client.last_channel
        assert channel is not None
        assert channel.config.input_mime_type == LiveTranscriptionConstants.INPUT_MIME_TYPE
        assert channel.config.transcribe_input is True
        assert channel.config.system_instruction == LiveTranscriptionConstants.SYSTEM_INSTRUCTION

    async def test_frames_are_forwarded(self, session, live_client, fake_microphone, eventually):
        """Every captured frame is sent to the channel in order."""
        # Setup
        frames = [bytes([i]) * 8192 for i in range(3)]

        # Act
        for frame in frames:
            fake_microphone.push(frame)

        # Assert
        channel = live_client.last_channel
        await eventually(lambda: len(channel.sent_frames) == 3)
        assert channel.sent_frames == frames

    async def test_turns_are_timestamped(self, session, live_client, fake_clock, eventually):
        """Partial text builds a turn that a boundary finalizes with elapsed times."""
        # Setup
        channel = live_client.last_channel
        changes = []
        session.add_listener(lambda s: changes.append(len(s.transcript)))

        # Act
        fake_clock.advance(2.0)
        channel.push(LiveEvent.partial_text("Hola, "))
        await eventually(lambda: session.current_turn is not None)
        channel.push(LiveEvent.partial_text("how are you"))
        await eventually(lambda: session.current_turn.text == "Hola, how are you")
        fake_clock.advance(3.0)
        channel.push(LiveEvent.turn_complete())
        await eventually(lambda: len(session.transcript) == 1)

        # Assert
        (turn,) = session.transcript
        assert turn.text == "Hola, how are you"
        assert turn.start_time == pytest.approx(2.0)
        assert turn.end_time == pytest.approx(5.0)
        assert session.current_turn is None
        assert changes[-1] == 1

    async def test_model_audio_goes_to_muted_output(
        self, session, live_client, fake_playback, eventually
    ):
        """Audio produced by the service is rendered on the muted output only."""
        channel = live_client.last_channel

        channel.push(LiveEvent.model_audio(b"\x01\x02" * 100))
        await eventually(lambda: len(fake_playback.played) == 1)

        assert fake_playback.played == [b"\x01\x02" * 100]
        assert session.transcript == []

    async def test_full_transcript_includes_active_turn(
        self, session, live_client, fake_clock, eventually
    ):
        """Observers can see the in-progress turn closed at the current time."""
        channel = live_client.last_channel
        channel.push(LiveEvent.partial_text("still talking"))
        await eventually(lambda: session.current_turn is not None)
        fake_clock.advance(1.5)

        full = session.full_transcript()

        assert [t.text for t in full] == ["still talking"]
        assert session.elapsed() == pytest.approx(1.5)


# ============================================================================
# Stopping
# ============================================================================


@pytest.mark.unit
class TestLiveSessionStop:
    """Test stopping and teardown."""

    async def test_stop_finalizes_active_turn(
        self, live_manager, live_client, fake_microphone, fake_playback, fake_clock, eventually
    ):
        """Stopping releases resources and keeps the in-progress text as a turn."""
        # Setup
        session = await live_manager.start_session()
        channel = live_client.last_channel
        channel.push(LiveEvent.partial_text("last words"))
        await eventually(lambda: session.current_turn is not None)
        fake_clock.advance(2.0)

        # Act
        stopped = await live_manager.stop_session()

        # Assert
        assert stopped is True
        assert session.state == LiveSessionState.CLOSED
        assert [t.text for t in session.transcript] == ["last words"]
        assert fake_microphone.closed
        assert fake_playback.closed
        assert channel.close_calls == 1

    async def test_stop_is_idempotent(self, live_manager, live_client):
        """A second stop is a no-op."""
        await live_manager.start_session()

        assert await live_manager.stop_session() is True
        assert await live_manager.stop_session() is False
        assert live_client.last_channel.close_calls == 1

    async def test_stop_before_start(self, live_manager):
        """Stopping an idle session does nothing."""
        assert await live_manager.stop_session() is False
        assert live_manager.session.state == LiveSessionState.IDLE

    async def test_close_error_is_only_logged(self, live_manager, live_client):
        """A failure closing the channel does not surface as a session error."""
        session = await live_manager.start_session()
        live_client.last_channel.close_error = RuntimeError("already closed")

        assert await live_manager.stop_session() is True
        assert session.error is None
        assert session.state == LiveSessionState.CLOSED

    async def test_restart_clears_transcript(self, live_manager, live_client, eventually):
        """Starting again after a stop begins a fresh transcript."""
        session = await live_manager.start_session()
        live_client.last_channel.push(LiveEvent.partial_text("first session"))
        await eventually(lambda: session.current_turn is not None)
        await live_manager.stop_session()
        assert len(session.transcript) == 1

        await live_manager.start_session()

        assert session.transcript == []
        assert len(live_client.channels) == 2
        await live_manager.stop_session()

    async def test_wait_until_stopped_returns_on_channel_error(self, live_manager, live_client):
        """A long wait ends as soon as a channel error stops the session."""
        # Setup
        session = await live_manager.start_session()

        # Act
        live_client.last_channel.push(LiveEvent.channel_error("websocket reset"))
        stopped = await asyncio.wait_for(session.wait_until_stopped(timeout=30.0), timeout=2.0)

        # Assert
        assert stopped is True
        assert session.error == "Error: websocket reset"

    async def test_wait_until_stopped_times_out(self, session):
        """While still listening the wait gives up after its timeout."""
        assert await session.wait_until_stopped(timeout=0.1) is False
        assert session.is_listening

    async def test_reset_while_listening(self, session):
        """The transcript cannot be reset during a recording."""
        with pytest.raises(RuntimeError):
            await session.reset()


# ============================================================================
# Failures
# ============================================================================


@pytest.mark.unit
class TestLiveSessionFailures:
    """Test channel errors and start failures."""

    async def test_channel_error_stops_session(
        self, live_manager, live_client, fake_microphone, eventually
    ):
        """A channel error is surfaced, the session closes and the turn is kept."""
        # Setup
        session = await live_manager.start_session()
        channel = live_client.last_channel
        channel.push(LiveEvent.partial_text("interrupted"))
        await eventually(lambda: session.current_turn is not None)

        # Act
        channel.push(LiveEvent.channel_error("websocket reset"))
        await eventually(lambda: not session.is_listening)

        # Assert
        assert session.error == "Error: websocket reset"
        assert session.state == LiveSessionState.CLOSED
        assert [t.text for t in session.transcript] == ["interrupted"]
        assert fake_microphone.closed
        assert channel.close_calls == 1

    async def test_channel_error_without_message(self, live_manager, live_client, eventually):
        """An error with no description uses the generic network message."""
        session = await live_manager.start_session()

        live_client.last_channel.push(LiveEvent.channel_error(""))
        await eventually(lambda: not session.is_listening)

        assert session.error == f"Error: {DEFAULT_CHANNEL_ERROR}"

    async def test_service_close_stops_without_error(self, live_manager, live_client, eventually):
        """A close initiated by the service ends the session cleanly."""
        session = await live_manager.start_session()
        channel = live_client.last_channel
        channel.push(LiveEvent.partial_text("goodbye"))
        await eventually(lambda: session.current_turn is not None)

        channel.push(LiveEvent.channel_closed())
        await eventually(lambda: not session.is_listening)

        assert session.error is None
        assert [t.text for t in session.transcript] == ["goodbye"]

    async def test_stop_during_slow_close_keeps_last_turn(
        self, live_manager, live_client, fake_clock, eventually
    ):
        """A stop racing a service close waits for it and sees the final turn."""
        # Setup
        session = await live_manager.start_session()
        channel = live_client.last_channel
        channel.close_delay = 0.2
        fake_clock.advance(1.0)
        channel.push(LiveEvent.partial_text("last words"))
        await eventually(lambda: session.current_turn is not None)

        # Act
        channel.push(LiveEvent.channel_closed())
        await eventually(lambda: not session.is_listening)
        turns_when_closed = [t.text for t in session.transcript]
        stopped = await live_manager.stop_session()

        # Assert
        assert turns_when_closed == ["last words"]
        assert stopped is False
        assert [t.text for t in session.transcript] == ["last words"]
        assert session.error is None
        assert channel.close_calls == 1

    async def test_restart_waits_for_teardown(self, live_manager, live_client, eventually):
        """Starting while a previous teardown is running opens a fresh channel afterwards."""
        session = await live_manager.start_session()
        first = live_client.last_channel
        first.close_delay = 0.2

        first.push(LiveEvent.channel_closed())
        await eventually(lambda: not session.is_listening)
        await live_manager.start_session()

        assert first.close_calls == 1
        assert len(live_client.channels) == 2
        assert session.is_listening
        await live_manager.stop_session()

    async def test_microphone_unavailable(
        self,
        test_context,
        test_server_manager,
        shared_test_log_file,
        tmp_path,
        unavailable_microphone,
    ):
        """A denied microphone fails the start with a recording error."""
        # Setup
        from transcuraboo.constructor import ServerManagerType
        from transcuraboo.services.constructor import construct_services_manager

        services = construct_services_manager(
            ServerManagerType.TESTING,
            context=test_context,
            log_file=shared_test_log_file,
            use_timestamp_logs=False,
            console_logs=False,
            input_factory=lambda: unavailable_microphone,
            export_path=str(tmp_path / "exports"),
        )
        test_context.set_services_manager(services)
        await services.initialize_all()
        live_manager = services.live_transcription_manager

        # Act
        with pytest.raises(InputUnavailable):
            await live_manager.start_session()

        # Assert
        session = live_manager.session
        assert session.error == "Failed to start recording: Permission denied"
        assert session.state == LiveSessionState.CLOSED
        assert test_server_manager.live_client.channels == []

        await services.shutdown_all(timeout=10.0)

    async def test_channel_open_failure_releases_microphone(
        self, live_manager, live_client, fake_microphone
    ):
        """If the channel cannot be opened the microphone is released again."""
        live_client.open_error = ConnectionError("handshake refused")

        with pytest.raises(ConnectionError):
            await live_manager.start_session()

        session = live_manager.session
        assert session.error == "Failed to start recording: handshake refused"
        assert not session.is_listening
        assert fake_microphone.closed

    async def test_start_while_listening(self, session, live_manager):
        """Starting a second recording while one is active is rejected."""
        with pytest.raises(RuntimeError):
            await live_manager.start_session()

        assert session.is_listening

    async def test_send_failure_stops_session(
        self, session, live_client, fake_microphone, eventually
    ):
        """A failure sending audio is surfaced as a channel error."""
        channel = live_client.last_channel
        await channel.close()

        fake_microphone.push(b"\x00" * 8192)
        await eventually(lambda: not session.is_listening)

        assert session.error == "Error: Channel is closed"
