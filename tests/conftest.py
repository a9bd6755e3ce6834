"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides
fixtures and configuration that can be used across all tests.
"""

import asyncio
import io
import os
from collections.abc import Callable

import numpy as np
import pytest
import soundfile as sf

from transcuraboo.services.common.errors import InputUnavailable
from transcuraboo.services.live_transcription_manager.audio_devices import (
    BaseAudioInput,
    BaseAudioOutput,
)

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (need GEMINI_API_KEY)")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """
    Skip integration tests without credentials and apply a default timeout.

    Integration tests call the real Gemini API and are only run when
    GEMINI_API_KEY (or API_KEY) is set.
    """
    has_key = bool(os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY"))
    skip_marker = pytest.mark.skip(reason="GEMINI_API_KEY not set")

    for item in items:
        if "integration" in item.keywords and not has_key:
            item.add_marker(skip_marker)

        # Apply timeout to all tests except those marked as slow
        if "slow" not in item.keywords:
            item.add_marker(pytest.mark.timeout(30))


# ============================================================================
# Audio Fixtures
# ============================================================================


def make_wav_bytes(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode float samples as a 16-bit PCM WAV file in memory."""
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


@pytest.fixture
def wav_factory() -> Callable[..., bytes]:
    """
    Build WAV files where each segment-length block holds a distinct level.

    Block ``i`` is filled with amplitude ``0.1 * (i + 1)`` so a mock client
    can tell which segment a payload came from.
    """

    def build(duration: float, sample_rate: int = 8000, block_seconds: float = 20) -> bytes:
        total = int(round(duration * sample_rate))
        block = int(round(block_seconds * sample_rate))
        samples = np.zeros(total, dtype=np.float32)
        for index, start in enumerate(range(0, total, block)):
            samples[start : start + block] = 0.1 * (index + 1)
        return make_wav_bytes(samples, sample_rate)

    return build


def segment_level(audio_base64: str) -> int:
    """Recover the block index encoded by ``wav_factory`` from a payload."""
    import base64

    data, _ = sf.read(io.BytesIO(base64.b64decode(audio_base64)), dtype="float32")
    first = data[0] if data.ndim == 1 else data[0, 0]
    return int(round(float(first) * 10)) - 1


@pytest.fixture
def payload_segment_index() -> Callable[[str], int]:
    """Map a transport payload back to the segment it was cut from."""
    return segment_level


# ============================================================================
# Live Session Fakes
# ============================================================================


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMicrophone(BaseAudioInput):
    """Microphone whose frames are pushed by the test."""

    def __init__(self, open_error: BaseException | None = None):
        self.open_error = open_error
        self.opened = False
        self.closed = False
        self._frames: asyncio.Queue[bytes | None] = asyncio.Queue()

    async def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    async def read(self) -> bytes | None:
        return await self._frames.get()

    async def close(self) -> None:
        self.closed = True
        self._frames.put_nowait(None)

    def push(self, frame: bytes) -> None:
        self._frames.put_nowait(frame)


class FakePlayback(BaseAudioOutput):
    """Output that records what it was asked to play."""

    def __init__(self):
        self.opened = False
        self.closed = False
        self.played: list[bytes] = []

    async def open(self) -> None:
        self.opened = True

    async def play(self, pcm: bytes) -> None:
        self.played.append(pcm)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_microphone() -> FakeMicrophone:
    return FakeMicrophone()


@pytest.fixture
def unavailable_microphone() -> FakeMicrophone:
    return FakeMicrophone(open_error=InputUnavailable("Permission denied"))


@pytest.fixture
def fake_playback() -> FakePlayback:
    return FakePlayback()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds, yielding to the event loop."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def eventually() -> Callable:
    return wait_until


# ============================================================================
# Testing Environment Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def shared_test_log_file(tmp_path_factory) -> str:
    """
    Create a single shared log file for all tests in the session.

    Returns:
        str: Path to the shared log file
    """
    from datetime import datetime

    logs_dir = tmp_path_factory.mktemp("logs")
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return str(logs_dir / f"test_run_{timestamp}.log")


@pytest.fixture
async def test_context():
    """
    Create a test context instance.

    Yields:
        Context: Test context instance
    """
    from transcuraboo.context import Context

    context = Context()
    yield context


@pytest.fixture
async def test_server_manager(test_context):
    """
    Create and connect a test server manager with scripted mock clients.

    Yields:
        ServerManager: Connected test server manager instance
    """
    from transcuraboo.constructor import ServerManagerType
    from transcuraboo.server.constructor import construct_server_manager

    server = construct_server_manager(ServerManagerType.TESTING, test_context)
    test_context.set_server_manager(server)
    await server.connect_all()

    yield server

    if server.is_initialized:
        await server.disconnect_all()


@pytest.fixture
async def services_manager(
    test_context,
    test_server_manager,
    shared_test_log_file,
    tmp_path,
    fake_microphone,
    fake_playback,
    fake_clock,
):
    """
    Create and initialize a services manager wired to the mock servers.

    The live session uses the fake microphone, playback and clock.

    Yields:
        ServicesManager: Initialized services manager
    """
    from transcuraboo.constructor import ServerManagerType
    from transcuraboo.services.constructor import construct_services_manager

    services = construct_services_manager(
        ServerManagerType.TESTING,
        context=test_context,
        log_file=shared_test_log_file,
        use_timestamp_logs=False,
        console_logs=False,
        chunk_seconds=20,
        concurrency=10,
        input_factory=lambda: fake_microphone,
        output_factory=lambda: fake_playback,
        export_path=str(tmp_path / "exports"),
    )
    services.live_transcription_manager.clock = fake_clock
    test_context.set_services_manager(services)
    await services.initialize_all()

    yield services

    await services.shutdown_all(timeout=10.0)
