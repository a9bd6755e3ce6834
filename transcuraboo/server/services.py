import enum
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

# -------------------------------------------------------------- #
# Base Server Handler
# -------------------------------------------------------------- #


class BaseServerHandler(ABC):
    """Abstract base class for all server handlers."""

    def __init__(self, name: str):
        self.name = name
        self._connected = False

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def on_startup(self) -> None:
        """Actions to perform on server startup."""
        pass

    async def on_close(self) -> None:
        """Actions to perform on server close."""
        pass

    # -------------------------------------------------------------- #
    # Abstract Methods
    # -------------------------------------------------------------- #

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the server."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the server."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the server is healthy and responding."""
        pass

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to the server."""
        return self._connected


# -------------------------------------------------------------- #
# Batch Transcription Handler
# -------------------------------------------------------------- #


class TranscriptionServerHandler(BaseServerHandler):
    """Request/response transcription service handler."""

    def __init__(self, name: str, endpoint: str):
        super().__init__(name)
        self.endpoint = endpoint

    @abstractmethod
    async def transcribe(self, audio_base64: str, mime_type: str, instruction: str) -> str:
        """
        Transcribe one encoded audio payload.

        Args:
            audio_base64: Base64-encoded audio container
            mime_type: MIME type of the container (e.g. "audio/wav")
            instruction: Natural-language instruction sent with the audio

        Returns:
            The transcript text, or a string starting with the error marker
            ("Error:") when the request failed.
        """
        pass


# -------------------------------------------------------------- #
# Live Transcription Structures
# -------------------------------------------------------------- #


class LiveEventType(enum.Enum):
    """Inbound events of a live transcription channel."""

    PARTIAL_TEXT = "partial_text"
    TURN_COMPLETE = "turn_complete"
    MODEL_AUDIO = "model_audio"
    CHANNEL_ERROR = "channel_error"
    CHANNEL_CLOSED = "channel_closed"


@dataclass(frozen=True)
class LiveEvent:
    """One inbound event; only the field matching ``type`` is populated."""

    type: LiveEventType
    text: str = ""
    audio: bytes = b""
    error: str = ""

    @classmethod
    def partial_text(cls, text: str) -> "LiveEvent":
        return cls(LiveEventType.PARTIAL_TEXT, text=text)

    @classmethod
    def turn_complete(cls) -> "LiveEvent":
        return cls(LiveEventType.TURN_COMPLETE)

    @classmethod
    def model_audio(cls, audio: bytes) -> "LiveEvent":
        return cls(LiveEventType.MODEL_AUDIO, audio=audio)

    @classmethod
    def channel_error(cls, error: str) -> "LiveEvent":
        return cls(LiveEventType.CHANNEL_ERROR, error=error)

    @classmethod
    def channel_closed(cls) -> "LiveEvent":
        return cls(LiveEventType.CHANNEL_CLOSED)


@dataclass(frozen=True)
class LiveChannelConfig:
    """Configuration sent when a live channel is opened."""

    system_instruction: str
    input_mime_type: str
    response_modalities: list[str] = field(default_factory=lambda: ["AUDIO"])
    transcribe_input: bool = True


class LiveChannel(ABC):
    """An open bidirectional audio-in / events-out channel."""

    @abstractmethod
    async def send_audio(self, pcm: bytes) -> None:
        """Send one frame of 16-bit mono PCM without waiting for a reply."""
        pass

    @abstractmethod
    def events(self) -> AsyncIterator[LiveEvent]:
        """Iterate inbound events; ends after CHANNEL_CLOSED or CHANNEL_ERROR."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the channel."""
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the channel can still send audio."""
        pass


class LiveTranscriptionServerHandler(BaseServerHandler):
    """Streaming transcription service handler."""

    def __init__(self, name: str, endpoint: str):
        super().__init__(name)
        self.endpoint = endpoint

    @abstractmethod
    async def open_channel(self, config: LiveChannelConfig) -> LiveChannel:
        """Open a new bidirectional channel configured for input transcription."""
        pass
