"""Gemini Live (BidiGenerateContent) websocket client for real-time transcription."""

import base64
import json
import logging
from collections.abc import AsyncIterator

import aiohttp

from transcuraboo.server.services import (
    LiveChannel,
    LiveChannelConfig,
    LiveEvent,
    LiveEventType,
    LiveTranscriptionServerHandler,
)

logger = logging.getLogger(__name__)

LIVE_PATH = "/ws/google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"


# -------------------------------------------------------------- #
# Message Parsing
# -------------------------------------------------------------- #


def parse_server_message(message: dict) -> list[LiveEvent]:
    """
    Map one Live API server message to channel events.

    Events of one message are emitted in the order input transcription,
    model audio, turn completion.
    """
    if "error" in message:
        error = message["error"]
        if isinstance(error, dict):
            return [LiveEvent.channel_error(error.get("message") or json.dumps(error))]
        return [LiveEvent.channel_error(str(error))]

    content = message.get("serverContent")
    if not content:
        return []

    events: list[LiveEvent] = []

    transcription = content.get("inputTranscription")
    if transcription and transcription.get("text"):
        events.append(LiveEvent.partial_text(transcription["text"]))

    model_turn = content.get("modelTurn") or {}
    for part in model_turn.get("parts") or []:
        inline = part.get("inlineData")
        if inline and inline.get("data"):
            events.append(LiveEvent.model_audio(base64.b64decode(inline["data"])))

    if content.get("turnComplete"):
        events.append(LiveEvent.turn_complete())

    return events


# -------------------------------------------------------------- #
# Live Channel
# -------------------------------------------------------------- #


class GeminiLiveChannel(LiveChannel):
    """One open BidiGenerateContent websocket."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        ws: aiohttp.ClientWebSocketResponse,
        mime_type: str,
    ):
        self._session = session
        self._ws = ws
        self._mime_type = mime_type

    @property
    def is_open(self) -> bool:
        return not self._ws.closed

    async def send_audio(self, pcm: bytes) -> None:
        await self._ws.send_json(
            {
                "realtimeInput": {
                    "audio": {
                        "data": base64.b64encode(pcm).decode("ascii"),
                        "mimeType": self._mime_type,
                    }
                }
            }
        )

    async def events(self) -> AsyncIterator[LiveEvent]:
        async for msg in self._ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                try:
                    payload = json.loads(msg.data)
                except (TypeError, ValueError) as e:
                    logger.warning(f"Dropping unparseable live message: {e}")
                    continue
                for event in parse_server_message(payload):
                    yield event
                    if event.type is LiveEventType.CHANNEL_ERROR:
                        return
            elif msg.type == aiohttp.WSMsgType.ERROR:
                yield LiveEvent.channel_error(str(self._ws.exception() or "websocket error"))
                return

        if self._ws.close_code not in (None, aiohttp.WSCloseCode.OK):
            yield LiveEvent.channel_error(f"Channel closed with code {self._ws.close_code}")
            return
        yield LiveEvent.channel_closed()

    async def close(self) -> None:
        try:
            await self._ws.close()
        finally:
            await self._session.close()


# -------------------------------------------------------------- #
# Live Client
# -------------------------------------------------------------- #


class GeminiLiveClient(LiveTranscriptionServerHandler):
    """Client that opens Gemini Live channels configured for input transcription."""

    def __init__(
        self,
        api_key: str,
        model: str,
        name: str = "gemini_live",
        endpoint: str = "wss://generativelanguage.googleapis.com",
    ):
        """
        Initialize Gemini Live client.

        Args:
            api_key: Gemini API key
            model: Live model name (e.g. "gemini-2.5-flash-native-audio-preview-09-2025")
            name: Name of the client
            endpoint: Websocket base URL of the Generative Language API
        """
        super().__init__(name, endpoint.rstrip("/"))
        self.api_key = api_key
        self.model = model

    async def connect(self) -> None:
        """Channels are opened per session; nothing to connect up front."""
        self._connected = True
        logger.info(f"Gemini live client ready ({self.model})")

    async def disconnect(self) -> None:
        self._connected = False

    async def health_check(self) -> bool:
        return self._connected and bool(self.api_key)

    def build_setup_message(self, config: LiveChannelConfig) -> dict:
        """Build the first message sent on a new channel."""
        setup = {
            "model": f"models/{self.model}",
            "generationConfig": {"responseModalities": list(config.response_modalities)},
            "systemInstruction": {"parts": [{"text": config.system_instruction}]},
        }
        if config.transcribe_input:
            setup["inputAudioTranscription"] = {}
        return {"setup": setup}

    async def open_channel(self, config: LiveChannelConfig) -> LiveChannel:
        """
        Open a websocket and wait for the setup acknowledgement.

        Raises:
            aiohttp.ClientError: if the websocket cannot be opened
            RuntimeError: if the server does not acknowledge the setup
        """
        session = aiohttp.ClientSession()
        try:
            ws = await session.ws_connect(f"{self.endpoint}{LIVE_PATH}?key={self.api_key}")
            await ws.send_json(self.build_setup_message(config))

            msg = await ws.receive()
            if msg.type not in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                raise RuntimeError(f"Live channel closed during setup ({ws.close_code})")
            if "setupComplete" not in json.loads(msg.data):
                raise RuntimeError(f"Unexpected live setup response: {msg.data!r}")
        except BaseException:
            await session.close()
            raise

        logger.info("Live channel opened")
        return GeminiLiveChannel(session, ws, config.input_mime_type)


def construct_gemini_live_client(
    api_key: str,
    model: str,
    endpoint: str = "wss://generativelanguage.googleapis.com",
) -> GeminiLiveClient:
    """Construct and return a Gemini Live client."""
    return GeminiLiveClient(api_key=api_key, model=model, endpoint=endpoint)
