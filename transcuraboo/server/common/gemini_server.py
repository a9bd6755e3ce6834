"""Gemini generateContent client for batch segment transcription."""

import logging

import aiohttp

from transcuraboo.server.services import TranscriptionServerHandler
from transcuraboo.utils import TranscriptionConstants

logger = logging.getLogger(__name__)


class GeminiTranscriptionClient(TranscriptionServerHandler):
    """Client for the Gemini REST generateContent endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str,
        name: str = "gemini_transcription",
        endpoint: str = "https://generativelanguage.googleapis.com",
        request_timeout: float = 300.0,
    ):
        """
        Initialize Gemini transcription client.

        Args:
            api_key: Gemini API key
            model: Model used for transcription (e.g. "gemini-2.5-flash")
            name: Name of the client
            endpoint: Base URL of the Generative Language API
            request_timeout: Total timeout of one request in seconds
        """
        super().__init__(name, endpoint.rstrip("/"))
        self.api_key = api_key
        self.model = model
        self.request_timeout = request_timeout
        self.session: aiohttp.ClientSession | None = None

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Open the HTTP session used for all requests."""
        self.session = aiohttp.ClientSession(
            headers={"x-goog-api-key": self.api_key},
            timeout=aiohttp.ClientTimeout(total=self.request_timeout),
        )
        self._connected = True
        logger.info(f"Gemini transcription client ready ({self.model} at {self.endpoint})")

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
        self._connected = False
        logger.info("Disconnected from Gemini transcription service")

    async def health_check(self) -> bool:
        """Check that the configured model is reachable with the API key."""
        try:
            if not self.session:
                return False

            async with self.session.get(self._model_url) as response:
                return response.status == 200
        except aiohttp.ClientError as e:
            logger.error(f"Gemini health check failed: {e}")
            return False

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def transcribe(self, audio_base64: str, mime_type: str, instruction: str) -> str:
        """
        Transcribe one base64 audio payload.

        Transport and HTTP failures are returned as an error string starting
        with the error marker rather than raised.

        Args:
            audio_base64: Base64-encoded audio container
            mime_type: MIME type of the container
            instruction: Natural-language instruction sent with the audio

        Returns:
            Transcript text, or "Error: API call failed - <reason>"
        """
        if not self.session:
            return self._error("client is not connected")

        payload = {
            "contents": [
                {
                    "parts": [
                        {"inline_data": {"mime_type": mime_type, "data": audio_base64}},
                        {"text": instruction},
                    ]
                }
            ]
        }

        try:
            async with self.session.post(
                f"{self._model_url}:generateContent", json=payload
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.error(f"Gemini request failed ({response.status}): {body}")
                    return self._error(f"HTTP {response.status}")

                result = await response.json()
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error(f"Gemini request failed: {e}")
            return self._error(str(e) or type(e).__name__)

        return self.extract_text(result)

    @staticmethod
    def extract_text(result: dict) -> str:
        """Join the text parts of the first candidate of a generateContent response."""
        candidates = result.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    @property
    def _model_url(self) -> str:
        return f"{self.endpoint}/v1beta/models/{self.model}"

    @staticmethod
    def _error(reason: str) -> str:
        return f"{TranscriptionConstants.ERROR_MARKER} API call failed - {reason}"


def construct_gemini_transcription_client(
    api_key: str,
    model: str,
    endpoint: str = "https://generativelanguage.googleapis.com",
) -> GeminiTranscriptionClient:
    """
    Construct and return a Gemini transcription client.

    Args:
        api_key: Gemini API key
        model: Model used for transcription
        endpoint: Base URL of the Generative Language API

    Returns:
        Configured GeminiTranscriptionClient instance
    """
    return GeminiTranscriptionClient(api_key=api_key, model=model, endpoint=endpoint)
