import os
from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from transcuraboo.context import Context

from transcuraboo.constructor import ServerManagerType
from transcuraboo.server.common import gemini_live, gemini_server
from transcuraboo.server.server import ServerManager

load_dotenv(dotenv_path=".env.local")

DEFAULT_ENDPOINT = "https://generativelanguage.googleapis.com"
DEFAULT_TRANSCRIPTION_MODEL = "gemini-2.5-flash"
DEFAULT_LIVE_MODEL = "gemini-2.5-flash-native-audio-preview-09-2025"

# -------------------------------------------------------------- #
# Environment Loaders
# -------------------------------------------------------------- #


def load_api_key() -> str:
    """Read the Gemini API key from the environment."""
    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
    if not api_key:
        raise ValueError("Missing required GEMINI_API_KEY environment variable.")
    return api_key


def load_transcription_client(api_key: str) -> gemini_server.GeminiTranscriptionClient:
    """Load and return the batch transcription client."""
    endpoint = os.getenv("GEMINI_ENDPOINT", DEFAULT_ENDPOINT)
    model = os.getenv("GEMINI_TRANSCRIPTION_MODEL", DEFAULT_TRANSCRIPTION_MODEL)
    return gemini_server.construct_gemini_transcription_client(
        api_key=api_key, model=model, endpoint=endpoint
    )


def load_live_client(api_key: str) -> gemini_live.GeminiLiveClient:
    """Load and return the live transcription client."""
    endpoint = os.getenv("GEMINI_ENDPOINT", DEFAULT_ENDPOINT)
    model = os.getenv("GEMINI_LIVE_MODEL", DEFAULT_LIVE_MODEL)
    ws_endpoint = endpoint.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
    return gemini_live.construct_gemini_live_client(
        api_key=api_key, model=model, endpoint=ws_endpoint
    )


# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Server Manager
# -------------------------------------------------------------- #


def construct_server_manager(client_type: ServerManagerType, context: "Context") -> ServerManager:
    """Construct and return a ServerManager for the given environment type."""

    if client_type == ServerManagerType.TESTING:
        from transcuraboo.server.testing.constructor import construct_server_manager

        return construct_server_manager(context)

    if client_type in (ServerManagerType.DEVELOPMENT, ServerManagerType.PRODUCTION):
        api_key = load_api_key()
        return ServerManager(
            context=context,
            transcription_client=load_transcription_client(api_key),
            live_client=load_live_client(api_key),
        )

    raise ValueError(f"Unsupported ServerManagerType: {client_type}")
