"""
Constructor for Testing Server Manager.

This module provides functions to construct a ServerManager instance
with scripted mock clients for testing purposes.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from transcuraboo.context import Context

from transcuraboo.server.server import ServerManager
from transcuraboo.server.testing.transcription_server import (
    MockLiveClient,
    MockTranscriptionClient,
)

# -------------------------------------------------------------- #
# Constructor for Testing Server Manager
# -------------------------------------------------------------- #


def construct_server_manager(context: "Context") -> ServerManager:
    """
    Construct and return a ServerManager instance for testing.

    Args:
        context: Context instance to pass to ServerManager

    Returns:
        ServerManager wired with MockTranscriptionClient and MockLiveClient
    """
    return ServerManager(
        context=context,
        transcription_client=MockTranscriptionClient(),
        live_client=MockLiveClient(),
    )
