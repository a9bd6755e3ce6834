"""
Server service handlers for external services.

This module provides the manager that owns the connections to the
external transcription collaborators.
"""

import logging
from typing import TYPE_CHECKING

from transcuraboo.server.services import (
    LiveTranscriptionServerHandler,
    TranscriptionServerHandler,
)

if TYPE_CHECKING:
    from transcuraboo.context import Context

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Server Manager
# -------------------------------------------------------------- #


class ServerManager:
    """Manager for handling multiple server instances."""

    def __init__(
        self,
        context: "Context",
        transcription_client: TranscriptionServerHandler,
        live_client: LiveTranscriptionServerHandler,
    ):
        self.context = context
        self._initialized = False
        self._transcription_client = transcription_client
        self._live_client = live_client

        self._servers = {
            "transcription": transcription_client,
            "live_transcription": live_client,
        }

    # ------------------------------------------------------ #
    # Server Management
    # ------------------------------------------------------ #

    async def connect_all(self) -> None:
        """Connect to all servers."""
        logger.info("=" * 60)
        logger.info("[ServerManager] Connecting all servers...")

        for server in self._servers.values():
            logger.info(f"[ServerManager] Connecting to '{server.name}' server...")
            await server.connect()
            await server.on_startup()
            logger.info(f"[ServerManager] '{server.name}' server is ready.")

        self._initialized = True
        logger.info("[ServerManager] All servers connected successfully.")
        logger.info("=" * 60)

    async def disconnect_all(self) -> None:
        """Disconnect from all servers."""
        logger.info("[ServerManager] Disconnecting all servers...")

        for server in self._servers.values():
            await server.on_close()
            await server.disconnect()
            logger.info(f"[ServerManager] '{server.name}' server disconnected.")

        self._initialized = False
        logger.info("[ServerManager] All servers disconnected successfully.")

    async def health_check_all(self) -> dict[str, bool]:
        """
        Check health of all registered servers.

        Returns:
            Dictionary mapping server names to health status
        """
        results = {}
        for name, server in self._servers.items():
            results[name] = await server.health_check()
        return results

    def list_servers(self) -> list[str]:
        """Get list of all registered server names."""
        return list(self._servers.keys())

    # ------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------ #

    @property
    def transcription_client(self) -> TranscriptionServerHandler:
        """Get the batch transcription client."""
        return self._transcription_client

    @property
    def live_client(self) -> LiveTranscriptionServerHandler:
        """Get the live transcription client."""
        return self._live_client

    @property
    def is_initialized(self) -> bool:
        """Check if the server manager is initialized."""
        return self._initialized
