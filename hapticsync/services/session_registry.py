"""Registry of active player sessions."""
import asyncio
from typing import Dict, Optional
from hapticsync.core.logging import logger
from hapticsync.services.sync_service import AudioSyncService


class SessionRegistry:
    """Tracks the sync service of every connected player."""

    def __init__(self):
        """Initialize the session registry."""
        self._sessions: Dict[str, AudioSyncService] = {}
        self._lock = asyncio.Lock()

    async def register(self, session_id: str, service: AudioSyncService) -> None:
        """
        Register a new active session.

        Args:
            session_id: Session identifier
            service: Sync service owned by the session
        """
        async with self._lock:
            self._sessions[session_id] = service
            logger.info(f"Registered session: {session_id}")

    async def unregister(self, session_id: str) -> Optional[AudioSyncService]:
        """
        Unregister a session.

        Args:
            session_id: Session identifier

        Returns:
            The removed service, if it was registered
        """
        async with self._lock:
            service = self._sessions.pop(session_id, None)
            logger.info(f"Unregistered session: {session_id}")
            return service

    async def get(self, session_id: str) -> Optional[AudioSyncService]:
        """
        Look up a session's service.

        Args:
            session_id: Session identifier

        Returns:
            The service, or None if unknown
        """
        async with self._lock:
            return self._sessions.get(session_id)

    async def list_sessions(self) -> list[str]:
        """
        Get list of all active session IDs.

        Returns:
            List of active session IDs
        """
        async with self._lock:
            return list(self._sessions)


# Global session registry instance
session_registry = SessionRegistry()
