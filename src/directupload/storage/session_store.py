"""Upload session store."""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Dict, Optional

from directupload.core.exceptions import NotFoundError
from directupload.models.session import UploadSession, utcnow


class SessionStore(ABC):
    """Abstract persistence for upload session records."""

    @abstractmethod
    async def create(self, session: UploadSession) -> str:
        """Store a new session.

        Args:
            session: Freshly built session record

        Returns:
            The session id

        Raises:
            ValueError: If the id or storage key is already taken
        """
        pass

    @abstractmethod
    async def get(self, session_id: str) -> Optional[UploadSession]:
        """Retrieve a session by id, or None if unknown."""
        pass

    @abstractmethod
    async def update(self, session_id: str, **fields: Any) -> UploadSession:
        """Apply ``fields`` to a session in one write and return the new record.

        Raises:
            NotFoundError: If the session does not exist
        """
        pass

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Remove a session record.

        Raises:
            NotFoundError: If the session does not exist
        """
        pass

    @abstractmethod
    async def list_all(self) -> list[UploadSession]:
        """List all sessions."""
        pass


class InMemorySessionStore(SessionStore):
    """In-memory store for upload sessions."""

    def __init__(self):
        self._sessions: Dict[str, UploadSession] = {}
        self._keys: Dict[str, str] = {}

    async def create(self, session: UploadSession) -> str:
        if session.id in self._sessions:
            raise ValueError(f"Session {session.id} already exists")
        if session.storage_key in self._keys:
            raise ValueError(f"Storage key {session.storage_key} is already in use")
        self._sessions[session.id] = session
        self._keys[session.storage_key] = session.id
        return session.id

    async def get(self, session_id: str) -> Optional[UploadSession]:
        return self._sessions.get(session_id)

    async def update(self, session_id: str, **fields: Any) -> UploadSession:
        current = self._sessions.get(session_id)
        if current is None:
            raise NotFoundError(f"Upload session {session_id} not found")
        if "id" in fields or "storage_key" in fields:
            raise ValueError("id and storage_key are immutable")
        fields.setdefault("updated_at", utcnow())
        updated = replace(current, **fields)
        self._sessions[session_id] = updated
        return updated

    async def delete(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise NotFoundError(f"Upload session {session_id} not found")
        self._keys.pop(session.storage_key, None)

    async def list_all(self) -> list[UploadSession]:
        return list(self._sessions.values())
