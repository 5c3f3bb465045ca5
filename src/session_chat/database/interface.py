"""
Persistence contracts required by the chat engine.

Storage backends implement these adapters; the Session Manager and Message Log
are the only callers, and they own ordering, filtering, and validation.
"""

from abc import ABC, abstractmethod
from typing import Any

from ..core.models import ChatMessage, ChatSession


class SessionStoreAdapter(ABC):
    """Persistence of session records."""

    @abstractmethod
    async def create(self, session: ChatSession) -> ChatSession:
        """
        Persist a new session record.

        Raises:
            StorageError: If the backend fails
        """
        pass

    @abstractmethod
    async def get(self, session_id: str) -> ChatSession | None:
        """Load one session, or None if it does not exist."""
        pass

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> list[ChatSession]:
        """
        Load every session of an owner.

        Ordering is not guaranteed; callers sort.
        """
        pass

    @abstractmethod
    async def update(self, session_id: str, fields: dict[str, Any]) -> ChatSession | None:
        """
        Apply a partial update.

        Returns:
            The updated session, or None if it does not exist
        """
        pass

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Remove a session. Returns False if it did not exist."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass


class MessageLogAdapter(ABC):
    """Persistence of messages, grouped by session."""

    @abstractmethod
    async def append(self, message: ChatMessage) -> ChatMessage:
        """
        Persist a message record as given.

        Raises:
            StorageError: If the backend fails
        """
        pass

    @abstractmethod
    async def list_by_session(self, session_id: str) -> list[ChatMessage]:
        """Load every stored message of a session, including blank legacy rows."""
        pass

    @abstractmethod
    async def delete_by_session(self, session_id: str) -> int:
        """Remove all messages of a session. Returns the number removed."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass
