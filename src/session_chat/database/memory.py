"""
In-memory persistence adapters.

Used for tests and for running the engine without a database. Records are
copied on the way in and out so callers never share mutable state with the
store.
"""

from typing import Any

from ..core.models import ChatMessage, ChatSession, utc_now
from .interface import MessageLogAdapter, SessionStoreAdapter


class InMemorySessionStore(SessionStoreAdapter):
    """Session records kept in a dict keyed by id."""

    def __init__(self) -> None:
        self._sessions: dict[str, ChatSession] = {}

    async def create(self, session: ChatSession) -> ChatSession:
        self._sessions[session.id] = session.model_copy()
        return session.model_copy()

    async def get(self, session_id: str) -> ChatSession | None:
        session = self._sessions.get(session_id)
        return session.model_copy() if session else None

    async def list_by_owner(self, owner_id: str) -> list[ChatSession]:
        return [s.model_copy() for s in self._sessions.values() if s.owner_id == owner_id]

    async def update(self, session_id: str, fields: dict[str, Any]) -> ChatSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        updated = session.model_copy(update={**fields, "updated_at": utc_now()})
        self._sessions[session_id] = updated
        return updated.model_copy()

    async def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None


class InMemoryMessageLog(MessageLogAdapter):
    """Messages kept in per-session lists in append order."""

    def __init__(self) -> None:
        self._messages: dict[str, list[ChatMessage]] = {}

    async def append(self, message: ChatMessage) -> ChatMessage:
        self._messages.setdefault(message.session_id, []).append(message.model_copy())
        return message.model_copy()

    async def list_by_session(self, session_id: str) -> list[ChatMessage]:
        return [m.model_copy() for m in self._messages.get(session_id, [])]

    async def delete_by_session(self, session_id: str) -> int:
        return len(self._messages.pop(session_id, []))
