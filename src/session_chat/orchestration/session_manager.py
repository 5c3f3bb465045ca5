"""
Session lifecycle management.

The SessionManager owns session CRUD on top of a SessionStoreAdapter:
creation, owner listings split into active and archived sets, renaming,
archiving, deletion with message cascade, and one-way mode upgrades.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from ..core.errors import NotFoundError, PolicyError, ValidationError
from ..core.models import ChatSession, SessionMode, utc_now
from ..database.interface import SessionStoreAdapter
from .message_log import MessageLog

logger = logging.getLogger(__name__)


class SessionManager:
    """Create, list, edit and delete chat sessions."""

    def __init__(
        self,
        store: SessionStoreAdapter,
        message_log: MessageLog,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.message_log = message_log
        self._clock = clock

    async def create_session(
        self, owner_id: str, initial_mode: SessionMode = SessionMode.DEFAULT
    ) -> ChatSession:
        """
        Create an active, untitled session.

        Args:
            owner_id: Identity of the owning user
            initial_mode: Mode the session starts in

        Returns:
            The stored session

        Raises:
            ValidationError: If owner_id is empty
            StorageError: If the store fails
        """
        if not owner_id or not owner_id.strip():
            raise ValidationError("Owner id is required to create a session")

        now = self._clock()
        session = ChatSession(
            owner_id=owner_id,
            mode=SessionMode(initial_mode),
            created_at=now,
            updated_at=now,
        )
        stored = await self.store.create(session)

        logger.info(
            f"Created session {stored.id} for owner {owner_id} (mode={stored.mode.value})"
        )
        return stored

    async def get_session(self, session_id: str) -> ChatSession:
        """
        Load a session.

        Raises:
            NotFoundError: If the session does not exist
        """
        session = await self.store.get(session_id)
        if session is None:
            raise NotFoundError(session_id)
        return session

    async def list_sessions(self, owner_id: str, archived: bool = False) -> list[ChatSession]:
        """Owner's sessions in the active or archived set, newest first."""
        sessions = await self.store.list_by_owner(owner_id)
        matching = [s for s in sessions if s.archived is archived]
        return sorted(matching, key=lambda s: s.created_at, reverse=True)

    async def rename_session(self, session_id: str, new_title: str) -> ChatSession:
        """
        Set a session's title. An empty title means "untitled".

        Raises:
            NotFoundError: If the session does not exist
        """
        title = (new_title or "").strip()
        return await self._update(session_id, {"title": title})

    async def set_archived(self, session_id: str, archived: bool) -> ChatSession:
        """
        Move a session into or out of the archived set.

        Setting the current value is a successful no-op.

        Raises:
            NotFoundError: If the session does not exist
        """
        session = await self.get_session(session_id)
        if session.archived is archived:
            logger.debug(f"Session {session_id} already has archived={archived}")
            return session

        updated = await self._update(session_id, {"archived": archived})
        logger.info(f"Session {session_id} {'archived' if archived else 'unarchived'}")
        return updated

    async def delete_session(self, session_id: str) -> None:
        """
        Permanently delete a session and all of its messages.

        Raises:
            NotFoundError: If the session does not exist
        """
        await self.get_session(session_id)

        removed = await self.message_log.delete_messages(session_id)
        if not await self.store.delete(session_id):
            raise NotFoundError(session_id)

        logger.info(f"Deleted session {session_id} and {removed} message(s)")

    async def upgrade_mode(self, session_id: str, new_mode: SessionMode) -> ChatSession:
        """
        Persist a mode transition.

        Modes only move forward (default -> specialized); requesting the
        current mode is a no-op.

        Raises:
            NotFoundError: If the session does not exist
            PolicyError: If the transition would downgrade the mode
        """
        new_mode = SessionMode(new_mode)
        session = await self.get_session(session_id)

        if new_mode is session.mode:
            return session
        if new_mode.rank < session.mode.rank:
            raise PolicyError(
                f"Cannot change session {session_id} mode from "
                f"'{session.mode.value}' to '{new_mode.value}'",
                details={"session_id": session_id, "current_mode": session.mode.value},
            )

        updated = await self._update(session_id, {"mode": new_mode})
        logger.info(
            f"Upgraded session {session_id} mode: {session.mode.value} -> {new_mode.value}"
        )
        return updated

    async def _update(self, session_id: str, fields: dict) -> ChatSession:
        updated = await self.store.update(session_id, fields)
        if updated is None:
            raise NotFoundError(session_id)
        return updated
