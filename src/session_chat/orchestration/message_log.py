"""
Ordered, filtered access to session transcripts.

The MessageLog sits on top of a MessageLogAdapter and enforces the transcript
rules: blank content is never written or returned, and every appended message
gets a timestamp and sequence number strictly greater than the previous one in
its session.
"""

import asyncio
import logging
import weakref
from collections.abc import Callable
from datetime import datetime, timedelta

from ..core.models import ChatMessage, MessageRole, SessionMode, utc_now
from ..database.interface import MessageLogAdapter

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


class MessageLog:
    """Append and list messages for sessions."""

    def __init__(
        self,
        adapter: MessageLogAdapter,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.adapter = adapter
        self._clock = clock
        # Entries vanish once no append holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def append_message(
        self,
        session_id: str,
        role: MessageRole | str,
        content: str,
        mode: SessionMode | str,
        model: str | None = None,
    ) -> ChatMessage | None:
        """
        Append a message to a session transcript.

        Args:
            session_id: Target session
            role: Message author
            content: Raw text, stored trimmed
            mode: Session mode in effect for this message
            model: Model that produced an assistant message

        Returns:
            The stored message, or None if the trimmed content was empty
        """
        text = (content or "").strip()
        if not text:
            logger.debug(f"Skipping blank {MessageRole(role).value} message for session {session_id}")
            return None

        async with self._lock_for(session_id):
            last_at, last_sequence = await self._last_position(session_id)

            created_at = self._clock()
            if last_at is not None and created_at <= last_at:
                created_at = last_at + _TICK

            message = ChatMessage(
                session_id=session_id,
                role=MessageRole(role),
                content=text,
                mode=SessionMode(mode),
                created_at=created_at,
                sequence=last_sequence + 1,
                model=model,
            )
            stored = await self.adapter.append(message)

        logger.debug(
            f"Appended {stored.role.value} message #{stored.sequence} "
            f"to session {session_id} (mode={stored.mode.value})"
        )
        return stored

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        """
        List a session's messages in chronological order.

        Stored messages with blank content are dropped.
        """
        messages = await self.adapter.list_by_session(session_id)
        visible = [m for m in messages if not m.is_blank]

        dropped = len(messages) - len(visible)
        if dropped:
            logger.warning(f"Dropped {dropped} blank stored message(s) from session {session_id}")

        return sorted(visible, key=lambda m: (m.created_at, m.sequence))

    async def delete_messages(self, session_id: str) -> int:
        """Remove every message of a session."""
        removed = await self.adapter.delete_by_session(session_id)
        self._locks.pop(session_id, None)
        logger.debug(f"Deleted {removed} message(s) from session {session_id}")
        return removed

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def _last_position(self, session_id: str) -> tuple[datetime | None, int]:
        """Timestamp and sequence of the newest stored message, blank rows included."""
        messages = await self.adapter.list_by_session(session_id)
        if not messages:
            return None, 0

        last_at = max(m.created_at for m in messages)
        last_sequence = max(m.sequence for m in messages)
        return last_at, last_sequence
