"""
ConversationOrchestrator for chat turns and owner-scoped session access.

This module runs one chat turn as an explicit state machine
(resolve session, classify, persist user message, generate reply, persist
assistant message) and exposes the session operations callers use, each
scoped to the requesting owner.
"""

import asyncio
import logging
import weakref

from ..core.errors import GenerationError, NotFoundError, ValidationError
from ..core.models import (
    ChatMessage,
    ChatSession,
    MessageRole,
    SessionMode,
    TurnResult,
    TurnState,
    TurnStatus,
)
from ..routing.classifier import ModeClassifier
from ..routing.generator import ResponseGenerator
from .message_log import MessageLog
from .session_manager import SessionManager

logger = logging.getLogger(__name__)


class ConversationOrchestrator:
    """
    Coordinates sessions, transcripts, classification and generation.

    Turns against the same session are serialized by a per-session lock held
    for the whole turn; turns against different sessions run concurrently.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        message_log: MessageLog,
        classifier: ModeClassifier,
        generator: ResponseGenerator,
        classification_timeout: float = 10.0,
        generation_timeout: float = 60.0,
    ):
        """
        Initialize conversation orchestrator.

        Args:
            session_manager: Session lifecycle manager
            message_log: Transcript access
            classifier: Mode classifier, failures are ignored
            generator: Reply generator, failures end the turn as partial
            classification_timeout: Seconds allowed for one classifier call
            generation_timeout: Seconds allowed for one generator call
        """
        self.session_manager = session_manager
        self.message_log = message_log
        self.classifier = classifier
        self.generator = generator
        self.classification_timeout = classification_timeout
        self.generation_timeout = generation_timeout
        # Entries vanish once no turn holds or waits on the lock
        self._turn_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

        logger.debug("ConversationOrchestrator initialized")

    async def submit_message(
        self, owner_id: str, session_id: str | None, text: str
    ) -> TurnResult:
        """
        Run one chat turn.

        Args:
            owner_id: Identity of the requesting user
            session_id: Session to continue, or None to start a new one
            text: Raw user input

        Returns:
            TurnResult describing how far the turn got

        Raises:
            ValidationError: If owner_id is empty
            NotFoundError: If session_id does not name one of the owner's sessions
            StorageError: If persistence fails at any step
        """
        text = (text or "").strip()
        if not text:
            logger.debug("Rejected turn with blank input")
            return TurnResult(status=TurnStatus.REJECTED)

        self._require_owner(owner_id)

        session_created = False
        if session_id is None:
            session = await self.session_manager.create_session(owner_id)
            session_id = session.id
            session_created = True

        async with self._lock_for(session_id):
            states = [TurnState.RESOLVE_SESSION]
            if not session_created:
                session = await self._get_owned_session(owner_id, session_id)

            states.append(TurnState.CLASSIFY)
            session, mode_changed = await self._classify(session, text)

            states.append(TurnState.PERSIST_USER_MESSAGE)
            user_message = await self.message_log.append_message(
                session.id, MessageRole.USER, text, session.mode
            )

            states.append(TurnState.GENERATE_REPLY)
            history = await self.message_log.list_messages(session.id)
            assistant_message = None
            error = None
            try:
                reply = await asyncio.wait_for(
                    self.generator.generate(session.mode, history),
                    timeout=self.generation_timeout,
                )
            except GenerationError as e:
                error = e.message
            except asyncio.TimeoutError:
                error = f"Response generation timed out after {self.generation_timeout}s"
            except Exception as e:
                logger.error(f"Unexpected generator failure in session {session.id}: {e}")
                error = f"Response generation failed: {e}"
            else:
                states.append(TurnState.PERSIST_ASSISTANT_MESSAGE)
                assistant_message = await self.message_log.append_message(
                    session.id,
                    MessageRole.ASSISTANT,
                    reply.content,
                    session.mode,
                    model=reply.model,
                )
                if assistant_message is None:
                    error = "Response generator returned an empty reply"

            messages = await self.message_log.list_messages(session.id)

        if error is not None:
            logger.warning(f"Turn in session {session.id} ended as partial failure: {error}")
            status = TurnStatus.PARTIAL_FAILURE
        else:
            logger.info(f"Turn completed in session {session.id} (mode={session.mode.value})")
            status = TurnStatus.COMPLETED

        return TurnResult(
            status=status,
            session=session,
            user_message=user_message,
            assistant_message=assistant_message,
            messages=messages,
            error=error,
            session_created=session_created,
            mode_changed=mode_changed,
            states=states,
        )

    async def list_sessions(self, owner_id: str, archived: bool = False) -> list[ChatSession]:
        """List the owner's active (or archived) sessions, newest first."""
        self._require_owner(owner_id)
        return await self.session_manager.list_sessions(owner_id, archived=archived)

    async def select_session(self, owner_id: str, session_id: str) -> list[ChatMessage]:
        """Load the transcript of one of the owner's sessions."""
        await self._get_owned_session(owner_id, session_id)
        return await self.message_log.list_messages(session_id)

    async def rename_session(self, owner_id: str, session_id: str, title: str) -> ChatSession:
        """Retitle one of the owner's sessions; an empty title means untitled."""
        await self._get_owned_session(owner_id, session_id)
        return await self.session_manager.rename_session(session_id, title)

    async def archive_session(self, owner_id: str, session_id: str) -> ChatSession:
        """Move one of the owner's sessions to the archived list."""
        await self._get_owned_session(owner_id, session_id)
        return await self.session_manager.set_archived(session_id, True)

    async def unarchive_session(self, owner_id: str, session_id: str) -> ChatSession:
        """Move one of the owner's sessions back to the active list."""
        await self._get_owned_session(owner_id, session_id)
        return await self.session_manager.set_archived(session_id, False)

    async def delete_session(self, owner_id: str, session_id: str) -> None:
        """Delete one of the owner's sessions once no turn is running on it."""
        async with self._lock_for(session_id):
            await self._get_owned_session(owner_id, session_id)
            await self.session_manager.delete_session(session_id)
        self._turn_locks.pop(session_id, None)

    async def close(self) -> None:
        """Close the ports and storage adapters."""
        await self.classifier.close()
        await self.generator.close()
        await self.message_log.adapter.close()
        await self.session_manager.store.close()

    async def _classify(self, session: ChatSession, text: str) -> tuple[ChatSession, bool]:
        """Run the classifier and upgrade the session mode when it says so."""
        try:
            result = await asyncio.wait_for(
                self.classifier.classify(text), timeout=self.classification_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Mode classification timed out after {self.classification_timeout}s "
                f"in session {session.id}, keeping mode '{session.mode.value}'"
            )
            return session, False
        except Exception as e:
            logger.warning(
                f"Mode classification failed in session {session.id}, "
                f"keeping mode '{session.mode.value}': {e}"
            )
            return session, False

        if not result.is_specialized or session.mode is SessionMode.SPECIALIZED:
            return session, False

        upgraded = await self.session_manager.upgrade_mode(session.id, SessionMode.SPECIALIZED)
        return upgraded, True

    async def _get_owned_session(self, owner_id: str, session_id: str) -> ChatSession:
        """Load a session, hiding sessions that belong to someone else."""
        self._require_owner(owner_id)
        try:
            session = await self.session_manager.get_session(session_id)
        except NotFoundError:
            self._turn_locks.pop(session_id, None)
            raise

        if session.owner_id != owner_id:
            logger.debug(f"Session {session_id} requested by non-owner {owner_id}")
            raise NotFoundError(session_id)
        return session

    @staticmethod
    def _require_owner(owner_id: str) -> None:
        if not owner_id or not owner_id.strip():
            raise ValidationError("Owner id is required")

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._turn_locks.get(session_id)
        if lock is None:
            lock = self._turn_locks[session_id] = asyncio.Lock()
        return lock
