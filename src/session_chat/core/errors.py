"""
Error taxonomy for the chat session engine.

Validation and policy errors are raised before anything is persisted, storage
errors propagate untouched, classification errors are swallowed by the
orchestrator, and generation errors end a turn as a partial failure.
"""

from typing import Any


class SessionChatError(Exception):
    """Base exception for engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(SessionChatError):
    """Input rejected before any side effect."""

    pass


class NotFoundError(SessionChatError):
    """Operation targeted a session that does not exist."""

    def __init__(self, session_id: str, **kwargs: Any) -> None:
        super().__init__(f"Session not found: {session_id}", **kwargs)
        self.session_id = session_id


class PolicyError(SessionChatError):
    """Operation would break a session invariant, such as a mode downgrade."""

    pass


class StorageError(SessionChatError):
    """Persistence adapter failed."""

    pass


class ClassificationError(SessionChatError):
    """Mode classifier call failed or returned an unusable answer."""

    pass


class GenerationError(SessionChatError):
    """Response generator call failed, timed out, or returned nothing."""

    pass
