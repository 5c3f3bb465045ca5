"""
Conversation orchestration module.

This module provides the ConversationOrchestrator turn state machine together
with the session manager and message log it coordinates.
"""

from .factory import build_orchestrator
from .message_log import MessageLog
from .orchestrator import ConversationOrchestrator
from .session_manager import SessionManager

__all__ = [
    "ConversationOrchestrator",
    "MessageLog",
    "SessionManager",
    "build_orchestrator",
]
