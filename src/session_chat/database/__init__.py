"""
Database module for chat session and message storage.
"""

from .encryption import EncryptionManager
from .interface import MessageLogAdapter, SessionStoreAdapter
from .memory import InMemoryMessageLog, InMemorySessionStore
from .models import Base, ChatMessageRecord, ChatSessionRecord
from .store import ChatDatabase, SQLMessageLog, SQLSessionStore, build_sql_adapters

__all__ = [
    "Base",
    "ChatDatabase",
    "ChatMessageRecord",
    "ChatSessionRecord",
    "EncryptionManager",
    "InMemoryMessageLog",
    "InMemorySessionStore",
    "MessageLogAdapter",
    "SQLMessageLog",
    "SQLSessionStore",
    "SessionStoreAdapter",
    "build_sql_adapters",
]
