"""
SQLAlchemy models for chat session storage.
"""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, declarative_base, relationship

Base = declarative_base()


class ChatSessionRecord(Base):
    """Persisted chat session."""

    __tablename__ = "chat_sessions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    owner_id = Column(String, nullable=False)

    title = Column(String, nullable=False, default="")
    mode = Column(String, nullable=False, default="default")  # 'default' or 'specialized'
    archived = Column(Boolean, nullable=False, default=False)

    # Stored as naive UTC
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    messages: Mapped[list["ChatMessageRecord"]] = relationship(
        "ChatMessageRecord",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_chat_sessions_owner_created", "owner_id", "created_at"),
        Index("idx_chat_sessions_owner_archived", "owner_id", "archived"),
    )


class ChatMessageRecord(Base):
    """Persisted chat message."""

    __tablename__ = "chat_messages"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    session_id = Column(
        String, ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False
    )

    role = Column(String, nullable=False)  # 'user' or 'assistant'
    mode = Column(String, nullable=False)
    model = Column(String, nullable=True)
    sequence = Column(Integer, nullable=False, default=0)

    # Content, encrypted when encryption_key_id is set
    content = Column(Text, nullable=False)
    encryption_key_id = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False)

    session: Mapped["ChatSessionRecord"] = relationship(
        "ChatSessionRecord", back_populates="messages"
    )

    __table_args__ = (
        Index("idx_chat_messages_session_created", "session_id", "created_at"),
        Index("idx_chat_messages_session_sequence", "session_id", "sequence"),
    )
