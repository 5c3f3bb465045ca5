"""
SQL persistence adapters for chat sessions and messages.

Both adapters share one ChatDatabase (async SQLAlchemy engine). Message
content is encrypted at rest when an EncryptionManager is supplied.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import delete, event, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ..config.settings import AppSettings
from ..core.errors import StorageError
from ..core.models import (
    ChatMessage,
    ChatSession,
    MessageRole,
    SessionMode,
    utc_now,
)
from .encryption import EncryptionManager
from .interface import MessageLogAdapter, SessionStoreAdapter
from .models import Base, ChatMessageRecord, ChatSessionRecord

logger = logging.getLogger(__name__)


def _to_db_time(value: datetime) -> datetime:
    """Convert to naive UTC for storage."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db_time(value: datetime) -> datetime:
    """Attach UTC to a stored naive timestamp."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _async_url(database_url: str) -> str:
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class ChatDatabase:
    """Async engine, session factory and schema setup shared by the SQL adapters."""

    def __init__(
        self,
        database_url: str,
        encryption_manager: EncryptionManager | None = None,
        echo: bool = False,
    ):
        self.database_url = _async_url(database_url)
        self.encryption_manager = encryption_manager

        engine_kwargs: dict[str, Any] = {"echo": echo}
        if ":memory:" in self.database_url:
            # One shared connection, otherwise every connection sees an empty database
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}

        self.async_engine = create_async_engine(self.database_url, **engine_kwargs)
        if self.database_url.startswith("sqlite"):
            event.listen(
                self.async_engine.sync_engine, "connect", _enable_sqlite_foreign_keys
            )

        self.AsyncSessionLocal = async_sessionmaker(
            self.async_engine, expire_on_commit=False
        )
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        if self._schema_ready:
            return
        async with self._schema_lock:
            if self._schema_ready:
                return
            try:
                async with self.async_engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to initialize database: {e}") from e
            self._schema_ready = True
            logger.debug(f"Database schema ready at {self.database_url}")

    @asynccontextmanager
    async def session_scope(self) -> AsyncIterator[AsyncSession]:
        """Yield a session, translating SQLAlchemy failures into StorageError."""
        await self.initialize()
        try:
            async with self.AsyncSessionLocal() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Database operation failed: {e}")
            raise StorageError(f"Database operation failed: {e}") from e

    async def close(self) -> None:
        """Close database connections."""
        await self.async_engine.dispose()


class SQLSessionStore(SessionStoreAdapter):
    """Session records in the ``chat_sessions`` table."""

    def __init__(self, database: ChatDatabase):
        self.database = database

    async def create(self, session: ChatSession) -> ChatSession:
        async with self.database.session_scope() as db:
            record = ChatSessionRecord(
                id=session.id,
                owner_id=session.owner_id,
                title=session.title,
                mode=session.mode.value,
                archived=session.archived,
                created_at=_to_db_time(session.created_at),
                updated_at=_to_db_time(session.updated_at),
            )
            db.add(record)
            await db.commit()
            return self._to_model(record)

    async def get(self, session_id: str) -> ChatSession | None:
        async with self.database.session_scope() as db:
            record = await db.get(ChatSessionRecord, session_id)
            return self._to_model(record) if record else None

    async def list_by_owner(self, owner_id: str) -> list[ChatSession]:
        async with self.database.session_scope() as db:
            result = await db.execute(
                select(ChatSessionRecord)
                .where(ChatSessionRecord.owner_id == owner_id)
                .order_by(ChatSessionRecord.created_at.desc())
            )
            return [self._to_model(record) for record in result.scalars().all()]

    async def update(self, session_id: str, fields: dict[str, Any]) -> ChatSession | None:
        async with self.database.session_scope() as db:
            record = await db.get(ChatSessionRecord, session_id)
            if record is None:
                return None

            for name, value in fields.items():
                if isinstance(value, SessionMode):
                    value = value.value
                elif isinstance(value, datetime):
                    value = _to_db_time(value)
                setattr(record, name, value)
            record.updated_at = _to_db_time(utc_now())

            await db.commit()
            return self._to_model(record)

    async def delete(self, session_id: str) -> bool:
        async with self.database.session_scope() as db:
            await db.execute(
                delete(ChatMessageRecord).where(ChatMessageRecord.session_id == session_id)
            )
            result = await db.execute(
                delete(ChatSessionRecord).where(ChatSessionRecord.id == session_id)
            )
            await db.commit()
            return result.rowcount > 0

    async def close(self) -> None:
        await self.database.close()

    @staticmethod
    def _to_model(record: ChatSessionRecord) -> ChatSession:
        return ChatSession(
            id=record.id,
            owner_id=record.owner_id,
            title=record.title or "",
            mode=SessionMode(record.mode),
            archived=bool(record.archived),
            created_at=_from_db_time(record.created_at),
            updated_at=_from_db_time(record.updated_at),
        )


class SQLMessageLog(MessageLogAdapter):
    """Messages in the ``chat_messages`` table."""

    def __init__(self, database: ChatDatabase):
        self.database = database

    async def append(self, message: ChatMessage) -> ChatMessage:
        content, key_id = message.content, None
        if self.database.encryption_manager is not None:
            content, key_id = self.database.encryption_manager.encrypt(message.content)

        async with self.database.session_scope() as db:
            db.add(
                ChatMessageRecord(
                    id=message.id,
                    session_id=message.session_id,
                    role=message.role.value,
                    mode=message.mode.value,
                    model=message.model,
                    sequence=message.sequence,
                    content=content,
                    encryption_key_id=key_id,
                    created_at=_to_db_time(message.created_at),
                )
            )
            await db.commit()
        return message.model_copy()

    async def list_by_session(self, session_id: str) -> list[ChatMessage]:
        async with self.database.session_scope() as db:
            result = await db.execute(
                select(ChatMessageRecord)
                .where(ChatMessageRecord.session_id == session_id)
                .order_by(ChatMessageRecord.created_at, ChatMessageRecord.sequence)
            )
            return [self._to_model(record) for record in result.scalars().all()]

    async def delete_by_session(self, session_id: str) -> int:
        async with self.database.session_scope() as db:
            result = await db.execute(
                delete(ChatMessageRecord).where(ChatMessageRecord.session_id == session_id)
            )
            await db.commit()
            return result.rowcount or 0

    async def close(self) -> None:
        await self.database.close()

    def _to_model(self, record: ChatMessageRecord) -> ChatMessage:
        content = record.content or ""
        if record.encryption_key_id:
            if self.database.encryption_manager is None:
                raise StorageError(
                    f"Message {record.id} is encrypted but no encryption key is configured"
                )
            try:
                content = self.database.encryption_manager.decrypt(
                    content, record.encryption_key_id
                )
            except ValueError as e:
                raise StorageError(f"Failed to decrypt message {record.id}: {e}") from e

        return ChatMessage(
            id=record.id,
            session_id=record.session_id,
            role=MessageRole(record.role),
            content=content,
            mode=SessionMode(record.mode),
            created_at=_from_db_time(record.created_at),
            sequence=record.sequence,
            model=record.model,
        )


def build_sql_adapters(
    settings: AppSettings,
) -> tuple[SQLSessionStore, SQLMessageLog, ChatDatabase]:
    """
    Create both SQL adapters over one database from settings.

    Returns:
        Tuple of (session_store, message_log, database)
    """
    if not settings.database.url:
        Path(settings.data_dir).mkdir(parents=True, exist_ok=True)

    encryption_manager = None
    if settings.database.encryption_enabled:
        encryption_manager = EncryptionManager(
            key_file=settings.get_data_path(".master_key")
        )

    database = ChatDatabase(
        settings.database_url,
        encryption_manager=encryption_manager,
        echo=settings.database.echo,
    )
    return SQLSessionStore(database), SQLMessageLog(database), database
