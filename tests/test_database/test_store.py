"""
Tests for the SQL persistence adapters.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select

from session_chat.core.errors import StorageError
from session_chat.core.models import ChatMessage, ChatSession, MessageRole, SessionMode
from session_chat.database.encryption import EncryptionManager
from session_chat.database.models import ChatMessageRecord
from session_chat.database.store import (
    ChatDatabase,
    SQLMessageLog,
    SQLSessionStore,
    build_sql_adapters,
)
from session_chat.orchestration.message_log import MessageLog
from session_chat.orchestration.session_manager import SessionManager

T0 = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def database(tmp_path):
    db = ChatDatabase(
        f"sqlite:///{tmp_path / 'chat.db'}",
        encryption_manager=EncryptionManager(master_key="test-master-key"),
    )
    yield db
    await db.close()


@pytest.fixture
def store(database):
    return SQLSessionStore(database)


@pytest.fixture
def log_adapter(database):
    return SQLMessageLog(database)


def make_session(owner="alice", created_at=T0, **kwargs) -> ChatSession:
    return ChatSession(owner_id=owner, created_at=created_at, updated_at=created_at, **kwargs)


def make_message(session_id, content="hello", sequence=1, created_at=T0, **kwargs) -> ChatMessage:
    kwargs.setdefault("role", MessageRole.USER)
    kwargs.setdefault("mode", SessionMode.DEFAULT)
    return ChatMessage(
        session_id=session_id,
        content=content,
        sequence=sequence,
        created_at=created_at,
        **kwargs,
    )


class TestSQLSessionStore:
    """Test session persistence."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        session = make_session(title="First", mode=SessionMode.SPECIALIZED)

        await store.create(session)
        loaded = await store.get(session.id)

        assert loaded == session
        assert loaded.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_list_by_owner(self, store):
        await store.create(make_session("alice"))
        await store.create(make_session("alice", created_at=T0 + timedelta(minutes=1)))
        await store.create(make_session("bob"))

        sessions = await store.list_by_owner("alice")

        assert len(sessions) == 2
        assert {s.owner_id for s in sessions} == {"alice"}

    @pytest.mark.asyncio
    async def test_update_fields(self, store):
        session = make_session()
        await store.create(session)

        updated = await store.update(
            session.id,
            {"title": "Renamed", "archived": True, "mode": SessionMode.SPECIALIZED},
        )

        assert updated.title == "Renamed"
        assert updated.archived is True
        assert updated.mode is SessionMode.SPECIALIZED
        assert updated.updated_at > session.updated_at
        assert await store.get(session.id) == updated

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        assert await store.update("missing", {"title": "x"}) is None

    @pytest.mark.asyncio
    async def test_delete_cascades(self, store, log_adapter):
        session = make_session()
        await store.create(session)
        await log_adapter.append(make_message(session.id))

        assert await store.delete(session.id) is True
        assert await store.get(session.id) is None
        assert await log_adapter.list_by_session(session.id) == []
        assert await store.delete(session.id) is False


class TestSQLMessageLog:
    """Test message persistence."""

    @pytest.mark.asyncio
    async def test_append_and_list(self, store, log_adapter):
        session = make_session()
        await store.create(session)

        first = make_message(session.id, "hello", 1, T0)
        second = make_message(
            session.id, "hi!", 2, T0 + timedelta(microseconds=1),
            role=MessageRole.ASSISTANT, model="openai/gpt-3.5-turbo",
        )
        await log_adapter.append(second)
        await log_adapter.append(first)

        messages = await log_adapter.list_by_session(session.id)

        assert [m.content for m in messages] == ["hello", "hi!"]
        assert messages[1].model == "openai/gpt-3.5-turbo"
        assert messages[1].created_at == T0 + timedelta(microseconds=1)

    @pytest.mark.asyncio
    async def test_content_encrypted_at_rest(self, store, log_adapter, database):
        session = make_session()
        await store.create(session)
        await log_adapter.append(make_message(session.id, "a private thought"))

        async with database.session_scope() as db:
            record = (await db.execute(select(ChatMessageRecord))).scalar_one()

        assert record.content != "a private thought"
        assert record.encryption_key_id == "primary_v1"

    @pytest.mark.asyncio
    async def test_wrong_key_raises_storage_error(self, tmp_path, store, log_adapter):
        session = make_session()
        await store.create(session)
        await log_adapter.append(make_message(session.id, "secret"))

        other = ChatDatabase(
            f"sqlite:///{tmp_path / 'chat.db'}",
            encryption_manager=EncryptionManager(master_key="a-different-key"),
        )
        try:
            with pytest.raises(StorageError, match="decrypt"):
                await SQLMessageLog(other).list_by_session(session.id)
        finally:
            await other.close()

    @pytest.mark.asyncio
    async def test_plaintext_without_encryption(self, tmp_path):
        database = ChatDatabase(f"sqlite:///{tmp_path / 'plain.db'}")
        try:
            store, log = SQLSessionStore(database), SQLMessageLog(database)
            session = make_session()
            await store.create(session)
            await log.append(make_message(session.id, "visible"))

            async with database.session_scope() as db:
                record = (await db.execute(select(ChatMessageRecord))).scalar_one()

            assert record.content == "visible"
            assert record.encryption_key_id is None
        finally:
            await database.close()

    @pytest.mark.asyncio
    async def test_delete_by_session(self, store, log_adapter):
        session = make_session()
        await store.create(session)
        for i in range(3):
            await log_adapter.append(
                make_message(session.id, f"m{i}", i + 1, T0 + timedelta(seconds=i))
            )

        assert await log_adapter.delete_by_session(session.id) == 3
        assert await log_adapter.list_by_session(session.id) == []

    @pytest.mark.asyncio
    async def test_append_to_missing_session_raises(self, log_adapter):
        with pytest.raises(StorageError):
            await log_adapter.append(make_message("no-such-session"))


class TestInMemoryDatabase:
    """Test the shared-connection in-memory URL."""

    @pytest.mark.asyncio
    async def test_memory_url(self):
        database = ChatDatabase("sqlite:///:memory:")
        try:
            store = SQLSessionStore(database)
            session = make_session()
            await store.create(session)
            assert await store.get(session.id) == session
        finally:
            await database.close()


class TestSQLEndToEnd:
    """Session manager and message log over the SQL adapters."""

    @pytest.mark.asyncio
    async def test_manager_and_log_over_sql(self, test_settings, monkeypatch):
        monkeypatch.setenv("SESSION_CHAT_MASTER_KEY", "test-master-key")
        store, adapter, database = build_sql_adapters(test_settings)
        try:
            message_log = MessageLog(adapter)
            manager = SessionManager(store, message_log)

            session = await manager.create_session("alice")
            await message_log.append_message(
                session.id, MessageRole.USER, "hello", session.mode
            )
            await message_log.append_message(
                session.id, MessageRole.ASSISTANT, "hi", session.mode
            )
            upgraded = await manager.upgrade_mode(session.id, SessionMode.SPECIALIZED)

            assert upgraded.mode is SessionMode.SPECIALIZED
            assert [m.content for m in await message_log.list_messages(session.id)] == [
                "hello",
                "hi",
            ]

            await manager.delete_session(session.id)
            assert await message_log.list_messages(session.id) == []
            assert await manager.list_sessions("alice") == []
        finally:
            await database.close()

    def test_build_sql_adapters_uses_data_dir(self, test_settings):
        store, adapter, database = build_sql_adapters(test_settings)

        assert store.database is database
        assert adapter.database is database
        assert database.database_url.startswith("sqlite+aiosqlite:///")
        assert database.database_url.endswith("session_chat.db")
        assert database.encryption_manager is not None
        assert test_settings.get_data_path(".master_key").exists()
