"""
Shared test fixtures and configuration for Session Chat tests.

This file provides environment isolation, global state resets, in-memory
storage and scripted classifier/generator doubles so tests never touch the
network or the user's data directory.
"""

import asyncio
import logging
import os
import warnings
from unittest.mock import AsyncMock, patch

import pytest

from session_chat.config.settings import AppSettings, config_manager
from session_chat.core.models import ClassificationResult, GenerationResult, SessionMode
from session_chat.database.memory import InMemoryMessageLog, InMemorySessionStore
from session_chat.orchestration.message_log import MessageLog
from session_chat.orchestration.orchestrator import ConversationOrchestrator
from session_chat.orchestration.session_manager import SessionManager
from session_chat.routing.classifier import ModeClassifier, clear_classification_cache
from session_chat.routing.generator import ResponseGenerator

# Suppress specific warnings that can slow down tests
warnings.filterwarnings("ignore", category=DeprecationWarning)

# Configure logging for tests
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("session_chat").setLevel(logging.WARNING)

SENSITIVE_ENV_PREFIXES = ("DATABASE__", "API__", "ROUTING__")
SENSITIVE_ENV_VARS = [
    "LOG_LEVEL",
    "ENVIRONMENT",
    "APP_NAME",
    "DATA_DIR",
    "OPENROUTER_API_KEY",
    "CLASSIFIER_ENDPOINT",
    "SESSION_CHAT_MASTER_KEY",
    "SESSION_CHAT_OWNER",
    "SESSION_CHAT_CONFIG",
]


@pytest.fixture(autouse=True, scope="function")
def isolated_environment(tmp_path):
    """
    Isolate environment variables for each test to prevent test pollution.

    Settings-related variables are removed and the working directory moves to
    a temp path so no .env file or ./data directory is picked up.
    """
    names = set(SENSITIVE_ENV_VARS)
    names.update(k for k in os.environ if k.upper().startswith(SENSITIVE_ENV_PREFIXES))

    original_env = {}
    for var in names:
        original_env[var] = os.environ.pop(var, None)

    original_cwd = os.getcwd()
    os.chdir(tmp_path)

    yield

    os.chdir(original_cwd)
    for var, original_value in original_env.items():
        if original_value is not None:
            os.environ[var] = original_value
        else:
            os.environ.pop(var, None)


@pytest.fixture(autouse=True, scope="function")
def reset_global_state():
    """
    Reset global state between tests.

    Clears the configuration manager, the classification cache and any
    handlers the CLI attached to the package logger.
    """
    config_manager.reset()
    clear_classification_cache()

    yield

    config_manager.reset()
    clear_classification_cache()
    package_logger = logging.getLogger("session_chat")
    package_logger.handlers.clear()
    package_logger.setLevel(logging.WARNING)


@pytest.fixture(scope="function")
def mock_asyncio_sleep():
    """Make asyncio.sleep return immediately, for retry/backoff tests."""
    with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture(scope="function")
def test_settings(tmp_path):
    """Settings with safe test defaults and a temp data directory."""
    return AppSettings(
        environment="testing",
        log_level="ERROR",
        openrouter_api_key="sk-or-test-key-for-testing",
        data_dir=str(tmp_path / "data"),
    )


class FakeClassifier(ModeClassifier):
    """Classifier double: specialized when a trigger word is present."""

    def __init__(self, triggers=("anxious",)):
        self.triggers = tuple(triggers)
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[str] = []
        self.closed = False

    async def classify(self, text: str) -> ClassificationResult:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        specialized = any(t in text.lower() for t in self.triggers)
        return ClassificationResult(is_specialized=specialized, confidence=0.9)

    async def close(self) -> None:
        self.closed = True


class FakeGenerator(ResponseGenerator):
    """Generator double returning a scripted reply."""

    def __init__(self, reply: str = "Hi there"):
        self.reply = reply
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[tuple[SessionMode, list[str]]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def generate(self, mode, history) -> GenerationResult:
        self.calls.append((mode, [m.content for m in history]))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return GenerationResult(content=self.reply, model=f"test/{mode.value}")
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_classifier():
    return FakeClassifier()


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def message_log():
    return MessageLog(InMemoryMessageLog())


@pytest.fixture
def session_manager(session_store, message_log):
    return SessionManager(session_store, message_log)


@pytest.fixture
def orchestrator(session_manager, message_log, fake_classifier, fake_generator):
    """Orchestrator over in-memory storage with scripted ports."""
    return ConversationOrchestrator(
        session_manager=session_manager,
        message_log=message_log,
        classifier=fake_classifier,
        generator=fake_generator,
        classification_timeout=1.0,
        generation_timeout=1.0,
    )
