"""
Assemble a ConversationOrchestrator from application settings.
"""

import logging

from ..config.settings import AppSettings, get_settings
from ..database.store import build_sql_adapters
from ..routing.classifier import create_mode_classifier
from ..routing.generator import create_response_generator
from .message_log import MessageLog
from .orchestrator import ConversationOrchestrator
from .session_manager import SessionManager

logger = logging.getLogger(__name__)


def build_orchestrator(settings: AppSettings | None = None) -> ConversationOrchestrator:
    """
    Create an orchestrator backed by the SQL adapters and configured ports.

    Args:
        settings: Settings to build from (defaults to the global settings)

    Returns:
        Ready to use orchestrator; call ``close()`` when done
    """
    settings = settings or get_settings()

    session_store, message_adapter, database = build_sql_adapters(settings)
    message_log = MessageLog(message_adapter)
    session_manager = SessionManager(session_store, message_log)

    orchestrator = ConversationOrchestrator(
        session_manager=session_manager,
        message_log=message_log,
        classifier=create_mode_classifier(settings),
        generator=create_response_generator(settings),
        classification_timeout=settings.routing.classification_timeout,
        generation_timeout=settings.routing.generation_timeout,
    )

    logger.debug(f"Built orchestrator over {database.database_url}")
    return orchestrator
