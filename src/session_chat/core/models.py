"""
Core Pydantic models for Session Chat.

This module contains the data models shared across the engine: chat sessions,
chat messages, turn results, and the standardized request/response models used
to talk to model providers.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class SessionMode(str, Enum):
    """Session classification controlling downstream response parameters."""
    DEFAULT = "default"
    SPECIALIZED = "specialized"

    @property
    def rank(self) -> int:
        """Position in the one-way upgrade order."""
        return 1 if self is SessionMode.SPECIALIZED else 0


class MessageRole(str, Enum):
    """Author of a persisted chat message."""
    USER = "user"
    ASSISTANT = "assistant"


class TurnStatus(str, Enum):
    """Terminal outcome of one orchestrated turn."""
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial_failure"
    REJECTED = "rejected"


class TurnState(str, Enum):
    """Steps of the turn state machine, in execution order."""
    RESOLVE_SESSION = "resolve_session"
    CLASSIFY = "classify"
    PERSIST_USER_MESSAGE = "persist_user_message"
    GENERATE_REPLY = "generate_reply"
    PERSIST_ASSISTANT_MESSAGE = "persist_assistant_message"


class ChatSession(BaseModel):
    """A persisted conversation container owned by one user."""
    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique session identifier")
    owner_id: str = Field(..., min_length=1, description="Identity of the owning user")
    title: str = Field(default="", description="Display title, empty means untitled")
    mode: SessionMode = Field(default=SessionMode.DEFAULT, description="Current session mode")
    archived: bool = Field(default=False, description="Whether the session is archived")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time, used for ordering")
    updated_at: datetime = Field(default_factory=utc_now, description="Last update time")

    @property
    def display_title(self) -> str:
        return self.title.strip() or "Untitled"


class ChatMessage(BaseModel):
    """A single message in a session transcript."""
    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique message identifier")
    session_id: str = Field(..., description="Owning session")
    role: MessageRole = Field(..., description="Message author")
    content: str = Field(..., description="Message text")
    mode: SessionMode = Field(..., description="Session mode when the message was produced")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time, used for ordering")
    sequence: int = Field(default=0, ge=0, description="Per-session append counter")
    model: Optional[str] = Field(None, description="Model that produced an assistant message")

    @property
    def is_blank(self) -> bool:
        return not self.content or not self.content.strip()


class ClassificationResult(BaseModel):
    """Answer of the mode classifier for one user message."""
    is_specialized: bool = Field(..., description="Whether the message triggers the specialized mode")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0, description="Classifier certainty")


class GenerationResult(BaseModel):
    """Reply produced by the response generator."""
    content: str = Field(..., description="Generated reply text")
    model: Optional[str] = Field(None, description="Model used for generation")


class TurnResult(BaseModel):
    """Outcome of submitting one user message."""
    status: TurnStatus = Field(..., description="Terminal state of the turn")
    session: Optional[ChatSession] = Field(None, description="Session the turn ran against")
    user_message: Optional[ChatMessage] = Field(None, description="Persisted user message")
    assistant_message: Optional[ChatMessage] = Field(None, description="Persisted assistant reply")
    messages: List[ChatMessage] = Field(default_factory=list, description="Updated transcript")
    error: Optional[str] = Field(None, description="Generation failure detail for partial turns")
    session_created: bool = Field(default=False, description="Whether the turn created the session")
    mode_changed: bool = Field(default=False, description="Whether the turn upgraded the session mode")
    states: List[TurnState] = Field(default_factory=list, description="States visited, in order")

    @property
    def succeeded(self) -> bool:
        return self.status is TurnStatus.COMPLETED


class Message(BaseModel):
    """Standardized message format for model interactions."""
    role: str = Field(..., description="Message role (user, assistant, system)")
    content: str = Field(..., description="Message content")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional metadata")

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        valid_roles = {'user', 'assistant', 'system'}
        if v not in valid_roles:
            raise ValueError(f"Role must be one of {valid_roles}")
        return v

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        if not v or not v.strip():
            raise ValueError("Message content cannot be empty")
        if len(v) > 100000:  # 100KB limit
            raise ValueError("Message content exceeds maximum length")
        return v.strip()


class TokenUsage(BaseModel):
    """Token usage information from model APIs."""
    input_tokens: int = Field(..., ge=0, description="Number of input tokens")
    output_tokens: int = Field(..., ge=0, description="Number of output tokens")
    total_tokens: int = Field(..., ge=0, description="Total tokens used")

    @model_validator(mode='after')
    def validate_total(self):
        if self.total_tokens != self.input_tokens + self.output_tokens:
            raise ValueError("Total tokens must equal input_tokens + output_tokens")
        return self


class ModelRequest(BaseModel):
    """Standardized request format for all model providers."""
    model: str = Field(..., description="Model identifier")
    messages: List[Message] = Field(..., min_length=1, description="Conversation messages")
    max_tokens: Optional[int] = Field(None, ge=1, le=32000, description="Maximum tokens to generate")
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0, description="Sampling temperature")
    system_prompt: Optional[str] = Field(None, description="System prompt for models that support it")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional request metadata")

    @field_validator('system_prompt')
    @classmethod
    def validate_system_prompt(cls, v):
        if v is not None and len(v) > 10000:  # 10KB limit for system prompts
            raise ValueError("System prompt exceeds maximum length")
        return v


class ModelResponse(BaseModel):
    """Standardized response format returned by clients."""
    content: str = Field(..., description="Generated content")
    model: str = Field(..., description="Model used for generation")
    usage: TokenUsage = Field(..., description="Token usage information")
    provider: str = Field(..., description="Model provider")
    request_id: str = Field(default_factory=lambda: str(uuid4()), description="Unique request identifier")
    timestamp: datetime = Field(default_factory=utc_now, description="Response timestamp")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional response metadata")
