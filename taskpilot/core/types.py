"""
Core Types and Data Structures

Defines the fundamental types shared by the decomposer, planner and agent loop.
These are intentionally simple, immutable where possible, and serializable.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# ============================================================
# Messages
# ============================================================

class MessageRole(str, Enum):
    """Role of a message in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ChatMessage(BaseModel):
    """
    A single message sent to or received from a reasoning service.

    Immutable by design. Create new messages rather than modifying.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    role: MessageRole
    content: str
    name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.ASSISTANT, content=content)


class ChatOptions(BaseModel):
    """
    Per-call generation options.

    Validated on construction so that an out-of-range temperature or
    token limit never reaches a backend.
    """

    model_config = ConfigDict(frozen=True)

    model: str | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1)
    stop: list[str] | None = None


class ToolCall(BaseModel):
    """A tool invocation requested by a reasoning service."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"call_{uuid4().hex[:8]}")
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class TokenUsage(BaseModel):
    """Token usage statistics."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LLMResponse(BaseModel):
    """Response from a reasoning service chat call."""

    content: str
    model: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: str | None = None

    def to_message(self) -> ChatMessage:
        return ChatMessage.assistant(self.content)


class StreamEventType(str, Enum):
    """Kinds of events yielded by a streaming chat call."""

    CONTENT = "content"
    TOOL_CALL = "tool_call"
    ERROR = "error"
    DONE = "done"


class StreamEvent(BaseModel):
    """One event from a streaming chat call."""

    model_config = ConfigDict(frozen=True)

    type: StreamEventType
    content: str = ""
    tool_call: ToolCall | None = None
    error: str | None = None


class ModelInfo(BaseModel):
    """A model offered by a reasoning service."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    provider: str = ""
    context_length: int | None = None


# ============================================================
# Execution context
# ============================================================

class AgentContext(BaseModel):
    """
    The goal of one engine run plus the limits it runs under.

    Created by the caller and read-only thereafter. ``max_duration`` is in
    seconds. An empty ``allowed_tools`` list means every tool is allowed
    unless it is listed in ``blocked_tools``.
    """

    model_config = ConfigDict(frozen=True)

    goal: str = Field(min_length=1)
    session_id: str = Field(default_factory=lambda: uuid4().hex)
    user_id: str | None = None
    constraints: list[str] = Field(default_factory=list)
    preferences: dict[str, Any] = Field(default_factory=dict)
    max_steps: int = Field(default=20, ge=1)
    max_duration: float = Field(default=300.0, gt=0)
    allowed_tools: list[str] = Field(default_factory=list)
    blocked_tools: list[str] = Field(default_factory=list)

    def is_tool_allowed(self, name: str) -> bool:
        if name in self.blocked_tools:
            return False
        return not self.allowed_tools or name in self.allowed_tools


# ============================================================
# Tools
# ============================================================

class ToolInfo(BaseModel):
    """Description of a tool as advertised by a tool executor."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Result from executing a tool."""

    tool_name: str
    output: str = ""
    error: str | None = None
    error_code: int | None = None
    duration_ms: float = 0.0

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def success(self) -> bool:
        return self.error is None


# ============================================================
# Events
# ============================================================

class EventType(str, Enum):
    """Notifications delivered to observers."""

    STATE_CHANGED = "state_changed"
    STEP_RECORDED = "step_recorded"
    RUN_COMPLETED = "run_completed"
    PLAN_CREATED = "plan_created"
    TASK_STATUS_CHANGED = "task_status_changed"
    PLAN_ADAPTED = "plan_adapted"
    CONTINGENCY_ACTIVATED = "contingency_activated"
    PLAN_COMPLETED = "plan_completed"


@dataclass(frozen=True)
class EngineEvent:
    """An event emitted by the planner or the agent loop."""

    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
