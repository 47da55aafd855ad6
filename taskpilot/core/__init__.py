"""
Core Module

Contains fundamental types, exceptions and interfaces used across
all other modules of the engine.

The interfaces module defines protocols for the reasoning service, the
tool executor and event observers.
"""

from taskpilot.core.types import (
    AgentContext,
    ChatMessage,
    ChatOptions,
    EngineEvent,
    EventType,
    LLMResponse,
    MessageRole,
    ModelInfo,
    StreamEvent,
    StreamEventType,
    TokenUsage,
    ToolCall,
    ToolInfo,
    ToolResult,
)
from taskpilot.core.exceptions import (
    AgentStateError,
    CancellationError,
    ConfigurationError,
    DependencyCycleError,
    ExecutionError,
    ExecutionTimeoutError,
    LLMError,
    PhaseError,
    PlanningError,
    PlanStateError,
    TaskNotFoundError,
    TaskPilotError,
    ToolError,
    ToolNotFoundError,
    ToolServerError,
)
from taskpilot.core.interfaces import (
    EventObserver,
    ReasoningServiceProtocol,
    ToolExecutorProtocol,
)

__all__ = [
    # Types
    "AgentContext",
    "ChatMessage",
    "ChatOptions",
    "EngineEvent",
    "EventType",
    "LLMResponse",
    "MessageRole",
    "ModelInfo",
    "StreamEvent",
    "StreamEventType",
    "TokenUsage",
    "ToolCall",
    "ToolInfo",
    "ToolResult",
    # Exceptions
    "AgentStateError",
    "CancellationError",
    "ConfigurationError",
    "DependencyCycleError",
    "ExecutionError",
    "ExecutionTimeoutError",
    "LLMError",
    "PhaseError",
    "PlanningError",
    "PlanStateError",
    "TaskNotFoundError",
    "TaskPilotError",
    "ToolError",
    "ToolNotFoundError",
    "ToolServerError",
    # Interfaces/Protocols
    "EventObserver",
    "ReasoningServiceProtocol",
    "ToolExecutorProtocol",
]
