"""
Core Interfaces and Protocols

Defines the contracts between the engine and its collaborators.
The engine depends only on these protocols, never on concrete adapters.

Design decisions:
- Protocol-based for structural subtyping
- Minimal interface surface: one capability set per collaborator
- Observers are passed in explicitly instead of registered globally
"""

import logging
from typing import Any, AsyncIterator, Protocol, runtime_checkable

from taskpilot.core.types import (
    AgentContext,
    ChatMessage,
    ChatOptions,
    EngineEvent,
    LLMResponse,
    ModelInfo,
    StreamEvent,
    ToolInfo,
    ToolResult,
)

logger = logging.getLogger(__name__)


# =============================================================================
# REASONING SERVICE PROTOCOL
# =============================================================================

@runtime_checkable
class ReasoningServiceProtocol(Protocol):
    """
    Interface for text-generation backends.

    Implemented by: StubLLMAdapter, ScriptedLLMAdapter, OpenAIAdapter
    Used by: TaskDecomposer, ExecutionPlanner, AgenticLoop
    """

    async def chat(
        self,
        messages: list[ChatMessage],
        options: ChatOptions | None = None,
    ) -> LLMResponse:
        """Generate a single response."""
        ...

    def chat_stream(
        self,
        messages: list[ChatMessage],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream content, tool-call, error and done events."""
        ...

    async def get_models(self) -> list[ModelInfo]:
        """List models offered by the backend."""
        ...

    async def validate_config(self) -> bool:
        """Check that the backend is reachable and configured."""
        ...


# =============================================================================
# TOOL EXECUTOR PROTOCOL
# =============================================================================

@runtime_checkable
class ToolExecutorProtocol(Protocol):
    """
    Interface for tool execution.

    Implemented by: ToolClient
    Used by: AgenticLoop
    """

    async def execute(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        context: AgentContext | None = None,
    ) -> ToolResult:
        """Execute a tool. Failures are reported in the result."""
        ...

    async def list_tools(self) -> list[ToolInfo]:
        """List tools that can be executed."""
        ...


# =============================================================================
# OBSERVER PROTOCOL
# =============================================================================

@runtime_checkable
class EventObserver(Protocol):
    """
    Receives planner and agent loop notifications.

    Observers are supplied at construction time; the engine calls them
    synchronously in registration order.
    """

    def on_event(self, event: EngineEvent) -> None:
        ...


def notify(observers: "list[EventObserver] | tuple[EventObserver, ...]", event: EngineEvent) -> None:
    """Deliver an event to each observer; a failing observer is logged and skipped."""
    for observer in observers:
        try:
            observer.on_event(event)
        except Exception:
            logger.exception(f"Observer {observer!r} failed on {event.type.value}")
