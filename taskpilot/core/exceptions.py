"""
Exception Hierarchy

Defines all exceptions used by the orchestration engine.
Exceptions are organized by domain and include context for debugging.

Design decisions:
- All exceptions inherit from TaskPilotError for easy catching
- Exceptions carry structured context, not just messages
- Error codes enable programmatic handling
- Parse failures are never exceptions (see reasoning.parsing.ParseResult)
"""

from typing import Any


class TaskPilotError(Exception):
    """
    Base exception for all engine errors.

    Provides structured error information including:
    - Human-readable message
    - Machine-readable error code
    - Additional context for debugging
    """

    error_code: str = "TASKPILOT_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.error_code
        self.context = context or {}
        self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception for logs and results."""
        return {
            "error": self.code,
            "message": self.message,
            "context": self.context,
        }


# ============================================================
# Configuration Errors
# ============================================================

class ConfigurationError(TaskPilotError):
    """Error in configuration or settings."""

    error_code = "CONFIGURATION_ERROR"


# ============================================================
# LLM / Reasoning Errors
# ============================================================

class LLMError(TaskPilotError):
    """Base error for reasoning service issues."""

    error_code = "LLM_ERROR"


class LLMConnectionError(LLMError):
    """Failed to reach the reasoning service."""

    error_code = "LLM_CONNECTION_ERROR"


class LLMRateLimitError(LLMError):
    """Rate limit exceeded for the reasoning service."""

    error_code = "LLM_RATE_LIMIT"

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class LLMTimeoutError(LLMError):
    """Reasoning service request timed out."""

    error_code = "LLM_TIMEOUT"


class LLMResponseError(LLMError):
    """Invalid or unexpected response from the reasoning service."""

    error_code = "LLM_RESPONSE_ERROR"


# ============================================================
# Tool Errors
# ============================================================

class ToolError(TaskPilotError):
    """Base error for tool-related issues."""

    error_code = "TOOL_ERROR"


class ToolNotFoundError(ToolError):
    """Requested tool does not exist."""

    error_code = "TOOL_NOT_FOUND"

    def __init__(self, tool_name: str, **kwargs: Any):
        super().__init__(
            f"Tool not found: {tool_name}",
            context={"tool_name": tool_name},
            **kwargs,
        )
        self.tool_name = tool_name


class ToolServerError(ToolError):
    """
    An error that maps onto a protocol error response.

    ``rpc_code`` is one of the numeric codes in tools.protocol.ErrorCode.
    """

    error_code = "TOOL_SERVER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        rpc_code: int,
        data: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.rpc_code = rpc_code
        self.data = data


# ============================================================
# Planning Errors
# ============================================================

class PlanningError(TaskPilotError):
    """Base error for decomposition and planning."""

    error_code = "PLANNING_ERROR"


class DependencyCycleError(PlanningError):
    """The task dependency graph contains a cycle."""

    error_code = "DEPENDENCY_CYCLE"

    def __init__(self, cycle: list[str], **kwargs: Any):
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(cycle)}",
            context={"cycle": cycle},
            **kwargs,
        )
        self.cycle = cycle


class TaskNotFoundError(PlanningError):
    """Task id is not part of the current plan."""

    error_code = "TASK_NOT_FOUND"


class PlanStateError(PlanningError):
    """Operation not valid in the plan's current state."""

    error_code = "PLAN_STATE_ERROR"


# ============================================================
# Execution Errors
# ============================================================

class ExecutionError(TaskPilotError):
    """Base error for agent loop execution."""

    error_code = "EXECUTION_ERROR"


class PhaseError(ExecutionError):
    """A thinking, planning or action-selection call failed."""

    error_code = "PHASE_ERROR"

    def __init__(self, phase: str, message: str, **kwargs: Any):
        super().__init__(message, context={"phase": phase}, **kwargs)
        self.phase = phase


class ExecutionTimeoutError(ExecutionError):
    """The run exceeded its wall-clock budget."""

    error_code = "EXECUTION_TIMEOUT"


class CancellationError(ExecutionError):
    """The run was aborted."""

    error_code = "CANCELLED"


class AgentStateError(ExecutionError):
    """Operation not valid in the agent's current state."""

    error_code = "AGENT_STATE_ERROR"
