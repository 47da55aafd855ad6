"""
Runtime Module

The AgenticLoop drives a goal through think, plan, act and reflect,
keeping what it learns in a relevance-ranked working context.
The factory wires it to its collaborators.
"""

from taskpilot.runtime.agent import (
    ActionType,
    AgentAction,
    AgentConfig,
    AgentPlan,
    AgentResult,
    AgentState,
    AgentStep,
    AgenticLoop,
    PlanStep,
    StepType,
)
from taskpilot.runtime.context import ContextConfig, ContextItem, ContextKind, WorkingContext
from taskpilot.runtime.factory import AgentBuilder, AgentRuntime, create_agent

__all__ = [
    # Loop
    "AgenticLoop",
    "AgentConfig",
    "AgentResult",
    "AgentState",
    "AgentStep",
    "StepType",
    "ActionType",
    "AgentAction",
    "AgentPlan",
    "PlanStep",
    # Working context
    "WorkingContext",
    "ContextConfig",
    "ContextItem",
    "ContextKind",
    # Factory
    "AgentBuilder",
    "AgentRuntime",
    "create_agent",
]
