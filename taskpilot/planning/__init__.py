"""
Planning Module

Goal decomposition into dependency-aware sub-tasks, and the execution
planner that schedules, tracks and adapts them.
"""

from taskpilot.planning.decomposer import DecomposerConfig, TaskDecomposer, fit_durations, sequential_chain
from taskpilot.planning.graph import critical_path, find_cycle, topological_sort
from taskpilot.planning.models import (
    DependencyType,
    RiskFactor,
    RiskType,
    SubTask,
    TaskDecomposition,
    TaskDependency,
    TaskInput,
    TaskOutput,
    TaskType,
)
from taskpilot.planning.plan import (
    AdaptationChange,
    AdaptationType,
    ContingencyAction,
    ContingencyActionType,
    ContingencyPlan,
    ContingencyTrigger,
    ExecutionPlan,
    PlanAdaptation,
    PlanMetrics,
    PlannedTask,
    PlanProgress,
    PlanStatus,
    TaskStatus,
)
from taskpilot.planning.planner import ExecutionPlanner, PlannerConfig

__all__ = [
    # Decomposition
    "DecomposerConfig",
    "TaskDecomposer",
    "fit_durations",
    "sequential_chain",
    "DependencyType",
    "RiskFactor",
    "RiskType",
    "SubTask",
    "TaskDecomposition",
    "TaskDependency",
    "TaskInput",
    "TaskOutput",
    "TaskType",
    # Graph
    "critical_path",
    "find_cycle",
    "topological_sort",
    # Execution plan
    "AdaptationChange",
    "AdaptationType",
    "ContingencyAction",
    "ContingencyActionType",
    "ContingencyPlan",
    "ContingencyTrigger",
    "ExecutionPlan",
    "PlanAdaptation",
    "PlanMetrics",
    "PlannedTask",
    "PlanProgress",
    "PlanStatus",
    "TaskStatus",
    # Planner
    "ExecutionPlanner",
    "PlannerConfig",
]
