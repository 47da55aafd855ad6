"""
Execution Plan State

Live, mutable state built from a TaskDecomposition. Only the
ExecutionPlanner mutates these objects.

Design decisions:
- PlannedTask extends SubTask, so adaptations edit the same fields the
  decomposer produced; assignments are validated
- Plan-level bookkeeping (metrics, audit trail, contingencies) lives on the
  plan so that an archived plan is self-contained
- Contingency guards are plain predicates over (task, plan)
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from taskpilot.core.types import AgentContext, utcnow
from taskpilot.planning.models import SubTask, TaskDependency


class TaskStatus(str, Enum):
    """Status of a planned task."""

    PENDING = "pending"
    READY = "ready"  # Dependencies met
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    BLOCKED = "blocked"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.SKIPPED)


class PlanStatus(str, Enum):
    """Status of an execution plan."""

    CREATED = "created"
    EXECUTING = "executing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (PlanStatus.COMPLETED, PlanStatus.FAILED, PlanStatus.CANCELLED)


class AdaptationType(str, Enum):
    TASK_MODIFICATION = "task_modification"
    PRIORITY_ADJUSTMENT = "priority_adjustment"
    DURATION_ADJUSTMENT = "duration_adjustment"
    STRATEGY_CHANGE = "strategy_change"
    GOAL_REFINEMENT = "goal_refinement"


class AdaptationChange(BaseModel):
    """One field-level change. ``target`` is "plan" or a task id."""

    target: str
    field: str
    old_value: Any = None
    new_value: Any = None
    reason: str = ""


class AdaptationImpact(BaseModel):
    duration_change: float = 0.0
    confidence_change: float = 0.0
    risk_change: float = 0.0


class AdaptationProposal(BaseModel):
    """An adaptation as proposed by the reasoning service."""

    type: AdaptationType = AdaptationType.TASK_MODIFICATION
    reason: str = ""
    changes: list[AdaptationChange] = Field(default_factory=list)
    impact: AdaptationImpact = Field(default_factory=AdaptationImpact)


class TaskAdaptation(BaseModel):
    """Audit entry kept on the task an adaptation touched."""

    timestamp: datetime = Field(default_factory=utcnow)
    type: AdaptationType
    reason: str
    changes: list[AdaptationChange] = Field(default_factory=list)


class PlannedTask(SubTask):
    """A SubTask with live execution state. Times are epoch seconds."""

    model_config = ConfigDict(frozen=False, validate_assignment=True)

    status: TaskStatus = TaskStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    actual_start_time: float | None = None
    actual_end_time: float | None = None
    actual_duration: float | None = None
    errors: list[str] = Field(default_factory=list)
    adaptations: list[TaskAdaptation] = Field(default_factory=list)
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    result: Any = None

    @classmethod
    def from_subtask(cls, subtask: SubTask, confidence: float = 0.8) -> "PlannedTask":
        return cls(**subtask.model_dump(), confidence=confidence)


@dataclass
class PlanAdaptation:
    """Audit entry kept on the plan for every applied adaptation."""

    task_id: str
    type: AdaptationType
    reason: str
    changes: list[AdaptationChange] = field(default_factory=list)
    impact: AdaptationImpact = field(default_factory=AdaptationImpact)
    id: str = field(default_factory=lambda: f"adapt_{uuid4().hex[:8]}")
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class PlanMetrics:
    """Counts and ratios recomputed after every status change."""

    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    skipped_tasks: int = 0
    total_attempts: int = 0
    total_estimated_duration: float = 0.0
    actual_duration: float = 0.0
    efficiency_ratio: float = 1.0  # estimated / actual over completed tasks
    adaptation_count: int = 0
    error_rate: float = 0.0  # failed / total attempts


class ContingencyTrigger(str, Enum):
    TASK_FAILURE = "task_failure"
    TIMEOUT = "timeout"
    RESOURCE_UNAVAILABLE = "resource_unavailable"
    GOAL_CHANGE = "goal_change"
    EXTERNAL_EVENT = "external_event"


class ContingencyActionType(str, Enum):
    RETRY = "retry"
    SKIP = "skip"
    MODIFY = "modify"
    SUBSTITUTE = "substitute"
    ESCALATE = "escalate"


@dataclass
class ContingencyAction:
    type: ContingencyActionType
    parameters: dict[str, Any] = field(default_factory=dict)
    description: str = ""


ContingencyCondition = Callable[[PlannedTask, "ExecutionPlan"], bool]


@dataclass
class ContingencyPlan:
    """
    A pre-registered reaction to an anticipated failure mode.

    ``actions`` are alternatives tried in order; the first one that applies
    to the task runs. A contingency fires at most once per plan.
    """

    trigger: ContingencyTrigger
    description: str
    condition: ContingencyCondition
    actions: list[ContingencyAction]
    priority: int = 5
    condition_description: str = ""
    id: str = field(default_factory=lambda: f"contingency_{uuid4().hex[:8]}")
    activated: bool = False
    activated_at: datetime | None = None
    activated_for: str | None = None


def new_plan_id() -> str:
    return f"plan_{int(time.time() * 1000)}_{uuid4().hex[:9]}"


@dataclass
class ExecutionPlan:
    """
    The live execution state of one decomposition.

    Single-writer: only ExecutionPlanner methods mutate it.
    """

    original_goal: str
    current_goal: str
    tasks: list[PlannedTask]
    dependencies: list[TaskDependency]
    timeout_multiplier: float
    id: str = field(default_factory=new_plan_id)
    status: PlanStatus = PlanStatus.CREATED
    adaptations: list[PlanAdaptation] = field(default_factory=list)
    metrics: PlanMetrics = field(default_factory=PlanMetrics)
    contingencies: list[ContingencyPlan] = field(default_factory=list)
    context: AgentContext | None = None
    success_criteria: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def get_task(self, task_id: str) -> PlannedTask | None:
        return next((task for task in self.tasks if task.id == task_id), None)

    def dependencies_of(self, task_id: str, include_optional: bool = False) -> list[str]:
        return [
            dep.from_task
            for dep in self.dependencies
            if dep.to_task == task_id and (include_optional or not dep.optional)
        ]

    def dependents_of(self, task_id: str, include_optional: bool = False) -> list[str]:
        return [
            dep.to_task
            for dep in self.dependencies
            if dep.from_task == task_id and (include_optional or not dep.optional)
        ]

    def dependencies_satisfied(self, task_id: str) -> bool:
        """True when every non-optional dependency is completed."""
        for dep_id in self.dependencies_of(task_id):
            dep = self.get_task(dep_id)
            if dep is None or dep.status != TaskStatus.COMPLETED:
                return False
        return True

    @property
    def progress(self) -> float:
        if not self.tasks:
            return 0.0
        return self.metrics.completed_tasks / len(self.tasks)


@dataclass(frozen=True)
class PlanProgress:
    overall: float
    current_task: str
    estimated_time_remaining: float
    confidence: float
