"""
Decomposition Models

Immutable data produced by the TaskDecomposer.

Design decisions:
- Pydantic models so that the same class validates model output and
  documents its shape
- Lenient coercion at the edges (priorities clamped, probabilities clamped)
  and strict checks on identity (ids, task types)
- A TaskDecomposition validates its own dependency graph; a cyclic
  decomposition cannot be constructed
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from taskpilot.core.types import utcnow
from taskpilot.planning.graph import find_cycle


class TaskType(str, Enum):
    """Kind of work a sub-task performs."""

    INFORMATION_GATHERING = "information_gathering"
    DATA_PROCESSING = "data_processing"
    ANALYSIS = "analysis"
    SYNTHESIS = "synthesis"
    VALIDATION = "validation"
    EXECUTION = "execution"
    COMMUNICATION = "communication"


class DependencyType(str, Enum):
    """How two sub-tasks relate."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"
    RESOURCE_SHARING = "resource_sharing"


class RiskType(str, Enum):
    TECHNICAL = "technical"
    RESOURCE = "resource"
    TIME = "time"
    QUALITY = "quality"
    EXTERNAL = "external"


def _as_number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"expected a number, got {value!r}")


class TaskInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "string"
    description: str = ""
    required: bool = True
    source: str | None = None


class TaskOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "string"
    description: str = ""
    format: str | None = None


class SubTask(BaseModel):
    """
    One decomposed unit of work.

    ``id``, ``title``, ``description`` and ``type`` are required; a
    definition missing any of them is rejected. ``estimated_duration`` is
    in seconds.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    type: TaskType
    priority: int = 5
    estimated_duration: int = Field(default=60, ge=1)
    required_tools: list[str] = Field(default_factory=list)
    inputs: list[TaskInput] = Field(default_factory=list)
    outputs: list[TaskOutput] = Field(default_factory=list)
    success_criteria: list[str] = Field(default_factory=list)
    fallback_strategies: list[str] = Field(default_factory=list)

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, value: Any) -> int:
        if value is None:
            return 5
        return max(1, min(10, round(_as_number(value))))

    @field_validator("estimated_duration", mode="before")
    @classmethod
    def _whole_seconds(cls, value: Any) -> int:
        if value is None:
            return 60
        return max(1, round(_as_number(value)))


class TaskDependency(BaseModel):
    """``to_task`` cannot start before ``from_task`` completes, unless optional."""

    model_config = ConfigDict(frozen=True)

    from_task: str
    to_task: str
    type: DependencyType = DependencyType.SEQUENTIAL
    condition: str | None = None
    optional: bool = False
    description: str = ""


def _clamp_unit(value: Any) -> float:
    try:
        number = float(value) if value is not None else 0.5
    except (TypeError, ValueError):
        number = 0.5
    return max(0.1, min(1.0, number or 0.5))


class RiskFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: RiskType = RiskType.TECHNICAL
    description: str = Field(min_length=1)
    probability: float = 0.5
    impact: float = 0.5
    mitigation: str = "Monitor and adapt"

    @field_validator("probability", "impact", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return _clamp_unit(value)

    @field_validator("mitigation", mode="before")
    @classmethod
    def _default_mitigation(cls, value: Any) -> str:
        return value or "Monitor and adapt"


class TaskDecomposition(BaseModel):
    """
    The static result of breaking a goal into sub-tasks.

    ``sub_tasks`` are in execution order when dependency optimization ran.
    """

    model_config = ConfigDict(frozen=True)

    goal: str
    sub_tasks: list[SubTask]
    dependencies: list[TaskDependency] = Field(default_factory=list)
    complexity: int = Field(default=5, ge=1, le=10)
    complexity_factors: list[str] = Field(default_factory=list)
    required_capabilities: list[str] = Field(default_factory=list)
    risk_factors: list[RiskFactor] = Field(default_factory=list)
    success_criteria: list[str] = Field(default_factory=list)
    critical_path: list[str] = Field(default_factory=list)
    fallback_stages: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_graph(self) -> "TaskDecomposition":
        ids = [task.id for task in self.sub_tasks]
        if len(ids) != len(set(ids)):
            raise ValueError("sub-task ids must be unique")

        known = set(ids)
        for dep in self.dependencies:
            if dep.from_task not in known or dep.to_task not in known:
                raise ValueError(f"dependency {dep.from_task} -> {dep.to_task} names an unknown task")
            if dep.from_task == dep.to_task:
                raise ValueError(f"task {dep.from_task} depends on itself")

        cycle = find_cycle(ids, [(d.from_task, d.to_task) for d in self.dependencies])
        if cycle:
            raise ValueError(f"dependency cycle: {' -> '.join(cycle)}")
        return self

    @property
    def estimated_total_duration(self) -> int:
        return sum(task.estimated_duration for task in self.sub_tasks)

    def get_task(self, task_id: str) -> SubTask | None:
        return next((task for task in self.sub_tasks if task.id == task_id), None)
