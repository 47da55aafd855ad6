"""
Task Decomposition

Breaks a natural-language goal into dependency-aware sub-tasks.

Design decisions:
- A fixed pipeline of reasoning calls: complexity, breakdown, dependencies,
  risks, success criteria
- Every stage has a deterministic fallback, so decompose() never raises
  because of a bad or failed model answer
- Malformed sub-task definitions are dropped one at a time, never the batch
- Cyclic dependency answers are rejected in favour of a sequential chain
"""

import logging
import math
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field, field_validator

from taskpilot.config.settings import DecomposerSettings
from taskpilot.core.interfaces import ReasoningServiceProtocol
from taskpilot.core.types import AgentContext, ChatMessage
from taskpilot.planning.graph import critical_path, find_cycle, topological_sort
from taskpilot.planning.models import (
    DependencyType,
    RiskFactor,
    RiskType,
    SubTask,
    TaskDecomposition,
    TaskDependency,
    TaskType,
)
from taskpilot.reasoning.parsing import ParseResult, parse_list, parse_model, validate_items
from taskpilot.reasoning.prompts import PromptRegistry

logger = logging.getLogger(__name__)


FALLBACK_BREAKDOWN: list[dict[str, Any]] = [
    {
        "id": "analyze_goal",
        "title": "Analyze Goal",
        "description": "Understand the goal and determine what is needed to achieve it",
        "type": TaskType.ANALYSIS.value,
        "priority": 10,
        "estimated_duration": 60,
        "success_criteria": ["Goal is clearly understood"],
        "fallback_strategies": ["Ask for clarification"],
    },
    {
        "id": "execute_goal",
        "title": "Execute Goal",
        "description": "Carry out the work required by the goal",
        "type": TaskType.EXECUTION.value,
        "priority": 8,
        "estimated_duration": 300,
        "success_criteria": ["Goal is achieved"],
        "fallback_strategies": ["Try alternative approach"],
    },
]

FALLBACK_SUCCESS_CRITERIA = ["Goal completed successfully"]


@dataclass
class DecomposerConfig:
    """Decomposer limits. Durations are in seconds."""

    max_sub_tasks: int = 20
    min_task_duration: int = 30
    max_task_duration: int = 1800
    enable_risk_analysis: bool = True
    enable_dependency_optimization: bool = True
    critical_path_bonus: int = 2

    @classmethod
    def from_settings(cls, settings: DecomposerSettings) -> "DecomposerConfig":
        return cls(**settings.model_dump())


class ComplexityAssessment(BaseModel):
    complexity: int = 5
    factors: list[str] = Field(default_factory=list)
    required_capabilities: list[str] = Field(default_factory=list)

    @field_validator("complexity", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        try:
            return max(1, min(10, round(float(value))))
        except (TypeError, ValueError):
            raise ValueError(f"complexity must be a number, got {value!r}")


DEFAULT_COMPLEXITY = ComplexityAssessment(
    complexity=5,
    factors=["unknown"],
    required_capabilities=["general"],
)


def fit_durations(durations: list[int], budget: float, floor: int) -> list[int]:
    """
    Scale durations down so their sum fits ``budget``, never below ``floor``.

    Durations already within budget are returned unchanged. Scaling uses a
    common ratio; tasks that would drop below the floor are pinned to it and
    the ratio is recomputed for the rest. If even ``floor`` per task exceeds
    the budget, every task gets the floor.
    """
    if sum(durations) <= budget:
        return list(durations)
    if floor * len(durations) >= budget:
        return [floor] * len(durations)

    pinned: set[int] = set()
    while True:
        free_budget = budget - floor * len(pinned)
        free_total = sum(d for i, d in enumerate(durations) if i not in pinned)
        factor = free_budget / free_total

        scaled: list[int] = []
        newly_pinned = False
        for i, duration in enumerate(durations):
            if i in pinned:
                scaled.append(floor)
                continue
            value = math.floor(duration * factor)
            if value < floor:
                pinned.add(i)
                newly_pinned = True
                value = floor
            scaled.append(value)

        if not newly_pinned:
            return scaled


class TaskDecomposer:
    """
    Converts a goal into a TaskDecomposition.

    Calls the reasoning service once per stage. Which stages fell back to
    their defaults is recorded in ``TaskDecomposition.fallback_stages``.
    """

    def __init__(
        self,
        reasoning: ReasoningServiceProtocol,
        config: DecomposerConfig | None = None,
        prompts: PromptRegistry | None = None,
    ):
        self._reasoning = reasoning
        self.config = config or DecomposerConfig()
        self._prompts = prompts or PromptRegistry()

    async def decompose(self, goal: str, context: AgentContext) -> TaskDecomposition:
        """Run the full decomposition pipeline."""
        fallback_stages: list[str] = []

        def track(stage: str, result: ParseResult) -> Any:
            if not result.ok:
                logger.info(f"Decomposition stage '{stage}' used fallback: {result.error}")
                fallback_stages.append(stage)
            return result.value

        assessment = track("complexity", await self._analyze_complexity(goal, context))
        raw_tasks = track("breakdown", await self._initial_breakdown(goal, context, assessment))

        tasks = self._refine(raw_tasks, context)
        if not tasks:
            logger.warning("No valid sub-tasks after refinement, using fallback breakdown")
            if "breakdown" not in fallback_stages:
                fallback_stages.append("breakdown")
            tasks = self._refine(FALLBACK_BREAKDOWN, context)

        dependencies = track("dependencies", await self._analyze_dependencies(goal, tasks))

        risks: list[RiskFactor] = []
        if self.config.enable_risk_analysis:
            risks = track("risks", await self._analyze_risks(goal, tasks))

        critical: list[str] = []
        if self.config.enable_dependency_optimization:
            tasks, critical = self._optimize_order(tasks, dependencies)

        criteria = track("success_criteria", await self._define_success_criteria(goal, tasks))

        decomposition = TaskDecomposition(
            goal=goal,
            sub_tasks=tasks,
            dependencies=dependencies,
            complexity=assessment.complexity,
            complexity_factors=assessment.factors,
            required_capabilities=assessment.required_capabilities,
            risk_factors=risks,
            success_criteria=criteria,
            critical_path=critical,
            fallback_stages=fallback_stages,
        )

        logger.info(
            f"Decomposed goal into {len(tasks)} sub-tasks, "
            f"{len(dependencies)} dependencies, complexity {assessment.complexity}"
        )
        return decomposition

    # =========================================================================
    # Reasoning calls
    # =========================================================================

    async def _ask(self, stage: str, template: str, **variables: Any) -> str | None:
        prompt = self._prompts.render(template, **variables)
        try:
            response = await self._reasoning.chat([ChatMessage.user(prompt)])
        except Exception as e:
            logger.warning(f"Reasoning call for stage '{stage}' failed: {e}")
            return None
        return response.content

    async def _analyze_complexity(
        self,
        goal: str,
        context: AgentContext,
    ) -> ParseResult[ComplexityAssessment]:
        text = await self._ask(
            "complexity",
            "decompose_complexity",
            goal=goal,
            constraints=context.constraints,
        )
        if text is None:
            return ParseResult.fallback(DEFAULT_COMPLEXITY, "reasoning call failed")
        return parse_model(text, ComplexityAssessment, DEFAULT_COMPLEXITY)

    async def _initial_breakdown(
        self,
        goal: str,
        context: AgentContext,
        assessment: ComplexityAssessment,
    ) -> ParseResult[list[Any]]:
        text = await self._ask(
            "breakdown",
            "decompose_breakdown",
            goal=goal,
            complexity=assessment.complexity,
            capabilities=assessment.required_capabilities,
            tools=context.allowed_tools,
            max_duration=context.max_duration,
            max_sub_tasks=self.config.max_sub_tasks,
            task_types=[t.value for t in TaskType],
        )
        if text is None:
            return ParseResult.fallback(FALLBACK_BREAKDOWN, "reasoning call failed")

        result = parse_list(text, "sub_tasks", FALLBACK_BREAKDOWN)
        if result.ok and not result.value:
            return ParseResult.fallback(FALLBACK_BREAKDOWN, "empty sub-task list")
        return result

    async def _analyze_dependencies(
        self,
        goal: str,
        tasks: list[SubTask],
    ) -> ParseResult[list[TaskDependency]]:
        if len(tasks) <= 1:
            return ParseResult.success([])

        sequential = sequential_chain(tasks)
        text = await self._ask(
            "dependencies",
            "decompose_dependencies",
            goal=goal,
            tasks=tasks,
            dependency_types=[t.value for t in DependencyType],
        )
        if text is None:
            return ParseResult.fallback(sequential, "reasoning call failed")

        raw = parse_list(text, "dependencies", [])
        if not raw.ok:
            return ParseResult.fallback(sequential, raw.error or "unparsable dependencies")

        candidates, errors = validate_items(raw.value, TaskDependency)
        if errors:
            logger.debug(f"Dropped malformed dependencies: {errors}")

        known = {task.id for task in tasks}
        seen: set[tuple[str, str]] = set()
        dependencies: list[TaskDependency] = []
        for dep in candidates:
            edge = (dep.from_task, dep.to_task)
            if dep.from_task not in known or dep.to_task not in known:
                continue
            if dep.from_task == dep.to_task or edge in seen:
                continue
            seen.add(edge)
            dependencies.append(dep)

        cycle = find_cycle([t.id for t in tasks], [(d.from_task, d.to_task) for d in dependencies])
        if cycle:
            return ParseResult.fallback(sequential, f"cyclic dependencies: {' -> '.join(cycle)}")

        return ParseResult.success(dependencies)

    async def _analyze_risks(self, goal: str, tasks: list[SubTask]) -> ParseResult[list[RiskFactor]]:
        text = await self._ask(
            "risks",
            "decompose_risks",
            goal=goal,
            tasks=tasks,
            risk_types=[t.value for t in RiskType],
        )
        if text is None:
            return ParseResult.fallback([], "reasoning call failed")

        raw = parse_list(text, "risks", [])
        if not raw.ok:
            return ParseResult.fallback([], raw.error or "unparsable risks")

        risks, errors = validate_items(raw.value, RiskFactor)
        if errors:
            logger.debug(f"Dropped malformed risks: {errors}")
        return ParseResult.success(risks)

    async def _define_success_criteria(
        self,
        goal: str,
        tasks: list[SubTask],
    ) -> ParseResult[list[str]]:
        text = await self._ask("success_criteria", "decompose_success_criteria", goal=goal, tasks=tasks)
        if text is None:
            return ParseResult.fallback(FALLBACK_SUCCESS_CRITERIA, "reasoning call failed")

        raw = parse_list(text, "success_criteria", FALLBACK_SUCCESS_CRITERIA)
        criteria = [str(item).strip() for item in raw.value if str(item).strip()][:5]
        if not raw.ok or not criteria:
            return ParseResult.fallback(FALLBACK_SUCCESS_CRITERIA, raw.error or "no criteria")
        return ParseResult.success(criteria)

    # =========================================================================
    # Deterministic stages
    # =========================================================================

    def _refine(self, raw_tasks: list[Any], context: AgentContext) -> list[SubTask]:
        """Validate, de-duplicate ids and fit durations to the time budget."""
        tasks, errors = validate_items(raw_tasks[: self.config.max_sub_tasks], SubTask)
        for error in errors:
            logger.warning(f"Dropped invalid sub-task definition ({error})")

        seen: set[str] = set()
        unique: list[SubTask] = []
        for index, task in enumerate(tasks):
            task_id = task.id
            suffix = index
            while task_id in seen:
                task_id = f"{task.id}_{suffix}"
                suffix += 1
            seen.add(task_id)
            unique.append(task if task_id == task.id else task.model_copy(update={"id": task_id}))

        low, high = self.config.min_task_duration, self.config.max_task_duration
        durations = [max(low, min(high, task.estimated_duration)) for task in unique]

        budget = context.max_duration
        if sum(durations) > budget:
            if low * len(durations) > budget:
                logger.warning(
                    f"Time budget {budget}s cannot fit {len(durations)} tasks "
                    f"of at least {low}s each"
                )
            durations = fit_durations(durations, budget, low)

        return [
            task if task.estimated_duration == duration
            else task.model_copy(update={"estimated_duration": duration})
            for task, duration in zip(unique, durations)
        ]

    def _optimize_order(
        self,
        tasks: list[SubTask],
        dependencies: list[TaskDependency],
    ) -> tuple[list[SubTask], list[str]]:
        """Topologically order tasks and boost the priority of the critical path."""
        edges = [(d.from_task, d.to_task) for d in dependencies]
        by_id = {task.id: task for task in tasks}

        order = topological_sort([task.id for task in tasks], edges)
        path = critical_path({tid: by_id[tid].estimated_duration for tid in order}, edges, order)

        bonus = self.config.critical_path_bonus
        on_path = set(path)
        ordered = [
            by_id[tid].model_copy(update={"priority": min(10, by_id[tid].priority + bonus)})
            if tid in on_path and bonus
            else by_id[tid]
            for tid in order
        ]
        return ordered, path


def sequential_chain(tasks: list[SubTask]) -> list[TaskDependency]:
    """task_1 -> task_2 -> ... -> task_n."""
    return [
        TaskDependency(
            from_task=previous.id,
            to_task=current.id,
            type=DependencyType.SEQUENTIAL,
            description=f"{current.title} depends on completion of {previous.title}",
        )
        for previous, current in zip(tasks, tasks[1:])
    ]
