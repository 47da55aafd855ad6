"""
Dynamic Execution Planner

Turns a TaskDecomposition into a live ExecutionPlan, hands out tasks one
at a time, and revises the plan as results arrive.

Design decisions:
- Single writer: the plan is only mutated through planner methods
- Scheduling is pull-based: callers ask for the next task and report back
- Adaptation is model-driven but bounded and exception-safe
- Contingencies are deterministic, pre-registered and fire at most once
"""

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from statistics import fmean
from typing import Any

from pydantic import ValidationError

from taskpilot.config.settings import PlannerSettings
from taskpilot.core.exceptions import PlanStateError, TaskNotFoundError
from taskpilot.core.interfaces import EventObserver, ReasoningServiceProtocol, notify
from taskpilot.core.types import AgentContext, ChatMessage, EngineEvent, EventType, utcnow
from taskpilot.planning.models import TaskDecomposition
from taskpilot.planning.plan import (
    AdaptationChange,
    AdaptationProposal,
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
    TaskAdaptation,
    TaskStatus,
)
from taskpilot.reasoning.parsing import parse_list, validate_items
from taskpilot.reasoning.prompts import PromptRegistry

logger = logging.getLogger(__name__)

# Fields an adaptation may change
PLAN_ADJUSTABLE_FIELDS = frozenset({"current_goal", "timeout_multiplier"})
TASK_ADJUSTABLE_FIELDS = frozenset({
    "title",
    "description",
    "priority",
    "estimated_duration",
    "required_tools",
    "success_criteria",
    "fallback_strategies",
    "confidence",
})


@dataclass
class PlannerConfig:
    """Adaptation and contingency limits."""

    max_adaptations: int = 10
    max_retries: int = 3
    timeout_multiplier: float = 1.5
    confidence_threshold: float = 0.7
    enable_contingency_planning: bool = True
    enable_real_time_optimization: bool = True
    initial_confidence: float = 0.8

    @classmethod
    def from_settings(cls, settings: PlannerSettings) -> "PlannerConfig":
        return cls(**settings.model_dump())


class ExecutionPlanner:
    """
    Owns one active ExecutionPlan at a time.

    Typical use:
        plan = planner.create_plan(decomposition, context)
        planner.start_plan()
        while (task := planner.get_next_task()) is not None:
            await planner.update_task_status(task.id, TaskStatus.EXECUTING)
            ...
            await planner.update_task_status(task.id, TaskStatus.COMPLETED, result=...)
        planner.complete_plan(success=True)
    """

    def __init__(
        self,
        reasoning: ReasoningServiceProtocol,
        config: PlannerConfig | None = None,
        prompts: PromptRegistry | None = None,
        observers: Sequence[EventObserver] = (),
        clock: Callable[[], float] = time.time,
    ):
        self._reasoning = reasoning
        self.config = config or PlannerConfig()
        self._prompts = prompts or PromptRegistry()
        self._observers = tuple(observers)
        self._clock = clock

        self._plan: ExecutionPlan | None = None
        self._history: list[ExecutionPlan] = []

    @property
    def current_plan(self) -> ExecutionPlan | None:
        return self._plan

    @property
    def execution_history(self) -> list[ExecutionPlan]:
        """Plans archived by complete_plan() or cancel_plan()."""
        return list(self._history)

    # =========================================================================
    # Plan lifecycle
    # =========================================================================

    def create_plan(
        self,
        decomposition: TaskDecomposition,
        context: AgentContext | None = None,
    ) -> ExecutionPlan:
        """Build a plan with every task pending and the default contingencies."""
        if self._plan is not None and not self._plan.status.is_terminal:
            logger.warning(f"Replacing unfinished plan {self._plan.id}")

        plan = ExecutionPlan(
            original_goal=decomposition.goal,
            current_goal=decomposition.goal,
            tasks=[
                PlannedTask.from_subtask(task, confidence=self.config.initial_confidence)
                for task in decomposition.sub_tasks
            ],
            dependencies=list(decomposition.dependencies),
            timeout_multiplier=self.config.timeout_multiplier,
            context=context,
            success_criteria=list(decomposition.success_criteria),
        )

        if self.config.enable_contingency_planning:
            plan.contingencies.extend(self._default_contingencies())

        self._recompute_metrics(plan)
        self._plan = plan

        logger.info(f"Created plan {plan.id} with {len(plan.tasks)} tasks")
        self._emit(EventType.PLAN_CREATED, plan_id=plan.id, tasks=len(plan.tasks))
        return plan

    def start_plan(self) -> ExecutionPlan:
        plan = self._transition({PlanStatus.CREATED}, PlanStatus.EXECUTING)
        plan.started_at = utcnow()
        return plan

    def pause_plan(self) -> ExecutionPlan:
        return self._transition({PlanStatus.EXECUTING}, PlanStatus.PAUSED)

    def resume_plan(self) -> ExecutionPlan:
        return self._transition({PlanStatus.PAUSED}, PlanStatus.EXECUTING)

    def cancel_plan(self) -> ExecutionPlan:
        plan = self._transition(
            {PlanStatus.CREATED, PlanStatus.EXECUTING, PlanStatus.PAUSED},
            PlanStatus.CANCELLED,
        )
        self._archive(plan)
        return plan

    def complete_plan(self, success: bool) -> ExecutionPlan:
        """Set the terminal status, archive the plan and run the learning hook."""
        plan = self._transition(
            {PlanStatus.CREATED, PlanStatus.EXECUTING, PlanStatus.PAUSED},
            PlanStatus.COMPLETED if success else PlanStatus.FAILED,
        )
        self._archive(plan)
        self._learn_from_execution(plan)
        return plan

    def _transition(self, allowed: set[PlanStatus], target: PlanStatus) -> ExecutionPlan:
        plan = self._require_plan()
        if plan.status not in allowed:
            raise PlanStateError(
                f"Cannot move plan {plan.id} from {plan.status.value} to {target.value}",
                context={"plan_id": plan.id, "status": plan.status.value},
            )
        plan.status = target
        logger.info(f"Plan {plan.id} is now {target.value}")
        return plan

    def _archive(self, plan: ExecutionPlan) -> None:
        plan.completed_at = utcnow()
        self._recompute_metrics(plan)
        self._history.append(plan)
        self._emit(
            EventType.PLAN_COMPLETED,
            plan_id=plan.id,
            status=plan.status.value,
            completed=plan.metrics.completed_tasks,
            failed=plan.metrics.failed_tasks,
        )

    def _learn_from_execution(self, plan: ExecutionPlan) -> None:
        """Hook for learning from finished plans; currently only logs a summary."""
        metrics = plan.metrics
        logger.info(
            f"Plan {plan.id} finished {plan.status.value}: "
            f"{metrics.completed_tasks}/{metrics.total_tasks} completed, "
            f"{metrics.adaptation_count} adaptations, "
            f"efficiency {metrics.efficiency_ratio:.2f}"
        )

    def _require_plan(self) -> ExecutionPlan:
        if self._plan is None:
            raise PlanStateError("No active plan")
        return self._plan

    # =========================================================================
    # Scheduling
    # =========================================================================

    def get_next_task(self) -> PlannedTask | None:
        """
        Highest-priority runnable task, or None.

        Only hands out tasks while the plan is executing. Ties go to the
        task that comes first in plan order.
        """
        plan = self._plan
        if plan is None or plan.status != PlanStatus.EXECUTING:
            return None
        return self._next_candidate(plan)

    @staticmethod
    def _next_candidate(plan: ExecutionPlan) -> PlannedTask | None:
        candidates = [
            task
            for task in plan.tasks
            if task.status in (TaskStatus.READY, TaskStatus.PENDING)
            and plan.dependencies_satisfied(task.id)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda task: task.priority)

    async def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        result: Any = None,
        error: str | None = None,
    ) -> PlannedTask:
        """
        Record a task status change and react to it.

        After the bookkeeping this may adapt the plan, unlock dependents of a
        completed task, and activate one contingency.

        Raises:
            PlanStateError: No active plan
            TaskNotFoundError: Unknown task id
        """
        plan = self._require_plan()
        task = plan.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(
                f"Task {task_id} is not part of plan {plan.id}",
                context={"plan_id": plan.id, "task_id": task_id},
            )

        previous = task.status
        now = self._clock()

        if status == TaskStatus.EXECUTING:
            task.attempts += 1
            if task.actual_start_time is None:
                task.actual_start_time = now

        if status.is_terminal:
            task.actual_end_time = now
            if task.actual_start_time is not None:
                task.actual_duration = max(0.0, now - task.actual_start_time)

        if error:
            task.errors.append(error)
        if result is not None:
            task.result = result

        task.status = status
        self._recompute_metrics(plan)

        logger.debug(f"Task {task_id}: {previous.value} -> {status.value} (attempt {task.attempts})")
        self._emit(
            EventType.TASK_STATUS_CHANGED,
            plan_id=plan.id,
            task_id=task_id,
            previous=previous.value,
            status=status.value,
        )

        if self._should_adapt(plan, task):
            await self.adapt_plan(task, result=result, error=error)

        if status == TaskStatus.COMPLETED:
            self._unlock_dependents(plan, task)

        self._evaluate_contingencies(plan, task)
        return task

    def _unlock_dependents(self, plan: ExecutionPlan, task: PlannedTask) -> None:
        for dependent_id in plan.dependents_of(task.id):
            dependent = plan.get_task(dependent_id)
            if dependent is None or dependent.status != TaskStatus.PENDING:
                continue
            if plan.dependencies_satisfied(dependent_id):
                dependent.status = TaskStatus.READY
                self._emit(
                    EventType.TASK_STATUS_CHANGED,
                    plan_id=plan.id,
                    task_id=dependent_id,
                    previous=TaskStatus.PENDING.value,
                    status=TaskStatus.READY.value,
                )

    # =========================================================================
    # Adaptation
    # =========================================================================

    def _should_adapt(self, plan: ExecutionPlan, task: PlannedTask) -> bool:
        if not self.config.enable_real_time_optimization:
            return False
        if task.status == TaskStatus.FAILED:
            return True
        if (
            task.status == TaskStatus.COMPLETED
            and task.actual_duration is not None
            and task.actual_duration / task.estimated_duration > plan.timeout_multiplier
        ):
            return True
        return task.confidence < self.config.confidence_threshold

    async def adapt_plan(
        self,
        task: PlannedTask,
        result: Any = None,
        error: str | None = None,
    ) -> list[PlanAdaptation]:
        """
        Ask the reasoning service how to revise the plan and apply its answer.

        Bounded by ``max_adaptations`` over the life of the plan. Never
        raises: a failed call or an unparsable answer applies nothing.
        """
        plan = self._plan
        if plan is None:
            return []

        budget = self.config.max_adaptations - len(plan.adaptations)
        if budget <= 0:
            logger.debug(f"Adaptation limit reached for plan {plan.id}")
            return []

        remaining = [t for t in plan.tasks if t.id != task.id and not t.status.is_terminal]
        prompt = self._prompts.render(
            "plan_adaptation",
            goal=plan.current_goal,
            task=task,
            remaining_tasks=remaining,
            adaptation_types=[t.value for t in AdaptationType],
            result=str(result)[:500] if result is not None else None,
            error=error,
        )

        try:
            response = await self._reasoning.chat([ChatMessage.user(prompt)])
        except Exception as e:
            logger.warning(f"Adaptation call for task {task.id} failed: {e}")
            return []

        raw = parse_list(response.content, "adaptations", [])
        if not raw.ok:
            logger.info(f"No adaptation applied for task {task.id}: {raw.error}")
            return []

        proposals, errors = validate_items(raw.value, AdaptationProposal)
        if errors:
            logger.debug(f"Dropped malformed adaptations: {errors}")

        applied: list[PlanAdaptation] = []
        for proposal in proposals[:budget]:
            changes = [change for change in proposal.changes if self._apply_change(plan, change)]
            if not changes:
                continue

            record = PlanAdaptation(
                task_id=task.id,
                type=proposal.type,
                reason=proposal.reason,
                changes=changes,
                impact=proposal.impact,
            )
            plan.adaptations.append(record)

            touched = {change.target for change in changes if change.target != "plan"} | {task.id}
            for touched_id in touched:
                touched_task = plan.get_task(touched_id)
                if touched_task is not None:
                    touched_task.adaptations.append(
                        TaskAdaptation(type=proposal.type, reason=proposal.reason, changes=changes)
                    )
            applied.append(record)

        if applied:
            self._recompute_metrics(plan)
            logger.info(f"Applied {len(applied)} adaptation(s) to plan {plan.id} after task {task.id}")
            self._emit(
                EventType.PLAN_ADAPTED,
                plan_id=plan.id,
                task_id=task.id,
                adaptations=[record.id for record in applied],
            )
        return applied

    def _apply_change(self, plan: ExecutionPlan, change: AdaptationChange) -> bool:
        """Apply one change if its target and field are adjustable and the value is valid."""
        if change.target == "plan":
            return self._set_plan_field(plan, change.field, change.new_value)

        task = plan.get_task(change.target)
        if task is None or change.field not in TASK_ADJUSTABLE_FIELDS:
            logger.debug(f"Rejected adaptation of {change.target}.{change.field}")
            return False

        try:
            setattr(task, change.field, change.new_value)
        except ValidationError as e:
            logger.debug(f"Rejected value for {change.target}.{change.field}: {e.error_count()} errors")
            return False
        return True

    @staticmethod
    def _set_plan_field(plan: ExecutionPlan, name: str, value: Any) -> bool:
        if name not in PLAN_ADJUSTABLE_FIELDS:
            logger.debug(f"Rejected adaptation of plan.{name}")
            return False

        if name == "timeout_multiplier":
            try:
                value = float(value)
            except (TypeError, ValueError):
                return False
            if value <= 1.0:
                return False
        elif not isinstance(value, str) or not value.strip():
            return False

        setattr(plan, name, value)
        return True

    # =========================================================================
    # Contingencies
    # =========================================================================

    def _default_contingencies(self) -> list[ContingencyPlan]:
        max_retries = self.config.max_retries
        return [
            ContingencyPlan(
                trigger=ContingencyTrigger.TASK_FAILURE,
                description="Retry a task that keeps failing, or skip it",
                condition=lambda task, plan: task.attempts >= max_retries,
                condition_description=f"task.attempts >= {max_retries}",
                actions=[
                    ContingencyAction(
                        type=ContingencyActionType.RETRY,
                        parameters={"max_retries": max_retries},
                        description="Reset the task for a fresh round of attempts",
                    ),
                    ContingencyAction(
                        type=ContingencyActionType.SKIP,
                        description="Skip the task",
                    ),
                ],
                priority=8,
            ),
            ContingencyPlan(
                trigger=ContingencyTrigger.TIMEOUT,
                description="Allow more time when tasks overrun their estimate",
                condition=lambda task, plan: True,
                condition_description="task.actual_duration > task.estimated_duration * plan.timeout_multiplier",
                actions=[
                    ContingencyAction(
                        type=ContingencyActionType.MODIFY,
                        parameters={"timeout_multiplier": self.config.timeout_multiplier * 1.5},
                        description="Increase the timeout multiplier",
                    ),
                ],
                priority=6,
            ),
        ]

    def add_contingency(self, contingency: ContingencyPlan) -> None:
        """Register a caller-defined contingency on the active plan."""
        self._require_plan().contingencies.append(contingency)

    def _evaluate_contingencies(self, plan: ExecutionPlan, task: PlannedTask) -> ContingencyPlan | None:
        pending = sorted(
            (c for c in plan.contingencies if not c.activated),
            key=lambda c: c.priority,
            reverse=True,
        )
        for contingency in pending:
            try:
                matched = self._trigger_matches(contingency, task, plan)
            except Exception as e:
                logger.warning(f"Contingency {contingency.id} condition failed: {e}")
                continue
            if matched:
                self._activate(contingency, task, plan)
                return contingency
        return None

    @staticmethod
    def _trigger_matches(contingency: ContingencyPlan, task: PlannedTask, plan: ExecutionPlan) -> bool:
        if contingency.trigger == ContingencyTrigger.TASK_FAILURE and task.status != TaskStatus.FAILED:
            return False
        if contingency.trigger == ContingencyTrigger.TIMEOUT:
            if task.actual_duration is None:
                return False
            if task.actual_duration <= task.estimated_duration * plan.timeout_multiplier:
                return False
        return bool(contingency.condition(task, plan))

    def _activate(self, contingency: ContingencyPlan, task: PlannedTask, plan: ExecutionPlan) -> None:
        contingency.activated = True
        contingency.activated_at = utcnow()
        contingency.activated_for = task.id

        previous = task.status
        action_taken: ContingencyAction | None = None
        for action in contingency.actions:
            try:
                if self._apply_action(action, task, plan):
                    action_taken = action
                    break
            except (ValidationError, ValueError) as e:
                logger.warning(f"Contingency action {action.type.value} failed for task {task.id}: {e}")

        self._recompute_metrics(plan)
        logger.info(
            f"Contingency {contingency.trigger.value} activated for task {task.id}: "
            f"{action_taken.type.value if action_taken else 'no applicable action'}"
        )
        self._emit(
            EventType.CONTINGENCY_ACTIVATED,
            plan_id=plan.id,
            contingency_id=contingency.id,
            trigger=contingency.trigger.value,
            task_id=task.id,
            action=action_taken.type.value if action_taken else None,
        )
        if task.status != previous:
            self._emit(
                EventType.TASK_STATUS_CHANGED,
                plan_id=plan.id,
                task_id=task.id,
                previous=previous.value,
                status=task.status.value,
            )

    def _apply_action(self, action: ContingencyAction, task: PlannedTask, plan: ExecutionPlan) -> bool:
        """Run one action. Returns False when it does not apply to the task."""
        params = action.parameters

        if action.type == ContingencyActionType.RETRY:
            if task.status != TaskStatus.FAILED or params.get("max_retries", 1) <= 0:
                return False
            task.status = TaskStatus.READY
            task.attempts = 0
            return True

        if action.type == ContingencyActionType.SKIP:
            if task.status == TaskStatus.COMPLETED:
                return False
            task.status = TaskStatus.SKIPPED
            if task.actual_end_time is None:
                task.actual_end_time = self._clock()
            return True

        if action.type == ContingencyActionType.MODIFY:
            applied = False
            for name, value in params.items():
                if name in PLAN_ADJUSTABLE_FIELDS:
                    applied = self._set_plan_field(plan, name, value) or applied
                elif name in TASK_ADJUSTABLE_FIELDS:
                    setattr(task, name, value)
                    applied = True
            return applied

        if action.type == ContingencyActionType.SUBSTITUTE:
            old, new = params.get("from"), params.get("to")
            if not old or not new or old not in task.required_tools:
                return False
            task.required_tools = [new if tool == old else tool for tool in task.required_tools]
            return True

        if action.type == ContingencyActionType.ESCALATE:
            task.status = TaskStatus.BLOCKED
            logger.warning(f"Task {task.id} escalated: {action.description or 'needs attention'}")
            return True

        return False

    # =========================================================================
    # Progress and metrics
    # =========================================================================

    def get_plan_progress(self) -> PlanProgress:
        plan = self._plan
        if plan is None:
            return PlanProgress(
                overall=0.0,
                current_task="No active plan",
                estimated_time_remaining=0.0,
                confidence=0.0,
            )

        total = len(plan.tasks)
        completed = sum(1 for t in plan.tasks if t.status == TaskStatus.COMPLETED)

        current = next((t for t in plan.tasks if t.status == TaskStatus.EXECUTING), None)
        current = current or self._next_candidate(plan)

        return PlanProgress(
            overall=completed / total if total else 0.0,
            current_task=current.title if current else "No task ready",
            estimated_time_remaining=float(sum(
                t.estimated_duration
                for t in plan.tasks
                if t.status in (TaskStatus.PENDING, TaskStatus.READY, TaskStatus.EXECUTING)
            )),
            confidence=fmean(t.confidence for t in plan.tasks) if plan.tasks else 0.0,
        )

    def get_metrics(self) -> PlanMetrics | None:
        return self._plan.metrics if self._plan else None

    @staticmethod
    def _recompute_metrics(plan: ExecutionPlan) -> None:
        tasks = plan.tasks
        completed = [t for t in tasks if t.status == TaskStatus.COMPLETED]
        metrics = plan.metrics

        metrics.total_tasks = len(tasks)
        metrics.completed_tasks = len(completed)
        metrics.failed_tasks = sum(1 for t in tasks if t.status == TaskStatus.FAILED)
        metrics.skipped_tasks = sum(1 for t in tasks if t.status == TaskStatus.SKIPPED)
        metrics.total_attempts = sum(t.attempts for t in tasks)
        metrics.total_estimated_duration = float(sum(t.estimated_duration for t in tasks))

        actual = sum(t.actual_duration or 0.0 for t in completed)
        estimated = sum(t.estimated_duration for t in completed)
        metrics.actual_duration = actual
        metrics.efficiency_ratio = estimated / actual if actual > 0 else 1.0

        metrics.adaptation_count = len(plan.adaptations)
        metrics.error_rate = (
            metrics.failed_tasks / metrics.total_attempts if metrics.total_attempts else 0.0
        )

    def _emit(self, event_type: EventType, **payload: Any) -> None:
        notify(self._observers, EngineEvent(type=event_type, payload=payload))
