"""
Agentic Loop

The step-driving execution engine: think, plan, act, reflect.

Design decisions:
- Owns the run lifecycle as an explicit state machine
- Suspends only at reasoning and tool calls; steps are strictly sequential
- Thinking, planning and action-selection failures are fatal to the run;
  tool and reflection failures are recorded and the run continues
- Cancellation and pausing are cooperative, checked between iterations
- Notifies explicit observers; never knows about transports or presentation

Debugging:
- Every state transition and step is logged and sent to observers
- The session id is bound to every log record of a run
- The step log is append-only and returned with the result, even on failure
"""

import asyncio
import json
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from taskpilot.config.settings import AgentSettings, LLMSettings
from taskpilot.core.exceptions import (
    AgentStateError,
    CancellationError,
    ExecutionTimeoutError,
    PhaseError,
    PlanningError,
)
from taskpilot.core.interfaces import EventObserver, ReasoningServiceProtocol, ToolExecutorProtocol, notify
from taskpilot.core.types import (
    AgentContext,
    ChatMessage,
    ChatOptions,
    EngineEvent,
    EventType,
    LLMResponse,
    ToolInfo,
    ToolResult,
    utcnow,
)
from taskpilot.observability.logging import log_context
from taskpilot.planning.decomposer import TaskDecomposer
from taskpilot.planning.plan import PlannedTask, TaskStatus
from taskpilot.planning.planner import ExecutionPlanner
from taskpilot.reasoning.parsing import parse_model
from taskpilot.reasoning.prompts import PromptRegistry
from taskpilot.runtime.context import ContextConfig, ContextItem, ContextKind, WorkingContext

logger = logging.getLogger(__name__)


class AgentState(str, Enum):
    """
    Agent execution state machine.

    Valid transitions:
    IDLE → THINKING → [PLANNING] → EXECUTING → [REFLECTING] → COMPLETED
                                   EXECUTING ↔ PAUSED
    Any running state → ERROR (failure or abort)
    """

    IDLE = "idle"
    THINKING = "thinking"
    PLANNING = "planning"
    EXECUTING = "executing"
    REFLECTING = "reflecting"
    COMPLETED = "completed"
    ERROR = "error"
    PAUSED = "paused"

    @property
    def is_running(self) -> bool:
        return self in _RUNNING_STATES


_RUNNING_STATES = frozenset({
    AgentState.THINKING,
    AgentState.PLANNING,
    AgentState.EXECUTING,
    AgentState.REFLECTING,
    AgentState.PAUSED,
})


class StepType(str, Enum):
    THOUGHT = "thought"
    PLAN = "plan"
    ACTION = "action"
    OBSERVATION = "observation"
    REFLECTION = "reflection"


@dataclass(frozen=True)
class AgentStep:
    """One entry of the run's step log. ``duration`` is in seconds."""

    type: StepType
    content: str
    duration: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"step_{uuid4().hex[:8]}")
    timestamp: datetime = field(default_factory=utcnow)


class ActionType(str, Enum):
    TOOL_CALL = "tool_call"
    FINAL_ANSWER = "final_answer"


class AgentAction(BaseModel):
    """The next move chosen by the reasoning service."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: ActionType
    tool_name: str | None = Field(default=None, validation_alias=AliasChoices("tool_name", "toolName"))
    parameters: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("parameters", "arguments"),
    )
    answer: str | None = None
    reasoning: str | None = None
    # Ends the run even while planned sub-tasks remain
    goal_achieved: bool = Field(default=False, validation_alias=AliasChoices("goal_achieved", "goalAchieved"))

    @model_validator(mode="after")
    def _check_payload(self) -> "AgentAction":
        if self.type == ActionType.TOOL_CALL and not self.tool_name:
            raise ValueError("a tool_call action needs a tool_name")
        if self.type == ActionType.FINAL_ANSWER and self.answer is None:
            raise ValueError("a final_answer action needs an answer")
        return self


class PlanStep(BaseModel):
    description: str = Field(min_length=1)
    tools: list[str] = Field(default_factory=list)
    estimated_duration: float = 60.0

    @field_validator("estimated_duration", mode="before")
    @classmethod
    def _default_duration(cls, value: Any) -> Any:
        return 60.0 if value is None else value


class AgentPlan(BaseModel):
    """Structured plan produced in the planning phase. Durations in seconds."""

    steps: list[PlanStep] = Field(min_length=1)
    estimated_total_duration: float = 0.0
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _fill_total(self) -> "AgentPlan":
        if not self.estimated_total_duration:
            self.estimated_total_duration = sum(step.estimated_duration for step in self.steps)
        return self


FALLBACK_PLAN = AgentPlan(
    steps=[PlanStep(description="Analyze the problem and gather information", tools=[], estimated_duration=60)],
    estimated_total_duration=60,
    confidence=0.3,
)

UNDETERMINED_ACTION = AgentAction(
    type=ActionType.FINAL_ANSWER,
    answer="I was unable to determine the next action. Please provide more specific instructions.",
    reasoning="The response did not contain a valid action",
)

NO_OUTPUT = "Tool execution completed with no output."

GOAL_ACHIEVED = "Goal achieved successfully"

_PHASE_LABELS = {
    "thinking": "Thinking phase failed",
    "planning": "Planning phase failed",
    "action": "Step execution failed",
    "synthesis": "Answer synthesis failed",
}

_UNFINISHED = frozenset({TaskStatus.FAILED, TaskStatus.BLOCKED})


@dataclass
class AgentResult:
    """
    Final result of one run.

    Returned on failure too, with the partial step log and the error.
    ``execution_time`` is in seconds.
    """

    success: bool
    goal: str
    final_answer: str = ""
    steps: list[AgentStep] = field(default_factory=list)
    plan: AgentPlan | None = None
    execution_time: float = 0.0
    tools_used: list[str] = field(default_factory=list)
    tokens_used: int = 0
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentConfig:
    """Loop limits and feature switches. ``max_duration`` is in seconds."""

    max_steps: int = 20
    max_duration: float = 300.0
    enable_planning: bool = True
    enable_reflection: bool = True
    enable_task_planning: bool = True
    task_planning_min_steps: int = 3
    history_window: int = 5
    step_content_limit: int = 200

    # Task plan execution
    synthesis_threshold: float = 0.8
    context_token_budget: int = 500
    context_max_items: int = 100
    consolidation_interval: int = 5

    # Generation
    temperature: float = 0.7
    max_tokens: int = 2000
    model: str | None = None

    @classmethod
    def from_settings(cls, agent: AgentSettings, llm: LLMSettings | None = None) -> "AgentConfig":
        config = cls(**agent.model_dump())
        if llm is not None:
            config.temperature = llm.temperature
            config.max_tokens = llm.max_tokens
            config.model = llm.model
        return config


class AgenticLoop:
    """
    Drives one goal to a final answer.

    Collaborators are injected: a reasoning service (required), a tool
    executor, and optionally a decomposer and planner for task-level
    planning. One run at a time per instance.
    """

    def __init__(
        self,
        reasoning: ReasoningServiceProtocol,
        tools: ToolExecutorProtocol | None = None,
        config: AgentConfig | None = None,
        prompts: PromptRegistry | None = None,
        decomposer: TaskDecomposer | None = None,
        planner: ExecutionPlanner | None = None,
        observers: Sequence[EventObserver] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        self._reasoning = reasoning
        self._tools = tools
        self.config = config or AgentConfig()
        self._prompts = prompts or PromptRegistry()
        self._decomposer = decomposer
        self._planner = planner
        self._observers = tuple(observers)
        self._clock = clock

        self._state = AgentState.IDLE
        # Covers the whole of execute(); the state alone turns ERROR on abort
        # while the aborted run is still unwinding
        self._running = False
        self._reset()

    def _reset(self) -> None:
        self._memory = WorkingContext(ContextConfig(max_items=self.config.context_max_items), clock=self._clock)
        self._steps: list[AgentStep] = []
        self._plan: AgentPlan | None = None
        self._task_plan_id: str | None = None
        self._available_tools: list[ToolInfo] = []
        self._current_step = 0
        self._tokens_used = 0
        self._started_at = 0.0
        self._paused_at: float | None = None
        self._paused_total = 0.0
        self._aborted = False
        self._resume = asyncio.Event()
        self._resume.set()

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def steps(self) -> list[AgentStep]:
        return list(self._steps)

    @property
    def plan(self) -> AgentPlan | None:
        return self._plan

    @property
    def memory(self) -> WorkingContext:
        return self._memory

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Run
    # =========================================================================

    async def execute(self, context: AgentContext) -> AgentResult:
        """
        Run the goal in ``context`` to completion.

        Never raises for run failures: they are reported through
        ``AgentResult.success`` and ``AgentResult.error``.

        Raises:
            AgentStateError: A run is already in progress
        """
        if self._running:
            raise AgentStateError(f"Agent is already running ({self._state.value})")

        self._running = True
        try:
            self._reset()
            self._started_at = self._clock()

            with log_context(session_id=context.session_id):
                logger.info(f"Run started: {context.goal[:80]}")
                result = await self._run(context)
                logger.info(
                    f"Run finished: success={result.success}, steps={len(result.steps)}, "
                    f"time={result.execution_time:.2f}s"
                )
        finally:
            self._running = False

        self._emit(
            EventType.RUN_COMPLETED,
            success=result.success,
            steps=len(result.steps),
            error=result.error,
        )
        return result

    async def _run(self, context: AgentContext) -> AgentResult:
        final_answer = ""
        try:
            self._enter(AgentState.THINKING)
            await self._load_tools(context)
            thought = await self._think(context)

            if self.config.enable_planning:
                self._enter(AgentState.PLANNING)
                self._plan = await self._create_plan(context, thought)
                await self._start_task_plan(context)

            self._enter(AgentState.EXECUTING)
            final_answer, completed = await self._execute_loop(context)
            # A pause taken during the last step holds the run here
            await self._await_resume()
            if self._aborted:
                raise CancellationError("Agent execution aborted")

            if not completed:
                limit = self._step_limit(context)
                self._finish_task_plan(success=False)
                self._set_state(AgentState.ERROR)
                return self._result(
                    context,
                    success=False,
                    error=f"Reached the step limit ({limit}) without a final answer",
                )

            if self.config.enable_reflection:
                self._enter(AgentState.REFLECTING)
                await self._reflect(context, final_answer)

            self._finish_task_plan(success=self._task_plan_succeeded())
            self._enter(AgentState.COMPLETED)
            return self._result(context, success=True, final_answer=final_answer)

        except Exception as e:
            logger.error(f"Run failed at step {self._current_step}: {e}")
            self._finish_task_plan(success=False)
            self._set_state(AgentState.ERROR)
            return self._result(context, success=False, final_answer=final_answer, error=str(e))

    def _enter(self, state: AgentState) -> None:
        """Move to the next phase unless the run was aborted meanwhile."""
        if self._aborted:
            raise CancellationError("Agent execution aborted")
        self._set_state(state)

    # =========================================================================
    # Phases
    # =========================================================================

    async def _think(self, context: AgentContext) -> str:
        prompt = self._prompts.render(
            "agent_thinking",
            goal=context.goal,
            constraints=context.constraints,
            preferences=context.preferences,
            tools=[t.name for t in self._available_tools],
        )
        response, duration = await self._call("thinking", prompt, self.config.temperature)
        self._record(StepType.THOUGHT, response.content, duration, tokens=response.usage.total_tokens)
        return response.content

    async def _create_plan(self, context: AgentContext, thought: str) -> AgentPlan:
        prompt = self._prompts.render(
            "agent_planning",
            goal=context.goal,
            thought=thought,
            tools=[t.name for t in self._available_tools],
        )
        response, duration = await self._call("planning", prompt, self.config.temperature * 0.8)

        parsed = parse_model(response.content, AgentPlan, FALLBACK_PLAN)
        if parsed.used_fallback:
            logger.info(f"Using fallback plan: {parsed.error}")
        plan = parsed.value

        self._record(
            StepType.PLAN,
            "\n".join(f"{i}. {step.description}" for i, step in enumerate(plan.steps, 1)),
            duration,
            confidence=plan.confidence,
            estimated_total_duration=plan.estimated_total_duration,
            fallback=parsed.used_fallback,
            tokens=response.usage.total_tokens,
        )
        return plan

    async def _execute_loop(self, context: AgentContext) -> tuple[str, bool]:
        """
        Returns (final_answer, completed).

        With a task plan, each iteration works on the planner's next task
        and a final answer only closes that task. The run ends when an
        action declares the goal achieved, or when no task is runnable:
        past the synthesis threshold the task results are combined into
        the answer, below it a plain step decides.
        """
        max_steps = self._step_limit(context)
        max_duration = min(context.max_duration, self.config.max_duration)

        while self._current_step < max_steps:
            await self._checkpoint(max_duration)

            focus = await self._focus_task()
            if focus is None and self._ready_to_synthesize():
                answer = await self._synthesize(context)
                self._current_step += 1
                return answer, True

            action = await self._next_action(context, focus)
            self._current_step += 1
            finished, answer = await self._apply(context, action, focus)

            if self._current_step % self.config.consolidation_interval == 0:
                dropped = self._memory.consolidate()
                if dropped:
                    logger.debug(f"Consolidated working context, dropped {dropped} item(s)")

            if finished:
                return answer, True

        logger.warning(f"Step limit {max_steps} reached without a final answer")
        return "", False

    async def _apply(
        self,
        context: AgentContext,
        action: AgentAction,
        focus: PlannedTask | None,
    ) -> tuple[bool, str]:
        """Carry out ``action``. Returns (run_finished, final_answer)."""
        if action.type == ActionType.FINAL_ANSWER:
            answer = action.answer or ""
            if focus is None:
                return True, answer
            await self._report_task(focus, TaskStatus.COMPLETED, result=answer)
            return action.goal_achieved, answer

        outcome = await self._run_tool(context, action)
        if outcome.success:
            await self._report_task(focus, TaskStatus.COMPLETED, result=outcome.output)
        else:
            await self._report_task(focus, TaskStatus.FAILED, error=outcome.error)

        if action.goal_achieved and outcome.success:
            return True, outcome.output or GOAL_ACHIEVED
        return False, ""

    async def _await_resume(self) -> None:
        if not self._resume.is_set():
            logger.info("Run paused")
            await self._resume.wait()

    async def _checkpoint(self, max_duration: float) -> None:
        """Wait while paused, then enforce abort and the time budget."""
        await self._await_resume()

        if self._aborted:
            raise CancellationError("Agent execution aborted")

        elapsed = self._elapsed()
        if elapsed >= max_duration:
            raise ExecutionTimeoutError(
                f"Agent execution timeout after {elapsed:.1f}s (limit {max_duration}s)",
                context={"elapsed": elapsed, "max_duration": max_duration},
            )

    async def _next_action(self, context: AgentContext, focus: PlannedTask | None) -> AgentAction:
        limit = self.config.step_content_limit
        recent = [
            replace(step, content=step.content[:limit])
            for step in self._steps[-self.config.history_window:]
        ]
        prompt = self._prompts.render(
            "agent_action",
            goal=context.goal,
            focus=focus,
            tools=self._available_tools,
            recent_steps=recent,
            relevant_context=self._relevant_context(context, focus) if focus else [],
        )
        response, duration = await self._call("action", prompt, self.config.temperature)

        parsed = parse_model(response.content, AgentAction, UNDETERMINED_ACTION)
        if parsed.used_fallback:
            logger.info(f"Unparsable action, finishing with fallback answer: {parsed.error}")
        action = parsed.value

        if action.type == ActionType.FINAL_ANSWER:
            content = action.answer or ""
        else:
            content = f"Call {action.tool_name} with {json.dumps(action.parameters, default=str)}"

        self._record(
            StepType.ACTION,
            content,
            duration,
            action_type=action.type.value,
            tool_name=action.tool_name,
            parameters=action.parameters,
            reasoning=action.reasoning,
            goal_achieved=action.goal_achieved,
            fallback=parsed.used_fallback,
            task_id=focus.id if focus else None,
            tokens=response.usage.total_tokens,
        )
        return action

    async def _run_tool(self, context: AgentContext, action: AgentAction) -> ToolResult:
        """Execute the tool and record an observation. Never raises."""
        name = action.tool_name or ""
        start = self._clock()

        if self._tools is None:
            outcome = ToolResult(tool_name=name, error="No tool executor is configured")
        elif not context.is_tool_allowed(name):
            outcome = ToolResult(tool_name=name, error=f"Tool '{name}' is not allowed in this context")
        else:
            try:
                outcome = await self._tools.execute(name, action.parameters, context)
            except Exception as e:
                logger.warning(f"Tool executor raised for '{name}': {e}")
                outcome = ToolResult(tool_name=name, error=str(e) or type(e).__name__)

        if outcome.success:
            content = outcome.output or NO_OUTPUT
            self._memory.add(ContextKind.OBSERVATION, f"{name} returned: {content}", tags=(name,))
        else:
            content = f"Tool execution failed: {outcome.error}"
            self._memory.add(ContextKind.ERROR, f"{name} failed: {outcome.error}", tags=(name,))

        self._record(
            StepType.OBSERVATION,
            content,
            self._clock() - start,
            tool_name=name,
            success=outcome.success,
            error_code=outcome.error_code,
            duration_ms=outcome.duration_ms,
        )
        return outcome

    async def _reflect(self, context: AgentContext, final_answer: str) -> None:
        """Self-assessment. Failures are logged and ignored."""
        try:
            prompt = self._prompts.render(
                "agent_reflection",
                goal=context.goal,
                final_answer=final_answer,
                steps=self._steps,
                tools_used=self._tools_used(),
            )
            start = self._clock()
            response = await self._reasoning.chat(self._messages(prompt), self._options(self.config.temperature * 0.6))
        except Exception as e:
            logger.warning(f"Reflection failed: {e}")
            return

        self._tokens_used += response.usage.total_tokens
        self._record(
            StepType.REFLECTION,
            response.content,
            self._clock() - start,
            tokens=response.usage.total_tokens,
        )

    async def _synthesize(self, context: AgentContext) -> str:
        """Combine the task plan's results into the final answer."""
        plan = self._planner.current_plan
        progress = self._planner.get_plan_progress()
        prompt = self._prompts.render(
            "agent_synthesis",
            goal=context.goal,
            progress=round(progress.overall * 100),
            tasks=plan.tasks if plan else [],
            relevant_context=self._relevant_context(context),
        )
        response, duration = await self._call("synthesis", prompt, self.config.temperature)

        self._record(
            StepType.ACTION,
            response.content,
            duration,
            action_type=ActionType.FINAL_ANSWER.value,
            tool_name=None,
            parameters={},
            reasoning=f"{progress.overall:.0%} of sub-tasks completed",
            goal_achieved=True,
            synthesized=True,
            fallback=False,
            task_id=None,
            tokens=response.usage.total_tokens,
        )
        return response.content

    # =========================================================================
    # Task planning
    # =========================================================================

    async def _start_task_plan(self, context: AgentContext) -> None:
        if not (
            self.config.enable_task_planning
            and self._decomposer is not None
            and self._planner is not None
            and self._plan is not None
            and len(self._plan.steps) >= self.config.task_planning_min_steps
        ):
            return

        start = self._clock()
        decomposition = await self._decomposer.decompose(context.goal, context)
        plan = self._planner.create_plan(decomposition, context)
        self._planner.start_plan()
        self._task_plan_id = plan.id

        self._record(
            StepType.PLAN,
            "Task plan:\n" + "\n".join(f"- {task.title}" for task in plan.tasks),
            self._clock() - start,
            plan_id=plan.id,
            tasks=len(plan.tasks),
            critical_path=decomposition.critical_path,
            fallback_stages=decomposition.fallback_stages,
        )

    async def _focus_task(self) -> PlannedTask | None:
        if self._task_plan_id is None or self._planner is None:
            return None
        task = self._planner.get_next_task()
        if task is not None:
            await self._planner.update_task_status(task.id, TaskStatus.EXECUTING)
        return task

    async def _report_task(
        self,
        task: PlannedTask | None,
        status: TaskStatus,
        result: Any = None,
        error: str | None = None,
    ) -> None:
        if task is None or self._planner is None:
            return
        try:
            await self._planner.update_task_status(task.id, status, result=result, error=error)
        except PlanningError as e:
            logger.warning(f"Could not update task {task.id}: {e}")
            return

        if status == TaskStatus.COMPLETED:
            self._memory.add(
                ContextKind.TASK_RESULT,
                f'Task "{task.title}" completed: {result}',
                tags=(task.id, task.type.value),
                task_id=task.id,
            )
        elif status == TaskStatus.FAILED:
            self._memory.add(
                ContextKind.ERROR,
                f'Task "{task.title}" failed: {error}',
                tags=(task.id, task.type.value),
                task_id=task.id,
            )

    def _ready_to_synthesize(self) -> bool:
        if self._task_plan_id is None or self._planner is None:
            return False
        return self._planner.get_plan_progress().overall >= self.config.synthesis_threshold

    def _task_plan_succeeded(self) -> bool:
        """A plan succeeds when none of its tasks failed or were blocked."""
        plan = self._planner.current_plan if self._planner is not None else None
        if plan is None:
            return True
        return not any(task.status in _UNFINISHED for task in plan.tasks)

    def _relevant_context(self, context: AgentContext, focus: PlannedTask | None = None) -> list[ContextItem]:
        query = context.goal if focus is None else f"{context.goal} {focus.title} {focus.description}"
        return self._memory.relevant(query, self.config.context_token_budget)

    def _finish_task_plan(self, success: bool) -> None:
        if self._task_plan_id is None or self._planner is None:
            return
        plan = self._planner.current_plan
        if plan is not None and plan.id == self._task_plan_id and not plan.status.is_terminal:
            self._planner.complete_plan(success)

    # =========================================================================
    # Control
    # =========================================================================

    def pause(self) -> bool:
        """Pause before the next iteration. Only valid while executing."""
        if self._state != AgentState.EXECUTING:
            return False
        self._paused_at = self._clock()
        self._resume.clear()
        self._set_state(AgentState.PAUSED)
        self._sync_task_plan(pause=True)
        return True

    def resume(self) -> bool:
        if self._state != AgentState.PAUSED:
            return False
        if self._paused_at is not None:
            self._paused_total += self._clock() - self._paused_at
            self._paused_at = None
        self._set_state(AgentState.EXECUTING)
        self._sync_task_plan(pause=False)
        self._resume.set()
        return True

    def abort(self) -> bool:
        """
        Request cancellation. The run stops at its next checkpoint and
        reports failure; an in-flight reasoning or tool call is not
        interrupted. No new run starts until the aborted one has returned.
        """
        if not self._running or not self._state.is_running:
            return False
        self._aborted = True
        self._resume.set()
        self._set_state(AgentState.ERROR)
        return True

    def _sync_task_plan(self, pause: bool) -> None:
        if self._task_plan_id is None or self._planner is None:
            return
        try:
            if pause:
                self._planner.pause_plan()
            else:
                self._planner.resume_plan()
        except PlanningError as e:
            logger.debug(f"Task plan not {'paused' if pause else 'resumed'}: {e}")

    def get_stats(self) -> dict[str, Any]:
        stats = {
            "state": self._state.value,
            "current_step": self._current_step,
            "total_steps": len(self._steps),
            "execution_time": self._elapsed() if self._started_at else 0.0,
            "tokens_used": self._tokens_used,
            "tools_used": self._tools_used(),
        }
        if self._task_plan_id is not None and self._planner is not None:
            stats["plan_progress"] = self._planner.get_plan_progress().overall
        return stats

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load_tools(self, context: AgentContext) -> None:
        if self._tools is None:
            return
        try:
            tools = await self._tools.list_tools()
        except Exception as e:
            logger.warning(f"Could not list tools: {e}")
            return
        self._available_tools = [t for t in tools if context.is_tool_allowed(t.name)]

    async def _call(self, phase: str, prompt: str, temperature: float) -> tuple[LLMResponse, float]:
        start = self._clock()
        try:
            response = await self._reasoning.chat(self._messages(prompt), self._options(temperature))
        except Exception as e:
            raise PhaseError(phase, f"{_PHASE_LABELS[phase]}: {e}", cause=e)
        self._tokens_used += response.usage.total_tokens
        return response, self._clock() - start

    def _messages(self, prompt: str) -> list[ChatMessage]:
        return [
            ChatMessage.system(self._prompts.render("agent_system")),
            ChatMessage.user(prompt),
        ]

    def _options(self, temperature: float) -> ChatOptions:
        return ChatOptions(
            model=self.config.model,
            temperature=min(2.0, max(0.0, temperature)),
            max_tokens=self.config.max_tokens,
        )

    def _step_limit(self, context: AgentContext) -> int:
        return min(context.max_steps, self.config.max_steps)

    def _elapsed(self) -> float:
        now = self._clock()
        paused = self._paused_total
        if self._paused_at is not None:
            paused += now - self._paused_at
        return now - self._started_at - paused

    def _tools_used(self) -> list[str]:
        used: list[str] = []
        for step in self._steps:
            name = step.metadata.get("tool_name")
            if step.type == StepType.OBSERVATION and name and name not in used:
                used.append(name)
        return used

    def _record(self, step_type: StepType, content: str, duration: float = 0.0, **metadata: Any) -> AgentStep:
        step = AgentStep(type=step_type, content=content, duration=duration, metadata=metadata)
        self._steps.append(step)
        logger.debug(f"Step {len(self._steps)} [{step_type.value}] {content[:100]}")
        self._emit(EventType.STEP_RECORDED, step_id=step.id, type=step_type.value, index=len(self._steps) - 1)
        return step

    def _set_state(self, new_state: AgentState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        logger.debug(f"State {old_state.value} -> {new_state.value}")
        self._emit(EventType.STATE_CHANGED, **{"from": old_state.value, "to": new_state.value})

    def _emit(self, event_type: EventType, **payload: Any) -> None:
        notify(self._observers, EngineEvent(type=event_type, payload=payload))

    def _result(
        self,
        context: AgentContext,
        success: bool,
        final_answer: str = "",
        error: str | None = None,
    ) -> AgentResult:
        metadata: dict[str, Any] = {
            "steps_executed": self._current_step,
            "max_steps_reached": self._current_step >= self._step_limit(context),
            "planning_enabled": self.config.enable_planning,
            "reflection_enabled": self.config.enable_reflection,
            "task_plan_id": self._task_plan_id,
        }
        if not success:
            metadata["error_step"] = self._current_step

        return AgentResult(
            success=success,
            goal=context.goal,
            final_answer=final_answer,
            steps=list(self._steps),
            plan=self._plan,
            execution_time=self._elapsed(),
            tools_used=self._tools_used(),
            tokens_used=self._tokens_used,
            error=error,
            metadata=metadata,
        )
