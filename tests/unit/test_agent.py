"""
Unit Tests - Agentic Loop

Tests for the run lifecycle, action handling, limits, control and the builder.
"""

import asyncio

import pytest

from taskpilot.config.settings import Settings
from taskpilot.core.exceptions import AgentStateError, ConfigurationError, LLMConnectionError
from taskpilot.core.types import AgentContext, EventType
from taskpilot.planning.decomposer import TaskDecomposer
from taskpilot.planning.plan import PlanStatus, TaskStatus
from taskpilot.planning.planner import ExecutionPlanner
from taskpilot.reasoning.llm import ScriptedLLMAdapter
from taskpilot.runtime.agent import (
    FALLBACK_PLAN,
    NO_OUTPUT,
    UNDETERMINED_ACTION,
    AgentAction,
    AgentConfig,
    AgenticLoop,
    AgentState,
    ActionType,
    StepType,
)
from taskpilot.runtime.factory import AgentBuilder, create_agent
from tests.fixtures import (
    ACTION,
    PLANNING,
    REFLECTION,
    SYNTHESIS,
    THINKING,
    FakeClock,
    agent_plan,
    decomposition_responses,
    dependency,
    fenced,
    final_answer,
    subtask,
    tool_call,
)


def script(actions, **overrides):
    keyed = {
        THINKING: "The figures need to be gathered and summarized.",
        PLANNING: agent_plan("Gather the figures", "Summarize them"),
        ACTION: actions,
        REFLECTION: "The run went well.",
    }
    keyed.update(overrides)
    return ScriptedLLMAdapter(keyed=keyed)


def chained_tasks(actions, **overrides):
    """Collect, clean and report, each waiting on the one before."""
    keyed = {
        THINKING: "Collect, clean, then report.",
        PLANNING: agent_plan("Collect", "Clean", "Report"),
        **decomposition_responses(
            tasks=[subtask("collect"), subtask("clean"), subtask("report")],
            dependencies=[dependency("collect", "clean"), dependency("clean", "report")],
        ),
        ACTION: actions,
        SYNTHESIS: "Rows collected, cleaned and reported.",
        REFLECTION: "Fine.",
    }
    keyed.update(overrides)
    return ScriptedLLMAdapter(keyed=keyed)


def step_types(result):
    return [step.type for step in result.steps]


class TickingClock:
    """Advances by a fixed amount every time it is read."""

    def __init__(self, step: float):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class GatedReasoning(ScriptedLLMAdapter):
    """Holds every call until the gate opens."""

    def __init__(self, gate: asyncio.Event, **kwargs):
        super().__init__(**kwargs)
        self.gate = gate

    async def _do_chat(self, messages, options):
        await self.gate.wait()
        return await super()._do_chat(messages, options)


class TestAgentAction:
    """Tests for AgentAction parsing."""

    def test_aliases(self):
        """Test camelCase tool names and 'arguments' are accepted."""
        action = AgentAction.model_validate({"type": "tool_call", "toolName": "echo", "arguments": {"message": "x"}})

        assert action.tool_name == "echo"
        assert action.parameters == {"message": "x"}
        assert action.goal_achieved is False

    def test_goal_achieved_flag(self):
        """Test goal_achieved is read in either spelling."""
        for key in ("goal_achieved", "goalAchieved"):
            action = AgentAction.model_validate({"type": "final_answer", "answer": "done", key: True})
            assert action.goal_achieved is True

    def test_tool_call_needs_name(self):
        """Test a tool call without a tool name is invalid."""
        with pytest.raises(ValueError):
            AgentAction.model_validate({"type": "tool_call"})

    def test_final_answer_needs_answer(self):
        """Test a final answer without text is invalid."""
        with pytest.raises(ValueError):
            AgentAction.model_validate({"type": "final_answer"})


class TestAgenticLoop:
    """Tests for AgenticLoop.execute."""

    @pytest.mark.asyncio
    async def test_direct_final_answer(self, context, observer):
        """Test a run that answers immediately goes through every phase."""
        reasoning = script(final_answer("Sales rose 4%."))
        loop = AgenticLoop(reasoning, observers=[observer])

        result = await loop.execute(context)

        assert result.success
        assert result.final_answer == "Sales rose 4%."
        assert result.error is None
        assert step_types(result) == [StepType.THOUGHT, StepType.PLAN, StepType.ACTION, StepType.REFLECTION]
        assert result.plan.steps[0].description == "Gather the figures"
        assert result.tokens_used > 0
        assert result.metadata["steps_executed"] == 1
        assert result.metadata["max_steps_reached"] is False
        assert loop.state == AgentState.COMPLETED

        transitions = [(e.payload["from"], e.payload["to"]) for e in observer.of_type(EventType.STATE_CHANGED)]
        assert transitions == [
            ("idle", "thinking"),
            ("thinking", "planning"),
            ("planning", "executing"),
            ("executing", "reflecting"),
            ("reflecting", "completed"),
        ]
        assert len(observer.of_type(EventType.STEP_RECORDED)) == 4
        assert observer.of_type(EventType.RUN_COMPLETED)[0].payload["success"] is True

    @pytest.mark.asyncio
    async def test_tool_call_then_answer(self, context, tool_client):
        """Test a tool result is observed before the final answer."""
        reasoning = script([tool_call("echo", message="Q3 total: 1200"), final_answer("Total was 1200.")])
        loop = AgenticLoop(reasoning, tools=tool_client)

        result = await loop.execute(context)

        assert result.success
        assert step_types(result)[2:] == [
            StepType.ACTION,
            StepType.OBSERVATION,
            StepType.ACTION,
            StepType.REFLECTION,
        ]
        action, observation = result.steps[2], result.steps[3]
        assert action.content == 'Call echo with {"message": "Q3 total: 1200"}'
        assert observation.content == "Q3 total: 1200"
        assert observation.metadata["success"] is True
        assert result.tools_used == ["echo"]

    @pytest.mark.asyncio
    async def test_unknown_tool_is_observed_and_loop_continues(self, context, tool_client):
        """Test an unregistered tool becomes a failed observation, not a failed run."""
        reasoning = script([tool_call("web_search", query="sales"), final_answer("Answered without search.")])
        loop = AgenticLoop(reasoning, tools=tool_client)

        result = await loop.execute(context)

        observation = next(s for s in result.steps if s.type == StepType.OBSERVATION)
        assert observation.content == "Tool execution failed: Tool 'web_search' not found"
        assert observation.metadata["error_code"] == -32000
        assert observation.metadata["success"] is False
        assert result.success
        assert result.final_answer == "Answered without search."

    @pytest.mark.asyncio
    async def test_unparsable_action_finishes_with_fallback(self, context):
        """Test an action that cannot be parsed ends the run with the fallback answer."""
        reasoning = script("I am not sure what to do next.")
        loop = AgenticLoop(reasoning)

        result = await loop.execute(context)

        assert result.success
        assert result.final_answer == UNDETERMINED_ACTION.answer
        action = next(s for s in result.steps if s.type == StepType.ACTION)
        assert action.metadata["fallback"] is True
        assert action.metadata["action_type"] == ActionType.FINAL_ANSWER.value

    @pytest.mark.asyncio
    async def test_step_limit(self, context, tool_client):
        """Test the loop stops at max_steps without a final answer."""
        reasoning = script(tool_call("echo", message="again"))
        loop = AgenticLoop(reasoning, tools=tool_client, config=AgentConfig(max_steps=3))

        result = await loop.execute(context)

        assert not result.success
        assert result.error == "Reached the step limit (3) without a final answer"
        assert step_types(result).count(StepType.ACTION) == 3
        assert result.metadata["max_steps_reached"] is True
        assert result.metadata["error_step"] == 3
        assert loop.state == AgentState.ERROR

    @pytest.mark.asyncio
    async def test_context_step_limit_applies(self, tool_client):
        """Test the smaller of the context and config limits wins."""
        context = AgentContext(goal="Keep echoing", max_steps=2)
        loop = AgenticLoop(script(tool_call("echo", message="x")), tools=tool_client)

        result = await loop.execute(context)

        assert result.error == "Reached the step limit (2) without a final answer"

    @pytest.mark.asyncio
    async def test_duration_limit(self, context):
        """Test the loop stops once its time budget is spent."""
        loop = AgenticLoop(
            script(tool_call("echo", message="x")),
            config=AgentConfig(max_duration=10, enable_planning=False, enable_reflection=False),
            clock=TickingClock(step=1.0),
        )

        result = await loop.execute(context)

        assert not result.success
        assert result.error.startswith("Agent execution timeout")
        assert 1 <= step_types(result).count(StepType.ACTION) < loop.config.max_steps
        assert loop.state == AgentState.ERROR

    @pytest.mark.asyncio
    async def test_thinking_failure(self, context):
        """Test a failing thinking call ends the run with a phase error."""
        loop = AgenticLoop(script(final_answer("x"), **{THINKING: LLMConnectionError("backend down")}))

        result = await loop.execute(context)

        assert not result.success
        assert result.error == "Thinking phase failed: backend down"
        assert result.steps == []
        assert loop.state == AgentState.ERROR

    @pytest.mark.asyncio
    async def test_planning_failure(self, context):
        """Test a failing planning call ends the run."""
        loop = AgenticLoop(script(final_answer("x"), **{PLANNING: LLMConnectionError("backend down")}))

        result = await loop.execute(context)

        assert result.error == "Planning phase failed: backend down"
        assert step_types(result) == [StepType.THOUGHT]

    @pytest.mark.asyncio
    async def test_action_failure(self, context):
        """Test a failing action call ends the run."""
        loop = AgenticLoop(script(LLMConnectionError("backend down")))

        result = await loop.execute(context)

        assert result.error == "Step execution failed: backend down"

    @pytest.mark.asyncio
    async def test_reflection_failure_is_ignored(self, context):
        """Test a failing reflection does not fail the run."""
        loop = AgenticLoop(script(final_answer("Done."), **{REFLECTION: LLMConnectionError("backend down")}))

        result = await loop.execute(context)

        assert result.success
        assert StepType.REFLECTION not in step_types(result)

    @pytest.mark.asyncio
    async def test_fallback_plan(self, context):
        """Test an unparsable plan is replaced by the fallback plan."""
        loop = AgenticLoop(script(final_answer("Done."), **{PLANNING: "Just wing it."}))

        result = await loop.execute(context)

        assert result.plan == FALLBACK_PLAN
        plan_step = next(s for s in result.steps if s.type == StepType.PLAN)
        assert plan_step.metadata["fallback"] is True
        assert plan_step.content == "1. Analyze the problem and gather information"

    @pytest.mark.asyncio
    async def test_planning_and_reflection_disabled(self, context):
        """Test optional phases can be switched off."""
        reasoning = script(final_answer("Done."))
        loop = AgenticLoop(reasoning, config=AgentConfig(enable_planning=False, enable_reflection=False))

        result = await loop.execute(context)

        assert step_types(result) == [StepType.THOUGHT, StepType.ACTION]
        assert result.plan is None
        assert reasoning.call_count == 2

    @pytest.mark.asyncio
    async def test_disallowed_tool(self, tool_client):
        """Test tools outside the allow-list are neither offered nor run."""
        context = AgentContext(goal="Do some maths", allowed_tools=["calculate"])
        reasoning = script([tool_call("echo", message="x"), final_answer("ok")])
        loop = AgenticLoop(reasoning, tools=tool_client)

        result = await loop.execute(context)

        observation = next(s for s in result.steps if s.type == StepType.OBSERVATION)
        assert observation.content == "Tool execution failed: Tool 'echo' is not allowed in this context"
        action_prompt = next(p for p in reasoning.prompts() if ACTION in p)
        assert "- calculate:" in action_prompt
        assert "- echo:" not in action_prompt

    @pytest.mark.asyncio
    async def test_no_tool_executor(self, context):
        """Test a tool call without an executor is a failed observation."""
        loop = AgenticLoop(script([tool_call("echo", message="x"), final_answer("ok")]))

        result = await loop.execute(context)

        observation = next(s for s in result.steps if s.type == StepType.OBSERVATION)
        assert observation.content == "Tool execution failed: No tool executor is configured"
        assert result.success

    @pytest.mark.asyncio
    async def test_empty_tool_output(self, context, tool_client):
        """Test an empty tool result is reported as such."""
        loop = AgenticLoop(script([tool_call("empty"), final_answer("ok")]), tools=tool_client)

        result = await loop.execute(context)

        observation = next(s for s in result.steps if s.type == StepType.OBSERVATION)
        assert observation.content == NO_OUTPUT

    @pytest.mark.asyncio
    async def test_history_window(self, context, tool_client):
        """Test the action prompt shows a bounded, truncated step history."""
        reasoning = script(
            [tool_call("echo", message="hello"), final_answer("ok")],
            **{THINKING: "t" * 50},
        )
        loop = AgenticLoop(
            reasoning,
            tools=tool_client,
            config=AgentConfig(history_window=2, step_content_limit=20),
        )

        await loop.execute(context)

        first, second = [p for p in reasoning.prompts() if ACTION in p]
        assert "[thought] " + "t" * 20 in first
        assert "t" * 21 not in first
        assert "[thought]" not in second
        assert "[observation] hello" in second

    @pytest.mark.asyncio
    async def test_phase_temperatures(self, context):
        """Test planning and reflection run cooler than thinking."""
        reasoning = script(final_answer("ok"))

        await AgenticLoop(reasoning, config=AgentConfig(temperature=0.5)).execute(context)

        assert [o.temperature for o in reasoning.options] == pytest.approx([0.5, 0.4, 0.5, 0.3])

    @pytest.mark.asyncio
    async def test_stats(self, context):
        """Test stats describe the finished run."""
        loop = AgenticLoop(script(final_answer("ok")))

        await loop.execute(context)
        stats = loop.get_stats()

        assert stats["state"] == "completed"
        assert stats["current_step"] == 1
        assert stats["total_steps"] == 4
        assert stats["tokens_used"] > 0


class TestLoopControl:
    """Tests for pause, resume, abort and re-entrancy."""

    def test_control_when_idle(self):
        """Test control calls are refused when nothing runs."""
        loop = AgenticLoop(ScriptedLLMAdapter())

        assert loop.pause() is False
        assert loop.resume() is False
        assert loop.abort() is False

    @pytest.mark.asyncio
    async def test_rejects_concurrent_run(self, context):
        """Test a second execute while running raises AgentStateError."""
        gate = asyncio.Event()
        reasoning = GatedReasoning(gate, keyed={THINKING: "thinking", ACTION: final_answer("ok")})
        loop = AgenticLoop(reasoning, config=AgentConfig(enable_planning=False, enable_reflection=False))

        first = asyncio.create_task(loop.execute(context))
        for _ in range(10):
            await asyncio.sleep(0)
        assert loop.state == AgentState.THINKING

        with pytest.raises(AgentStateError):
            await loop.execute(context)

        gate.set()
        result = await first
        assert result.success

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, context, tool_client, observer):
        """Test a paused run waits and then finishes normally."""
        loop = AgenticLoop(
            script([tool_call("echo", message="x"), final_answer("ok")]),
            tools=tool_client,
            observers=[observer],
        )

        class PauseAfterObservation:
            def on_event(self, event):
                if event.type == EventType.STEP_RECORDED and event.payload["type"] == "observation":
                    assert loop.pause() is True
                    asyncio.get_running_loop().call_soon(loop.resume)

        loop._observers += (PauseAfterObservation(),)

        result = await loop.execute(context)

        assert result.success
        transitions = [(e.payload["from"], e.payload["to"]) for e in observer.of_type(EventType.STATE_CHANGED)]
        assert ("executing", "paused") in transitions
        assert ("paused", "executing") in transitions

    @pytest.mark.asyncio
    async def test_abort(self, context, tool_client):
        """Test an abort stops the run at the next checkpoint."""
        loop = AgenticLoop(script(tool_call("echo", message="x")), tools=tool_client)

        class AbortAfterObservation:
            def on_event(self, event):
                if event.type == EventType.STEP_RECORDED and event.payload["type"] == "observation":
                    loop.abort()

        loop._observers = (AbortAfterObservation(),)

        result = await loop.execute(context)

        assert not result.success
        assert result.error == "Agent execution aborted"
        assert step_types(result).count(StepType.ACTION) == 1
        assert loop.state == AgentState.ERROR

    @pytest.mark.asyncio
    async def test_aborted_run_blocks_new_runs_until_it_returns(self, context):
        """Test a run aborted mid-call still reports the abort and no second run starts meanwhile."""
        gate = asyncio.Event()
        reasoning = GatedReasoning(gate, keyed={THINKING: "thinking", ACTION: final_answer("ok")})
        loop = AgenticLoop(reasoning, config=AgentConfig(enable_planning=False, enable_reflection=False))

        first = asyncio.create_task(loop.execute(context))
        for _ in range(10):
            await asyncio.sleep(0)

        assert loop.abort() is True
        assert loop.state == AgentState.ERROR
        assert loop.is_running
        assert loop.abort() is False

        with pytest.raises(AgentStateError):
            await loop.execute(context)

        gate.set()
        result = await first

        assert not result.success
        assert result.error == "Agent execution aborted"
        assert not loop.is_running

        again = await loop.execute(context)
        assert again.success
        assert again.final_answer == "ok"

    @pytest.mark.asyncio
    async def test_pause_during_last_step_holds_before_reflection(self, context, observer):
        """Test a pause taken while the final answer is chosen is honoured before reflecting."""
        clock = FakeClock()
        loop = AgenticLoop(
            script(final_answer("ok")),
            config=AgentConfig(enable_planning=False),
            observers=[observer],
            clock=clock,
        )

        def resume_later():
            clock.advance(100)
            loop.resume()

        class PauseOnAnswer:
            def on_event(self, event):
                if event.type == EventType.STEP_RECORDED and event.payload["type"] == "action":
                    assert loop.pause() is True
                    asyncio.get_running_loop().call_soon(resume_later)

        loop._observers += (PauseOnAnswer(),)

        result = await loop.execute(context)

        assert result.success
        assert result.execution_time == 0.0
        transitions = [(e.payload["from"], e.payload["to"]) for e in observer.of_type(EventType.STATE_CHANGED)]
        assert ("paused", "reflecting") not in transitions
        assert transitions[-4:] == [
            ("executing", "paused"),
            ("paused", "executing"),
            ("executing", "reflecting"),
            ("reflecting", "completed"),
        ]


class TestTaskPlanning:
    """Tests for running the loop against a decomposed task plan."""

    @pytest.mark.asyncio
    async def test_actions_advance_task_plan(self, context, tool_client, observer):
        """Test a task-level answer closes only its task and the run goes on to the next."""
        reasoning = chained_tasks([tool_call("echo", message="rows"), final_answer("Step done.")])
        planner = ExecutionPlanner(reasoning, observers=[observer])
        loop = AgenticLoop(
            reasoning,
            tools=tool_client,
            decomposer=TaskDecomposer(reasoning),
            planner=planner,
        )

        result = await loop.execute(context)

        assert result.success
        assert result.final_answer == "Rows collected, cleaned and reported."
        plan = planner.execution_history[0]
        assert result.metadata["task_plan_id"] == plan.id
        assert plan.status == PlanStatus.COMPLETED
        assert [t.status for t in plan.tasks] == [TaskStatus.COMPLETED] * 3
        assert plan.get_task("collect").result == "rows"
        assert plan.get_task("report").result == "Step done."

        actions = [s for s in result.steps if s.type == StepType.ACTION]
        assert [a.metadata["task_id"] for a in actions] == ["collect", "clean", "report", None]
        assert actions[-1].metadata["synthesized"] is True
        assert actions[-1].content == result.final_answer

        first_action_prompt = next(p for p in reasoning.prompts() if ACTION in p)
        assert "Current sub-task: Collect" in first_action_prompt
        assert observer.of_type(EventType.PLAN_COMPLETED)

    @pytest.mark.asyncio
    async def test_single_answer_does_not_end_chained_plan(self, context):
        """Test one repeated final answer still walks every task before the run ends."""
        reasoning = chained_tasks(final_answer("Looks fine."))
        planner = ExecutionPlanner(reasoning)
        loop = AgenticLoop(reasoning, decomposer=TaskDecomposer(reasoning), planner=planner)

        result = await loop.execute(context)

        plan = planner.execution_history[0]
        assert result.success
        assert [t.status for t in plan.tasks] == [TaskStatus.COMPLETED] * 3
        assert plan.status == PlanStatus.COMPLETED

        synthesis_prompt = next(p for p in reasoning.prompts() if SYNTHESIS in p)
        assert "Progress: 100% of sub-tasks completed" in synthesis_prompt
        assert "Collect [completed]: Looks fine." in synthesis_prompt

    @pytest.mark.asyncio
    async def test_goal_achieved_ends_run_early(self, context, tool_client):
        """Test an answer marked goal_achieved ends the run with tasks still open."""
        reasoning = chained_tasks([
            tool_call("echo", message="rows"),
            final_answer("Everything needed is already here.", goal_achieved=True),
        ])
        planner = ExecutionPlanner(reasoning)
        loop = AgenticLoop(reasoning, tools=tool_client, decomposer=TaskDecomposer(reasoning), planner=planner)

        result = await loop.execute(context)

        plan = planner.execution_history[0]
        assert result.success
        assert result.final_answer == "Everything needed is already here."
        assert [t.status for t in plan.tasks] == [TaskStatus.COMPLETED, TaskStatus.COMPLETED, TaskStatus.READY]
        assert plan.status == PlanStatus.COMPLETED
        assert not any(SYNTHESIS in p for p in reasoning.prompts())

    @pytest.mark.asyncio
    async def test_goal_achieving_tool_call_answers_with_output(self, context, tool_client):
        """Test a successful tool call marked goal_achieved ends the run with its output."""
        achieving_call = fenced({
            "type": "tool_call",
            "tool_name": "echo",
            "parameters": {"message": "all rows"},
            "goal_achieved": True,
        })
        reasoning = chained_tasks(achieving_call)
        planner = ExecutionPlanner(reasoning)
        loop = AgenticLoop(reasoning, tools=tool_client, decomposer=TaskDecomposer(reasoning), planner=planner)

        result = await loop.execute(context)

        assert result.success
        assert result.final_answer == "all rows"
        assert [t.status for t in planner.execution_history[0].tasks][0] == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_task_fails_plan_without_synthesis(self, context, tool_client):
        """Test a failed task keeps progress below the threshold and marks the plan failed."""
        reasoning = chained_tasks([tool_call("fail"), final_answer("Collection failed, nothing to report.")])
        planner = ExecutionPlanner(reasoning)
        loop = AgenticLoop(reasoning, tools=tool_client, decomposer=TaskDecomposer(reasoning), planner=planner)

        result = await loop.execute(context)

        plan = planner.execution_history[0]
        assert result.success
        assert result.final_answer == "Collection failed, nothing to report."
        assert plan.get_task("collect").status == TaskStatus.FAILED
        assert plan.status == PlanStatus.FAILED

        actions = [s for s in result.steps if s.type == StepType.ACTION]
        assert [a.metadata["task_id"] for a in actions] == ["collect", None]
        assert not any(SYNTHESIS in p for p in reasoning.prompts())

    @pytest.mark.asyncio
    async def test_task_results_reach_later_prompts(self, context, tool_client):
        """Test completed task results are offered as relevant context to later tasks."""
        reasoning = chained_tasks([tool_call("echo", message="42 rows collected"), final_answer("Step done.")])
        loop = AgenticLoop(
            reasoning,
            tools=tool_client,
            decomposer=TaskDecomposer(reasoning),
            planner=ExecutionPlanner(reasoning),
        )

        await loop.execute(context)

        action_prompts = [p for p in reasoning.prompts() if ACTION in p]
        assert "Relevant context:" not in action_prompts[0]
        assert 'Task "Collect" completed: 42 rows collected' in action_prompts[1]
        assert any(item.metadata.get("task_id") == "collect" for item in loop.memory.items)

    @pytest.mark.asyncio
    async def test_synthesis_failure_fails_run(self, context):
        """Test a failing synthesis call is fatal like other phases."""
        reasoning = chained_tasks(
            final_answer("Looks fine."),
            **{SYNTHESIS: LLMConnectionError("backend down")},
        )
        planner = ExecutionPlanner(reasoning)
        loop = AgenticLoop(reasoning, decomposer=TaskDecomposer(reasoning), planner=planner)

        result = await loop.execute(context)

        assert not result.success
        assert result.error == "Answer synthesis failed: backend down"
        assert planner.execution_history[0].status == PlanStatus.FAILED

    @pytest.mark.asyncio
    async def test_short_plans_skip_decomposition(self, context):
        """Test plans with fewer steps than the threshold run without a task plan."""
        reasoning = script(final_answer("ok"))
        planner = ExecutionPlanner(reasoning)
        loop = AgenticLoop(reasoning, decomposer=TaskDecomposer(reasoning), planner=planner)

        result = await loop.execute(context)

        assert result.metadata["task_plan_id"] is None
        assert planner.current_plan is None


class TestBuilder:
    """Tests for AgentBuilder and create_agent."""

    def test_requires_reasoning(self):
        """Test building without a reasoning service fails."""
        with pytest.raises(ConfigurationError):
            AgentBuilder().build()

    def test_fluent_configuration(self):
        """Test builder options reach the loop config."""
        loop = (
            AgentBuilder()
            .with_reasoning(ScriptedLLMAdapter())
            .with_max_steps(4)
            .with_max_duration(30)
            .with_temperature(0.2)
            .disable_planning()
            .disable_reflection()
            .build()
        )

        assert loop.config.max_steps == 4
        assert loop.config.max_duration == 30
        assert loop.config.temperature == 0.2
        assert not loop.config.enable_planning
        assert not loop.config.enable_reflection

    def test_task_planning_builds_collaborators(self):
        """Test task planning creates a decomposer and planner."""
        builder = AgentBuilder().with_reasoning(ScriptedLLMAdapter()).with_task_planning()

        builder.build()

        assert isinstance(builder.decomposer, TaskDecomposer)
        assert isinstance(builder.planner, ExecutionPlanner)

    @pytest.mark.asyncio
    async def test_create_agent_runs_offline(self, context):
        """Test the default settings produce a working offline agent."""
        async with await create_agent(Settings()) as runtime:
            assert runtime.tool_server.is_running
            result = await runtime.loop.execute(context)

        assert result.success
        assert result.final_answer.startswith("[offline]")
        assert not runtime.tool_server.is_running
