"""
Integration Tests - Agent Flow

Tests for a full run: decomposition, execution planning, scheduled tool
calls through the tool server and answer synthesis, assembled by create_agent.
"""

import asyncio

import pytest

from taskpilot.config.settings import Settings
from taskpilot.core.types import EventType
from taskpilot.planning.plan import PlanStatus, TaskStatus
from taskpilot.reasoning.llm import ScriptedLLMAdapter
from taskpilot.runtime.agent import StepType
from taskpilot.runtime.factory import create_agent
from taskpilot.tools.protocol import ErrorCode
from taskpilot.tools.scheduler import ToolScheduler
from tests.fixtures import (
    ACTION,
    PLANNING,
    REFLECTION,
    SYNTHESIS,
    THINKING,
    RecordingObserver,
    agent_plan,
    decomposition_responses,
    dependency,
    final_answer,
    subtask,
    tool_call,
)


def scripted_run(tasks, dependencies, actions):
    return ScriptedLLMAdapter(
        keyed={
            THINKING: "Work through the figures one sub-task at a time.",
            PLANNING: agent_plan("Compute", "Format", "Deliver"),
            **decomposition_responses(tasks=tasks, dependencies=dependencies),
            ACTION: actions,
            REFLECTION: "The totals were computed and formatted.",
            SYNTHESIS: "The quarterly total is TOTAL 2000.",
        }
    )


class TestAgentFlow:
    """Tests for end-to-end agent runs."""

    @pytest.mark.asyncio
    async def test_goal_to_answer_through_task_plan(self, context):
        """Test a goal is decomposed, planned and executed with real tools."""
        reasoning = scripted_run(
            tasks=[
                subtask("compute_total", type="data_processing", required_tools=["calculate"]),
                subtask("format_report", type="synthesis", required_tools=["string_transform"]),
            ],
            dependencies=[dependency("compute_total", "format_report")],
            actions=[
                tool_call("calculate", expression="1200 + 800"),
                tool_call("string_transform", text="total 2000", operation="uppercase"),
            ],
        )
        observer = RecordingObserver()

        async with await create_agent(Settings(), reasoning=reasoning, observers=(observer,)) as runtime:
            result = await runtime.loop.execute(context)
            plan = runtime.planner.execution_history[0]

        assert result.success
        assert result.final_answer == "The quarterly total is TOTAL 2000."
        assert result.tools_used == ["calculate", "string_transform"]

        observations = [s.content for s in result.steps if s.type == StepType.OBSERVATION]
        assert observations == ["2000", "TOTAL 2000"]

        assert plan.status == PlanStatus.COMPLETED
        assert [t.id for t in plan.tasks] == ["compute_total", "format_report"]
        assert all(t.status == TaskStatus.COMPLETED for t in plan.tasks)
        assert plan.get_task("compute_total").result == "2000"
        assert plan.metrics.completed_tasks == 2

        actions = [s for s in result.steps if s.type == StepType.ACTION]
        assert [a.metadata["task_id"] for a in actions] == ["compute_total", "format_report", None]
        assert actions[-1].metadata["synthesized"]

        synthesis_prompt = next(p for p in reasoning.prompts() if SYNTHESIS in p)
        assert "Compute Total [completed]: 2000" in synthesis_prompt
        assert "Format Report [completed]: TOTAL 2000" in synthesis_prompt
        assert isinstance(runtime.scheduler, ToolScheduler)

        event_types = [e.type for e in observer.events]
        assert EventType.PLAN_CREATED in event_types
        assert EventType.PLAN_COMPLETED in event_types
        assert event_types[-1] == EventType.RUN_COMPLETED
        assert event_types.index(EventType.PLAN_CREATED) < event_types.index(EventType.PLAN_COMPLETED)
        assert not runtime.tool_server.is_running

    @pytest.mark.asyncio
    async def test_failed_tool_fails_task_and_blocks_dependents(self, context):
        """Test a failing tool fails its task and the plan while the run still answers."""
        reasoning = scripted_run(
            tasks=[subtask("fetch"), subtask("parse")],
            dependencies=[dependency("fetch", "parse")],
            actions=[
                tool_call("json_parse", json_string="{broken"),
                final_answer("The data could not be read."),
            ],
        )

        async with await create_agent(Settings(), reasoning=reasoning) as runtime:
            result = await runtime.loop.execute(context)
            plan = runtime.planner.execution_history[0]

        assert result.success
        observation = next(s for s in result.steps if s.type == StepType.OBSERVATION)
        assert observation.content.startswith("Tool execution failed: Invalid JSON")
        assert observation.metadata["error_code"] == ErrorCode.TOOL_EXECUTION_ERROR

        fetch, parse = plan.tasks
        assert fetch.status == TaskStatus.FAILED
        assert fetch.errors and fetch.errors[0].startswith("Invalid JSON")
        assert parse.status == TaskStatus.PENDING
        assert plan.metrics.failed_tasks == 1

        assert plan.status == PlanStatus.FAILED
        assert SYNTHESIS not in "".join(reasoning.prompts())
        final_action = [s for s in result.steps if s.type == StepType.ACTION][-1]
        assert final_action.metadata["task_id"] is None

    @pytest.mark.asyncio
    async def test_pause_pauses_task_plan(self, context):
        """Test pausing the loop pauses the active task plan until resumed."""
        reasoning = scripted_run(
            tasks=[subtask("compute_total"), subtask("format_report")],
            dependencies=[dependency("compute_total", "format_report")],
            actions=[
                tool_call("calculate", expression="2 * 21"),
                final_answer("42", goal_achieved=True),
            ],
        )
        seen: list[PlanStatus] = []

        async with await create_agent(Settings(), reasoning=reasoning) as runtime:
            loop = runtime.loop

            class PauseAfterObservation:
                def on_event(self, event):
                    if event.type == EventType.STEP_RECORDED and event.payload["type"] == "observation":
                        loop.pause()
                        seen.append(runtime.planner.current_plan.status)
                        asyncio.get_running_loop().call_soon(loop.resume)

            loop._observers += (PauseAfterObservation(),)
            result = await loop.execute(context)
            plan = runtime.planner.execution_history[0]

        assert result.success
        assert result.final_answer == "42"
        assert seen == [PlanStatus.PAUSED]
        assert plan.status == PlanStatus.COMPLETED
