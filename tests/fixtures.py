"""
Test Fixtures

Builders for scripted reasoning responses and a recording observer.
"""

import json
from typing import Any

from taskpilot.core.types import EngineEvent, EventType

# Headings that open each engine prompt; scripted backends key on them
COMPLEXITY = "TASK COMPLEXITY ANALYSIS"
BREAKDOWN = "TASK BREAKDOWN"
DEPENDENCIES = "TASK DEPENDENCY ANALYSIS"
RISKS = "RISK ANALYSIS"
CRITERIA = "SUCCESS CRITERIA DEFINITION"
ADAPTATION = "PLAN ADAPTATION"
THINKING = "THINKING"
PLANNING = "EXECUTION PLAN"
ACTION = "NEXT ACTION"
REFLECTION = "REFLECTION"
SYNTHESIS = "ANSWER SYNTHESIS"


def fenced(payload: Any) -> str:
    """Wrap a payload the way models usually answer."""
    return f"Here you go:\n```json\n{json.dumps(payload)}\n```"


def subtask(task_id: str, title: str | None = None, **fields: Any) -> dict[str, Any]:
    data = {
        "id": task_id,
        "title": title or task_id.replace("_", " ").title(),
        "description": f"Do {task_id}",
        "type": "analysis",
        "priority": 5,
        "estimated_duration": 60,
    }
    data.update(fields)
    return data


def dependency(from_task: str, to_task: str, **fields: Any) -> dict[str, Any]:
    return {"from_task": from_task, "to_task": to_task, "type": "sequential", **fields}


def decomposition_responses(
    tasks: list[dict[str, Any]],
    dependencies: list[dict[str, Any]] | None = None,
    risks: list[dict[str, Any]] | None = None,
    criteria: list[str] | None = None,
    complexity: int = 4,
) -> dict[str, str]:
    """Keyed responses for a full decomposition."""
    return {
        COMPLEXITY: fenced({
            "complexity": complexity,
            "factors": ["multiple data sources"],
            "required_capabilities": ["analysis"],
        }),
        BREAKDOWN: fenced({"sub_tasks": tasks}),
        DEPENDENCIES: fenced({"dependencies": dependencies or []}),
        RISKS: fenced({"risks": risks or []}),
        CRITERIA: fenced({"success_criteria": criteria or ["Summary delivered"]}),
    }


def final_answer(answer: str, goal_achieved: bool = False) -> str:
    payload = {"type": "final_answer", "answer": answer, "reasoning": "done"}
    if goal_achieved:
        payload["goal_achieved"] = True
    return fenced(payload)


def tool_call(tool_name: str, **parameters: Any) -> str:
    return fenced({"type": "tool_call", "tool_name": tool_name, "parameters": parameters, "reasoning": "need data"})


def agent_plan(*descriptions: str, confidence: float = 0.8) -> str:
    return fenced({
        "steps": [{"description": d, "tools": [], "estimated_duration": 30} for d in descriptions],
        "estimated_total_duration": 30 * len(descriptions),
        "confidence": confidence,
    })


class RecordingObserver:
    """Collects every event it is sent."""

    def __init__(self):
        self.events: list[EngineEvent] = []

    def on_event(self, event: EngineEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[EngineEvent]:
        return [event for event in self.events if event.type == event_type]


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
