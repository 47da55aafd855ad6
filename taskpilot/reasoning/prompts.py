"""
Prompt Template System

Versioned prompt templates for every reasoning call the engine makes.

Design decisions:
- Templates use Jinja2 with StrictUndefined so a missing variable fails loudly
- Immutable templates (create new versions, don't modify)
- Registries are plain objects passed to the components that use them;
  PromptRegistry() comes pre-loaded with the default prompts
- Every prompt opens with an uppercase heading naming the call, which keeps
  transcripts readable and lets scripted backends key on it
"""

import hashlib
from datetime import datetime
from typing import Any

from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateSyntaxError, UndefinedError
from pydantic import BaseModel, ConfigDict, Field

from taskpilot.core.types import utcnow

_ENV = Environment(
    loader=BaseLoader(),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    autoescape=False,
)


class PromptTemplate(BaseModel):
    """
    A versioned prompt template.

    Templates are immutable after creation. To update a prompt,
    create a new version and make it the default.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    template: str
    version: str = "1.0.0"
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    required_variables: frozenset[str] = Field(default_factory=frozenset)

    @property
    def content_hash(self) -> str:
        """Short hash of the template content, for tracking which text produced an output."""
        content = f"{self.name}:{self.version}:{self.template}"
        return hashlib.sha256(content.encode()).hexdigest()[:12]

    def render(self, **variables: Any) -> str:
        """
        Render the template with provided variables.

        Raises:
            ValueError: If required variables are missing or undefined
        """
        missing = self.required_variables - set(variables)
        if missing:
            raise ValueError(f"Missing required variables for {self.name}: {sorted(missing)}")

        try:
            return _ENV.from_string(self.template).render(**variables).strip()
        except UndefinedError as e:
            raise ValueError(f"Undefined variable in template {self.name}: {e}") from e

    def validate_template(self) -> list[str]:
        """Return syntax errors (empty if valid)."""
        try:
            _ENV.parse(self.template)
        except TemplateSyntaxError as e:
            return [f"Syntax error: {e}"]
        return []


_JSON_INSTRUCTION = "Respond with JSON only, inside a ```json fenced block."


DEFAULT_TEMPLATES: list[PromptTemplate] = [
    # ------------------------------------------------------------------
    # Task decomposition
    # ------------------------------------------------------------------
    PromptTemplate(
        name="decompose_complexity",
        description="Rate goal complexity 1-10",
        required_variables=frozenset({"goal"}),
        template="""TASK COMPLEXITY ANALYSIS

Goal: {{ goal }}
{% if constraints %}
Constraints:
{% for constraint in constraints %}
- {{ constraint }}
{% endfor %}
{% endif %}

Rate how complex it is to achieve this goal on a scale from 1 (trivial) to
10 (very complex). List the factors that drive the rating and the
capabilities an agent needs.

""" + _JSON_INSTRUCTION + """
{"complexity": 5, "factors": ["..."], "required_capabilities": ["..."]}""",
    ),
    PromptTemplate(
        name="decompose_breakdown",
        description="Break a goal into sub-tasks",
        required_variables=frozenset({"goal", "complexity", "max_sub_tasks", "task_types"}),
        template="""TASK BREAKDOWN

Goal: {{ goal }}
Complexity: {{ complexity }}/10
{% if capabilities %}
Required capabilities: {{ capabilities | join(', ') }}
{% endif %}
{% if tools %}
Available tools: {{ tools | join(', ') }}
{% endif %}
Time budget: {{ max_duration }} seconds

Break the goal into between 3 and {{ max_sub_tasks }} concrete sub-tasks.
Each sub-task needs a unique id, a title, a description and a type, which
must be one of: {{ task_types | join(', ') }}.
Priorities run from 1 (low) to 10 (high). Durations are in seconds.

""" + _JSON_INSTRUCTION + """
{"sub_tasks": [{"id": "task_1", "title": "...", "description": "...", "type": "analysis", "priority": 5, "estimated_duration": 120, "required_tools": [], "inputs": [], "outputs": [], "success_criteria": ["..."], "fallback_strategies": ["..."]}]}""",
    ),
    PromptTemplate(
        name="decompose_dependencies",
        description="Identify dependencies between sub-tasks",
        required_variables=frozenset({"goal", "tasks", "dependency_types"}),
        template="""TASK DEPENDENCY ANALYSIS

Goal: {{ goal }}

Sub-tasks:
{% for task in tasks %}
- {{ task.id }}: {{ task.title }} ({{ task.type.value }}) - {{ task.description }}
{% endfor %}

List which sub-tasks must wait for others. An entry from_task -> to_task
means to_task cannot start before from_task completes. Do not create
circular dependencies. Types: {{ dependency_types | join(', ') }}.

""" + _JSON_INSTRUCTION + """
{"dependencies": [{"from_task": "task_1", "to_task": "task_2", "type": "sequential", "optional": false, "description": "..."}]}""",
    ),
    PromptTemplate(
        name="decompose_risks",
        description="Identify execution risks",
        required_variables=frozenset({"goal", "tasks", "risk_types"}),
        template="""RISK ANALYSIS

Goal: {{ goal }}

Sub-tasks:
{% for task in tasks %}
- {{ task.id }}: {{ task.title }}
{% endfor %}

Identify what could prevent these sub-tasks from succeeding. Types:
{{ risk_types | join(', ') }}. Probability and impact range from 0.1 to 1.0.

""" + _JSON_INSTRUCTION + """
{"risks": [{"type": "technical", "description": "...", "probability": 0.3, "impact": 0.5, "mitigation": "..."}]}""",
    ),
    PromptTemplate(
        name="decompose_success_criteria",
        description="Define goal-level success criteria",
        required_variables=frozenset({"goal", "tasks"}),
        template="""SUCCESS CRITERIA DEFINITION

Goal: {{ goal }}

Planned sub-tasks:
{% for task in tasks %}
- {{ task.title }}
{% endfor %}

Give 3 to 5 specific, verifiable criteria that show the goal was achieved.

""" + _JSON_INSTRUCTION + """
{"success_criteria": ["..."]}""",
    ),
    # ------------------------------------------------------------------
    # Execution planning
    # ------------------------------------------------------------------
    PromptTemplate(
        name="plan_adaptation",
        description="Propose plan changes after an unexpected task outcome",
        required_variables=frozenset({"goal", "task", "remaining_tasks", "adaptation_types"}),
        template="""PLAN ADAPTATION

Goal: {{ goal }}

Task {{ task.id }} "{{ task.title }}" finished with status {{ task.status.value }}
after {{ task.attempts }} attempt(s).
Estimated duration: {{ task.estimated_duration }}s
{% if task.actual_duration is not none %}
Actual duration: {{ "%.1f" | format(task.actual_duration) }}s
{% endif %}
Confidence: {{ "%.2f" | format(task.confidence) }}
{% if result %}
Result: {{ result }}
{% endif %}
{% if error %}
Error: {{ error }}
{% endif %}

Remaining tasks:
{% for remaining in remaining_tasks %}
- {{ remaining.id }} [{{ remaining.status.value }}] {{ remaining.title }} (priority {{ remaining.priority }}, {{ remaining.estimated_duration }}s)
{% else %}
- none
{% endfor %}

Propose changes that keep the plan on track. A change targets "plan" or a
task id, names one field, and gives its new value. Adaptation types:
{{ adaptation_types | join(', ') }}. Return an empty list if no change is needed.

""" + _JSON_INSTRUCTION + """
{"adaptations": [{"type": "task_modification", "reason": "...", "changes": [{"target": "task_2", "field": "estimated_duration", "old_value": 60, "new_value": 120, "reason": "..."}], "impact": {"duration_change": 60, "confidence_change": 0.0, "risk_change": 0.0}}]}""",
    ),
    # ------------------------------------------------------------------
    # Agentic loop
    # ------------------------------------------------------------------
    PromptTemplate(
        name="agent_system",
        description="System prompt for every agent loop call",
        template="""You are TaskPilot, an autonomous agent that achieves goals by reasoning
carefully and using tools.

Guidelines:
- Work toward the goal in small, verifiable steps
- Use tools when they provide information you do not have
- If a tool fails, read the error and try an alternative
- Give a final answer as soon as the goal is achieved""",
    ),
    PromptTemplate(
        name="agent_thinking",
        description="Initial free-form reasoning about the goal",
        required_variables=frozenset({"goal"}),
        template="""THINKING

Goal: {{ goal }}
{% if constraints %}
Constraints:
{% for constraint in constraints %}
- {{ constraint }}
{% endfor %}
{% endif %}
{% if preferences %}
Preferences:
{% for key, value in preferences.items() %}
- {{ key }}: {{ value }}
{% endfor %}
{% endif %}
{% if tools %}
Available tools: {{ tools | join(', ') }}
{% endif %}

Think about what the goal requires, what information is missing and how
the available tools could help. Answer in plain prose.""",
    ),
    PromptTemplate(
        name="agent_planning",
        description="Structured plan for the goal",
        required_variables=frozenset({"goal", "thought"}),
        template="""EXECUTION PLAN

Goal: {{ goal }}

Your analysis:
{{ thought }}
{% if tools %}

Available tools: {{ tools | join(', ') }}
{% endif %}

Produce a structured plan: an ordered list of steps, the tools each step
needs, estimated durations in seconds, the total and your confidence
between 0 and 1.

""" + _JSON_INSTRUCTION + """
{"steps": [{"description": "...", "tools": ["..."], "estimated_duration": 60}], "estimated_total_duration": 60, "confidence": 0.8}""",
    ),
    PromptTemplate(
        name="agent_action",
        description="Choose the next tool call or the final answer",
        required_variables=frozenset({"goal", "recent_steps"}),
        template="""NEXT ACTION

Goal: {{ goal }}
{% if focus %}

Current sub-task: {{ focus.title }}
{{ focus.description }}
{% if focus.required_tools %}
Suggested tools: {{ focus.required_tools | join(', ') }}
{% endif %}
{% endif %}
{% if relevant_context is defined and relevant_context %}

Relevant context:
{% for item in relevant_context %}
- {{ item.content }}
{% endfor %}
{% endif %}
{% if tools %}

Available tools:
{% for tool in tools %}
- {{ tool.name }}: {{ tool.description }}
{% endfor %}
{% endif %}
{% if recent_steps %}

Recent steps:
{% for step in recent_steps %}
[{{ step.type.value }}] {{ step.content }}
{% endfor %}
{% endif %}

Respond with the next action. Either call a tool:
```json
{"type": "tool_call", "tool_name": "...", "parameters": {}, "reasoning": "..."}
```
or, if the goal is achieved, give the final answer:
```json
{"type": "final_answer", "answer": "...", "reasoning": "..."}
```
{% if focus %}
A final answer completes the current sub-task. Add "goal_achieved": true
only when the whole goal is met and the remaining sub-tasks are unnecessary.
{% endif %}""",
    ),
    PromptTemplate(
        name="agent_synthesis",
        description="Combine completed sub-task results into the final answer",
        required_variables=frozenset({"goal", "progress", "tasks"}),
        template="""ANSWER SYNTHESIS

Goal: {{ goal }}
Progress: {{ progress }}% of sub-tasks completed

Sub-task outcomes:
{% for task in tasks %}
- {{ task.title }} [{{ task.status.value }}]{% if task.result is not none %}: {{ task.result | string | truncate(300) }}{% endif %}

{% endfor %}
{% if relevant_context is defined and relevant_context %}

Relevant context:
{% for item in relevant_context %}
- {{ item.content }}
{% endfor %}
{% endif %}

Write a comprehensive final answer to the goal from these results.
Respond with the answer text only.""",
    ),
    PromptTemplate(
        name="agent_reflection",
        description="Self-assessment after a successful run",
        required_variables=frozenset({"goal", "final_answer", "steps"}),
        template="""REFLECTION

Goal: {{ goal }}
Final answer: {{ final_answer }}
Steps taken: {{ steps | length }}
{% if tools_used %}
Tools used: {{ tools_used | join(', ') }}
{% endif %}

Assess the run: was the goal fully achieved, what went well, and what
should be done differently next time?""",
    ),
]


class PromptRegistry:
    """
    Registry of prompt templates.

    Provides:
    - Template storage and retrieval
    - Version management
    - The default engine prompts on construction
    """

    def __init__(self, templates: list[PromptTemplate] | None = None):
        self._templates: dict[str, dict[str, PromptTemplate]] = {}
        self._default_versions: dict[str, str] = {}

        for template in DEFAULT_TEMPLATES if templates is None else templates:
            self.register(template)
            self._default_versions.setdefault(template.name, template.version)

    def register(self, template: PromptTemplate) -> None:
        """Register a new template version."""
        errors = template.validate_template()
        if errors:
            raise ValueError(f"Invalid template {template.name}: {errors}")

        self._templates.setdefault(template.name, {})[template.version] = template

    def get(self, name: str, version: str | None = None) -> PromptTemplate:
        """
        Get a template by name and optional version.

        Raises:
            KeyError: Unknown template or version
        """
        versions = self._templates.get(name)
        if not versions:
            raise KeyError(f"Template not found: {name}")

        version = version or self._default_versions.get(name) or sorted(versions)[-1]
        if version not in versions:
            raise KeyError(f"Version not found: {name}:{version}")
        return versions[version]

    def set_default_version(self, name: str, version: str) -> None:
        """Set the default version for a template."""
        self.get(name, version)
        self._default_versions[name] = version

    def render(self, name: str, **variables: Any) -> str:
        """Render the default version of a template."""
        return self.get(name).render(**variables)

    def list_templates(self) -> list[str]:
        return list(self._templates)

    def list_versions(self, name: str) -> list[str]:
        return sorted(self._templates.get(name, {}))
