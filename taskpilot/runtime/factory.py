"""
Runtime Factory

Factory and builder for assembling AgenticLoop instances.
All wiring happens here; components never look up collaborators themselves.
"""

import logging
from dataclasses import dataclass, field

from taskpilot.config.settings import Settings, get_settings
from taskpilot.core.exceptions import ConfigurationError
from taskpilot.core.interfaces import EventObserver, ReasoningServiceProtocol, ToolExecutorProtocol
from taskpilot.observability.logging import configure_logging
from taskpilot.planning.decomposer import DecomposerConfig, TaskDecomposer
from taskpilot.planning.planner import ExecutionPlanner, PlannerConfig
from taskpilot.reasoning.llm import create_reasoning_service
from taskpilot.reasoning.prompts import PromptRegistry
from taskpilot.runtime.agent import AgentConfig, AgenticLoop
from taskpilot.tools.client import ToolClient
from taskpilot.tools.scheduler import SchedulerConfig, ToolScheduler
from taskpilot.tools.server import ServerConfig, ToolServer

logger = logging.getLogger(__name__)


class AgentBuilder:
    """
    Builder pattern for AgenticLoop.

    Provides a fluent API for constructing loops:

        loop = (
            AgentBuilder()
            .with_reasoning(adapter)
            .with_tool_server(server)
            .with_task_planning()
            .with_max_steps(10)
            .build()
        )
    """

    def __init__(self):
        self._reasoning: ReasoningServiceProtocol | None = None
        self._tools: ToolExecutorProtocol | None = None
        self._prompts: PromptRegistry | None = None
        self._decomposer: TaskDecomposer | None = None
        self._planner: ExecutionPlanner | None = None
        self._task_planning: tuple[DecomposerConfig, PlannerConfig] | None = None
        self._observers: list[EventObserver] = []
        self._config = AgentConfig()

    def with_reasoning(self, reasoning: ReasoningServiceProtocol) -> "AgentBuilder":
        """Set the reasoning service (required)."""
        self._reasoning = reasoning
        return self

    def with_tools(self, executor: ToolExecutorProtocol) -> "AgentBuilder":
        self._tools = executor
        return self

    def with_tool_server(self, server: ToolServer, scheduler: SchedulerConfig | None = None) -> "AgentBuilder":
        """
        Execute tools through a client of ``server``, behind a caching
        ToolScheduler when ``scheduler`` is given.
        """
        client = ToolClient(server)
        self._tools = ToolScheduler(client, scheduler) if scheduler is not None else client
        return self

    def with_prompts(self, prompts: PromptRegistry) -> "AgentBuilder":
        self._prompts = prompts
        return self

    def with_decomposer(self, decomposer: TaskDecomposer) -> "AgentBuilder":
        self._decomposer = decomposer
        return self

    def with_planner(self, planner: ExecutionPlanner) -> "AgentBuilder":
        self._planner = planner
        return self

    def with_task_planning(
        self,
        decomposer_config: DecomposerConfig | None = None,
        planner_config: PlannerConfig | None = None,
    ) -> "AgentBuilder":
        """Build a decomposer and planner on the same reasoning service."""
        self._task_planning = (decomposer_config or DecomposerConfig(), planner_config or PlannerConfig())
        self._config.enable_task_planning = True
        return self

    def with_observer(self, observer: EventObserver) -> "AgentBuilder":
        self._observers.append(observer)
        return self

    def with_config(self, config: AgentConfig) -> "AgentBuilder":
        self._config = config
        return self

    def with_max_steps(self, max_steps: int) -> "AgentBuilder":
        self._config.max_steps = max_steps
        return self

    def with_max_duration(self, seconds: float) -> "AgentBuilder":
        self._config.max_duration = seconds
        return self

    def with_temperature(self, temperature: float) -> "AgentBuilder":
        self._config.temperature = temperature
        return self

    def disable_planning(self) -> "AgentBuilder":
        self._config.enable_planning = False
        return self

    def disable_reflection(self) -> "AgentBuilder":
        self._config.enable_reflection = False
        return self

    @property
    def tools(self) -> ToolExecutorProtocol | None:
        return self._tools

    @property
    def decomposer(self) -> TaskDecomposer | None:
        return self._decomposer

    @property
    def planner(self) -> ExecutionPlanner | None:
        return self._planner

    def build(self) -> AgenticLoop:
        """
        Build the AgenticLoop.

        Raises:
            ConfigurationError: If no reasoning service is set
        """
        if self._reasoning is None:
            raise ConfigurationError("A reasoning service is required. Use .with_reasoning() to set it.")

        prompts = self._prompts or PromptRegistry()
        observers = tuple(self._observers)

        if self._task_planning is not None:
            decomposer_config, planner_config = self._task_planning
            self._decomposer = self._decomposer or TaskDecomposer(self._reasoning, decomposer_config, prompts)
            self._planner = self._planner or ExecutionPlanner(
                self._reasoning,
                planner_config,
                prompts,
                observers=observers,
            )

        return AgenticLoop(
            reasoning=self._reasoning,
            tools=self._tools,
            config=self._config,
            prompts=prompts,
            decomposer=self._decomposer,
            planner=self._planner,
            observers=observers,
        )


@dataclass
class AgentRuntime:
    """A loop together with the resources it was built on."""

    loop: AgenticLoop
    reasoning: ReasoningServiceProtocol
    tool_server: ToolServer
    decomposer: TaskDecomposer
    planner: ExecutionPlanner
    scheduler: ToolScheduler | None = None
    settings: Settings = field(repr=False, default_factory=get_settings)

    async def close(self) -> None:
        await self.tool_server.stop()
        close = getattr(self.reasoning, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "AgentRuntime":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


async def create_agent(
    settings: Settings | None = None,
    *,
    reasoning: ReasoningServiceProtocol | None = None,
    observers: tuple[EventObserver, ...] = (),
) -> AgentRuntime:
    """
    Assemble a ready-to-run agent from settings.

    Configures logging, selects the reasoning backend, starts a tool server
    with the built-in tools and wires decomposer, planner and loop.

    Usage:
        async with await create_agent() as runtime:
            result = await runtime.loop.execute(AgentContext(goal="..."))
    """
    settings = settings or get_settings()
    configure_logging(settings.observability)

    reasoning = reasoning or create_reasoning_service(settings.llm)

    server = ToolServer(ServerConfig.from_settings(settings.tools))
    await server.start()

    builder = (
        AgentBuilder()
        .with_reasoning(reasoning)
        .with_tool_server(server, SchedulerConfig.from_settings(settings.scheduler))
        .with_config(AgentConfig.from_settings(settings.agent, settings.llm))
    )
    for observer in observers:
        builder.with_observer(observer)

    if settings.agent.enable_task_planning:
        builder.with_task_planning(
            DecomposerConfig.from_settings(settings.decomposer),
            PlannerConfig.from_settings(settings.planner),
        )
    else:
        builder.with_decomposer(TaskDecomposer(reasoning, DecomposerConfig.from_settings(settings.decomposer)))
        builder.with_planner(ExecutionPlanner(reasoning, PlannerConfig.from_settings(settings.planner)))

    loop = builder.build()
    logger.info(f"{settings.app_name} agent ready ({settings.llm.provider} reasoning, {len(server.registry)} tools)")

    return AgentRuntime(
        loop=loop,
        reasoning=reasoning,
        tool_server=server,
        decomposer=builder.decomposer,
        planner=builder.planner,
        scheduler=builder.tools if isinstance(builder.tools, ToolScheduler) else None,
        settings=settings,
    )
