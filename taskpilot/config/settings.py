"""
Settings Management

Provides centralized, type-safe configuration using Pydantic.
Supports environment variables, .env files, and hierarchical config.

Design decisions:
- Using pydantic-settings for validation and type coercion
- Immutable settings after initialization (frozen model)
- One section per engine component; components receive plain
  dataclass configs built from these sections
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """Reasoning service configuration."""

    model_config = SettingsConfigDict(env_prefix="TASKPILOT_LLM_")

    # Provider selection (stub = offline mode, no API key required)
    provider: Literal["openai", "stub"] = "stub"
    model: str = Field(default="gpt-4o-mini")

    # OpenAI and OpenAI-compatible endpoints
    api_key: SecretStr | None = Field(default=None)
    base_url: str | None = Field(default=None)
    organization: str | None = Field(default=None)

    # Stub adapter settings
    stub_model_name: str = Field(default="stub-model-v1")

    # Shared settings
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1)
    request_timeout: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)


class DecomposerSettings(BaseSettings):
    """Task decomposition configuration."""

    model_config = SettingsConfigDict(env_prefix="TASKPILOT_DECOMPOSER_")

    max_sub_tasks: int = Field(default=20, ge=1)
    min_task_duration: int = Field(default=30, ge=1, description="Seconds")
    max_task_duration: int = Field(default=1800, ge=1, description="Seconds")
    enable_risk_analysis: bool = Field(default=True)
    enable_dependency_optimization: bool = Field(default=True)
    critical_path_bonus: int = Field(default=2, ge=0)


class PlannerSettings(BaseSettings):
    """Execution planner configuration."""

    model_config = SettingsConfigDict(env_prefix="TASKPILOT_PLANNER_")

    max_adaptations: int = Field(default=10, ge=0)
    max_retries: int = Field(default=3, ge=1)
    timeout_multiplier: float = Field(default=1.5, gt=1.0)
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    enable_contingency_planning: bool = Field(default=True)
    enable_real_time_optimization: bool = Field(default=True)


class AgentSettings(BaseSettings):
    """Agentic loop configuration."""

    model_config = SettingsConfigDict(env_prefix="TASKPILOT_AGENT_")

    max_steps: int = Field(default=20, ge=1)
    max_duration: float = Field(default=300.0, gt=0, description="Seconds")
    enable_planning: bool = Field(default=True)
    enable_reflection: bool = Field(default=True)
    enable_task_planning: bool = Field(default=True)
    task_planning_min_steps: int = Field(default=3, ge=1)
    history_window: int = Field(default=5, ge=1)
    synthesis_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Share of completed sub-tasks that allows answer synthesis",
    )
    context_token_budget: int = Field(default=500, ge=0)
    context_max_items: int = Field(default=100, ge=1)
    consolidation_interval: int = Field(default=5, ge=1, description="Steps")


class ToolServerSettings(BaseSettings):
    """Tool server configuration."""

    model_config = SettingsConfigDict(env_prefix="TASKPILOT_TOOLS_")

    name: str = Field(default="taskpilot-tools")
    version: str = Field(default="0.1.0")
    max_concurrent_requests: int = Field(default=10, ge=1)
    request_timeout: float = Field(default=30.0, gt=0)
    register_builtin_tools: bool = Field(default=True)


class ToolSchedulerSettings(BaseSettings):
    """Tool call caching and batching in front of the tool server."""

    model_config = SettingsConfigDict(env_prefix="TASKPILOT_SCHEDULER_")

    max_concurrent_executions: int = Field(default=5, ge=1)
    enable_cache: bool = Field(default=True)
    cache_size: int = Field(default=100, ge=0)
    cache_ttl: float = Field(default=300.0, gt=0, description="Seconds")
    uncached_tools: list[str] = Field(
        default_factory=lambda: ["get_current_time"],
        description="Tools whose results depend on when they run",
    )


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="TASKPILOT_OBS_")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"


class Settings(BaseSettings):
    """
    Master settings aggregator.

    This is the single source of truth for all configuration.
    Sub-settings are composed here to maintain clear boundaries.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    app_name: str = Field(default="TaskPilot")
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = Field(default=False)

    # Component settings (composed)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    decomposer: DecomposerSettings = Field(default_factory=DecomposerSettings)
    planner: PlannerSettings = Field(default_factory=PlannerSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    tools: ToolServerSettings = Field(default_factory=ToolServerSettings)
    scheduler: ToolSchedulerSettings = Field(default_factory=ToolSchedulerSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Safe to share because settings are frozen. Components never call
    this themselves; the factory passes the relevant section in.
    """
    return Settings()
