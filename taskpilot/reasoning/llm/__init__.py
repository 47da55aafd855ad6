"""
LLM Adapters

Reasoning service backends and configuration-driven selection.
"""

from taskpilot.config.settings import LLMSettings
from taskpilot.core.exceptions import ConfigurationError
from taskpilot.reasoning.llm.base import BaseLLMAdapter
from taskpilot.reasoning.llm.stub_adapter import (
    ScriptedLLMAdapter,
    StubLLMAdapter,
    StubResponse,
)


def create_reasoning_service(settings: LLMSettings | None = None) -> BaseLLMAdapter:
    """
    Build the adapter named by ``settings.provider``.

    Raises:
        ConfigurationError: Unknown provider or missing credentials
    """
    settings = settings or LLMSettings()

    if settings.provider == "stub":
        return StubLLMAdapter(settings)

    if settings.provider == "openai":
        if settings.api_key is None and settings.base_url is None:
            raise ConfigurationError(
                "OpenAI provider requires TASKPILOT_LLM_API_KEY or TASKPILOT_LLM_BASE_URL",
                context={"provider": settings.provider},
            )
        from taskpilot.reasoning.llm.openai_adapter import OpenAIAdapter

        return OpenAIAdapter(settings)

    raise ConfigurationError(
        f"Unknown reasoning provider: {settings.provider}",
        context={"provider": settings.provider},
    )


__all__ = [
    "BaseLLMAdapter",
    "ScriptedLLMAdapter",
    "StubLLMAdapter",
    "StubResponse",
    "create_reasoning_service",
]
