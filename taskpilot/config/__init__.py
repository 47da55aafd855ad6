"""
Configuration Module

Centralized configuration management for the engine.
"""

from taskpilot.config.settings import (
    AgentSettings,
    DecomposerSettings,
    LLMSettings,
    ObservabilitySettings,
    PlannerSettings,
    Settings,
    ToolSchedulerSettings,
    ToolServerSettings,
    get_settings,
)

__all__ = [
    "AgentSettings",
    "DecomposerSettings",
    "LLMSettings",
    "ObservabilitySettings",
    "PlannerSettings",
    "Settings",
    "ToolSchedulerSettings",
    "ToolServerSettings",
    "get_settings",
]
