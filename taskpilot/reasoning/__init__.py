"""
Reasoning Module

Reasoning service adapters, versioned prompts and structured output parsing.
"""

from taskpilot.reasoning.llm import (
    BaseLLMAdapter,
    ScriptedLLMAdapter,
    StubLLMAdapter,
    create_reasoning_service,
)
from taskpilot.reasoning.parsing import ParseResult, extract_json, parse_list, parse_model, parse_object
from taskpilot.reasoning.prompts import PromptRegistry, PromptTemplate

__all__ = [
    # Adapters
    "BaseLLMAdapter",
    "ScriptedLLMAdapter",
    "StubLLMAdapter",
    "create_reasoning_service",
    # Parsing
    "ParseResult",
    "extract_json",
    "parse_list",
    "parse_model",
    "parse_object",
    # Prompts
    "PromptRegistry",
    "PromptTemplate",
]
