"""
Stub LLM Adapter

Deterministic, offline-capable reasoning backends for tests and CI.

Design decisions:
- Implements the full reasoning service contract via BaseLLMAdapter
- Returns scripted, deterministic responses
- Supports streaming (word by word)
- NEVER makes external network calls

Usage:
    adapter = StubLLMAdapter()                     # pattern-matched canned answers
    adapter = ScriptedLLMAdapter(["...", "..."])   # ordered script
    adapter = ScriptedLLMAdapter(keyed={"complexity": "..."})
"""

import re
from collections.abc import AsyncIterator
from dataclasses import dataclass

from taskpilot.config.settings import LLMSettings
from taskpilot.core.types import (
    ChatMessage,
    ChatOptions,
    LLMResponse,
    MessageRole,
    ModelInfo,
    TokenUsage,
)
from taskpilot.reasoning.llm.base import BaseLLMAdapter


@dataclass
class StubResponse:
    """A canned response selected by a regex over the last user message."""

    pattern: str | None = None
    content: str = ""

    def matches(self, message: str) -> bool:
        if self.pattern is None:
            return True
        return bool(re.search(self.pattern, message, re.IGNORECASE))


DEFAULT_RESPONSES: list[StubResponse] = [
    StubResponse(
        pattern=r"next action",
        content=(
            '```json\n{"type": "final_answer", "answer": '
            '"[offline] The stub reasoning service cannot perform real work."}\n```'
        ),
    ),
    StubResponse(
        pattern=r"structured plan",
        content=(
            '```json\n{"steps": [{"description": "Answer directly", "tools": [], '
            '"estimated_duration": 10}], "estimated_total_duration": 10, "confidence": 0.5}\n```'
        ),
    ),
    # Default fallback
    StubResponse(
        pattern=None,
        content="[offline] Stub reasoning service response.",
    ),
]


def _last_user_message(messages: list[ChatMessage]) -> str:
    for msg in reversed(messages):
        if msg.role == MessageRole.USER:
            return msg.content
    return ""


def _usage(content: str) -> TokenUsage:
    return TokenUsage(prompt_tokens=50, completion_tokens=len(content.split()))


class StubLLMAdapter(BaseLLMAdapter):
    """
    A deterministic adapter for offline runs.

    Picks the first response whose pattern matches the last user
    message. Counts calls for diagnostics.
    """

    def __init__(
        self,
        settings: LLMSettings | None = None,
        responses: list[StubResponse] | None = None,
    ):
        super().__init__(settings)
        self._responses = list(responses or DEFAULT_RESPONSES)
        self._call_count = 0

    @property
    def provider_name(self) -> str:
        return "stub"

    @property
    def model(self) -> str:
        return self.settings.stub_model_name

    @property
    def call_count(self) -> int:
        return self._call_count

    def add_response(self, response: StubResponse) -> None:
        """Add a custom response pattern with the highest priority."""
        self._responses.insert(0, response)

    def _find_response(self, messages: list[ChatMessage]) -> str:
        user_message = _last_user_message(messages)
        for response in self._responses:
            if response.matches(user_message):
                return response.content
        return ""

    async def _do_chat(self, messages: list[ChatMessage], options: ChatOptions) -> LLMResponse:
        self._call_count += 1
        content = self._find_response(messages)
        return LLMResponse(
            content=content,
            model=self.model,
            usage=_usage(content),
            finish_reason="stop",
        )

    async def _do_stream(
        self,
        messages: list[ChatMessage],
        options: ChatOptions,
    ) -> AsyncIterator[str]:
        response = await self._do_chat(messages, options)
        words = response.content.split(" ")
        for i, word in enumerate(words):
            yield word + (" " if i < len(words) - 1 else "")

    async def get_models(self) -> list[ModelInfo]:
        return [ModelInfo(id=self.model, name=self.model, provider=self.provider_name)]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model!r}, calls={self._call_count})"


class ScriptedLLMAdapter(StubLLMAdapter):
    """
    An adapter that follows a script.

    Responses are chosen in this order:
    1. ``keyed``: the first key found as a substring of the last user
       message. A list value is consumed one entry per call and its last
       entry repeats.
    2. ``script``: the next unconsumed entry.
    3. ``default``.

    Script entries that are exceptions are raised instead of returned.
    Every call's messages and options are recorded for assertions.
    """

    def __init__(
        self,
        script: list[str | Exception] | None = None,
        *,
        keyed: dict[str, str | Exception | list[str | Exception]] | None = None,
        default: str = "[scripted] Script exhausted.",
        settings: LLMSettings | None = None,
    ):
        super().__init__(settings=settings or LLMSettings(max_retries=0, retry_delay=0))
        self._script = list(script or [])
        self._script_index = 0
        self._keyed = {
            key: list(value) if isinstance(value, list) else [value]
            for key, value in (keyed or {}).items()
        }
        self._default = default
        self.calls: list[list[ChatMessage]] = []
        self.options: list[ChatOptions] = []

    @property
    def model(self) -> str:
        return "scripted-model-v1"

    def _next_entry(self, prompt: str) -> str | Exception:
        for key, entries in self._keyed.items():
            if key in prompt:
                return entries.pop(0) if len(entries) > 1 else entries[0]

        if self._script_index < len(self._script):
            entry = self._script[self._script_index]
            self._script_index += 1
            return entry

        return self._default

    async def _do_chat(self, messages: list[ChatMessage], options: ChatOptions) -> LLMResponse:
        self._call_count += 1
        self.calls.append(list(messages))
        self.options.append(options)

        entry = self._next_entry(_last_user_message(messages))
        if isinstance(entry, Exception):
            raise entry

        return LLMResponse(
            content=entry,
            model=self.model,
            usage=_usage(entry),
            finish_reason="stop",
        )

    def prompts(self) -> list[str]:
        """Last user message of every recorded call."""
        return [_last_user_message(call) for call in self.calls]

    def reset_script(self) -> None:
        self._script_index = 0
