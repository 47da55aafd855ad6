"""
OpenAI LLM Adapter

Implementation for the OpenAI chat completions API.
Also works with OpenAI-compatible APIs (Azure, Ollama, vLLM) via base_url.

Design decisions:
- Uses official openai library for stability
- The SDK's own retries are disabled; BaseLLMAdapter retries
- Imported lazily so offline installs never touch the SDK
"""

import json
from collections.abc import AsyncIterator
from typing import Any

from taskpilot.config.settings import LLMSettings
from taskpilot.core.exceptions import (
    ConfigurationError,
    LLMConnectionError,
    LLMRateLimitError,
    LLMResponseError,
)
from taskpilot.core.types import (
    ChatMessage,
    ChatOptions,
    LLMResponse,
    ModelInfo,
    TokenUsage,
    ToolCall,
)
from taskpilot.reasoning.llm.base import BaseLLMAdapter, convert_messages_to_dicts

# Lazy import to avoid requiring openai if not used
_openai_module = None


def _get_openai():
    global _openai_module
    if _openai_module is None:
        try:
            import openai

            _openai_module = openai
        except ImportError as e:
            raise ConfigurationError(
                "openai package required. Install with: pip install openai",
                cause=e,
            )
    return _openai_module


def _parse_arguments(raw: str) -> dict[str, Any]:
    try:
        args = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        return {"raw": raw}
    return args if isinstance(args, dict) else {"value": args}


class OpenAIAdapter(BaseLLMAdapter):
    """
    OpenAI API adapter.

    Supports:
    - Chat completions
    - Streaming responses with tool-call accumulation
    - Model listing for configuration checks
    """

    def __init__(self, settings: LLMSettings):
        super().__init__(settings)

        openai = _get_openai()

        client_kwargs: dict[str, Any] = {
            "timeout": settings.request_timeout,
            "max_retries": 0,
        }
        if settings.api_key:
            client_kwargs["api_key"] = settings.api_key.get_secret_value()
        if settings.base_url:
            client_kwargs["base_url"] = settings.base_url
        if settings.organization:
            client_kwargs["organization"] = settings.organization

        self._client = openai.AsyncOpenAI(**client_kwargs)

    @property
    def provider_name(self) -> str:
        return "openai"

    def _request_kwargs(self, messages: list[ChatMessage], options: ChatOptions) -> dict[str, Any]:
        request_kwargs: dict[str, Any] = {
            "model": options.model or self.model,
            "messages": convert_messages_to_dicts(messages),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if options.stop:
            request_kwargs["stop"] = options.stop
        return request_kwargs

    def _translate_error(self, error: Exception) -> Exception:
        openai = _get_openai()
        if isinstance(error, openai.RateLimitError):
            retry_after = error.response.headers.get("retry-after") if error.response else None
            return LLMRateLimitError(
                str(error),
                retry_after=float(retry_after) if retry_after else None,
                cause=error,
            )
        if isinstance(error, openai.APIConnectionError):
            return LLMConnectionError(str(error), cause=error)
        return LLMResponseError(str(error), cause=error)

    async def _do_chat(self, messages: list[ChatMessage], options: ChatOptions) -> LLMResponse:
        openai = _get_openai()

        try:
            response = await self._client.chat.completions.create(
                **self._request_kwargs(messages, options)
            )
        except openai.APIError as e:
            raise self._translate_error(e)

        if not response.choices:
            raise LLMResponseError("Response contained no choices")

        choice = response.choices[0]
        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=_parse_arguments(tc.function.arguments))
            for tc in choice.message.tool_calls or []
        ]

        return LLMResponse(
            content=choice.message.content or "",
            model=response.model,
            tool_calls=tool_calls,
            usage=TokenUsage(
                prompt_tokens=response.usage.prompt_tokens if response.usage else 0,
                completion_tokens=response.usage.completion_tokens if response.usage else 0,
            ),
            finish_reason=choice.finish_reason,
        )

    async def _do_stream(
        self,
        messages: list[ChatMessage],
        options: ChatOptions,
    ) -> AsyncIterator[str | ToolCall]:
        openai = _get_openai()

        try:
            stream = await self._client.chat.completions.create(
                **self._request_kwargs(messages, options), stream=True
            )
        except openai.APIError as e:
            raise self._translate_error(e)

        # Accumulate tool calls across chunks
        accumulators: dict[int, dict[str, str]] = {}

        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue

                delta = chunk.choices[0].delta
                if delta.content:
                    yield delta.content

                for tc in delta.tool_calls or []:
                    acc = accumulators.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        acc["id"] = tc.id
                    if tc.function:
                        if tc.function.name:
                            acc["name"] = tc.function.name
                        if tc.function.arguments:
                            acc["arguments"] += tc.function.arguments
        except openai.APIError as e:
            raise self._translate_error(e)

        for acc in accumulators.values():
            yield ToolCall(id=acc["id"], name=acc["name"], arguments=_parse_arguments(acc["arguments"]))

    async def get_models(self) -> list[ModelInfo]:
        openai = _get_openai()
        try:
            page = await self._client.models.list()
        except openai.APIError as e:
            raise self._translate_error(e)
        return [
            ModelInfo(id=model.id, name=model.id, provider=self.provider_name)
            for model in page.data
        ]

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.close()
