"""
Base LLM Adapter

Implements the reasoning service contract shared by every backend.
Concrete adapters only translate requests and responses.

Design decisions:
- Async-first: All methods are async for non-blocking I/O
- Streaming as first-class: chat_stream yields typed StreamEvents
- Provider-agnostic: Common interface hides provider differences
- Retry logic: Built into base class with configurable backoff
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from taskpilot.config.settings import LLMSettings
from taskpilot.core.exceptions import (
    LLMConnectionError,
    LLMError,
    LLMRateLimitError,
    LLMTimeoutError,
)
from taskpilot.core.types import (
    ChatMessage,
    ChatOptions,
    LLMResponse,
    ModelInfo,
    StreamEvent,
    StreamEventType,
    ToolCall,
)

logger = logging.getLogger(__name__)


class BaseLLMAdapter(ABC):
    """
    Abstract base class for reasoning backends.

    All model interactions go through this interface, enabling:
    - Backend selection by configuration
    - Consistent error handling
    - Unified streaming interface
    - Built-in retry logic
    """

    def __init__(self, settings: LLMSettings | None = None):
        self.settings = settings or LLMSettings()
        self._retry_count = self.settings.max_retries
        self._retry_delay = self.settings.retry_delay
        self._timeout = self.settings.request_timeout

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier."""

    @property
    def model(self) -> str:
        return self.settings.model

    def default_options(self) -> ChatOptions:
        return ChatOptions(
            model=self.model,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )

    @abstractmethod
    async def _do_chat(
        self,
        messages: list[ChatMessage],
        options: ChatOptions,
    ) -> LLMResponse:
        """
        Provider-specific implementation of a chat call.

        This is called by chat() inside the retry loop.
        Implementations should NOT handle retries.
        """

    @abstractmethod
    def _do_stream(
        self,
        messages: list[ChatMessage],
        options: ChatOptions,
    ) -> AsyncIterator[str | ToolCall]:
        """
        Provider-specific streaming implementation.

        Yields either string chunks or complete ToolCall objects.
        """

    @abstractmethod
    async def get_models(self) -> list[ModelInfo]:
        """List models offered by the backend."""

    async def chat(
        self,
        messages: list[ChatMessage],
        options: ChatOptions | None = None,
    ) -> LLMResponse:
        """
        Send a chat request.

        Includes automatic retry with exponential backoff for
        transient errors (rate limits, timeouts, connection issues).

        Raises:
            LLMConnectionError: Cannot reach provider
            LLMRateLimitError: Rate limit exceeded (after retries)
            LLMTimeoutError: Request timed out (after retries)
        """
        options = options or self.default_options()
        last_error: LLMError | None = None

        for attempt in range(self._retry_count + 1):
            try:
                return await asyncio.wait_for(
                    self._do_chat(messages, options),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError:
                last_error = LLMTimeoutError(
                    f"Request timed out after {self._timeout}s",
                    context={"attempt": attempt + 1},
                )
            except LLMRateLimitError as e:
                last_error = e
                if attempt < self._retry_count:
                    await asyncio.sleep(e.retry_after or self._retry_delay * (2**attempt))
            except LLMConnectionError as e:
                last_error = e
                if attempt < self._retry_count:
                    await asyncio.sleep(self._retry_delay * (2**attempt))

            logger.warning(
                f"{self.provider_name} chat attempt {attempt + 1} failed: {last_error}"
            )

        if last_error:
            raise last_error
        raise LLMConnectionError("Request failed after all retries")

    async def chat_stream(
        self,
        messages: list[ChatMessage],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream a chat response as events.

        Content chunks arrive as CONTENT events and tool calls as
        TOOL_CALL events. A backend failure becomes a single ERROR
        event. The stream always ends with DONE.
        """
        options = options or self.default_options()
        try:
            async for chunk in self._do_stream(messages, options):
                if isinstance(chunk, ToolCall):
                    yield StreamEvent(type=StreamEventType.TOOL_CALL, tool_call=chunk)
                elif chunk:
                    yield StreamEvent(type=StreamEventType.CONTENT, content=chunk)
        except LLMError as e:
            logger.warning(f"{self.provider_name} stream failed: {e}")
            yield StreamEvent(type=StreamEventType.ERROR, error=str(e))
        except Exception as e:
            logger.exception(f"{self.provider_name} stream raised unexpectedly")
            yield StreamEvent(type=StreamEventType.ERROR, error=str(e) or type(e).__name__)
        yield StreamEvent(type=StreamEventType.DONE)

    async def validate_config(self) -> bool:
        """Check that the backend answers a model listing."""
        try:
            models = await self.get_models()
        except LLMError as e:
            logger.warning(f"{self.provider_name} configuration check failed: {e}")
            return False
        return bool(models)

    async def close(self) -> None:
        """Clean up resources (connection pools, etc)."""

    async def __aenter__(self) -> "BaseLLMAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def convert_messages_to_dicts(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    """Convert ChatMessage objects to provider-compatible dicts."""
    result = []
    for msg in messages:
        d = {"role": msg.role.value, "content": msg.content}
        if msg.name:
            d["name"] = msg.name
        result.append(d)
    return result
