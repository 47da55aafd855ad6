"""
Tool Scheduler

Validating, caching front for a tool executor.

Design decisions:
- Wraps any ToolExecutorProtocol and implements it too, so the loop
  never knows whether a call was served from the cache
- Arguments are checked against the advertised schema before dispatch;
  an invalid call never reaches the executor
- Only successful results are cached, keyed by tool name and the
  canonical JSON of the arguments
- The cache is bounded: expired entries go first, then the oldest
- Batches run concurrently, at most ``max_concurrent_executions`` at once
"""

import asyncio
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from taskpilot.config.settings import ToolSchedulerSettings
from taskpilot.core.exceptions import ToolError
from taskpilot.core.interfaces import ToolExecutorProtocol
from taskpilot.core.types import AgentContext, ToolInfo, ToolResult
from taskpilot.tools.protocol import ErrorCode
from taskpilot.tools.registry import validate_arguments

logger = logging.getLogger(__name__)


@dataclass
class SchedulerConfig:
    """``cache_ttl`` is in seconds."""

    max_concurrent_executions: int = 5
    enable_cache: bool = True
    cache_size: int = 100
    cache_ttl: float = 300.0
    uncached_tools: frozenset[str] = frozenset({"get_current_time"})

    @classmethod
    def from_settings(cls, settings: ToolSchedulerSettings) -> "SchedulerConfig":
        data = settings.model_dump()
        data["uncached_tools"] = frozenset(data["uncached_tools"])
        return cls(**data)


@dataclass(frozen=True)
class ScheduledCall:
    """One entry of a batch."""

    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SchedulerStats:
    active_executions: int
    cache_size: int
    cache_hits: int
    cache_misses: int
    rejected_calls: int

    @property
    def cache_hit_rate(self) -> float:
        lookups = self.cache_hits + self.cache_misses
        return self.cache_hits / lookups if lookups else 0.0


@dataclass
class _CacheEntry:
    result: ToolResult
    stored_at: float


class ToolScheduler:
    """
    Executes tool calls through another executor.

    Usage:
        scheduler = ToolScheduler(ToolClient(server), SchedulerConfig())
        result = await scheduler.execute("calculate", {"expression": "2 + 2"})
        results = await scheduler.execute_batch([ScheduledCall("calculate", {"expression": "1 + 1"})])
    """

    def __init__(
        self,
        executor: ToolExecutorProtocol,
        config: SchedulerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._executor = executor
        self.config = config or SchedulerConfig()
        self._clock = clock

        self._cache: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._schemas: dict[str, dict[str, Any]] | None = None
        self._slots = asyncio.Semaphore(self.config.max_concurrent_executions)
        self._active = 0
        self._hits = 0
        self._misses = 0
        self._rejected = 0

    async def list_tools(self) -> list[ToolInfo]:
        tools = await self._executor.list_tools()
        self._schemas = {t.name: t.input_schema for t in tools}
        return tools

    async def execute(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        context: AgentContext | None = None,
    ) -> ToolResult:
        problems = await self._validate(tool_name, arguments)
        if problems:
            self._rejected += 1
            logger.debug(f"Rejected call to '{tool_name}': {problems}")
            return ToolResult(
                tool_name=tool_name,
                error=f"Invalid call to '{tool_name}': {'; '.join(problems)}",
                error_code=ErrorCode.INVALID_PARAMS,
            )

        key = self._cache_key(tool_name, arguments)
        if key is not None:
            cached = self._lookup(key)
            if cached is not None:
                self._hits += 1
                logger.debug(f"Cache hit for '{tool_name}'")
                return cached
            self._misses += 1

        async with self._slots:
            self._active += 1
            try:
                result = await self._executor.execute(tool_name, arguments, context)
            finally:
                self._active -= 1

        if key is not None and result.success:
            self._store(key, result)
        return result

    async def execute_batch(
        self,
        calls: Sequence[ScheduledCall],
        context: AgentContext | None = None,
    ) -> list[ToolResult]:
        """
        Run every call concurrently. Results keep the order of ``calls``;
        an executor exception becomes a failed result for its call only.
        """
        outcomes = await asyncio.gather(
            *(self.execute(call.tool_name, call.arguments, context) for call in calls),
            return_exceptions=True,
        )

        results = []
        for call, outcome in zip(calls, outcomes):
            if isinstance(outcome, ToolResult):
                results.append(outcome)
            elif isinstance(outcome, Exception):
                logger.warning(f"Batched call to '{call.tool_name}' raised: {outcome}")
                results.append(ToolResult(tool_name=call.tool_name, error=str(outcome) or type(outcome).__name__))
            else:
                raise outcome
        return results

    def clear_cache(self) -> int:
        """Drop every cached result. Returns how many were dropped."""
        dropped = len(self._cache)
        self._cache.clear()
        return dropped

    def cleanup_expired(self) -> int:
        """Drop expired cache entries. Returns how many were dropped."""
        now = self._clock()
        expired = [key for key, entry in self._cache.items() if now - entry.stored_at >= self.config.cache_ttl]
        for key in expired:
            del self._cache[key]
        return len(expired)

    def get_stats(self) -> SchedulerStats:
        return SchedulerStats(
            active_executions=self._active,
            cache_size=len(self._cache),
            cache_hits=self._hits,
            cache_misses=self._misses,
            rejected_calls=self._rejected,
        )

    async def _validate(self, tool_name: str, arguments: Any) -> list[str]:
        if not isinstance(tool_name, str) or not tool_name:
            return ["a tool name is required"]
        if not isinstance(arguments, dict):
            return [f"arguments must be an object, got {type(arguments).__name__}"]

        if self._schemas is None:
            try:
                await self.list_tools()
            except ToolError as e:
                logger.warning(f"Could not load tool schemas, skipping validation: {e}")
                return []

        # Unknown tools are left to the executor, which reports them precisely
        schema = self._schemas.get(tool_name) if self._schemas is not None else None
        if schema is None:
            return []
        return validate_arguments(schema, arguments)

    def _cache_key(self, tool_name: str, arguments: dict[str, Any]) -> str | None:
        if not self.config.enable_cache or self.config.cache_size <= 0:
            return None
        if tool_name in self.config.uncached_tools:
            return None
        return f"{tool_name}:{json.dumps(arguments, sort_keys=True, default=str)}"

    def _lookup(self, key: str) -> ToolResult | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.config.cache_ttl:
            del self._cache[key]
            return None
        return entry.result.model_copy(update={"duration_ms": 0.0})

    def _store(self, key: str, result: ToolResult) -> None:
        self._cache.pop(key, None)
        if len(self._cache) >= self.config.cache_size:
            self.cleanup_expired()
        while len(self._cache) >= self.config.cache_size:
            self._cache.popitem(last=False)
        self._cache[key] = _CacheEntry(result=result, stored_at=self._clock())
