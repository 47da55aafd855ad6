"""
Tool Server

In-process RPC server that exposes registered tools and resources.

Design decisions:
- Requests are plain dicts in the wire format; responses are dicts too
- At most ``max_concurrent_requests`` requests run at once; the rest wait
  in FIFO order and a finishing request hands its slot to the oldest waiter
- Every request is bounded by ``request_timeout``; a tool call is further
  bounded by the tool's own timeout
- Every failure becomes an error response; handle_request never raises
"""

import asyncio
import inspect
import json
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from taskpilot.config.settings import ToolServerSettings
from taskpilot.core.exceptions import ToolError, ToolNotFoundError, ToolServerError
from taskpilot.tools.builtin import BUILTIN_TOOLS
from taskpilot.tools.protocol import (
    PROTOCOL_VERSION,
    ErrorCode,
    Method,
    Resource,
    RpcRequest,
    RpcResponse,
)
from taskpilot.tools.registry import ToolDefinition, ToolRegistry, validate_arguments

logger = logging.getLogger(__name__)

ResourceReader = Callable[[str], Awaitable[str] | str]


@dataclass
class ServerConfig:
    name: str = "taskpilot-tools"
    version: str = "0.1.0"
    max_concurrent_requests: int = 10
    request_timeout: float = 30.0
    register_builtin_tools: bool = True

    @classmethod
    def from_settings(cls, settings: ToolServerSettings) -> "ServerConfig":
        return cls(**settings.model_dump())


class ToolServer:
    """
    Serves tools/list, tools/call, resources/list and resources/read.

    Usage:
        server = ToolServer(ServerConfig())
        await server.start()
        response = await server.handle_request(
            {"jsonrpc": "2.0", "id": 1, "method": "tools/list"}
        )
        await server.stop()
    """

    CAPABILITIES = {
        "tools": {"listChanged": True},
        "resources": {"subscribe": False, "listChanged": True},
    }

    def __init__(self, config: ServerConfig | None = None, registry: ToolRegistry | None = None):
        self.config = config or ServerConfig()
        self._registry = registry or ToolRegistry()
        self._resources: dict[str, tuple[Resource, ResourceReader]] = {}

        self._running = False
        self._active = 0
        self._waiters: deque[asyncio.Future] = deque()
        self._idle = asyncio.Event()
        self._idle.set()

        if self.config.register_builtin_tools:
            for func in BUILTIN_TOOLS:
                if func._tool_definition.name not in self._registry:
                    self._registry.register_decorated(func)

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_requests(self) -> int:
        return self._active

    @property
    def queued_requests(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    @property
    def server_info(self) -> dict[str, str]:
        return {"name": self.config.name, "version": self.config.version}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        if self._running:
            raise ToolError(f"Tool server '{self.config.name}' is already running")
        self._running = True
        logger.info(f"Tool server '{self.config.name}' started with {len(self._registry)} tools")

    async def stop(self) -> None:
        """Reject queued requests, then wait for running ones to finish."""
        if not self._running:
            return
        self._running = False

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(False)

        await self._idle.wait()
        logger.info(f"Tool server '{self.config.name}' stopped")

    async def __aenter__(self) -> "ToolServer":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # =========================================================================
    # Registration
    # =========================================================================

    def register_tool(
        self,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
        **kwargs: Any,
    ) -> ToolDefinition:
        """Register a @tool-decorated or plain function."""
        if hasattr(func, "_tool_definition"):
            definition = self._registry.register_decorated(func)
        else:
            definition = self._registry.register_function(func, name=name, description=description, **kwargs)
        logger.debug(f"Tool '{definition.name}' registered")
        return definition

    def unregister_tool(self, name: str) -> bool:
        return self._registry.unregister(name)

    def register_resource(self, resource: Resource, reader: ResourceReader) -> None:
        if resource.uri in self._resources:
            raise ToolError(f"Resource already registered: {resource.uri}", context={"uri": resource.uri})
        self._resources[resource.uri] = (resource, reader)
        logger.debug(f"Resource '{resource.uri}' registered")

    # =========================================================================
    # Request handling
    # =========================================================================

    async def handle_request(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Process one request dict and return the response dict."""
        request_id = payload.get("id") if isinstance(payload, dict) else None

        if not self._running:
            return RpcResponse.failure(request_id, ErrorCode.INTERNAL_ERROR, "Server is not running").to_wire()

        try:
            request = RpcRequest.model_validate(payload)
        except ValidationError:
            return RpcResponse.failure(request_id, ErrorCode.INVALID_REQUEST, "Invalid request format").to_wire()

        try:
            await self._acquire()
        except ToolServerError as e:
            return RpcResponse.failure(request.id, e.rpc_code, e.message).to_wire()

        try:
            result = await asyncio.wait_for(self._dispatch(request), timeout=self.config.request_timeout)
            response = RpcResponse.success(request.id, result)
        except asyncio.TimeoutError:
            logger.warning(f"Request {request.id} ({request.method}) timed out")
            response = RpcResponse.failure(request.id, ErrorCode.TIMEOUT_ERROR, "Request timeout")
        except ToolServerError as e:
            response = RpcResponse.failure(request.id, e.rpc_code, e.message, e.data)
        except Exception as e:
            logger.exception(f"Request {request.id} ({request.method}) failed")
            response = RpcResponse.failure(request.id, ErrorCode.INTERNAL_ERROR, str(e))
        finally:
            self._release()

        return response.to_wire()

    async def _acquire(self) -> None:
        if self._active < self.config.max_concurrent_requests and not self._waiters:
            self._active += 1
            self._idle.clear()
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            granted = await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled() and waiter.result():
                # The slot was handed over just before cancellation
                self._release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

        if not granted:
            raise ToolServerError("Server is shutting down", rpc_code=ErrorCode.INTERNAL_ERROR)

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(True)  # slot passes to the waiter
                return
        self._active -= 1
        if self._active == 0:
            self._idle.set()

    async def _dispatch(self, request: RpcRequest) -> Any:
        handlers = {
            Method.INITIALIZE: self._initialize,
            Method.TOOLS_LIST: self._list_tools,
            Method.TOOLS_CALL: self._call_tool,
            Method.RESOURCES_LIST: self._list_resources,
            Method.RESOURCES_READ: self._read_resource,
        }
        handler = handlers.get(request.method)
        if handler is None:
            raise ToolServerError(f"Method '{request.method}' not found", rpc_code=ErrorCode.METHOD_NOT_FOUND)
        return await handler(request.params)

    async def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": self.CAPABILITIES,
            "serverInfo": self.server_info,
        }

    async def _list_tools(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": [definition.to_wire() for definition in self._registry.list_tools()]}

    async def _call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise ToolServerError("Tool name is required", rpc_code=ErrorCode.INVALID_PARAMS)

        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise ToolServerError("Tool arguments must be an object", rpc_code=ErrorCode.INVALID_PARAMS)

        try:
            definition = self._registry.require(name)
        except ToolNotFoundError:
            raise ToolServerError(f"Tool '{name}' not found", rpc_code=ErrorCode.TOOL_NOT_FOUND)

        problems = validate_arguments(definition.parameters, arguments)
        if problems:
            raise ToolServerError(
                f"Invalid arguments for '{name}': {'; '.join(problems)}",
                rpc_code=ErrorCode.INVALID_PARAMS,
                data={"errors": problems},
            )

        timeout = min(definition.timeout_seconds, self.config.request_timeout)
        try:
            if definition.is_async:
                output = await asyncio.wait_for(definition.function(**arguments), timeout=timeout)
            else:
                output = await asyncio.wait_for(asyncio.to_thread(definition.function, **arguments), timeout=timeout)
        except asyncio.TimeoutError:
            raise ToolServerError(f"Tool '{name}' timed out after {timeout}s", rpc_code=ErrorCode.TIMEOUT_ERROR)
        except ToolServerError:
            raise
        except Exception as e:
            logger.warning(f"Tool '{name}' execution failed: {e}")
            raise ToolServerError(str(e) or type(e).__name__, rpc_code=ErrorCode.TOOL_EXECUTION_ERROR)

        return {"content": [{"type": "text", "text": _to_text(output)}], "isError": False}

    async def _list_resources(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"resources": [resource.model_dump(by_alias=True) for resource, _ in self._resources.values()]}

    async def _read_resource(self, params: dict[str, Any]) -> dict[str, Any]:
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise ToolServerError("Resource URI is required", rpc_code=ErrorCode.INVALID_PARAMS)

        entry = self._resources.get(uri)
        if entry is None:
            raise ToolServerError(f"Resource '{uri}' not found", rpc_code=ErrorCode.RESOURCE_NOT_FOUND)
        resource, reader = entry

        try:
            text = reader(uri)
            if inspect.isawaitable(text):
                text = await text
        except PermissionError as e:
            raise ToolServerError(f"Resource access denied: {e}", rpc_code=ErrorCode.RESOURCE_ACCESS_DENIED)

        return {"contents": [{"uri": uri, "mimeType": resource.mime_type, "text": _to_text(text)}]}


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)
