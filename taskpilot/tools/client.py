"""
Tool Client

ToolExecutorProtocol implementation that talks to a ToolServer.
Error responses become failed ToolResults; only protocol-level problems
in list/read calls raise.
"""

import itertools
import logging
import time
from typing import Any

from taskpilot.core.exceptions import ToolServerError
from taskpilot.core.types import AgentContext, ToolInfo, ToolResult
from taskpilot.tools.protocol import Method, Resource, RpcRequest, RpcResponse
from taskpilot.tools.server import ToolServer

logger = logging.getLogger(__name__)


class ToolClient:
    """Executes tools through a ToolServer's request handler."""

    def __init__(self, server: ToolServer):
        self._server = server
        self._ids = itertools.count(1)
        self._server_info: dict[str, Any] | None = None

    @property
    def server_info(self) -> dict[str, Any] | None:
        """Result of the last initialize() call."""
        return self._server_info

    async def _request(self, method: str, params: dict[str, Any] | None = None) -> RpcResponse:
        request = RpcRequest(id=next(self._ids), method=method, params=params or {})
        wire = await self._server.handle_request(request.to_wire())
        return RpcResponse.model_validate(wire)

    async def _result(self, method: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._request(method, params)
        if response.error is not None:
            raise ToolServerError(
                response.error.message,
                rpc_code=response.error.code,
                data=response.error.data,
                context={"method": method},
            )
        return response.result

    async def initialize(self) -> dict[str, Any]:
        self._server_info = await self._result(Method.INITIALIZE)
        return self._server_info

    async def list_tools(self) -> list[ToolInfo]:
        result = await self._result(Method.TOOLS_LIST)
        return [
            ToolInfo(
                name=entry["name"],
                description=entry.get("description", ""),
                input_schema=entry.get("inputSchema", {}),
            )
            for entry in result.get("tools", [])
        ]

    async def execute(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        context: AgentContext | None = None,
    ) -> ToolResult:
        start = time.perf_counter()
        response = await self._request(Method.TOOLS_CALL, {"name": tool_name, "arguments": arguments})
        duration_ms = (time.perf_counter() - start) * 1000

        if response.error is not None:
            logger.debug(f"Tool '{tool_name}' returned error {response.error.code}: {response.error.message}")
            return ToolResult(
                tool_name=tool_name,
                error=response.error.message,
                error_code=response.error.code,
                duration_ms=duration_ms,
            )

        content = (response.result or {}).get("content", [])
        output = "\n".join(item.get("text", "") for item in content if item.get("type") == "text")
        return ToolResult(tool_name=tool_name, output=output, duration_ms=duration_ms)

    async def list_resources(self) -> list[Resource]:
        result = await self._result(Method.RESOURCES_LIST)
        return [Resource.model_validate(entry) for entry in result.get("resources", [])]

    async def read_resource(self, uri: str) -> str:
        result = await self._result(Method.RESOURCES_READ, {"uri": uri})
        return "\n".join(item.get("text", "") for item in result.get("contents", []))
