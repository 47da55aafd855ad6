"""
Tool Module

Schema-driven tool registry, an in-process RPC tool server, the client
the agent loop executes tools through and a caching scheduler in front of it.
"""

from taskpilot.tools.builtin import register_builtin_tools
from taskpilot.tools.client import ToolClient
from taskpilot.tools.protocol import (
    PROTOCOL_VERSION,
    ErrorCode,
    Resource,
    RpcError,
    RpcRequest,
    RpcResponse,
)
from taskpilot.tools.registry import ToolCategory, ToolDefinition, ToolRegistry, tool, validate_arguments
from taskpilot.tools.scheduler import ScheduledCall, SchedulerConfig, SchedulerStats, ToolScheduler
from taskpilot.tools.server import ServerConfig, ToolServer

__all__ = [
    # Protocol
    "PROTOCOL_VERSION",
    "ErrorCode",
    "Resource",
    "RpcError",
    "RpcRequest",
    "RpcResponse",
    # Registry
    "ToolCategory",
    "ToolDefinition",
    "ToolRegistry",
    "tool",
    "validate_arguments",
    "register_builtin_tools",
    # Server / client
    "ServerConfig",
    "ToolServer",
    "ToolClient",
    # Scheduling
    "ScheduledCall",
    "SchedulerConfig",
    "SchedulerStats",
    "ToolScheduler",
]
