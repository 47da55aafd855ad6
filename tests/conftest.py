"""
Test Configuration

Shared fixtures: contexts, prompt registry, observers and a running tool
server with a few test tools.
"""

import asyncio

import pytest

from taskpilot.core.types import AgentContext
from taskpilot.reasoning.prompts import PromptRegistry
from taskpilot.tools.client import ToolClient
from taskpilot.tools.server import ServerConfig, ToolServer
from tests.fixtures import RecordingObserver


@pytest.fixture
def context():
    """A goal with a generous time budget."""
    return AgentContext(
        goal="Prepare a summary of the quarterly sales figures",
        session_id="test-session",
        max_duration=600,
    )


@pytest.fixture
def prompts():
    return PromptRegistry()


@pytest.fixture
def observer():
    return RecordingObserver()


async def echo(message: str) -> str:
    """Echo the message back."""
    return message


async def empty() -> str:
    """Return nothing."""
    return ""


async def fail(reason: str = "boom") -> str:
    """Always raise."""
    raise RuntimeError(reason)


async def slow(seconds: float) -> str:
    """Sleep, then answer."""
    await asyncio.sleep(seconds)
    return "finally"


def add(a: int, b: int) -> int:
    """Add two integers."""
    return a + b


@pytest.fixture
async def tool_server():
    """Running server with the built-in tools plus test tools."""
    server = ToolServer(ServerConfig(request_timeout=1.0))
    server.register_tool(echo)
    server.register_tool(empty)
    server.register_tool(fail)
    server.register_tool(slow, timeout_seconds=0.05)
    server.register_tool(add)
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def tool_client(tool_server):
    return ToolClient(tool_server)
