"""
Tool Registry

Schema-driven registration and discovery of tools.

Design decisions:
- Decorator-based registration for convenience
- JSON Schema extracted from signatures drives argument validation
- Names are unique; registering a name twice is an error
- No global registry: each ToolServer owns one
"""

import inspect
import types
import typing
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Any, get_type_hints

from taskpilot.core.exceptions import ToolError, ToolNotFoundError
from taskpilot.core.types import ToolInfo


class ToolCategory(str, Enum):
    """Categories for organizing tools."""

    COMPUTE = "compute"
    DATA = "data"
    SYSTEM = "system"
    CUSTOM = "custom"


@dataclass
class ToolDefinition:
    """Everything the server needs to advertise, validate and run a tool."""

    name: str
    description: str
    function: Callable[..., Awaitable[Any] | Any]
    parameters: dict[str, Any]  # JSON Schema for arguments

    category: ToolCategory = ToolCategory.CUSTOM
    tags: list[str] = field(default_factory=list)
    version: str = "1.0.0"
    is_async: bool = True
    timeout_seconds: float = 30.0

    def to_info(self) -> ToolInfo:
        return ToolInfo(name=self.name, description=self.description, input_schema=self.parameters)

    def to_wire(self) -> dict[str, Any]:
        """Entry of a tools/list result."""
        return {"name": self.name, "description": self.description, "inputSchema": self.parameters}


def _extract_schema_from_function(func: Callable) -> dict[str, Any]:
    """Build a JSON Schema object from the function signature and type hints."""
    sig = inspect.signature(func)
    hints = get_type_hints(func)

    properties = {}
    required = []

    for param_name, param in sig.parameters.items():
        if param_name in ("self", "cls", "context"):
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue

        properties[param_name] = _type_to_schema(hints.get(param_name, str))
        if param.default is inspect.Parameter.empty:
            required.append(param_name)

    return {
        "type": "object",
        "properties": properties,
        "required": required,
    }


def _type_to_schema(python_type: Any) -> dict[str, Any]:
    """Convert a Python type to JSON Schema."""
    origin = typing.get_origin(python_type)
    args = typing.get_args(python_type)

    # Optional[X] and X | None
    if origin in (typing.Union, types.UnionType):
        non_none = [a for a in args if a is not type(None)]
        return _type_to_schema(non_none[0]) if len(non_none) == 1 else {}

    if origin is list:
        return {"type": "array", "items": _type_to_schema(args[0]) if args else {}}

    if origin is dict:
        return {"type": "object"}

    type_map = {
        str: {"type": "string"},
        int: {"type": "integer"},
        float: {"type": "number"},
        bool: {"type": "boolean"},
        list: {"type": "array"},
        dict: {"type": "object"},
    }
    return dict(type_map.get(python_type, {"type": "string"}))


_JSON_TYPES: dict[str, type | tuple[type, ...]] = {
    "string": str,
    "integer": int,
    "number": (int, float),
    "boolean": bool,
    "array": list,
    "object": dict,
    "null": type(None),
}


def validate_arguments(schema: dict[str, Any], arguments: dict[str, Any]) -> list[str]:
    """
    Check arguments against a tool schema.

    Returns the list of problems; empty means valid. Unknown arguments are
    reported since they would fail the call anyway.
    """
    errors = []
    properties = schema.get("properties", {})

    for name in schema.get("required", []):
        if name not in arguments:
            errors.append(f"Missing required argument: {name}")

    for name, value in arguments.items():
        if name not in properties:
            errors.append(f"Unexpected argument: {name}")
            continue
        expected = properties[name].get("type")
        expected_types = _JSON_TYPES.get(expected) if expected else None
        if expected_types is None:
            continue
        # bool is an int subclass; do not let True pass as a number
        if isinstance(value, bool) and expected in ("integer", "number"):
            errors.append(f"Argument '{name}' expected {expected}, got bool")
        elif not isinstance(value, expected_types):
            errors.append(f"Argument '{name}' expected {expected}, got {type(value).__name__}")

    return errors


def tool(
    name: str | None = None,
    description: str | None = None,
    category: ToolCategory = ToolCategory.CUSTOM,
    tags: list[str] | None = None,
    timeout: float = 30.0,
    version: str = "1.0.0",
) -> Callable:
    """
    Decorator that attaches a ToolDefinition to a function.

    Usage:
        @tool(name="add", description="Add two numbers")
        async def add(a: float, b: float) -> str:
            ...
    """

    def decorator(func: Callable) -> Callable:
        tool_name = name or func.__name__
        definition = ToolDefinition(
            name=tool_name,
            description=description or inspect.getdoc(func) or f"Execute {tool_name}",
            function=func,
            parameters=_extract_schema_from_function(func),
            category=category,
            tags=tags or [],
            timeout_seconds=timeout,
            version=version,
            is_async=inspect.iscoroutinefunction(func),
        )

        @wraps(func)
        async def wrapper(*args, **kwargs):
            if definition.is_async:
                return await func(*args, **kwargs)
            return func(*args, **kwargs)

        wrapper._tool_definition = definition
        return wrapper

    return decorator


class ToolRegistry:
    """Name-indexed collection of tool definitions."""

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, definition: ToolDefinition) -> ToolDefinition:
        """
        Register a tool definition.

        Raises:
            ToolError: A tool with the same name is already registered
        """
        if definition.name in self._tools:
            raise ToolError(
                f"Tool already registered: {definition.name}",
                context={"tool_name": definition.name},
            )
        self._tools[definition.name] = definition
        return definition

    def register_function(
        self,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
        **kwargs: Any,
    ) -> ToolDefinition:
        """Register a plain function as a tool. Alternative to @tool."""
        tool_name = name or func.__name__
        return self.register(
            ToolDefinition(
                name=tool_name,
                description=description or inspect.getdoc(func) or f"Execute {tool_name}",
                function=func,
                parameters=_extract_schema_from_function(func),
                is_async=inspect.iscoroutinefunction(func),
                **kwargs,
            )
        )

    def register_decorated(self, func: Callable) -> ToolDefinition:
        """Register a function that was decorated with @tool."""
        definition = getattr(func, "_tool_definition", None)
        if definition is None:
            raise ToolError(f"Function {func.__name__} is not decorated with @tool")
        return self.register(definition)

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def require(self, name: str) -> ToolDefinition:
        """
        Look up a tool that must exist.

        Raises:
            ToolNotFoundError: No tool with that name is registered
        """
        definition = self._tools.get(name)
        if definition is None:
            raise ToolNotFoundError(name)
        return definition

    def list_tools(
        self,
        category: ToolCategory | None = None,
        tags: list[str] | None = None,
    ) -> list[ToolDefinition]:
        """List tools in registration order, optionally filtered."""
        tools = list(self._tools.values())

        if category:
            tools = [t for t in tools if t.category == category]

        if tags:
            tag_set = set(tags)
            tools = [t for t in tools if tag_set & set(t.tags)]

        return tools

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None
