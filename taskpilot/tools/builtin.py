"""
Built-in Tools

Small, dependency-free tools registered on every default tool server.
Failures raise; the server turns them into TOOL_EXECUTION_ERROR responses.
"""

import ast
import json
import math
import operator
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from taskpilot.tools.registry import ToolCategory, ToolRegistry, tool


@tool(
    name="get_current_time",
    description="Get the current date and time in the specified timezone",
    category=ToolCategory.SYSTEM,
    tags=["time", "utility"],
)
async def get_current_time(timezone: str = "UTC") -> str:
    try:
        tz = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {timezone}")
    return datetime.now(tz).strftime("%Y-%m-%d %H:%M:%S %Z")


_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS = {
    "abs": abs,
    "round": round,
    "min": min,
    "max": max,
    "sqrt": math.sqrt,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "log": math.log,
    "log10": math.log10,
    "exp": math.exp,
}

_CONSTANTS = {"pi": math.pi, "e": math.e}


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        return _BINARY_OPS[type(node.op)](_evaluate(node.left), _evaluate(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in _FUNCTIONS
        and not node.keywords
    ):
        return _FUNCTIONS[node.func.id](*(_evaluate(arg) for arg in node.args))
    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


@tool(
    name="calculate",
    description="Evaluate a mathematical expression. Supports basic arithmetic, powers, and common functions.",
    category=ToolCategory.COMPUTE,
    tags=["math", "calculate"],
)
async def calculate(expression: str) -> str:
    """
    Evaluate an arithmetic expression without eval().

    Supports: + - * / // % **, sqrt, sin, cos, tan, log, log10, exp, abs,
    round, min, max, pi, e
    """
    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError:
        raise ValueError(f"Invalid expression: {expression}")
    try:
        result = _evaluate(tree)
    except ZeroDivisionError:
        raise ValueError("Division by zero")
    return str(result)


@tool(
    name="json_parse",
    description="Parse a JSON string and optionally extract a value by dot path (e.g. data.users.0.name)",
    category=ToolCategory.DATA,
    tags=["json", "parse", "data"],
)
async def json_parse(json_string: str, path: str | None = None) -> str:
    try:
        data = json.loads(json_string)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}")

    if path:
        for key in path.split("."):
            try:
                if isinstance(data, list):
                    data = data[int(key)]
                elif isinstance(data, dict):
                    data = data[key]
                else:
                    raise ValueError(f"Cannot traverse path at: {key}")
            except (KeyError, IndexError, ValueError) as e:
                raise ValueError(f"Path not found: {path} ({e})")

    return json.dumps(data, indent=2)


_STRING_OPERATIONS = {
    "uppercase": str.upper,
    "lowercase": str.lower,
    "title": str.title,
    "reverse": lambda s: s[::-1],
    "strip": str.strip,
    "capitalize": str.capitalize,
}


@tool(
    name="string_transform",
    description="Transform a string: uppercase, lowercase, title, reverse, strip or capitalize",
    category=ToolCategory.DATA,
    tags=["string", "transform", "text"],
)
async def string_transform(text: str, operation: str) -> str:
    if operation not in _STRING_OPERATIONS:
        raise ValueError(f"Unknown operation: {operation}. Available: {sorted(_STRING_OPERATIONS)}")
    return _STRING_OPERATIONS[operation](text)


BUILTIN_TOOLS = (get_current_time, calculate, json_parse, string_transform)


def register_builtin_tools(registry: ToolRegistry) -> None:
    """Register all built-in tools with a registry."""
    for func in BUILTIN_TOOLS:
        registry.register_decorated(func)
