"""
Structured Output Parsing

Extracts JSON payloads from free-form model text and validates them
against pydantic models.

Design decisions:
- Parsing never raises: every call returns a ParseResult that is either
  a success carrying data or a fallback carrying the caller's default
- Extraction tries fenced ```json blocks, bare fences, then decodes from
  each opening brace and after that each opening bracket, in text order
- Validation reuses pydantic models so the same schema both documents and
  checks the expected shape
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

_FENCE_PATTERNS = [
    re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE),
    re.compile(r"```\s*([\s\S]*?)\s*```"),
]

_DECODER = json.JSONDecoder()
_MISSING = object()


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """
    Outcome of parsing structured data out of model text.

    ``ok`` is True when ``value`` came from the text, False when it is the
    caller-supplied default. ``error`` explains why the default was used.
    """

    value: T
    ok: bool
    error: str | None = None

    @classmethod
    def success(cls, value: T) -> "ParseResult[T]":
        return cls(value=value, ok=True)

    @classmethod
    def fallback(cls, default: T, error: str) -> "ParseResult[T]":
        return cls(value=default, ok=False, error=error)

    @property
    def used_fallback(self) -> bool:
        return not self.ok


def extract_json(text: str) -> ParseResult[Any]:
    """Find and decode the first JSON value embedded in ``text``."""
    if not text or not text.strip():
        return ParseResult.fallback(None, "empty response")

    for pattern in _FENCE_PATTERNS:
        for match in pattern.finditer(text):
            try:
                return ParseResult.success(json.loads(match.group(1).strip()))
            except json.JSONDecodeError:
                continue

    for opener in "{[":
        value = _decode_from(text, opener)
        if value is not _MISSING:
            return ParseResult.success(value)

    try:
        return ParseResult.success(json.loads(text.strip()))
    except json.JSONDecodeError as e:
        return ParseResult.fallback(None, f"no JSON found: {e.msg}")


def _decode_from(text: str, opener: str) -> Any:
    """First value that decodes from an ``opener`` position; trailing text is ignored."""
    start = text.find(opener)
    while start != -1:
        try:
            value, _ = _DECODER.raw_decode(text, start)
            return value
        except json.JSONDecodeError:
            start = text.find(opener, start + 1)
    return _MISSING


def parse_object(text: str, default: dict[str, Any]) -> ParseResult[dict[str, Any]]:
    """Extract a JSON object, or return ``default``."""
    extracted = extract_json(text)
    if not extracted.ok:
        return ParseResult.fallback(default, extracted.error or "no JSON found")
    if not isinstance(extracted.value, dict):
        return ParseResult.fallback(default, "expected a JSON object")
    return ParseResult.success(extracted.value)


def parse_model(text: str, model: type[M], default: M) -> ParseResult[M]:
    """Extract a JSON object and validate it as ``model``."""
    extracted = parse_object(text, {})
    if not extracted.ok:
        return ParseResult.fallback(default, extracted.error or "no JSON found")
    try:
        return ParseResult.success(model.model_validate(extracted.value))
    except ValidationError as e:
        return ParseResult.fallback(default, f"invalid {model.__name__}: {e.error_count()} errors")


def parse_list(
    text: str,
    key: str,
    default: list[Any],
) -> ParseResult[list[Any]]:
    """
    Extract a list stored under ``key`` of a JSON object.

    A top-level JSON array is accepted as the list itself.
    """
    extracted = extract_json(text)
    if not extracted.ok:
        return ParseResult.fallback(default, extracted.error or "no JSON found")

    value = extracted.value
    if isinstance(value, dict):
        value = value.get(key)
    if not isinstance(value, list):
        return ParseResult.fallback(default, f"expected a list under '{key}'")
    return ParseResult.success(value)


def validate_items(items: list[Any], model: type[M]) -> tuple[list[M], list[str]]:
    """
    Validate each item independently.

    Returns the valid models and one error string per rejected item, so a
    single malformed entry never discards its siblings.
    """
    valid: list[M] = []
    errors: list[str] = []
    for index, item in enumerate(items):
        try:
            valid.append(model.model_validate(item))
        except ValidationError as e:
            errors.append(f"item {index}: {e.error_count()} validation errors")
    return valid, errors
