"""
Working Context

Bounded store of what a run has learned so far: task results, tool
observations and errors. Prompts draw the items most relevant to the
current sub-task from it instead of replaying the whole step log.

Design decisions:
- Relevance starts at 1.0 and decays geometrically with age
- Retrieval scores items by decayed relevance plus keyword overlap with
  the query, then fills a token budget most relevant first
- Token counts are estimated from character length; no tokenizer needed
- Consolidation drops faded items and enforces the size bound
"""

import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

_WORD = re.compile(r"[a-z0-9]+")


class ContextKind(str, Enum):
    TASK_RESULT = "task_result"
    OBSERVATION = "observation"
    ERROR = "error"
    NOTE = "note"


@dataclass
class ContextItem:
    kind: ContextKind
    content: str
    created_at: float
    relevance: float = 1.0
    tags: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"ctx_{uuid4().hex[:8]}")


@dataclass
class ContextConfig:
    """``decay_per_hour`` is the relevance multiplier applied per hour of age."""

    max_items: int = 100
    decay_per_hour: float = 0.95
    min_relevance: float = 0.1
    chars_per_token: float = 4.0


def keywords(text: str) -> set[str]:
    """Lowercased words of three or more characters."""
    return {word for word in _WORD.findall(text.lower()) if len(word) > 2}


class WorkingContext:
    """
    Relevance-ranked memory for a single run.

    Usage:
        memory = WorkingContext()
        memory.add(ContextKind.TASK_RESULT, 'Task "Compute total" completed: 2000')
        items = memory.relevant("format the total", max_tokens=200)
    """

    def __init__(self, config: ContextConfig | None = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or ContextConfig()
        self._clock = clock
        self._items: list[ContextItem] = []

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> list[ContextItem]:
        return list(self._items)

    def add(
        self,
        kind: ContextKind,
        content: str,
        tags: Iterable[str] = (),
        **metadata: Any,
    ) -> ContextItem:
        item = ContextItem(
            kind=kind,
            content=content,
            created_at=self._clock(),
            tags=tuple(tags),
            metadata=metadata,
        )
        self._items.append(item)
        if len(self._items) > self.config.max_items:
            self._trim(self.config.max_items)
        return item

    def relevance_of(self, item: ContextItem) -> float:
        """Current relevance after age decay."""
        hours = max(0.0, self._clock() - item.created_at) / 3600
        return item.relevance * self.config.decay_per_hour ** hours

    def score(self, item: ContextItem, query_words: set[str]) -> float:
        score = self.relevance_of(item)
        if query_words:
            item_words = keywords(item.content) | {tag.lower() for tag in item.tags}
            score += len(query_words & item_words) / len(query_words)
        return score

    def estimate_tokens(self, text: str) -> int:
        return max(1, int(len(text) / self.config.chars_per_token))

    def relevant(self, query: str, max_tokens: int) -> list[ContextItem]:
        """
        Items most relevant to ``query`` that fit in ``max_tokens``.

        Selection stops at the first item that does not fit, so a long
        low-ranked item never displaces shorter higher-ranked ones.
        """
        query_words = keywords(query)
        ranked = sorted(
            enumerate(self._items),
            key=lambda pair: (self.score(pair[1], query_words), pair[0]),
            reverse=True,
        )

        selected: list[ContextItem] = []
        used = 0
        for _, item in ranked:
            tokens = self.estimate_tokens(item.content)
            if used + tokens > max_tokens:
                break
            selected.append(item)
            used += tokens
        return selected

    def summary(self, query: str, max_tokens: int) -> str:
        return "\n".join(f"[{item.kind.value}] {item.content}" for item in self.relevant(query, max_tokens))

    def consolidate(self) -> int:
        """Drop faded items and enforce the size bound. Returns how many were dropped."""
        before = len(self._items)
        self._items = [item for item in self._items if self.relevance_of(item) >= self.config.min_relevance]
        self._trim(self.config.max_items)
        return before - len(self._items)

    def clear(self) -> None:
        self._items.clear()

    def _trim(self, limit: int) -> None:
        if len(self._items) <= limit:
            return
        # Least relevant first out; among equals the oldest goes
        ranked = sorted(
            enumerate(self._items),
            key=lambda pair: (self.relevance_of(pair[1]), pair[0]),
            reverse=True,
        )
        keep = {id(item) for _, item in ranked[:limit]}
        self._items = [item for item in self._items if id(item) in keep]
