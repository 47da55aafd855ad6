"""
Dependency Graph Algorithms

Pure functions over a task graph given as node ids plus (from, to) edges,
where an edge means "to cannot start before from completes".

Design decisions:
- Cycles are detected and reported, never silently dropped
- Ordering is stable: among tasks that are ready at the same time, the one
  that came first in the input keeps its place
- The critical path is a longest-path dynamic program over the topological
  order, linear in nodes plus edges
"""

import heapq
from collections.abc import Iterable, Mapping, Sequence

from taskpilot.core.exceptions import DependencyCycleError

Edge = tuple[str, str]


def _adjacency(nodes: Sequence[str], edges: Iterable[Edge]) -> dict[str, list[str]]:
    adjacency: dict[str, list[str]] = {node: [] for node in nodes}
    for source, target in edges:
        if source in adjacency and target in adjacency and target not in adjacency[source]:
            adjacency[source].append(target)
    return adjacency


def find_cycle(nodes: Sequence[str], edges: Iterable[Edge]) -> list[str] | None:
    """
    Return one cycle as a closed path (first node repeated at the end),
    or None if the graph is acyclic.

    Edges that mention unknown nodes are ignored.
    """
    adjacency = _adjacency(nodes, edges)
    visiting, done = set(), set()
    path: list[str] = []

    for start in nodes:
        if start in done:
            continue

        # Iterative DFS: stack of (node, index of next child to visit)
        stack: list[tuple[str, int]] = [(start, 0)]
        visiting.add(start)
        path.append(start)

        while stack:
            node, child_index = stack[-1]
            children = adjacency[node]

            if child_index < len(children):
                stack[-1] = (node, child_index + 1)
                child = children[child_index]
                if child in visiting:
                    return path[path.index(child):] + [child]
                if child not in done:
                    visiting.add(child)
                    path.append(child)
                    stack.append((child, 0))
            else:
                stack.pop()
                path.pop()
                visiting.discard(node)
                done.add(node)

    return None


def topological_sort(nodes: Sequence[str], edges: Iterable[Edge]) -> list[str]:
    """
    Order nodes so that every edge's source precedes its target (Kahn).

    Raises:
        DependencyCycleError: If some nodes never reach in-degree zero
    """
    edges = list(edges)
    adjacency = _adjacency(nodes, edges)
    position = {node: index for index, node in enumerate(nodes)}

    in_degree = {node: 0 for node in nodes}
    for children in adjacency.values():
        for child in children:
            in_degree[child] += 1

    ready = [position[node] for node in nodes if in_degree[node] == 0]
    heapq.heapify(ready)
    order: list[str] = []

    while ready:
        node = nodes[heapq.heappop(ready)]
        order.append(node)
        for child in adjacency[node]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                heapq.heappush(ready, position[child])

    if len(order) < len(nodes):
        raise DependencyCycleError(find_cycle(nodes, edges) or [n for n in nodes if n not in order])

    return order


def critical_path(
    durations: Mapping[str, float],
    edges: Iterable[Edge],
    order: Sequence[str] | None = None,
) -> list[str]:
    """
    The chain of tasks with the greatest cumulative duration.

    ``durations`` defines the nodes. ``order`` may pass an existing
    topological order to avoid recomputing it. Ties keep the earliest
    predecessor in topological order.
    """
    nodes = list(durations)
    if not nodes:
        return []

    edges = list(edges)
    order = list(order) if order is not None else topological_sort(nodes, edges)

    predecessors: dict[str, list[str]] = {node: [] for node in nodes}
    for source, target in _adjacency(nodes, edges).items():
        for child in target:
            predecessors[child].append(source)

    rank = {node: index for index, node in enumerate(order)}
    best: dict[str, float] = {}
    previous: dict[str, str | None] = {}

    for node in order:
        best_pred: str | None = None
        for pred in sorted(predecessors[node], key=rank.__getitem__):
            if best_pred is None or best[pred] > best[best_pred]:
                best_pred = pred
        best[node] = durations[node] + (best[best_pred] if best_pred is not None else 0)
        previous[node] = best_pred

    end = order[0]
    for node in order:
        if best[node] > best[end]:
            end = node

    path: list[str] = []
    current: str | None = end
    while current is not None:
        path.append(current)
        current = previous[current]
    return list(reversed(path))
