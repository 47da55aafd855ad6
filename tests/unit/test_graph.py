"""
Unit Tests - Dependency Graph

Tests for cycle detection, topological ordering and critical path search.
"""

import pytest

from taskpilot.core.exceptions import DependencyCycleError
from taskpilot.planning.graph import critical_path, find_cycle, topological_sort


def assert_respects_edges(order, edges):
    position = {node: index for index, node in enumerate(order)}
    for source, target in edges:
        assert position[source] < position[target], f"{source} must precede {target}"


class TestFindCycle:
    """Tests for find_cycle."""

    def test_acyclic_graph(self):
        """Test an acyclic graph has no cycle."""
        assert find_cycle(["a", "b", "c"], [("a", "b"), ("b", "c"), ("a", "c")]) is None

    def test_reports_closed_path(self):
        """Test a cycle is returned with its first node repeated."""
        cycle = find_cycle(["a", "b", "c"], [("a", "b"), ("b", "c"), ("c", "a")])

        assert cycle is not None
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}

    def test_two_node_cycle(self):
        """Test a mutual dependency is a cycle."""
        assert find_cycle(["a", "b"], [("a", "b"), ("b", "a")]) == ["a", "b", "a"]

    def test_ignores_unknown_nodes(self):
        """Test edges naming unknown nodes are ignored."""
        assert find_cycle(["a"], [("a", "ghost"), ("ghost", "a")]) is None


class TestTopologicalSort:
    """Tests for topological_sort."""

    def test_orders_dependencies_first(self):
        """Test every edge source precedes its target."""
        nodes = ["report", "collect", "clean", "analyze"]
        edges = [("collect", "clean"), ("clean", "analyze"), ("analyze", "report")]

        order = topological_sort(nodes, edges)

        assert order == ["collect", "clean", "analyze", "report"]
        assert_respects_edges(order, edges)

    def test_independent_nodes_keep_input_order(self):
        """Test ordering is stable for unrelated tasks."""
        assert topological_sort(["c", "a", "b"], []) == ["c", "a", "b"]

    def test_diamond(self):
        """Test a diamond keeps both branches between its ends."""
        edges = [("start", "left"), ("start", "right"), ("left", "end"), ("right", "end")]

        order = topological_sort(["end", "right", "left", "start"], edges)

        assert order[0] == "start"
        assert order[-1] == "end"
        assert_respects_edges(order, edges)

    def test_cycle_raises(self):
        """Test a cycle raises DependencyCycleError naming the cycle."""
        with pytest.raises(DependencyCycleError) as exc_info:
            topological_sort(["a", "b", "c"], [("a", "b"), ("b", "a")])

        assert exc_info.value.cycle == ["a", "b", "a"]
        assert exc_info.value.code == "DEPENDENCY_CYCLE"


class TestCriticalPath:
    """Tests for critical_path."""

    def test_empty_graph(self):
        """Test no nodes gives no path."""
        assert critical_path({}, []) == []

    def test_single_chain(self):
        """Test a chain is its own critical path."""
        durations = {"a": 10, "b": 20, "c": 30}

        assert critical_path(durations, [("a", "b"), ("b", "c")]) == ["a", "b", "c"]

    def test_picks_longest_branch(self):
        """Test the branch with the largest total duration wins."""
        durations = {"start": 10, "fast": 5, "slow": 100, "end": 10}
        edges = [("start", "fast"), ("start", "slow"), ("fast", "end"), ("slow", "end")]

        assert critical_path(durations, edges) == ["start", "slow", "end"]

    def test_independent_tasks(self):
        """Test the single longest task wins when nothing depends on anything."""
        assert critical_path({"a": 30, "b": 90, "c": 60}, []) == ["b"]

    def test_ties_keep_earliest(self):
        """Test equal-length paths resolve to the earliest node."""
        assert critical_path({"a": 60, "b": 60}, []) == ["a"]

    def test_uses_given_order(self):
        """Test a precomputed order is accepted."""
        durations = {"a": 1, "b": 2}
        edges = [("a", "b")]

        assert critical_path(durations, edges, order=["a", "b"]) == ["a", "b"]
