from __future__ import annotations

from tessera.graph import DependencyGraph
from tessera.types import DependencyEdge


def test_edges_are_deduplicated_in_both_directions():
    graph = DependencyGraph()

    graph.add_edge("a", "b")
    graph.add_edge("a", "b")
    graph.add_edge("c", "b")

    assert graph.dependencies("a") == ["b"]
    assert graph.dependents("b") == ["a", "c"]
    assert graph.edges() == [DependencyEdge("a", "b"), DependencyEdge("c", "b")]


def test_self_edges_are_ignored():
    graph = DependencyGraph()

    graph.add_edge("a", "a")

    assert graph.edges() == []


def test_clear_outgoing_removes_inverse_edges():
    graph = DependencyGraph()
    graph.add_edge("a", "b")
    graph.add_edge("a", "c")
    graph.add_edge("d", "c")

    removed = graph.clear_outgoing("a")

    assert removed == ["b", "c"]
    assert graph.dependencies("a") == []
    assert graph.dependents("b") == []
    assert graph.dependents("c") == ["d"]


def test_traversal_visits_each_identity_once_even_with_cycles():
    graph = DependencyGraph()
    graph.add_edge("a", "b")
    graph.add_edge("b", "c")
    graph.add_edge("c", "a")
    graph.add_edge("a", "d")

    assert graph.traverse_dependencies("a") == ["b", "c", "d"]
    assert graph.traverse_dependents("a") == ["c", "b"]


def test_reset_forgets_everything():
    graph = DependencyGraph()
    graph.add_edge("a", "b")

    graph.reset()

    assert graph.dependencies("a") == []
    assert graph.dependents("b") == []
