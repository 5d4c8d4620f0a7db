"""Parent -> child edges recorded as units import each other."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .types import DependencyEdge

LOGGER = logging.getLogger(__name__)


class DependencyGraph:
    """Bidirectional, deduplicated dependency edges between identities."""

    def __init__(self) -> None:
        self._dependencies: dict[str, list[str]] = {}
        self._dependents: dict[str, list[str]] = {}

    def add_edge(self, parent: str, child: str) -> None:
        if parent == child:
            return
        children = self._dependencies.setdefault(parent, [])
        if child not in children:
            children.append(child)
            LOGGER.debug("Dependency %s -> %s", parent, child)
        parents = self._dependents.setdefault(child, [])
        if parent not in parents:
            parents.append(parent)

    def dependencies(self, identity: str) -> list[str]:
        """Units ``identity`` imported directly."""
        return list(self._dependencies.get(identity, ()))

    def dependents(self, identity: str) -> list[str]:
        """Units that imported ``identity`` directly."""
        return list(self._dependents.get(identity, ()))

    def clear_outgoing(self, identity: str) -> list[str]:
        """Drop ``identity``'s edges to its children and their inverse edges."""

        children = self._dependencies.pop(identity, [])
        for child in children:
            parents = self._dependents.get(child)
            if parents and identity in parents:
                parents.remove(identity)
                if not parents:
                    del self._dependents[child]
        return children

    def traverse_dependencies(self, identity: str) -> list[str]:
        """Transitive dependencies in depth-first preorder, each listed once."""
        return self._traverse(identity, self._dependencies)

    def traverse_dependents(self, identity: str) -> list[str]:
        """Transitive dependents in depth-first preorder, each listed once."""
        return self._traverse(identity, self._dependents)

    def edges(self) -> list[DependencyEdge]:
        return [
            DependencyEdge(parent, child)
            for parent, children in self._dependencies.items()
            for child in children
        ]

    def reset(self) -> None:
        self._dependencies.clear()
        self._dependents.clear()

    def _traverse(self, start: str, adjacency: dict[str, list[str]]) -> list[str]:
        seen = {start}
        order: list[str] = []

        def visit(nodes: Iterable[str]) -> None:
            for node in list(nodes):
                if node in seen:
                    continue
                seen.add(node)
                order.append(node)
                visit(adjacency.get(node, ()))

        visit(adjacency.get(start, ()))
        return order


__all__ = ["DependencyGraph"]
