"""Dependency graph utilities."""

from __future__ import annotations

from typing import TYPE_CHECKING

from cloud_provisioner.engine.errors import DependencyCycleError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class DependencyGraph:
    """A directed graph where nodes depend on other nodes.

    An edge ``a -> b`` means *a* depends on *b*: *b* must be handled first.
    Dependencies on nodes outside the graph are ignored.
    """

    def __init__(
        self,
        nodes: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
        priorities: Mapping[str, int] | None = None,
    ) -> None:
        self._nodes = set(nodes)
        self._priorities = priorities or {}
        # node -> filtered deps within graph
        self._deps: dict[str, set[str]] = {}
        for node in self._nodes:
            deps = set(dependencies.get(node, []))
            self._deps[node] = {d for d in deps if d in self._nodes}

    @property
    def nodes(self) -> frozenset[str]:
        return frozenset(self._nodes)

    def dependencies_of(self, node: str) -> frozenset[str]:
        return frozenset(self._deps[node])

    def edges(self) -> list[tuple[str, str]]:
        """All ``(dependent, dependency)`` pairs, sorted."""
        return sorted((node, dep) for node, deps in self._deps.items() for dep in deps)

    def _sort_key(self, node: str) -> tuple[int, str]:
        return (self._priorities.get(node, 0), node)

    def find_cycle(self) -> list[str] | None:
        """Return one cycle as ``[a, b, ..., a]`` (each depends on the next), or ``None``."""
        visiting: set[str] = set()
        done: set[str] = set()
        stack: list[str] = []

        def visit(node: str) -> list[str] | None:
            visiting.add(node)
            stack.append(node)
            for dep in sorted(self._deps[node]):
                if dep in visiting:
                    return [*stack[stack.index(dep) :], dep]
                if dep not in done:
                    found = visit(dep)
                    if found is not None:
                        return found
            visiting.discard(node)
            done.add(node)
            stack.pop()
            return None

        for node in sorted(self._nodes):
            if node not in done:
                found = visit(node)
                if found is not None:
                    return found
        return None

    def topological_batches(self) -> list[list[str]]:
        """Group nodes into ordered batches with no edges inside a batch.

        Batch *i* holds every node whose dependencies all sit in batches
        ``< i``. Within a batch, order is by priority then name.
        """
        cycle = self.find_cycle()
        if cycle is not None:
            raise DependencyCycleError(cycle)

        indegree: dict[str, int] = {n: len(deps) for n, deps in self._deps.items()}
        dependents: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node, deps in self._deps.items():
            for dep in deps:
                dependents[dep].add(node)

        batches: list[list[str]] = []
        ready = sorted((n for n, deg in indegree.items() if deg == 0), key=self._sort_key)
        while ready:
            batches.append(ready)
            next_ready: list[str] = []
            for node in ready:
                for child in dependents[node]:
                    indegree[child] -= 1
                    if indegree[child] == 0:
                        next_ready.append(child)
            ready = sorted(next_ready, key=self._sort_key)
        return batches

    def topological_order(self) -> list[str]:
        """Deterministic topo order: batches flattened."""
        return [node for batch in self.topological_batches() for node in batch]

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order
