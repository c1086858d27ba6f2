"""Orchestration layer — Dependency graph builder.

Validates a set of :class:`UnitSpec` definitions and compiles them into an
immutable :class:`DependencyGraph` backed by a NetworkX DiGraph.

Edges point from a dependency to its dependent (``db -> api`` when ``api``
depends on ``db``), so ``successors`` are dependents and ``predecessors``
are dependencies, as in any build graph.

Validation order (the first violation is raised):
    1. DuplicateUnitError
    2. UnknownDependencyError
    3. UnsatisfiableConditionError
    4. CyclicDependencyError
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from enum import IntEnum

import networkx as nx

from stackup.exceptions import (
    CyclicDependencyError,
    DuplicateUnitError,
    UnknownDependencyError,
    UnsatisfiableConditionError,
)
from stackup.protocol.models import Condition, DependencySpec, PlanSpec, UnitSpec


class _Mark(IntEnum):
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


class DependencyGraph:
    """Immutable, validated dependency graph.

    Do not construct directly — use :class:`GraphBuilder`.
    """

    def __init__(self, units: Sequence[UnitSpec], graph: nx.DiGraph) -> None:
        self._units: dict[str, UnitSpec] = {u.name: u for u in units}
        self._graph = nx.freeze(graph)
        self._rank: dict[str, int] = {}
        for rank, generation in enumerate(nx.topological_generations(self._graph)):
            for name in generation:
                self._rank[name] = rank
        self._order = sorted(self._units, key=self._sort_key)

    def _sort_key(self, name: str) -> tuple[int, str]:
        return (self._rank[name], name)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, name: object) -> bool:
        return name in self._units

    def __iter__(self) -> Iterator[str]:
        return iter(self._order)

    @property
    def names(self) -> list[str]:
        """Unit names in declaration order."""
        return list(self._units)

    def unit(self, name: str) -> UnitSpec:
        return self._units[name]

    def rank(self, name: str) -> int:
        """Topological rank: 0 for dependency-free units, else 1 + max(rank(dependency))."""
        return self._rank[name]

    def dependencies(self, name: str) -> list[DependencySpec]:
        """Direct dependencies of *name* with their conditions, in declaration order."""
        return list(self._units[name].dependencies)

    def dependents(self, name: str) -> list[str]:
        """Units that depend directly on *name*, ordered by rank then name."""
        return self.ordered(self._graph.successors(name))

    def descendants(self, name: str) -> set[str]:
        """All transitive dependents of *name*."""
        return nx.descendants(self._graph, name)

    def edge(self, dependent: str, target: str) -> DependencySpec:
        """Return the dependency spec for the edge ``target -> dependent``."""
        dep = self._units[dependent].dependency_on(target)
        if dep is None:
            raise KeyError(f"{dependent!r} does not depend on {target!r}")
        return dep

    def topological_order(self) -> list[str]:
        """All unit names ordered by ascending rank, then name."""
        return list(self._order)

    def ordered(self, names: Iterable[str]) -> list[str]:
        """Sort *names* deterministically by ascending rank, then name."""
        return sorted(names, key=self._sort_key)


class GraphBuilder:
    """Pure validation + compilation of unit definitions.

    Usage::

        graph = GraphBuilder().build(plan.units)
        for name in graph.topological_order():
            ...
    """

    def build(self, units: Sequence[UnitSpec] | PlanSpec) -> DependencyGraph:
        if isinstance(units, PlanSpec):
            units = units.units

        by_name = self._index(units)
        self._check_targets(units, by_name)
        self._check_conditions(units, by_name)
        self._check_cycles(units)

        graph: nx.DiGraph = nx.DiGraph()
        for unit in units:
            graph.add_node(unit.name)
        for unit in units:
            for dep in unit.dependencies:
                graph.add_edge(dep.target, unit.name)
        return DependencyGraph(units, graph)

    @staticmethod
    def _index(units: Sequence[UnitSpec]) -> dict[str, UnitSpec]:
        by_name: dict[str, UnitSpec] = {}
        for unit in units:
            if unit.name in by_name:
                raise DuplicateUnitError(unit.name)
            by_name[unit.name] = unit
        return by_name

    @staticmethod
    def _check_targets(units: Sequence[UnitSpec], by_name: dict[str, UnitSpec]) -> None:
        for unit in units:
            for dep in unit.dependencies:
                if dep.target not in by_name:
                    raise UnknownDependencyError(unit.name, dep.target)

    @staticmethod
    def _check_conditions(units: Sequence[UnitSpec], by_name: dict[str, UnitSpec]) -> None:
        for unit in units:
            for dep in unit.dependencies:
                if dep.condition == Condition.HEALTHY and not by_name[dep.target].has_health_check:
                    raise UnsatisfiableConditionError(unit.name, dep.target, dep.condition.value)

    @staticmethod
    def _check_cycles(units: Sequence[UnitSpec]) -> None:
        """Three-colour depth-first search along dependency edges.

        Iterative so that long dependency chains cannot hit the recursion
        limit.  A back edge to an IN_PROGRESS unit closes a cycle; the
        reported path starts and ends with that unit.
        """
        targets = {u.name: [d.target for d in u.dependencies] for u in units}
        marks = {name: _Mark.UNVISITED for name in targets}

        for root in targets:
            if marks[root] is not _Mark.UNVISITED:
                continue
            path: list[str] = [root]
            stack: list[Iterator[str]] = [iter(targets[root])]
            marks[root] = _Mark.IN_PROGRESS
            while stack:
                nxt = next(stack[-1], None)
                if nxt is None:
                    marks[path.pop()] = _Mark.DONE
                    stack.pop()
                    continue
                if marks[nxt] is _Mark.IN_PROGRESS:
                    raise CyclicDependencyError(path[path.index(nxt):] + [nxt])
                if marks[nxt] is _Mark.UNVISITED:
                    marks[nxt] = _Mark.IN_PROGRESS
                    path.append(nxt)
                    stack.append(iter(targets[nxt]))
