"""Dependency graph utilities.

Builds the directed package graph of a workspace and provides the
algorithms the planner relies on: cycle detection, topological sorting
for release order, transitive dependents, and the version compatibility
audit. Packages must be released in dependency order so that when package
A depends on package B, B is released first.
"""

from __future__ import annotations

import heapq
from collections.abc import Collection, Iterable, Mapping

from .errors import CyclicDependency
from .models import ALL_KINDS, ORDERING_KINDS, DependencyKind, Edge, VersionConflict
from .versions import satisfies
from .workspace import Workspace


def topo_sort(deps: Mapping[str, Iterable[str]]) -> list[str]:
    """Topologically sort nodes by their dependencies.

    Uses Kahn's algorithm to produce an order where dependencies come
    before dependents. Whenever several nodes are ready, the
    alphabetically smallest goes first, so the output is deterministic.

    Args:
        deps: Map of node → the nodes it depends on. Dependencies that are
              not keys of ``deps`` are ignored.

    Returns:
        List of node names, dependencies first.

    Raises:
        CyclicDependency: If the nodes cannot be fully ordered.

    Example:
        If A depends on B, and B depends on C:
        topo_sort({A: [B], B: [C], C: []}) → [C, B, A]
    """
    # Count incoming edges (dependencies) for each node
    in_degree = {n: 0 for n in deps}
    # Track reverse dependencies (who depends on each node)
    reverse_deps: dict[str, set[str]] = {n: set() for n in deps}

    for name, node_deps in deps.items():
        for dep in set(node_deps):
            if dep in deps and dep != name:
                in_degree[name] += 1
                reverse_deps[dep].add(name)

    ready = [n for n, d in in_degree.items() if d == 0]
    heapq.heapify(ready)
    order: list[str] = []

    while ready:
        node = heapq.heappop(ready)
        order.append(node)
        for dependent in reverse_deps[node]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(order) != len(deps):
        remaining = sorted(set(deps) - set(order))
        raise CyclicDependency(remaining)

    return order


class DependencyGraph:
    """Directed graph over the packages of a workspace.

    An edge ``A → B`` means A depends on B. Only dependencies on other
    workspace packages become edges.
    """

    def __init__(self, workspace: Workspace, edges: Iterable[Edge]) -> None:
        self.workspace = workspace
        self.edges: list[Edge] = sorted(
            edges, key=lambda e: (e.dependent, e.dependency, e.kind.value)
        )
        self._forward: dict[str, list[Edge]] = {n: [] for n in workspace.names}
        self._reverse: dict[str, list[Edge]] = {n: [] for n in workspace.names}
        for edge in self.edges:
            self._forward[edge.dependent].append(edge)
            self._reverse[edge.dependency].append(edge)

    @property
    def nodes(self) -> list[str]:
        return list(self._forward)

    def dependencies(
        self, name: str, kinds: Collection[DependencyKind] = ALL_KINDS
    ) -> set[str]:
        return {e.dependency for e in self._forward[name] if e.kind in kinds}

    def dependents(
        self, name: str, kinds: Collection[DependencyKind] = ALL_KINDS
    ) -> set[str]:
        return {e.dependent for e in self._reverse[name] if e.kind in kinds}

    def has_edge(
        self, dependent: str, dependency: str, kind: DependencyKind | None = None
    ) -> bool:
        return any(
            e.dependency == dependency and (kind is None or e.kind is kind)
            for e in self._forward.get(dependent, [])
        )

    def find_cycle(self, kinds: Collection[DependencyKind] = ORDERING_KINDS) -> list[str] | None:
        """Find one cycle using depth-first search.

        Returns:
            The cycle as a path that starts and ends on the same package
            (e.g. ``["p", "q", "p"]``), or None if the graph is acyclic.
        """
        visiting, done = 1, 2
        state: dict[str, int] = {}

        for start in self.nodes:
            if start in state:
                continue
            path: list[str] = [start]
            state[start] = visiting
            stack = [iter(sorted(self.dependencies(start, kinds)))]
            while stack:
                nxt = next(stack[-1], None)
                if nxt is None:
                    stack.pop()
                    state[path.pop()] = done
                    continue
                mark = state.get(nxt)
                if mark == visiting:
                    return path[path.index(nxt):] + [nxt]
                if mark is None:
                    state[nxt] = visiting
                    path.append(nxt)
                    stack.append(iter(sorted(self.dependencies(nxt, kinds))))
        return None

    def topological_order(self, only: Collection[str] | None = None) -> list[str]:
        """Release order over runtime and peer edges, dependencies first.

        Args:
            only: Restrict the result to these packages. Ordering still
                  honors paths that run through packages outside ``only``.
        """
        order = topo_sort({n: self.dependencies(n, ORDERING_KINDS) for n in self.nodes})
        if only is None:
            return order
        wanted = set(only)
        return [n for n in order if n in wanted]

    def transitive_dependents(
        self, names: Iterable[str], kinds: Collection[DependencyKind] = ALL_KINDS
    ) -> set[str]:
        """Every package that depends, directly or indirectly, on ``names``.

        Fixed-point iteration over reverse edges; membership checks make it
        terminate even when dev edges form cycles. A seed package is only
        included if it is reachable from another seed.
        """
        seeds = [n for n in names if n in self._reverse]
        found: set[str] = set()
        frontier = set(seeds)
        while frontier:
            grown: set[str] = set()
            for node in frontier:
                grown |= self.dependents(node, kinds)
            frontier = grown - found
            found |= grown
        return found

    def audit(
        self,
        versions: Mapping[str, str] | None = None,
        edges: Iterable[Edge] | None = None,
    ) -> list[VersionConflict]:
        """Check every edge's requirement against the dependency's version.

        Peer requirements are also checked on behalf of every transitive
        dependent of the package declaring them, since those dependents end
        up sharing the peer.

        Args:
            versions: Version overrides by package name (e.g. post-bump
                      versions); other packages use their workspace version.
            edges: Edges to audit instead of the graph's own (e.g. with
                   rewritten requirements).
        """
        current = self.workspace.versions()
        if versions:
            current.update(versions)

        conflicts: list[VersionConflict] = []
        seen: set[VersionConflict] = set()
        for edge in self.edges if edges is None else edges:
            actual = current[edge.dependency]
            if satisfies(actual, edge.requirement):
                continue
            found = [
                VersionConflict(
                    dependent=edge.dependent,
                    dependency=edge.dependency,
                    required=edge.requirement,
                    actual=actual,
                    kind=edge.kind,
                )
            ]
            if edge.kind is DependencyKind.PEER:
                for inheritor in sorted(
                    self.transitive_dependents([edge.dependent], ORDERING_KINDS)
                ):
                    found.append(
                        VersionConflict(
                            dependent=inheritor,
                            dependency=edge.dependency,
                            required=edge.requirement,
                            actual=actual,
                            kind=edge.kind,
                            via=edge.dependent,
                        )
                    )
            for conflict in found:
                if conflict not in seen:
                    seen.add(conflict)
                    conflicts.append(conflict)
        return conflicts


def collect_edges(workspace: Workspace) -> list[Edge]:
    """Create an edge for every dependency on another workspace package."""
    edges: list[Edge] = []
    for pkg in workspace:
        for kind in DependencyKind:
            for dep, requirement in pkg.requirements(kind).items():
                if dep in workspace and dep != pkg.name:
                    edges.append(
                        Edge(
                            dependent=pkg.name,
                            dependency=dep,
                            kind=kind,
                            requirement=requirement,
                        )
                    )
    return edges


def build_graph(workspace: Workspace) -> DependencyGraph:
    """Build the dependency graph and reject runtime/peer cycles.

    Raises:
        CyclicDependency: With the offending path, e.g. ``p -> q -> p``.
    """
    graph = DependencyGraph(workspace, collect_edges(workspace))
    cycle = graph.find_cycle()
    if cycle:
        raise CyclicDependency(cycle)
    return graph
