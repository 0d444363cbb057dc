"""Impact analysis: which packages a change reaches.

Dependents are computed per changed package on a thread pool and merged
with set union, so neither scheduling nor input order affects the result.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from concurrent.futures import ThreadPoolExecutor

from .graph import DependencyGraph
from .models import ALL_KINDS, AffectedSet, DependencyKind


def analyze_impact(
    graph: DependencyGraph,
    changed: Iterable[str],
    *,
    kinds: Collection[DependencyKind] = ALL_KINDS,
    max_workers: int = 1,
) -> AffectedSet:
    """Compute the affected set for a collection of changed packages.

    Args:
        graph: Dependency graph of the workspace.
        changed: Names of directly changed packages. Names that are not in
                 the workspace are ignored.
        kinds: Edge kinds to follow when collecting dependents.
        max_workers: Threads to spread the per-package walks over.

    Returns:
        AffectedSet whose ``transitive`` excludes the directly changed
        packages, so ``total_unique`` counts each package once.
    """
    known = set(graph.nodes)
    directly = frozenset(name for name in changed if name in known)

    def walk(name: str) -> set[str]:
        return graph.transitive_dependents([name], kinds)

    reached: set[str] = set()
    if max_workers > 1 and len(directly) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            for found in pool.map(walk, sorted(directly)):
                reached |= found
    else:
        for name in sorted(directly):
            reached |= walk(name)

    return AffectedSet(directly=directly, transitive=frozenset(reached - directly))
