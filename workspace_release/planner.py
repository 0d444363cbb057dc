"""Release planning.

Turns resolved changesets into an ordered, validated list of version
bumps:

1. Seed the plan with every package named by a changeset.
2. If enabled, release the dependents of every major bump: patch, or
   minor when the dependent declares a peer dependency on it. Dev
   dependents join only with ``propagate_dev_dependencies``, and a bare
   ``workspace:*`` requirement never pulls its dependent in.
3. Compute each target version.
4. Order the steps by the runtime+peer topological order.
5. Audit the post-bump versions and rewritten requirements.

The planner only reads. Manifests are written by ``transaction``.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable

from .config import ReleaseConfig
from .graph import DependencyGraph
from .models import (
    ALL_KINDS,
    ORDERING_KINDS,
    BumpLevel,
    Changeset,
    DependencyKind,
    Edge,
    PlanError,
    PlanResult,
    PlanStep,
    ReleasePlan,
)
from .versions import apply_bump, is_workspace_marker, rewrite_requirement


def propagation_edges(
    graph: DependencyGraph, name: str, kinds: Collection[DependencyKind]
) -> list[Edge]:
    """Edges that carry a release of ``name`` on to its dependents.

    Requirements written as a bare workspace marker (``workspace:*``)
    follow the workspace copy and never force a release.
    """
    return [
        e
        for e in graph.edges
        if e.dependency == name and e.kind in kinds and not is_workspace_marker(e.requirement)
    ]


def reachable_dependents(
    graph: DependencyGraph, name: str, kinds: Collection[DependencyKind]
) -> set[str]:
    found: set[str] = set()
    frontier = [name]
    while frontier:
        node = frontier.pop()
        for edge in propagation_edges(graph, node, kinds):
            if edge.dependent not in found and edge.dependent != name:
                found.add(edge.dependent)
                frontier.append(edge.dependent)
    return found


def propagate_majors(
    graph: DependencyGraph,
    levels: dict[str, BumpLevel],
    reasons: dict[str, str],
    kinds: Collection[DependencyKind] = ORDERING_KINDS,
) -> None:
    """Add the dependents of every major bump to ``levels``, in place.

    Packages already planned keep their level. A dependent reached from
    several majors gets the strongest of the candidate levels.

    Args:
        graph: Dependency graph of the workspace.
        levels: Planned bump level by package name.
        reasons: Plan reason by package name.
        kinds: Edge kinds a major bump travels along. Pass ``ALL_KINDS``
            to also release development dependents.
    """
    candidates: dict[str, BumpLevel] = {}
    sources: dict[str, str] = {}
    for name in sorted(levels):
        if levels[name] is not BumpLevel.MAJOR:
            continue
        for dependent in sorted(reachable_dependents(graph, name, kinds)):
            if dependent in levels:
                continue
            level = (
                BumpLevel.MINOR
                if graph.has_edge(dependent, name, DependencyKind.PEER)
                else BumpLevel.PATCH
            )
            if dependent not in candidates or level.rank > candidates[dependent].rank:
                candidates[dependent] = level
                sources[dependent] = name

    for dependent, level in candidates.items():
        levels[dependent] = level
        reasons[dependent] = f"dependency {sources[dependent]} has a major bump"


def rewritten_edges(graph: DependencyGraph, new_versions: dict[str, str]) -> list[Edge]:
    """Edges as they will read after the plan's manifests are rewritten.

    Only manifests of planned packages are rewritten, and only their
    requirements on other planned packages change.
    """
    edges: list[Edge] = []
    for edge in graph.edges:
        if edge.dependent in new_versions and edge.dependency in new_versions:
            edge = edge.model_copy(
                update={
                    "requirement": rewrite_requirement(
                        edge.requirement, new_versions[edge.dependency]
                    )
                }
            )
        edges.append(edge)
    return edges


def plan_release(
    graph: DependencyGraph,
    changesets: Iterable[Changeset],
    config: ReleaseConfig | None = None,
) -> PlanResult:
    """Build a release plan from resolved changesets.

    Args:
        graph: Dependency graph of the workspace to release.
        changesets: Resolved changesets, at most one per package.
        config: Propagation and pre-release settings.

    Returns:
        PlanResult holding either the plan or every error found.
    """
    config = config or ReleaseConfig()
    workspace = graph.workspace
    errors: list[PlanError] = []

    levels: dict[str, BumpLevel] = {}
    reasons: dict[str, str] = {}
    consumed: list[str] = []
    for cs in changesets:
        consumed.extend(cs.provenance or [cs.id])
        if cs.package not in workspace:
            errors.append(
                PlanError(
                    code="unknown-package",
                    message=f"Changeset {cs.id!r} targets unknown package {cs.package!r}",
                    package=cs.package,
                )
            )
            continue
        if cs.package in levels:
            errors.append(
                PlanError(
                    code="unresolved-changesets",
                    message=f"Package {cs.package!r} has more than one changeset; resolve first",
                    package=cs.package,
                )
            )
            continue
        levels[cs.package] = cs.version_bump
        reasons[cs.package] = cs.description.splitlines()[0] if cs.description.strip() else cs.id

    if config.propagate_major:
        kinds = ALL_KINDS if config.propagate_dev_dependencies else ORDERING_KINDS
        propagate_majors(graph, levels, reasons, kinds)

    new_versions: dict[str, str] = {}
    for name, level in levels.items():
        try:
            new_versions[name] = apply_bump(
                workspace.packages[name].version, level, config.prerelease
            )
        except ValueError as exc:
            errors.append(PlanError(code="invalid-version", message=str(exc), package=name))

    for conflict in graph.audit(new_versions, rewritten_edges(graph, new_versions)):
        errors.append(
            PlanError(
                code="version-conflict",
                message=str(conflict),
                package=conflict.dependent,
                conflict=conflict,
            )
        )

    if errors:
        return PlanResult(errors=errors)

    steps = [
        PlanStep(
            package=name,
            from_version=workspace.packages[name].version,
            to_version=new_versions[name],
            level=levels[name],
            reason=reasons[name],
        )
        for name in graph.topological_order(only=levels)
    ]
    return PlanResult(plan=ReleasePlan(steps=steps, changeset_ids=sorted(set(consumed))))
