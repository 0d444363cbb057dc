"""Release pipeline: discover → graph → diff → classify → impact → plan → apply.

This module orchestrates the workspace-release components:
1. Discover all packages in the workspace
2. Build the dependency graph (rejecting runtime/peer cycles)
3. Detect which packages changed between two revisions
4. Suggest a bump for each changed package
5. Compute the affected set (changed packages plus their dependents)
6. Load, validate and resolve the pending changesets
7. Plan the release and apply it transactionally

Each phase prints a header and a line per package so CI logs show what
happened. Cancellation is checked between phases.
"""

from __future__ import annotations

import threading
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from .cancellation import checkpoint
from .changes import detect_changes
from .changesets import ChangesetStore
from .config import ReleaseConfig, load_config
from .errors import LockHeldError, ReleaseError, RollbackError
from .graph import DependencyGraph, build_graph
from .impact import analyze_impact
from .models import (
    AffectedSet,
    ChangeReport,
    ChangesetListing,
    PlanResult,
    ReleaseSummary,
    Resolution,
    ValidationResult,
)
from .planner import plan_release
from .resolver import resolve
from .shell import step
from .significance import Classifier, DefaultClassifier, suggest_bumps
from .transaction import ReleaseTransaction
from .vcs import GitVcs, Vcs
from .workspace import Workspace


class AnalysisReport(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    workspace: Workspace
    graph: DependencyGraph
    changes: ChangeReport
    affected: AffectedSet
    classifier: str


class PreparedRelease(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    workspace: Workspace
    graph: DependencyGraph
    store: ChangesetStore
    listing: ChangesetListing
    validation: dict[str, ValidationResult] = Field(default_factory=dict)
    resolution: Resolution | None = None
    result: PlanResult | None = None

    @property
    def input_errors(self) -> list[str]:
        """Malformed files and invalid changesets, one message each."""
        errors = [f"{e.path}: {e.reason}" for e in self.listing.errors]
        for changeset_id, result in self.validation.items():
            errors.extend(f"{changeset_id}: {msg}" for msg in result.errors)
        return errors


class ReleaseOutcome(str, Enum):
    SUCCESS = "success"
    PLANNED_FAILURE = "planned-failure"
    RECOVERED_FAILURE = "runtime-failure-recovered"
    UNRECOVERED_FAILURE = "runtime-failure-unrecovered"

    @property
    def exit_code(self) -> int:
        return {
            ReleaseOutcome.SUCCESS: 0,
            ReleaseOutcome.PLANNED_FAILURE: 1,
            ReleaseOutcome.RECOVERED_FAILURE: 2,
            ReleaseOutcome.UNRECOVERED_FAILURE: 3,
        }[self]


class ReleaseReport(BaseModel):
    outcome: ReleaseOutcome
    summary: ReleaseSummary | None = None
    errors: list[str] = Field(default_factory=list)


def discover_workspace(root: Path) -> tuple[Workspace, DependencyGraph]:
    """Load the workspace and its graph, printing what was found."""
    step("Discovering workspace packages")
    workspace = Workspace.load(root)
    graph = build_graph(workspace)
    for pkg in workspace:
        deps = sorted(graph.dependencies(pkg.name))
        arrow = f" → [{', '.join(deps)}]" if deps else ""
        print(f"  {pkg.name} {pkg.version} ({pkg.path}){arrow}")
    if not len(workspace):
        print("  No packages found")
    return workspace, graph


def analyze_changes(
    root: Path | str,
    from_rev: str,
    to_rev: str,
    *,
    vcs: Vcs | None = None,
    config: ReleaseConfig | None = None,
    classifier: Classifier | None = None,
    cancel: threading.Event | None = None,
) -> AnalysisReport:
    """Work out what changed between two revisions and what it affects.

    Raises:
        WorkspaceError, CyclicDependency: If the workspace cannot be loaded.
        VcsError: If the VCS collaborator fails.
        Cancelled: If ``cancel`` is set between phases.
    """
    root = Path(root)
    config = config or load_config(root)
    vcs = vcs or GitVcs(root)
    classifier = classifier or DefaultClassifier(config.entry_paths, config.doc_patterns)

    checkpoint(cancel, "workspace discovery")
    workspace, graph = discover_workspace(root)

    checkpoint(cancel, "change detection")
    step(f"Detecting changes {from_rev}..{to_rev}")
    report = detect_changes(workspace, vcs, from_rev, to_rev)

    checkpoint(cancel, "significance classification")
    report.packages = suggest_bumps(
        report.packages, classifier, max_workers=config.max_workers
    )
    for change in report.packages:
        print(
            f"  {change.name}: {len(change.file_changes)} file(s), "
            f"suggested {change.suggested_bump.value}"
        )
    if report.unowned:
        print(f"  {len(report.unowned)} file(s) outside any package")

    checkpoint(cancel, "impact analysis")
    step("Computing affected packages")
    affected = analyze_impact(graph, report.changed_names, max_workers=config.max_workers)
    for name in sorted(affected.transitive):
        print(f"  {name}: affected (depends on a changed package)")
    print(f"  {affected.total_unique} package(s) affected")

    return AnalysisReport(
        workspace=workspace,
        graph=graph,
        changes=report,
        affected=affected,
        classifier=classifier.name,
    )


def prepare_release(
    root: Path | str,
    *,
    config: ReleaseConfig | None = None,
    cancel: threading.Event | None = None,
) -> PreparedRelease:
    """Load, validate and resolve changesets, then plan the release.

    Planning only happens when every changeset file loaded and validated;
    otherwise ``result`` stays None and ``input_errors`` says why.
    """
    root = Path(root)
    config = config or load_config(root)

    checkpoint(cancel, "workspace discovery")
    workspace, graph = discover_workspace(root)

    checkpoint(cancel, "changeset loading")
    step("Loading changesets")
    store = ChangesetStore(root / config.changeset_dir, config.environments)
    listing = store.list_changesets()
    prepared = PreparedRelease(workspace=workspace, graph=graph, store=store, listing=listing)

    for cs in listing.changesets:
        result = store.validate(cs, workspace)
        prepared.validation[cs.id] = result
        status = "ok" if result.valid else "invalid"
        print(f"  {cs.id}: {cs.package} {cs.version_bump.value} ({status})")
        for warning in result.warnings:
            print(f"    warning: {warning}")
    for error in listing.errors:
        print(f"  {error.path}: malformed")
    if not listing.changesets and not listing.errors:
        print("  No pending changesets")

    if prepared.input_errors:
        return prepared

    checkpoint(cancel, "conflict resolution")
    prepared.resolution = resolve(listing.changesets)
    for conflict in prepared.resolution.conflicts:
        print(
            f"  {conflict.package}: {conflict.field} disagrees "
            f"({', '.join(conflict.values)}), using {conflict.resolved}"
        )

    checkpoint(cancel, "planning")
    step("Planning release")
    prepared.result = plan_release(graph, prepared.resolution.changesets, config)
    if prepared.result.plan is not None:
        for plan_step in prepared.result.plan.steps:
            print(
                f"  {plan_step.package}: {plan_step.from_version} → "
                f"{plan_step.to_version} ({plan_step.reason})"
            )
        if prepared.result.plan.is_empty:
            print("  Nothing to release")
    else:
        for error in prepared.result.errors:
            print(f"  {error.code}: {error.message}")
    return prepared


def run_release(
    root: Path | str,
    *,
    config: ReleaseConfig | None = None,
    vcs_ref: str | None = None,
    dry_run: bool = False,
    cancel: threading.Event | None = None,
) -> ReleaseReport:
    """Execute the full release: plan, then apply it in a transaction.

    Returns:
        ReleaseReport whose ``outcome`` is one of the four exit conditions:
        success, planned failure (nothing written), recovered failure
        (writes rolled back) or unrecovered failure (rollback failed, the
        lock file is left in place).
    """
    prepared = prepare_release(root, config=config, cancel=cancel)

    if prepared.result is None:
        return ReleaseReport(
            outcome=ReleaseOutcome.PLANNED_FAILURE, errors=prepared.input_errors
        )
    if prepared.result.plan is None:
        return ReleaseReport(
            outcome=ReleaseOutcome.PLANNED_FAILURE,
            errors=[e.message for e in prepared.result.errors],
        )

    plan = prepared.result.plan
    if dry_run or plan.is_empty:
        return ReleaseReport(outcome=ReleaseOutcome.SUCCESS)

    step(f"Applying {len(plan.steps)} version bump(s)")
    transaction = ReleaseTransaction(
        prepared.workspace, plan, prepared.store, vcs_ref=vcs_ref, cancel=cancel
    )
    try:
        summary = transaction.run()
    except LockHeldError as exc:
        # Nothing was written
        return ReleaseReport(outcome=ReleaseOutcome.PLANNED_FAILURE, errors=[str(exc)])
    except RollbackError as exc:
        return ReleaseReport(outcome=ReleaseOutcome.UNRECOVERED_FAILURE, errors=[str(exc)])
    except ReleaseError as exc:
        return ReleaseReport(outcome=ReleaseOutcome.RECOVERED_FAILURE, errors=[str(exc)])

    for name, bump in summary.bumps.items():
        print(f"  {name}: {bump.old} → {bump.new}")
    print(f"  Archived {len(summary.archived_changesets)} changeset(s)")
    print(f"\n{'=' * 60}\nDone!\n{'=' * 60}")
    return ReleaseReport(outcome=ReleaseOutcome.SUCCESS, summary=summary)
