"""CLI entry point for workspace-release."""

from __future__ import annotations

import argparse
import sys
from datetime import datetime
from importlib.metadata import version as pkg_version
from pathlib import Path

from workspace_release.changesets import ChangesetStore, new_changeset_id, parse_timestamp
from workspace_release.config import load_config
from workspace_release.errors import ChangesetNotFound, ReleaseError
from workspace_release.models import BumpLevel, Changeset
from workspace_release.pipeline import (
    analyze_changes,
    discover_workspace,
    prepare_release,
    run_release,
)
from workspace_release.shell import fatal
from workspace_release.vcs import GitVcs
from workspace_release.workspace import Workspace

__version__ = pkg_version("workspace-release")


def _store(root: Path) -> ChangesetStore:
    config = load_config(root)
    return ChangesetStore(root / config.changeset_dir, config.environments)


def cmd_graph(args: argparse.Namespace) -> None:
    """Print the release order of the workspace."""
    _, graph = discover_workspace(args.root)
    print()
    for index, name in enumerate(graph.topological_order(), start=1):
        print(f"{index:>3}. {name}")


def cmd_changes(args: argparse.Namespace) -> None:
    """Show which packages changed between two revisions."""
    report = analyze_changes(args.root, args.from_rev, args.to_rev)
    affected = report.affected
    print()
    print(f"Directly changed: {', '.join(sorted(affected.directly)) or '<none>'}")
    print(f"Dependents:       {', '.join(sorted(affected.transitive)) or '<none>'}")
    print(f"Total affected:   {affected.total_unique}")


def cmd_plan(args: argparse.Namespace) -> None:
    """Print the release plan without writing anything."""
    prepared = prepare_release(args.root)
    if prepared.input_errors or prepared.result is None:
        fatal("Invalid changesets:\n" + "\n".join(f"  - {e}" for e in prepared.input_errors))
    if not prepared.result.ok:
        fatal(
            "Release plan has errors:\n"
            + "\n".join(f"  - {e.message}" for e in prepared.result.errors)
        )


def cmd_release(args: argparse.Namespace) -> None:
    """Plan the release and apply it to the workspace manifests."""
    vcs_ref = None if args.dry_run else GitVcs(args.root).current_ref()
    report = run_release(args.root, vcs_ref=vcs_ref, dry_run=args.dry_run)
    if report.errors:
        fatal(
            f"Release {report.outcome.value}:\n"
            + "\n".join(f"  - {e}" for e in report.errors),
            report.outcome.exit_code,
        )


def cmd_changeset_add(args: argparse.Namespace) -> None:
    """Create a new changeset file."""
    workspace = Workspace.load(args.root)
    store = _store(args.root)
    changeset = Changeset(
        id=args.id or new_changeset_id(args.package),
        package=args.package,
        version_bump=args.bump,
        description=args.message,
        author=args.author,
        environments=args.env or [],
        production_deployment=args.production,
    )
    result = store.validate(changeset, workspace)
    for warning in result.warnings:
        print(f"  warning: {warning}")
    if not result.valid:
        fatal("Invalid changeset:\n" + "\n".join(f"  - {e}" for e in result.errors))
    changeset = store.create(changeset)
    print(f"✓ Wrote {store.path_for(changeset.id)}")


def cmd_changeset_list(args: argparse.Namespace) -> None:
    """List pending changesets."""
    listing = _store(args.root).list_changesets()
    for cs in listing.changesets:
        envs = ",".join(cs.environments) or "-"
        print(f"{cs.id}  {cs.package}  {cs.version_bump.value}  [{envs}]  {cs.description}")
    for error in listing.errors:
        print(f"{error.path}: {error.reason}", file=sys.stderr)
    if listing.errors:
        sys.exit(1)


def cmd_changeset_validate(args: argparse.Namespace) -> None:
    """Validate every pending changeset."""
    workspace = Workspace.load(args.root)
    store = _store(args.root)
    listing = store.list_changesets()
    failed = bool(listing.errors)
    for error in listing.errors:
        print(f"✗ {error.path}: {error.reason}")
    for cs in listing.changesets:
        result = store.validate(cs, workspace)
        print(f"{'✓' if result.valid else '✗'} {cs.id}")
        for msg in result.errors:
            print(f"    error: {msg}")
        for msg in result.warnings:
            print(f"    warning: {msg}")
        failed = failed or not result.valid
    if failed:
        sys.exit(1)


def cmd_changeset_remove(args: argparse.Namespace) -> None:
    """Delete a pending changeset."""
    _store(args.root).remove(args.id)
    print(f"✓ Removed {args.id}")


def cmd_changeset_show(args: argparse.Namespace) -> None:
    """Show one changeset, pending or archived."""
    store = _store(args.root)
    released = None
    try:
        cs = store.get(args.id)
        status = "pending"
    except ChangesetNotFound:
        released = store.get_archived(args.id)
        cs = released.changeset
        status = "released"

    print(f"Changeset:    {cs.id}")
    print(f"Status:       {status}")
    print(f"Package:      {cs.package}")
    print(f"Bump:         {cs.version_bump.value}")
    print(f"Environments: {', '.join(cs.environments) or '-'}")
    print(f"Production:   {'yes' if cs.production_deployment else 'no'}")
    if cs.author:
        print(f"Author:       {cs.author}")
    if cs.timestamp:
        print(f"Created:      {cs.timestamp}")
    if released is not None and released.released_at:
        print(f"Released:     {released.released_at}")
        if released.vcs_ref:
            print(f"Commit:       {released.vcs_ref}")
        if released.version:
            print(f"Version:      {released.version.old} → {released.version.new}")
    print()
    print(cs.description)


def _timestamp(value: str) -> datetime:
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 date: {value!r}") from exc


def cmd_changeset_history(args: argparse.Namespace) -> None:
    """List archived changesets, newest release first."""
    history = _store(args.root).history(
        package=args.package,
        environment=args.env,
        bump=BumpLevel(args.bump) if args.bump else None,
        since=args.since,
        until=args.until,
        limit=args.limit,
    )
    for entry in history.entries:
        cs = entry.changeset
        released = entry.released_at or "-"
        print(f"{released}  {cs.id}  {cs.package}  {cs.version_bump.value}  {cs.description}")
    if not history.entries:
        print("No archived changesets.")
    for error in history.errors:
        print(f"{error.path}: {error.reason}", file=sys.stderr)
    if history.errors:
        sys.exit(1)


def cli(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="workspace-release",
        description="Plan and apply version bumps across a package workspace.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-C",
        "--root",
        type=Path,
        default=Path.cwd(),
        help="Workspace root directory. (default: current directory)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    graph_parser = subparsers.add_parser(
        "graph", help="Print packages in release order."
    )
    graph_parser.set_defaults(func=cmd_graph)

    changes_parser = subparsers.add_parser(
        "changes", help="Show packages changed between two revisions."
    )
    changes_parser.add_argument("--from", dest="from_rev", required=True, help="Base revision.")
    changes_parser.add_argument(
        "--to", dest="to_rev", default="HEAD", help="Target revision. (default: %(default)s)"
    )
    changes_parser.set_defaults(func=cmd_changes)

    plan_parser = subparsers.add_parser(
        "plan", help="Print the release plan for the pending changesets."
    )
    plan_parser.set_defaults(func=cmd_plan)

    release_parser = subparsers.add_parser(
        "release", help="Apply the release plan to the workspace manifests."
    )
    release_parser.add_argument(
        "--dry-run", action="store_true", help="Plan only; write nothing."
    )
    release_parser.set_defaults(func=cmd_release)

    changeset_parser = subparsers.add_parser("changeset", help="Manage changesets.")
    changeset_sub = changeset_parser.add_subparsers(dest="changeset_command", required=True)

    add_parser = changeset_sub.add_parser("add", help="Create a changeset.")
    add_parser.add_argument("-p", "--package", required=True, help="Target package name.")
    add_parser.add_argument(
        "-b", "--bump", required=True, choices=["patch", "minor", "major"], help="Bump level."
    )
    add_parser.add_argument("-m", "--message", required=True, help="Change description.")
    add_parser.add_argument("--author", default=None, help="Changeset author.")
    add_parser.add_argument(
        "-e", "--env", action="append", metavar="ENV", help="Target environment (repeatable)."
    )
    add_parser.add_argument(
        "--production", action="store_true", help="Release to production."
    )
    add_parser.add_argument("--id", default=None, help="Changeset id; generated if omitted.")
    add_parser.set_defaults(func=cmd_changeset_add)

    list_parser = changeset_sub.add_parser("list", help="List pending changesets.")
    list_parser.set_defaults(func=cmd_changeset_list)

    validate_parser = changeset_sub.add_parser("validate", help="Validate pending changesets.")
    validate_parser.set_defaults(func=cmd_changeset_validate)

    remove_parser = changeset_sub.add_parser("remove", help="Delete a pending changeset.")
    remove_parser.add_argument("id", help="Changeset id.")
    remove_parser.set_defaults(func=cmd_changeset_remove)

    show_parser = changeset_sub.add_parser("show", help="Show a pending or archived changeset.")
    show_parser.add_argument("id", help="Changeset id.")
    show_parser.set_defaults(func=cmd_changeset_show)

    history_parser = changeset_sub.add_parser("history", help="List archived changesets.")
    history_parser.add_argument("-p", "--package", default=None, help="Only this package.")
    history_parser.add_argument("-e", "--env", default=None, help="Only this environment.")
    history_parser.add_argument(
        "-b", "--bump", default=None, choices=["patch", "minor", "major"], help="Only this bump."
    )
    history_parser.add_argument(
        "--since", type=_timestamp, default=None, help="Released at or after (ISO-8601)."
    )
    history_parser.add_argument(
        "--until", type=_timestamp, default=None, help="Released at or before (ISO-8601)."
    )
    history_parser.add_argument(
        "-n", "--limit", type=int, default=None, help="Show at most this many entries."
    )
    history_parser.set_defaults(func=cmd_changeset_history)

    args = parser.parse_args(argv)
    try:
        args.func(args)
    except ReleaseError as exc:
        fatal(str(exc))
