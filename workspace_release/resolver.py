"""Conflict resolution between changesets for the same package.

Merging rules for a package with several changesets:

- bump: the most severe (major > minor > patch)
- description: the originals joined with ``DESCRIPTION_SEPARATOR``
- environments: the union
- production_deployment: true only if every changeset says so
- provenance: every original id

The resolver never drops an input. Disagreements are reported as
``ResolutionConflict`` records next to the merged result. Resolving an
already resolved set returns it unchanged.
"""

from __future__ import annotations

from collections.abc import Iterable

from .models import BumpLevel, Changeset, Resolution, ResolutionConflict

DESCRIPTION_SEPARATOR = "\n\n"
MERGED_ID_SEPARATOR = "+"


def provenance_of(changeset: Changeset) -> list[str]:
    return sorted(set(changeset.provenance)) if changeset.provenance else [changeset.id]


def merge_changesets(changesets: list[Changeset]) -> Changeset:
    """Merge changesets that target the same package into one record."""
    if len(changesets) == 1:
        only = changesets[0]
        return only.model_copy(update={"provenance": provenance_of(only)})

    ordered = sorted(changesets, key=lambda cs: cs.id)
    authors: list[str] = []
    for cs in ordered:
        if cs.author and cs.author not in authors:
            authors.append(cs.author)
    timestamps = [cs.timestamp for cs in ordered if cs.timestamp]
    environments = sorted({env for cs in ordered for env in cs.environments})
    provenance = sorted({ref for cs in ordered for ref in provenance_of(cs)})

    return Changeset(
        id=MERGED_ID_SEPARATOR.join(cs.id for cs in ordered),
        package=ordered[0].package,
        version_bump=BumpLevel.strongest(cs.version_bump for cs in ordered),
        description=DESCRIPTION_SEPARATOR.join(cs.description for cs in ordered),
        author=", ".join(authors) or None,
        timestamp=max(timestamps) if timestamps else None,
        environments=environments,
        production_deployment=all(cs.production_deployment for cs in ordered),
        provenance=provenance,
    )


def _conflicts(package: str, changesets: list[Changeset], merged: Changeset) -> list[ResolutionConflict]:
    ids = sorted(cs.id for cs in changesets)
    conflicts: list[ResolutionConflict] = []

    bumps = sorted({cs.version_bump for cs in changesets}, key=lambda level: level.rank)
    if len(bumps) > 1:
        conflicts.append(
            ResolutionConflict(
                package=package,
                field="version_bump",
                values=[level.value for level in bumps],
                changeset_ids=ids,
                resolved=merged.version_bump.value,
            )
        )

    production = sorted({cs.production_deployment for cs in changesets})
    if len(production) > 1:
        conflicts.append(
            ResolutionConflict(
                package=package,
                field="production_deployment",
                values=[str(value).lower() for value in production],
                changeset_ids=ids,
                resolved=str(merged.production_deployment).lower(),
            )
        )
    return conflicts


def resolve(changesets: Iterable[Changeset]) -> Resolution:
    """Merge changesets per target package.

    Returns:
        Resolution with one changeset per package (sorted by package name)
        and the disagreements found while merging.
    """
    grouped: dict[str, list[Changeset]] = {}
    for cs in changesets:
        grouped.setdefault(cs.package, []).append(cs)

    resolved: list[Changeset] = []
    conflicts: list[ResolutionConflict] = []
    for package in sorted(grouped):
        group = grouped[package]
        merged = merge_changesets(group)
        resolved.append(merged)
        if len(group) > 1:
            conflicts.extend(_conflicts(package, group, merged))

    return Resolution(changesets=resolved, conflicts=conflicts)
