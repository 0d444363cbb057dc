"""Change detection.

Maps the paths reported by the VCS collaborator onto workspace packages.
A file belongs to a package iff it lies inside the package directory;
with nested packages the deepest directory wins. Files outside every
package (root configuration, top-level docs) are kept in a separate
bucket and never produce a ``PackageChange``.
"""

from __future__ import annotations

from posixpath import normpath

from .models import ChangeReport, FileChange, FileChangeKind, PackageChange
from .vcs import Vcs
from .workspace import Workspace


def _normalize(path: str) -> str:
    return normpath(path.replace("\\", "/")).lstrip("/")


class PathIndex:
    """Finds the package owning a workspace-relative path."""

    def __init__(self, workspace: Workspace) -> None:
        # Longest prefix first so nested packages win over their parents
        self._prefixes = sorted(
            ((_normalize(pkg.path).rstrip("/") + "/", pkg.name) for pkg in workspace),
            key=lambda item: (-len(item[0]), item[1]),
        )

    def owner(self, path: str) -> tuple[str, str] | None:
        """Return ``(package name, package-relative path)`` or None."""
        path = _normalize(path)
        for prefix, name in self._prefixes:
            if path.startswith(prefix):
                return name, path[len(prefix):]
        return None


def attribute_changes(
    workspace: Workspace,
    file_changes: list[FileChange],
    from_rev: str = "",
    to_rev: str = "",
) -> ChangeReport:
    """Group file changes by owning package.

    A rename whose old path lies in a different package than its new path
    is recorded as a deletion in the old package as well.
    """
    index = PathIndex(workspace)
    grouped: dict[str, list[FileChange]] = {}
    unowned: list[FileChange] = []

    for change in file_changes:
        owner = index.owner(change.path)
        old_owner = index.owner(change.old_path) if change.old_path else None

        if owner is None:
            unowned.append(change.model_copy(update={"path": _normalize(change.path)}))
        else:
            name, rel = owner
            old_rel = old_owner[1] if old_owner and old_owner[0] == name else None
            kind = change.kind
            if change.kind is FileChangeKind.RENAMED and old_rel is None:
                # Moved in from elsewhere: new to this package
                kind = FileChangeKind.ADDED
            grouped.setdefault(name, []).append(
                FileChange(path=rel, kind=kind, old_path=old_rel)
            )

        if old_owner is not None and (owner is None or old_owner[0] != owner[0]):
            old_name, old_rel = old_owner
            grouped.setdefault(old_name, []).append(
                FileChange(path=old_rel, kind=FileChangeKind.DELETED)
            )

    packages = [
        PackageChange(
            name=name,
            file_changes=sorted(grouped[name], key=lambda c: (c.path, c.kind.value)),
            breaking=workspace.packages[name].breaking,
        )
        for name in sorted(grouped)
    ]
    return ChangeReport(
        from_rev=from_rev,
        to_rev=to_rev,
        packages=packages,
        unowned=sorted(unowned, key=lambda c: (c.path, c.kind.value)),
    )


def detect_changes(workspace: Workspace, vcs: Vcs, from_rev: str, to_rev: str) -> ChangeReport:
    """Ask the VCS which paths changed and attribute them to packages.

    Raises:
        VcsError: If the collaborator fails; no retry is attempted.
    """
    return attribute_changes(
        workspace, vcs.list_changed_paths(from_rev, to_rev), from_rev, to_rev
    )
