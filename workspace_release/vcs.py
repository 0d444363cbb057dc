"""Version-control collaborator.

The analysis core needs exactly one thing from source control: the list of
paths that changed between two revisions. ``Vcs`` captures that contract;
``GitVcs`` implements it on top of the git CLI.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Protocol

from .errors import VcsError
from .models import FileChange, FileChangeKind
from .shell import git

_STATUS_KINDS = {
    "A": FileChangeKind.ADDED,
    "C": FileChangeKind.ADDED,
    "M": FileChangeKind.MODIFIED,
    "T": FileChangeKind.MODIFIED,
    "D": FileChangeKind.DELETED,
    "R": FileChangeKind.RENAMED,
}


class Vcs(Protocol):
    def list_changed_paths(self, from_rev: str, to_rev: str) -> list[FileChange]:
        """Return every path that differs between two revisions."""
        ...


def parse_name_status(output: str) -> list[FileChange]:
    """Parse ``git diff --name-status`` output.

    Renames (``R100\\told\\tnew``) keep the old path in ``old_path``; copies
    count as additions of the new path. Unknown status letters are skipped.
    """
    changes: list[FileChange] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        fields = line.split("\t")
        kind = _STATUS_KINDS.get(fields[0][:1])
        if kind is None or len(fields) < 2:
            continue
        if fields[0][:1] in ("R", "C") and len(fields) >= 3:
            old, new = fields[1], fields[2]
            if kind is FileChangeKind.RENAMED:
                changes.append(FileChange(path=new, kind=kind, old_path=old))
            else:
                changes.append(FileChange(path=new, kind=kind))
        else:
            changes.append(FileChange(path=fields[1], kind=kind))
    return changes


class GitVcs:
    """Git-backed implementation of the ``Vcs`` collaborator."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def list_changed_paths(self, from_rev: str, to_rev: str) -> list[FileChange]:
        try:
            output = git("diff", "--name-status", "-M", from_rev, to_rev, cwd=self.root)
        except subprocess.CalledProcessError as exc:
            raise VcsError((exc.stderr or "").strip() or str(exc)) from exc
        except FileNotFoundError as exc:
            raise VcsError("git not found") from exc
        return parse_name_status(output)

    def current_ref(self) -> str | None:
        """The commit currently checked out, or None outside a repository."""
        ref = git("rev-parse", "HEAD", cwd=self.root, check=False)
        return ref or None
