"""Exception hierarchy for workspace-release.

Input and runtime failures are raised as exceptions. Semantic problems that
should be reported in batch (version conflicts, unknown packages in
changesets) are returned as values instead; see ``models.PlanError``.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class ReleaseError(Exception):
    """Base class for all workspace-release errors."""


class WorkspaceError(ReleaseError):
    """The workspace could not be loaded."""


class InvalidManifest(WorkspaceError):
    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Invalid manifest {self.path}: {reason}")


class MissingManifest(WorkspaceError):
    def __init__(self, path: Path | str) -> None:
        self.path = str(path)
        super().__init__(f"No package.json found in workspace directory {self.path}")


class DuplicatePackageName(WorkspaceError):
    def __init__(self, name: str, paths: Sequence[str]) -> None:
        self.name = name
        self.paths = list(paths)
        super().__init__(
            f"Package name {name!r} is declared by more than one directory: "
            + ", ".join(self.paths)
        )


class CyclicDependency(ReleaseError):
    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__("Dependency cycle detected: " + " -> ".join(self.cycle))


class ConfigError(ReleaseError):
    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Invalid configuration in {self.path}: {reason}")


class VcsError(ReleaseError):
    """The VCS collaborator failed. The message is its output, verbatim."""


class ChangesetError(ReleaseError):
    """A changeset file operation failed."""


class MalformedChangeset(ChangesetError):
    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Malformed changeset {self.path}: {reason}")


class ChangesetNotFound(ChangesetError):
    def __init__(self, changeset_id: str) -> None:
        self.changeset_id = changeset_id
        super().__init__(f"Changeset {changeset_id!r} not found")


class DuplicateChangesetId(ChangesetError):
    def __init__(self, changeset_id: str) -> None:
        self.changeset_id = changeset_id
        super().__init__(f"Changeset {changeset_id!r} already exists")


class TransactionError(ReleaseError):
    """A release transaction failed."""


class TransactionStateError(TransactionError):
    """A transaction operation was called out of order."""


class LockHeldError(TransactionError):
    def __init__(self, lock_path: Path | str, holder: str) -> None:
        self.lock_path = str(lock_path)
        self.holder = holder
        super().__init__(f"Release lock {self.lock_path} is held by: {holder or '<unknown>'}")


class ApplyError(TransactionError):
    """Writing a manifest failed; the transaction was rolled back."""


class VerifyError(TransactionError):
    def __init__(self, problems: Sequence[str]) -> None:
        self.problems = list(problems)
        super().__init__(
            "Post-apply verification failed:\n"
            + "\n".join(f"  - {p}" for p in self.problems)
        )


class RollbackError(TransactionError):
    """Restoring the snapshot failed. The lock file is left in place."""


class Cancelled(ReleaseError):
    """The operation was cancelled at a yield point."""
