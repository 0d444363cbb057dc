"""Transactional release execution.

A release rewrites package manifests and archives changesets. Both happen
inside a ``ReleaseTransaction``:

1. begin:    take the workspace lock and snapshot every manifest the plan
             touches plus the whole changeset directory
2. apply:    rewrite manifests, one atomic write per file, in plan order
3. verify:   reload the workspace and re-run the compatibility audit
4. commit:   archive the consumed changesets and record a summary
5. rollback: restore the snapshot byte-for-byte

Any failure during apply, verify or commit rolls back before the error is
raised. Rollback can also be called directly and is idempotent.
"""

from __future__ import annotations

import json
import os
import socket
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from .cancellation import checkpoint
from .changesets import ChangesetStore
from .errors import (
    ApplyError,
    Cancelled,
    LockHeldError,
    ReleaseError,
    RollbackError,
    TransactionStateError,
    VerifyError,
)
from .graph import build_graph
from .manifest import rewrite_manifest, write_atomic
from .models import ReleasePlan, ReleaseSummary, VersionBump
from .workspace import Workspace

LOCK_NAME = ".release.lock"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class ReleaseLock:
    """Advisory writer lock: ``<root>/.release.lock`` holding ``pid\\thost\\ttime``.

    Acquisition never waits; a present lock file means another holder.
    """

    def __init__(self, root: Path | str) -> None:
        self.path = Path(root) / LOCK_NAME
        self.held = False

    def holder(self) -> str | None:
        try:
            return self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None

    def acquire(self) -> None:
        """Create the lock file.

        Raises:
            LockHeldError: If the lock file already exists.
        """
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError as exc:
            raise LockHeldError(self.path, self.holder() or "") from exc
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(f"{os.getpid()}\t{socket.gethostname()}\t{_now()}\n")
        self.held = True

    def release(self) -> None:
        if self.held:
            self.path.unlink(missing_ok=True)
            self.held = False

    def __enter__(self) -> ReleaseLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class TransactionState(str, Enum):
    IDLE = "idle"
    BEGUN = "begun"
    APPLIED = "applied"
    VERIFIED = "verified"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"
    BROKEN = "broken"


class Snapshot(BaseModel):
    """File contents captured before any write.

    Attributes:
        manifests: Absolute manifest path → exact bytes.
        changesets: Changeset-directory-relative path → exact bytes.
        changeset_dirs: Directories that existed under the changeset directory.
        changeset_dir_existed: Whether the changeset directory itself existed.
        vcs_ref: The VCS reference the caller reported at begin time.
    """

    taken_at: str
    vcs_ref: str | None = None
    manifests: dict[str, bytes] = Field(default_factory=dict)
    changesets: dict[str, bytes] = Field(default_factory=dict)
    changeset_dirs: list[str] = Field(default_factory=list)
    changeset_dir_existed: bool = False


def take_snapshot(paths: list[Path], changeset_dir: Path, vcs_ref: str | None) -> Snapshot:
    manifests = {str(p): p.read_bytes() for p in paths}
    changesets: dict[str, bytes] = {}
    dirs: list[str] = []
    existed = changeset_dir.is_dir()
    if existed:
        for p in sorted(changeset_dir.rglob("*")):
            rel = p.relative_to(changeset_dir).as_posix()
            if p.is_dir():
                dirs.append(rel)
            elif p.is_file():
                changesets[rel] = p.read_bytes()
    return Snapshot(
        taken_at=_now(),
        vcs_ref=vcs_ref,
        manifests=manifests,
        changesets=changesets,
        changeset_dirs=dirs,
        changeset_dir_existed=existed,
    )


def restore_snapshot(snapshot: Snapshot, changeset_dir: Path) -> None:
    """Put every snapshotted file back exactly as it was.

    Files that already match are left alone, so restoring twice is a no-op.
    """
    for path_str, data in snapshot.manifests.items():
        path = Path(path_str)
        if not path.is_file() or path.read_bytes() != data:
            write_atomic(path, data)

    if changeset_dir.is_dir():
        for p in sorted(changeset_dir.rglob("*"), reverse=True):
            rel = p.relative_to(changeset_dir).as_posix()
            if p.is_file() and rel not in snapshot.changesets:
                p.unlink()
            elif p.is_dir() and rel not in snapshot.changeset_dirs and not any(p.iterdir()):
                p.rmdir()

    if snapshot.changesets or snapshot.changeset_dirs or snapshot.changeset_dir_existed:
        changeset_dir.mkdir(parents=True, exist_ok=True)
    for rel in snapshot.changeset_dirs:
        (changeset_dir / rel).mkdir(parents=True, exist_ok=True)
    for rel, data in snapshot.changesets.items():
        path = changeset_dir / rel
        if not path.is_file() or path.read_bytes() != data:
            path.parent.mkdir(parents=True, exist_ok=True)
            write_atomic(path, data)

    if not snapshot.changeset_dir_existed and changeset_dir.is_dir() and not any(
        changeset_dir.iterdir()
    ):
        changeset_dir.rmdir()


class ReleaseTransaction:
    """Applies a release plan to the workspace with all-or-nothing semantics.

    Args:
        workspace: The workspace the plan was computed against.
        plan: The plan to apply. Steps run in their declared order.
        store: Changeset store whose changesets the plan consumes.
        vcs_ref: Current VCS reference, recorded in the snapshot and summary.
        cancel: Optional event checked between steps.
    """

    def __init__(
        self,
        workspace: Workspace,
        plan: ReleasePlan,
        store: ChangesetStore,
        *,
        vcs_ref: str | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.workspace = workspace
        self.plan = plan
        self.store = store
        self.vcs_ref = vcs_ref
        self.cancel = cancel
        self.lock = ReleaseLock(workspace.root)
        self.state = TransactionState.IDLE
        self.snapshot: Snapshot | None = None
        self.summary: ReleaseSummary | None = None

    def _require(self, *states: TransactionState) -> None:
        if self.state not in states:
            raise TransactionStateError(
                f"Transaction is {self.state.value}; expected "
                + " or ".join(s.value for s in states)
            )

    def manifest_paths(self) -> list[Path]:
        return [self.workspace.manifest_path(step.package) for step in self.plan.steps]

    def begin(self) -> Snapshot:
        """Acquire the workspace lock and snapshot everything the plan may touch.

        Raises:
            LockHeldError: If another transaction holds the lock.
        """
        self._require(TransactionState.IDLE)
        self.lock.acquire()
        try:
            self.snapshot = take_snapshot(self.manifest_paths(), self.store.directory, self.vcs_ref)
        except BaseException:
            self.lock.release()
            raise
        self.state = TransactionState.BEGUN
        return self.snapshot

    def apply(self) -> None:
        """Rewrite every planned manifest in plan order.

        Raises:
            ApplyError: After rolling back, if any write failed.
            Cancelled: After rolling back, if cancelled between steps.
        """
        self._require(TransactionState.BEGUN)
        new_versions = {step.package: step.to_version for step in self.plan.steps}
        try:
            for step in self.plan.steps:
                checkpoint(self.cancel, f"applying {step.package}")
                pkg = self.workspace.packages[step.package]
                internal = {
                    dep: new_versions[dep]
                    for kind_deps in (pkg.runtime, pkg.peer, pkg.development)
                    for dep in kind_deps
                    if dep in new_versions and dep != step.package
                }
                rewrite_manifest(
                    self.workspace.manifest_path(step.package), step.to_version, internal
                )
        except Cancelled:
            self.rollback()
            raise
        except Exception as exc:
            self.rollback()
            raise ApplyError(f"Failed to apply release plan: {exc}") from exc
        self.state = TransactionState.APPLIED

    def verify(self) -> None:
        """Reload the workspace and audit it against the plan.

        Raises:
            VerifyError: After rolling back, if the written state is wrong.
            Cancelled: After rolling back, if cancelled before verifying.
        """
        self._require(TransactionState.APPLIED)
        try:
            checkpoint(self.cancel, "verify")
            problems = self._check_written_state()
        except Cancelled:
            self.rollback()
            raise
        except Exception as exc:
            problems = [str(exc)]
        if problems:
            self.rollback()
            raise VerifyError(problems)
        self.state = TransactionState.VERIFIED

    def _check_written_state(self) -> list[str]:
        reloaded = Workspace.load(self.workspace.root)
        problems: list[str] = []
        for step in self.plan.steps:
            pkg = reloaded.get(step.package)
            if pkg is None:
                problems.append(f"{step.package} disappeared from the workspace")
            elif pkg.version != step.to_version:
                problems.append(
                    f"{step.package} is at {pkg.version}, expected {step.to_version}"
                )
        problems.extend(str(c) for c in build_graph(reloaded).audit())
        return problems

    def commit(self) -> ReleaseSummary:
        """Archive consumed changesets, record a summary and release the lock.

        Raises:
            TransactionError: After rolling back, if archiving failed.
        """
        self._require(TransactionState.VERIFIED)
        try:
            checkpoint(self.cancel, "commit")
            summary = ReleaseSummary(
                released_at=_now(),
                vcs_ref=self.vcs_ref,
                bumps={
                    step.package: VersionBump(old=step.from_version, new=step.to_version)
                    for step in self.plan.steps
                },
                archived_changesets=list(self.plan.changeset_ids),
            )
            self.store.archive(self.plan.changeset_ids)
            self._write_summary(summary)
        except Cancelled:
            self.rollback()
            raise
        except Exception as exc:
            self.rollback()
            if isinstance(exc, ReleaseError):
                raise
            raise ApplyError(f"Failed to commit release: {exc}") from exc

        self.summary = summary
        self.state = TransactionState.COMMITTED
        self.lock.release()
        return summary

    def _write_summary(self, summary: ReleaseSummary) -> None:
        self.store.archive_dir.mkdir(parents=True, exist_ok=True)
        data = json.dumps(summary.model_dump(mode="json"), indent=2) + "\n"
        write_atomic(self.store.summary_path(summary.released_at), data.encode("utf-8"))

    def rollback(self) -> None:
        """Restore the snapshot and release the lock.

        Safe to call more than once. Before ``begin`` it does nothing.

        Raises:
            TransactionStateError: If the transaction already committed, or
                has no snapshot to restore.
            RollbackError: If restoring failed. The lock file is kept.
        """
        if self.state in (TransactionState.IDLE, TransactionState.ROLLED_BACK):
            return
        if self.state is TransactionState.COMMITTED:
            raise TransactionStateError("Cannot roll back a committed transaction")
        if self.snapshot is None:
            raise TransactionStateError(f"Transaction is {self.state.value} but has no snapshot")
        try:
            restore_snapshot(self.snapshot, self.store.directory)
        except OSError as exc:
            self.state = TransactionState.BROKEN
            raise RollbackError(
                f"Rollback failed, workspace may be inconsistent (lock kept at "
                f"{self.lock.path}): {exc}"
            ) from exc
        self.state = TransactionState.ROLLED_BACK
        self.lock.release()

    def run(self) -> ReleaseSummary:
        """Run begin, apply, verify and commit in order."""
        self.begin()
        self.apply()
        self.verify()
        return self.commit()

    def __enter__(self) -> ReleaseTransaction:
        self.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        # Leaving the block without a commit undoes everything
        if self.state not in (TransactionState.COMMITTED, TransactionState.BROKEN):
            self.rollback()
