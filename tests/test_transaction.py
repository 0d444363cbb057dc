"""Tests for workspace_release.transaction."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import changeset, load_graph
from workspace_release.changesets import ChangesetStore
from workspace_release.errors import (
    ApplyError,
    Cancelled,
    LockHeldError,
    RollbackError,
    TransactionStateError,
    VerifyError,
)
from workspace_release.manifest import rewrite_manifest
from workspace_release.models import ReleasePlan
from workspace_release.planner import plan_release
from workspace_release.transaction import (
    LOCK_NAME,
    ReleaseLock,
    ReleaseTransaction,
    TransactionState,
)
from workspace_release.workspace import Workspace

MANIFESTS = ["libs/logger/package.json", "libs/config/package.json", "libs/auth/package.json"]


@pytest.fixture
def store(chain_root: Path) -> ChangesetStore:
    store = ChangesetStore(chain_root / ".changesets", ["staging", "production"])
    store.create(changeset("break-logger", "logger", bump="major"))
    return store


@pytest.fixture
def plan(chain_root: Path, store: ChangesetStore) -> ReleasePlan:
    result = plan_release(load_graph(chain_root), store.list_changesets().changesets)
    assert result.ok
    return result.plan


def read_all(root: Path) -> dict[str, bytes]:
    return {rel: (root / rel).read_bytes() for rel in MANIFESTS}


def make_tx(root: Path, plan: ReleasePlan, store: ChangesetStore, **kw) -> ReleaseTransaction:
    return ReleaseTransaction(Workspace.load(root), plan, store, **kw)


class TestReleaseLock:
    def test_acquire_and_release(self, tmp_path: Path) -> None:
        lock = ReleaseLock(tmp_path)
        lock.acquire()
        pid, host, when = lock.holder().split("\t")
        assert pid.isdigit() and host and when
        lock.release()
        assert not (tmp_path / LOCK_NAME).exists()

    def test_second_holder_fails(self, tmp_path: Path) -> None:
        with ReleaseLock(tmp_path):
            with pytest.raises(LockHeldError):
                ReleaseLock(tmp_path).acquire()
        assert not (tmp_path / LOCK_NAME).exists()

    def test_release_only_own_lock(self, tmp_path: Path) -> None:
        (tmp_path / LOCK_NAME).write_text("1\tother\tthen\n")
        ReleaseLock(tmp_path).release()
        assert (tmp_path / LOCK_NAME).exists()


class TestHappyPath:
    def test_run_commits(self, chain_root: Path, plan: ReleasePlan, store: ChangesetStore) -> None:
        tx = make_tx(chain_root, plan, store, vcs_ref="abc123")
        summary = tx.run()

        assert tx.state is TransactionState.COMMITTED
        assert Workspace.load(chain_root).versions() == {
            "auth": "1.0.1",
            "config": "1.0.1",
            "logger": "2.0.0",
        }
        config = json.loads((chain_root / "libs/config/package.json").read_text())
        assert config["dependencies"] == {"logger": "^2.0.0"}
        auth = json.loads((chain_root / "libs/auth/package.json").read_text())
        assert auth["dependencies"] == {"config": "^1.0.1", "left-pad": "^1.3.0"}

        assert summary.vcs_ref == "abc123"
        assert summary.bumps["logger"].old == "1.0.0"
        assert summary.archived_changesets == ["break-logger"]
        assert store.list_changesets().changesets == []
        assert (store.archive_dir / "break-logger.json").is_file()
        assert len(list(store.archive_dir.glob("release-*.json"))) == 1
        assert not (chain_root / LOCK_NAME).exists()

    def test_rollback_after_commit_refused(
        self, chain_root: Path, plan: ReleasePlan, store: ChangesetStore
    ) -> None:
        tx = make_tx(chain_root, plan, store)
        tx.run()
        with pytest.raises(TransactionStateError):
            tx.rollback()

    def test_out_of_order(self, chain_root: Path, plan: ReleasePlan, store: ChangesetStore) -> None:
        with pytest.raises(TransactionStateError):
            make_tx(chain_root, plan, store).apply()


class TestFailures:
    def test_write_failure_restores_everything(
        self, chain_root: Path, plan: ReleasePlan, store: ChangesetStore
    ) -> None:
        before = read_all(chain_root)
        listing_before = store.list_changesets()
        calls = []

        def flaky(path, new_version, deps):
            calls.append(path)
            if len(calls) == 2:
                raise OSError("disk full")
            rewrite_manifest(path, new_version, deps)

        tx = make_tx(chain_root, plan, store)
        tx.begin()
        with patch("workspace_release.transaction.rewrite_manifest", side_effect=flaky):
            with pytest.raises(ApplyError, match="disk full"):
                tx.apply()

        assert len(calls) == 2
        assert read_all(chain_root) == before
        assert store.list_changesets() == listing_before
        assert not store.archive_dir.exists()
        assert not (chain_root / LOCK_NAME).exists()
        assert tx.state is TransactionState.ROLLED_BACK

    def test_verify_failure_rolls_back(
        self, chain_root: Path, plan: ReleasePlan, store: ChangesetStore
    ) -> None:
        before = read_all(chain_root)

        def wrong_version(path, new_version, deps):
            rewrite_manifest(path, "9.9.9", deps)

        tx = make_tx(chain_root, plan, store)
        tx.begin()
        with patch("workspace_release.transaction.rewrite_manifest", side_effect=wrong_version):
            tx.apply()
        with pytest.raises(VerifyError) as info:
            tx.verify()

        assert any("expected 2.0.0" in p for p in info.value.problems)
        assert read_all(chain_root) == before
        assert tx.state is TransactionState.ROLLED_BACK

    def test_commit_failure_unarchives(
        self, chain_root: Path, plan: ReleasePlan, store: ChangesetStore
    ) -> None:
        before = read_all(chain_root)
        tx = make_tx(chain_root, plan, store)
        tx.begin()
        tx.apply()
        tx.verify()
        with patch.object(ReleaseTransaction, "_write_summary", side_effect=OSError("read-only")):
            with pytest.raises(ApplyError):
                tx.commit()

        assert read_all(chain_root) == before
        assert [cs.id for cs in store.list_changesets().changesets] == ["break-logger"]
        assert not store.archive_dir.exists()

    def test_lock_held(self, chain_root: Path, plan: ReleasePlan, store: ChangesetStore) -> None:
        with ReleaseLock(chain_root):
            tx = make_tx(chain_root, plan, store)
            with pytest.raises(LockHeldError):
                tx.begin()
            assert tx.state is TransactionState.IDLE

    def test_rollback_failure_keeps_lock(
        self, chain_root: Path, plan: ReleasePlan, store: ChangesetStore
    ) -> None:
        tx = make_tx(chain_root, plan, store)
        tx.begin()
        tx.apply()
        with patch(
            "workspace_release.transaction.restore_snapshot", side_effect=OSError("gone")
        ):
            with pytest.raises(RollbackError):
                tx.rollback()
        assert tx.state is TransactionState.BROKEN
        assert (chain_root / LOCK_NAME).exists()


class TestRollback:
    def test_manual_rollback_is_idempotent(
        self, chain_root: Path, plan: ReleasePlan, store: ChangesetStore
    ) -> None:
        before = read_all(chain_root)
        tx = make_tx(chain_root, plan, store)
        tx.begin()
        tx.apply()
        assert read_all(chain_root) != before

        tx.rollback()
        tx.rollback()
        assert read_all(chain_root) == before
        assert not (chain_root / LOCK_NAME).exists()

    def test_rollback_before_begin_is_noop(
        self, chain_root: Path, plan: ReleasePlan, store: ChangesetStore
    ) -> None:
        tx = make_tx(chain_root, plan, store)
        tx.rollback()
        assert tx.state is TransactionState.IDLE

    def test_rollback_without_snapshot_refused(
        self, chain_root: Path, plan: ReleasePlan, store: ChangesetStore
    ) -> None:
        tx = make_tx(chain_root, plan, store)
        tx.state = TransactionState.APPLIED
        with pytest.raises(TransactionStateError, match="no snapshot"):
            tx.rollback()

    def test_context_manager_rolls_back(
        self, chain_root: Path, plan: ReleasePlan, store: ChangesetStore
    ) -> None:
        before = read_all(chain_root)
        with pytest.raises(RuntimeError):
            with make_tx(chain_root, plan, store) as tx:
                tx.apply()
                raise RuntimeError("boom")
        assert read_all(chain_root) == before
        assert tx.state is TransactionState.ROLLED_BACK

    def test_cancelled_between_steps(
        self, chain_root: Path, plan: ReleasePlan, store: ChangesetStore
    ) -> None:
        before = read_all(chain_root)
        cancel = threading.Event()
        written = []

        def cancel_after_first(path, new_version, deps):
            rewrite_manifest(path, new_version, deps)
            written.append(path)
            cancel.set()

        tx = make_tx(chain_root, plan, store, cancel=cancel)
        tx.begin()
        with patch(
            "workspace_release.transaction.rewrite_manifest", side_effect=cancel_after_first
        ):
            with pytest.raises(Cancelled):
                tx.apply()

        assert len(written) == 1
        assert read_all(chain_root) == before
        assert tx.state is TransactionState.ROLLED_BACK
