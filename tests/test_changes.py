"""Tests for workspace_release.changes and workspace_release.vcs."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from conftest import FakeVcs, WorkspaceFactory
from workspace_release.changes import attribute_changes, detect_changes
from workspace_release.errors import VcsError
from workspace_release.models import FileChange, FileChangeKind
from workspace_release.vcs import GitVcs, parse_name_status
from workspace_release.workspace import Workspace

A = FileChangeKind.ADDED
M = FileChangeKind.MODIFIED
D = FileChangeKind.DELETED
R = FileChangeKind.RENAMED


class TestParseNameStatus:
    def test_basic_statuses(self) -> None:
        output = "A\tlibs/a/new.ts\nM\tlibs/a/old.ts\nD\tlibs/b/gone.ts\nT\tlink"
        assert parse_name_status(output) == [
            FileChange(path="libs/a/new.ts", kind=A),
            FileChange(path="libs/a/old.ts", kind=M),
            FileChange(path="libs/b/gone.ts", kind=D),
            FileChange(path="link", kind=M),
        ]

    def test_rename_and_copy(self) -> None:
        output = "R087\tlibs/a/x.ts\tlibs/a/y.ts\nC100\tlibs/a/y.ts\tlibs/a/z.ts"
        assert parse_name_status(output) == [
            FileChange(path="libs/a/y.ts", kind=R, old_path="libs/a/x.ts"),
            FileChange(path="libs/a/z.ts", kind=A),
        ]

    def test_skips_blank_and_unknown(self) -> None:
        assert parse_name_status("\nX\tweird\n") == []


class TestGitVcs:
    @patch("workspace_release.vcs.git")
    def test_list_changed_paths(self, mock_git: MagicMock, tmp_path: Path) -> None:
        mock_git.return_value = "M\tREADME.md"
        result = GitVcs(tmp_path).list_changed_paths("v1", "HEAD")
        assert result == [FileChange(path="README.md", kind=M)]
        mock_git.assert_called_once_with(
            "diff", "--name-status", "-M", "v1", "HEAD", cwd=tmp_path
        )

    @patch("workspace_release.vcs.git")
    def test_failure_is_surfaced_verbatim(self, mock_git: MagicMock, tmp_path: Path) -> None:
        mock_git.side_effect = subprocess.CalledProcessError(
            128, ["git"], stderr="fatal: bad revision 'nope'\n"
        )
        with pytest.raises(VcsError, match="fatal: bad revision 'nope'"):
            GitVcs(tmp_path).list_changed_paths("nope", "HEAD")

    @patch("workspace_release.vcs.git")
    def test_current_ref(self, mock_git: MagicMock, tmp_path: Path) -> None:
        mock_git.return_value = "abc123"
        assert GitVcs(tmp_path).current_ref() == "abc123"
        mock_git.return_value = ""
        assert GitVcs(tmp_path).current_ref() is None


class TestDetectChanges:
    @pytest.fixture
    def workspace(self, chain_root: Path) -> Workspace:
        return Workspace.load(chain_root)

    def test_attributes_files_to_packages(self, workspace: Workspace) -> None:
        vcs = FakeVcs(
            [
                FileChange(path="libs/logger/src/index.ts", kind=M),
                FileChange(path="libs/auth/src/token.ts", kind=A),
                FileChange(path="libs/logger/README.md", kind=M),
            ]
        )
        report = detect_changes(workspace, vcs, "v1", "v2")
        assert vcs.calls == [("v1", "v2")]
        assert report.changed_names == ["auth", "logger"]
        logger = report.packages[1]
        assert [f.path for f in logger.file_changes] == ["README.md", "src/index.ts"]

    def test_unowned_files(self, workspace: Workspace) -> None:
        vcs = FakeVcs(
            [
                FileChange(path="package.json", kind=M),
                FileChange(path="docs/guide.md", kind=A),
                FileChange(path="libs/loggerx/file.ts", kind=A),
            ]
        )
        report = detect_changes(workspace, vcs, "a", "b")
        assert report.packages == []
        assert [f.path for f in report.unowned] == [
            "docs/guide.md",
            "libs/loggerx/file.ts",
            "package.json",
        ]

    def test_deterministic_order(self, workspace: Workspace) -> None:
        changes = [
            FileChange(path="libs/config/b.ts", kind=M),
            FileChange(path="libs/auth/a.ts", kind=M),
            FileChange(path="libs/config/a.ts", kind=M),
        ]
        first = detect_changes(workspace, FakeVcs(changes), "a", "b")
        second = detect_changes(workspace, FakeVcs(list(reversed(changes))), "a", "b")
        assert first == second

    def test_rename_across_packages(self, workspace: Workspace) -> None:
        report = attribute_changes(
            workspace,
            [FileChange(path="libs/auth/src/x.ts", kind=R, old_path="libs/config/src/x.ts")],
        )
        by_name = {pc.name: pc.file_changes for pc in report.packages}
        assert by_name["auth"] == [FileChange(path="src/x.ts", kind=A)]
        assert by_name["config"] == [FileChange(path="src/x.ts", kind=D)]

    def test_rename_within_package(self, workspace: Workspace) -> None:
        report = attribute_changes(
            workspace,
            [FileChange(path="libs/auth/src/y.ts", kind=R, old_path="libs/auth/src/x.ts")],
        )
        assert report.packages[0].file_changes == [
            FileChange(path="src/y.ts", kind=R, old_path="src/x.ts")
        ]

    def test_nested_package_wins(self, make_workspace: WorkspaceFactory) -> None:
        root = make_workspace(
            {"outer": ("1.0.0", {}), "inner": ("1.0.0", {})},
            workspaces=["libs/*", "libs/outer/packages/*"],
        )
        # Move "inner" under "outer"
        (root / "libs" / "inner").rename(root / "libs" / "outer-tmp")
        (root / "libs" / "outer" / "packages").mkdir()
        (root / "libs" / "outer-tmp").rename(root / "libs" / "outer" / "packages" / "inner")
        workspace = Workspace.load(root)
        report = attribute_changes(
            workspace, [FileChange(path="libs/outer/packages/inner/index.ts", kind=M)]
        )
        assert report.changed_names == ["inner"]

    def test_breaking_marker_carried(self, make_workspace: WorkspaceFactory) -> None:
        root = make_workspace({"a": ("1.0.0", {"breaking": True})})
        report = attribute_changes(
            Workspace.load(root), [FileChange(path="libs/a/src/x.ts", kind=M)]
        )
        assert report.packages[0].breaking is True
