"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from workspace_release.graph import build_graph
from workspace_release.models import BumpLevel, Changeset, FileChange
from workspace_release.workspace import Workspace

WorkspaceFactory = Callable[..., Path]


def write_manifest(directory: Path, data: dict) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "package.json"
    path.write_text(json.dumps(data, indent=2) + "\n")
    return path


@pytest.fixture
def make_workspace(tmp_path: Path) -> WorkspaceFactory:
    """Create a workspace under tmp_path.

    Each package is given as ``name: (version, deps)`` where deps maps
    ``"dependencies"``, ``"peerDependencies"`` or ``"devDependencies"`` to a
    requirement map. Packages live under ``libs/<leaf>``.
    """

    def factory(packages: dict[str, tuple[str, dict]], workspaces: list[str] | None = None) -> Path:
        write_manifest(
            tmp_path,
            {"name": "root", "private": True, "workspaces": workspaces or ["libs/*"]},
        )
        for name, (version, deps) in packages.items():
            leaf = name.rsplit("/", 1)[-1]
            write_manifest(tmp_path / "libs" / leaf, {"name": name, "version": version, **deps})
        return tmp_path

    return factory


@pytest.fixture
def chain_root(make_workspace: WorkspaceFactory) -> Path:
    """logger ← config ← auth, all at 1.0.0."""
    return make_workspace(
        {
            "logger": ("1.0.0", {}),
            "config": ("1.0.0", {"dependencies": {"logger": "^1.0.0"}}),
            "auth": ("1.0.0", {"dependencies": {"config": "^1.0.0", "left-pad": "^1.3.0"}}),
        }
    )


@pytest.fixture
def diamond_root(make_workspace: WorkspaceFactory) -> Path:
    """a → b, a → c, b → d, c → d."""
    return make_workspace(
        {
            "a": ("1.0.0", {"dependencies": {"b": "^1.0.0", "c": "^1.0.0"}}),
            "b": ("1.0.0", {"dependencies": {"d": "^1.0.0"}}),
            "c": ("1.0.0", {"dependencies": {"d": "^1.0.0"}}),
            "d": ("1.0.0", {}),
        }
    )


def load_graph(root: Path):
    return build_graph(Workspace.load(root))


def changeset(
    cs_id: str,
    package: str,
    bump: str = "patch",
    description: str = "Fix a bug in the thing",
    **extra,
) -> Changeset:
    return Changeset(
        id=cs_id,
        package=package,
        version_bump=BumpLevel(bump),
        description=description,
        **extra,
    )


class FakeVcs:
    """In-memory VCS returning a fixed list of changed paths."""

    def __init__(self, changes: list[FileChange]) -> None:
        self.changes = changes
        self.calls: list[tuple[str, str]] = []

    def list_changed_paths(self, from_rev: str, to_rev: str) -> list[FileChange]:
        self.calls.append((from_rev, to_rev))
        return list(self.changes)
