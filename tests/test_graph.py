"""Tests for workspace_release.graph."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import WorkspaceFactory, load_graph
from workspace_release.errors import CyclicDependency
from workspace_release.models import DependencyKind


class TestTopoSort:
    def test_no_deps(self, make_workspace: WorkspaceFactory) -> None:
        root = make_workspace(
            {"c": ("1.0.0", {}), "a": ("1.0.0", {}), "b": ("1.0.0", {})}
        )
        assert load_graph(root).topological_order() == ["a", "b", "c"]

    def test_linear_deps(self, chain_root: Path) -> None:
        assert load_graph(chain_root).topological_order() == ["logger", "config", "auth"]

    def test_diamond_deps(self, diamond_root: Path) -> None:
        order = load_graph(diamond_root).topological_order()
        assert order == ["d", "b", "c", "a"]

    def test_is_linear_extension(self, diamond_root: Path) -> None:
        graph = load_graph(diamond_root)
        order = graph.topological_order()
        for edge in graph.edges:
            assert order.index(edge.dependency) < order.index(edge.dependent)

    def test_deterministic(self, diamond_root: Path) -> None:
        assert load_graph(diamond_root).topological_order() == load_graph(
            diamond_root
        ).topological_order()

    def test_single_package(self, make_workspace: WorkspaceFactory) -> None:
        root = make_workspace({"only": ("1.0.0", {})})
        assert load_graph(root).topological_order() == ["only"]

    def test_empty(self, make_workspace: WorkspaceFactory) -> None:
        assert load_graph(make_workspace({})).topological_order() == []

    def test_filtered(self, diamond_root: Path) -> None:
        assert load_graph(diamond_root).topological_order(only={"a", "d"}) == ["d", "a"]

    def test_peer_edges_order(self, make_workspace: WorkspaceFactory) -> None:
        root = make_workspace(
            {
                "a-plugin": ("1.0.0", {"peerDependencies": {"z-host": "^1.0.0"}}),
                "z-host": ("1.0.0", {}),
            }
        )
        assert load_graph(root).topological_order() == ["z-host", "a-plugin"]

    def test_dev_edges_ignored_for_order(self, make_workspace: WorkspaceFactory) -> None:
        root = make_workspace(
            {
                "a": ("1.0.0", {"devDependencies": {"b": "^1.0.0"}}),
                "b": ("1.0.0", {}),
            }
        )
        assert load_graph(root).topological_order() == ["a", "b"]


class TestBuildGraph:
    def test_external_deps_ignored(self, chain_root: Path) -> None:
        graph = load_graph(chain_root)
        assert graph.dependencies("auth") == {"config"}

    def test_edge_kinds(self, make_workspace: WorkspaceFactory) -> None:
        root = make_workspace(
            {
                "app": (
                    "1.0.0",
                    {
                        "dependencies": {"core": "^1.0.0"},
                        "peerDependencies": {"ui": "^1.0.0"},
                        "devDependencies": {"testing": "workspace:*"},
                    },
                ),
                "core": ("1.0.0", {}),
                "ui": ("1.0.0", {}),
                "testing": ("1.0.0", {}),
            }
        )
        graph = load_graph(root)
        kinds = {(e.dependency, e.kind) for e in graph.edges}
        assert kinds == {
            ("core", DependencyKind.RUNTIME),
            ("ui", DependencyKind.PEER),
            ("testing", DependencyKind.DEV),
        }

    def test_cycle_raises(self, make_workspace: WorkspaceFactory) -> None:
        root = make_workspace(
            {
                "p": ("1.0.0", {"dependencies": {"q": "^1.0.0"}}),
                "q": ("1.0.0", {"dependencies": {"p": "^1.0.0"}}),
            }
        )
        with pytest.raises(CyclicDependency) as info:
            load_graph(root)
        assert set(info.value.cycle) == {"p", "q"}
        assert info.value.cycle[0] == info.value.cycle[-1]

    def test_three_way_cycle_through_peer(self, make_workspace: WorkspaceFactory) -> None:
        root = make_workspace(
            {
                "a": ("1.0.0", {"dependencies": {"b": "^1.0.0"}}),
                "b": ("1.0.0", {"peerDependencies": {"c": "^1.0.0"}}),
                "c": ("1.0.0", {"dependencies": {"a": "^1.0.0"}}),
            }
        )
        with pytest.raises(CyclicDependency, match="cycle"):
            load_graph(root)

    def test_dev_cycle_allowed(self, make_workspace: WorkspaceFactory) -> None:
        root = make_workspace(
            {
                "a": ("1.0.0", {"dependencies": {"b": "^1.0.0"}}),
                "b": ("1.0.0", {"devDependencies": {"a": "^1.0.0"}}),
            }
        )
        assert load_graph(root).topological_order() == ["b", "a"]


class TestTransitiveDependents:
    def test_chain(self, chain_root: Path) -> None:
        assert load_graph(chain_root).transitive_dependents(["logger"]) == {"config", "auth"}

    def test_diamond_is_a_set(self, diamond_root: Path) -> None:
        assert load_graph(diamond_root).transitive_dependents(["d"]) == {"a", "b", "c"}

    def test_leaf(self, chain_root: Path) -> None:
        assert load_graph(chain_root).transitive_dependents(["auth"]) == set()

    def test_terminates_on_dev_cycle(self, make_workspace: WorkspaceFactory) -> None:
        root = make_workspace(
            {
                "a": ("1.0.0", {"dependencies": {"b": "^1.0.0"}}),
                "b": ("1.0.0", {"devDependencies": {"a": "^1.0.0"}}),
            }
        )
        assert load_graph(root).transitive_dependents(["a"]) == {"a", "b"}


class TestAudit:
    def test_clean_workspace(self, chain_root: Path) -> None:
        assert load_graph(chain_root).audit() == []

    def test_reports_failing_edge(self, chain_root: Path) -> None:
        conflicts = load_graph(chain_root).audit({"logger": "2.0.0"})
        assert len(conflicts) == 1
        conflict = conflicts[0]
        assert (conflict.dependent, conflict.dependency) == ("config", "logger")
        assert (conflict.required, conflict.actual) == ("^1.0.0", "2.0.0")

    def test_dev_edges_audited(self, make_workspace: WorkspaceFactory) -> None:
        root = make_workspace(
            {
                "a": ("1.0.0", {"devDependencies": {"b": "^2.0.0"}}),
                "b": ("1.0.0", {}),
            }
        )
        conflicts = load_graph(root).audit()
        assert [(c.dependent, c.kind) for c in conflicts] == [("a", DependencyKind.DEV)]

    def test_peer_conflict_reaches_dependents(self, make_workspace: WorkspaceFactory) -> None:
        root = make_workspace(
            {
                "host": ("2.0.0", {}),
                "plugin": ("1.0.0", {"peerDependencies": {"host": "^1.0.0"}}),
                "app": ("1.0.0", {"dependencies": {"plugin": "^1.0.0"}}),
            }
        )
        conflicts = load_graph(root).audit()
        assert {(c.dependent, c.via) for c in conflicts} == {
            ("plugin", None),
            ("app", "plugin"),
        }
