"""Workspace discovery.

Reads the ``workspaces`` globs from the root package.json, finds every
matching package directory, and extracts name, version and dependency maps
from each package's manifest.
"""

from __future__ import annotations

import glob
from collections.abc import Iterator, Mapping
from pathlib import Path
from types import MappingProxyType

from .errors import DuplicatePackageName, InvalidManifest, MissingManifest
from .manifest import (
    MANIFEST_NAME,
    get_dependency_map,
    get_package_name,
    get_package_version,
    get_workspace_globs,
    load_manifest,
)
from .models import DependencyKind, Package
from .versions import is_valid_version


def discover_package_dirs(root: Path, patterns: list[str]) -> list[Path]:
    """Expand workspace globs into package directories, sorted and de-duplicated."""
    dirs: list[Path] = []
    seen: set[Path] = set()
    for pattern in patterns:
        for match in sorted(glob.glob(str(root / pattern))):
            p = Path(match)
            if not p.is_dir():
                continue
            resolved = p.resolve()
            if resolved in seen or resolved == root.resolve():
                continue
            seen.add(resolved)
            dirs.append(p)
    return dirs


def read_package(root: Path, directory: Path) -> Package:
    """Build a Package from the manifest in ``directory``.

    Raises:
        MissingManifest: If the directory has no package.json.
        InvalidManifest: If the manifest cannot be parsed.
    """
    manifest_path = directory / MANIFEST_NAME
    if not manifest_path.is_file():
        raise MissingManifest(directory)

    doc = load_manifest(manifest_path)
    version = get_package_version(doc)
    if not is_valid_version(version):
        raise InvalidManifest(manifest_path, f"version {version!r} is not valid semver")

    try:
        deps = {kind: get_dependency_map(doc, kind) for kind in DependencyKind}
    except ValueError as exc:
        raise InvalidManifest(manifest_path, str(exc)) from exc

    return Package(
        name=get_package_name(doc, directory.name),
        version=version,
        path=directory.relative_to(root).as_posix(),
        runtime=deps[DependencyKind.RUNTIME],
        peer=deps[DependencyKind.PEER],
        development=deps[DependencyKind.DEV],
        breaking=doc.get("breaking") is True,
    )


def scan_workspace(root: Path) -> dict[str, Package]:
    """Scan the workspace and return every package keyed by name."""
    root_manifest = root / MANIFEST_NAME
    if not root_manifest.is_file():
        raise MissingManifest(root)
    root_doc = load_manifest(root_manifest)
    try:
        patterns = get_workspace_globs(root_doc)
    except ValueError as exc:
        raise InvalidManifest(root_manifest, str(exc)) from exc

    packages: dict[str, Package] = {}
    for directory in discover_package_dirs(root, patterns):
        pkg = read_package(root, directory)
        if pkg.name in packages:
            raise DuplicatePackageName(pkg.name, [packages[pkg.name].path, pkg.path])
        packages[pkg.name] = pkg

    return dict(sorted(packages.items()))


class Workspace:
    """The loaded set of packages under a workspace root.

    Other components receive this object as a read-only view; only
    ``refresh`` replaces the package collection, and it does so in one
    assignment so readers never observe a partially scanned workspace.
    """

    def __init__(self, root: Path, packages: Mapping[str, Package]) -> None:
        self.root = root
        self._packages: Mapping[str, Package] = MappingProxyType(dict(packages))

    @classmethod
    def load(cls, root: Path | str) -> Workspace:
        root = Path(root)
        return cls(root, scan_workspace(root))

    @property
    def packages(self) -> Mapping[str, Package]:
        return self._packages

    @property
    def names(self) -> list[str]:
        return sorted(self._packages)

    def get(self, name: str) -> Package | None:
        return self._packages.get(name)

    def manifest_path(self, name: str) -> Path:
        return self.root / self._packages[name].path / MANIFEST_NAME

    def versions(self) -> dict[str, str]:
        return {name: pkg.version for name, pkg in self._packages.items()}

    def refresh(self) -> None:
        """Re-scan the workspace.

        On failure the previous collection is kept and the error propagates.
        """
        self._packages = MappingProxyType(scan_workspace(self.root))

    def __contains__(self, name: object) -> bool:
        return name in self._packages

    def __iter__(self) -> Iterator[Package]:
        return iter(self._packages.values())

    def __len__(self) -> int:
        return len(self._packages)
