"""package.json reading and writing utilities.

Manifests are loaded into plain dicts so that fields this tool does not
understand survive a load/save round trip in their original order. Writes
go through a temporary file in the same directory followed by an atomic
rename, so a manifest is never observed half-written.
"""

from __future__ import annotations

import json
import os
import stat
import tempfile
from pathlib import Path
from typing import Any

from .errors import InvalidManifest
from .models import DependencyKind
from .versions import rewrite_requirement

MANIFEST_NAME = "package.json"

DEPENDENCY_FIELDS: dict[DependencyKind, str] = {
    DependencyKind.RUNTIME: "dependencies",
    DependencyKind.PEER: "peerDependencies",
    DependencyKind.DEV: "devDependencies",
}


def load_manifest(path: Path) -> dict[str, Any]:
    """Load and parse a package.json file.

    Raises:
        InvalidManifest: If the file is not a JSON object.
    """
    try:
        doc = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidManifest(path, str(exc)) from exc
    if not isinstance(doc, dict):
        raise InvalidManifest(path, "top-level value must be an object")
    return doc


def detect_format(text: str) -> tuple[str | int, bool]:
    """Return the indent unit and trailing-newline flag of a JSON document.

    Falls back to two spaces when the document has no indented line.
    """
    indent: str | int = 2
    for line in text.splitlines()[1:]:
        stripped = line.lstrip(" \t")
        if stripped and stripped != line:
            unit = line[: len(line) - len(stripped)]
            indent = unit if "\t" in unit else len(unit)
            break
    return indent, text.endswith("\n")


def dump_manifest(doc: dict[str, Any], indent: str | int = 2, trailing_newline: bool = True) -> str:
    text = json.dumps(doc, indent=indent, ensure_ascii=False)
    return text + "\n" if trailing_newline else text


def _default_mode() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def write_atomic(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via a temp file and ``os.replace``.

    The file keeps its permission bits when it already exists; a new file
    gets the default mode for the current umask.
    """
    try:
        mode = stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        mode = _default_mode()
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def save_manifest(path: Path, doc: dict[str, Any]) -> None:
    """Save a manifest back to disk atomically, preserving field order.

    An existing file's indentation and trailing newline are kept.
    """
    indent: str | int = 2
    trailing_newline = True
    if path.is_file():
        indent, trailing_newline = detect_format(path.read_text(encoding="utf-8"))
    write_atomic(path, dump_manifest(doc, indent, trailing_newline).encode("utf-8"))


def get_package_name(doc: dict[str, Any], fallback: str) -> str:
    """Extract the package name, stripped of surrounding whitespace.

    Args:
        doc: Parsed manifest.
        fallback: Value to return if name is not specified.
    """
    name = doc.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    return fallback


def get_package_version(doc: dict[str, Any]) -> str:
    """Extract version, defaulting to '0.0.0'."""
    version = doc.get("version", "0.0.0")
    return str(version).strip()


def get_dependency_map(doc: dict[str, Any], kind: DependencyKind) -> dict[str, str]:
    """Return one of the three dependency maps as name → requirement.

    Raises:
        ValueError: If the field exists but is not an object of strings.
    """
    value = doc.get(DEPENDENCY_FIELDS[kind], {})
    if not isinstance(value, dict):
        raise ValueError(f"{DEPENDENCY_FIELDS[kind]} must be an object")
    deps: dict[str, str] = {}
    for name, requirement in value.items():
        if not isinstance(requirement, str):
            raise ValueError(
                f"{DEPENDENCY_FIELDS[kind]}.{name} must be a version requirement string"
            )
        deps[name.strip()] = requirement.strip()
    return deps


def get_workspace_globs(doc: dict[str, Any]) -> list[str]:
    """Extract workspace glob patterns from the root manifest.

    Accepts both ``"workspaces": [...]`` and the object form
    ``"workspaces": {"packages": [...]}``. A root without a ``workspaces``
    field is an empty workspace.
    """
    value = doc.get("workspaces", [])
    if isinstance(value, dict):
        value = value.get("packages", [])
    if not isinstance(value, list) or not all(isinstance(p, str) for p in value):
        raise ValueError("workspaces must be an array of glob strings")
    return list(value)


def rewrite_manifest(
    manifest_path: Path,
    new_version: str,
    internal_dep_versions: dict[str, str],
) -> None:
    """Update a package's version and point internal requirements at new versions.

    This function:
    1. Updates ``version`` to new_version
    2. Rewrites every requirement on a package in ``internal_dep_versions``,
       keeping its operator (see ``versions.rewrite_requirement``)

    Requirements are rewritten in ``dependencies``, ``peerDependencies``
    and ``devDependencies``. All other fields are left untouched.

    Args:
        manifest_path: Path to the package.json file.
        new_version: New version string to set.
        internal_dep_versions: Map of package name → version for planned deps.
    """
    doc = load_manifest(manifest_path)
    doc["version"] = new_version

    for field in DEPENDENCY_FIELDS.values():
        deps = doc.get(field)
        if isinstance(deps, dict):
            for name, requirement in deps.items():
                if name in internal_dep_versions and isinstance(requirement, str):
                    deps[name] = rewrite_requirement(requirement, internal_dep_versions[name])

    save_manifest(manifest_path, doc)
