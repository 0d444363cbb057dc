"""Release configuration.

Settings are read from an optional ``release.toml`` at the workspace root,
either as top-level keys or under a ``[release]`` table::

    environments = ["development", "staging", "integration", "production"]
    propagate_major = true
    propagate_dev_dependencies = false
    max_workers = 4
    changeset_dir = ".changesets"
    prerelease = "strip"

A missing file yields the defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import tomlkit
from pydantic import BaseModel, Field, ValidationError, field_validator
from tomlkit.exceptions import TOMLKitError

from .errors import ConfigError

CONFIG_NAME = "release.toml"

DEFAULT_ENVIRONMENTS = ["development", "staging", "integration", "production"]

DEFAULT_DOC_PATTERNS = [
    "*.md",
    "*.mdx",
    "*.txt",
    "docs/*",
    "LICENSE*",
    "CHANGELOG*",
    ".npmignore",
    ".gitignore",
    ".editorconfig",
]


class ReleaseConfig(BaseModel):
    """Configuration consumed by the analysis and release components.

    Attributes:
        environments: Environment identifiers changesets may target.
        propagate_major: Release dependents of a major-bumped package.
        propagate_dev_dependencies: Also release packages that only list a
            major-bumped package under ``devDependencies``. Off by default,
            so such a package with a range the new version misses makes
            the plan fail with a version conflict.
        max_workers: Upper bound on analysis threads.
        changeset_dir: Changeset directory, relative to the workspace root.
        prerelease: ``strip`` drops pre-release tags when bumping,
            ``preserve`` carries them over.
        entry_paths: Package-relative directories holding the published API.
        doc_patterns: Globs (package-relative) for documentation and
            metadata files that never require a release.
    """

    environments: list[str] = Field(default_factory=lambda: list(DEFAULT_ENVIRONMENTS))
    propagate_major: bool = True
    propagate_dev_dependencies: bool = False
    max_workers: int = Field(default=4, ge=1)
    changeset_dir: str = ".changesets"
    prerelease: Literal["strip", "preserve"] = "strip"
    entry_paths: list[str] = Field(default_factory=lambda: ["src", "lib"])
    doc_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_DOC_PATTERNS))

    @field_validator("environments")
    @classmethod
    def _unique_environments(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for env in value:
            env = env.strip()
            if env and env not in seen:
                seen.append(env)
        return seen


def find_config(root: Path) -> Path | None:
    path = root / CONFIG_NAME
    return path if path.is_file() else None


def load_config(root: Path) -> ReleaseConfig:
    """Load ``release.toml`` from the workspace root.

    Raises:
        ConfigError: If the file cannot be parsed or has invalid values.
    """
    path = find_config(root)
    if path is None:
        return ReleaseConfig()

    try:
        doc = tomlkit.parse(path.read_text(encoding="utf-8"))
    except (OSError, TOMLKitError) as exc:
        raise ConfigError(path, str(exc)) from exc

    data = doc.unwrap()
    if isinstance(data.get("release"), dict):
        data = data["release"]

    try:
        return ReleaseConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(path, str(exc)) from exc
