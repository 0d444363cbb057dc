"""Data models for workspace-release.

These Pydantic models represent the core data structures passed between
the analysis components and the release planner. Everything except the
changeset records is treated as an immutable view once produced.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class BumpLevel(str, Enum):
    """Version bump severity, ordered none < patch < minor < major."""

    NONE = "none"
    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"

    @property
    def rank(self) -> int:
        return _BUMP_RANK[self]

    @classmethod
    def strongest(cls, levels) -> BumpLevel:
        """Return the most severe level in ``levels`` (NONE when empty)."""
        return max(levels, key=lambda level: level.rank, default=cls.NONE)


_BUMP_RANK = {
    BumpLevel.NONE: 0,
    BumpLevel.PATCH: 1,
    BumpLevel.MINOR: 2,
    BumpLevel.MAJOR: 3,
}


class DependencyKind(str, Enum):
    RUNTIME = "runtime"
    PEER = "peer"
    DEV = "dev"


# Edge kinds that participate in ordering and cycle detection.
ORDERING_KINDS = frozenset({DependencyKind.RUNTIME, DependencyKind.PEER})
ALL_KINDS = frozenset(DependencyKind)


class FileChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class Package(BaseModel):
    """A single package in the workspace.

    Attributes:
        name: Package name, unique within the workspace (e.g. ``@scope/leaf``).
        version: Current version string from the manifest.
        path: Relative path from workspace root to the package directory.
        runtime: ``dependencies`` map of name → requirement.
        peer: ``peerDependencies`` map of name → requirement.
        development: ``devDependencies`` map of name → requirement.
        breaking: True when the manifest carries a breaking-change marker.
    """

    name: str
    version: str
    path: str
    runtime: dict[str, str] = Field(default_factory=dict)
    peer: dict[str, str] = Field(default_factory=dict)
    development: dict[str, str] = Field(default_factory=dict)
    breaking: bool = False

    def requirements(self, kind: DependencyKind) -> dict[str, str]:
        if kind is DependencyKind.RUNTIME:
            return self.runtime
        if kind is DependencyKind.PEER:
            return self.peer
        return self.development


class Edge(BaseModel):
    """A directed dependency edge: ``dependent`` depends on ``dependency``."""

    model_config = ConfigDict(frozen=True)

    dependent: str
    dependency: str
    kind: DependencyKind
    requirement: str


class FileChange(BaseModel):
    """A single changed file as reported by the VCS collaborator.

    Inside a ``PackageChange`` the path is relative to the package directory;
    in the unowned bucket it is relative to the workspace root.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    kind: FileChangeKind
    old_path: str | None = None


class PackageChange(BaseModel):
    """All file changes attributed to one package."""

    name: str
    file_changes: list[FileChange] = Field(default_factory=list)
    suggested_bump: BumpLevel = BumpLevel.NONE
    breaking: bool = False


class ChangeReport(BaseModel):
    """Output of the change detector for a revision range."""

    from_rev: str
    to_rev: str
    packages: list[PackageChange] = Field(default_factory=list)
    unowned: list[FileChange] = Field(default_factory=list)

    @property
    def changed_names(self) -> list[str]:
        return [change.name for change in self.packages]


class AffectedSet(BaseModel):
    """Packages affected by a change: directly changed plus dependents.

    ``transitive`` never overlaps ``directly``, and ``total_unique`` is the
    size of the union, so a package reachable several ways counts once.
    """

    model_config = ConfigDict(frozen=True)

    directly: frozenset[str] = frozenset()
    transitive: frozenset[str] = frozenset()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_unique(self) -> int:
        return len(self.directly | self.transitive)


class Changeset(BaseModel):
    """A user-authored request to bump one package.

    Unknown fields found on disk are kept (``extra="allow"``) and written
    back unchanged. ``provenance`` lists the ids of the original changesets
    a resolved record was merged from.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    package: str
    version_bump: BumpLevel
    description: str
    author: str | None = None
    timestamp: str | None = None
    environments: list[str] = Field(default_factory=list)
    production_deployment: bool = False
    provenance: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_bump(self) -> Changeset:
        if self.version_bump is BumpLevel.NONE:
            raise ValueError("version_bump must be one of patch, minor, major")
        return self

    def to_record(self) -> dict:
        """Serialize for writing to a changeset file."""
        exclude = None if self.provenance else {"provenance"}
        return self.model_dump(mode="json", exclude=exclude)


class ValidationResult(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ChangesetFileError(BaseModel):
    """A changeset file that could not be loaded."""

    path: str
    reason: str


class ChangesetListing(BaseModel):
    """Changesets found on disk, plus the files that failed to load."""

    changesets: list[Changeset] = Field(default_factory=list)
    errors: list[ChangesetFileError] = Field(default_factory=list)


class ResolutionConflict(BaseModel):
    """Disagreement between changesets targeting the same package."""

    package: str
    field: str
    values: list[str]
    changeset_ids: list[str]
    resolved: str


class Resolution(BaseModel):
    changesets: list[Changeset] = Field(default_factory=list)
    conflicts: list[ResolutionConflict] = Field(default_factory=list)


class VersionConflict(BaseModel):
    """An edge whose requirement is not satisfied by the dependency version.

    ``via`` names the package that declared a peer requirement when the
    conflict was inherited by one of its transitive dependents.
    """

    model_config = ConfigDict(frozen=True)

    dependent: str
    dependency: str
    required: str
    actual: str
    kind: DependencyKind = DependencyKind.RUNTIME
    via: str | None = None

    def __str__(self) -> str:
        via = f" (peer requirement of {self.via})" if self.via else ""
        return (
            f"{self.dependent} requires {self.dependency} {self.required}, "
            f"found {self.actual}{via}"
        )


class PlanStep(BaseModel):
    package: str
    from_version: str
    to_version: str
    level: BumpLevel
    reason: str


class ReleasePlan(BaseModel):
    steps: list[PlanStep] = Field(default_factory=list)
    changeset_ids: list[str] = Field(default_factory=list)

    @property
    def packages(self) -> list[str]:
        return [step.package for step in self.steps]

    @property
    def is_empty(self) -> bool:
        return not self.steps

    def step_for(self, name: str) -> PlanStep | None:
        for step in self.steps:
            if step.package == name:
                return step
        return None


class PlanError(BaseModel):
    """A semantic problem that prevents producing a plan."""

    code: str
    message: str
    package: str | None = None
    conflict: VersionConflict | None = None


class PlanResult(BaseModel):
    """Either a plan or the errors that prevented it. Never both."""

    plan: ReleasePlan | None = None
    errors: list[PlanError] = Field(default_factory=list)

    @model_validator(mode="after")
    def _plan_xor_errors(self) -> PlanResult:
        if (self.plan is None) == (not self.errors):
            raise ValueError("PlanResult holds exactly one of plan or errors")
        return self

    @property
    def ok(self) -> bool:
        return self.plan is not None


class VersionBump(BaseModel):
    """Records a version change applied to a package.

    Attributes:
        old: The version before bumping.
        new: The version after bumping.
    """

    old: str
    new: str


class ReleaseSummary(BaseModel):
    """Summary recorded when a release transaction commits."""

    released_at: str
    vcs_ref: str | None = None
    bumps: dict[str, VersionBump] = Field(default_factory=dict)
    archived_changesets: list[str] = Field(default_factory=list)


class ArchivedChangeset(BaseModel):
    """A consumed changeset, with the release that consumed it when known."""

    changeset: Changeset
    released_at: str | None = None
    vcs_ref: str | None = None
    version: VersionBump | None = None


class ChangesetHistory(BaseModel):
    """Archived changesets, newest release first, plus unreadable archive files."""

    entries: list[ArchivedChangeset] = Field(default_factory=list)
    errors: list[ChangesetFileError] = Field(default_factory=list)
