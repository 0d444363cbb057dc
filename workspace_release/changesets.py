"""Changeset storage.

Changesets live as one JSON file per record in a single directory
(``.changesets/`` by default), named ``<id>.json``. Consumed changesets are
moved into an ``archive/`` subdirectory, next to one
``release-<YYYYMMDDTHHMMSSZ>.json`` summary per committed release. The
archive is never enumerated as pending work; ``ChangesetStore.history``
reads it back.
"""

from __future__ import annotations

import json
import os
import re
import uuid
from collections.abc import Collection, Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .errors import ChangesetNotFound, DuplicateChangesetId, MalformedChangeset
from .manifest import write_atomic
from .models import (
    ORDERING_KINDS,
    ArchivedChangeset,
    BumpLevel,
    Changeset,
    ChangesetFileError,
    ChangesetHistory,
    ChangesetListing,
    ReleaseSummary,
    ValidationResult,
)
from .workspace import Workspace

CHANGESET_SUFFIX = ".json"
ARCHIVE_DIR = "archive"

_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_SUMMARY_RE = re.compile(r"^release-\d{8}T\d{6}Z(-\d+)?\.json$")


def slugify(name: str) -> str:
    """Turn a package name into a file-name friendly slug.

    Examples:
        "@scope/leaf" → "scope-leaf"
    """
    slug = re.sub(r"[^A-Za-z0-9]+", "-", name).strip("-").lower()
    return slug or "changeset"


def new_changeset_id(package: str) -> str:
    return f"{slugify(package)}-{uuid.uuid4().hex[:8]}"


def parse_changeset_file(path: Path) -> Changeset:
    """Load one changeset file.

    Raises:
        MalformedChangeset: If the file is not a well-formed record or its
            ``id`` does not match the file name.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedChangeset(path, str(exc)) from exc
    if not isinstance(data, dict):
        raise MalformedChangeset(path, "top-level value must be an object")
    try:
        changeset = Changeset.model_validate(data)
    except ValidationError as exc:
        raise MalformedChangeset(path, _describe(exc)) from exc
    if changeset.id != path.stem:
        raise MalformedChangeset(
            path, f"id {changeset.id!r} does not match file name {path.name!r}"
        )
    return changeset


def _describe(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or '<record>'}: {err['msg']}"
        for err in exc.errors()
    )


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 date or timestamp; values without an offset are UTC.

    Raises:
        ValueError: If ``value`` is not ISO-8601.
    """
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def summary_name(released_at: str) -> str:
    stamp = parse_timestamp(released_at).astimezone(timezone.utc)
    return f"release-{stamp.strftime('%Y%m%dT%H%M%SZ')}.json"


class ChangesetStore:
    """Reads and writes the changeset directory.

    Args:
        directory: The changeset directory (created on first write).
        environments: Environment identifiers changesets may target.
    """

    def __init__(self, directory: Path | str, environments: Iterable[str] = ()) -> None:
        self.directory = Path(directory)
        self.environments = list(environments)

    @property
    def archive_dir(self) -> Path:
        return self.directory / ARCHIVE_DIR

    def path_for(self, changeset_id: str) -> Path:
        return self.directory / f"{changeset_id}{CHANGESET_SUFFIX}"

    def _files(self) -> list[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(
            p
            for p in self.directory.iterdir()
            if p.is_file() and p.suffix == CHANGESET_SUFFIX and not p.name.startswith(".")
        )

    def list_changesets(self) -> ChangesetListing:
        """Load every changeset, sorted by id.

        A malformed file is reported in ``errors`` and does not stop the
        remaining files from loading.
        """
        changesets: list[Changeset] = []
        errors: list[ChangesetFileError] = []
        for path in self._files():
            try:
                changesets.append(parse_changeset_file(path))
            except MalformedChangeset as exc:
                errors.append(ChangesetFileError(path=str(path), reason=exc.reason))
        changesets.sort(key=lambda cs: cs.id)
        return ChangesetListing(changesets=changesets, errors=errors)

    def get(self, changeset_id: str) -> Changeset:
        path = self.path_for(changeset_id)
        if not path.is_file():
            raise ChangesetNotFound(changeset_id)
        return parse_changeset_file(path)

    def create(self, record: Changeset | dict[str, Any]) -> Changeset:
        """Write a new changeset file.

        Allocates an id when the record has none and stamps the current time
        when no timestamp is given.

        Raises:
            DuplicateChangesetId: If a pending or archived changeset already
                uses that id.
            MalformedChangeset: If the record is not valid.
        """
        data = record.to_record() if isinstance(record, Changeset) else dict(record)
        if not data.get("id"):
            data["id"] = new_changeset_id(str(data.get("package", "")))
        if not data.get("timestamp"):
            data["timestamp"] = datetime.now(timezone.utc).isoformat(timespec="seconds")

        path = self.path_for(str(data["id"]))
        try:
            changeset = Changeset.model_validate(data)
        except ValidationError as exc:
            raise MalformedChangeset(path, _describe(exc)) from exc
        if not _ID_RE.match(changeset.id):
            raise MalformedChangeset(path, f"id {changeset.id!r} is not a valid file name")
        if _SUMMARY_RE.match(path.name):
            raise MalformedChangeset(path, f"id {changeset.id!r} is reserved for release summaries")
        if path.exists() or (self.archive_dir / path.name).exists():
            raise DuplicateChangesetId(changeset.id)

        self.directory.mkdir(parents=True, exist_ok=True)
        write_atomic(path, _encode(changeset))
        return changeset

    def write(self, changeset: Changeset) -> None:
        """Rewrite an existing changeset, keeping unknown fields."""
        path = self.path_for(changeset.id)
        if not path.is_file():
            raise ChangesetNotFound(changeset.id)
        write_atomic(path, _encode(changeset))

    def validate(self, changeset: Changeset, workspace: Workspace) -> ValidationResult:
        """Check a changeset against the workspace and configured environments."""
        errors: list[str] = []
        warnings: list[str] = []

        if not _ID_RE.match(changeset.id):
            errors.append(f"Changeset id {changeset.id!r} is not a valid file name")

        if not changeset.package.strip():
            errors.append("Package name cannot be empty")
        elif changeset.package not in workspace:
            errors.append(f"Package {changeset.package!r} not found in workspace")

        if changeset.version_bump not in (BumpLevel.PATCH, BumpLevel.MINOR, BumpLevel.MAJOR):
            errors.append(f"Invalid version bump {changeset.version_bump.value!r}")

        if not changeset.description.strip():
            errors.append("Description cannot be empty")
        elif len(changeset.description.strip()) < 10:
            warnings.append("Description is very short - consider providing more detail")

        unknown = [env for env in changeset.environments if env not in self.environments]
        for env in unknown:
            errors.append(f"Environment {env!r} is not a configured environment")
        if not changeset.environments and not changeset.production_deployment:
            warnings.append("No deployment environments specified")

        if changeset.timestamp:
            try:
                parse_timestamp(changeset.timestamp)
            except ValueError:
                errors.append(f"Timestamp {changeset.timestamp!r} is not ISO-8601")

        if changeset.version_bump is BumpLevel.MAJOR and changeset.package in workspace:
            dependents = sorted(
                pkg.name
                for pkg in workspace
                if any(changeset.package in pkg.requirements(k) for k in ORDERING_KINDS)
            )
            if dependents:
                warnings.append(
                    f"Major version bump will affect {len(dependents)} dependent "
                    f"package(s): {', '.join(dependents)}"
                )

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def remove(self, changeset_id: str) -> None:
        path = self.path_for(changeset_id)
        if not path.is_file():
            raise ChangesetNotFound(changeset_id)
        path.unlink()

    def archive(self, ids: Collection[str]) -> list[Path]:
        """Move changesets into the archive directory.

        Every id is checked before anything moves, so an unknown id or an
        id already in the archive leaves both directories untouched.

        Raises:
            ChangesetNotFound: For the first id with no file.
            DuplicateChangesetId: For the first id already archived.
        """
        sources = []
        for changeset_id in sorted(set(ids)):
            path = self.path_for(changeset_id)
            if not path.is_file():
                raise ChangesetNotFound(changeset_id)
            if (self.archive_dir / path.name).exists():
                raise DuplicateChangesetId(changeset_id)
            sources.append(path)

        if sources:
            self.archive_dir.mkdir(parents=True, exist_ok=True)
        moved: list[Path] = []
        for path in sources:
            target = self.archive_dir / path.name
            os.replace(path, target)
            moved.append(target)
        return moved

    def summary_path(self, released_at: str) -> Path:
        """Unused archive path for a release summary.

        A second release within the same second gets a ``-2`` suffix, and so on.
        """
        first = self.archive_dir / summary_name(released_at)
        path, counter = first, 2
        while path.exists():
            path = first.with_name(f"{first.stem}-{counter}{first.suffix}")
            counter += 1
        return path

    def _archived_files(self) -> tuple[list[Path], list[Path]]:
        """Split the archive into changeset files and release summaries."""
        if not self.archive_dir.is_dir():
            return [], []
        changesets: list[Path] = []
        summaries: list[Path] = []
        for p in sorted(self.archive_dir.iterdir()):
            if not p.is_file() or p.suffix != CHANGESET_SUFFIX or p.name.startswith("."):
                continue
            (summaries if _SUMMARY_RE.match(p.name) else changesets).append(p)
        return changesets, summaries

    def _releases(self, errors: list[ChangesetFileError]) -> dict[str, ReleaseSummary]:
        """Map each archived changeset id to the release that consumed it."""
        releases: dict[str, ReleaseSummary] = {}
        for path in self._archived_files()[1]:
            try:
                summary = ReleaseSummary.model_validate_json(path.read_bytes())
                parse_timestamp(summary.released_at)
            except (OSError, ValueError) as exc:
                errors.append(ChangesetFileError(path=str(path), reason=str(exc)))
                continue
            for changeset_id in summary.archived_changesets:
                known = releases.get(changeset_id)
                if known is None or known.released_at < summary.released_at:
                    releases[changeset_id] = summary
        return releases

    def _archived(self, changeset: Changeset, release: ReleaseSummary | None) -> ArchivedChangeset:
        if release is None:
            return ArchivedChangeset(changeset=changeset)
        return ArchivedChangeset(
            changeset=changeset,
            released_at=release.released_at,
            vcs_ref=release.vcs_ref,
            version=release.bumps.get(changeset.package),
        )

    def get_archived(self, changeset_id: str) -> ArchivedChangeset:
        """Load one archived changeset together with its release.

        Raises:
            ChangesetNotFound: If the archive has no changeset with that id.
            MalformedChangeset: If the archived file cannot be read.
        """
        path = self.archive_dir / f"{changeset_id}{CHANGESET_SUFFIX}"
        if not path.is_file() or _SUMMARY_RE.match(path.name):
            raise ChangesetNotFound(changeset_id)
        changeset = parse_changeset_file(path)
        return self._archived(changeset, self._releases([]).get(changeset_id))

    def history(
        self,
        package: str | None = None,
        environment: str | None = None,
        bump: BumpLevel | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> ChangesetHistory:
        """Query archived changesets, newest release first.

        Entries of the same release are sorted by id; changesets with no
        recorded release come last. ``since`` and ``until`` are inclusive
        and drop entries whose release time is unknown. Unreadable archive
        files are reported in ``errors``.

        Args:
            package: Only changesets for this package.
            environment: Only changesets targeting this environment.
            bump: Only changesets with this bump level.
            since: Only changesets released at or after this time.
            until: Only changesets released at or before this time.
            limit: Keep at most this many entries.
        """
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        if until is not None and until.tzinfo is None:
            until = until.replace(tzinfo=timezone.utc)
        errors: list[ChangesetFileError] = []
        releases = self._releases(errors)
        entries: list[ArchivedChangeset] = []
        for path in self._archived_files()[0]:
            try:
                changeset = parse_changeset_file(path)
            except MalformedChangeset as exc:
                errors.append(ChangesetFileError(path=str(path), reason=exc.reason))
                continue
            if package is not None and changeset.package != package:
                continue
            if environment is not None and environment not in changeset.environments:
                continue
            if bump is not None and changeset.version_bump is not bump:
                continue
            entry = self._archived(changeset, releases.get(changeset.id))
            if since is not None or until is not None:
                if entry.released_at is None:
                    continue
                released = parse_timestamp(entry.released_at)
                if since is not None and released < since:
                    continue
                if until is not None and released > until:
                    continue
            entries.append(entry)

        entries.sort(key=lambda e: e.changeset.id)
        entries.sort(key=lambda e: e.released_at or "", reverse=True)
        if limit is not None:
            entries = entries[:limit]
        return ChangesetHistory(entries=entries, errors=errors)


def _encode(changeset: Changeset) -> bytes:
    return (json.dumps(changeset.to_record(), indent=2, ensure_ascii=False) + "\n").encode(
        "utf-8"
    )
