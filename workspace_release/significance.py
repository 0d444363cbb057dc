"""Significance classification: suggest a bump from the files that changed.

A classifier is anything with a ``name`` and a ``classify`` method taking a
``PackageChange`` and returning a ``BumpLevel``. The default heuristic:

- only documentation/metadata files changed → none
- new files under the published entry path → minor
- any other modification → patch
- a deletion or rename under the entry path, or a manifest breaking
  marker → major

When several signals apply, the strongest one wins. Suggestions never
override an explicit changeset.
"""

from __future__ import annotations

from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from fnmatch import fnmatch
from typing import Protocol

from .config import DEFAULT_DOC_PATTERNS
from .models import BumpLevel, FileChange, FileChangeKind, PackageChange


class Classifier(Protocol):
    name: str

    def classify(self, change: PackageChange) -> BumpLevel: ...


class DefaultClassifier:
    """Path-based heuristic over a package's changed files."""

    name = "default"

    def __init__(
        self,
        entry_paths: Iterable[str] = ("src", "lib"),
        doc_patterns: Iterable[str] = DEFAULT_DOC_PATTERNS,
    ) -> None:
        self.entry_paths = [p.strip("/") for p in entry_paths if p.strip("/")]
        self.doc_patterns = list(doc_patterns)

    def is_documentation(self, path: str) -> bool:
        basename = path.rsplit("/", 1)[-1]
        return any(fnmatch(path, pat) or fnmatch(basename, pat) for pat in self.doc_patterns)

    def is_exported(self, path: str) -> bool:
        if path.endswith(".d.ts"):
            return True
        return any(path == p or path.startswith(p + "/") for p in self.entry_paths)

    def classify_file(self, change: FileChange) -> BumpLevel:
        if self.is_documentation(change.path) and (
            change.old_path is None or self.is_documentation(change.old_path)
        ):
            return BumpLevel.NONE

        exported = self.is_exported(change.path)
        if change.kind is FileChangeKind.DELETED and exported:
            return BumpLevel.MAJOR
        if change.kind is FileChangeKind.RENAMED and (
            exported or (change.old_path is not None and self.is_exported(change.old_path))
        ):
            return BumpLevel.MAJOR
        if change.kind is FileChangeKind.ADDED and exported:
            return BumpLevel.MINOR
        return BumpLevel.PATCH

    def classify(self, change: PackageChange) -> BumpLevel:
        if change.breaking:
            return BumpLevel.MAJOR
        return BumpLevel.strongest(self.classify_file(f) for f in change.file_changes)


def suggest_bumps(
    changes: list[PackageChange],
    classifier: Classifier | None = None,
    *,
    max_workers: int = 1,
) -> list[PackageChange]:
    """Return copies of ``changes`` with ``suggested_bump`` filled in.

    Packages are classified independently, optionally on a thread pool;
    the output keeps the input order.
    """
    classifier = classifier or DefaultClassifier()

    def classify(change: PackageChange) -> PackageChange:
        return change.model_copy(update={"suggested_bump": classifier.classify(change)})

    if max_workers > 1 and len(changes) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(classify, changes))
    return [classify(change) for change in changes]
