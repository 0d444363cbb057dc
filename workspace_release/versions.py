"""Version parsing, bumping and requirement matching.

Handles conversion between version strings and semver objects, with
special handling for incomplete version strings (e.g., "1.0" → "1.0.0"),
and the reduced requirement grammar used by workspace manifests:

- exact:     ``1.2.3``
- caret:     ``^1.2.3`` (same major, at least 1.2.3)
- tilde:     ``~1.2.3`` (same major and minor, at least 1.2.3)
- workspace: ``workspace:*`` (always satisfied by the workspace copy)

Anything else is compared as an exact version.
"""

from __future__ import annotations

import re

import semver

from .models import BumpLevel

WORKSPACE_PREFIX = "workspace:"

_CORE_RE = re.compile(r"^v?(\d+(?:\.\d+){0,2})(.*)$")


def parse_version(version_str: str) -> semver.Version:
    """Parse a version string into a semver.Version object.

    Handles incomplete versions by padding with zeros:
    - "1" → "1.0.0"
    - "1.2" → "1.2.0"
    - "1.2.3-beta.1" → "1.2.3-beta.1"

    Raises:
        ValueError: If the string is not a valid version.
    """
    text = version_str.strip()
    match = _CORE_RE.match(text)
    if not match:
        raise ValueError(f"{version_str!r} is not valid SemVer string")
    core, rest = match.groups()
    parts = core.split(".")
    # Pad with zeros to ensure we have exactly 3 parts
    while len(parts) < 3:
        parts.append("0")
    return semver.Version.parse(".".join(parts) + rest)


def is_valid_version(version_str: str) -> bool:
    try:
        parse_version(version_str)
    except ValueError:
        return False
    return True


def apply_bump(version_str: str, level: BumpLevel, prerelease: str = "strip") -> str:
    """Bump a version by ``level`` and return it as a string.

    A pre-release tag on the input is dropped before bumping when
    ``prerelease`` is ``"strip"`` and carried over to the result when it
    is ``"preserve"``. Build metadata is always dropped.

    Examples:
        apply_bump("1.2.3", PATCH) → "1.2.4"
        apply_bump("1.2.3", MAJOR) → "2.0.0"
        apply_bump("1.2.3-rc.1", MINOR) → "1.3.0"
        apply_bump("1.2.3-rc.1", MINOR, "preserve") → "1.3.0-rc.1"
    """
    current = parse_version(version_str)
    tag = current.prerelease
    base = semver.Version(current.major, current.minor, current.patch)

    if level is BumpLevel.MAJOR:
        bumped = base.bump_major()
    elif level is BumpLevel.MINOR:
        bumped = base.bump_minor()
    elif level is BumpLevel.PATCH:
        bumped = base.bump_patch()
    else:
        bumped = base

    if prerelease == "preserve" and tag:
        bumped = bumped.replace(prerelease=tag)
    return str(bumped)


def bump_patch(version_str: str) -> str:
    """Increment the patch version and return as a string.

    Examples:
        "1.2.3" → "1.2.4"
        "1.0" → "1.0.1"
    """
    return apply_bump(version_str, BumpLevel.PATCH)


def is_workspace_marker(requirement: str) -> bool:
    """True for ``workspace:``, ``workspace:*``, ``workspace:^`` and ``workspace:~``.

    These always resolve to the workspace copy, whatever its version.
    """
    req = requirement.strip()
    return req.startswith(WORKSPACE_PREFIX) and req[len(WORKSPACE_PREFIX):].strip() in (
        "",
        "*",
        "^",
        "~",
    )


def satisfies(actual: str, requirement: str) -> bool:
    """Check whether ``actual`` meets ``requirement``.

    Total over its inputs: an unparseable version or requirement never
    raises, it is compared as a plain string instead.
    """
    if is_workspace_marker(requirement):
        return True
    req = requirement.strip()
    if req.startswith(WORKSPACE_PREFIX):
        req = req[len(WORKSPACE_PREFIX):].strip()

    op = ""
    if req[:1] in ("^", "~"):
        op, req = req[0], req[1:].strip()

    try:
        have = parse_version(actual)
        want = parse_version(req)
    except ValueError:
        return not op and actual.strip() == req

    if op == "^":
        return have.major == want.major and have.compare(want) >= 0
    if op == "~":
        return (
            have.major == want.major
            and have.minor == want.minor
            and have.compare(want) >= 0
        )
    return have.compare(want) == 0


def rewrite_requirement(requirement: str, new_version: str) -> str:
    """Point a requirement at ``new_version``, keeping its operator.

    Workspace markers (``workspace:*`` and friends) already track the
    workspace copy and are returned unchanged.

    Examples:
        rewrite_requirement("^1.0.0", "2.0.0") → "^2.0.0"
        rewrite_requirement("~1.0.0", "1.0.1") → "~1.0.1"
        rewrite_requirement("1.0.0", "1.1.0") → "1.1.0"
        rewrite_requirement("workspace:*", "2.0.0") → "workspace:*"
    """
    if is_workspace_marker(requirement):
        return requirement
    req = requirement.strip()
    if req.startswith(WORKSPACE_PREFIX):
        rest = req[len(WORKSPACE_PREFIX):].strip()
        return WORKSPACE_PREFIX + rewrite_requirement(rest, new_version)
    if req[:1] in ("^", "~"):
        return f"{req[0]}{new_version}"
    return new_version
