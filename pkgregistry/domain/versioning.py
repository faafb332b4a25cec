"""
Semantic versions (SemVer 2.0) as the registry understands them.

Versions are ordered by SemVer precedence. Missing minor and patch
components default to zero, so ``1.0`` and ``1.0.0`` are the same version.
Build metadata (``+build.5``) is accepted but plays no part in ordering or
identity: it is dropped from the normalized form.
"""
from __future__ import annotations

from typing import Iterable, Optional, Tuple

from semver import Version

__all__ = [
    "InvalidVersion",
    "is_prerelease",
    "normalize_version",
    "parse_version",
    "pick_pointers",
]


class InvalidVersion(ValueError):
    """Raised for strings that are not semantic versions."""


def parse_version(value: str) -> Version:
    """
    Parse a semantic version such as ``1.2.3``, ``2.0.0-beta.1`` or ``1.0``.

    The result carries no build metadata.
    """
    if value is None:
        raise InvalidVersion("Version is missing")
    text = str(value).strip()
    try:
        parsed = Version.parse(text, optional_minor_and_patch=True)
    except (ValueError, TypeError):
        raise InvalidVersion(f"Invalid version: '{text}'")
    return parsed.replace(build=None)


def normalize_version(value: str) -> str:
    """
    Canonical, lower-cased form used as the storage key of a version record.

    ``1.0``, ``1.0.0`` and ``1.0.0+build.5`` all normalize to ``1.0.0``.
    """
    return str(parse_version(value)).lower()


def is_prerelease(value: str) -> bool:
    return parse_version(value).prerelease is not None


def pick_pointers(versions: Iterable[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Compute the ``(latest, next)`` pointers for a set of normalized versions.

    ``latest`` is the highest non-prerelease version, ``next`` the highest
    version overall. ``next`` is never lower than ``latest``. Entries that no
    longer parse are ignored.
    """
    latest: Optional[Version] = None
    highest: Optional[Version] = None

    for raw in versions:
        try:
            parsed = parse_version(raw)
        except InvalidVersion:
            continue
        if highest is None or parsed > highest:
            highest = parsed
        if parsed.prerelease is None and (latest is None or parsed > latest):
            latest = parsed

    if highest is not None and latest is not None and highest < latest:
        highest = latest

    return (
        str(latest).lower() if latest is not None else None,
        str(highest).lower() if highest is not None else None,
    )
