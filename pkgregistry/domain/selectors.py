"""
Version selectors and the tag resolution rule.

Every read path accepts either a literal version or one of the symbolic tags
``latest`` / ``next``. ``select_version`` is the one place that decides which
concrete version a tag points at.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .errors import NoStableVersionError
from .models import PackageRoot
from .versioning import normalize_version

LATEST_TAG = "latest"
NEXT_TAG = "next"


class SelectorKind(str, Enum):
    LITERAL = "literal"
    LATEST = "latest"
    NEXT = "next"


class VersionSelector(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: SelectorKind
    version: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> "VersionSelector":
        """
        Parse a selector string.

        Raises ``InvalidVersion`` when the value is neither a tag nor a valid version.
        """
        text = (value or "").strip()
        lowered = text.lower()
        if lowered == LATEST_TAG:
            return cls(kind=SelectorKind.LATEST)
        if lowered == NEXT_TAG:
            return cls(kind=SelectorKind.NEXT)
        return cls(kind=SelectorKind.LITERAL, version=normalize_version(text))

    @classmethod
    def literal(cls, version: str) -> "VersionSelector":
        return cls(kind=SelectorKind.LITERAL, version=normalize_version(version))

    @property
    def is_tag(self) -> bool:
        return self.kind != SelectorKind.LITERAL

    @property
    def key(self) -> str:
        """Stable cache key component for this selector."""
        if self.kind == SelectorKind.LITERAL:
            return f"v:{self.version}"
        return f"tag:{self.kind.value}"

    def __str__(self) -> str:
        return self.version if self.kind == SelectorKind.LITERAL else self.kind.value


def select_version(root: PackageRoot, selector: VersionSelector) -> str:
    """
    Map a selector to the normalized version it designates for this package.

    ``next`` falls back to ``latest`` when no next pointer is recorded.
    ``latest`` without any stable version raises ``NoStableVersionError``,
    which is distinct from the package itself not existing.
    """
    if selector.kind == SelectorKind.LITERAL:
        return selector.version

    if selector.kind == SelectorKind.NEXT and root.next:
        return root.next

    if root.latest:
        return root.latest

    raise NoStableVersionError(root.id)
