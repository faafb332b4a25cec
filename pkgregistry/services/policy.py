"""
Publishing policies consumed by the validator and the metadata service.

Real deployments plug in their own identity service and content filter; the
implementations here are driven by the registry configuration.
"""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Iterable

from pkgregistry.domain.models import PackageRoot, Publisher


class TextPolicy(ABC):
    @abstractmethod
    def contains_banned_content(self, text: str) -> bool:
        pass


class UserPolicy(ABC):
    @abstractmethod
    def is_exempt_from_publish_validation(self, publisher: Publisher) -> bool:
        pass

    @abstractmethod
    def owns(self, root: PackageRoot, publisher: Publisher) -> bool:
        pass


class WordListTextPolicy(TextPolicy):
    """
    Flags text containing any banned word as a whole word, case-insensitively.
    Words are also matched inside identifiers split on ``-``, ``_`` and ``.``.
    """

    def __init__(self, banned_words: Iterable[str] = ()):
        self._banned = {w.strip().lower() for w in banned_words if w and w.strip()}

    def contains_banned_content(self, text: str) -> bool:
        if not text or not self._banned:
            return False
        words = re.split(r"[^a-z0-9]+", text.lower())
        return any(word in self._banned for word in words if word)


class ConfigUserPolicy(UserPolicy):
    """
    Exemptions come from the configured publisher list; ownership is a plain
    comparison with the owner recorded on the package root.
    """

    def __init__(self, exempt_publishers: Iterable[str] = ()):
        self._exempt = set(exempt_publishers)

    def is_exempt_from_publish_validation(self, publisher: Publisher) -> bool:
        return publisher.id in self._exempt

    def owns(self, root: PackageRoot, publisher: Publisher) -> bool:
        return root.owner == publisher.id

