"""
Read-through cache for version resolution.

Entries are keyed by (package id, selector key). They expire after a TTL and
are dropped explicitly by every write path, so the TTL only bounds staleness
when an invalidation is missed (e.g. a write from another process).

Every package carries a generation number bumped by each invalidation. A
reader captures it before loading from the store and hands it back to
``set``, which drops the write if the package was invalidated meanwhile.
"""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, Optional, Set, Tuple
import logging

from pkgregistry.domain.models import VersionRecord

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


class ReadCache:
    """
    Bounded TTL cache of resolved version records.

    The least recently used entry is evicted once ``max_entries`` is reached.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, Tuple[float, VersionRecord]]" = OrderedDict()
        self._keys_by_package: Dict[str, Set[CacheKey]] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()

    @staticmethod
    def make_key(package_id: str, selector_key: str) -> CacheKey:
        return (package_id.lower(), selector_key)

    def get(self, package_id: str, selector_key: str) -> Optional[VersionRecord]:
        key = self.make_key(package_id, selector_key)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, record = entry
            if expires_at <= self._clock():
                self._remove(key)
                return None
            self._entries.move_to_end(key)
            # Callers get a copy so they cannot mutate the cached record.
            return record.model_copy()

    def generation(self, package_id: str) -> int:
        with self._lock:
            return self._generations.get(package_id.lower(), 0)

    def set(
        self,
        package_id: str,
        selector_key: str,
        record: VersionRecord,
        generation: Optional[int] = None,
    ) -> bool:
        """
        Store a record. With ``generation`` given, the write is dropped and
        False returned if the package was invalidated since it was read.
        """
        key = self.make_key(package_id, selector_key)
        with self._lock:
            if generation is not None and generation != self._generations.get(key[0], 0):
                logger.debug(f"Dropped stale cache write for {package_id} {selector_key}")
                return False
            if key in self._entries:
                self._remove(key)
            self._entries[key] = (self._clock() + self.ttl_seconds, record.model_copy())
            self._keys_by_package.setdefault(key[0], set()).add(key)

            while len(self._entries) > self.max_entries:
                oldest = next(iter(self._entries))
                self._remove(oldest)
            return True

    def invalidate(self, package_id: str, selector_key: str) -> None:
        with self._lock:
            self._remove(self.make_key(package_id, selector_key))

    def invalidate_package(self, package_id: str) -> None:
        """Drop every entry for a package, literal versions and tags alike."""
        with self._lock:
            package_key = package_id.lower()
            self._generations[package_key] = self._generations.get(package_key, 0) + 1
            for key in list(self._keys_by_package.get(package_key, ())):
                self._remove(key)
        logger.debug(f"Invalidated cached reads for {package_id}")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._keys_by_package.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _remove(self, key: CacheKey) -> None:
        self._entries.pop(key, None)
        keys = self._keys_by_package.get(key[0])
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._keys_by_package[key[0]]
