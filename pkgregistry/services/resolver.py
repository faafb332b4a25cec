from __future__ import annotations

from typing import Optional, Union
import logging

from pkgregistry.domain.errors import PackageNotFoundError, VersionNotFoundError
from pkgregistry.domain.models import VersionRecord
from pkgregistry.domain.selectors import VersionSelector, select_version
from pkgregistry.services.caching import ReadCache
from pkgregistry.services.package_service import PackageService

logger = logging.getLogger(__name__)


class VersionResolver:
    """
    Resolves ``(package id, selector)`` to a version record, reading through
    the cache. Tag semantics come from ``select_version``.
    """

    def __init__(self, packages: PackageService, cache: Optional[ReadCache] = None):
        self.packages = packages
        self.cache = cache

    async def resolve(
        self,
        package_id: str,
        selector: Union[VersionSelector, str],
        include_unlisted: bool = False,
    ) -> VersionRecord:
        """
        Raises PackageNotFoundError if the package does not exist,
        NoStableVersionError if ``latest`` was asked for but only prereleases
        exist, and VersionNotFoundError if the version is missing or unlisted
        (with ``include_unlisted`` off).
        """
        if isinstance(selector, str):
            selector = VersionSelector.parse(selector)

        record = self.cache.get(package_id, selector.key) if self.cache else None
        if record is None:
            generation = self.cache.generation(package_id) if self.cache else None
            record = await self._load(package_id, selector)
            if self.cache is not None:
                # A write that lands during the load bumps the generation.
                self.cache.set(package_id, selector.key, record, generation=generation)

        if not include_unlisted and not record.listed:
            raise VersionNotFoundError(package_id, record.version)
        return record

    async def resolve_or_none(
        self,
        package_id: str,
        selector: Union[VersionSelector, str],
        include_unlisted: bool = False,
    ) -> Optional[VersionRecord]:
        try:
            return await self.resolve(package_id, selector, include_unlisted)
        except PackageNotFoundError:
            return None

    async def _load(self, package_id: str, selector: VersionSelector) -> VersionRecord:
        if selector.is_tag:
            root = await self.packages.get_root(package_id)
            if root is None:
                raise PackageNotFoundError(package_id)
            version = select_version(root, selector)
        else:
            version = selector.version

        record = await self.packages.find_or_none(package_id, version, include_unlisted=True)
        if record is not None:
            return record

        if not selector.is_tag and not await self.packages.exists(package_id):
            raise PackageNotFoundError(package_id)
        raise VersionNotFoundError(package_id, str(selector))
