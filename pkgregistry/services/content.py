"""
Package content resource: versions listing and blob downloads for consumers.
"""
from __future__ import annotations

from typing import BinaryIO, List, Optional, Tuple, Union
import logging

from pkgregistry.domain.models import VersionRecord
from pkgregistry.domain.selectors import VersionSelector
from pkgregistry.services.package_service import PackageService
from pkgregistry.services.package_storage import PackageStorageService
from pkgregistry.services.resolver import VersionResolver

logger = logging.getLogger(__name__)

Selector = Union[VersionSelector, str]


class PackageContentService:
    def __init__(
        self,
        packages: PackageService,
        storage: PackageStorageService,
        resolver: VersionResolver,
    ):
        self.packages = packages
        self.storage = storage
        self.resolver = resolver

    async def get_package_versions(self, package_id: str) -> Optional[List[str]]:
        """
        Normalized versions of a package (unlisted included), or None if the
        package has no versions.
        """
        records = await self.packages.find(package_id, include_unlisted=True)
        if not records:
            return None
        return [r.normalized_version for r in records]

    async def get_package_content(
        self,
        package_id: str,
        selector: Selector,
    ) -> Optional[Tuple[VersionRecord, BinaryIO]]:
        """
        Download a package archive. The download is counted best-effort: a lost
        counter update never prevents the content from being served.
        """
        record = await self.resolver.resolve_or_none(package_id, selector, include_unlisted=True)
        if record is None:
            return None

        stream = await self.storage.get_package_stream(record.package_id, record.normalized_version)
        if stream is None:
            logger.error(
                f"Metadata for {record.package_id} {record.normalized_version} exists but its content is missing"
            )
            return None

        if not await self.packages.increment_downloads(record.package_id, record.normalized_version):
            logger.warning(f"Download of {record.package_id} {record.normalized_version} was not counted")

        return record, stream

    async def get_package_manifest(self, package_id: str, selector: Selector) -> Optional[BinaryIO]:
        record = await self.resolver.resolve_or_none(package_id, selector, include_unlisted=True)
        if record is None:
            return None
        return await self.storage.get_manifest_stream(record.package_id, record.normalized_version)

    async def get_package_readme(self, package_id: str, selector: Selector) -> Optional[BinaryIO]:
        record = await self.resolver.resolve_or_none(package_id, selector, include_unlisted=True)
        if record is None or not record.has_embedded_readme:
            return None
        return await self.storage.get_readme_stream(record.package_id, record.normalized_version)

    async def get_package_icon(self, package_id: str, selector: Selector) -> Optional[BinaryIO]:
        record = await self.resolver.resolve_or_none(package_id, selector, include_unlisted=True)
        if record is None or not record.has_embedded_icon:
            return None
        return await self.storage.get_icon_stream(record.package_id, record.normalized_version)
