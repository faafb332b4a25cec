"""
Package content layout on top of the content store.

packages/<id>/<version>/<id>.<version>.zip      the uploaded archive
packages/<id>/<version>/<id>.manifest.json      the parsed manifest
packages/<id>/<version>/readme.md               embedded readme, if any
packages/<id>/<version>/icon.png                embedded icon, if any
"""
from __future__ import annotations

import io
from typing import BinaryIO, Optional
import logging

from pkgregistry.domain.errors import StorageConflictError
from pkgregistry.domain.models import Manifest, StoragePutResult
from pkgregistry.domain.versioning import normalize_version
from pkgregistry.storage.content_store import ContentStore

logger = logging.getLogger(__name__)

PACKAGES_PATH_PREFIX = "packages"

PACKAGE_CONTENT_TYPE = "application/zip"
MANIFEST_CONTENT_TYPE = "application/json"
README_CONTENT_TYPE = "text/markdown"
ICON_CONTENT_TYPE = "image/png"


def package_path(package_id: str, version: str) -> str:
    pid, ver = package_id.lower(), normalize_version(version)
    return f"{PACKAGES_PATH_PREFIX}/{pid}/{ver}/{pid}.{ver}.zip"


def manifest_path(package_id: str, version: str) -> str:
    pid, ver = package_id.lower(), normalize_version(version)
    return f"{PACKAGES_PATH_PREFIX}/{pid}/{ver}/{pid}.manifest.json"


def readme_path(package_id: str, version: str) -> str:
    pid, ver = package_id.lower(), normalize_version(version)
    return f"{PACKAGES_PATH_PREFIX}/{pid}/{ver}/readme.md"


def icon_path(package_id: str, version: str) -> str:
    pid, ver = package_id.lower(), normalize_version(version)
    return f"{PACKAGES_PATH_PREFIX}/{pid}/{ver}/icon.png"


class PackageStorageService:
    def __init__(self, storage: ContentStore):
        self.storage = storage

    async def save_package_content(
        self,
        manifest: Manifest,
        package_stream: BinaryIO,
        readme_stream: Optional[BinaryIO] = None,
        icon_stream: Optional[BinaryIO] = None,
    ) -> None:
        """
        Persist a package's archive, manifest copy, readme and icon.

        Raises StorageConflictError if different content is already stored
        for this id and version.
        """
        package_id, version = manifest.name, manifest.version

        await self._put(package_path(package_id, version), package_stream, PACKAGE_CONTENT_TYPE)

        manifest_stream = io.BytesIO(manifest.model_dump_json(indent=2).encode("utf-8"))
        await self._put(manifest_path(package_id, version), manifest_stream, MANIFEST_CONTENT_TYPE)

        if readme_stream is not None:
            await self._put(readme_path(package_id, version), readme_stream, README_CONTENT_TYPE)

        if icon_stream is not None:
            await self._put(icon_path(package_id, version), icon_stream, ICON_CONTENT_TYPE)

        logger.info(f"Finished storing package {package_id.lower()} {normalize_version(version)}")

    async def _put(self, path: str, stream: BinaryIO, content_type: str) -> None:
        logger.info(f"Storing {path}...")
        stream.seek(0)
        result = await self.storage.put(path, stream, content_type)
        if result == StoragePutResult.CONFLICT:
            logger.info(f"Could not store {path} due to conflict")
            raise StorageConflictError(path)

    async def get_package_stream(self, package_id: str, version: str) -> Optional[BinaryIO]:
        return await self.storage.get(package_path(package_id, version))

    async def get_manifest_stream(self, package_id: str, version: str) -> Optional[BinaryIO]:
        return await self.storage.get(manifest_path(package_id, version))

    async def get_readme_stream(self, package_id: str, version: str) -> Optional[BinaryIO]:
        return await self.storage.get(readme_path(package_id, version))

    async def get_icon_stream(self, package_id: str, version: str) -> Optional[BinaryIO]:
        return await self.storage.get(icon_path(package_id, version))

    async def delete(self, package_id: str, version: str) -> None:
        """Remove every blob of a version. Succeeds if nothing is stored."""
        for path in (
            package_path(package_id, version),
            manifest_path(package_id, version),
            readme_path(package_id, version),
            icon_path(package_id, version),
        ):
            await self.storage.delete(path)
