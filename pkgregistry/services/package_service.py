"""
Metadata store adapter: the source of truth for packages' state.

Layout in the document store:
- packages/<id>                       -> PackageRoot (owner, pointers, counters)
- packages/<id>/versions/<version>    -> VersionRecord

Ids that could never name a package (see ``is_valid_package_id``) are
treated as unknown packages by every read and write.

The store only offers single-document conditional writes, so every mutation
of a root is a read-modify-write cycle that is replayed from a fresh read when
the conditional write loses against a concurrent writer.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Union
import logging

from pkgregistry.domain.errors import (
    DocumentExistsError,
    NoStableVersionError,
    WriteConflictError,
    is_retriable_conflict,
)
from pkgregistry.domain.models import (
    Manifest,
    PackageAddResult,
    PackageRoot,
    Publisher,
    VersionRecord,
    utc_now,
)
from pkgregistry.domain.selectors import VersionSelector, select_version
from pkgregistry.domain.versioning import normalize_version, parse_version, pick_pointers
from pkgregistry.services.caching import ReadCache
from pkgregistry.services.policy import UserPolicy
from pkgregistry.services.validation import PackageValidator, is_valid_package_id
from pkgregistry.storage.db_manager import DocumentStore

logger = logging.getLogger(__name__)

PACKAGES_COLLECTION = "packages"
MAX_DOWNLOAD_INCREMENT_ATTEMPTS = 5
MAX_POINTER_UPDATE_ATTEMPTS = 10


def root_path(package_id: str) -> str:
    return f"{PACKAGES_COLLECTION}/{package_id.lower()}"


def versions_collection(package_id: str) -> str:
    return f"{root_path(package_id)}/versions"


def version_path(package_id: str, normalized_version: str) -> str:
    return f"{versions_collection(package_id)}/{normalized_version}"


class PackageService:
    def __init__(
        self,
        store: DocumentStore,
        validator: PackageValidator,
        user_policy: UserPolicy,
        cache: Optional[ReadCache] = None,
        max_download_increment_attempts: int = MAX_DOWNLOAD_INCREMENT_ATTEMPTS,
        max_pointer_update_attempts: int = MAX_POINTER_UPDATE_ATTEMPTS,
    ):
        self.store = store
        self.validator = validator
        self.user_policy = user_policy
        self.cache = cache
        self.max_download_increment_attempts = max_download_increment_attempts
        self.max_pointer_update_attempts = max_pointer_update_attempts

    # ========================================================================
    # Reads
    # ========================================================================

    async def exists(self, package_id: str, version: Optional[str] = None) -> bool:
        """
        Whether the package (or one of its versions) exists, even if unlisted.
        """
        if not is_valid_package_id(package_id):
            return False
        if version is None:
            return await self.store.get(root_path(package_id)) is not None
        return await self.store.get(version_path(package_id, normalize_version(version))) is not None

    async def get_root(self, package_id: str) -> Optional[PackageRoot]:
        if not is_valid_package_id(package_id):
            return None
        doc = await self.store.get(root_path(package_id))
        return PackageRoot(**doc.data) if doc else None

    async def find_or_none(
        self,
        package_id: str,
        version: str,
        include_unlisted: bool = True,
    ) -> Optional[VersionRecord]:
        if not is_valid_package_id(package_id):
            return None
        doc = await self.store.get(version_path(package_id, normalize_version(version)))
        if doc is None:
            return None
        record = VersionRecord(**doc.data)
        if not include_unlisted and not record.listed:
            return None
        return record

    async def retrieve(
        self,
        package_id: str,
        selector: Union[VersionSelector, str],
    ) -> Optional[VersionRecord]:
        """
        Fetch the record a selector designates, listed or not.

        Returns None when the package, the version, or (for ``latest``) a
        stable version does not exist.
        """
        if isinstance(selector, str):
            selector = VersionSelector.parse(selector)

        if selector.is_tag:
            root = await self.get_root(package_id)
            if root is None:
                return None
            try:
                version = select_version(root, selector)
            except NoStableVersionError:
                return None
        else:
            version = selector.version

        return await self.find_or_none(package_id, version, include_unlisted=True)

    async def find(self, package_id: str, include_unlisted: bool = False) -> List[VersionRecord]:
        """All versions of a package, lowest version first."""
        if not is_valid_package_id(package_id):
            return []
        docs = await self.store.list(versions_collection(package_id))
        records = [VersionRecord(**doc.data) for doc in docs]
        if not include_unlisted:
            records = [r for r in records if r.listed]
        return sorted(records, key=lambda r: parse_version(r.normalized_version))

    # ========================================================================
    # Publishing
    # ========================================================================

    async def add_package(
        self,
        manifest: Manifest,
        publisher: Publisher,
        published: Optional[datetime] = None,
    ) -> PackageAddResult:
        """
        Register a new version of a package.

        The first version of a package is created together with its root, and
        the publisher becomes the owner. Later versions require the publisher
        to own the root. Raises PackageValidationError when a new package name
        is rejected.
        """
        package_id = manifest.name.lower()
        record = VersionRecord.from_manifest(manifest, published)
        record_path = version_path(package_id, record.normalized_version)

        root: Optional[PackageRoot] = None
        for attempt in range(1, self.max_pointer_update_attempts + 1):
            root_doc = await self.store.get(root_path(package_id))
            if root_doc is not None:
                root = PackageRoot(**root_doc.data)
                break

            created = await self._create_package(manifest, publisher, record)
            if created is not None:
                return created
            logger.info(
                f"Package {package_id} was created concurrently, re-reading its root "
                f"(attempt {attempt} of {self.max_pointer_update_attempts})"
            )
        else:
            raise WriteConflictError(root_path(package_id), 0, None)

        if not self.user_policy.owns(root, publisher):
            logger.warning(f"Publisher {publisher.id} does not own package {package_id}")
            return PackageAddResult.ACCESS_DENIED

        self._inherit_root_flags(record, root)

        try:
            await self.store.create(record_path, self._dump(record))
        except DocumentExistsError:
            logger.warning(f"Package {package_id} {record.normalized_version} already exists")
            return PackageAddResult.PACKAGE_ALREADY_EXISTS

        try:
            await self.update_pointers(package_id)
        finally:
            self._invalidate(package_id)

        return PackageAddResult.SUCCESS

    async def _create_package(
        self,
        manifest: Manifest,
        publisher: Publisher,
        record: VersionRecord,
    ) -> Optional[PackageAddResult]:
        """
        Create root and first version in one batch. Returns None if another
        publish created the root first, so the caller can retry as an update.
        """
        package_id = record.package_id

        if not self.user_policy.is_exempt_from_publish_validation(publisher):
            self.validator.validate_new_package(manifest)

        root = PackageRoot(id=package_id, owner=publisher.id)
        root.latest, root.next = pick_pointers([record.normalized_version])
        self._inherit_root_flags(record, root)

        record_path = version_path(package_id, record.normalized_version)
        try:
            await self.store.create_all({
                root_path(package_id): self._dump(root),
                record_path: self._dump(record),
            })
        except DocumentExistsError as e:
            if e.path == record_path:
                logger.warning(f"Package {package_id} {record.normalized_version} already exists without a root")
                return PackageAddResult.PACKAGE_ALREADY_EXISTS
            return None

        logger.info(f"Created package {package_id} owned by {publisher.id}")
        self._invalidate(package_id)
        return PackageAddResult.SUCCESS

    @staticmethod
    def _inherit_root_flags(record: VersionRecord, root: PackageRoot) -> None:
        """New versions carry the verification and servicing status of their package."""
        record.verified = root.verified
        record.serviced = root.serviced

    async def update_pointers(self, package_id: str) -> Optional[PackageRoot]:
        """
        Recompute ``latest``/``next`` from the versions that exist right now
        and write them to the root.

        The root is read before the versions are listed, and the write is
        conditional on that read. A concurrent publish that commits in between
        makes the write fail, and the whole cycle is replayed.
        """
        if not is_valid_package_id(package_id):
            return None
        path = root_path(package_id)
        for attempt in range(1, self.max_pointer_update_attempts + 1):
            root_doc = await self.store.get(path)
            if root_doc is None:
                return None
            root = PackageRoot(**root_doc.data)

            latest, next_ = pick_pointers(await self.store.list_ids(versions_collection(package_id)))
            if root.latest == latest and root.next == next_:
                return root

            root.latest, root.next = latest, next_
            root.updated = utc_now()
            try:
                await self.store.update(path, self._dump(root), root_doc.revision)
            except WriteConflictError:
                logger.warning(
                    f"Pointer update for {package_id} lost a concurrent write, "
                    f"attempt {attempt} of {self.max_pointer_update_attempts}"
                )
                continue

            logger.info(f"Package {package_id} now has latest={latest} next={next_}")
            return root

        raise WriteConflictError(path, root_doc.revision, None)

    # ========================================================================
    # Counters and visibility
    # ========================================================================

    async def increment_downloads(self, package_id: str, version: str) -> bool:
        """
        Add one download to a version and to its package's aggregate counter.

        Conflicting writes are retried from a fresh read up to the configured
        number of attempts. Returns False (never raises) if the version does
        not exist or the update could not be applied; the download itself
        must not fail because of its counter.
        """
        if not is_valid_package_id(package_id):
            return False
        normalized = normalize_version(version)
        record_path = version_path(package_id, normalized)
        version_counted = False

        for attempt in range(1, self.max_download_increment_attempts + 1):
            try:
                if not version_counted:
                    version_counted = await self._increment_field(record_path, "downloads")
                    if not version_counted:
                        return False

                # The aggregate is a separate document; its increment is
                # retried on its own once the version counter has committed.
                await self._increment_field(root_path(package_id), "total_downloads")
                self._invalidate(package_id)
                return True
            except Exception as e:
                if not is_retriable_conflict(e):
                    logger.error(f"Failed to count download of {package_id} {normalized}: {e}", exc_info=True)
                    break
                logger.warning(
                    f"Retrying download count of {package_id} {normalized} due to a write conflict, "
                    f"attempt {attempt} of {self.max_download_increment_attempts}"
                )
        else:
            logger.warning(
                f"Gave up counting a download of {package_id} {normalized} after "
                f"{self.max_download_increment_attempts} attempts"
            )

        if version_counted:
            self._invalidate(package_id)
        return False

    async def _increment_field(self, path: str, field: str) -> bool:
        doc = await self.store.get(path)
        if doc is None:
            return False
        data = dict(doc.data)
        data[field] = int(data.get(field) or 0) + 1
        await self.store.update(path, data, doc.revision)
        return True

    async def unlist(self, package_id: str, version: str) -> bool:
        """Make a version undiscoverable. Returns False if it does not exist."""
        return await self._set_listed(package_id, version, False)

    async def relist(self, package_id: str, version: str) -> bool:
        """Make a version discoverable again. Returns False if it does not exist."""
        return await self._set_listed(package_id, version, True)

    async def _set_listed(self, package_id: str, version: str, listed: bool) -> bool:
        if not is_valid_package_id(package_id):
            return False
        path = version_path(package_id, normalize_version(version))
        for attempt in range(1, self.max_pointer_update_attempts + 1):
            doc = await self.store.get(path)
            if doc is None:
                return False
            data = dict(doc.data)
            data["listed"] = listed
            try:
                await self.store.update(path, data, doc.revision)
            except WriteConflictError:
                logger.warning(f"Retrying listing change of {path}, attempt {attempt}")
                continue
            self._invalidate(package_id)
            logger.info(f"{'Relisted' if listed else 'Unlisted'} {package_id} {data.get('normalized_version')}")
            return True

        raise WriteConflictError(path, doc.revision, None)

    async def hard_delete(self, package_id: str, version: str) -> bool:
        """
        Permanently remove a version's metadata. Returns False if it does not
        exist. The package root (and its owner) is kept even when its last
        version goes; its pointers are recomputed from what remains.
        """
        if not is_valid_package_id(package_id):
            return False
        normalized = normalize_version(version)
        deleted = await self.store.delete(version_path(package_id, normalized))
        if not deleted:
            return False

        try:
            await self.update_pointers(package_id)
        finally:
            self._invalidate(package_id)

        logger.info(f"Hard deleted {package_id} {normalized}")
        return True

    # ========================================================================
    # Statistics
    # ========================================================================

    async def list_roots(self) -> List[PackageRoot]:
        return [PackageRoot(**doc.data) for doc in await self.store.list(PACKAGES_COLLECTION)]

    async def get_packages_count(self) -> int:
        return len(await self.store.list_ids(PACKAGES_COLLECTION))

    async def get_total_downloads(self) -> int:
        return sum(root.total_downloads for root in await self.list_roots())

    async def get_popular_packages(self, limit: int = 10) -> List[str]:
        roots = sorted(await self.list_roots(), key=lambda r: (-r.total_downloads, r.id))
        return [root.id for root in roots[:limit]]

    async def get_recently_updated(self, limit: int = 10) -> List[str]:
        roots = sorted(await self.list_roots(), key=lambda r: r.updated, reverse=True)
        return [root.id for root in roots[:limit]]

    async def find_for_owner(self, owner_id: str) -> List[VersionRecord]:
        """
        The newest version (stable if there is one) of every package owned by a publisher.
        """
        records: List[VersionRecord] = []
        for root in sorted(await self.list_roots(), key=lambda r: r.id):
            if root.owner != owner_id:
                continue
            version = root.latest or root.next
            if version is None:
                continue
            record = await self.find_or_none(root.id, version)
            if record is not None:
                records.append(record)
        return records

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _dump(model) -> dict:
        return model.model_dump(mode="json")

    def _invalidate(self, package_id: str) -> None:
        if self.cache is not None:
            self.cache.invalidate_package(package_id)
