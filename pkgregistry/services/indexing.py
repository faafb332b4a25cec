"""
Publishing pipeline.

A publish moves through these states:

    RECEIVED_STREAM -> PARSED -> VALIDATED -> EXISTENCE_CHECKED
        -> OVERWRITTEN | NEW -> METADATA_PERSISTED -> CONTENT_PERSISTED
        -> SEARCH_INDEXED -> DONE

Metadata is persisted before content: a half-finished publish shows up as a
version whose content is missing, never as content nobody can discover. A
content failure after the metadata commit is reported but not rolled back.
"""
from __future__ import annotations

import asyncio
import inspect
import io
import uuid
from datetime import datetime
from enum import Enum
from typing import BinaryIO, Callable, Optional, Set, Union
import logging

from pkgregistry.domain.errors import (
    OwnerMismatchError,
    PackageValidationError,
    PublishCancelledError,
    VersionNotFoundError,
)
from pkgregistry.domain.models import (
    IndexingOutcome,
    IndexingResult,
    PackageAddResult,
    PackageDeletionBehavior,
    Publisher,
    RegistryConfig,
    VersionRecord,
    utc_now,
)
from pkgregistry.services.package_service import PackageService
from pkgregistry.services.package_storage import PackageStorageService
from pkgregistry.services.search import SearchIndexer
from pkgregistry.services.validation import AsyncReadable, PackageValidator, ParsedArchive

PackageSource = Union[bytes, BinaryIO, AsyncReadable]

logger = logging.getLogger(__name__)


class PublishState(str, Enum):
    RECEIVED_STREAM = "received_stream"
    PARSED = "parsed"
    VALIDATED = "validated"
    EXISTENCE_CHECKED = "existence_checked"
    OVERWRITTEN = "overwritten"
    NEW = "new"
    METADATA_PERSISTED = "metadata_persisted"
    CONTENT_PERSISTED = "content_persisted"
    SEARCH_INDEXED = "search_indexed"
    DONE = "done"


class _PublishRun:
    """State of a single publish call: where it is and whether to stop."""

    def __init__(self, correlation_id: str, cancel: Optional[asyncio.Event]):
        self.correlation_id = correlation_id
        self.cancel = cancel
        self.state = PublishState.RECEIVED_STREAM
        self.package = "<unknown>"

    def advance(self, state: PublishState) -> None:
        logger.debug(f"[{self.correlation_id}] {self.package}: {self.state.value} -> {state.value}")
        self.state = state

    def checkpoint(self) -> None:
        """Honor a cancellation request between two states, never mid-write."""
        if self.cancel is not None and self.cancel.is_set():
            logger.info(f"[{self.correlation_id}] Publish of {self.package} cancelled in state {self.state.value}")
            raise PublishCancelledError(self.state.value)


class PackageIndexingService:
    def __init__(
        self,
        packages: PackageService,
        storage: PackageStorageService,
        search: SearchIndexer,
        validator: PackageValidator,
        config: RegistryConfig,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.packages = packages
        self.storage = storage
        self.search = search
        self.validator = validator
        self.config = config
        self.clock = clock
        self._search_tasks: Set[asyncio.Task] = set()

    async def index(
        self,
        package_stream: PackageSource,
        publisher: Publisher,
        cancel: Optional[asyncio.Event] = None,
    ) -> IndexingOutcome:
        """
        Publish an uploaded archive on behalf of ``publisher``.

        Every failure is mapped to an IndexingOutcome except cancellation,
        which raises PublishCancelledError.
        """
        run = _PublishRun(uuid.uuid4().hex, cancel)
        try:
            return await self._index(run, package_stream, publisher)
        except PublishCancelledError:
            raise
        except PackageValidationError as e:
            logger.warning(f"[{run.correlation_id}] Uploaded package {run.package} is invalid: {e}")
            return IndexingOutcome(
                result=IndexingResult.INVALID_PACKAGE,
                message=str(e),
                correlation_id=run.correlation_id,
            )
        except Exception:
            logger.error(
                f"[{run.correlation_id}] Failed to publish {run.package} in state {run.state.value}",
                exc_info=True,
            )
            return IndexingOutcome(
                result=IndexingResult.INTERNAL_ERROR,
                message=f"An internal error occurred while publishing. Reference: {run.correlation_id}",
                correlation_id=run.correlation_id,
            )

    async def _index(
        self,
        run: _PublishRun,
        package_stream: PackageSource,
        publisher: Publisher,
    ) -> IndexingOutcome:
        run.checkpoint()
        parsed = self.validator.parse(await self._read(package_stream))
        manifest = parsed.manifest
        run.package = f"{manifest.name} {manifest.version}"
        run.advance(PublishState.PARSED)
        run.checkpoint()

        self.validator.validate(parsed)
        run.advance(PublishState.VALIDATED)
        run.checkpoint()

        exists = await self.packages.exists(manifest.name, manifest.version)
        run.advance(PublishState.EXISTENCE_CHECKED)
        run.checkpoint()

        if exists:
            if not self.config.allow_package_overwrites:
                logger.warning(f"[{run.correlation_id}] Package {run.package} already exists")
                return self._outcome(run, IndexingResult.PACKAGE_ALREADY_EXISTS,
                                     f"Package {manifest.name} {manifest.version} already exists.")

            root = await self.packages.get_root(manifest.name)
            if root is not None and not self.packages.user_policy.owns(root, publisher):
                logger.warning(f"[{run.correlation_id}] {publisher.id} may not overwrite {run.package}")
                return self._access_denied(run, manifest.name)

            logger.info(f"[{run.correlation_id}] Overwriting existing package {run.package}")
            await self._remove_version(manifest.name, manifest.version)
            run.advance(PublishState.OVERWRITTEN)
        else:
            run.advance(PublishState.NEW)
        run.checkpoint()

        logger.info(f"[{run.correlation_id}] Saving metadata of {run.package} to the database...")
        result = await self.packages.add_package(manifest, publisher, published=self.clock())
        if result == PackageAddResult.PACKAGE_ALREADY_EXISTS:
            logger.warning(f"[{run.correlation_id}] Package {run.package} metadata already exists in database")
            return self._outcome(run, IndexingResult.PACKAGE_ALREADY_EXISTS,
                                 f"Package {manifest.name} {manifest.version} already exists.")
        if result == PackageAddResult.ACCESS_DENIED:
            logger.warning(f"[{run.correlation_id}] Publisher {publisher.id} does not own {manifest.name}")
            return self._access_denied(run, manifest.name)
        if result != PackageAddResult.SUCCESS:
            raise RuntimeError(f"Unknown PackageAddResult value: {result}")
        run.advance(PublishState.METADATA_PERSISTED)

        # No cancellation checkpoints past the metadata commit.
        logger.info(f"[{run.correlation_id}] Persisted metadata of {run.package}, storing content...")
        try:
            await self._save_content(parsed)
        except Exception:
            logger.error(
                f"[{run.correlation_id}] Failed to persist content of {run.package}; "
                "its metadata stays in place and must be reconciled",
                exc_info=True,
            )
            raise
        run.advance(PublishState.CONTENT_PERSISTED)

        record = await self.packages.find_or_none(manifest.name, manifest.version)
        if record is not None:
            self._schedule_search_index(run, record)
        run.advance(PublishState.SEARCH_INDEXED)

        logger.info(f"[{run.correlation_id}] Successfully published {run.package}")
        run.advance(PublishState.DONE)
        return IndexingOutcome(
            result=IndexingResult.SUCCESS,
            record=record,
            correlation_id=run.correlation_id,
        )

    async def _read(self, package_stream: PackageSource) -> bytes:
        if inspect.iscoroutinefunction(getattr(package_stream, "read", None)):
            return await self.validator.read_upload(package_stream)
        return self.validator.read_archive(package_stream)

    # ========================================================================
    # Version management
    # ========================================================================

    async def delete_version(self, package_id: str, version: str, publisher: Publisher) -> PackageDeletionBehavior:
        """
        Delete a version on behalf of its owner, the way the registry is
        configured to: unlist it or remove its metadata and content.

        Raises VersionNotFoundError or OwnerMismatchError.
        """
        await self._require_owner(package_id, version, publisher)

        behavior = self.config.package_deletion_behavior
        if behavior == PackageDeletionBehavior.UNLIST:
            await self.packages.unlist(package_id, version)
        else:
            await self._remove_version(package_id, version)
        logger.info(f"{publisher.id} deleted {package_id} {version} ({behavior.value})")
        return behavior

    async def relist_version(self, package_id: str, version: str, publisher: Publisher) -> None:
        await self._require_owner(package_id, version, publisher)
        await self.packages.relist(package_id, version)

    async def _require_owner(self, package_id: str, version: str, publisher: Publisher) -> None:
        if not await self.packages.exists(package_id, version):
            raise VersionNotFoundError(package_id, version)
        root = await self.packages.get_root(package_id)
        if root is None:
            raise VersionNotFoundError(package_id, version)
        if not self.packages.user_policy.owns(root, publisher):
            raise OwnerMismatchError(package_id)

    async def _remove_version(self, package_id: str, version: str) -> None:
        await self.packages.hard_delete(package_id, version)
        await self.storage.delete(package_id, version)

    async def _save_content(self, parsed: ParsedArchive) -> None:
        await self.storage.save_package_content(
            parsed.manifest,
            io.BytesIO(parsed.content),
            io.BytesIO(parsed.readme) if parsed.readme is not None else None,
            io.BytesIO(parsed.icon) if parsed.icon is not None else None,
        )

    def _schedule_search_index(self, run: _PublishRun, record: VersionRecord) -> None:
        task = asyncio.create_task(self._index_in_search(run.correlation_id, record))
        self._search_tasks.add(task)
        task.add_done_callback(self._search_tasks.discard)

    async def _index_in_search(self, correlation_id: str, record: VersionRecord) -> None:
        try:
            await self.search.index(record)
            logger.info(f"[{correlation_id}] Indexed {record.package_id} {record.normalized_version} in search")
        except Exception:
            logger.error(
                f"[{correlation_id}] Search indexing of {record.package_id} {record.normalized_version} failed",
                exc_info=True,
            )

    async def wait_for_search_indexing(self) -> None:
        """Wait for pending search notifications, e.g. on shutdown."""
        if self._search_tasks:
            await asyncio.gather(*list(self._search_tasks), return_exceptions=True)

    def _outcome(self, run: _PublishRun, result: IndexingResult, message: str) -> IndexingOutcome:
        return IndexingOutcome(result=result, message=message, correlation_id=run.correlation_id)

    def _access_denied(self, run: _PublishRun, package_id: str) -> IndexingOutcome:
        return self._outcome(run, IndexingResult.ACCESS_DENIED, str(OwnerMismatchError(package_id)))
