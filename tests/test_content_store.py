"""
Unit tests for the file system content store and the package path layout.
"""

import asyncio
import io

import pytest

from pkgregistry.domain.errors import StorageConflictError
from pkgregistry.domain.models import Manifest, StoragePutResult
from pkgregistry.services.package_storage import (
    PackageStorageService,
    icon_path,
    manifest_path,
    package_path,
    readme_path,
)
from pkgregistry.storage.content_store import FileSystemContentStore


@pytest.fixture
def content_store(tmp_path):
    return FileSystemContentStore(tmp_path / "content")


class TestFileSystemContentStore:
    @pytest.mark.asyncio
    async def test_put_and_get(self, content_store):
        result = await content_store.put("a/b.zip", io.BytesIO(b"data"), "application/zip")
        assert result == StoragePutResult.SUCCESS

        stream = await content_store.get("a/b.zip")
        assert stream.read() == b"data"
        assert await content_store.get_content_type("a/b.zip") == "application/zip"

    @pytest.mark.asyncio
    async def test_same_content_already_exists(self, content_store):
        await content_store.put("a/b.zip", io.BytesIO(b"data"), "application/zip")
        result = await content_store.put("a/b.zip", io.BytesIO(b"data"), "application/zip")
        assert result == StoragePutResult.ALREADY_EXISTS

    @pytest.mark.asyncio
    async def test_different_content_conflicts_and_keeps_original(self, content_store):
        await content_store.put("a/b.zip", io.BytesIO(b"data"), "application/zip")
        result = await content_store.put("a/b.zip", io.BytesIO(b"other"), "application/zip")

        assert result == StoragePutResult.CONFLICT
        assert (await content_store.get("a/b.zip")).read() == b"data"

    @pytest.mark.asyncio
    async def test_missing_content_is_none(self, content_store):
        assert await content_store.get("a/missing.zip") is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, content_store):
        await content_store.put("a/b.zip", io.BytesIO(b"data"), "application/zip")
        await content_store.delete("a/b.zip")
        await content_store.delete("a/b.zip")
        assert await content_store.get("a/b.zip") is None

    @pytest.mark.asyncio
    async def test_concurrent_identical_puts_never_conflict(self, content_store):
        results = await asyncio.gather(*[
            content_store.put("a/b.zip", io.BytesIO(b"data"), "application/zip") for _ in range(8)
        ])

        assert results.count(StoragePutResult.SUCCESS) == 1
        assert results.count(StoragePutResult.ALREADY_EXISTS) == 7
        assert (await content_store.get("a/b.zip")).read() == b"data"

    @pytest.mark.asyncio
    async def test_concurrent_different_puts_keep_one_blob_with_its_meta(self, content_store):
        payloads = [f"data-{i}".encode() for i in range(8)]
        results = await asyncio.gather(*[
            content_store.put("a/b.zip", io.BytesIO(payload), "application/zip") for payload in payloads
        ])

        assert results.count(StoragePutResult.SUCCESS) == 1
        assert results.count(StoragePutResult.CONFLICT) == 7
        winner = payloads[results.index(StoragePutResult.SUCCESS)]
        assert (await content_store.get("a/b.zip")).read() == winner
        # Re-sending the stored payload is recognized as the same content.
        again = await content_store.put("a/b.zip", io.BytesIO(winner), "application/zip")
        assert again == StoragePutResult.ALREADY_EXISTS


class TestPackagePaths:
    def test_layout_uses_lowercased_id_and_normalized_version(self):
        assert package_path("Foo", "2.0.0-beta") == "packages/foo/2.0.0-beta/foo.2.0.0-beta.zip"
        assert manifest_path("Foo", "1.0.0") == "packages/foo/1.0.0/foo.manifest.json"
        assert readme_path("foo", "1.0.0") == "packages/foo/1.0.0/readme.md"
        assert icon_path("foo", "1.0.0") == "packages/foo/1.0.0/icon.png"


class TestPackageStorageService:
    @pytest.mark.asyncio
    async def test_saves_and_serves_every_blob(self, content_store):
        storage = PackageStorageService(content_store)
        manifest = Manifest(name="Foo", version="1.0.0")

        await storage.save_package_content(
            manifest,
            io.BytesIO(b"zip"),
            readme_stream=io.BytesIO(b"# Foo"),
            icon_stream=io.BytesIO(b"png"),
        )

        assert (await storage.get_package_stream("foo", "1.0.0")).read() == b"zip"
        assert (await storage.get_readme_stream("foo", "1.0.0")).read() == b"# Foo"
        assert (await storage.get_icon_stream("foo", "1.0.0")).read() == b"png"
        assert b'"name": "Foo"' in (await storage.get_manifest_stream("foo", "1.0.0")).read()

    @pytest.mark.asyncio
    async def test_conflicting_archive_raises(self, content_store):
        storage = PackageStorageService(content_store)
        manifest = Manifest(name="foo", version="1.0.0")

        await storage.save_package_content(manifest, io.BytesIO(b"zip"))
        with pytest.raises(StorageConflictError):
            await storage.save_package_content(manifest, io.BytesIO(b"different zip"))

    @pytest.mark.asyncio
    async def test_delete_removes_every_blob(self, content_store):
        storage = PackageStorageService(content_store)
        manifest = Manifest(name="foo", version="1.0.0")
        await storage.save_package_content(manifest, io.BytesIO(b"zip"), readme_stream=io.BytesIO(b"readme"))

        await storage.delete("foo", "1.0.0")

        assert await storage.get_package_stream("foo", "1.0.0") is None
        assert await storage.get_readme_stream("foo", "1.0.0") is None
        assert await storage.get_manifest_stream("foo", "1.0.0") is None
