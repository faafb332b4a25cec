"""
Shared fixtures: a registry wired on top of a temporary data directory and a
helper building package archives in memory.
"""

import io
import zipfile
from typing import Dict, List, Optional

import pytest
import yaml

from pkgregistry.core.dependencies import RegistryServices
from pkgregistry.domain.models import Publisher, RegistryConfig, VersionRecord
from pkgregistry.services.search import SearchIndexer

ARCHIVE_TIMESTAMP = (2024, 1, 1, 0, 0, 0)


class RecordingSearchIndexer(SearchIndexer):
    """Search indexer remembering what it was asked to index."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.indexed: List[VersionRecord] = []

    async def index(self, record: VersionRecord) -> None:
        if self.fail:
            raise RuntimeError("search service unavailable")
        self.indexed.append(record)


def make_archive(
    name: str = "foo",
    version: str = "1.0.0",
    description: Optional[str] = "A test package",
    readme: Optional[str] = None,
    icon: Optional[bytes] = None,
    manifest: Optional[Dict] = None,
    files: Optional[Dict[str, bytes]] = None,
) -> bytes:
    """Build a zip archive with a manifest.yaml and optional readme/icon."""
    data = {"name": name, "version": version}
    if description is not None:
        data["description"] = description
    if icon is not None:
        data["icon"] = "icon.png"
    if manifest:
        data.update(manifest)

    entries = {"manifest.yaml": yaml.safe_dump(data), "lib/index.txt": f"{name} {version}"}
    if readme is not None:
        entries["README.md"] = readme
    if icon is not None:
        entries["icon.png"] = icon
    entries.update(files or {})

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for entry, content in entries.items():
            # Fixed timestamps keep equal inputs byte-identical.
            archive.writestr(zipfile.ZipInfo(entry, date_time=ARCHIVE_TIMESTAMP), content)
    return buffer.getvalue()


@pytest.fixture
def archive():
    return make_archive


@pytest.fixture
def alice():
    return Publisher(id="alice")


@pytest.fixture
def bob():
    return Publisher(id="bob")


@pytest.fixture
def config():
    return RegistryConfig(
        api_keys={"key-alice": "alice", "key-bob": "bob"},
        exempt_publishers=["operators"],
        banned_words=["spam"],
    )


@pytest.fixture
def search():
    return RecordingSearchIndexer()


@pytest.fixture
def services(tmp_path, config, search):
    return RegistryServices(tmp_path, config, search=search)


@pytest.fixture
def packages(services):
    return services.packages


@pytest.fixture
def indexing(services):
    return services.indexing
