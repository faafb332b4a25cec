"""
Tests for the search indexer adapters.
"""

import json

import httpx
import pytest

from pkgregistry.domain.models import VersionRecord
from pkgregistry.services.search import HttpSearchIndexer, NullSearchIndexer


def make_record() -> VersionRecord:
    return VersionRecord(package_id="foo", name="Foo", version="1.0.0", normalized_version="1.0.0")


class TestHttpSearchIndexer:
    @pytest.mark.asyncio
    async def test_posts_record_as_json(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            indexer = HttpSearchIndexer("http://search.local/index", client=client)
            await indexer.index(make_record())

        assert len(requests) == 1
        assert requests[0].method == "POST"
        body = json.loads(requests[0].content)
        assert body["package_id"] == "foo"
        assert body["normalized_version"] == "1.0.0"

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            indexer = HttpSearchIndexer("http://search.local/index", client=client)
            with pytest.raises(httpx.HTTPStatusError):
                await indexer.index(make_record())


class TestNullSearchIndexer:
    @pytest.mark.asyncio
    async def test_does_nothing(self):
        await NullSearchIndexer().index(make_record())
