"""
HTTP boundary tests: status code mapping and routing of the /api/v2 endpoints.
"""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from pkgregistry.api.publish import cancel_on_disconnect
from pkgregistry.core.dependencies import set_services
from pkgregistry.domain.errors import PublishCancelledError
from pkgregistry.main import app

ALICE = {"X-Api-Key": "key-alice"}
BOB = {"X-Api-Key": "key-bob"}


@pytest.fixture
def client(services):
    set_services(services)
    with TestClient(app) as test_client:
        yield test_client
    set_services(None)


def push(client, data: bytes, headers=ALICE):
    return client.put(
        "/api/v2/package",
        files={"package": ("package.zip", data, "application/zip")},
        headers=headers,
    )


class TestPublishEndpoint:
    def test_requires_api_key(self, client, archive):
        assert push(client, archive(), headers={}).status_code == 401
        assert push(client, archive(), headers={"X-Api-Key": "wrong"}).status_code == 401

    def test_status_codes(self, client, archive):
        created = push(client, archive("foo", "1.0.0"))
        assert created.status_code == 201
        assert created.json()["package"] == "foo"
        assert created.json()["version"] == "1.0.0"

        assert push(client, archive("foo", "1.0.0")).status_code == 409
        assert push(client, archive("foo", "2.0.0"), headers=BOB).status_code == 403

        invalid = push(client, b"not a zip")
        assert invalid.status_code == 400
        assert invalid.json()["result"] == "invalid_package"
        assert invalid.json()["message"]


class TestReadEndpoints:
    def test_tags_and_content(self, client, archive):
        push(client, archive("foo", "1.0.0"))
        push(client, archive("foo", "2.0.0-beta"))

        assert client.get("/api/v2/package/foo").json() == {"versions": ["1.0.0", "2.0.0-beta"]}
        assert client.get("/api/v2/package/foo/next").json()["version"] == "2.0.0-beta"
        assert client.get("/api/v2/package/foo/latest").json()["version"] == "1.0.0"

        download = client.get("/api/v2/package/foo/latest/content")
        assert download.status_code == 200
        assert download.content == archive("foo", "1.0.0")
        assert "foo.1.0.0.zip" in download.headers["content-disposition"]

        assert client.get("/api/v2/package/foo/1.0.0/manifest").status_code == 200

    def test_not_found_and_bad_selector(self, client, archive):
        assert client.get("/api/v2/package/nothing").status_code == 404
        assert client.get("/api/v2/package/nothing/latest").status_code == 404

        push(client, archive("foo", "1.0.0-rc1"))
        assert client.get("/api/v2/package/foo/latest").status_code == 404
        assert client.get("/api/v2/package/foo/newest").status_code == 400
        assert client.get("/api/v2/package/foo/1.0.0-rc1/readme").status_code == 404

    def test_malformed_package_id_is_not_found(self, client):
        assert client.get("/api/v2/package/foo$bar").status_code == 404
        assert client.get("/api/v2/package/foo$bar/latest").status_code == 404
        assert client.get("/api/v2/package/foo$bar/1.0.0/content").status_code == 404
        assert client.get("/api/v2/package/foo$bar/latest/manifest").status_code == 404
        assert client.delete("/api/v2/package/foo$bar/1.0.0", headers=ALICE).status_code == 404

    def test_stats(self, client, archive):
        push(client, archive("foo", "1.0.0"))
        client.get("/api/v2/package/foo/latest/content")

        stats = client.get("/api/v2/stats").json()
        assert stats["packages_count"] == 1
        assert stats["total_downloads"] == 1
        assert stats["popular"] == ["foo"]

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestManagementEndpoints:
    def test_delete_and_relist(self, client, archive):
        push(client, archive("foo", "1.0.0"))

        assert client.delete("/api/v2/package/foo/1.0.0", headers=BOB).status_code == 403
        deleted = client.delete("/api/v2/package/foo/1.0.0", headers=ALICE)
        assert deleted.status_code == 200
        assert deleted.json()["deletion"] == "unlist"

        assert client.get("/api/v2/package/foo/1.0.0").status_code == 404
        unlisted = client.get("/api/v2/package/foo/1.0.0", params={"include_unlisted": True})
        assert unlisted.json()["listed"] is False

        assert client.post("/api/v2/package/foo/1.0.0/relist", headers=ALICE).status_code == 200
        assert client.get("/api/v2/package/foo/1.0.0").json()["listed"] is True

    def test_delete_missing_version(self, client):
        assert client.delete("/api/v2/package/foo/1.0.0", headers=ALICE).status_code == 404
        assert client.delete("/api/v2/package/foo/bogus", headers=ALICE).status_code == 400

    def test_my_packages(self, client, archive):
        push(client, archive("foo", "1.0.0"))
        push(client, archive("bar", "1.0.0"), headers=BOB)

        mine = client.get("/api/v2/me/packages", headers=ALICE).json()
        assert [p["package_id"] for p in mine] == ["foo"]


class TestSearchEndpoints:
    def test_search_and_autocomplete(self, client, archive):
        push(client, archive("http-client", "1.0.0", description="Talks HTTP"))
        push(client, archive("http-client", "2.0.0-rc.1", description="Talks HTTP"))
        push(client, archive("json-tools", "1.0.0", manifest={"dependencies": {"http-client": "^1.0"}}), headers=BOB)

        found = client.get("/api/v2/search", params={"q": "http"}).json()
        assert found["total_hits"] == 1
        assert found["data"][0]["id"] == "http-client"
        assert found["data"][0]["version"] == "1.0.0"

        with_prerelease = client.get("/api/v2/search", params={"q": "http", "prerelease": True}).json()
        assert with_prerelease["data"][0]["version"] == "2.0.0-rc.1"

        assert client.get("/api/v2/search/autocomplete", params={"q": "js"}).json()["data"] == ["json-tools"]
        versions = client.get("/api/v2/search/autocomplete", params={"id": "http-client", "prerelease": True})
        assert versions.json()["data"] == ["1.0.0", "2.0.0-rc.1"]

    def test_dependents(self, client, archive):
        push(client, archive("http-client", "1.0.0"))
        push(client, archive("json-tools", "1.0.0", manifest={"dependencies": {"http-client": "^1.0"}}), headers=BOB)

        response = client.get("/api/v2/search/dependents", params={"package_id": "http-client"})
        assert [d["id"] for d in response.json()["data"]] == ["json-tools"]
        assert client.get("/api/v2/search/dependents").status_code == 400

    def test_paging_is_bounded(self, client):
        assert client.get("/api/v2/search", params={"take": 1000}).status_code == 422
        assert client.get("/api/v2/search", params={"skip": -1}).status_code == 422


class DisconnectingRequest:
    """Request whose client goes away after a number of polls."""

    def __init__(self, connected_polls: int):
        self.connected_polls = connected_polls
        self.url = httpx.URL("http://registry.local/api/v2/package")

    async def is_disconnected(self) -> bool:
        if self.connected_polls == 0:
            return True
        self.connected_polls -= 1
        return False


class TestCancelOnDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_sets_the_cancel_event(self):
        cancel = asyncio.Event()

        await asyncio.wait_for(cancel_on_disconnect(DisconnectingRequest(2), cancel, interval=0), timeout=5)

        assert cancel.is_set()

    @pytest.mark.asyncio
    async def test_disconnect_cancels_a_running_publish(self, indexing, packages, alice, archive):
        cancel = asyncio.Event()
        await cancel_on_disconnect(DisconnectingRequest(0), cancel, interval=0)

        with pytest.raises(PublishCancelledError):
            await indexing.index(archive(), alice, cancel=cancel)
        assert not await packages.exists("foo")
