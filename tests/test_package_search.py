"""
Tests for search, autocomplete, version listing and dependents queries.
"""

import pytest

from pkgregistry.domain.models import Manifest


def manifest(name: str, version: str = "1.0.0", **fields) -> Manifest:
    return Manifest(name=name, version=version, **fields)


@pytest.fixture
def package_search(services):
    return services.package_search


async def publish_catalog(packages, alice, bob):
    """Two stable packages, one prerelease-only package and one unlisted package."""
    await packages.add_package(manifest("http-client", description="Talks HTTP", keywords=["net"]), alice)
    await packages.add_package(manifest("http-client", "1.1.0", description="Talks HTTP/2", keywords=["net"]), alice)
    await packages.add_package(manifest("http-client", "2.0.0-beta.1", description="Talks HTTP/3"), alice)
    await packages.add_package(manifest("json-tools", description="Parse JSON", dependencies={"http-client": "^1.0"}), bob)
    await packages.add_package(manifest("yaml-tools", "0.1.0-alpha", description="Parse YAML"), bob)
    await packages.add_package(manifest("hidden", description="Unlisted HTTP helper"), bob)
    await packages.unlist("hidden", "1.0.0")
    for _ in range(3):
        await packages.increment_downloads("json-tools", "1.0.0")


class TestSearch:
    @pytest.mark.asyncio
    async def test_empty_query_lists_packages_by_downloads(self, package_search, packages, alice, bob):
        await publish_catalog(packages, alice, bob)
        response = await package_search.search()

        assert response.total_hits == 2
        assert [r.id for r in response.data] == ["json-tools", "http-client"]

    @pytest.mark.asyncio
    async def test_matches_id_description_and_keywords(self, package_search, packages, alice, bob):
        await publish_catalog(packages, alice, bob)
        assert [r.id for r in (await package_search.search("http")).data] == ["http-client"]
        assert [r.id for r in (await package_search.search("PARSE")).data] == ["json-tools"]
        assert [r.id for r in (await package_search.search("net")).data] == ["http-client"]
        assert (await package_search.search("http parse")).total_hits == 0

    @pytest.mark.asyncio
    async def test_result_describes_newest_stable_version(self, package_search, packages, alice, bob):
        await publish_catalog(packages, alice, bob)
        result = (await package_search.search("http-client")).data[0]

        assert result.version == "1.1.0"
        assert result.description == "Talks HTTP/2"
        assert [v.version for v in result.versions] == ["1.0.0", "1.1.0"]

    @pytest.mark.asyncio
    async def test_prerelease_opt_in(self, package_search, packages, alice, bob):
        await publish_catalog(packages, alice, bob)
        response = await package_search.search(include_prerelease=True)

        assert {r.id for r in response.data} == {"http-client", "json-tools", "yaml-tools"}
        http = next(r for r in response.data if r.id == "http-client")
        assert http.version == "2.0.0-beta.1"

    @pytest.mark.asyncio
    async def test_unlisted_versions_are_not_searchable(self, package_search, packages, alice, bob):
        await publish_catalog(packages, alice, bob)
        assert (await package_search.search("unlisted")).total_hits == 0

    @pytest.mark.asyncio
    async def test_paging_keeps_total_hits(self, package_search, packages, alice, bob):
        await publish_catalog(packages, alice, bob)
        response = await package_search.search(skip=1, take=1)

        assert response.total_hits == 2
        assert [r.id for r in response.data] == ["http-client"]


class TestAutocomplete:
    @pytest.mark.asyncio
    async def test_prefix_match(self, package_search, packages, alice, bob):
        await publish_catalog(packages, alice, bob)
        response = await package_search.autocomplete("HTTP")

        assert response.total_hits == 1
        assert response.data == ["http-client"]

    @pytest.mark.asyncio
    async def test_prerelease_only_packages_need_opt_in(self, package_search, packages, alice, bob):
        await publish_catalog(packages, alice, bob)
        assert (await package_search.autocomplete("yaml")).data == []
        assert (await package_search.autocomplete("yaml", include_prerelease=True)).data == ["yaml-tools"]

    @pytest.mark.asyncio
    async def test_list_versions(self, package_search, packages, alice, bob):
        await publish_catalog(packages, alice, bob)
        assert (await package_search.list_versions("http-client")).data == ["1.0.0", "1.1.0"]
        assert (await package_search.list_versions("http-client", include_prerelease=True)).data == [
            "1.0.0", "1.1.0", "2.0.0-beta.1",
        ]
        assert (await package_search.list_versions("nothing")).total_hits == 0


class TestDependents:
    @pytest.mark.asyncio
    async def test_finds_packages_depending_on_a_package(self, package_search, packages, alice, bob):
        await publish_catalog(packages, alice, bob)
        response = await package_search.dependents("HTTP-Client")

        assert response.total_hits == 1
        assert response.data[0].id == "json-tools"
        assert response.data[0].total_downloads == 3

    @pytest.mark.asyncio
    async def test_no_dependents(self, package_search, packages, alice, bob):
        await publish_catalog(packages, alice, bob)
        assert (await package_search.dependents("json-tools")).total_hits == 0
        assert (await package_search.dependents("foo$bar")).total_hits == 0
