"""
Search queries answered from the metadata store.

Only listed versions are searchable. Prereleases are left out unless a query
asks for them; a package whose only versions are prereleases then does not
show up at all.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Tuple
import logging

from pkgregistry.domain.models import (
    AutocompleteResponse,
    DependentResult,
    DependentsResponse,
    PackageRoot,
    SearchResponse,
    SearchResult,
    SearchResultVersion,
    VersionRecord,
)
from pkgregistry.services.package_service import PackageService
from pkgregistry.services.validation import is_valid_package_id

logger = logging.getLogger(__name__)

DEFAULT_TAKE = 20
MAX_TAKE = 100

Listing = Tuple[PackageRoot, List[VersionRecord]]


class PackageSearchService:
    def __init__(self, packages: PackageService):
        self.packages = packages

    async def search(
        self,
        query: Optional[str] = None,
        skip: int = 0,
        take: int = DEFAULT_TAKE,
        include_prerelease: bool = False,
    ) -> SearchResponse:
        """
        Packages whose id, name, description or keywords contain every term
        of ``query`` (case-insensitive). Most downloaded packages first.
        """
        terms = (query or "").lower().split()
        matches = [
            (root, records)
            for root, records in await self._listings(include_prerelease)
            if all(_matches(term, root, records[-1]) for term in terms)
        ]
        matches.sort(key=lambda m: (-m[0].total_downloads, m[0].id))

        page = _page(matches, skip, take)
        logger.debug(f"Search for {query!r} matched {len(matches)} packages")
        return SearchResponse(
            total_hits=len(matches),
            data=[_search_result(root, records) for root, records in page],
        )

    async def autocomplete(
        self,
        query: Optional[str] = None,
        skip: int = 0,
        take: int = DEFAULT_TAKE,
        include_prerelease: bool = False,
    ) -> AutocompleteResponse:
        """Ids of the packages starting with ``query``."""
        prefix = (query or "").strip().lower()
        matches = [
            root
            for root, _ in await self._listings(include_prerelease)
            if root.id.startswith(prefix)
        ]
        matches.sort(key=lambda r: (-r.total_downloads, r.id))

        return AutocompleteResponse(
            total_hits=len(matches),
            data=[root.id for root in _page(matches, skip, take)],
        )

    async def list_versions(self, package_id: str, include_prerelease: bool = False) -> AutocompleteResponse:
        """Listed versions of one package, lowest first."""
        records = _visible(await self.packages.find(package_id), include_prerelease)
        return AutocompleteResponse(
            total_hits=len(records),
            data=[r.normalized_version for r in records],
        )

    async def dependents(
        self,
        package_id: str,
        skip: int = 0,
        take: int = DEFAULT_TAKE,
    ) -> DependentsResponse:
        """
        Packages with a listed version declaring a dependency on ``package_id``.
        """
        if not is_valid_package_id(package_id):
            return DependentsResponse()

        target = package_id.lower()
        found: List[DependentResult] = []
        for root, records in await self._listings(include_prerelease=True):
            if root.id == target:
                continue
            if any(target in {d.lower() for d in r.dependencies} for r in records):
                found.append(DependentResult(
                    id=root.id,
                    description=records[-1].description,
                    total_downloads=root.total_downloads,
                ))
        found.sort(key=lambda d: (-d.total_downloads, d.id))

        return DependentsResponse(total_hits=len(found), data=_page(found, skip, take))

    async def _listings(self, include_prerelease: bool) -> List[Listing]:
        """Every package with at least one visible version, versions lowest first."""
        listings: List[Listing] = []
        for root in sorted(await self.packages.list_roots(), key=lambda r: r.id):
            records = _visible(await self.packages.find(root.id), include_prerelease)
            if records:
                listings.append((root, records))
        return listings


def _visible(records: Iterable[VersionRecord], include_prerelease: bool) -> List[VersionRecord]:
    return [r for r in records if r.listed and (include_prerelease or not r.is_preview)]


def _matches(term: str, root: PackageRoot, record: VersionRecord) -> bool:
    fields = [root.id, record.name, record.description or ""] + list(record.keywords)
    return any(term in field.lower() for field in fields)


def _page(items: list, skip: int, take: int) -> list:
    skip = max(skip, 0)
    take = min(max(take, 0), MAX_TAKE)
    return items[skip:skip + take]


def _search_result(root: PackageRoot, records: List[VersionRecord]) -> SearchResult:
    newest = records[-1]
    return SearchResult(
        id=root.id,
        name=newest.name,
        version=newest.normalized_version,
        description=newest.description,
        authors=list(newest.authors),
        keywords=list(newest.keywords),
        icon=newest.icon,
        total_downloads=root.total_downloads,
        verified=root.verified,
        versions=[SearchResultVersion(version=r.normalized_version, downloads=r.downloads) for r in records],
    )
