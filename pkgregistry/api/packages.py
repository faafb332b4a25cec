from __future__ import annotations

from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from pkgregistry.core.dependencies import (
    get_content_service,
    get_package_service,
    get_resolver,
    get_search_service,
)
from pkgregistry.domain.errors import PackageNotFoundError
from pkgregistry.domain.models import (
    AutocompleteResponse,
    DependentsResponse,
    RegistryStats,
    SearchResponse,
    VersionRecord,
)
from pkgregistry.domain.selectors import VersionSelector
from pkgregistry.domain.versioning import InvalidVersion
from pkgregistry.services.content import PackageContentService
from pkgregistry.services.package_search import DEFAULT_TAKE, MAX_TAKE, PackageSearchService
from pkgregistry.services.package_service import PackageService
from pkgregistry.services.resolver import VersionResolver

logger = logging.getLogger(__name__)
router = APIRouter()


def _parse_selector(selector: str) -> VersionSelector:
    try:
        return VersionSelector.parse(selector)
    except InvalidVersion:
        raise HTTPException(
            status_code=400,
            detail=f"'{selector}' is neither a version nor one of the tags 'latest' and 'next'",
        )


# ============================================================================
# Package metadata
# ============================================================================

@router.get("/package/{package_id}")
async def get_package_versions(
    package_id: str,
    content: PackageContentService = Depends(get_content_service),
) -> dict:
    """
    All versions of a package, unlisted ones included.
    """
    versions = await content.get_package_versions(package_id)
    if versions is None:
        raise HTTPException(status_code=404, detail="Package not found")
    return {"versions": versions}


@router.get("/package/{package_id}/{selector}", response_model=VersionRecord)
async def get_package_version(
    package_id: str,
    selector: str,
    include_unlisted: bool = Query(default=False),
    resolver: VersionResolver = Depends(get_resolver),
) -> VersionRecord:
    """
    Metadata of one version; ``selector`` is a version or ``latest`` / ``next``.
    """
    try:
        return await resolver.resolve(package_id, _parse_selector(selector), include_unlisted=include_unlisted)
    except PackageNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ============================================================================
# Package content
# ============================================================================

@router.get("/package/{package_id}/{selector}/content")
async def download_package(
    package_id: str,
    selector: str,
    content: PackageContentService = Depends(get_content_service),
) -> Response:
    found = await content.get_package_content(package_id, _parse_selector(selector))
    if found is None:
        raise HTTPException(status_code=404, detail="Package not found")

    record, stream = found
    filename = f"{record.package_id}.{record.normalized_version}.zip"
    return Response(
        content=stream.read(),
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/package/{package_id}/{selector}/manifest")
async def download_manifest(
    package_id: str,
    selector: str,
    content: PackageContentService = Depends(get_content_service),
) -> Response:
    stream = await content.get_package_manifest(package_id, _parse_selector(selector))
    if stream is None:
        raise HTTPException(status_code=404, detail="Manifest not found")
    return Response(content=stream.read(), media_type="application/json")


@router.get("/package/{package_id}/{selector}/readme")
async def download_readme(
    package_id: str,
    selector: str,
    content: PackageContentService = Depends(get_content_service),
) -> Response:
    stream = await content.get_package_readme(package_id, _parse_selector(selector))
    if stream is None:
        raise HTTPException(status_code=404, detail="Readme not found")
    return Response(content=stream.read(), media_type="text/markdown")


@router.get("/package/{package_id}/{selector}/icon")
async def download_icon(
    package_id: str,
    selector: str,
    content: PackageContentService = Depends(get_content_service),
) -> Response:
    stream = await content.get_package_icon(package_id, _parse_selector(selector))
    if stream is None:
        raise HTTPException(status_code=404, detail="Icon not found")
    return Response(content=stream.read(), media_type="image/png")


# ============================================================================
# Registry statistics
# ============================================================================

@router.get("/stats", response_model=RegistryStats)
async def get_stats(packages: PackageService = Depends(get_package_service)) -> RegistryStats:
    return RegistryStats(
        packages_count=await packages.get_packages_count(),
        total_downloads=await packages.get_total_downloads(),
        popular=await packages.get_popular_packages(),
        recently_updated=await packages.get_recently_updated(),
    )


# ============================================================================
# Search
# ============================================================================

@router.get("/search", response_model=SearchResponse)
async def search_packages(
    q: Optional[str] = Query(default=None),
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=DEFAULT_TAKE, ge=0, le=MAX_TAKE),
    prerelease: bool = Query(default=False),
    search: PackageSearchService = Depends(get_search_service),
) -> SearchResponse:
    return await search.search(q, skip=skip, take=take, include_prerelease=prerelease)


@router.get("/search/autocomplete", response_model=AutocompleteResponse)
async def autocomplete(
    q: Optional[str] = Query(default=None),
    package_id: Optional[str] = Query(default=None, alias="id"),
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=DEFAULT_TAKE, ge=0, le=MAX_TAKE),
    prerelease: bool = Query(default=False),
    search: PackageSearchService = Depends(get_search_service),
) -> AutocompleteResponse:
    """
    Package ids starting with ``q``. Given only ``id``, the versions of that
    package instead.
    """
    if package_id is not None and q is None:
        return await search.list_versions(package_id, include_prerelease=prerelease)
    return await search.autocomplete(q, skip=skip, take=take, include_prerelease=prerelease)


@router.get("/search/dependents", response_model=DependentsResponse)
async def dependents(
    package_id: Optional[str] = Query(default=None),
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=DEFAULT_TAKE, ge=0, le=MAX_TAKE),
    search: PackageSearchService = Depends(get_search_service),
) -> DependentsResponse:
    if not package_id or not package_id.strip():
        raise HTTPException(status_code=400, detail="package_id is required")
    return await search.dependents(package_id.strip(), skip=skip, take=take)
