"""
Publisher-facing API routes: push, delete and relist packages.

Every route here requires an API key in the ``X-Api-Key`` header. The key
identifies the publisher; ownership of a package is checked per request.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, File, Header, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse

from pkgregistry.core.dependencies import (
    get_authenticator,
    get_indexing_service,
    get_package_service,
)
from pkgregistry.domain.errors import OwnerMismatchError, PackageNotFoundError, PublishCancelledError
from pkgregistry.domain.models import Publisher, VersionRecord
from pkgregistry.domain.versioning import InvalidVersion
from pkgregistry.services.authentication import ApiKeyAuthenticator
from pkgregistry.services.indexing import PackageIndexingService
from pkgregistry.services.package_service import PackageService

logger = logging.getLogger(__name__)
router = APIRouter()

API_KEY_HEADER = "X-Api-Key"
DISCONNECT_POLL_SECONDS = 0.5
# Non-standard status for requests the client abandoned.
CLIENT_CLOSED_REQUEST = 499


def require_publisher(
    api_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER),
    authenticator: ApiKeyAuthenticator = Depends(get_authenticator),
) -> Publisher:
    """
    Dependency resolving the calling publisher from its API key.
    """
    publisher = authenticator.authenticate(api_key)
    if publisher is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="A valid API key is required",
        )
    return publisher


async def cancel_on_disconnect(
    request: Request,
    cancel: asyncio.Event,
    interval: float = DISCONNECT_POLL_SECONDS,
) -> None:
    """Set ``cancel`` once the client has gone away."""
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info(f"Client disconnected from {request.url.path}, cancelling")
            cancel.set()
            return
        await asyncio.sleep(interval)


# ============================================================================
# Publish
# ============================================================================

@router.put("/package")
async def push_package(
    request: Request,
    package: UploadFile = File(...),
    publisher: Publisher = Depends(require_publisher),
    indexing: PackageIndexingService = Depends(get_indexing_service),
) -> JSONResponse:
    """
    Publish an uploaded package archive.

    The status code follows the indexing result: 201 on success, 400 for an
    invalid package, 409 if the version exists, 403 if the package belongs
    to another publisher and 500 otherwise. A publish abandoned by its client
    stops at the next state boundary and answers 499.
    """
    cancel = asyncio.Event()
    watcher = asyncio.create_task(cancel_on_disconnect(request, cancel))
    try:
        outcome = await indexing.index(package, publisher, cancel=cancel)
    except PublishCancelledError as e:
        return JSONResponse(status_code=CLIENT_CLOSED_REQUEST, content={"result": "cancelled", "message": str(e)})
    finally:
        watcher.cancel()

    body = {"result": outcome.result.value, "message": outcome.message}
    if outcome.record is not None:
        body["package"] = outcome.record.package_id
        body["version"] = outcome.record.normalized_version
    if outcome.correlation_id and not outcome.succeeded:
        body["reference"] = outcome.correlation_id

    return JSONResponse(status_code=outcome.status_code, content=body)


# ============================================================================
# Version management
# ============================================================================

@router.delete("/package/{package_id}/{version}")
async def delete_package(
    package_id: str,
    version: str,
    publisher: Publisher = Depends(require_publisher),
    indexing: PackageIndexingService = Depends(get_indexing_service),
) -> dict:
    try:
        behavior = await indexing.delete_version(package_id, version, publisher)
    except InvalidVersion:
        raise HTTPException(status_code=400, detail=f"'{version}' is not a valid version")
    except PackageNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OwnerMismatchError as e:
        raise HTTPException(status_code=403, detail=str(e))

    return {"package": package_id.lower(), "version": version, "deletion": behavior.value}


@router.post("/package/{package_id}/{version}/relist")
async def relist_package(
    package_id: str,
    version: str,
    publisher: Publisher = Depends(require_publisher),
    indexing: PackageIndexingService = Depends(get_indexing_service),
) -> dict:
    try:
        await indexing.relist_version(package_id, version, publisher)
    except InvalidVersion:
        raise HTTPException(status_code=400, detail=f"'{version}' is not a valid version")
    except PackageNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OwnerMismatchError as e:
        raise HTTPException(status_code=403, detail=str(e))

    return {"package": package_id.lower(), "version": version, "listed": True}


@router.get("/me/packages", response_model=List[VersionRecord])
async def my_packages(
    publisher: Publisher = Depends(require_publisher),
    packages: PackageService = Depends(get_package_service),
) -> List[VersionRecord]:
    """The newest version of every package the caller owns."""
    return await packages.find_for_owner(publisher.id)
