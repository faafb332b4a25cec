"""
Search indexer adapters.

Publishing only notifies the indexer; search queries are served elsewhere.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional
import logging

import httpx

from pkgregistry.domain.models import VersionRecord

logger = logging.getLogger(__name__)


class SearchIndexer(ABC):
    @abstractmethod
    async def index(self, record: VersionRecord) -> None:
        """Add or refresh a published version in the search index."""
        pass


class NullSearchIndexer(SearchIndexer):
    async def index(self, record: VersionRecord) -> None:
        logger.debug(f"Search indexing disabled, skipping {record.package_id} {record.normalized_version}")


class HttpSearchIndexer(SearchIndexer):
    """Pushes published versions to an external search service as JSON."""

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def index(self, record: VersionRecord) -> None:
        payload = record.model_dump(mode="json")
        if self._client is not None:
            response = await self._client.post(self.url, json=payload)
            response.raise_for_status()
            return

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()
