from pathlib import Path
from typing import Optional

from pkgregistry.data.settings import get_data_dir, load_registry_config
from pkgregistry.domain.models import RegistryConfig
from pkgregistry.services.caching import ReadCache
from pkgregistry.services.content import PackageContentService
from pkgregistry.services.indexing import PackageIndexingService
from pkgregistry.services.package_search import PackageSearchService
from pkgregistry.services.package_service import PackageService
from pkgregistry.services.package_storage import PackageStorageService
from pkgregistry.services.authentication import ApiKeyAuthenticator
from pkgregistry.services.policy import ConfigUserPolicy, WordListTextPolicy
from pkgregistry.services.resolver import VersionResolver
from pkgregistry.services.search import HttpSearchIndexer, NullSearchIndexer, SearchIndexer
from pkgregistry.services.validation import PackageValidator
from pkgregistry.storage.content_store import FileSystemContentStore
from pkgregistry.storage.json_db_manager import JsonDocumentStore


class RegistryServices:
    """Every service of one registry instance, wired together."""

    def __init__(self, data_dir: Path, config: RegistryConfig, search: Optional[SearchIndexer] = None):
        self.data_dir = data_dir
        self.config = config

        self.document_store = JsonDocumentStore(data_dir / "db")
        self.content_store = FileSystemContentStore(data_dir / "content")
        self.cache = ReadCache(config.cache_ttl_seconds, config.cache_max_entries)

        self.text_policy = WordListTextPolicy(config.banned_words)
        self.user_policy = ConfigUserPolicy(config.exempt_publishers)
        self.authenticator = ApiKeyAuthenticator(config.api_keys)
        self.validator = PackageValidator(config, self.text_policy)

        if search is None:
            search = HttpSearchIndexer(config.search_indexer_url) if config.search_indexer_url else NullSearchIndexer()
        self.search = search

        self.packages = PackageService(
            self.document_store,
            self.validator,
            self.user_policy,
            cache=self.cache,
            max_download_increment_attempts=config.max_download_increment_attempts,
            max_pointer_update_attempts=config.max_pointer_update_attempts,
        )
        self.storage = PackageStorageService(self.content_store)
        self.resolver = VersionResolver(self.packages, self.cache)
        self.content = PackageContentService(self.packages, self.storage, self.resolver)
        self.package_search = PackageSearchService(self.packages)
        self.indexing = PackageIndexingService(
            self.packages,
            self.storage,
            self.search,
            self.validator,
            config,
        )

    async def initialize(self) -> None:
        await self.document_store.initialize()


_services: Optional[RegistryServices] = None


def get_services() -> RegistryServices:
    global _services
    if _services is None:
        data_dir = get_data_dir()
        _services = RegistryServices(data_dir, load_registry_config(data_dir))
    return _services


def set_services(services: Optional[RegistryServices]) -> None:
    global _services
    _services = services


def get_config() -> RegistryConfig:
    return get_services().config


def get_package_service() -> PackageService:
    return get_services().packages


def get_indexing_service() -> PackageIndexingService:
    return get_services().indexing


def get_content_service() -> PackageContentService:
    return get_services().content


def get_resolver() -> VersionResolver:
    return get_services().resolver


def get_search_service() -> PackageSearchService:
    return get_services().package_search


def get_authenticator() -> ApiKeyAuthenticator:
    return get_services().authenticator
