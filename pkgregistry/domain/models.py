"""
Pydantic models for the package registry.

This module defines the data models used throughout the application, including:
- Registry configuration
- Package manifests, package roots and version records
- Publishing and storage result types

All models use Pydantic for validation, serialization, and type safety.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .versioning import normalize_version, is_prerelease


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Result Types
# ============================================================================


class IndexingResult(str, Enum):
    """
    Outcome of a publish call, as returned by the indexing orchestrator.
    """

    SUCCESS = "success"
    INVALID_PACKAGE = "invalid_package"
    PACKAGE_ALREADY_EXISTS = "package_already_exists"
    ACCESS_DENIED = "access_denied"
    INTERNAL_ERROR = "internal_error"


_INDEXING_STATUS_CODES = {
    IndexingResult.SUCCESS: 201,
    IndexingResult.INVALID_PACKAGE: 400,
    IndexingResult.PACKAGE_ALREADY_EXISTS: 409,
    IndexingResult.ACCESS_DENIED: 403,
    IndexingResult.INTERNAL_ERROR: 500,
}


class PackageAddResult(str, Enum):
    """Result of registering a version in the metadata store."""

    SUCCESS = "success"
    PACKAGE_ALREADY_EXISTS = "package_already_exists"
    ACCESS_DENIED = "access_denied"


class StoragePutResult(str, Enum):
    """
    Result of writing a blob to the content store.

    CONFLICT means the path already holds different content; ALREADY_EXISTS
    means the same content is already stored there.
    """

    SUCCESS = "success"
    ALREADY_EXISTS = "already_exists"
    CONFLICT = "conflict"


class PackageDeletionBehavior(str, Enum):
    """
    How DELETE requests are interpreted.

    UNLIST keeps the version restorable by consumers that know its id and
    version; HARD_DELETE removes metadata and content permanently.
    """

    UNLIST = "unlist"
    HARD_DELETE = "hard_delete"


# ============================================================================
# Registry Configuration
# ============================================================================


class ApiKeyCredential(BaseModel):
    """
    An API key identifying a publisher.

    Supports two credential types:
    - "cleartext": key stored as plain text (normalized to SHA256 when the configuration is loaded)
    - "sha256": key field contains the SHA256 hash of salt + key
    """

    publisher_id: str = Field(
        description="Publisher the key authenticates as.",
    )
    type: str = Field(
        default="sha256",
        description='Credential type: "cleartext" or "sha256".',
    )
    key: str = Field(
        description="Key value: plain text if type is 'cleartext', SHA256 hash if type is 'sha256'.",
    )
    salt: Optional[str] = Field(
        default=None,
        description="Per-key salt used for SHA256 hashing (only used when type == 'sha256').",
    )


class RegistryConfig(BaseModel):
    """
    Top-level configuration for the registry.

    Persisted at: <DATA_DIR>/registry.json
    """

    display_name: str = Field(
        default="Python package registry",
        description="Human-friendly name displayed to users.",
    )
    log_level: str = Field(
        default="INFO",
        description="Root logging level applied on startup.",
    )

    # Publishing behavior
    allow_package_overwrites: bool = Field(
        default=False,
        description="If true, re-publishing an existing version deletes and recreates it.",
    )
    package_deletion_behavior: PackageDeletionBehavior = Field(
        default=PackageDeletionBehavior.UNLIST,
        description="What a DELETE request does to a package version.",
    )

    # Archive limits
    max_package_size: int = Field(
        default=300 * 1024 * 1024,
        gt=0,
        description="Maximum size in bytes of an uploaded archive and of its unpacked content.",
    )
    max_icon_size: int = Field(
        default=1024 * 1024,
        gt=0,
        description="Maximum size in bytes of an embedded icon.",
    )
    max_description_length: int = Field(default=70, gt=0)
    max_name_length: int = Field(default=30, gt=0)
    min_name_length: int = Field(default=2, ge=1)

    # Name and content policy
    reserved_names: List[str] = Field(
        default_factory=lambda: [
            "com0", "com1", "com2", "com3", "com4",
            "com5", "com6", "com7", "com8", "com9",
            "lpt1", "lpt2", "lpt3",
            "nul", "null", "prn", "aux", "con",
            "builtins", "collections", "debug", "std", "test",
            "http", "grpc", "logger", "core", "kernel", "system",
            "class", "return", "import", "public", "private", "static",
            "true", "false", "self", "new", "void", "async", "await",
        ],
        description="Package names nobody may claim (case-insensitive).",
    )
    reserved_prefixes: List[str] = Field(
        default_factory=lambda: ["pkgregistry"],
        description="Name prefixes reserved for the registry operators.",
    )
    banned_words: List[str] = Field(
        default_factory=list,
        description="Words rejected by the built-in free-text policy.",
    )
    exempt_publishers: List[str] = Field(
        default_factory=list,
        description="Publisher ids that skip reserved-name and content validation for new packages.",
    )
    api_keys: List[ApiKeyCredential] = Field(
        default_factory=list,
        description="API keys of the publishers. A mapping of cleartext key to publisher id is accepted too.",
    )

    # Read cache
    cache_ttl_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Lifetime of a read cache entry when nothing invalidates it first.",
    )
    cache_max_entries: int = Field(
        default=10_000,
        gt=0,
        description="Maximum number of entries held by the read cache.",
    )

    # Optimistic concurrency
    max_download_increment_attempts: int = Field(
        default=5,
        ge=1,
        description="Read-increment-write attempts for a download counter before giving up.",
    )
    max_pointer_update_attempts: int = Field(
        default=10,
        ge=1,
        description="Attempts to write recomputed latest/next pointers before failing the publish.",
    )

    # Search
    search_indexer_url: Optional[str] = Field(
        default=None,
        description="If set, published versions are POSTed to this URL for search indexing.",
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        description="Timestamp when this configuration was first created.",
    )

    @field_validator("api_keys", mode="before")
    @classmethod
    def _accept_key_mapping(cls, value):
        if isinstance(value, dict):
            return [
                {"publisher_id": publisher_id, "type": "cleartext", "key": key}
                for key, publisher_id in value.items()
            ]
        return value


# ============================================================================
# Package Models
# ============================================================================


class Publisher(BaseModel):
    """Identity of the user publishing or managing packages."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: Optional[str] = None


class Manifest(BaseModel):
    """
    Declared package metadata extracted from an uploaded archive.

    Persisted alongside the archive as: packages/<id>/<version>/<id>.manifest.json
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    authors: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    dependencies: Dict[str, str] = Field(
        default_factory=dict,
        description="Dependency package name mapped to the requested version range.",
    )
    license: Optional[str] = None
    homepage: Optional[str] = None
    repository: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)

    readme: Optional[str] = Field(
        default=None,
        description="Archive entry holding the readme, if any.",
    )
    icon: Optional[str] = Field(
        default=None,
        description="Archive entry holding the icon, or an external icon URL.",
    )
    has_embedded_readme: bool = False
    has_embedded_icon: bool = False
    is_workload: bool = False

    @property
    def normalized_version(self) -> str:
        return normalize_version(self.version)

    @property
    def is_preview(self) -> bool:
        return is_prerelease(self.version)


class PackageRoot(BaseModel):
    """
    Per-package aggregate: owner, version pointers and aggregate counters.

    Persisted at: packages/<id>
    """

    id: str
    owner: str
    latest: Optional[str] = Field(
        default=None,
        description="Normalized version of the highest non-prerelease record.",
    )
    next: Optional[str] = Field(
        default=None,
        description="Normalized version of the highest record overall.",
    )
    total_downloads: int = 0
    verified: bool = False
    serviced: bool = False
    created: datetime = Field(default_factory=utc_now)
    updated: datetime = Field(default_factory=utc_now)


class VersionRecord(BaseModel):
    """
    Metadata for one published version.

    Persisted at: packages/<id>/versions/<normalized version>
    """

    package_id: str
    name: str
    version: str
    normalized_version: str
    authors: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    dependencies: Dict[str, str] = Field(default_factory=dict)
    license: Optional[str] = None
    homepage: Optional[str] = None
    repository: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    icon: Optional[str] = None
    has_embedded_readme: bool = False
    has_embedded_icon: bool = False
    is_workload: bool = False
    is_preview: bool = False

    listed: bool = True
    downloads: int = 0
    published: datetime = Field(default_factory=utc_now)

    # Copied from the package root when the record is created.
    verified: bool = False
    serviced: bool = False

    @classmethod
    def from_manifest(cls, manifest: Manifest, published: Optional[datetime] = None) -> "VersionRecord":
        return cls(
            package_id=manifest.name.lower(),
            name=manifest.name,
            version=manifest.version,
            normalized_version=manifest.normalized_version,
            authors=list(manifest.authors),
            description=manifest.description,
            dependencies=dict(manifest.dependencies),
            license=manifest.license,
            homepage=manifest.homepage,
            repository=manifest.repository,
            keywords=list(manifest.keywords),
            icon=manifest.icon,
            has_embedded_readme=manifest.has_embedded_readme,
            has_embedded_icon=manifest.has_embedded_icon,
            is_workload=manifest.is_workload,
            is_preview=manifest.is_preview,
            listed=True,
            downloads=0,
            published=published or utc_now(),
        )


class IndexingOutcome(BaseModel):
    """
    Tagged result of a publish call plus the details a caller needs to report it.
    """

    result: IndexingResult
    message: Optional[str] = None
    record: Optional[VersionRecord] = None
    correlation_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result == IndexingResult.SUCCESS

    @property
    def status_code(self) -> int:
        return _INDEXING_STATUS_CODES[self.result]


class RegistryStats(BaseModel):
    """Aggregate numbers shown on the registry front page."""

    packages_count: int = 0
    total_downloads: int = 0
    popular: List[str] = Field(default_factory=list)
    recently_updated: List[str] = Field(default_factory=list)


# ============================================================================
# Search Models
# ============================================================================


class SearchResultVersion(BaseModel):
    version: str
    downloads: int = 0


class SearchResult(BaseModel):
    """A package matched by a search query, described by its newest matching version."""

    id: str
    name: str
    version: str
    description: Optional[str] = None
    authors: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    icon: Optional[str] = None
    total_downloads: int = 0
    verified: bool = False
    versions: List[SearchResultVersion] = Field(default_factory=list)


class SearchResponse(BaseModel):
    total_hits: int = Field(default=0, description="Number of matches, disregarding skip and take.")
    data: List[SearchResult] = Field(default_factory=list)


class AutocompleteResponse(BaseModel):
    """Package ids matched by a prefix, or the versions of one package."""

    total_hits: int = 0
    data: List[str] = Field(default_factory=list)


class DependentResult(BaseModel):
    id: str
    description: Optional[str] = None
    total_downloads: int = 0


class DependentsResponse(BaseModel):
    total_hits: int = 0
    data: List[DependentResult] = Field(default_factory=list)
