"""
Archive validation for uploaded packages.

A package archive is a zip file containing:
- manifest.yaml (or manifest.yml) with the package metadata
- an optional readme (README.md unless the manifest names another entry)
- an optional icon, named by the manifest's ``icon`` field

Nothing is persisted here: the validator either returns the parsed archive
or raises PackageValidationError with a message fit for the publisher.
"""
from __future__ import annotations

import hashlib
import io
import re
import zipfile
from typing import BinaryIO, Dict, List, Optional, Protocol, Union
import logging

import yaml
from pydantic import BaseModel, ValidationError

from pkgregistry.domain.errors import PackageValidationError
from pkgregistry.domain.models import Manifest, RegistryConfig
from pkgregistry.domain.versioning import InvalidVersion, parse_version
from pkgregistry.services.policy import TextPolicy

logger = logging.getLogger(__name__)

MANIFEST_ENTRIES = ("manifest.yaml", "manifest.yml")
DEFAULT_README_ENTRY = "README.md"
EMBEDDED_PREFIX = "@/"
READ_CHUNK_SIZE = 1024 * 1024

PACKAGE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class AsyncReadable(Protocol):
    """An upload read with ``await``, like FastAPI's UploadFile."""

    async def read(self, size: int = -1) -> bytes:
        ...


ArchiveSource = Union[bytes, bytearray, BinaryIO]


def is_valid_package_id(value: str) -> bool:
    """Whether ``value`` could name a package, whatever its length."""
    return isinstance(value, str) and bool(PACKAGE_NAME_RE.fullmatch(value)) and ".." not in value


class ParsedArchive(BaseModel):
    """An uploaded archive split into its manifest and embedded streams."""

    manifest: Manifest
    content: bytes
    readme: Optional[bytes] = None
    icon: Optional[bytes] = None
    unpacked_size: int = 0

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.content).hexdigest()


class PackageValidator:
    def __init__(self, config: RegistryConfig, text_policy: TextPolicy):
        self.config = config
        self.text_policy = text_policy

    # ========================================================================
    # Archive reading
    # ========================================================================

    def read_archive(self, source: ArchiveSource) -> bytes:
        """
        Read the upload, giving up as soon as it exceeds the size limit.
        """
        limit = self.config.max_package_size

        if isinstance(source, (bytes, bytearray)):
            if len(source) > limit:
                raise PackageValidationError(f"Size of package is more than {_format_size(limit)}.")
            return bytes(source)

        buffer = io.BytesIO()
        while True:
            chunk = source.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self._append_chunk(buffer, chunk)
        return buffer.getvalue()

    async def read_upload(self, source: AsyncReadable) -> bytes:
        """
        Same as ``read_archive`` for uploads read with ``await``, one chunk
        at a time.
        """
        buffer = io.BytesIO()
        while True:
            chunk = await source.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self._append_chunk(buffer, chunk)
        return buffer.getvalue()

    def _append_chunk(self, buffer: io.BytesIO, chunk: bytes) -> None:
        buffer.write(chunk)
        limit = self.config.max_package_size
        if buffer.tell() > limit:
            raise PackageValidationError(f"Size of package is more than {_format_size(limit)}.")

    def parse(self, content: bytes) -> ParsedArchive:
        """Open the zip archive and extract manifest, readme and icon."""
        try:
            archive = zipfile.ZipFile(io.BytesIO(content))
        except zipfile.BadZipFile:
            raise PackageValidationError("Package is not a valid zip archive.")

        with archive:
            infos = {info.filename: info for info in archive.infolist() if not info.is_dir()}

            unpacked_size = sum(info.file_size for info in infos.values())
            if unpacked_size > self.config.max_package_size:
                raise PackageValidationError(
                    f"Unpacked content of package is more than {_format_size(self.config.max_package_size)}."
                )

            manifest_entry = next((name for name in MANIFEST_ENTRIES if name in infos), None)
            if manifest_entry is None:
                raise PackageValidationError("Package does not contain a manifest.yaml.")

            raw = self._load_manifest_yaml(archive.read(manifest_entry))

            readme_entry = _embedded_entry(raw.get("readme"))
            if raw.get("readme") is not None and readme_entry is None:
                raise PackageValidationError("Manifest field 'readme' must name an entry in the archive.")
            if readme_entry is None and DEFAULT_README_ENTRY in infos:
                readme_entry = DEFAULT_README_ENTRY
            if readme_entry is not None and readme_entry not in infos:
                raise PackageValidationError(f"Readme '{readme_entry}' is missing from the archive.")

            icon_entry = _embedded_entry(raw.get("icon"))
            if icon_entry is not None and icon_entry not in infos:
                raise PackageValidationError(f"Icon '{icon_entry}' is missing from the archive.")
            if icon_entry is not None and infos[icon_entry].file_size > self.config.max_icon_size:
                raise PackageValidationError(f"Size of icon is more than {_format_size(self.config.max_icon_size)}.")

            manifest = self._build_manifest(raw, readme_entry, icon_entry)

            readme = archive.read(readme_entry) if readme_entry else None
            icon = archive.read(icon_entry) if icon_entry else None

        return ParsedArchive(
            manifest=manifest,
            content=content,
            readme=readme,
            icon=icon,
            unpacked_size=unpacked_size,
        )

    def load(self, source: ArchiveSource) -> ParsedArchive:
        """Read, parse and validate an upload in one go."""
        parsed = self.parse(self.read_archive(source))
        self.validate(parsed)
        return parsed

    # ========================================================================
    # Validation rules
    # ========================================================================

    def validate(self, parsed: ParsedArchive) -> None:
        """
        Checks that apply to every upload, new package or not.
        """
        manifest = parsed.manifest
        config = self.config

        if manifest.description and len(manifest.description) > config.max_description_length:
            raise PackageValidationError(
                f"Description is more than {config.max_description_length} characters."
            )
        if len(manifest.name) > config.max_name_length:
            raise PackageValidationError(f"Name is more than {config.max_name_length} characters.")
        if parsed.size > config.max_package_size or parsed.unpacked_size > config.max_package_size:
            raise PackageValidationError(f"Size of package is more than {_format_size(config.max_package_size)}.")
        if parsed.icon is not None and len(parsed.icon) > config.max_icon_size:
            raise PackageValidationError(f"Size of icon is more than {_format_size(config.max_icon_size)}.")
        if manifest.description and self.text_policy.contains_banned_content(manifest.description):
            raise PackageValidationError("Description contains banned words.")

    def validate_new_package(self, manifest: Manifest) -> None:
        """
        Checks for the first version of a package, i.e. when the name is claimed.
        """
        if self.is_reserved_name(manifest.name):
            raise PackageValidationError(
                f"Name '{manifest.name}' has been reserved. "
                "Contact the registry operators if you need to publish under a reserved name."
            )
        if self.text_policy.contains_banned_content(manifest.name):
            raise PackageValidationError("Name contains banned words.")

    def is_reserved_name(self, name: str) -> bool:
        lowered = name.lower()
        if len(name) < self.config.min_name_length:
            return True
        if any(lowered == reserved.lower() for reserved in self.config.reserved_names):
            return True
        return any(lowered.startswith(prefix.lower()) for prefix in self.config.reserved_prefixes)

    # ========================================================================
    # Manifest parsing
    # ========================================================================

    def _load_manifest_yaml(self, data: bytes) -> Dict:
        try:
            raw = yaml.safe_load(data.decode("utf-8"))
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise PackageValidationError(f"Manifest is not valid YAML: {e}")
        if not isinstance(raw, dict):
            raise PackageValidationError("Manifest must be a YAML mapping.")
        return raw

    def _build_manifest(self, raw: Dict, readme_entry: Optional[str], icon_entry: Optional[str]) -> Manifest:
        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            raise PackageValidationError("Manifest is missing 'name'.")
        name = name.strip()
        if not is_valid_package_id(name):
            raise PackageValidationError(
                "Name may only contain letters, digits, '.', '_' and '-', must start with a letter or digit "
                "and may not contain '..'."
            )

        version = raw.get("version")
        if version is None or not str(version).strip():
            raise PackageValidationError("Manifest is missing 'version'.")
        version = str(version).strip()
        try:
            parse_version(version)
        except InvalidVersion:
            raise PackageValidationError(f"'{version}' is not a valid version.")

        description = raw.get("description")
        if description is not None and not isinstance(description, str):
            raise PackageValidationError("Manifest field 'description' must be a string.")

        try:
            return Manifest(
                name=name,
                version=version,
                authors=_string_list(raw.get("authors"), "authors"),
                description=description,
                dependencies=_dependencies(raw.get("dependencies")),
                license=_optional_str(raw.get("license")),
                homepage=_optional_str(raw.get("homepage") or raw.get("url")),
                repository=_optional_str(raw.get("repository")),
                keywords=_string_list(raw.get("keywords"), "keywords"),
                readme=readme_entry,
                icon=icon_entry or _optional_str(raw.get("icon")),
                has_embedded_readme=readme_entry is not None,
                has_embedded_icon=icon_entry is not None,
                is_workload=bool(raw.get("workload", False)),
            )
        except ValidationError as e:
            raise PackageValidationError(f"Manifest is invalid: {e.errors()[0].get('msg')}")


def _embedded_entry(value) -> Optional[str]:
    """
    Archive entry named by a manifest field, or None for URLs and missing values.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    value = value.strip()
    if value.startswith(("http://", "https://")):
        return None
    if value.startswith(EMBEDDED_PREFIX):
        value = value[len(EMBEDDED_PREFIX):]
    return value


def _optional_str(value) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _string_list(value, field: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value if v is not None]
    raise PackageValidationError(f"Manifest field '{field}' must be a string or a list of strings.")


def _dependencies(value) -> Dict[str, str]:
    """
    Accept either a mapping of name to version range or a list of
    ``name@range`` strings.
    """
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(k): str(v) if v is not None else "*" for k, v in value.items()}
    if isinstance(value, list):
        deps: Dict[str, str] = {}
        for item in value:
            name, _, version_range = str(item).partition("@")
            if not name:
                raise PackageValidationError(f"Invalid dependency '{item}'.")
            deps[name] = version_range or "*"
        return deps
    raise PackageValidationError("Manifest field 'dependencies' must be a mapping or a list.")


def _format_size(size: int) -> str:
    if size % (1024 * 1024) == 0:
        return f"{size // (1024 * 1024)} MB"
    if size % 1024 == 0:
        return f"{size // 1024} KB"
    return f"{size} bytes"
