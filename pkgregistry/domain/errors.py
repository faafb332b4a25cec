"""
Exception hierarchy for the package registry.

Validation and ownership errors are user-correctable and are translated into
indexing results by the orchestrator. Store-level errors describe what the
document store refused to do so callers can decide whether to retry.
"""

from __future__ import annotations

from typing import Optional


class RegistryError(Exception):
    """Base class for all registry errors."""


class PackageValidationError(RegistryError):
    """The uploaded archive or its manifest violates a publishing rule."""


class OwnerMismatchError(RegistryError):
    """The publisher does not own the package it is trying to publish to or manage."""

    def __init__(self, package_id: str):
        # The current owner is never part of the message.
        super().__init__(f"You do not have permission to modify package '{package_id}'.")
        self.package_id = package_id


class PackageNotFoundError(RegistryError):
    def __init__(self, package_id: str, message: Optional[str] = None):
        super().__init__(message or f"Package '{package_id}' was not found.")
        self.package_id = package_id


class NoStableVersionError(PackageNotFoundError):
    """The package exists but has no non-prerelease version to serve as `latest`."""

    def __init__(self, package_id: str):
        super().__init__(package_id, f"Package '{package_id}' has no stable version.")


class VersionNotFoundError(PackageNotFoundError):
    def __init__(self, package_id: str, version: str):
        super().__init__(package_id, f"Version '{version}' of package '{package_id}' was not found.")
        self.version = version


class StorageConflictError(RegistryError):
    """The content store already holds different content at the target path."""

    def __init__(self, path: str):
        super().__init__(f"Different content is already stored at '{path}'.")
        self.path = path


class PublishCancelledError(RegistryError):
    """The caller asked to stop a publish; raised between two pipeline states."""

    def __init__(self, state: str):
        super().__init__(f"Publish cancelled before leaving state {state}.")
        self.state = state


class DocumentStoreError(RegistryError):
    def __init__(self, path: str, message: str):
        super().__init__(message)
        self.path = path


class DocumentExistsError(DocumentStoreError):
    def __init__(self, path: str):
        super().__init__(path, f"Document '{path}' already exists.")


class DocumentNotFoundError(DocumentStoreError):
    def __init__(self, path: str):
        super().__init__(path, f"Document '{path}' does not exist.")


class WriteConflictError(DocumentStoreError):
    """A conditional write lost against a concurrent modification."""

    def __init__(self, path: str, expected: int, actual: Optional[int]):
        super().__init__(
            path,
            f"Document '{path}' changed since it was read (expected revision {expected}, found {actual}).",
        )
        self.expected = expected
        self.actual = actual


def is_retriable_conflict(exc: BaseException) -> bool:
    """
    Classify store failures for optimistic-concurrency retry loops.

    Only a lost conditional write is worth retrying: the read-modify-write cycle
    can be replayed against a fresh read. Anything else is fatal.
    """
    return isinstance(exc, WriteConflictError)
