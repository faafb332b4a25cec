from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class StoredDocument(BaseModel):
    """
    A document as read from the store, together with the revision that
    conditional writes must be checked against.
    """

    path: str
    revision: int
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]


class DocumentStore(ABC):
    """
    Abstract base class for the metadata document database.

    Documents are addressed by slash-separated paths; a collection is the set
    of documents directly below a path prefix. The store guarantees atomicity
    for one document at a time (plus batch creation), nothing more.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the storage subsystem (e.g. create directories)."""
        pass

    @abstractmethod
    async def get(self, path: str) -> Optional[StoredDocument]:
        """Read a document, or None if it does not exist."""
        pass

    @abstractmethod
    async def create(self, path: str, data: Dict[str, Any]) -> StoredDocument:
        """
        Create a document. Raises DocumentExistsError if the path is taken.
        """
        pass

    @abstractmethod
    async def create_all(self, documents: Dict[str, Dict[str, Any]]) -> List[StoredDocument]:
        """
        Create several documents atomically: either all of them are created or,
        if any path is taken, none is and DocumentExistsError names that path.
        """
        pass

    @abstractmethod
    async def update(self, path: str, data: Dict[str, Any], expected_revision: int) -> StoredDocument:
        """
        Replace a document only if it is still at ``expected_revision``.

        Raises WriteConflictError when another writer got there first and
        DocumentNotFoundError when the document is gone.
        """
        pass

    @abstractmethod
    async def delete(self, path: str, expected_revision: Optional[int] = None) -> bool:
        """
        Delete a document. Returns False if it did not exist. With
        ``expected_revision`` the delete is conditional like ``update``.
        """
        pass

    @abstractmethod
    async def list(self, collection: str) -> List[StoredDocument]:
        """Read every document directly inside a collection."""
        pass

    @abstractmethod
    async def list_ids(self, collection: str) -> List[str]:
        """List the ids of documents directly inside a collection."""
        pass
