import json
import os
import re
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

import aiofiles

from pkgregistry.domain.errors import (
    DocumentExistsError,
    DocumentNotFoundError,
    WriteConflictError,
)
from pkgregistry.storage.db_manager import DocumentStore, StoredDocument

logger = logging.getLogger(__name__)

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+!-]*$")


class JsonDocumentStore(DocumentStore):
    """
    Document store backed by one JSON file per document.

    <root>/packages/foo.json               -> document "packages/foo"
    <root>/packages/foo/versions/1.0.json  -> document "packages/foo/versions/1.0"

    Each file holds ``{"revision": n, "data": {...}}``. Commits are serialized
    by a store-wide lock that only spans the revision check and the file
    replace, so readers and the read-modify-write cycles of callers run
    concurrently.
    """

    def __init__(self, data_dir: Path):
        self._root = data_dir
        self._commit_lock = threading.Lock()

        if not self._root.exists():
            self._root.mkdir(parents=True, exist_ok=True)

    async def initialize(self) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        for leftover in self._root.rglob("*.tmp"):
            leftover.unlink(missing_ok=True)

    async def get(self, path: str) -> Optional[StoredDocument]:
        file_path = self._file_for(path)
        try:
            async with aiofiles.open(file_path, "r", encoding="utf-8") as f:
                raw = json.loads(await f.read())
        except FileNotFoundError:
            return None
        return StoredDocument(path=path, revision=raw["revision"], data=raw["data"])

    async def create(self, path: str, data: Dict[str, Any]) -> StoredDocument:
        file_path = self._file_for(path)
        with self._commit_lock:
            if file_path.exists():
                raise DocumentExistsError(path)
            return self._write(path, file_path, data, revision=1)

    async def create_all(self, documents: Dict[str, Dict[str, Any]]) -> List[StoredDocument]:
        targets = [(path, self._file_for(path), data) for path, data in documents.items()]
        with self._commit_lock:
            for path, file_path, _ in targets:
                if file_path.exists():
                    raise DocumentExistsError(path)
            return [self._write(path, file_path, data, revision=1) for path, file_path, data in targets]

    async def update(self, path: str, data: Dict[str, Any], expected_revision: int) -> StoredDocument:
        file_path = self._file_for(path)
        with self._commit_lock:
            current = self._read_revision(file_path)
            if current is None:
                raise DocumentNotFoundError(path)
            if current != expected_revision:
                raise WriteConflictError(path, expected_revision, current)
            return self._write(path, file_path, data, revision=current + 1)

    async def delete(self, path: str, expected_revision: Optional[int] = None) -> bool:
        file_path = self._file_for(path)
        with self._commit_lock:
            current = self._read_revision(file_path)
            if current is None:
                return False
            if expected_revision is not None and current != expected_revision:
                raise WriteConflictError(path, expected_revision, current)
            file_path.unlink(missing_ok=True)
        return True

    async def list(self, collection: str) -> List[StoredDocument]:
        documents: List[StoredDocument] = []
        for doc_id in await self.list_ids(collection):
            doc = await self.get(f"{collection}/{doc_id}")
            # A document deleted between listing and reading is simply skipped.
            if doc is not None:
                documents.append(doc)
        return documents

    async def list_ids(self, collection: str) -> List[str]:
        directory = self._dir_for(collection)
        if not directory.is_dir():
            return []
        return sorted(
            entry.name[: -len(".json")]
            for entry in directory.iterdir()
            if entry.is_file() and entry.name.endswith(".json")
        )

    def _segments(self, path: str) -> List[str]:
        segments = [s for s in path.strip("/").split("/") if s]
        if not segments:
            raise ValueError("Document path is empty")
        for segment in segments:
            if not _SEGMENT_RE.match(segment) or ".." in segment:
                raise ValueError(f"Invalid document path segment: {segment!r}")
        return segments

    def _file_for(self, path: str) -> Path:
        segments = self._segments(path)
        return self._root.joinpath(*segments[:-1], f"{segments[-1]}.json")

    def _dir_for(self, collection: str) -> Path:
        return self._root.joinpath(*self._segments(collection))

    def _read_revision(self, file_path: Path) -> Optional[int]:
        try:
            raw = json.loads(file_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        return int(raw["revision"])

    def _write(self, path: str, file_path: Path, data: Dict[str, Any], revision: int) -> StoredDocument:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({"revision": revision, "data": data}, indent=2, default=str)

        # Write next to the target, then swap it in.
        tmp_path = file_path.with_name(f"{file_path.name}.{uuid.uuid4().hex}.tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, file_path)

        logger.debug(f"Committed {path} at revision {revision}")
        return StoredDocument(path=path, revision=revision, data=data)
