from __future__ import annotations

import hashlib
import io
import json
import os
import re
import threading
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Optional
import logging

import aiofiles

from pkgregistry.domain.models import StoragePutResult

logger = logging.getLogger(__name__)

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+!-]*$")
_META_SUFFIX = ".meta.json"


class ContentStore(ABC):
    """
    Abstract blob store for package archives, manifests, readmes and icons.
    """

    @abstractmethod
    async def put(self, path: str, stream: BinaryIO, content_type: str) -> StoragePutResult:
        file_path = self._file_for(path)
        data = stream.read()
        digest = hashlib.sha256(data).hexdigest()

        if file_path.exists():
            return self._existing_result(path, await self._read_meta(file_path), digest)

        # Stage the blob, then check and swap it in under the lock.
        file_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = file_path.with_name(f"{file_path.name}.{uuid.uuid4().hex}.tmp")
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(data)

        meta = {"content_type": content_type, "sha256": digest, "size": len(data)}
        with self._commit_lock:
            if file_path.exists():
                tmp_path.unlink(missing_ok=True)
                return self._existing_result(path, self._read_meta_sync(file_path), digest)

            # The sidecar lands first: whoever sees the blob also sees its meta.
            meta_path = self._meta_for(file_path)
            meta_tmp = meta_path.with_name(f"{meta_path.name}.{uuid.uuid4().hex}.tmp")
            meta_tmp.write_text(json.dumps(meta), encoding="utf-8")
            os.replace(meta_tmp, meta_path)
            os.replace(tmp_path, file_path)

        return StoragePutResult.SUCCESS

    async def get(self, path: str) -> Optional[BinaryIO]:
        file_path = self._file_for(path)
        try:
            async with aiofiles.open(file_path, "rb") as f:
                data = await f.read()
        except FileNotFoundError:
            return None
        return io.BytesIO(data)

    async def get_content_type(self, path: str) -> Optional[str]:
        meta = await self._read_meta(self._file_for(path))
        return meta.get("content_type") if meta else None

    async def delete(self, path: str) -> None:
        file_path = self._file_for(path)
        file_path.unlink(missing_ok=True)
        self._meta_for(file_path).unlink(missing_ok=True)

    def _file_for(self, path: str) -> Path:
        segments = [s for s in path.strip("/").split("/") if s]
        if not segments:
            raise ValueError("Content path is empty")
        for segment in segments:
            if not _SEGMENT_RE.match(segment) or ".." in segment:
                raise ValueError(f"Invalid content path segment: {segment!r}")
        return self._root.joinpath(*segments)

    def _meta_for(self, file_path: Path) -> Path:
        return file_path.with_name(file_path.name + _META_SUFFIX)

    async def _read_meta(self, file_path: Path) -> Optional[dict]:
        try:
            async with aiofiles.open(self._meta_for(file_path), "r", encoding="utf-8") as f:
                return json.loads(await f.read())
        except FileNotFoundError:
            return None

    def _read_meta_sync(self, file_path: Path) -> Optional[dict]:
        try:
            return json.loads(self._meta_for(file_path).read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None

    def _existing_result(self, path: str, existing: Optional[dict], digest: str) -> StoragePutResult:
        if existing is not None and existing.get("sha256") == digest:
            return StoragePutResult.ALREADY_EXISTS
        logger.info(f"Refusing to overwrite {path} with different content")
        return StoragePutResult.CONFLICT
