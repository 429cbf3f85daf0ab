"""In-memory GridFS bucket."""

import asyncio
from datetime import datetime, timezone
from typing import Any

from gridfs.errors import NoFile


class MemoryDatabase:
    """Stands in for a MongoDB database that only stores GridFS files."""

    def __init__(self, name: str = "test") -> None:
        self.name = name
        self.buckets: dict[str, dict[Any, tuple[dict[str, Any], bytes]]] = {}
        self._lock = asyncio.Lock()

    def bucket(self, bucket_name: str = "fs") -> "MemoryBucket":
        return MemoryBucket(self, bucket_name)


class MemoryUploadStream:
    """A file being written to a memory bucket."""

    def __init__(self, bucket: "MemoryBucket", document: dict[str, Any]) -> None:
        self._bucket = bucket
        self._document = document
        self._buffer = bytearray()
        self._closed = False

    @property
    def file_id(self) -> Any:
        return self._document["_id"]

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise ValueError("cannot write to a closed file")
        self._buffer.extend(data)

    async def finish(self, extra: dict[str, Any] | None = None) -> dict[str, Any]:
        if self._closed:
            raise ValueError("file is already closed")
        self._closed = True
        document = {
            **self._document,
            **(extra or {}),
            "length": len(self._buffer),
            "uploadDate": datetime.now(timezone.utc),
        }
        await self._bucket._put(document, bytes(self._buffer))
        return dict(document)

    async def abort(self) -> None:
        self._closed = True
        self._buffer.clear()


class MemoryBucket:
    """Async GridFS bucket kept in a ``MemoryDatabase``."""

    def __init__(self, db: MemoryDatabase, bucket_name: str = "fs") -> None:
        self._db = db
        self.bucket_name = bucket_name

    def open_upload_stream(
        self,
        file_id: Any,
        filename: str,
        *,
        chunk_size: int,
        content_type: str | None = None,
        metadata: Any = None,
        aliases: list[str] | None = None,
    ) -> MemoryUploadStream:
        document: dict[str, Any] = {
            "_id": file_id,
            "filename": filename,
            "chunkSize": chunk_size,
        }
        if content_type is not None:
            document["contentType"] = content_type
        if metadata is not None:
            document["metadata"] = metadata
        if aliases is not None:
            document["aliases"] = aliases
        return MemoryUploadStream(self, document)

    async def find(self, file_id: Any) -> dict[str, Any] | None:
        async with self._db._lock:
            stored = self._files.get(file_id)
            return dict(stored[0]) if stored else None

    async def read(self, file_id: Any) -> bytes:
        async with self._db._lock:
            stored = self._files.get(file_id)
            if stored is None:
                raise NoFile(f"no file in gridfs collection with _id {file_id!r}")
            return stored[1]

    async def delete(self, file_id: Any) -> None:
        async with self._db._lock:
            if self._files.pop(file_id, None) is None:
                raise NoFile(f"no file could be deleted because none matched {file_id!r}")

    async def count(self) -> int:
        async with self._db._lock:
            return len(self._files)

    @property
    def _files(self) -> dict[Any, tuple[dict[str, Any], bytes]]:
        return self._db.buckets.setdefault(self.bucket_name, {})

    async def _put(self, document: dict[str, Any], data: bytes) -> None:
        async with self._db._lock:
            if document["_id"] in self._files:
                raise ValueError(f"duplicate file id {document['_id']!r}")
            self._files[document["_id"]] = (document, data)
