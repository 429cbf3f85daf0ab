"""Motor GridFS bucket."""

from __future__ import annotations

from typing import Any

from motor.motor_asyncio import (
    AsyncIOMotorDatabase,
    AsyncIOMotorGridFSBucket,
    AsyncIOMotorGridIn,
)


class MotorUploadStream:
    """A file being written through Motor."""

    def __init__(
        self, db: AsyncIOMotorDatabase, bucket_name: str, file_id: Any, grid_in: Any
    ) -> None:
        self._files = db[f"{bucket_name}.files"]
        self.file_id = file_id
        self._grid_in = grid_in

    async def write(self, data: bytes) -> None:
        await self._grid_in.write(data)

    async def finish(self, extra: dict[str, Any] | None = None) -> dict[str, Any]:
        await self._grid_in.close()
        if extra:
            await self._files.update_one({"_id": self.file_id}, {"$set": extra})
        document = await self._files.find_one({"_id": self.file_id})
        if document is None:
            raise RuntimeError(f"file {self.file_id!r} was not stored")
        return document

    async def abort(self) -> None:
        await self._grid_in.abort()


class MotorBucket:
    """Async GridFS bucket on a Motor database."""

    def __init__(self, db: AsyncIOMotorDatabase, bucket_name: str = "fs") -> None:
        self._db = db
        self.bucket_name = bucket_name
        self._bucket = AsyncIOMotorGridFSBucket(db, bucket_name=bucket_name)

    def open_upload_stream(
        self,
        file_id: Any,
        filename: str,
        *,
        chunk_size: int,
        content_type: str | None = None,
        metadata: Any = None,
        aliases: list[str] | None = None,
    ) -> MotorUploadStream:
        # GridIn takes the legacy fields the bucket API no longer exposes
        fields: dict[str, Any] = {
            "_id": file_id,
            "filename": filename,
            "chunkSize": chunk_size,
        }
        if content_type is not None:
            fields["contentType"] = content_type
        if metadata is not None:
            fields["metadata"] = metadata
        if aliases is not None:
            fields["aliases"] = aliases
        grid_in = AsyncIOMotorGridIn(self._db[self.bucket_name], **fields)
        return MotorUploadStream(self._db, self.bucket_name, file_id, grid_in)

    async def find(self, file_id: Any) -> dict[str, Any] | None:
        return await self._db[f"{self.bucket_name}.files"].find_one({"_id": file_id})

    async def read(self, file_id: Any) -> bytes:
        grid_out = await self._bucket.open_download_stream(file_id)
        return await grid_out.read()

    async def delete(self, file_id: Any) -> None:
        await self._bucket.delete(file_id)

    async def count(self) -> int:
        return await self._db[f"{self.bucket_name}.files"].count_documents({})
