"""Base protocols for GridFS buckets."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class AsyncUploadStream(Protocol):
    """A file being written to a bucket."""

    file_id: Any

    async def write(self, data: bytes) -> None:
        """Append data to the file."""
        ...

    async def finish(self, extra: dict[str, Any] | None = None) -> dict[str, Any]:
        """Close the file, store extra fields and return its file document."""
        ...

    async def abort(self) -> None:
        """Discard everything written so far."""
        ...


@runtime_checkable
class AsyncBucket(Protocol):
    """Async GridFS bucket interface."""

    bucket_name: str

    def open_upload_stream(
        self,
        file_id: Any,
        filename: str,
        *,
        chunk_size: int,
        content_type: str | None = None,
        metadata: Any = None,
        aliases: list[str] | None = None,
    ) -> AsyncUploadStream:
        """Start writing a new file."""
        ...

    async def find(self, file_id: Any) -> dict[str, Any] | None:
        """Get the file document of a stored file."""
        ...

    async def read(self, file_id: Any) -> bytes:
        """Read the whole content of a stored file."""
        ...

    async def delete(self, file_id: Any) -> None:
        """Delete a file and its chunks."""
        ...

    async def count(self) -> int:
        """Number of files in the bucket."""
        ...
