"""GridFS bucket adapters for gridfs_storage."""

from typing import Any

from gridfs_storage.adapters.base import AsyncBucket, AsyncUploadStream
from gridfs_storage.adapters.memory import MemoryBucket, MemoryDatabase


def create_bucket(db: Any, bucket_name: str = "fs") -> AsyncBucket:
    """Return the bucket adapter matching a database object."""
    if isinstance(db, MemoryDatabase):
        return db.bucket(bucket_name)

    from gridfs_storage.adapters.motor import MotorBucket

    return MotorBucket(db, bucket_name)


__all__ = [
    "AsyncBucket",
    "AsyncUploadStream",
    "MemoryBucket",
    "MemoryDatabase",
    "create_bucket",
]
