"""gridfs_storage - GridFS storage engine for upload pipelines."""

# Bucket adapters
from gridfs_storage.adapters import (
    AsyncBucket,
    MemoryBucket,
    MemoryDatabase,
    create_bucket,
)

# Connection cache
from gridfs_storage.cache import ConnectionCache
from gridfs_storage.compare import compare, compare_uris
from gridfs_storage.connection import open_connection
from gridfs_storage.events import EventEmitter
from gridfs_storage.pipeline import UploadError, store_files
from gridfs_storage.storage import GridFsStorage

# Core types
from gridfs_storage.types import (
    CacheEntry,
    CacheIndex,
    ConnectionResult,
    Direct,
    GridFile,
    Pending,
    UploadedFile,
    Wrapped,
)

__version__ = "0.1.0"

__all__ = [
    "AsyncBucket",
    "CacheEntry",
    "CacheIndex",
    "ConnectionCache",
    "ConnectionResult",
    "Direct",
    "EventEmitter",
    "GridFile",
    "GridFsStorage",
    "MemoryBucket",
    "MemoryDatabase",
    "Pending",
    "UploadError",
    "UploadedFile",
    "Wrapped",
    "compare",
    "compare_uris",
    "create_bucket",
    "open_connection",
    "store_files",
]
