"""Core types for gridfs_storage."""

import inspect
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class CacheIndex:
    """Address of one cached connection slot."""

    cache_name: str
    url: str
    slot: int


@dataclass(slots=True)
class CacheEntry:
    """One physical connection attempt and its result."""

    db: Any = None
    client: Any = None
    pending: bool = True  # Not resolved or rejected yet
    opening: bool = False  # Some instance claimed the connect call
    init: Any = None  # Connection options used for matching
    events: Any = None


@dataclass(frozen=True, slots=True)
class ConnectionResult:
    """A resolved database and the client that owns its connection."""

    db: Any
    client: Any = None
    events: Any = None  # EventEmitter with backend health signals


@dataclass(frozen=True, slots=True)
class GridFile:
    """A file stored in GridFS."""

    id: Any
    filename: str
    metadata: Any
    bucket_name: str
    chunk_size: int
    size: int
    md5: str | None
    upload_date: datetime | None
    content_type: str | None


@dataclass(slots=True)
class UploadedFile:
    """A file as received from the upload pipeline."""

    stream: Any
    fieldname: str | None = None
    originalname: str | None = None
    encoding: str | None = None
    mimetype: str | None = None


@dataclass(frozen=True, slots=True)
class Step:
    """One step of a settings producer."""

    done: bool
    value: Any = None


@dataclass(frozen=True, slots=True)
class Direct:
    """A database object used as is."""

    db: Any


@dataclass(frozen=True, slots=True)
class Pending:
    """An awaitable that resolves to a database object."""

    awaitable: Awaitable[Any]


@dataclass(frozen=True, slots=True)
class Wrapped:
    """An object that owns a database, like a client or an ODM connection.

    The database is ``owner[database]`` when a name is given, otherwise the
    owner's default database.
    """

    owner: Any
    database: str | None = None

    def unwrap(self) -> Any:
        if self.database is not None:
            return self.owner[self.database]
        return self.owner.get_default_database()


ConnectionSource = Direct | Pending | Wrapped


def to_source(value: Any) -> ConnectionSource:
    """Classify a configured ``db`` value."""
    if isinstance(value, (Direct, Pending, Wrapped)):
        return value
    if inspect.isawaitable(value):
        return Pending(value)
    return Direct(value)
