"""GridFS storage engine."""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, ClassVar

from gridfs_storage.adapters import AsyncBucket, create_bucket
from gridfs_storage.cache import ConnectionCache
from gridfs_storage.connection import open_connection
from gridfs_storage.events import EventEmitter
from gridfs_storage.naming import FileSettings, generate_bytes, merge_props, normalize
from gridfs_storage.types import (
    CacheIndex,
    ConnectionResult,
    Direct,
    GridFile,
    Pending,
    UploadedFile,
    Wrapped,
    to_source,
)

logger = logging.getLogger(__name__)

Callback = Callable[..., None]
Opener = Callable[[str, Any], Awaitable[ConnectionResult]]

# Signals a backend connection may emit when it breaks
DB_ERROR_EVENTS = ("error", "parse_error", "timeout", "close")

CLOSED_CONNECTION = "The database connection must be open to store files"


class GridFsStorage(EventEmitter):
    """Storage engine that writes uploaded files to MongoDB GridFS.

    The engine connects on construction, either with ``url`` or through a
    given ``db``. Files received while connecting are held until the
    connection is ready. Storages created with ``cache`` share one connection
    per cache name, url and options.

    Must be created inside a running event loop unless ``db`` is given as a
    database object.

    Events:
        connection(result): the connection is ready, with a ConnectionResult.
        connection_failed(error): the connection could not be opened.
        file(grid_file): a file was stored.
        stream_error(error, settings): writing a file to GridFS failed.
        db_error(error): the connection reported an error after opening.
    """

    cache: ClassVar[ConnectionCache] = ConnectionCache()

    def __init__(
        self,
        *,
        url: str | None = None,
        options: dict[str, Any] | None = None,
        cache: bool | str = False,
        db: Any = None,
        client: Any = None,
        file: Callable[..., Any] | None = None,
        connection_cache: ConnectionCache | None = None,
        opener: Opener | None = None,
        bucket_factory: Callable[[Any, str], AsyncBucket] | None = None,
    ) -> None:
        if not url and db is None:
            raise ValueError(
                "Error creating storage engine. "
                "At least one of url or db option must be provided."
            )
        super().__init__()

        self.db: Any = None
        self.client: Any = None
        self.connected = False
        self.connecting = True
        self.caching = False
        self.error: BaseException | None = None
        self.url = url
        self.cache_name: str | None = None
        self.cache_index: CacheIndex | None = None

        self._options = options
        self._source = to_source(db) if db is not None else None
        self._client = client
        self._file = FileSettings(file)
        self._cache = connection_cache if connection_cache is not None else self.cache
        self._opener = opener or open_connection
        self._bucket_factory = bucket_factory or create_bucket
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

        if url and self._source is None:
            self.caching = bool(cache)

        if self.caching:
            self.cache_name = cache if isinstance(cache, str) else "default"
            self.cache_index = self._cache.initialize(
                url=url, cache_name=self.cache_name, init=options
            )

        self._connect()

    @staticmethod
    def generate_bytes() -> dict[str, str]:
        """Generate a random 16 bytes filename in hexadecimal format."""
        return generate_bytes()

    # -------------------------------------------------------------------------
    # Upload pipeline interface
    # -------------------------------------------------------------------------

    def _handle_file(self, request: Any, file: UploadedFile, callback: Callback) -> None:
        """Store an incoming file and report the result to ``callback``."""
        if self.connecting:
            self._schedule(self.from_file(request, file), callback)
            return

        self._update_connection_status()
        if self.connected:
            self._schedule(self.from_file(request, file), callback)
            return

        callback(RuntimeError(CLOSED_CONNECTION))

    def _remove_file(self, request: Any, file: GridFile, callback: Callback) -> None:
        """Delete a stored file when the request that uploaded it failed."""
        self._schedule(self.remove_file(file), callback)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def ready(self) -> ConnectionResult:
        """Wait for the connection to open or fail."""
        if self.error is not None:
            raise self.error

        if self.connected or not self.connecting:
            return ConnectionResult(db=self.db, client=self.client)

        future: asyncio.Future[ConnectionResult] = (
            asyncio.get_running_loop().create_future()
        )

        def done(result: ConnectionResult) -> None:
            self.off("connection_failed", fail)
            if not future.done():
                future.set_result(result)

        def fail(error: BaseException) -> None:
            self.off("connection", done)
            if not future.done():
                future.set_exception(error)

        self.once("connection", done)
        self.once("connection_failed", fail)
        return await future

    async def from_file(self, request: Any, file: UploadedFile) -> GridFile:
        """Store a file received from the upload pipeline."""
        return await self.from_stream(file.stream, request, file)

    async def from_stream(
        self,
        stream: Any,
        request: Any = None,
        file: UploadedFile | None = None,
    ) -> GridFile:
        """Store any stream of bytes.

        ``request`` and ``file`` are only used to generate the file settings.
        """
        if self.connecting:
            await self.ready()
        if self.db is None:
            raise RuntimeError(CLOSED_CONNECTION)

        # Settings errors only fail this file, the connection stays usable
        value = await self._file(request, file)
        settings = merge_props(
            {"content_type": file.mimetype if file else None}, normalize(value)
        )
        return await self._store(stream, settings)

    async def remove_file(self, file: GridFile) -> None:
        """Delete a stored file and its chunks."""
        if self.db is None:
            raise RuntimeError(CLOSED_CONNECTION)
        bucket = self._bucket_factory(self.db, file.bucket_name)
        await bucket.delete(file.id)
        logger.debug("Removed file %s from bucket %s", file.id, file.bucket_name)

    # -------------------------------------------------------------------------
    # Connection handling
    # -------------------------------------------------------------------------

    def _connect(self) -> None:
        """Adopt a given connection or start resolving one."""
        if isinstance(self._source, (Direct, Wrapped)) and not inspect.isawaitable(
            self._client
        ):
            self._set_connection(self._source, self._client)
            return

        loop = asyncio.get_running_loop()
        waiter = self._claim_or_wait() if self.caching else None
        task = loop.create_task(self._run_connect(waiter))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _claim_or_wait(self) -> asyncio.Future[ConnectionResult] | None:
        """Claim the cache slot, or subscribe to it if someone else has.

        Runs inside the constructor, before the connect task exists.
        Returns None when this storage opens the connection.
        """
        cache = self._cache
        index = self.cache_index
        if not cache.is_opening(index) and cache.is_pending(index):
            cache.get(index).opening = True
            return None
        return cache.subscribe(index)

    async def _run_connect(
        self, waiter: asyncio.Future[ConnectionResult] | None = None
    ) -> None:
        try:
            result = await self._resolve_connection(waiter)
        except Exception as error:
            self._fail(error)
            return
        self._set_connection(result.db, result.client, result.events)

    async def _resolve_connection(
        self, waiter: asyncio.Future[ConnectionResult] | None = None
    ) -> ConnectionResult:
        """Get the connection from the configuration, the cache or a new client."""
        if self._source is not None:
            db, client = await asyncio.gather(
                _resolve_source(self._source), _maybe_await(self._client)
            )
            return ConnectionResult(db=db, client=client)

        if waiter is not None:
            return await waiter
        return await self._create_connection()

    async def _create_connection(self) -> ConnectionResult:
        """Open a new connection, sharing the outcome with the cache."""
        try:
            result = await self._open_connection(self.url, self._options)
        except Exception as error:
            if self.cache_index is not None:
                self._cache.reject(self.cache_index, error)
            raise

        # A slot removed while connecting keeps its connection private
        if self.caching and self._cache.has(self.cache_index):
            self._cache.resolve(
                self.cache_index, result.db, result.client, result.events
            )
        return result

    async def _open_connection(
        self, url: str, options: dict[str, Any] | None
    ) -> ConnectionResult:
        return await self._opener(url, options)

    def _set_connection(self, db: Any, client: Any = None, events: Any = None) -> None:
        """Store the connection and emit ``connection`` on the next loop tick."""
        self.connecting = False
        if isinstance(db, Wrapped):
            client = client if client is not None else db.owner
        self.db = _unwrap(db)
        if client is not None:
            self.client = client

        source = self._event_source(events)
        if source is not None:
            source.on("close", self._on_close)
            for name in DB_ERROR_EVENTS:
                source.on(name, self._on_db_error)

        self._update_connection_status()
        logger.debug("Storage connected to database %s", getattr(self.db, "name", None))

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Created outside of a loop, nobody can be waiting yet
            return
        loop.call_soon(
            self.emit, "connection", ConnectionResult(db=self.db, client=self.client)
        )

    def _fail(self, error: BaseException) -> None:
        """Drop the connection and emit ``connection_failed``."""
        self.connecting = False
        self.db = None
        self.client = None
        self.error = error
        self._update_connection_status()
        logger.warning("Storage could not connect: %s", error)
        self.emit("connection_failed", error)

    def _update_connection_status(self) -> None:
        if self.db is None:
            self.connected = False
            self.connecting = False
            return

        # Set by a close signal, Motor clients have no is_connected
        if self._closed:
            self.connected = False
            return

        if self.client is not None:
            self.connected = _is_alive(self.client)
            return

        self.connected = _is_alive(self.db)

    def _event_source(self, events: Any) -> EventEmitter | None:
        # Drivers report health on different objects
        for candidate in (events, self.db, self.client):
            if isinstance(candidate, EventEmitter):
                return candidate
        return None

    def _on_close(self, *_: Any) -> None:
        self._closed = True

    def _on_db_error(self, error: BaseException | None = None) -> None:
        self._update_connection_status()
        if error is None:
            error = RuntimeError("Unknown database error")
        logger.warning("Database error: %s", error)
        self.emit("db_error", error)

    # -------------------------------------------------------------------------
    # Writing files
    # -------------------------------------------------------------------------

    async def _store(self, stream: Any, settings: dict[str, Any]) -> GridFile:
        bucket = self._bucket_factory(self.db, settings["bucket_name"])
        upload = bucket.open_upload_stream(
            settings["id"],
            settings["filename"],
            chunk_size=settings["chunk_size"],
            content_type=settings.get("content_type"),
            metadata=settings["metadata"],
            aliases=settings["aliases"],
        )
        digest = hashlib.md5()

        reading = True
        try:
            async for chunk in _iter_chunks(stream, settings["chunk_size"]):
                reading = False
                digest.update(chunk)
                await upload.write(chunk)
                reading = True
            reading = False
            extra = {} if settings.get("disable_md5") else {"md5": digest.hexdigest()}
            document = await upload.finish(extra)
        except Exception as error:
            await _abort(upload)
            if not reading:
                logger.warning("Could not store file %s: %s", settings["filename"], error)
                self.emit("stream_error", error, settings)
            raise

        stored = GridFile(
            id=document["_id"],
            filename=document["filename"],
            metadata=document.get("metadata"),
            bucket_name=settings["bucket_name"],
            chunk_size=document["chunkSize"],
            size=document["length"],
            md5=document.get("md5"),
            upload_date=document.get("uploadDate"),
            content_type=document.get("contentType"),
        )
        self.emit("file", stored)
        return stored

    def _schedule(self, coro: Awaitable[Any], callback: Callback) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        task.add_done_callback(lambda done: _deliver(done, callback))


def _deliver(task: asyncio.Task[Any], callback: Callback) -> None:
    if task.cancelled():
        callback(asyncio.CancelledError())
        return
    error = task.exception()
    if error is not None:
        callback(error)
        return
    result = task.result()
    if result is None:
        callback(None)
    else:
        callback(None, result)


async def _resolve_source(source: Direct | Pending | Wrapped) -> Any:
    if isinstance(source, Pending):
        return await source.awaitable
    return source


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _unwrap(db: Any) -> Any:
    if isinstance(db, Wrapped):
        return db.unwrap()
    if isinstance(db, Direct):
        return db.db
    return db


def _is_alive(target: Any) -> bool:
    # Looked up on the type, Motor objects answer any attribute name
    check = getattr(type(target), "is_connected", None)
    if check is None:
        return True
    if isinstance(check, property):
        return bool(check.fget(target))
    return bool(check(target))


async def _abort(upload: Any) -> None:
    try:
        await upload.abort()
    except Exception:
        logger.exception("Could not abort upload of %s", upload.file_id)


async def _iter_chunks(stream: Any, size: int) -> AsyncIterator[bytes]:
    """Read a stream of bytes in chunks, whatever its interface."""
    if isinstance(stream, (bytes, bytearray, memoryview)):
        if stream:
            yield bytes(stream)
        return

    read = getattr(stream, "read", None)
    if callable(read):
        while True:
            chunk = read(size)
            if inspect.isawaitable(chunk):
                chunk = await chunk
            if not chunk:
                return
            yield bytes(chunk)

    if hasattr(stream, "__aiter__"):
        async for chunk in stream:
            if chunk:
                yield bytes(chunk)
        return

    if hasattr(stream, "__iter__") and not isinstance(stream, str):
        for chunk in stream:
            if chunk:
                yield bytes(chunk)
        return

    raise TypeError(f"Cannot read file data from {type(stream).__name__}")
