"""Tests for how a storage gets its connection."""

import asyncio
from typing import Any

import pytest

from conftest import URL, FakeClient, FakeOpener
from gridfs_storage import (
    ConnectionResult,
    EventEmitter,
    GridFsStorage,
    MemoryDatabase,
    Pending,
    Wrapped,
)
from gridfs_storage.storage import CLOSED_CONNECTION


class Owner:
    """A client-like object that owns databases."""

    def __init__(self, db: MemoryDatabase) -> None:
        self.db = db

    def __getitem__(self, name: str) -> MemoryDatabase:
        self.requested = name
        return self.db

    def get_default_database(self) -> MemoryDatabase:
        return self.db


class EmittingDatabase(MemoryDatabase, EventEmitter):
    """A database that reports its own errors."""

    def __init__(self) -> None:
        MemoryDatabase.__init__(self)
        EventEmitter.__init__(self)


async def resolve_later(value: Any) -> Any:
    await asyncio.sleep(0.01)
    return value


async def fail_later(error: BaseException) -> Any:
    await asyncio.sleep(0.01)
    raise error


class TestCreate:
    """Tests for constructing a storage."""

    def test_requires_url_or_db(self) -> None:
        with pytest.raises(ValueError, match="At least one of url or db option"):
            GridFsStorage()

    def test_empty_url_is_not_enough(self) -> None:
        with pytest.raises(ValueError):
            GridFsStorage(url="")

    def test_direct_db_outside_event_loop(self, memory_db: MemoryDatabase) -> None:
        storage = GridFsStorage(db=memory_db)
        assert storage.db is memory_db
        assert storage.connected
        assert not storage.connecting

    def test_url_needs_event_loop(self, opener: FakeOpener) -> None:
        with pytest.raises(RuntimeError):
            GridFsStorage(url=URL, opener=opener)

    def test_generate_bytes(self) -> None:
        assert len(GridFsStorage.generate_bytes()["filename"]) == 32


class TestDirectDatabase:
    """Tests for storages given a database object."""

    async def test_connects_immediately(self, memory_db: MemoryDatabase) -> None:
        storage = GridFsStorage(db=memory_db)

        assert storage.db is memory_db
        assert storage.client is None
        assert storage.connected
        assert not storage.connecting
        assert not storage.caching
        assert storage.cache_index is None

    async def test_connection_event_is_deferred(
        self, memory_db: MemoryDatabase
    ) -> None:
        storage = GridFsStorage(db=memory_db)
        events: list[ConnectionResult] = []
        storage.on("connection", events.append)
        assert events == []

        await asyncio.sleep(0)

        assert events == [ConnectionResult(db=memory_db, client=None)]

    async def test_keeps_given_client(self, memory_db: MemoryDatabase) -> None:
        client = FakeClient()
        storage = GridFsStorage(db=memory_db, client=client)
        assert storage.client is client
        assert storage.connected

    async def test_closed_client(self, memory_db: MemoryDatabase) -> None:
        storage = GridFsStorage(db=memory_db, client=FakeClient(connected=False))
        assert not storage.connected
        assert not storage.connecting

    async def test_ready(self, memory_db: MemoryDatabase) -> None:
        storage = GridFsStorage(db=memory_db)
        result = await storage.ready()
        assert result.db is memory_db

    async def test_cache_option_is_ignored(self, memory_db: MemoryDatabase) -> None:
        storage = GridFsStorage(url=URL, db=memory_db, cache=True)
        assert not storage.caching
        assert storage.cache_name is None
        assert GridFsStorage.cache.connections() == 0


class TestPendingDatabase:
    """Tests for storages given an awaitable database."""

    async def test_resolves_coroutine(self, memory_db: MemoryDatabase) -> None:
        storage = GridFsStorage(db=resolve_later(memory_db))
        assert storage.connecting
        assert not storage.connected
        assert storage.db is None

        result = await storage.ready()

        assert result.db is memory_db
        assert storage.db is memory_db
        assert storage.connected
        assert not storage.connecting

    async def test_resolves_future(self, memory_db: MemoryDatabase) -> None:
        future = asyncio.get_running_loop().create_future()
        storage = GridFsStorage(db=future)
        future.set_result(memory_db)

        assert (await storage.ready()).db is memory_db

    async def test_explicit_pending(self, memory_db: MemoryDatabase) -> None:
        storage = GridFsStorage(db=Pending(resolve_later(memory_db)))
        assert (await storage.ready()).db is memory_db

    async def test_awaitable_client(self, memory_db: MemoryDatabase) -> None:
        client = FakeClient()
        storage = GridFsStorage(db=memory_db, client=resolve_later(client))
        assert storage.connecting

        result = await storage.ready()

        assert result.client is client
        assert storage.client is client

    async def test_connection_event(self, memory_db: MemoryDatabase) -> None:
        storage = GridFsStorage(db=resolve_later(memory_db))
        events: list[ConnectionResult] = []
        storage.on("connection", events.append)

        await storage.ready()
        await asyncio.sleep(0)

        assert len(events) == 1
        assert events[0].db is memory_db

    async def test_failure(self) -> None:
        error = ValueError("Database connection failed")
        storage = GridFsStorage(db=fail_later(error))
        failures: list[BaseException] = []
        storage.on("connection_failed", failures.append)

        with pytest.raises(ValueError) as info:
            await storage.ready()

        assert info.value is error
        assert failures == [error]
        assert storage.error is error
        assert storage.db is None
        assert storage.client is None
        assert not storage.connected
        assert not storage.connecting

    async def test_ready_after_failure(self) -> None:
        error = ValueError("Database connection failed")
        storage = GridFsStorage(db=fail_later(error))
        with pytest.raises(ValueError):
            await storage.ready()

        with pytest.raises(ValueError) as info:
            await storage.ready()
        assert info.value is error

    async def test_ready_cleans_up_listeners(self, memory_db: MemoryDatabase) -> None:
        storage = GridFsStorage(db=resolve_later(memory_db))
        await asyncio.gather(storage.ready(), storage.ready())

        assert storage.listener_count("connection") == 0
        assert storage.listener_count("connection_failed") == 0


class TestWrappedDatabase:
    """Tests for storages given an object that owns the database."""

    async def test_named_database(self, memory_db: MemoryDatabase) -> None:
        owner = Owner(memory_db)
        storage = GridFsStorage(db=Wrapped(owner, "uploads"))

        assert storage.db is memory_db
        assert owner.requested == "uploads"
        assert storage.client is owner

    async def test_default_database(self, memory_db: MemoryDatabase) -> None:
        owner = Owner(memory_db)
        storage = GridFsStorage(db=Wrapped(owner))
        assert storage.db is memory_db
        assert storage.client is owner

    async def test_given_client_wins(self, memory_db: MemoryDatabase) -> None:
        client = FakeClient()
        storage = GridFsStorage(db=Wrapped(Owner(memory_db)), client=client)
        assert storage.client is client

    async def test_pending_wrapper(self, memory_db: MemoryDatabase) -> None:
        owner = Owner(memory_db)
        storage = GridFsStorage(db=resolve_later(Wrapped(owner, "uploads")))

        result = await storage.ready()

        assert result.db is memory_db
        assert result.client is owner


class TestUrlConnection:
    """Tests for storages that open their own connection."""

    async def test_opens_connection(self, opener: FakeOpener) -> None:
        options = {"serverSelectionTimeoutMS": 100}
        storage = GridFsStorage(url=URL, options=options, opener=opener)
        assert storage.connecting

        result = await storage.ready()

        assert opener.calls == [(URL, options)]
        assert result.db is opener.results[0].db
        assert storage.db is opener.results[0].db
        assert storage.client is opener.results[0].client
        assert storage.connected
        assert storage.url == URL

    async def test_uncached_storages_connect_separately(
        self, opener: FakeOpener
    ) -> None:
        storage1 = GridFsStorage(url=URL, opener=opener)
        storage2 = GridFsStorage(url=URL, opener=opener)

        await asyncio.gather(storage1.ready(), storage2.ready())

        assert len(opener.calls) == 2
        assert storage1.db is not storage2.db
        assert GridFsStorage.cache.connections() == 0

    async def test_failure(self) -> None:
        error = ConnectionError("connection refused")
        opener = FakeOpener(errors=[error])
        storage = GridFsStorage(url=URL, opener=opener)
        failures: list[BaseException] = []
        storage.on("connection_failed", failures.append)

        with pytest.raises(ConnectionError):
            await storage.ready()

        assert failures == [error]
        assert storage.error is error
        assert not storage.connected


class TestDatabaseErrors:
    """Tests for errors reported after the connection is open."""

    async def test_forwards_connection_events(self) -> None:
        events = EventEmitter()
        client = FakeClient()

        async def opener(url: str, options: Any) -> ConnectionResult:
            return ConnectionResult(db=MemoryDatabase(), client=client, events=events)

        storage = GridFsStorage(url=URL, opener=opener)
        await storage.ready()
        errors: list[BaseException] = []
        storage.on("db_error", errors.append)

        error = RuntimeError("heartbeat failed")
        client.alive = False
        events.emit("error", error)

        assert errors == [error]
        assert not storage.connected

    async def test_close_without_error(self) -> None:
        events = EventEmitter()

        async def opener(url: str, options: Any) -> ConnectionResult:
            return ConnectionResult(db=MemoryDatabase(), events=events)

        storage = GridFsStorage(url=URL, opener=opener)
        await storage.ready()
        errors: list[BaseException] = []
        storage.on("db_error", errors.append)

        events.emit("close", None)

        assert len(errors) == 1
        assert isinstance(errors[0], RuntimeError)

    async def test_forwards_database_events(self) -> None:
        db = EmittingDatabase()
        storage = GridFsStorage(db=db)
        errors: list[BaseException] = []
        storage.on("db_error", errors.append)

        for name in ("error", "parse_error", "timeout", "close"):
            db.emit(name, ValueError(name))

        assert [str(error) for error in errors] == [
            "error",
            "parse_error",
            "timeout",
            "close",
        ]

    async def test_close_marks_storage_disconnected(self) -> None:
        events = EventEmitter()

        async def opener(url: str, options: Any) -> ConnectionResult:
            # Motor clients have no is_connected
            return ConnectionResult(db=MemoryDatabase(), client=object(), events=events)

        storage = GridFsStorage(url=URL, opener=opener)
        await storage.ready()
        assert storage.connected

        events.emit("close", None)
        received: list[Any] = []
        storage._handle_file(None, object(), lambda *args: received.append(args))

        assert not storage.connected
        assert len(received) == 1
        assert str(received[0][0]) == CLOSED_CONNECTION

    async def test_error_keeps_live_client_connected(self) -> None:
        events = EventEmitter()

        async def opener(url: str, options: Any) -> ConnectionResult:
            return ConnectionResult(
                db=MemoryDatabase(), client=FakeClient(), events=events
            )

        storage = GridFsStorage(url=URL, opener=opener)
        await storage.ready()

        events.emit("error", RuntimeError("heartbeat failed"))

        assert storage.connected
