"""Connection cache shared by storage instances."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from gridfs_storage.compare import Comparator, UriComparator, compare, compare_uris
from gridfs_storage.events import EventEmitter
from gridfs_storage.types import CacheEntry, CacheIndex, ConnectionResult

logger = logging.getLogger(__name__)


class ConnectionCache:
    """Registry of connection attempts keyed by cache name, url and options.

    Storages that ask for an equivalent connection get the same slot, so only
    one of them opens the connection and the rest wait for its outcome.
    Every method runs without suspending, so checking a slot and claiming it
    is atomic for code running on the event loop.

    Events:
        resolve(index): the connection for ``index`` is available.
        reject(index, error): the connection for ``index`` failed.
    """

    def __init__(
        self,
        *,
        comparator: Comparator = compare,
        uri_comparator: UriComparator = compare_uris,
    ) -> None:
        self._compare = comparator
        self._compare_uris = uri_comparator
        self.store: dict[str, dict[str, dict[int, CacheEntry]]] = {}
        self._next: dict[tuple[str, str], int] = {}
        self.emitter = EventEmitter()

    def initialize(
        self, *, url: str, cache_name: str, init: Any = None
    ) -> CacheIndex:
        """Return the slot for a connection, creating one if needed."""
        # Falsy values and empty options are all stored as None
        if self._compare(init, None):
            init = None

        urls = self.store.setdefault(cache_name, {})
        if url not in urls:
            equivalent = self._find_uri(cache_name, url)
            if equivalent is None:
                return self._add(cache_name, url, init)
            url = equivalent

        for slot, entry in urls[url].items():
            if self._compare(entry.init, init):
                return CacheIndex(cache_name, url, slot)

        return self._add(cache_name, url, init)

    def has(self, index: CacheIndex) -> bool:
        return self.get(index) is not None

    def get(self, index: CacheIndex) -> CacheEntry | None:
        return self.store.get(index.cache_name, {}).get(index.url, {}).get(index.slot)

    def set(self, index: CacheIndex, value: CacheEntry) -> None:
        urls = self.store.setdefault(index.cache_name, {})
        urls.setdefault(index.url, {})[index.slot] = value
        key = (index.cache_name, index.url)
        self._next[key] = max(self._next.get(key, 0), index.slot + 1)

    def is_pending(self, index: CacheIndex) -> bool:
        """Return True if the connection for this slot is not settled yet."""
        entry = self.get(index)
        return entry is not None and entry.pending

    def is_opening(self, index: CacheIndex) -> bool:
        """Return True if some instance is already opening this connection."""
        entry = self.get(index)
        return entry is not None and entry.opening

    def resolve(
        self, index: CacheIndex, db: Any, client: Any = None, events: Any = None
    ) -> None:
        """Store the connection and wake up everyone waiting for it."""
        entry = self.get(index)
        if entry is None:
            raise KeyError(index)
        entry.db = db
        entry.client = client
        entry.events = events
        entry.pending = False
        entry.opening = False
        logger.debug("Resolved cached connection %s", index)
        self.emitter.emit("resolve", index)

    def reject(self, index: CacheIndex, error: BaseException) -> None:
        """Fail everyone waiting for this connection and drop the slot."""
        entry = self.get(index)
        if entry is not None:
            entry.pending = False
        logger.debug("Rejected cached connection %s: %r", index, error)
        self.emitter.emit("reject", index, error)
        self.remove(index)

    async def wait_for(self, index: CacheIndex) -> ConnectionResult:
        """Wait until the connection for a slot is resolved or rejected."""
        return await self.subscribe(index)

    def subscribe(self, index: CacheIndex) -> asyncio.Future[ConnectionResult]:
        """Return a future settled by the outcome of a slot.

        Listeners are attached before returning, so a rejection broadcast
        right after this call still reaches the future.
        """
        entry = self.get(index)
        if entry is None:
            raise RuntimeError("The cache entry was deleted")

        future: asyncio.Future[ConnectionResult] = (
            asyncio.get_running_loop().create_future()
        )
        if not entry.pending and not entry.opening:
            future.set_result(
                ConnectionResult(db=entry.db, client=entry.client, events=entry.events)
            )
            return future

        def on_resolve(resolved: CacheIndex) -> None:
            if resolved != index:
                return
            unsubscribe()
            if not future.done():
                cached = self.get(index)
                future.set_result(
                    ConnectionResult(
                        db=cached.db, client=cached.client, events=cached.events
                    )
                )

        def on_reject(rejected: CacheIndex, error: BaseException) -> None:
            if rejected != index:
                return
            unsubscribe()
            if not future.done():
                future.set_exception(error)

        def unsubscribe(_: Any = None) -> None:
            self.emitter.off("resolve", on_resolve)
            self.emitter.off("reject", on_reject)

        self.emitter.on("resolve", on_resolve)
        self.emitter.on("reject", on_reject)
        # Also covers cancellation of the waiter
        future.add_done_callback(unsubscribe)
        return future

    def connections(self) -> int:
        """Number of connections held by all caches."""
        return sum(
            len(slots) for urls in self.store.values() for slots in urls.values()
        )

    def remove(self, index: CacheIndex) -> None:
        """Remove a slot, rejecting its waiters if it was still pending."""
        if not self.has(index):
            return
        if self.is_pending(index):
            self.emitter.emit(
                "reject", index, RuntimeError("The cache entry was deleted")
            )
        del self.store[index.cache_name][index.url][index.slot]
        logger.debug("Removed cached connection %s", index)

    def clear(self) -> None:
        """Remove every slot and every listener."""
        self.store = {}
        self._next = {}
        self.emitter.remove_all_listeners()

    def _add(self, cache_name: str, url: str, init: Any) -> CacheIndex:
        key = (cache_name, url)
        slot = self._next.get(key, 0)
        self._next[key] = slot + 1
        self.store[cache_name].setdefault(url, {})[slot] = CacheEntry(init=init)
        logger.debug("Created cached connection slot %s for %s", slot, cache_name)
        return CacheIndex(cache_name, url, slot)

    def _find_uri(self, cache_name: str, url: str) -> str | None:
        # Urls listing the same hosts and options in another order are equal
        for stored in self.store[cache_name]:
            if self._compare_uris(stored, url):
                return stored
        return None
