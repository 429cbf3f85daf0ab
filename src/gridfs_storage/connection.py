"""Opening MongoDB connections with Motor."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import monitoring
from pymongo.errors import NetworkTimeout, PyMongoError

from gridfs_storage.events import EventEmitter
from gridfs_storage.types import ConnectionResult

logger = logging.getLogger(__name__)

# Database used when the url does not name one
DEFAULT_DATABASE = "test"


class HealthMonitor(
    EventEmitter,
    monitoring.ServerHeartbeatListener,
    monitoring.TopologyListener,
):
    """Forwards driver health signals to the event loop as events.

    PyMongo calls listeners from its monitor threads, so every event is handed
    over to the loop before it is emitted.

    Events:
        error(exception): a server heartbeat failed.
        timeout(exception): a server heartbeat timed out.
        close(None): the client topology was closed.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        EventEmitter.__init__(self)
        self._loop = loop

    def _emit_threadsafe(self, event: str, *args: Any) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self.emit, event, *args)

    def started(self, event: monitoring.ServerHeartbeatStartedEvent) -> None:
        pass

    def succeeded(self, event: monitoring.ServerHeartbeatSucceededEvent) -> None:
        pass

    def failed(self, event: monitoring.ServerHeartbeatFailedEvent) -> None:
        name = "timeout" if isinstance(event.reply, NetworkTimeout) else "error"
        self._emit_threadsafe(name, event.reply)

    def opened(self, event: monitoring.TopologyOpenedEvent) -> None:
        pass

    def description_changed(
        self, event: monitoring.TopologyDescriptionChangedEvent
    ) -> None:
        pass

    def closed(self, event: monitoring.TopologyClosedEvent) -> None:
        self._emit_threadsafe("close", None)


async def open_connection(
    url: str, options: dict[str, Any] | None = None
) -> ConnectionResult:
    """Connect to MongoDB and return the url's database and its client.

    The connection is checked with a ``ping`` since Motor connects lazily.
    """
    monitor = HealthMonitor(asyncio.get_running_loop())
    settings = dict(options or {})
    listeners = [*settings.pop("event_listeners", ()), monitor]

    client: AsyncIOMotorClient = AsyncIOMotorClient(
        url, event_listeners=listeners, **settings
    )
    try:
        await client.admin.command("ping")
    except PyMongoError:
        client.close()
        raise

    db = client.get_default_database(DEFAULT_DATABASE)
    logger.info("Connected to MongoDB database %s", db.name)
    return ConnectionResult(db=db, client=client, events=monitor)
