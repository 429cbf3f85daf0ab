"""Shared pytest fixtures."""

import asyncio
import io
from typing import Any

import pytest

from gridfs_storage import (
    ConnectionCache,
    ConnectionResult,
    GridFsStorage,
    MemoryDatabase,
    UploadedFile,
)

URL = "mongodb://127.0.0.1:27017/gridfstest"


class FakeOpener:
    """Stands in for open_connection, recording every call."""

    def __init__(
        self,
        errors: list[BaseException] | None = None,
        delay: float = 0.01,
    ) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.results: list[ConnectionResult] = []
        self._errors = list(errors or [])
        self._delay = delay

    async def __call__(self, url: str, options: Any) -> ConnectionResult:
        self.calls.append((url, options))
        await asyncio.sleep(self._delay)
        if self._errors:
            raise self._errors.pop(0)
        result = ConnectionResult(db=MemoryDatabase(), client=FakeClient())
        self.results.append(result)
        return result


class FakeClient:
    """A client that reports whether it is connected."""

    def __init__(self, connected: bool = True) -> None:
        self.alive = connected

    def is_connected(self) -> bool:
        return self.alive


def make_file(
    data: bytes = b"hello world", *, mimetype: str = "text/plain"
) -> UploadedFile:
    return UploadedFile(
        stream=io.BytesIO(data),
        fieldname="photos",
        originalname="hello.txt",
        encoding="7bit",
        mimetype=mimetype,
    )


@pytest.fixture(autouse=True)
def default_cache(monkeypatch: pytest.MonkeyPatch) -> ConnectionCache:
    """Give every test a fresh process-wide cache."""
    cache = ConnectionCache()
    monkeypatch.setattr(GridFsStorage, "cache", cache)
    return cache


@pytest.fixture
def cache() -> ConnectionCache:
    """Create a fresh ConnectionCache for each test."""
    return ConnectionCache()


@pytest.fixture
def opener() -> FakeOpener:
    return FakeOpener()


@pytest.fixture
def memory_db() -> MemoryDatabase:
    return MemoryDatabase()
