"""Tests for storing every file of an upload request."""

from typing import Any

import pytest

from conftest import URL, FakeClient, FakeOpener, make_file
from gridfs_storage import (
    GridFsStorage,
    MemoryBucket,
    MemoryDatabase,
    UploadError,
    store_files,
)


class UndeletableBucket(MemoryBucket):
    async def delete(self, file_id: Any) -> None:
        raise OSError("delete failed")


class TestStoreFiles:
    async def test_stores_every_file(self, memory_db: MemoryDatabase) -> None:
        storage = GridFsStorage(db=memory_db)

        stored = await store_files(
            storage, None, [make_file(b"one"), make_file(b"two"), make_file(b"three")]
        )

        assert [file.size for file in stored] == [3, 3, 5]
        bucket = memory_db.bucket("fs")
        assert await bucket.count() == 3
        assert await bucket.read(stored[2].id) == b"three"

    async def test_no_files(self, memory_db: MemoryDatabase) -> None:
        assert await store_files(GridFsStorage(db=memory_db), None, []) == []

    async def test_waits_for_connection(self, opener: FakeOpener) -> None:
        storage = GridFsStorage(url=URL, opener=opener)

        stored = await store_files(storage, None, [make_file()])

        assert len(stored) == 1
        assert await opener.results[0].db.bucket("fs").count() == 1

    async def test_incomplete_generator_removes_stored_files(
        self, memory_db: MemoryDatabase
    ) -> None:
        def file_settings(request: Any, file: Any):
            yield {"filename": "first.txt"}

        storage = GridFsStorage(db=memory_db, file=file_settings)

        with pytest.raises(UploadError, match="Generator ended unexpectedly") as info:
            await store_files(storage, None, [make_file(), make_file()])

        assert info.value.storage_errors == []
        assert isinstance(info.value.__cause__, RuntimeError)
        assert await memory_db.bucket("fs").count() == 0

    async def test_reports_removal_errors(self, memory_db: MemoryDatabase) -> None:
        calls = 0

        def file_settings(request: Any, file: Any) -> str:
            nonlocal calls
            calls += 1
            if calls == 3:
                raise ValueError("bad file")
            return f"file{calls}.txt"

        storage = GridFsStorage(
            db=memory_db,
            file=file_settings,
            bucket_factory=lambda db, name: UndeletableBucket(db, name),
        )

        with pytest.raises(UploadError, match="bad file") as info:
            await store_files(storage, None, [make_file(), make_file(), make_file()])

        assert [str(error) for error in info.value.storage_errors] == [
            "delete failed",
            "delete failed",
        ]
        assert isinstance(info.value.__cause__, ValueError)
        assert await memory_db.bucket("fs").count() == 2

    async def test_closed_connection(self, memory_db: MemoryDatabase) -> None:
        storage = GridFsStorage(db=memory_db, client=FakeClient(connected=False))

        with pytest.raises(UploadError, match="must be open") as info:
            await store_files(storage, None, [make_file()])

        assert info.value.storage_errors == []
