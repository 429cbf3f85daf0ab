"""Driving a storage engine the way upload middleware does."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from gridfs_storage.types import GridFile, UploadedFile

logger = logging.getLogger(__name__)


class UploadError(RuntimeError):
    """An upload request failed and its stored files were removed.

    The error that failed the request is chained as ``__cause__``. Files that
    could not be removed are reported in ``storage_errors``.
    """

    def __init__(self, message: str, storage_errors: list[BaseException]) -> None:
        super().__init__(message)
        self.storage_errors = storage_errors


async def store_files(
    storage: Any, request: Any, files: Iterable[UploadedFile]
) -> list[GridFile]:
    """Store every file of a request or none of them.

    Files are handled in order through the storage engine interface. When one
    fails, the files already stored are removed before raising UploadError.
    """
    stored: list[GridFile] = []
    for file in files:
        try:
            stored.append(await _call(storage._handle_file, request, file))
        except Exception as error:
            storage_errors = await _rollback(storage, request, stored)
            raise UploadError(str(error), storage_errors) from error
    return stored


async def _rollback(
    storage: Any, request: Any, stored: list[GridFile]
) -> list[BaseException]:
    errors: list[BaseException] = []
    for file in stored:
        try:
            await _call(storage._remove_file, request, file)
        except Exception as error:
            logger.warning("Could not remove file %s: %s", file.id, error)
            errors.append(error)
    return errors


async def _call(method: Any, request: Any, file: Any) -> Any:
    """Await a storage method that reports through an error-first callback."""
    future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

    def callback(error: BaseException | None = None, result: Any = None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    method(request, file, callback)
    return await future
