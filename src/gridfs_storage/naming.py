"""Per-file settings generation.

A storage can be given a ``file`` callable that decides how each uploaded file
is stored. It can be a plain function, a coroutine function, or a generator
function that yields the settings of one file at a time::

    def file(request, file):
        while True:
            request, file = yield {"filename": file.originalname}
"""

from __future__ import annotations

import asyncio
import inspect
import secrets
from collections.abc import Callable, Mapping
from typing import Any

from bson import ObjectId

from gridfs_storage.types import Step

DEFAULTS: dict[str, Any] = {
    "metadata": None,
    "chunk_size": 261_120,
    "bucket_name": "fs",
    "aliases": None,
}


def generate_bytes() -> dict[str, str]:
    """Generate a random filename of 16 bytes in hexadecimal format."""
    return {"filename": secrets.token_hex(16)}


def merge_props(extra: dict[str, Any], settings: Mapping[str, Any]) -> dict[str, Any]:
    """Merge user settings over generated values and defaults."""
    previous: dict[str, Any] = {} if settings.get("filename") else generate_bytes()
    # The id is generated here so failed uploads can still be reported by id
    if not settings.get("id"):
        previous["id"] = ObjectId()
    return {**previous, **DEFAULTS, **extra, **settings}


def normalize(value: Any) -> dict[str, Any]:
    """Turn the value produced for a file into a settings mapping."""
    if isinstance(value, bool) or not (
        value is None or isinstance(value, (str, int, float, Mapping))
    ):
        raise TypeError(f"Invalid type for file settings, got {_type_name(value)}")
    if value is None:
        return {}
    if isinstance(value, (str, int, float)):
        return {"filename": str(value)}
    return dict(value)


def _type_name(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if callable(value):
        return "function"
    return type(value).__name__


class GeneratorProducer:
    """Drives a settings generator one file at a time.

    The generator is created with the first ``(request, file)`` pair and
    receives every later pair as the value of its ``yield``.
    """

    def __init__(self, source: Callable[..., Any] | Any) -> None:
        if inspect.isgeneratorfunction(source) or inspect.isasyncgenfunction(source):
            self._factory: Callable[..., Any] | None = source
            self._generator: Any = None
        else:
            self._factory = None
            self._generator = source
        self._started = False
        self._lock = asyncio.Lock()

    async def next(self, previous: tuple[Any, Any]) -> Step:
        async with self._lock:
            if self._generator is None:
                self._generator = self._factory(*previous)
            sent = previous if self._started else None
            self._started = True
            try:
                if inspect.isasyncgen(self._generator):
                    value = await self._generator.asend(sent)
                else:
                    value = self._generator.send(sent)
            except (StopIteration, StopAsyncIteration):
                return Step(done=True)
        if inspect.isawaitable(value):
            value = await value
        return Step(done=False, value=value)


class FileSettings:
    """Produces the raw settings value of each file from a ``file`` option."""

    def __init__(self, source: Callable[..., Any] | Any | None = None) -> None:
        self._source = source
        self._producer: GeneratorProducer | None = None
        if source is not None and _is_generator(source):
            self._producer = GeneratorProducer(source)

    async def __call__(self, request: Any, file: Any) -> Any:
        if self._source is None:
            return {}

        if self._producer is not None:
            step = await self._producer.next((request, file))
            if step.done:
                raise RuntimeError("Generator ended unexpectedly")
            return step.value

        result = self._source(request, file)
        if inspect.isawaitable(result):
            result = await result
        return result


def _is_generator(source: Any) -> bool:
    return (
        inspect.isgeneratorfunction(source)
        or inspect.isasyncgenfunction(source)
        or inspect.isgenerator(source)
        or inspect.isasyncgen(source)
    )
