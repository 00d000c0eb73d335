"""In-memory backends for exercising the file proxy without Redis or R2."""

from __future__ import annotations

import asyncio
from typing import Optional

from filecache.file_proxy.backends import FileCache, ObjectStore
from filecache.file_proxy.errors import ObjectNotFoundError


class InMemoryObjectStore(ObjectStore):
    name = "memory-origin"

    def __init__(self, objects: Optional[dict[str, bytes]] = None) -> None:
        self.objects: dict[str, bytes] = dict(objects or {})
        self.content_types: dict[str, str] = {}
        self.get_calls: list[str] = []
        self.get_error: Optional[Exception] = None
        self.ping_error: Optional[Exception] = None
        self.delay = 0.0
        self.closed = False

    async def get_object(self, key: str) -> bytes:
        self.get_calls.append(key)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.get_error is not None:
            raise self.get_error
        try:
            return self.objects[key]
        except KeyError:
            raise ObjectNotFoundError(key) from None

    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = data
        self.content_types[key] = content_type

    async def delete_object(self, key: str) -> None:
        self.objects.pop(key, None)

    async def object_exists(self, key: str) -> bool:
        return key in self.objects

    async def ping(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.ping_error is not None:
            raise self.ping_error

    async def close(self) -> None:
        self.closed = True


class InMemoryCache(FileCache):
    name = "memory-cache"

    def __init__(self, entries: Optional[dict[str, bytes]] = None) -> None:
        self.entries: dict[str, bytes] = dict(entries or {})
        self.get_calls: list[str] = []
        self.set_calls: list[str] = []
        self.get_error: Optional[Exception] = None
        self.set_error: Optional[Exception] = None
        self.ping_error: Optional[Exception] = None
        self.get_delay = 0.0
        self.set_delay = 0.0
        self.closed = False

    async def get(self, key: str) -> Optional[bytes]:
        self.get_calls.append(key)
        if self.get_delay:
            await asyncio.sleep(self.get_delay)
        if self.get_error is not None:
            raise self.get_error
        return self.entries.get(key)

    async def set(self, key: str, data: bytes) -> None:
        self.set_calls.append(key)
        if self.set_delay:
            await asyncio.sleep(self.set_delay)
        if self.set_error is not None:
            raise self.set_error
        self.entries[key] = data

    async def ping(self) -> None:
        if self.ping_error is not None:
            raise self.ping_error

    async def close(self) -> None:
        self.closed = True
