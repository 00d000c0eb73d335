"""Error taxonomy for file retrieval."""

from __future__ import annotations


class FileProxyError(Exception):
    """Base class for retrieval failures."""


class InvalidFileKeyError(FileProxyError, ValueError):
    """The requested file key is empty."""


class ObjectNotFoundError(FileProxyError):
    """The origin store has no object under the requested key."""

    def __init__(self, key: str) -> None:
        super().__init__(f"object not found: {key}")
        self.key = key


class OriginTimeoutError(FileProxyError):
    """The origin store did not answer within the request deadline."""


class StorageError(FileProxyError):
    """Any other origin store failure."""


class CacheError(FileProxyError):
    """Cache backend failure. Absorbed by the retrieval engine, never surfaced to clients."""
