"""Origin store and cache backends used by the file proxy."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, ConnectTimeoutError, ReadTimeoutError
from redis.asyncio import Redis
from redis.exceptions import RedisError
import structlog

from ..common.settings import FileProxySettings
from .errors import CacheError, ObjectNotFoundError, OriginTimeoutError, StorageError


LOGGER = structlog.get_logger("filecache.backends")

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_NOT_FOUND_MARKERS = ("NoSuchKey", "not found")


class ObjectStore:
    """Authoritative store holding every file."""

    name = "origin"

    async def get_object(self, key: str) -> bytes:  # pragma: no cover - interface
        raise NotImplementedError

    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        raise NotImplementedError

    async def delete_object(self, key: str) -> None:
        raise NotImplementedError

    async def object_exists(self, key: str) -> bool:
        raise NotImplementedError

    async def ping(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class FileCache:
    """Disposable copy of origin objects; entries expire by the backend's own TTL."""

    name = "cache"

    async def get(self, key: str) -> Optional[bytes]:  # pragma: no cover - interface
        """Return the cached bytes, or ``None`` on a miss."""
        raise NotImplementedError

    async def set(self, key: str, data: bytes) -> None:
        raise NotImplementedError

    async def ping(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def is_not_found_error(exc: ClientError) -> bool:
    """Classify an S3 client error as "no such key".

    The structured error code and HTTP status win; message substrings are only
    consulted when the response carries neither.
    """

    error = exc.response.get("Error", {}) or {}
    error_code = str(error.get("Code", "") or "")
    http_status = (exc.response.get("ResponseMetadata", {}) or {}).get("HTTPStatusCode")
    if error_code:
        return error_code in _NOT_FOUND_CODES
    if http_status is not None:
        return int(http_status) == 404
    message = str(error.get("Message", "")) or str(exc)
    return any(marker in message for marker in _NOT_FOUND_MARKERS)


class R2ObjectStore(ObjectStore):
    """Cloudflare R2 (S3 compatible) origin store."""

    name = "r2"

    def __init__(self, settings: FileProxySettings, client=None):
        self._bucket = settings.r2_bucket_name
        self._client = client if client is not None else self._build_client(settings)

    @staticmethod
    def _build_client(settings: FileProxySettings):
        if not settings.r2_bucket_name or not settings.origin_endpoint_url:
            raise RuntimeError("R2 configuration incomplete")
        session = boto3.session.Session()
        secret = settings.r2_secret_access_key.get_secret_value() if settings.r2_secret_access_key else None
        client_args: dict[str, Optional[str]] = {
            "endpoint_url": settings.origin_endpoint_url,
            "region_name": settings.r2_region,
            "aws_access_key_id": settings.r2_access_key_id,
            "aws_secret_access_key": secret,
        }
        config = BotoConfig(
            retries={"max_attempts": max(1, settings.origin_max_attempts), "mode": "standard"},
            connect_timeout=settings.request_timeout,
            read_timeout=settings.request_timeout,
        )
        return session.client("s3", config=config, **{k: v for k, v in client_args.items() if v})

    @property
    def bucket(self) -> str:
        return self._bucket

    async def get_object(self, key: str) -> bytes:
        try:
            response = await asyncio.to_thread(self._client.get_object, Bucket=self._bucket, Key=key)
            body = response["Body"]
            try:
                return await asyncio.to_thread(body.read)
            finally:
                body.close()
        except ClientError as exc:
            if is_not_found_error(exc):
                raise ObjectNotFoundError(key) from exc
            raise StorageError(f"failed to get object {key}: {exc}") from exc
        except (ConnectTimeoutError, ReadTimeoutError) as exc:
            raise OriginTimeoutError(f"timed out reading object {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"failed to get object {key}: {exc}") from exc

    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"failed to put object {key}: {exc}") from exc

    async def delete_object(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if is_not_found_error(exc):
                return
            raise StorageError(f"failed to delete object {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"failed to delete object {key}: {exc}") from exc

    async def object_exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if is_not_found_error(exc):
                return False
            raise StorageError(f"failed to stat object {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"failed to stat object {key}: {exc}") from exc
        return True

    async def ping(self) -> None:
        try:
            await asyncio.to_thread(self._client.head_bucket, Bucket=self._bucket)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"bucket {self._bucket} unreachable: {exc}") from exc


class RedisFileCache(FileCache):
    """Redis-backed cache storing raw file bytes under the file key."""

    name = "redis"

    def __init__(self, client: Redis, ttl: timedelta):
        self._client = client
        self._ttl = ttl

    @classmethod
    def from_settings(cls, settings: FileProxySettings) -> "RedisFileCache":
        password = settings.redis_password.get_secret_value() if settings.redis_password else None
        client = Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=password,
            socket_connect_timeout=settings.cache_connect_timeout,
            decode_responses=False,
        )
        return cls(client, settings.cache_ttl)

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await self._client.get(key)
        except RedisError as exc:
            raise CacheError(f"redis get error: {exc}") from exc

    async def set(self, key: str, data: bytes) -> None:
        try:
            if self._ttl > timedelta(0):
                await self._client.set(key, data, px=max(1, int(self._ttl.total_seconds() * 1000)))
            else:
                await self._client.set(key, data)
        except RedisError as exc:
            raise CacheError(f"redis set error: {exc}") from exc

    async def ping(self) -> None:
        try:
            await self._client.ping()
        except RedisError as exc:
            raise CacheError(f"redis ping error: {exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()


def build_object_store(settings: FileProxySettings) -> ObjectStore:
    return R2ObjectStore(settings)


async def connect_cache(settings: FileProxySettings) -> Optional[FileCache]:
    """Return a verified cache, or ``None`` when it is disabled or unreachable."""

    if not settings.cache_enabled:
        LOGGER.info("cache_disabled_by_config")
        return None
    cache = RedisFileCache.from_settings(settings)
    try:
        await asyncio.wait_for(cache.ping(), timeout=settings.cache_connect_timeout)
    except (CacheError, asyncio.TimeoutError) as exc:
        LOGGER.warning("cache_unavailable_running_without_cache", redis_addr=settings.redis_addr, error=str(exc))
        await cache.close()
        return None
    LOGGER.info("cache_connected", redis_addr=settings.redis_addr, ttl_seconds=settings.cache_ttl.total_seconds())
    return cache
