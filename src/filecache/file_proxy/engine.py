"""Cache-then-origin retrieval with detached cache population."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Optional, Union

import structlog
from opentelemetry import trace

from ..common.metrics import GLOBAL_REGISTRY, Counter, Gauge
from .backends import FileCache, ObjectStore
from .errors import InvalidFileKeyError, ObjectNotFoundError, OriginTimeoutError


LOGGER = structlog.get_logger("filecache.file_proxy.engine")
TRACER = trace.get_tracer("filecache.file_proxy")

DEFAULT_POPULATE_TIMEOUT = 10.0
# Timer callbacks may fire up to one clock tick early.
_DEADLINE_SLACK = 0.001

CACHE_LOOKUP_COUNTER = GLOBAL_REGISTRY.register(
    Counter("filecache_cache_lookups_total", "Cache lookups by result", labelnames=("result",))
)
CACHE_ERROR_COUNTER = GLOBAL_REGISTRY.register(
    Counter("filecache_cache_errors_total", "Cache failures absorbed by the proxy", labelnames=("operation",))
)
ORIGIN_FETCH_COUNTER = GLOBAL_REGISTRY.register(
    Counter("filecache_origin_fetches_total", "Origin fetches by outcome", labelnames=("outcome",))
)
CACHE_POPULATE_COUNTER = GLOBAL_REGISTRY.register(
    Counter("filecache_cache_populations_total", "Background cache writes by result", labelnames=("result",))
)
POPULATIONS_IN_FLIGHT_GAUGE = GLOBAL_REGISTRY.register(
    Gauge("filecache_cache_populations_in_flight", "Background cache writes currently running")
)


class Source(str, enum.Enum):
    CACHE = "cache"
    ORIGIN = "origin"


@dataclass(frozen=True)
class Hit:
    source: Source
    data: bytes = field(repr=False)


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class Timeout:
    pass


@dataclass(frozen=True)
class BackendError:
    error: Optional[BaseException] = None


RetrievalOutcome = Union[Hit, NotFound, Timeout, BackendError]


class _Deadline:
    def __init__(self, timeout: Optional[float]) -> None:
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._expires_at = loop.time() + timeout if timeout is not None else None

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._loop.time())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= _DEADLINE_SLACK


class RetrievalEngine:
    """Serves files from the cache when possible, otherwise from the origin store.

    Cache failures never fail a request: they are logged, counted and treated
    as misses. After an origin hit the bytes are written to the cache by a
    detached task with its own timeout, so the caller never waits for it and
    cancelling the request does not cancel the write.
    """

    def __init__(
        self,
        object_store: ObjectStore,
        cache: Optional[FileCache] = None,
        *,
        populate_timeout: float = DEFAULT_POPULATE_TIMEOUT,
    ) -> None:
        self._object_store = object_store
        self._cache = cache
        self._populate_timeout = populate_timeout
        self._populations: set[asyncio.Task] = set()

    @property
    def cache_enabled(self) -> bool:
        return self._cache is not None

    @property
    def pending_populations(self) -> int:
        return len(self._populations)

    async def retrieve(self, key: str, *, timeout: Optional[float] = None) -> RetrievalOutcome:
        if not key:
            raise InvalidFileKeyError("file key must be non-empty")
        deadline = _Deadline(timeout)
        with TRACER.start_as_current_span("file_proxy.retrieve", attributes={"filecache.key": key}) as span:
            cache = self._cache
            if cache is not None:
                cached = await self._lookup_cache(cache, key, deadline)
                if cached is not None:
                    span.set_attribute("filecache.source", Source.CACHE.value)
                    span.set_attribute("filecache.bytes", len(cached))
                    return Hit(Source.CACHE, cached)
            else:
                LOGGER.debug("cache_disabled_fetching_origin", key=key)

            outcome = await self._fetch_origin(key, deadline)
            span.set_attribute("filecache.outcome", type(outcome).__name__)
            if isinstance(outcome, Hit):
                span.set_attribute("filecache.source", Source.ORIGIN.value)
                span.set_attribute("filecache.bytes", len(outcome.data))
                if cache is not None:
                    self._schedule_population(cache, key, outcome.data)
            return outcome

    async def _lookup_cache(self, cache: FileCache, key: str, deadline: _Deadline) -> Optional[bytes]:
        try:
            data = await asyncio.wait_for(cache.get(key), timeout=deadline.remaining())
        except asyncio.TimeoutError:
            CACHE_ERROR_COUNTER.inc(operation="get")
            CACHE_LOOKUP_COUNTER.inc(result="error")
            LOGGER.warning("cache_lookup_failed", key=key, error="deadline exceeded")
            return None
        except Exception as exc:  # noqa: BLE001
            CACHE_ERROR_COUNTER.inc(operation="get")
            CACHE_LOOKUP_COUNTER.inc(result="error")
            LOGGER.warning("cache_lookup_failed", key=key, error=str(exc))
            return None
        if data is None:
            CACHE_LOOKUP_COUNTER.inc(result="miss")
            LOGGER.info("cache_miss", key=key)
            return None
        CACHE_LOOKUP_COUNTER.inc(result="hit")
        LOGGER.info("cache_hit", key=key, bytes=len(data))
        return bytes(data)

    async def _fetch_origin(self, key: str, deadline: _Deadline) -> RetrievalOutcome:
        if deadline.expired():
            ORIGIN_FETCH_COUNTER.inc(outcome="timeout")
            LOGGER.warning("origin_fetch_skipped_deadline_exceeded", key=key)
            return Timeout()
        with TRACER.start_as_current_span("file_proxy.origin_fetch", attributes={"filecache.key": key}):
            try:
                data = await asyncio.wait_for(self._object_store.get_object(key), timeout=deadline.remaining())
            except ObjectNotFoundError:
                ORIGIN_FETCH_COUNTER.inc(outcome="not_found")
                LOGGER.info("origin_object_not_found", key=key)
                return NotFound()
            except asyncio.TimeoutError:
                ORIGIN_FETCH_COUNTER.inc(outcome="timeout")
                LOGGER.warning("origin_fetch_timeout", key=key)
                return Timeout()
            except Exception as exc:  # noqa: BLE001
                if deadline.expired() or isinstance(exc, OriginTimeoutError):
                    ORIGIN_FETCH_COUNTER.inc(outcome="timeout")
                    LOGGER.warning("origin_fetch_timeout", key=key, error=str(exc))
                    return Timeout()
                ORIGIN_FETCH_COUNTER.inc(outcome="error")
                LOGGER.error("origin_fetch_failed", key=key, error=str(exc))
                return BackendError(exc)
        ORIGIN_FETCH_COUNTER.inc(outcome="hit")
        LOGGER.info("origin_hit", key=key, bytes=len(data))
        return Hit(Source.ORIGIN, bytes(data))

    def _schedule_population(self, cache: FileCache, key: str, data: bytes) -> None:
        task = asyncio.create_task(self._populate(cache, key, data), name=f"cache-populate:{key}")
        self._populations.add(task)
        POPULATIONS_IN_FLIGHT_GAUGE.set(float(len(self._populations)))
        task.add_done_callback(self._population_done)

    def _population_done(self, task: asyncio.Task) -> None:
        self._populations.discard(task)
        POPULATIONS_IN_FLIGHT_GAUGE.set(float(len(self._populations)))

    async def _populate(self, cache: FileCache, key: str, data: bytes) -> None:
        try:
            await asyncio.wait_for(cache.set(key, data), timeout=self._populate_timeout)
        except asyncio.TimeoutError:
            CACHE_ERROR_COUNTER.inc(operation="set")
            CACHE_POPULATE_COUNTER.inc(result="failure")
            LOGGER.warning("cache_populate_failed", key=key, error=f"timed out after {self._populate_timeout}s")
        except Exception as exc:  # noqa: BLE001
            CACHE_ERROR_COUNTER.inc(operation="set")
            CACHE_POPULATE_COUNTER.inc(result="failure")
            LOGGER.warning("cache_populate_failed", key=key, error=str(exc))
        else:
            CACHE_POPULATE_COUNTER.inc(result="success")
            LOGGER.info("cache_populated", key=key, bytes=len(data))

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight cache populations, e.g. before shutdown."""

        if not self._populations:
            return
        pending = list(self._populations)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            LOGGER.warning("cache_populations_abandoned", count=len(still_running))
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)
