"""Composite health check over the cache and the origin store."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog
from opentelemetry import trace

from .backends import FileCache, ObjectStore


LOGGER = structlog.get_logger("filecache.file_proxy.health")
TRACER = trace.get_tracer("filecache.file_proxy")

DEFAULT_HEALTH_TIMEOUT = 5.0


class ComponentState(str, enum.Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DISABLED = "disabled"


@dataclass(frozen=True)
class HealthStatus:
    overall: ComponentState
    cache: ComponentState
    origin: ComponentState
    cache_error: Optional[str] = None
    origin_error: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.overall is ComponentState.HEALTHY

    def cache_report(self) -> str:
        if self.cache is ComponentState.UNHEALTHY:
            return f"unhealthy: {self.cache_error}"
        return self.cache.value

    def origin_report(self) -> str:
        if self.origin is ComponentState.UNHEALTHY:
            return f"unhealthy: {self.origin_error}"
        return self.origin.value


class HealthAggregator:
    """Probe both backends; only the origin decides the overall state."""

    def __init__(
        self,
        object_store: ObjectStore,
        cache: Optional[FileCache] = None,
        *,
        timeout: float = DEFAULT_HEALTH_TIMEOUT,
    ) -> None:
        self._object_store = object_store
        self._cache = cache
        self._timeout = timeout

    async def check(self) -> HealthStatus:
        with TRACER.start_as_current_span("file_proxy.health") as span:
            if self._cache is None:
                origin_error = await self._probe("origin", self._object_store.ping)
                cache_state, cache_error = ComponentState.DISABLED, None
            else:
                cache_error, origin_error = await asyncio.gather(
                    self._probe("cache", self._cache.ping),
                    self._probe("origin", self._object_store.ping),
                )
                cache_state = ComponentState.UNHEALTHY if cache_error is not None else ComponentState.HEALTHY

            origin_state = ComponentState.UNHEALTHY if origin_error is not None else ComponentState.HEALTHY
            status = HealthStatus(
                overall=origin_state,
                cache=cache_state,
                origin=origin_state,
                cache_error=cache_error,
                origin_error=origin_error,
            )
            span.set_attribute("filecache.health.overall", status.overall.value)
            span.set_attribute("filecache.health.cache", status.cache.value)
            return status

    async def _probe(self, component: str, probe: Callable[[], Awaitable[None]]) -> Optional[str]:
        try:
            await asyncio.wait_for(probe(), timeout=self._timeout)
        except asyncio.TimeoutError:
            message = f"timed out after {self._timeout}s"
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or type(exc).__name__
        else:
            return None
        LOGGER.warning("health_probe_failed", component=component, error=message)
        return message
