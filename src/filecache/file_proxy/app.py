"""Read-through file proxy serving objects from Redis or Cloudflare R2."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from ..common.http_security import require_metrics_access
from ..common.metrics import GLOBAL_REGISTRY, Counter, Histogram
from ..common.observability import configure_observability, instrument_fastapi_app
from ..common.schemas import APIResponse, ServiceInfo
from ..common.settings import FileProxySettings
from .backends import FileCache, ObjectStore, build_object_store, connect_cache
from .engine import BackendError, Hit, NotFound, RetrievalEngine, Source, Timeout
from .errors import InvalidFileKeyError
from .health import HealthAggregator
from .shaping import describe


SERVICE_NAME = "filecache.file_proxy"
SERVICE_VERSION = "1.0.0"

FILENAME_REQUIRED = "filename is required"
_OUTCOME_ERRORS = {
    NotFound: (status.HTTP_404_NOT_FOUND, "File not found"),
    Timeout: (status.HTTP_504_GATEWAY_TIMEOUT, "Request timeout"),
    BackendError: (status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to retrieve file"),
}

REQUEST_COUNTER = GLOBAL_REGISTRY.register(
    Counter("filecache_file_requests_total", "File requests by response status", labelnames=("status",))
)
BYTES_SERVED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("filecache_bytes_served_total", "File bytes served by source", labelnames=("source",))
)
REQUEST_LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "filecache_request_latency_seconds",
        buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
        description="File proxy request latency",
    )
)


class FileProxyState:
    def __init__(self, settings: FileProxySettings, object_store: ObjectStore, cache: Optional[FileCache] = None):
        self.settings = settings
        self.object_store = object_store
        self.cache = cache
        self.logger = structlog.get_logger(SERVICE_NAME).bind(origin=object_store.name)
        self._wire()

    def _wire(self) -> None:
        self.engine = RetrievalEngine(
            self.object_store,
            self.cache,
            populate_timeout=self.settings.cache_populate_timeout,
        )
        self.health = HealthAggregator(
            self.object_store,
            self.cache,
            timeout=self.settings.health_check_timeout,
        )

    def attach_cache(self, cache: Optional[FileCache]) -> None:
        self.cache = cache
        self._wire()

    async def close(self, *, close_backends: bool) -> None:
        await self.engine.drain(timeout=self.settings.cache_populate_timeout)
        if not close_backends:
            return
        if self.cache is not None:
            await self.cache.close()
        await self.object_store.close()


def get_state(request: Request) -> FileProxyState:
    return request.app.state.file_proxy  # type: ignore[attr-defined]


def _envelope(status_code: int, *, success: bool, message: Optional[str] = None, data: Optional[dict] = None) -> JSONResponse:
    body = APIResponse(success=success, message=message, data=data)
    return JSONResponse(body.payload(), status_code=status_code)


def _file_response(name: str, outcome: Hit) -> Response:
    descriptor = describe(name)
    return Response(
        content=outcome.data,
        status_code=status.HTTP_200_OK,
        media_type=descriptor.content_type,
        headers={
            "Content-Disposition": descriptor.content_disposition,
            "X-Cache": "HIT" if outcome.source is Source.CACHE else "MISS",
        },
    )


def create_app(
    settings: Optional[FileProxySettings] = None,
    *,
    object_store: Optional[ObjectStore] = None,
    cache: Optional[FileCache] = None,
) -> FastAPI:
    """Build the proxy application.

    When ``object_store`` is supplied both backends are taken as given (a
    ``None`` cache means caching is disabled) and the caller owns their
    lifetime. Otherwise the R2 store is built from settings and Redis is
    connected during startup; an unreachable Redis leaves caching disabled.
    """

    settings = settings or FileProxySettings()
    configure_observability(SERVICE_NAME, settings, version=SERVICE_VERSION)
    manage_backends = object_store is None
    if object_store is None:
        object_store = build_object_store(settings)
    state = FileProxyState(settings, object_store, cache)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_backends:
            state.attach_cache(await connect_cache(settings))
        state.logger.info("file_proxy_started", cache_enabled=state.engine.cache_enabled)
        try:
            yield
        finally:
            await state.close(close_backends=manage_backends)
            state.logger.info("file_proxy_stopped")

    app = FastAPI(lifespan=lifespan)
    instrument_fastapi_app(app)
    app.state.file_proxy = state

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            REQUEST_LATENCY_HISTOGRAM.observe(duration)
            state.logger.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        REQUEST_LATENCY_HISTOGRAM.observe(duration)

        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            state.logger.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            state.logger.warning("http_request", **log_kwargs)
        else:
            state.logger.info("http_request", **log_kwargs)

        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error_envelope(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else None
        response = _envelope(exc.status_code, success=False, message=message)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(InvalidFileKeyError)
    async def invalid_key_envelope(request: Request, exc: InvalidFileKeyError) -> JSONResponse:
        return _envelope(status.HTTP_400_BAD_REQUEST, success=False, message=FILENAME_REQUIRED)

    @app.get("/")
    async def root() -> JSONResponse:
        info = ServiceInfo(version=SERVICE_VERSION)
        return _envelope(status.HTTP_200_OK, success=True, message="File Caching Service", data=info.model_dump())

    @app.get("/health")
    async def health_check(state: FileProxyState = Depends(get_state)) -> JSONResponse:
        """Composite health for readiness probes: only the origin decides the status code."""
        health = await state.health.check()
        data = {
            "status": health.overall.value,
            "redis": health.cache_report(),
            "r2": health.origin_report(),
        }
        if not health.healthy:
            return _envelope(
                status.HTTP_503_SERVICE_UNAVAILABLE,
                success=False,
                message="Service is unhealthy",
                data=data,
            )
        return _envelope(status.HTTP_200_OK, success=True, message="Service is healthy", data=data)

    @app.get("/files")
    @app.get("/files/")
    async def missing_filename() -> JSONResponse:
        REQUEST_COUNTER.inc(status=str(status.HTTP_400_BAD_REQUEST))
        return _envelope(status.HTTP_400_BAD_REQUEST, success=False, message=FILENAME_REQUIRED)

    @app.get("/files/{name:path}")
    async def get_file(name: str, state: FileProxyState = Depends(get_state)) -> Response:
        if not name:
            REQUEST_COUNTER.inc(status=str(status.HTTP_400_BAD_REQUEST))
            return _envelope(status.HTTP_400_BAD_REQUEST, success=False, message=FILENAME_REQUIRED)

        outcome = await state.engine.retrieve(name, timeout=state.settings.request_timeout)
        if isinstance(outcome, Hit):
            REQUEST_COUNTER.inc(status=str(status.HTTP_200_OK))
            BYTES_SERVED_COUNTER.inc(len(outcome.data), source=outcome.source.value)
            return _file_response(name, outcome)

        status_code, message = _OUTCOME_ERRORS[type(outcome)]
        REQUEST_COUNTER.inc(status=str(status_code))
        return _envelope(status_code, success=False, message=message)

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint(
        request: Request,
        state: FileProxyState = Depends(get_state),
    ) -> PlainTextResponse:
        token = (
            state.settings.metrics_token.get_secret_value()
            if state.settings.metrics_token
            else None
        )
        require_metrics_access(request, token)
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    return app
