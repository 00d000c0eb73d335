"""Tests for shared logging, metrics and access helpers."""

from __future__ import annotations

import json
import logging

import pytest
import structlog
from fastapi import FastAPI, HTTPException, Request

from filecache.common import observability
from filecache.common.http_security import require_metrics_access
from filecache.common.metrics import Counter, Gauge, Histogram, MetricsRegistry


def _make_request(*, headers: dict[str, str] | None = None, client_host: str = "127.0.0.1") -> Request:
    app = FastAPI()
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/metrics",
        "headers": [(key.lower().encode(), value.encode()) for key, value in (headers or {}).items()],
        "client": (client_host, 12345),
        "server": ("testserver", 80),
        "http_version": "1.1",
        "scheme": "http",
        "app": app,
    }

    async def receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request(scope, receive=receive)


def test_configure_logging_emits_json(caplog, monkeypatch):
    monkeypatch.setattr(observability, "_logging_configured", False)
    observability.configure_logging("filecache.test", "INFO", version="1.0.0")
    logger = structlog.get_logger("filecache.test.logger")

    with caplog.at_level(logging.INFO):
        logger.info("cache_hit", key="a.txt")

    payload = json.loads(caplog.records[-1].message)
    assert payload["message"] == "cache_hit"
    assert payload["key"] == "a.txt"
    assert payload["service"] == "filecache.test"
    assert payload["version"] == "1.0.0"


def test_parse_otlp_headers():
    headers = observability.parse_otlp_headers("authorization=Bearer token, custom=abc,,broken")
    assert headers == {"authorization": "Bearer token", "custom": "abc"}


def test_instrument_fastapi_app_adds_middleware(monkeypatch):
    monkeypatch.setattr(observability, "_tracer_configured", False)
    app = FastAPI()
    observability.configure_tracing("filecache.obs", None, None, 1.0)
    observability.instrument_fastapi_app(app)
    assert any(m.cls.__name__ == "OpenTelemetryMiddleware" for m in app.user_middleware)


def test_registry_renders_prometheus_text():
    registry = MetricsRegistry()
    lookups = registry.register(Counter("lookups_total", "Lookups", labelnames=("result",)))
    inflight = registry.register(Gauge("inflight", "In flight"))
    latency = registry.register(Histogram("latency_seconds", buckets=[0.1, 1.0], description="Latency"))

    lookups.inc(result="hit")
    lookups.inc(2, result="miss")
    inflight.set(3)
    latency.observe(0.05)
    latency.observe(0.5)

    text = registry.render()
    assert 'lookups_total{result="hit"} 1.0' in text
    assert 'lookups_total{result="miss"} 2.0' in text
    assert "inflight 3" in text
    assert 'latency_seconds_bucket{le="0.1"} 1' in text
    assert 'latency_seconds_bucket{le="1.0"} 2' in text
    assert 'latency_seconds_bucket{le="+Inf"} 2' in text
    assert "latency_seconds_count 2" in text


def test_require_metrics_access_with_valid_token() -> None:
    request = _make_request(headers={"Authorization": "Bearer secret"}, client_host="203.0.113.5")
    require_metrics_access(request, "secret")


def test_require_metrics_access_rejects_invalid_token() -> None:
    request = _make_request(headers={"Authorization": "Bearer wrong"}, client_host="203.0.113.5")
    with pytest.raises(HTTPException) as excinfo:
        require_metrics_access(request, "secret")
    assert excinfo.value.status_code == 401


def test_require_metrics_access_allows_loopback_without_token() -> None:
    require_metrics_access(_make_request(client_host="127.0.0.1"), None)


def test_require_metrics_access_blocks_remote_without_token() -> None:
    with pytest.raises(HTTPException) as excinfo:
        require_metrics_access(_make_request(client_host="198.51.100.8"), None)
    assert excinfo.value.status_code == 403
