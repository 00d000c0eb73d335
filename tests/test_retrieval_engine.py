from __future__ import annotations

import asyncio

import pytest

from filecache.file_proxy.engine import (
    CACHE_POPULATE_COUNTER,
    BackendError,
    Hit,
    NotFound,
    RetrievalEngine,
    Source,
    Timeout,
)
from filecache.file_proxy.errors import InvalidFileKeyError, StorageError
from tests.utils.backends import InMemoryCache, InMemoryObjectStore


@pytest.mark.asyncio
async def test_empty_key_is_rejected() -> None:
    engine = RetrievalEngine(InMemoryObjectStore(), InMemoryCache())
    with pytest.raises(InvalidFileKeyError):
        await engine.retrieve("")


@pytest.mark.asyncio
async def test_outcomes_are_classified() -> None:
    origin = InMemoryObjectStore({"a.txt": b"a"})
    engine = RetrievalEngine(origin, None)

    assert await engine.retrieve("a.txt") == Hit(Source.ORIGIN, b"a")
    assert await engine.retrieve("b.txt") == NotFound()

    origin.get_error = StorageError("boom")
    outcome = await engine.retrieve("a.txt")
    assert isinstance(outcome, BackendError)
    assert outcome.error is origin.get_error


@pytest.mark.asyncio
async def test_slow_cache_counts_against_request_deadline() -> None:
    origin = InMemoryObjectStore({"a.txt": b"a"})
    cache = InMemoryCache()
    cache.get_delay = 1.0
    engine = RetrievalEngine(origin, cache)

    outcome = await engine.retrieve("a.txt", timeout=0.05)

    assert outcome == Timeout()
    assert origin.get_calls == []


@pytest.mark.asyncio
async def test_population_outlives_cancelled_request() -> None:
    origin = InMemoryObjectStore({"a.txt": b"payload"})
    cache = InMemoryCache()
    cache.set_delay = 0.05
    engine = RetrievalEngine(origin, cache, populate_timeout=1.0)
    fetched = asyncio.Event()

    async def handler() -> None:
        await engine.retrieve("a.txt")
        fetched.set()
        await asyncio.sleep(10)

    request = asyncio.create_task(handler())
    await fetched.wait()
    request.cancel()
    with pytest.raises(asyncio.CancelledError):
        await request

    assert engine.pending_populations == 1
    await engine.drain()
    assert cache.entries["a.txt"] == b"payload"
    assert engine.pending_populations == 0


@pytest.mark.asyncio
async def test_population_timeout_is_logged_not_raised() -> None:
    origin = InMemoryObjectStore({"a.txt": b"payload"})
    cache = InMemoryCache()
    cache.set_delay = 1.0
    engine = RetrievalEngine(origin, cache, populate_timeout=0.05)
    failures_before = CACHE_POPULATE_COUNTER.value(result="failure")

    outcome = await engine.retrieve("a.txt")
    await engine.drain()

    assert outcome == Hit(Source.ORIGIN, b"payload")
    assert "a.txt" not in cache.entries
    assert CACHE_POPULATE_COUNTER.value(result="failure") == failures_before + 1


@pytest.mark.asyncio
async def test_drain_cancels_populations_past_timeout() -> None:
    origin = InMemoryObjectStore({"a.txt": b"payload"})
    cache = InMemoryCache()
    cache.set_delay = 10.0
    engine = RetrievalEngine(origin, cache, populate_timeout=30.0)

    await engine.retrieve("a.txt")
    assert engine.pending_populations == 1

    await engine.drain(timeout=0.01)

    assert engine.pending_populations == 0
    assert "a.txt" not in cache.entries
