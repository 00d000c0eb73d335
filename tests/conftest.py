from __future__ import annotations

import pytest

from filecache.common.settings import FileProxySettings
from tests.utils.backends import InMemoryCache, InMemoryObjectStore


@pytest.fixture
def settings() -> FileProxySettings:
    return FileProxySettings(
        cache_enabled=True,
        r2_bucket_name="test-bucket",
        r2_account_id="test-account",
        request_timeout=2.0,
        cache_populate_timeout=1.0,
        health_check_timeout=0.5,
        metrics_token=None,
    )


@pytest.fixture
def origin() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()
