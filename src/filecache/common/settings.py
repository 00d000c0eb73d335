"""Application configuration for the file caching service."""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


def parse_duration(value) -> float:
    """Parse seconds or a Go-style duration string ("500ms", "5m", "1h30m") into seconds."""

    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"unsupported duration: {value!r}")
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    try:
        return float(text)
    except ValueError:
        pass
    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


class FileProxySettings(BaseSettings):
    """Configuration for the file caching proxy service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)
    host: str = env_field("0.0.0.0", "HOST")
    port: int = env_field(8080, "PORT")

    cache_enabled: bool = env_field(True, "CACHE_ENABLED")
    redis_addr: str = env_field("localhost:6379", "REDIS_ADDR")
    redis_password: Optional[SecretStr] = env_field(None, "REDIS_PASSWORD")
    redis_db: int = env_field(0, "REDIS_DB")
    cache_ttl: timedelta = env_field(timedelta(minutes=5), "CACHE_TTL")

    r2_account_id: str = env_field("", "R2_ACCOUNT_ID")
    r2_access_key_id: Optional[str] = env_field(None, "R2_ACCESS_KEY_ID")
    r2_secret_access_key: Optional[SecretStr] = env_field(None, "R2_SECRET_ACCESS_KEY")
    r2_bucket_name: str = env_field("", "R2_BUCKET_NAME")
    r2_endpoint_url: Optional[str] = env_field(None, "R2_ENDPOINT_URL")
    r2_region: str = env_field("auto", "R2_REGION")
    origin_max_attempts: int = env_field(3, "R2_MAX_ATTEMPTS")

    request_timeout: float = env_field(30.0, "REQUEST_TIMEOUT")
    cache_populate_timeout: float = env_field(10.0, "CACHE_POPULATE_TIMEOUT")
    health_check_timeout: float = env_field(5.0, "HEALTH_CHECK_TIMEOUT")
    cache_connect_timeout: float = env_field(5.0, "CACHE_CONNECT_TIMEOUT")

    metrics_token: Optional[SecretStr] = env_field(None, "METRICS_TOKEN")
    log_level: str = env_field("INFO", "LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "OTEL_SAMPLER_RATIO")

    @field_validator(
        "request_timeout",
        "cache_populate_timeout",
        "health_check_timeout",
        "cache_connect_timeout",
        mode="before",
    )
    @classmethod
    def _parse_timeouts(cls, value):
        seconds = parse_duration(value)
        if seconds <= 0:
            raise ValueError("timeout must be positive")
        return seconds

    @field_validator("cache_ttl", mode="before")
    @classmethod
    def _parse_cache_ttl(cls, value):
        seconds = parse_duration(value)
        if seconds < 0:
            raise ValueError("cache ttl must not be negative")
        return timedelta(seconds=seconds)

    @field_validator("r2_endpoint_url", "r2_access_key_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def redis_host(self) -> str:
        host, _, _ = self.redis_addr.rpartition(":")
        return host or self.redis_addr

    @property
    def redis_port(self) -> int:
        _, sep, port = self.redis_addr.rpartition(":")
        if sep and port.isdigit():
            return int(port)
        return 6379

    @property
    def origin_endpoint_url(self) -> Optional[str]:
        if self.r2_endpoint_url:
            return self.r2_endpoint_url
        if self.r2_account_id:
            return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"
        return None
