"""kiqlens configuration with sensible defaults for a local Sidekiq."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal
from urllib.parse import urlsplit, urlunsplit

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"


class Settings(BaseSettings):
    """
    kiqlens configuration.

    All settings can be overridden via environment variables with KIQLENS_ prefix.
    Defaults target an operator dashboard: one connection, fail fast, no retries.
    """

    model_config = SettingsConfigDict(
        env_prefix="KIQLENS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    redis_url: str = DEFAULT_REDIS_URL
    debug: bool = False
    log_format: Literal["text", "json"] = "text"

    # Connection policy
    socket_timeout_seconds: float = 2.0
    connect_timeout_seconds: float = 2.0
    max_connections: int = 1

    # Broker version detection (bounded SCAN over metrics keys)
    version_scan_count: int = 100
    version_scan_max_steps: int = 50

    # Sorted set paging
    sorted_set_scan_count: int = 100
    sorted_set_pop_batch: int = 100

    @field_validator("redis_url", mode="before")
    @classmethod
    def _default_empty_url(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_REDIS_URL
        return value

    @field_validator(
        "max_connections",
        "version_scan_count",
        "sorted_set_pop_batch",
        "sorted_set_scan_count",
    )
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)

    @property
    def display_redis_url(self) -> str:
        return display_redis_url(self.redis_url)


def display_redis_url(url: str) -> str:
    """Return the Redis URL with any password stripped, safe for logs and UI."""
    if not url:
        return DEFAULT_REDIS_URL
    try:
        parts = urlsplit(url)
        # Accessing port validates it; bad ports raise ValueError.
        parts.port
    except ValueError:
        return url

    if "@" not in parts.netloc:
        return url

    userinfo, _, hostinfo = parts.netloc.rpartition("@")
    username, _, _password = userinfo.partition(":")
    netloc = f"{username}@{hostinfo}" if username else hostinfo
    return urlunsplit(parts._replace(netloc=netloc))


@lru_cache
def get_settings() -> Settings:
    return Settings()
