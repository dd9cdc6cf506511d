"""Redis connection for kiqlens."""

import redis.asyncio as redis
from redis.backoff import NoBackoff
from redis.retry import Retry

from kiqlens.config import Settings, display_redis_url, get_settings
from kiqlens.logging import silence_driver_logging

silence_driver_logging()


async def connect_redis(url: str | None = None, settings: Settings | None = None) -> redis.Redis:
    """
    Connect to the Sidekiq Redis and return the client.

    Uses a small blocking pool (one connection by default), short timeouts and
    no retries: an operator action that fails should fail visibly rather than
    be replayed by the driver.

    Args:
        url: Redis URL. Defaults to ``settings.redis_url``.
        settings: Connection policy. Defaults to ``get_settings()``.

    Returns:
        Connected Redis client
    """
    settings = settings or get_settings()
    url = url or settings.redis_url

    pool = redis.BlockingConnectionPool.from_url(
        url,
        max_connections=settings.max_connections,
        decode_responses=True,
        socket_timeout=settings.socket_timeout_seconds,
        socket_connect_timeout=settings.connect_timeout_seconds,
        retry=Retry(NoBackoff(), 0),
    )
    # from_pool hands pool ownership to the client so aclose() disconnects it.
    return redis.Redis.from_pool(pool)


__all__ = ["connect_redis", "display_redis_url"]
