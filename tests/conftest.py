from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

from kiqlens.client import Client
from kiqlens.config import Settings
from tests._fixtures.time import fixed_clock, utc_dt

# 1700000000.123456 seconds since the epoch.
FIXED_NOW = utc_dt(2023, 11, 14, 22, 13, 20, 123456)


@pytest_asyncio.fixture
async def fake_redis() -> AsyncIterator[FakeRedis]:
    client = FakeRedis(decode_responses=True)
    try:
        yield client
    finally:
        await client.aclose()


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, redis_url="redis://localhost:6379/15")


@pytest_asyncio.fixture
async def client(fake_redis: FakeRedis, settings: Settings, now: datetime) -> Client:
    return Client(fake_redis, settings=settings, clock=fixed_clock(now))
