"""Dashboard counters, Redis server info and per-day history.

Redis keys read (written by Sidekiq):
    stat:processed / stat:failed                     -> lifetime counters
    stat:processed:YYYY-MM-DD / stat:failed:...      -> per-day counters
    retry / schedule / dead, processes, queues       -> cardinalities
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

from redis.exceptions import NoScriptError

from kiqlens.coerce import coerce_int
from kiqlens.keys import stat_failed_day_key, stat_processed_day_key
from kiqlens.time_utils import Clock, as_utc, utc_now

logger = logging.getLogger(__name__)

SCRIPTS_DIR = Path(__file__).resolve().parent.parent / "scripts"
STATS_SCRIPT = (SCRIPTS_DIR / "stats.lua").read_text()

# Sections requested from INFO; the parser accepts any section.
INFO_SECTIONS = ("server", "clients", "memory")


@dataclass(frozen=True)
class Stats:
    """Sidekiq dashboard counters."""

    processed: int = 0
    failed: int = 0
    busy: int = 0
    enqueued: int = 0
    retries: int = 0
    scheduled: int = 0
    dead: int = 0


@dataclass(frozen=True)
class RedisInfo:
    """The INFO fields shown on the dashboard."""

    version: str = ""
    uptime_days: int = 0
    connections: int = 0
    used_memory: str = ""
    used_memory_peak: str = ""


@dataclass(frozen=True)
class DashboardRealtime:
    """Stats and Redis info fetched together."""

    stats: Stats
    redis_info: RedisInfo
    fetched_at: datetime


@dataclass(frozen=True)
class StatsHistory:
    """Per-day processed/failed counts, oldest day first."""

    dates: list[date] = field(default_factory=list)
    processed: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


def parse_info(raw: str) -> dict[str, str]:
    """Parse a raw INFO reply into a flat field mapping."""
    values: dict[str, str] = {}
    for line in raw.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        name, sep, value = line.partition(":")
        if not sep:
            continue
        values[name] = value.strip()
    return values


def _info_text(value: Any) -> str:
    return "" if value is None else str(value)


class StatsReader:
    """Reads dashboard counters from Redis."""

    def __init__(self, redis_client: Any, clock: Clock = utc_now) -> None:
        self._redis = redis_client
        self._clock = clock
        self._stats_sha: str | None = None

    async def get_stats(self) -> Stats:
        """All seven counters in one round trip via a server-side script."""
        result = await self._run_stats_script()
        if not isinstance(result, list) or len(result) < 7:
            logger.debug("Unexpected stats script reply: %r", result)
            return Stats()

        processed, failed, retries, scheduled, dead, busy, enqueued = (
            coerce_int(value) or 0 for value in result[:7]
        )
        return Stats(
            processed=processed,
            failed=failed,
            busy=busy,
            enqueued=enqueued,
            retries=retries,
            scheduled=scheduled,
            dead=dead,
        )

    async def get_redis_info(self) -> RedisInfo:
        raw = await self._redis.info(*INFO_SECTIONS)
        # redis-py parses INFO into a dict; raw text comes from other clients.
        parsed = raw if isinstance(raw, dict) else parse_info(_info_text(raw))
        return RedisInfo(
            version=_info_text(parsed.get("redis_version")),
            uptime_days=coerce_int(parsed.get("uptime_in_days")) or 0,
            connections=coerce_int(parsed.get("connected_clients")) or 0,
            used_memory=_info_text(parsed.get("used_memory_human")),
            used_memory_peak=_info_text(parsed.get("used_memory_peak_human")),
        )

    async def get_dashboard_realtime(self) -> DashboardRealtime:
        stats = await self.get_stats()
        redis_info = await self.get_redis_info()
        return DashboardRealtime(
            stats=stats,
            redis_info=redis_info,
            fetched_at=self._clock(),
        )

    async def get_stats_history(self, days: int) -> StatsHistory:
        """
        Per-day processed and failed counts for the last ``days`` days.

        Today is the last entry. Days without a counter report 0.
        """
        days = max(days, 1)
        today = as_utc(self._clock()).date()
        dates = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]

        keys = [stat_processed_day_key(day) for day in dates]
        keys.extend(stat_failed_day_key(day) for day in dates)
        values = await self._redis.mget(keys)

        counts = [coerce_int(value) or 0 for value in values]
        return StatsHistory(
            dates=dates,
            processed=counts[:days],
            failed=counts[days:],
        )

    async def _run_stats_script(self) -> Any:
        if self._stats_sha is None:
            self._stats_sha = await self._redis.script_load(STATS_SCRIPT)
        try:
            return await self._redis.evalsha(self._stats_sha, 0)
        except NoScriptError:
            # Script cache was flushed (SCRIPT FLUSH or failover).
            logger.debug("Stats script not cached, sending it inline")
            self._stats_sha = None
            return await self._redis.eval(STATS_SCRIPT, 0)
