"""kiqlens client - the single entry point a dashboard talks to."""

import logging
from types import TracebackType
from typing import Any, Self

from kiqlens.config import Settings, display_redis_url, get_settings
from kiqlens.domain.jobs import SortedEntry
from kiqlens.errors import InvalidArgumentError
from kiqlens.keys import DEAD_SET_KEY, RETRY_SET_KEY, SCHEDULE_SET_KEY, SORTED_SET_KEYS
from kiqlens.redis import connect_redis
from kiqlens.services.metrics import (
    MetricsJobDetailResult,
    MetricsPeriod,
    MetricsReader,
    MetricsTopJobsResult,
    metrics_period_order,
)
from kiqlens.services.mutations import SortedSetMutator
from kiqlens.services.processes import BusyData, Process, ProcessReader
from kiqlens.services.queues import Queue, QueueReader
from kiqlens.services.sorted_sets import SortedSetReader
from kiqlens.services.stats import (
    DashboardRealtime,
    RedisInfo,
    Stats,
    StatsHistory,
    StatsReader,
)
from kiqlens.time_utils import Clock, utc_now
from kiqlens.version import BrokerVersion, VersionDetector

logger = logging.getLogger(__name__)


def _sorted_set_key(key: str) -> str:
    if key not in SORTED_SET_KEYS:
        raise InvalidArgumentError(f"not a job sorted set: {key!r}")
    return key


class Client:
    """
    Read and admin access to a Sidekiq Redis.

    Wraps one Redis handle. The only state kept between calls is the detected
    Sidekiq version. ``clock`` supplies "now" for latency, metrics windows
    and rewritten job timestamps; tests inject a fixed one.
    """

    def __init__(
        self,
        redis_client: Any,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
        redis_url: str | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._redis = redis_client
        self._settings = settings
        self._redis_url = redis_url or settings.redis_url
        self._clock = clock

        self._versions = VersionDetector(
            redis_client,
            scan_count=settings.version_scan_count,
            max_steps=settings.version_scan_max_steps,
        )
        self._stats = StatsReader(redis_client, clock)
        self._queues = QueueReader(redis_client, clock)
        self._processes = ProcessReader(redis_client, clock)
        self._sorted = SortedSetReader(
            redis_client, scan_count=settings.sorted_set_scan_count, clock=clock
        )
        self._mutator = SortedSetMutator(
            redis_client,
            self._versions,
            clock,
            pop_batch=settings.sorted_set_pop_batch,
        )
        self._metrics = MetricsReader(redis_client, self._versions, clock)

    @classmethod
    async def connect(
        cls,
        url: str | None = None,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> Self:
        """Open a connection per ``settings`` and wrap it."""
        settings = settings or get_settings()
        url = url or settings.redis_url
        redis_client = await connect_redis(url, settings)
        logger.debug("Connected to %s", display_redis_url(url))
        return cls(redis_client, settings=settings, clock=clock, redis_url=url)

    @property
    def redis(self) -> Any:
        return self._redis

    @property
    def display_redis_url(self) -> str:
        return display_redis_url(self._redis_url)

    async def close(self) -> None:
        await self._redis.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # Version

    async def detect_version(self) -> BrokerVersion:
        return await self._versions.detect()

    @property
    def version(self) -> BrokerVersion:
        """The cached version; UNKNOWN until detection succeeds."""
        return self._versions.cached

    async def metrics_period_order(self) -> list[str]:
        return metrics_period_order(await self.detect_version())

    # Dashboard

    async def get_stats(self) -> Stats:
        return await self._stats.get_stats()

    async def get_redis_info(self) -> RedisInfo:
        return await self._stats.get_redis_info()

    async def get_dashboard_realtime(self) -> DashboardRealtime:
        return await self._stats.get_dashboard_realtime()

    async def get_stats_history(self, days: int) -> StatsHistory:
        return await self._stats.get_stats_history(days)

    # Queues and processes

    async def get_queues(self) -> list[Queue]:
        return await self._queues.get_queues()

    def queue(self, name: str) -> Queue:
        return self._queues.queue(name)

    async def get_processes(self) -> list[Process]:
        return await self._processes.get_processes()

    def process(self, identity: str) -> Process:
        return self._processes.process(identity)

    async def get_busy_data(self, filter: str = "") -> BusyData:
        return await self._processes.get_busy_data(filter)

    # Sorted sets: reads

    async def get_sorted_set_jobs(
        self, key: str, start: int, count: int, *, reverse: bool = False
    ) -> tuple[list[SortedEntry], int]:
        return await self._sorted.get_range(_sorted_set_key(key), start, count, reverse=reverse)

    async def scan_sorted_set_jobs(
        self, key: str, match: str = "", *, reverse: bool = False
    ) -> list[SortedEntry]:
        return await self._sorted.scan(_sorted_set_key(key), match, reverse=reverse)

    async def get_sorted_set_bounds(self, key: str) -> tuple[SortedEntry | None, SortedEntry | None]:
        return await self._sorted.bounds(_sorted_set_key(key))

    async def get_dead_jobs(self, start: int, count: int) -> tuple[list[SortedEntry], int]:
        """Dead jobs, most recently killed first."""
        return await self._sorted.get_range(DEAD_SET_KEY, start, count, reverse=True)

    async def scan_dead_jobs(self, match: str = "") -> list[SortedEntry]:
        return await self._sorted.scan(DEAD_SET_KEY, match, reverse=True)

    async def get_dead_bounds(self) -> tuple[SortedEntry | None, SortedEntry | None]:
        return await self._sorted.bounds(DEAD_SET_KEY)

    async def get_retry_jobs(self, start: int, count: int) -> tuple[list[SortedEntry], int]:
        """Retries, next to run first."""
        return await self._sorted.get_range(RETRY_SET_KEY, start, count)

    async def scan_retry_jobs(self, match: str = "") -> list[SortedEntry]:
        return await self._sorted.scan(RETRY_SET_KEY, match)

    async def get_retry_bounds(self) -> tuple[SortedEntry | None, SortedEntry | None]:
        return await self._sorted.bounds(RETRY_SET_KEY)

    async def get_scheduled_jobs(self, start: int, count: int) -> tuple[list[SortedEntry], int]:
        return await self._sorted.get_range(SCHEDULE_SET_KEY, start, count)

    async def scan_scheduled_jobs(self, match: str = "") -> list[SortedEntry]:
        return await self._sorted.scan(SCHEDULE_SET_KEY, match)

    async def get_scheduled_bounds(self) -> tuple[SortedEntry | None, SortedEntry | None]:
        return await self._sorted.bounds(SCHEDULE_SET_KEY)

    # Sorted sets: single-entry actions

    async def delete_sorted_entry(self, entry: SortedEntry | None, key: str) -> None:
        await self._mutator.delete(entry, _sorted_set_key(key))

    async def move_sorted_entry_to_queue(
        self, entry: SortedEntry | None, key: str, *, decrement_retry_count: bool
    ) -> None:
        await self._mutator.move_to_queue(
            entry, _sorted_set_key(key), decrement_retry_count=decrement_retry_count
        )

    async def delete_retry_job(self, entry: SortedEntry | None) -> None:
        await self._mutator.delete(entry, RETRY_SET_KEY)

    async def delete_scheduled_job(self, entry: SortedEntry | None) -> None:
        await self._mutator.delete(entry, SCHEDULE_SET_KEY)

    async def delete_dead_job(self, entry: SortedEntry | None) -> None:
        await self._mutator.delete(entry, DEAD_SET_KEY)

    async def kill_retry_job(self, entry: SortedEntry | None) -> None:
        await self._mutator.kill(entry)

    async def retry_now_retry_job(self, entry: SortedEntry | None) -> None:
        await self._mutator.move_to_queue(entry, RETRY_SET_KEY, decrement_retry_count=True)

    async def retry_now_dead_job(self, entry: SortedEntry | None) -> None:
        await self._mutator.move_to_queue(entry, DEAD_SET_KEY, decrement_retry_count=True)

    async def add_scheduled_job_to_queue(self, entry: SortedEntry | None) -> None:
        await self._mutator.move_to_queue(entry, SCHEDULE_SET_KEY, decrement_retry_count=False)

    # Sorted sets: bulk actions

    async def delete_all_retry_jobs(self) -> None:
        await self._mutator.bulk_delete(RETRY_SET_KEY)

    async def delete_all_scheduled_jobs(self) -> None:
        await self._mutator.bulk_delete(SCHEDULE_SET_KEY)

    async def delete_all_dead_jobs(self) -> None:
        await self._mutator.bulk_delete(DEAD_SET_KEY)

    async def retry_all_retry_jobs(self) -> int:
        return await self._mutator.bulk_move_to_queue(RETRY_SET_KEY, decrement_retry_count=True)

    async def retry_all_dead_jobs(self) -> int:
        return await self._mutator.bulk_move_to_queue(DEAD_SET_KEY, decrement_retry_count=True)

    async def add_all_scheduled_jobs_to_queue(self) -> int:
        return await self._mutator.bulk_move_to_queue(SCHEDULE_SET_KEY, decrement_retry_count=False)

    async def kill_all_retry_jobs(self) -> int:
        return await self._mutator.bulk_kill(RETRY_SET_KEY)

    # Metrics

    async def get_metrics_top_jobs(
        self, period: MetricsPeriod, class_filter: str = ""
    ) -> MetricsTopJobsResult:
        return await self._metrics.get_top_jobs(period, class_filter)

    async def get_metrics_job_detail(
        self, class_name: str, period: MetricsPeriod
    ) -> MetricsJobDetailResult:
        return await self._metrics.get_job_detail(class_name, period)
