"""Queue reader - list sizes, latency and paged job listing."""

import logging
from typing import Any

from kiqlens.coerce import coerce_float
from kiqlens.domain.jobs import JobPayload
from kiqlens.json_utils import loads_lossless
from kiqlens.keys import QUEUES_KEY, queue_key
from kiqlens.time_utils import Clock, age_seconds, utc_now

logger = logging.getLogger(__name__)


class Queue:
    """A Sidekiq queue (``queue:<name>`` list, newest job at the head)."""

    def __init__(self, name: str, redis_client: Any, clock: Clock = utc_now) -> None:
        self.name = name
        self._redis = redis_client
        self._clock = clock

    def __repr__(self) -> str:
        return f"Queue({self.name!r})"

    @property
    def key(self) -> str:
        return queue_key(self.name)

    async def size(self) -> int:
        return int(await self._redis.llen(self.key))

    async def latency(self) -> float:
        """Seconds the oldest job has been waiting, 0 for an empty queue."""
        raw = await self._redis.lindex(self.key, -1)
        if not raw:
            return 0.0
        try:
            payload = loads_lossless(raw)
        except ValueError as e:
            logger.debug("Unparseable job at tail of %s: %s", self.key, e)
            return 0.0
        if not isinstance(payload, dict):
            return 0.0

        enqueued_at = coerce_float(payload.get("enqueued_at"))
        if not enqueued_at:
            return 0.0
        return max(age_seconds(enqueued_at, self._clock()), 0.0)

    async def get_jobs(self, start: int, count: int) -> tuple[list[JobPayload], int]:
        """
        Page through the queue, newest first.

        Returns the jobs and the queue size. Each job's ``position`` counts
        down from ``size`` so the oldest job is position 1.
        """
        pipe = self._redis.pipeline(transaction=False)
        pipe.llen(self.key)
        end = start + count - 1 if count > 0 else -1
        pipe.lrange(self.key, start, end)
        size, values = await pipe.execute()
        size = int(size or 0)

        jobs = [
            JobPayload(value, self.name, position=size - start - index, clock=self._clock)
            for index, value in enumerate(values or [])
        ]
        return jobs, size


class QueueReader:
    """Enumerates the queues Sidekiq knows about."""

    def __init__(self, redis_client: Any, clock: Clock = utc_now) -> None:
        self._redis = redis_client
        self._clock = clock

    def queue(self, name: str) -> Queue:
        return Queue(name, self._redis, self._clock)

    async def get_queues(self) -> list[Queue]:
        names = await self._redis.smembers(QUEUES_KEY)
        return [self.queue(name) for name in sorted(names or [])]
