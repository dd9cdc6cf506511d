"""Admin actions on the retry, schedule and dead sets.

Moving a job back to its queue rewrites the payload the way Sidekiq's own
"Retry Now" / "Add to queue" does: ``at`` is dropped, ``enqueued_at`` is set
to now and ``created_at`` is filled in if missing. Timestamps are written in
the format the payload already uses (float seconds for Sidekiq 7, integer
milliseconds for Sidekiq 8) and every other number is written back verbatim.
"""

import logging
from datetime import datetime
from typing import Any

from kiqlens.coerce import coerce_int, detect_timestamp_format
from kiqlens.domain.jobs import SortedEntry
from kiqlens.errors import InvalidArgumentError, MalformedPayloadError, NotFoundError
from kiqlens.json_utils import dumps_lossless, safe_parse_json
from kiqlens.keys import DEAD_SET_KEY, QUEUES_KEY, RETRY_SET_KEY, queue_key
from kiqlens.time_utils import Clock, format_timestamp, score_now, utc_now
from kiqlens.version import BrokerVersion, VersionDetector

logger = logging.getLogger(__name__)


def build_queue_payload(
    raw: str,
    *,
    decrement_retry_count: bool,
    version: BrokerVersion,
    now: datetime,
) -> tuple[str, str]:
    """
    Rewrite a sorted-set payload for immediate enqueue.

    Returns ``(queue_name, encoded_payload)``. Raises MalformedPayloadError
    for undecodable payloads or payloads without a queue.
    """
    if not raw:
        raise InvalidArgumentError("sorted entry payload is empty")

    payload = safe_parse_json(raw)
    queue = payload.get("queue")
    if not isinstance(queue, str) or not queue.strip():
        raise MalformedPayloadError("job payload missing queue")

    fmt = detect_timestamp_format(payload, version)
    if decrement_retry_count and payload.get("retry_count") is not None:
        retry_count = coerce_int(payload["retry_count"])
        if retry_count is not None:
            payload["retry_count"] = retry_count - 1

    payload.pop("at", None)
    timestamp = format_timestamp(now, fmt)
    if payload.get("created_at") is None:
        payload["created_at"] = timestamp
    payload["enqueued_at"] = timestamp

    return queue, dumps_lossless(payload)


def _require_value(entry: SortedEntry | None) -> str:
    if entry is None:
        raise InvalidArgumentError("sorted entry is None")
    if not entry.value:
        raise InvalidArgumentError("sorted entry payload is empty")
    return entry.value


class SortedSetMutator:
    """
    Writes to the job sorted sets.

    Single-entry actions address the exact raw member, so an entry that was
    changed or removed by Sidekiq since it was read is reported as not found
    (moves) or silently ignored (deletes). Bulk actions drain the set in
    ZPOPMIN batches and are not atomic across batches.
    """

    def __init__(
        self,
        redis_client: Any,
        version_detector: VersionDetector,
        clock: Clock = utc_now,
        *,
        pop_batch: int = 100,
    ) -> None:
        self._redis = redis_client
        self._versions = version_detector
        self._clock = clock
        self._pop_batch = pop_batch

    async def delete(self, entry: SortedEntry | None, key: str) -> None:
        value = _require_value(entry)
        await self._redis.zrem(key, value)

    async def kill(self, entry: SortedEntry | None) -> None:
        """Move a retry entry to the dead set, scored now."""
        value = _require_value(entry)
        pipe = self._redis.pipeline(transaction=True)
        pipe.zrem(RETRY_SET_KEY, value)
        pipe.zadd(DEAD_SET_KEY, {value: score_now(self._clock())})
        await pipe.execute()

    async def move_to_queue(
        self, entry: SortedEntry | None, key: str, *, decrement_retry_count: bool
    ) -> None:
        """Remove an entry from ``key`` and push it onto its queue now."""
        value = _require_value(entry)
        version = await self._versions.detect()
        queue, encoded = build_queue_payload(
            value,
            decrement_retry_count=decrement_retry_count,
            version=version,
            now=self._clock(),
        )

        removed = await self._redis.zrem(key, value)
        if not removed:
            raise NotFoundError(f"job not found in {key}")

        pipe = self._redis.pipeline(transaction=True)
        pipe.sadd(QUEUES_KEY, queue)
        pipe.lpush(queue_key(queue), encoded)
        await pipe.execute()

    async def bulk_move_to_queue(self, key: str, *, decrement_retry_count: bool) -> int:
        """
        Enqueue every entry of ``key``. Returns the number of jobs moved.

        A malformed entry stops the drain: it is written back to ``key``
        with its original score in the same transaction that enqueues the
        rest of its batch, then MalformedPayloadError is raised.
        """
        version = await self._versions.detect()
        moved = 0
        while True:
            rows = await self._redis.zpopmin(key, self._pop_batch)
            if not rows:
                return moved

            now = self._clock()
            ready: list[tuple[str, str]] = []
            rejected: dict[str, float] = {}
            first_error: MalformedPayloadError | None = None
            for value, score in rows:
                try:
                    ready.append(
                        build_queue_payload(
                            value,
                            decrement_retry_count=decrement_retry_count,
                            version=version,
                            now=now,
                        )
                    )
                except (MalformedPayloadError, InvalidArgumentError) as e:
                    logger.debug("Restoring unmovable %s entry: %s", key, e, extra={"key": key})
                    rejected[value] = float(score)
                    if first_error is None:
                        first_error = MalformedPayloadError(str(e))

            pipe = self._redis.pipeline(transaction=True)
            for queue, encoded in ready:
                pipe.sadd(QUEUES_KEY, queue)
                pipe.lpush(queue_key(queue), encoded)
            if rejected:
                pipe.zadd(key, rejected)
            await pipe.execute()
            moved += len(ready)

            if first_error is not None:
                raise first_error

    async def bulk_kill(self, key: str = RETRY_SET_KEY) -> int:
        """Move every entry of ``key`` to the dead set. Returns the count."""
        killed = 0
        while True:
            rows = await self._redis.zpopmin(key, self._pop_batch)
            if not rows:
                return killed

            pipe = self._redis.pipeline(transaction=True)
            for value, _score in rows:
                if not value:
                    continue
                pipe.zadd(DEAD_SET_KEY, {value: score_now(self._clock())})
                killed += 1
            await pipe.execute()

    async def bulk_delete(self, key: str) -> None:
        await self._redis.unlink(key)
