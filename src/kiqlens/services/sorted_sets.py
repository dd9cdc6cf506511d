"""Readers for the retry, schedule and dead sorted sets."""

import logging
from typing import Any

from kiqlens.coerce import coerce_float
from kiqlens.domain.jobs import SortedEntry
from kiqlens.time_utils import Clock, utc_now

logger = logging.getLogger(__name__)


def scan_pattern(match: str) -> str | None:
    """ZSCAN MATCH pattern: bare search terms become ``*term*``."""
    if not match:
        return None
    if "*" not in match:
        return f"*{match}*"
    return match


class SortedSetReader:
    """Paged, searchable and bounded reads over a job sorted set."""

    def __init__(
        self, redis_client: Any, *, scan_count: int = 100, clock: Clock = utc_now
    ) -> None:
        self._redis = redis_client
        self._scan_count = scan_count
        self._clock = clock

    def _entry(self, value: str, score: float) -> SortedEntry:
        return SortedEntry(value, score, clock=self._clock)

    async def get_range(
        self, key: str, start: int, count: int, *, reverse: bool = False
    ) -> tuple[list[SortedEntry], int]:
        """
        One page of entries and the set size.

        ``count <= 0`` reads to the end. ``reverse`` lists the highest scores
        (newest) first.
        """
        size = int(await self._redis.zcard(key) or 0)
        if size == 0:
            return [], 0

        end = start + count - 1 if count > 0 else -1
        if reverse:
            rows = await self._redis.zrevrange(key, start, end, withscores=True)
        else:
            rows = await self._redis.zrange(key, start, end, withscores=True)
        return [self._entry(value, float(score)) for value, score in rows], size

    async def scan(self, key: str, match: str = "", *, reverse: bool = False) -> list[SortedEntry]:
        """All entries matching ``match``, ordered by score."""
        pattern = scan_pattern(match)
        entries: list[SortedEntry] = []
        cursor = 0
        while True:
            cursor, rows = await self._redis.zscan(
                key, cursor=cursor, match=pattern, count=self._scan_count
            )
            for value, score in rows:
                parsed = coerce_float(score)
                if parsed is None:
                    logger.debug("Skipping %s member with bad score %r", key, score)
                    continue
                entries.append(self._entry(value, parsed))
            if int(cursor) == 0:
                break

        entries.sort(key=lambda entry: entry.score, reverse=reverse)
        return entries

    async def bounds(self, key: str) -> tuple[SortedEntry | None, SortedEntry | None]:
        """Lowest- and highest-scored entries, ``(None, None)`` when empty."""
        pipe = self._redis.pipeline(transaction=False)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.zrevrange(key, 0, 0, withscores=True)
        lowest, highest = await pipe.execute()
        if not lowest or not highest:
            return None, None

        (low_value, low_score), (high_value, high_score) = lowest[0], highest[0]
        return self._entry(low_value, float(low_score)), self._entry(high_value, float(high_score))
