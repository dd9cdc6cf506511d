"""Sidekiq version detection from metrics rollup key shapes."""

import logging
from enum import StrEnum
from typing import Any

from kiqlens.keys import METRICS_ROLLUP_PATTERN

logger = logging.getLogger(__name__)


class BrokerVersion(StrEnum):
    """Schema variant written by the Sidekiq processes."""

    UNKNOWN = "unknown"
    V7 = "7"
    V8 = "8"


# Length of the date segment in "j|<date>|<hour>:<minute>".
_DATE_LENGTHS = {
    6: BrokerVersion.V8,  # YYMMDD
    8: BrokerVersion.V7,  # YYYYMMDD
}


def version_from_rollup_key(key: str) -> BrokerVersion:
    """Classify a single metrics rollup key, UNKNOWN if it is not one."""
    parts = key.split("|")
    if len(parts) != 3 or parts[0] != "j":
        return BrokerVersion.UNKNOWN
    date, clock = parts[1], parts[2]
    if not date.isdigit() or ":" not in clock:
        return BrokerVersion.UNKNOWN
    return _DATE_LENGTHS.get(len(date), BrokerVersion.UNKNOWN)


class VersionDetector:
    """
    Detects and caches the Sidekiq schema variant.

    Detection SCANs a bounded number of steps over ``j|*`` keys. V8 wins when
    both shapes coexist (mid-upgrade). UNKNOWN is never cached, so a later
    call re-detects once metrics data shows up.
    """

    def __init__(
        self,
        redis_client: Any,
        *,
        scan_count: int = 100,
        max_steps: int = 50,
    ) -> None:
        self._redis = redis_client
        self._scan_count = scan_count
        self._max_steps = max_steps
        self._version = BrokerVersion.UNKNOWN

    @property
    def cached(self) -> BrokerVersion:
        return self._version

    async def detect(self) -> BrokerVersion:
        if self._version != BrokerVersion.UNKNOWN:
            return self._version

        try:
            detected = await self._scan()
        except Exception as e:
            logger.debug("Could not detect Sidekiq version: %s", e)
            return BrokerVersion.UNKNOWN

        if detected != BrokerVersion.UNKNOWN:
            self._version = detected
            logger.debug(
                "Detected Sidekiq version %s",
                detected.value,
                extra={"broker_version": detected.value},
            )
        return detected

    async def _scan(self) -> BrokerVersion:
        found = BrokerVersion.UNKNOWN
        cursor = 0
        for _ in range(self._max_steps):
            cursor, keys = await self._redis.scan(
                cursor=cursor, match=METRICS_ROLLUP_PATTERN, count=self._scan_count
            )
            for key in keys:
                version = version_from_rollup_key(key)
                if version == BrokerVersion.V8:
                    return version
                if version == BrokerVersion.V7:
                    found = version
            if int(cursor) == 0:
                break
        return found
