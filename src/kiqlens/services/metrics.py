"""Metrics reader - per-job execution rollups and latency histograms.

Sidekiq's metrics middleware writes:
    j|YYMMDD|H:MM        -> HASH "<class>|p", "<class>|f", "<class>|ms" (v8, per minute)
    j|YYMMDD|H:T         -> same fields, 10-minute rollup, T = minute // 10 (v8)
    j|YYYYMMDD|H:M       -> per-minute rollup (v7, no 10-minute rollups)
    h|<class>-D-H:M      -> BITFIELD of 26 u16 histogram counters (v8)
    <class>-DD-HH:M      -> same histogram, v7 key shape

The histogram bitfield is stored slowest bucket first; readers reverse it so
index 0 is the fastest ("20ms") bucket.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from kiqlens.coerce import coerce_int
from kiqlens.time_utils import Clock, as_utc, utc_now
from kiqlens.version import BrokerVersion, VersionDetector

logger = logging.getLogger(__name__)

MAX_PERIOD_MINUTES = 480
MAX_PERIOD_HOURS = 72
DEFAULT_PERIOD_MINUTES = 60

HISTOGRAM_BUCKETS = 26
HISTOGRAM_LABELS = (
    "20ms", "30ms", "45ms", "65ms", "100ms",
    "150ms", "225ms", "335ms", "500ms", "750ms",
    "1.1s", "1.7s", "2.5s", "3.8s", "5.75s",
    "8.5s", "13s", "20s", "30s", "45s",
    "65s", "100s", "150s", "225s", "335s",
    "∞",
)  # fmt: skip

METRIC_PROCESSED = "p"
METRIC_FAILED = "f"
METRIC_MILLISECONDS = "ms"


class MetricsGranularity(StrEnum):
    MINUTELY = "minutely"
    HOURLY = "hourly"


@dataclass(frozen=True)
class MetricsPeriod:
    """A look-back window, either in minutes (minutely) or hours (10-minute)."""

    minutes: int = 0
    hours: int = 0


METRICS_PERIODS: dict[str, MetricsPeriod] = {
    "1h": MetricsPeriod(minutes=60),
    "2h": MetricsPeriod(minutes=120),
    "4h": MetricsPeriod(minutes=240),
    "8h": MetricsPeriod(minutes=480),
    "24h": MetricsPeriod(hours=24),
    "48h": MetricsPeriod(hours=48),
    "72h": MetricsPeriod(hours=72),
}
METRICS_PERIOD_ORDER = ("1h", "2h", "4h", "8h", "24h", "48h", "72h")
# Sidekiq 7 only keeps minutely rollups.
METRICS_PERIOD_ORDER_V7 = ("1h", "2h", "4h", "8h")


def metrics_period_order(version: BrokerVersion) -> list[str]:
    """Period keys a dashboard should offer for this broker version."""
    if version == BrokerVersion.V7:
        return list(METRICS_PERIOD_ORDER_V7)
    return list(METRICS_PERIOD_ORDER)


@dataclass
class MetricsJobTotals:
    processed: int = 0
    failed: int = 0
    milliseconds: int = 0
    seconds: float = 0.0

    @property
    def success(self) -> int:
        return max(self.processed - self.failed, 0)

    @property
    def avg_seconds(self) -> float:
        """Mean execution time of successful runs."""
        success = self.success
        if success == 0:
            return 0.0
        return self.seconds / success

    def add(self, metric: str, value: int) -> None:
        if metric == METRIC_MILLISECONDS:
            self.milliseconds += value
            self.seconds += value / 1000.0
        elif metric == METRIC_PROCESSED:
            self.processed += value
        elif metric == METRIC_FAILED:
            self.failed += value


@dataclass(frozen=True)
class MetricsTopJobsResult:
    granularity: MetricsGranularity
    starts_at: datetime
    ends_at: datetime
    jobs: dict[str, MetricsJobTotals] = field(default_factory=dict)


@dataclass(frozen=True)
class MetricsJobDetailResult:
    granularity: MetricsGranularity
    starts_at: datetime
    ends_at: datetime
    buckets: list[datetime] = field(default_factory=list)
    totals: MetricsJobTotals = field(default_factory=MetricsJobTotals)
    # Bucket time (RFC 3339, UTC) -> counts, fastest bucket first.
    hist: dict[str, list[int]] = field(default_factory=dict)


def metrics_rollup(period: MetricsPeriod) -> tuple[MetricsGranularity, int, timedelta]:
    """Granularity, bucket count and bucket stride for a period."""
    if period.hours > 0:
        hours = min(period.hours, MAX_PERIOD_HOURS)
        return MetricsGranularity.HOURLY, hours * 6, timedelta(minutes=10)

    minutes = period.minutes if period.minutes > 0 else DEFAULT_PERIOD_MINUTES
    minutes = min(minutes, MAX_PERIOD_MINUTES)
    return MetricsGranularity.MINUTELY, minutes, timedelta(minutes=1)


def truncate_bucket(t: datetime, granularity: MetricsGranularity) -> datetime:
    t = as_utc(t).replace(second=0, microsecond=0)
    if granularity == MetricsGranularity.HOURLY:
        t = t.replace(minute=t.minute - t.minute % 10)
    return t


def metrics_bucket_time(t: datetime, granularity: MetricsGranularity) -> str:
    return truncate_bucket(t, granularity).strftime("%Y-%m-%dT%H:%M:%SZ")


def rollup_key_v8(t: datetime, granularity: MetricsGranularity) -> str:
    t = as_utc(t)
    date = t.strftime("%y%m%d")
    if granularity == MetricsGranularity.HOURLY:
        return f"j|{date}|{t.hour}:{t.minute // 10}"
    return f"j|{date}|{t.hour}:{t.minute:02d}"


def rollup_key_v7(t: datetime, granularity: MetricsGranularity) -> str | None:
    if granularity == MetricsGranularity.HOURLY:
        return None
    t = as_utc(t)
    return f"j|{t.strftime('%Y%m%d')}|{t.hour}:{t.minute}"


def rollup_keys(t: datetime, granularity: MetricsGranularity) -> list[str]:
    """Both versions' rollup keys for a bucket, deduplicated."""
    keys = [rollup_key_v8(t, granularity)]
    v7_key = rollup_key_v7(t, granularity)
    if v7_key and v7_key not in keys:
        keys.append(v7_key)
    return keys


def rollup_key_for_version(
    t: datetime, granularity: MetricsGranularity, version: BrokerVersion
) -> str | None:
    if version == BrokerVersion.V7:
        return rollup_key_v7(t, granularity)
    return rollup_key_v8(t, granularity)


def histogram_key_v8(class_name: str, t: datetime) -> str:
    t = as_utc(t)
    return f"h|{class_name}-{t.day}-{t.hour}:{t.minute}"


def histogram_key_v7(class_name: str, t: datetime) -> str:
    t = as_utc(t)
    return f"{class_name}-{t.day:02d}-{t.hour:02d}:{t.minute}"


def histogram_key_for_version(class_name: str, t: datetime, version: BrokerVersion) -> str:
    if version == BrokerVersion.V7:
        return histogram_key_v7(class_name, t)
    return histogram_key_v8(class_name, t)


def split_metric_field(value: str) -> tuple[str, str]:
    """``"App::Job|ms"`` -> ``("App::Job", "ms")``; empty class if malformed."""
    class_name, sep, metric = value.partition("|")
    if not sep:
        return "", ""
    return class_name, metric


def decode_histogram(values: list[Any] | None) -> list[int]:
    """BITFIELD reply to counts ordered fastest bucket first."""
    counts = [coerce_int(value) or 0 for value in values or []]
    counts.reverse()
    return counts


def _bucket_times(now: datetime, count: int, stride: timedelta) -> list[datetime]:
    return [now - stride * index for index in range(count)]


class MetricsReader:
    """Reads Sidekiq metrics rollups for the metrics dashboard."""

    def __init__(
        self,
        redis_client: Any,
        version_detector: VersionDetector,
        clock: Clock = utc_now,
    ) -> None:
        self._redis = redis_client
        self._versions = version_detector
        self._clock = clock

    async def get_top_jobs(
        self, period: MetricsPeriod, class_filter: str = ""
    ) -> MetricsTopJobsResult:
        """
        Totals per job class over the period.

        Reads both Sidekiq 7 and 8 rollup keys for every bucket, so results
        are complete during an upgrade. ``class_filter`` is a case-insensitive
        substring match on the class name.
        """
        granularity, count, stride = metrics_rollup(period)
        now = as_utc(self._clock())
        buckets = _bucket_times(now, count, stride)
        starts_at = buckets[-1] if buckets else now
        result = MetricsTopJobsResult(granularity=granularity, starts_at=starts_at, ends_at=now)
        if not buckets:
            return result

        keys = [key for at in buckets for key in rollup_keys(at, granularity)]
        pipe = self._redis.pipeline(transaction=False)
        for key in keys:
            pipe.hgetall(key)
        rollups = await pipe.execute()

        needle = class_filter.lower()
        for rollup in rollups:
            for field_name, raw in (rollup or {}).items():
                class_name, metric = split_metric_field(field_name)
                if not class_name:
                    continue
                if needle and needle not in class_name.lower():
                    continue
                value = coerce_int(raw)
                if value is None:
                    continue
                result.jobs.setdefault(class_name, MetricsJobTotals()).add(metric, value)
        return result

    async def get_job_detail(self, class_name: str, period: MetricsPeriod) -> MetricsJobDetailResult:
        """
        Totals and per-minute histograms for one job class.

        Only one key shape is read, chosen by the detected broker version
        (Sidekiq 8 when unknown). Histograms exist for minutely periods only.
        """
        granularity, count, stride = metrics_rollup(period)
        now = as_utc(self._clock())
        buckets = _bucket_times(now, count, stride)
        starts_at = buckets[-1] if buckets else now
        result = MetricsJobDetailResult(granularity=granularity, starts_at=starts_at, ends_at=now)
        if not buckets:
            return result

        version = await self._versions.detect()
        if version == BrokerVersion.UNKNOWN:
            version = BrokerVersion.V8
        with_histogram = granularity == MetricsGranularity.MINUTELY

        fields = [
            f"{class_name}|{METRIC_MILLISECONDS}",
            f"{class_name}|{METRIC_PROCESSED}",
            f"{class_name}|{METRIC_FAILED}",
        ]
        hist_items = [("u16", f"#{index}") for index in range(1, HISTOGRAM_BUCKETS)]

        pipe = self._redis.pipeline(transaction=False)
        # Per bucket: whether a rollup read and a histogram read were queued.
        queued: list[tuple[bool, bool]] = []
        for at in buckets:
            rollup_key = rollup_key_for_version(at, granularity, version)
            if rollup_key:
                pipe.hmget(rollup_key, fields)
            if with_histogram:
                pipe.bitfield_ro(
                    histogram_key_for_version(class_name, at, version),
                    "u16",
                    "#0",
                    items=hist_items,
                )
            queued.append((rollup_key is not None, with_histogram))
        replies = iter(await pipe.execute())

        for at, (has_rollup, has_histogram) in zip(buckets, queued):
            if has_rollup:
                milliseconds, processed, failed = next(replies)
                for metric, raw in (
                    (METRIC_MILLISECONDS, milliseconds),
                    (METRIC_PROCESSED, processed),
                    (METRIC_FAILED, failed),
                ):
                    value = coerce_int(raw)
                    if value is not None:
                        result.totals.add(metric, value)
            if has_histogram:
                counts = decode_histogram(next(replies))
                if counts:
                    result.hist[metrics_bucket_time(at, granularity)] = counts
            result.buckets.append(at)
        return result
