"""kiqlens - typed, asyncio access to a Sidekiq deployment's Redis state."""

from kiqlens.client import Client
from kiqlens.config import Settings, display_redis_url, get_settings
from kiqlens.domain import ActiveJob, JobPayload, SortedEntry
from kiqlens.errors import (
    InvalidArgumentError,
    KiqlensError,
    MalformedPayloadError,
    NotFoundError,
)
from kiqlens.services import (
    METRICS_PERIOD_ORDER,
    METRICS_PERIODS,
    BusyData,
    Capsule,
    DashboardRealtime,
    MetricsGranularity,
    MetricsJobDetailResult,
    MetricsJobTotals,
    MetricsPeriod,
    MetricsTopJobsResult,
    Process,
    Queue,
    RedisInfo,
    Stats,
    StatsHistory,
)
from kiqlens.version import BrokerVersion

__version__ = "0.1.0"

__all__ = [
    "ActiveJob",
    "BrokerVersion",
    "BusyData",
    "Capsule",
    "Client",
    "DashboardRealtime",
    "InvalidArgumentError",
    "JobPayload",
    "KiqlensError",
    "METRICS_PERIODS",
    "METRICS_PERIOD_ORDER",
    "MalformedPayloadError",
    "MetricsGranularity",
    "MetricsJobDetailResult",
    "MetricsJobTotals",
    "MetricsPeriod",
    "MetricsTopJobsResult",
    "NotFoundError",
    "Process",
    "Queue",
    "RedisInfo",
    "Settings",
    "SortedEntry",
    "Stats",
    "StatsHistory",
    "display_redis_url",
    "get_settings",
]
