"""Redis readers and mutators for Sidekiq state."""

from kiqlens.services.metrics import (
    HISTOGRAM_LABELS,
    METRICS_PERIOD_ORDER,
    METRICS_PERIODS,
    MetricsGranularity,
    MetricsJobDetailResult,
    MetricsJobTotals,
    MetricsPeriod,
    MetricsReader,
    MetricsTopJobsResult,
    metrics_period_order,
)
from kiqlens.services.mutations import SortedSetMutator, build_queue_payload
from kiqlens.services.processes import BusyData, Capsule, Process, ProcessReader
from kiqlens.services.queues import Queue, QueueReader
from kiqlens.services.sorted_sets import SortedSetReader
from kiqlens.services.stats import (
    DashboardRealtime,
    RedisInfo,
    Stats,
    StatsHistory,
    StatsReader,
    parse_info,
)

__all__ = [
    "HISTOGRAM_LABELS",
    "METRICS_PERIODS",
    "METRICS_PERIOD_ORDER",
    "BusyData",
    "Capsule",
    "DashboardRealtime",
    "MetricsGranularity",
    "MetricsJobDetailResult",
    "MetricsJobTotals",
    "MetricsPeriod",
    "MetricsReader",
    "MetricsTopJobsResult",
    "Process",
    "ProcessReader",
    "Queue",
    "QueueReader",
    "RedisInfo",
    "SortedSetMutator",
    "SortedSetReader",
    "Stats",
    "StatsHistory",
    "StatsReader",
    "build_queue_payload",
    "metrics_period_order",
    "parse_info",
]
