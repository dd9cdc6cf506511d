"""Job payload domain models."""

from kiqlens.domain.jobs import (
    ActiveJob,
    JobPayload,
    SortedEntry,
    deserialize_argument,
)

__all__ = ["ActiveJob", "JobPayload", "SortedEntry", "deserialize_argument"]
