"""Time helpers shared by every decoder.

Sidekiq 7 stores timestamps as float seconds (``1703000000.123``), Sidekiq 8
as integer milliseconds (``1703000000123``). Anything above 10**12 is read as
milliseconds.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import StrEnum

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

MILLISECONDS_THRESHOLD = 1e12

Clock = Callable[[], datetime]


class TimestampFormat(StrEnum):
    """Wire format of job timestamps."""

    SECONDS = "seconds"
    MILLISECONDS = "milliseconds"


def utc_now() -> datetime:
    return datetime.now(UTC)


def is_milliseconds(value: float) -> bool:
    return value > MILLISECONDS_THRESHOLD


def from_epoch(value: float) -> datetime | None:
    """Convert an epoch number (seconds or milliseconds) to a UTC datetime."""
    if value <= 0:
        return None
    seconds = value / 1000.0 if is_milliseconds(value) else value
    return EPOCH + timedelta(seconds=seconds)


def to_epoch_seconds(value: datetime) -> float:
    return (as_utc(value) - EPOCH).total_seconds()


def age_seconds(timestamp: float, now: datetime) -> float:
    """Seconds elapsed between an epoch timestamp and ``now``."""
    if is_milliseconds(timestamp):
        now_ms = (as_utc(now) - EPOCH) // timedelta(milliseconds=1)
        return (now_ms - timestamp) / 1000.0
    return to_epoch_seconds(now) - timestamp


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_timestamp(now: datetime, fmt: TimestampFormat) -> int | Decimal:
    """Render ``now`` in the given wire format without binary float rounding.

    Milliseconds are an integer; seconds are a decimal with microsecond
    resolution and no trailing zeros (``1700000000.123456``, ``1700000000.5``).
    """
    delta = as_utc(now) - EPOCH
    if fmt == TimestampFormat.MILLISECONDS:
        return delta // timedelta(milliseconds=1)

    micros = delta // timedelta(microseconds=1)
    whole, frac = divmod(micros, 1_000_000)
    if frac == 0:
        return Decimal(whole)
    return Decimal(f"{whole}.{frac:06d}".rstrip("0"))


def score_now(now: datetime) -> float:
    """Sorted-set score for ``now``: float seconds at microsecond resolution."""
    micros = (as_utc(now) - EPOCH) // timedelta(microseconds=1)
    return micros / 1_000_000
