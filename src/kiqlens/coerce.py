"""Permissive decoding of broker-side values.

Sidekiq writes the same field as a JSON number, a string, or a Redis bulk
string depending on version and writer. Everything that reads broker data
goes through these helpers and gets a typed value or ``None``.
"""

from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from typing import Any

from kiqlens.time_utils import TimestampFormat, from_epoch, is_milliseconds
from kiqlens.version import BrokerVersion

TIMESTAMP_FIELDS = ("enqueued_at", "created_at", "failed_at", "retried_at")

_TRUE = {"true", "1"}
_FALSE = {"false", "0"}


def _text(value: Any) -> str | None:
    if isinstance(value, bytes):
        value = value.decode()
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        try:
            return int(value)
        except (OverflowError, ValueError):
            return None
    text = _text(value)
    if text is None:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def coerce_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    text = _text(value)
    if text is None:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    text = _text(value)
    if text is None:
        return None
    lowered = text.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    return None


def coerce_time(value: Any) -> datetime | None:
    """Epoch seconds or milliseconds (any numeric spelling) to a UTC datetime."""
    number = coerce_float(value)
    if number is None:
        return None
    return from_epoch(number)


def detect_timestamp_format(
    payload: Mapping[str, Any], version: BrokerVersion
) -> TimestampFormat:
    """Pick the timestamp format a payload already uses, else the version default."""
    for field in TIMESTAMP_FIELDS:
        number = coerce_float(payload.get(field))
        if number is None:
            continue
        if is_milliseconds(number):
            return TimestampFormat.MILLISECONDS
        return TimestampFormat.SECONDS

    if version == BrokerVersion.V7:
        return TimestampFormat.SECONDS
    return TimestampFormat.MILLISECONDS
