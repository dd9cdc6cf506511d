from __future__ import annotations

from decimal import Decimal

import pytest

from kiqlens.coerce import (
    coerce_bool,
    coerce_float,
    coerce_int,
    coerce_time,
    detect_timestamp_format,
)
from kiqlens.errors import MalformedPayloadError
from kiqlens.json_utils import dumps_lossless, loads_lossless, safe_parse_json
from kiqlens.time_utils import TimestampFormat, format_timestamp, score_now
from kiqlens.version import BrokerVersion
from tests._fixtures.time import utc_dt


def test_coerce_int_accepts_broker_spellings() -> None:
    assert coerce_int(42) == 42
    assert coerce_int("42") == 42
    assert coerce_int(" 7 ") == 7
    assert coerce_int(b"5") == 5
    assert coerce_int(Decimal("3.9")) == 3
    assert coerce_int(2.0) == 2


def test_coerce_int_rejects_unknown_values() -> None:
    assert coerce_int(None) is None
    assert coerce_int("") is None
    assert coerce_int("abc") is None
    assert coerce_int("1.5") is None
    assert coerce_int(True) is None
    assert coerce_int([1]) is None


def test_coerce_float_and_bool() -> None:
    assert coerce_float("1.5") == 1.5
    assert coerce_float(Decimal("1700000000.5")) == 1700000000.5
    assert coerce_float(3) == 3.0
    assert coerce_float("nope") is None
    assert coerce_float(False) is None

    assert coerce_bool(True) is True
    assert coerce_bool("true") is True
    assert coerce_bool("1") is True
    assert coerce_bool("FALSE") is False
    assert coerce_bool("0") is False
    assert coerce_bool("yes") is None
    assert coerce_bool("") is None


def test_coerce_time_handles_seconds_and_milliseconds() -> None:
    assert coerce_time(1700000000) == utc_dt(2023, 11, 14, 22, 13, 20)
    assert coerce_time("1700000000") == utc_dt(2023, 11, 14, 22, 13, 20)
    assert coerce_time(1700000000123) == utc_dt(2023, 11, 14, 22, 13, 20, 123000)
    assert coerce_time(Decimal("1700000000.5")) == utc_dt(2023, 11, 14, 22, 13, 20, 500000)
    assert coerce_time(0) is None
    assert coerce_time("") is None


def test_detect_timestamp_format_uses_first_numeric_field() -> None:
    assert (
        detect_timestamp_format({"enqueued_at": 1700000000123}, BrokerVersion.V7)
        == TimestampFormat.MILLISECONDS
    )
    assert (
        detect_timestamp_format({"created_at": Decimal("1700000000.5")}, BrokerVersion.V8)
        == TimestampFormat.SECONDS
    )
    # enqueued_at is checked before created_at.
    assert (
        detect_timestamp_format(
            {"created_at": 1700000000123, "enqueued_at": Decimal("1700000000.5")},
            BrokerVersion.V8,
        )
        == TimestampFormat.SECONDS
    )
    # Non-numeric candidates are skipped.
    assert (
        detect_timestamp_format(
            {"enqueued_at": "soon", "failed_at": 1700000000123}, BrokerVersion.V7
        )
        == TimestampFormat.MILLISECONDS
    )


@pytest.mark.parametrize(
    ("version", "expected"),
    [
        (BrokerVersion.V7, TimestampFormat.SECONDS),
        (BrokerVersion.V8, TimestampFormat.MILLISECONDS),
        (BrokerVersion.UNKNOWN, TimestampFormat.MILLISECONDS),
    ],
)
def test_detect_timestamp_format_falls_back_to_version_default(
    version: BrokerVersion, expected: TimestampFormat
) -> None:
    assert detect_timestamp_format({"queue": "default"}, version) == expected


def test_safe_parse_json_rejects_trailing_input_and_non_objects() -> None:
    with pytest.raises(MalformedPayloadError):
        safe_parse_json('{"queue":"default"} {"queue":"other"}')
    with pytest.raises(MalformedPayloadError):
        safe_parse_json("[1, 2]")
    with pytest.raises(MalformedPayloadError):
        safe_parse_json("{not json")

    assert safe_parse_json(' {"queue":"default"}\n') == {"queue": "default"}


def test_lossless_round_trip_keeps_numeric_text() -> None:
    raw = (
        '{"queue":"default","enqueued_at":1700000000.500,'
        '"created_at":1.7e9,"retry_count":2,"args":[1,"two",3.10]}'
    )

    payload = safe_parse_json(raw)

    assert isinstance(payload["enqueued_at"], Decimal)
    assert payload["retry_count"] == 2
    assert dumps_lossless(payload) == raw


def test_dumps_lossless_writes_unicode_and_nested_values() -> None:
    payload = loads_lossless('{"name":"café","tags":["a"],"nested":{"x":null,"y":true}}')

    assert dumps_lossless(payload) == '{"name":"café","tags":["a"],"nested":{"x":null,"y":true}}'
    assert dumps_lossless({"at": Decimal("1700000000.123456")}) == '{"at":1700000000.123456}'


def test_format_timestamp_matches_wire_formats() -> None:
    now = utc_dt(2023, 11, 14, 22, 13, 20, 123456)

    assert format_timestamp(now, TimestampFormat.MILLISECONDS) == 1700000000123
    assert str(format_timestamp(now, TimestampFormat.SECONDS)) == "1700000000.123456"
    assert str(format_timestamp(utc_dt(2023, 11, 14, 22, 13, 20), TimestampFormat.SECONDS)) == (
        "1700000000"
    )
    assert str(
        format_timestamp(utc_dt(2023, 11, 14, 22, 13, 20, 500000), TimestampFormat.SECONDS)
    ) == "1700000000.5"
    assert score_now(now) == pytest.approx(1700000000.123456)


@pytest.mark.parametrize("token", ["NaN", "Infinity", "-Infinity"])
def test_safe_parse_json_rejects_non_json_constants(token: str) -> None:
    with pytest.raises(MalformedPayloadError):
        safe_parse_json(f'{{"queue":"default","args":[{token}]}}')

    with pytest.raises(ValueError):
        loads_lossless(f'{{"enqueued_at":{token}}}')
