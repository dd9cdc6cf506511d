from __future__ import annotations

import base64
import json
import zlib

import pytest

from kiqlens.domain.jobs import (
    ENCRYPTED_ARG_PLACEHOLDER,
    ActiveJob,
    JobPayload,
    SortedEntry,
    deserialize_argument,
)
from tests._fixtures.time import epoch_ms, fixed_clock, utc_dt

ACTIVE_JOB_WRAPPER = "ActiveJob::QueueAdapters::SidekiqAdapter::JobWrapper"


def _payload(**fields: object) -> str:
    return json.dumps(fields)


def test_typed_accessors_read_the_parsed_item() -> None:
    raw = _payload(
        queue="critical",
        jid="abc123",
        **{"class": "HardJob"},
        args=[1, "two"],
        bid="batch-1",
        tags=["alpha", 7],
        cattr={"tenant": "acme"},
        retry_count=3,
        enqueued_at=1700000000.5,
        failed_at=1700000100,
        error_class="RuntimeError",
        error_message="boom",
    )

    job = JobPayload(raw)

    assert job.value == raw
    assert job.queue == "critical"
    assert job.jid == "abc123"
    assert job.job_class == "HardJob"
    assert job.args == [1, "two"]
    assert job.bid == "batch-1"
    assert job.tags == ["alpha", "7"]
    assert job.context == {"tenant": "acme"}
    assert job.retry_count == 3
    assert job.enqueued_at == utc_dt(2023, 11, 14, 22, 13, 20, 500000)
    assert job.created_at == job.enqueued_at
    assert job.failed_at == utc_dt(2023, 11, 14, 22, 15, 0)
    assert job.retried_at is None
    assert job.has_error is True
    assert job.error_class == "RuntimeError"
    assert job.error_message == "boom"
    assert job.encrypted is False


def test_explicit_queue_name_wins_over_payload_queue() -> None:
    job = JobPayload(_payload(queue="low", **{"class": "A"}), "default", position=4)

    assert job.queue == "default"
    assert job.position == 4


def test_unparseable_payload_surfaces_raw_string_as_argument() -> None:
    job = JobPayload("not json at all", "default")

    assert job.item == {}
    assert job.args == ["not json at all"]
    assert job.display_args == ["not json at all"]
    assert job.job_class == ""
    assert job.queue == "default"


def test_empty_payload_has_no_arguments() -> None:
    job = JobPayload("")

    assert job.item == {}
    assert job.args == []
    assert job.has_error is False


def test_display_args_masks_last_argument_when_encrypted() -> None:
    plain = JobPayload(_payload(**{"class": "SecretJob"}, args=["visible", "secret"]))
    encrypted = JobPayload(
        _payload(**{"class": "SecretJob"}, args=["visible", "secret"], encrypt=True)
    )

    assert plain.display_args == plain.args
    assert encrypted.display_args == ["visible", ENCRYPTED_ARG_PLACEHOLDER]
    assert encrypted.display_args[:-1] == encrypted.args[:-1]
    # The underlying args are untouched.
    assert encrypted.args == ["visible", "secret"]


def test_active_job_wrapper_is_unwrapped() -> None:
    raw = _payload(
        **{"class": ACTIVE_JOB_WRAPPER},
        wrapped="ImportJob",
        args=[
            {
                "job_class": "ImportJob",
                "arguments": [
                    {"_aj_globalid": "gid://app/User/1"},
                    {"path": "/tmp/a.csv", "_aj_symbol_keys": ["path"]},
                ],
            }
        ],
    )

    job = JobPayload(raw)

    assert job.display_class == "ImportJob"
    assert job.display_args == ["gid://app/User/1", {"path": "/tmp/a.csv"}]


def test_wrapper_without_wrapped_field_uses_first_string_argument() -> None:
    job = JobPayload(_payload(**{"class": "Sidekiq::ActiveJob::Wrapper"}, args=["LegacyJob"]))

    assert job.display_class == "LegacyJob"


def test_wrapper_with_no_hint_keeps_adapter_class() -> None:
    job = JobPayload(_payload(**{"class": ACTIVE_JOB_WRAPPER}, args=[{"arguments": []}]))

    assert job.display_class == ACTIVE_JOB_WRAPPER


def test_mailer_delivery_job_shows_mailer_method_and_trims_arguments() -> None:
    raw = _payload(
        **{"class": ACTIVE_JOB_WRAPPER},
        wrapped="ActionMailer::DeliveryJob",
        args=[
            {
                "arguments": [
                    "UserMailer",
                    "welcome",
                    "deliver_now",
                    {"_aj_globalid": "gid://app/User/9"},
                ]
            }
        ],
    )

    job = JobPayload(raw)

    assert job.display_class == "UserMailer#welcome"
    assert job.display_args == ["gid://app/User/9"]


def test_mail_delivery_job_surfaces_params_and_args() -> None:
    raw = _payload(
        **{"class": ACTIVE_JOB_WRAPPER},
        wrapped="ActionMailer::MailDeliveryJob",
        args=[
            {
                "arguments": [
                    "InvoiceMailer",
                    "paid",
                    "deliver_later",
                    {
                        "params": {"invoice": {"_aj_globalid": "gid://app/Invoice/3"}},
                        "args": [42],
                        "_aj_ruby2_keywords": ["params", "args"],
                    },
                ]
            }
        ],
    )

    job = JobPayload(raw)

    assert job.display_class == "InvoiceMailer#paid"
    assert job.display_args == [{"invoice": "gid://app/Invoice/3"}, [42]]


def test_deserialize_argument_strips_active_job_markers() -> None:
    assert deserialize_argument([{"_aj_globalid": "gid://x"}, 1]) == ["gid://x", 1]
    assert deserialize_argument({"a": {"_aj_serialized": "x", "b": 2}}) == {"a": {"b": 2}}
    # A globalid alongside other keys is not a bare reference.
    assert deserialize_argument({"_aj_globalid": "gid://x", "k": 1}) == {"k": 1}


def test_error_backtrace_variants() -> None:
    lines = ["app/jobs/a.rb:1", "app/jobs/b.rb:2"]
    compressed = base64.b64encode(zlib.compress(json.dumps(lines).encode())).decode()

    assert JobPayload(_payload(error_backtrace=lines)).error_backtrace == lines
    assert JobPayload(_payload(error_backtrace=["x", 1])).error_backtrace == ["x", "1"]
    assert JobPayload(_payload(error_backtrace=compressed)).error_backtrace == lines
    assert JobPayload(_payload(error_backtrace="!!not-base64!!")).error_backtrace == []
    assert JobPayload(_payload()).error_backtrace == []


def test_latency_uses_enqueued_at_then_created_at() -> None:
    now = utc_dt(2023, 11, 14, 22, 13, 30)

    seconds = JobPayload(_payload(enqueued_at=1700000000.0))
    millis = JobPayload(_payload(created_at=epoch_ms(utc_dt(2023, 11, 14, 22, 13, 25))))
    unknown = JobPayload(_payload(queue="default"))

    assert seconds.latency(now) == pytest.approx(10.0)
    assert millis.latency(now) == pytest.approx(5.0)
    assert unknown.latency(now) == 0.0


@pytest.mark.parametrize(
    ("encrypt", "expected"),
    [(True, True), ("true", True), ("1", True), (False, False), ("0", False), ("on", True)],
)
def test_encrypt_flag_spellings(encrypt: object, expected: bool) -> None:
    assert JobPayload(_payload(encrypt=encrypt)).encrypted is expected


def test_sorted_entry_and_active_job_extend_the_payload() -> None:
    entry = SortedEntry(_payload(queue="default", jid="j1"), 1700000000.25)
    active = ActiveJob(
        _payload(jid="j2"),
        "mailers",
        process_identity="host:1:abc",
        thread_id="t1",
        run_at=utc_dt(2023, 11, 14),
    )

    assert entry.queue == "default"
    assert entry.at == utc_dt(2023, 11, 14, 22, 13, 20, 250000)
    assert active.jid == "j2"
    assert active.queue == "mailers"
    assert active.process_identity == "host:1:abc"
    assert active.thread_id == "t1"


def test_latency_defaults_to_the_injected_clock() -> None:
    clock = fixed_clock(utc_dt(2023, 11, 14, 22, 13, 50))

    job = JobPayload(_payload(enqueued_at=1700000000.0), clock=clock)
    entry = SortedEntry(_payload(enqueued_at=1700000000.0), 1700000000.0, clock=clock)

    assert job.latency() == pytest.approx(30.0)
    assert entry.latency() == pytest.approx(30.0)
