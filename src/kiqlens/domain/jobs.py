"""Job payload models.

A Sidekiq job is a JSON object stored verbatim in a list (queues), a sorted
set (retry/schedule/dead) or a process work hash (running jobs). The raw
string is kept as-is so admin actions can address the exact Redis member.
"""

from __future__ import annotations

import base64
import json
import zlib
from datetime import datetime
from functools import cached_property
from typing import Any

from kiqlens.coerce import coerce_bool, coerce_float, coerce_int, coerce_time
from kiqlens.json_utils import loads_lossless
from kiqlens.time_utils import Clock, age_seconds, from_epoch, utc_now

ACTIVE_JOB_WRAPPERS = frozenset(
    {
        "ActiveJob::QueueAdapters::SidekiqAdapter::JobWrapper",
        "Sidekiq::ActiveJob::Wrapper",
    }
)
ACTION_MAILER_DELIVERY_JOB = "ActionMailer::DeliveryJob"
ACTION_MAILER_MAIL_DELIVERY_JOB = "ActionMailer::MailDeliveryJob"
MAILER_JOBS = frozenset({ACTION_MAILER_DELIVERY_JOB, ACTION_MAILER_MAIL_DELIVERY_JOB})

ENCRYPTED_ARG_PLACEHOLDER = "[encrypted data]"

_ACTIVE_JOB_PREFIX = "_aj_"
_GLOBAL_ID_KEY = "_aj_globalid"


class JobPayload:
    """
    A parsed Sidekiq job payload.

    Mirrors Sidekiq::JobRecord. Numbers are decoded losslessly (floats as
    Decimal). An unparseable payload exposes an empty item and the raw
    string as its only argument so it can still be inspected.
    """

    def __init__(
        self,
        value: str,
        queue: str = "",
        *,
        position: int = 0,
        clock: Clock = utc_now,
    ) -> None:
        self.value = value
        self.position = position
        self._clock = clock
        self._args: list[Any] | None = None

        item: Any = None
        if value:
            try:
                item = loads_lossless(value)
            except ValueError:
                item = None
            if not isinstance(item, dict):
                item = None
                self._args = [value]
        self.item: dict[str, Any] = item or {}

        if not queue:
            raw_queue = self.item.get("queue")
            queue = raw_queue if isinstance(raw_queue, str) else ""
        self.queue = queue

    def __repr__(self) -> str:
        return f"{type(self).__name__}(jid={self.jid!r}, class={self.job_class!r}, queue={self.queue!r})"

    def _str(self, field: str) -> str:
        value = self.item.get(field)
        return value if isinstance(value, str) else ""

    @property
    def jid(self) -> str:
        return self._str("jid")

    @property
    def job_class(self) -> str:
        """The class Sidekiq will execute."""
        return self._str("class")

    @property
    def bid(self) -> str:
        return self._str("bid")

    @property
    def error_class(self) -> str:
        return self._str("error_class")

    @property
    def error_message(self) -> str:
        return self._str("error_message")

    @property
    def has_error(self) -> bool:
        return "error_class" in self.item

    @property
    def args(self) -> list[Any]:
        if self._args is not None:
            return self._args
        args = self.item.get("args")
        return args if isinstance(args, list) else []

    @property
    def context(self) -> dict[str, Any] | None:
        """Current attributes (cattr) captured when the job was pushed."""
        cattr = self.item.get("cattr")
        return cattr if isinstance(cattr, dict) else None

    @property
    def tags(self) -> list[str]:
        tags = self.item.get("tags")
        if not isinstance(tags, list):
            return []
        return [tag if isinstance(tag, str) else str(tag) for tag in tags]

    @property
    def retry_count(self) -> int:
        return coerce_int(self.item.get("retry_count")) or 0

    @property
    def encrypted(self) -> bool:
        raw = self.item.get("encrypt")
        flag = coerce_bool(raw)
        if flag is not None:
            return flag
        return raw is not None

    @property
    def enqueued_at(self) -> datetime | None:
        return coerce_time(self.item.get("enqueued_at"))

    @property
    def created_at(self) -> datetime | None:
        """Created timestamp, falling back to enqueued_at."""
        return coerce_time(self.item.get("created_at")) or self.enqueued_at

    @property
    def failed_at(self) -> datetime | None:
        return coerce_time(self.item.get("failed_at"))

    @property
    def retried_at(self) -> datetime | None:
        return coerce_time(self.item.get("retried_at"))

    @property
    def is_wrapped(self) -> bool:
        return self.job_class in ACTIVE_JOB_WRAPPERS

    def latency(self, now: datetime | None = None) -> float:
        """Seconds since the job was enqueued (or created), 0 if unknown.

        ``now`` defaults to the clock the payload was read with.
        """
        timestamp = coerce_float(self.item.get("enqueued_at"))
        if not timestamp:
            timestamp = coerce_float(self.item.get("created_at"))
        if not timestamp:
            return 0.0
        return age_seconds(timestamp, now or self._clock())

    @cached_property
    def display_class(self) -> str:
        """Human-friendly class name with ActiveJob/ActionMailer unwrapped."""
        klass = self.job_class
        if not self.is_wrapped:
            return klass

        display = klass
        wrapped = self.item.get("wrapped")
        if isinstance(wrapped, str):
            display = wrapped
        elif self.args and isinstance(self.args[0], str):
            display = self.args[0]

        if display in MAILER_JOBS:
            arguments = self._active_job_arguments()
            if (
                arguments is not None
                and len(arguments) >= 2
                and isinstance(arguments[0], str)
                and isinstance(arguments[1], str)
            ):
                display = f"{arguments[0]}#{arguments[1]}"
        return display

    @cached_property
    def display_args(self) -> list[Any]:
        """Arguments as the job itself sees them."""
        if not self.is_wrapped:
            display = list(self.args)
            if display and self.encrypted:
                display[-1] = ENCRYPTED_ARG_PLACEHOLDER
            return display

        wrapped = self.item.get("wrapped")
        job_args: list[Any] = []
        if isinstance(wrapped, str):
            job_args = self._active_job_arguments() or []
            job_class = wrapped
        else:
            job_class = self.args[0] if self.args and isinstance(self.args[0], str) else ""

        if job_class in MAILER_JOBS:
            # Drop mailer class, method and delivery mode.
            job_args = job_args[3:]
        if job_class == ACTION_MAILER_MAIL_DELIVERY_JOB and job_args:
            params = job_args[0]
            if isinstance(params, dict):
                job_args = [params.get("params"), params.get("args")]
            else:
                job_args = []
        return job_args

    @cached_property
    def error_backtrace(self) -> list[str]:
        """Backtrace lines; Sidekiq may store them zlib-compressed and base64'd."""
        raw = self.item.get("error_backtrace")
        if isinstance(raw, list):
            return [line if isinstance(line, str) else str(line) for line in raw]
        if isinstance(raw, str):
            return _decode_compressed_backtrace(raw)
        return []

    def _active_job_arguments(self) -> list[Any] | None:
        args = self.args
        if not args or not isinstance(args[0], dict) or "arguments" not in args[0]:
            return None
        deserialized = deserialize_argument(args[0]["arguments"])
        return deserialized if isinstance(deserialized, list) else None


class SortedEntry(JobPayload):
    """A job stored in the retry, schedule or dead sorted set."""

    def __init__(self, value: str, score: float, *, clock: Clock = utc_now) -> None:
        super().__init__(value, clock=clock)
        self.score = score

    @property
    def at(self) -> datetime | None:
        """The score as a UTC instant (retry time, run time or death time)."""
        return from_epoch(self.score)


class ActiveJob(JobPayload):
    """A job currently executing on a Sidekiq process thread."""

    def __init__(
        self,
        value: str,
        queue: str = "",
        *,
        process_identity: str,
        thread_id: str,
        run_at: datetime | None = None,
        clock: Clock = utc_now,
    ) -> None:
        super().__init__(value, queue, clock=clock)
        self.process_identity = process_identity
        self.thread_id = thread_id
        self.run_at = run_at


def deserialize_argument(argument: Any) -> Any:
    """Strip ActiveJob serialization markers from an argument tree."""
    if isinstance(argument, list):
        return [deserialize_argument(item) for item in argument]
    if isinstance(argument, dict):
        if len(argument) == 1 and _GLOBAL_ID_KEY in argument:
            return argument[_GLOBAL_ID_KEY]
        return {
            key: deserialize_argument(item)
            for key, item in argument.items()
            if not key.startswith(_ACTIVE_JOB_PREFIX)
        }
    return argument


def _decode_compressed_backtrace(raw: str) -> list[str]:
    try:
        decoded = zlib.decompress(base64.b64decode(raw, validate=True))
        lines = json.loads(decoded)
    except (ValueError, zlib.error):
        return []
    if not isinstance(lines, list):
        return []
    return [line if isinstance(line, str) else str(line) for line in lines]
