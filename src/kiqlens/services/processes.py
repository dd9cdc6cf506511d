"""Worker process snapshots and the jobs they are running.

Redis key structure (written by each Sidekiq process):
    processes                -> SET of identities ("hostname:pid:nonce")
    {identity}               -> HASH info (JSON), busy, beat, quiet, rss (KiB), rtt_us
    {identity}:work          -> HASH tid -> {"queue", "payload", "run_at"} JSON
    {identity}-signals       -> LIST of pending signals (TSTP, TERM), 60s TTL
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from kiqlens.coerce import coerce_bool, coerce_int, coerce_time
from kiqlens.domain.jobs import ActiveJob
from kiqlens.errors import InvalidArgumentError
from kiqlens.json_utils import dumps_lossless, loads_lossless
from kiqlens.keys import PROCESSES_KEY, process_signals_key, process_work_key
from kiqlens.time_utils import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_CAPSULE_NAME = "default"

PROCESS_FIELDS = ("info", "busy", "beat", "quiet", "rss", "rtt_us")

SIGNAL_PAUSE = "TSTP"
SIGNAL_STOP = "TERM"
SIGNAL_TTL_SECONDS = 60

STATUS_RUNNING = "running"
STATUS_PAUSING = "pausing"
STATUS_QUIET = "quiet"
STATUS_STOPPING = "stopping"


class _InfoModel(BaseModel):
    """Lenient base: unknown keys are ignored and JSON nulls mean "unset"."""

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class _CapsuleInfo(_InfoModel):
    concurrency: int = 0
    mode: str = ""
    weights: dict[str, int] = Field(default_factory=dict)


class _ProcessInfo(_InfoModel):
    """Typed subset of the ``info`` JSON a Sidekiq process publishes."""

    hostname: str = ""
    started_at: Any = None
    pid: int = 0
    tag: str = ""
    concurrency: int = 0
    queues: list[str] = Field(default_factory=list)
    # Sidekiq 7.0 wrote a single hash, later versions a list of hashes.
    weights: Any = None
    capsules: dict[str, _CapsuleInfo] = Field(default_factory=dict)
    identity: str = ""


class _WorkEntry(_InfoModel):
    queue: str = ""
    payload: str | dict[str, Any] = ""
    run_at: Any = None


@dataclass(frozen=True)
class Capsule:
    """A named group of queues with its own concurrency and fetch mode."""

    concurrency: int
    mode: str
    weights: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class BusyData:
    """Live processes and the jobs they are executing."""

    processes: list["Process"] = field(default_factory=list)
    jobs: list[ActiveJob] = field(default_factory=list)


def parse_weighted_queue(queue: str) -> tuple[str, int | None]:
    """Split ``"name,weight"``; the weight is None for a plain queue name."""
    name, sep, weight = queue.partition(",")
    if not sep:
        return queue, None
    name = name.strip()
    parsed = coerce_int(weight)
    if not name or parsed is None:
        return queue, None
    return name, parsed


def parse_queue_weights(raw: Any) -> dict[str, int]:
    """Decode either historical ``weights`` shape into a single map."""
    maps: list[Any]
    if isinstance(raw, list):
        maps = raw
    elif isinstance(raw, dict):
        maps = [raw]
    else:
        return {}

    merged: dict[str, int] = {}
    for entry in maps:
        if not isinstance(entry, dict):
            continue
        for name, weight in entry.items():
            parsed = coerce_int(weight)
            if parsed is not None:
                merged[str(name)] = parsed
    return merged


def capsule_mode(weights: dict[str, int]) -> str:
    """Fetch mode implied by queue weights."""
    if not weights:
        return ""
    values = set(weights.values())
    if values == {0}:
        return "strict"
    if values == {1}:
        return "random"
    return "weighted"


def _process_status(quiet: bool, signals: list[str]) -> str:
    if SIGNAL_STOP in signals:
        return STATUS_STOPPING
    if quiet:
        return STATUS_QUIET
    if SIGNAL_PAUSE in signals:
        return STATUS_PAUSING
    return STATUS_RUNNING


def _parse_process_info(raw: Any) -> _ProcessInfo | None:
    if not raw or not isinstance(raw, str):
        return None
    try:
        payload = loads_lossless(raw)
    except ValueError as e:
        logger.debug("Unparseable process info: %s", e)
        return None
    if not isinstance(payload, dict):
        return None
    try:
        return _ProcessInfo.model_validate(payload)
    except ValidationError as e:
        logger.debug("Invalid process info: %s", e)
        return None


class Process:
    """
    A Sidekiq worker process.

    ``rss`` is in bytes (Sidekiq stores KiB). ``capsules`` holds the declared
    capsules, or a synthesised ``default`` capsule for processes that only
    publish top-level queues.
    """

    def __init__(self, identity: str, redis_client: Any, clock: Clock = utc_now) -> None:
        self.identity = identity
        self._redis = redis_client
        self._clock = clock
        self._reset()

    def __repr__(self) -> str:
        return f"Process({self.identity!r}, status={self.status!r})"

    def _reset(self) -> None:
        self.hostname = ""
        self.pid = 0
        self.tag = ""
        self.concurrency = 0
        self.busy = 0
        self.beat: datetime | None = None
        self.quiet = False
        self.status = STATUS_RUNNING
        self.rss = 0
        self.rtt_us = 0
        self.started_at: datetime | None = None
        self.queues: list[str] = []
        self.weights: dict[str, int] = {}
        self.capsules: dict[str, Capsule] = {}

    @property
    def valid(self) -> bool:
        """Whether the published info declared any queues or capsules."""
        return bool(self.capsules or self.queues)

    @property
    def identified(self) -> bool:
        return bool(self.hostname) and self.pid != 0

    async def refresh(self) -> "Process":
        """Reload the process hash and pending signals in one round trip."""
        pipe = self._redis.pipeline(transaction=False)
        pipe.hmget(self.identity, list(PROCESS_FIELDS))
        pipe.lrange(process_signals_key(self.identity), 0, -1)
        fields, signals = await pipe.execute()
        self.apply_fields(fields)
        self.apply_signals(signals)
        return self

    async def get_jobs(self, filter: str = "") -> list[ActiveJob]:
        """Jobs this process is running; ``filter`` matches the raw work JSON."""
        work = await self._redis.hgetall(process_work_key(self.identity))
        return self.parse_work(work, filter)

    async def pause(self) -> None:
        """Ask the process to stop fetching new jobs (quiet)."""
        await self._signal(SIGNAL_PAUSE)

    async def stop(self) -> None:
        """Ask the process to shut down."""
        await self._signal(SIGNAL_STOP)

    async def _signal(self, signal: str) -> None:
        if not self.identity:
            raise InvalidArgumentError("process identity is empty")
        key = process_signals_key(self.identity)
        pipe = self._redis.pipeline(transaction=True)
        pipe.lpush(key, signal)
        pipe.expire(key, SIGNAL_TTL_SECONDS)
        await pipe.execute()

    def apply_fields(self, fields: list[Any] | None) -> None:
        """Populate from an HMGET of ``PROCESS_FIELDS``."""
        self._reset()
        values = list(fields or [])
        values.extend([None] * (len(PROCESS_FIELDS) - len(values)))
        info, busy, beat, quiet, rss, rtt_us = values[: len(PROCESS_FIELDS)]

        self._apply_info(_parse_process_info(info))
        if not self.identified:
            parts = self.identity.split(":")
            if len(parts) >= 2:
                self.hostname = parts[0]
                self.pid = coerce_int(parts[1]) or self.pid

        self.busy = coerce_int(busy) or 0
        self.beat = coerce_time(beat)
        self.quiet = bool(coerce_bool(quiet))
        self.rss = (coerce_int(rss) or 0) * 1024
        self.rtt_us = coerce_int(rtt_us) or 0
        self.status = _process_status(self.quiet, [])

    def apply_signals(self, signals: list[str] | None) -> None:
        self.status = _process_status(self.quiet, list(signals or []))

    def _apply_info(self, info: _ProcessInfo | None) -> None:
        if info is None:
            return
        self.hostname = info.hostname
        self.pid = info.pid
        self.tag = info.tag
        self.concurrency = info.concurrency
        self.started_at = coerce_time(info.started_at)
        if not self.identity and info.identity:
            self.identity = info.identity

        inline_weights: dict[str, int] = {}
        for entry in info.queues:
            name, weight = parse_weighted_queue(entry)
            self.queues.append(name)
            if weight is not None:
                inline_weights[name] = weight
        self.weights = {**inline_weights, **parse_queue_weights(info.weights)}

        if info.capsules:
            self.capsules = {
                name: Capsule(
                    concurrency=capsule.concurrency,
                    mode=capsule.mode,
                    weights=dict(capsule.weights),
                )
                for name, capsule in info.capsules.items()
            }
            return

        weights = dict(self.weights)
        for name in self.queues:
            weights.setdefault(name, 0)
        if weights:
            self.capsules = {
                DEFAULT_CAPSULE_NAME: Capsule(
                    concurrency=info.concurrency,
                    mode=capsule_mode(weights),
                    weights=weights,
                )
            }

    def parse_work(self, work: dict[str, str] | None, filter: str = "") -> list[ActiveJob]:
        """Decode a work hash into active jobs, ordered by thread id."""
        jobs: list[ActiveJob] = []
        for tid in sorted(work or {}):
            raw = work[tid]
            if filter and filter not in raw:
                continue
            try:
                entry = _WorkEntry.model_validate(loads_lossless(raw))
            except (ValueError, ValidationError) as e:
                logger.debug("Skipping work entry %s on %s: %s", tid, self.identity, e)
                continue

            payload = entry.payload
            if isinstance(payload, dict):
                payload = dumps_lossless(payload)
            jobs.append(
                ActiveJob(
                    payload,
                    entry.queue,
                    process_identity=self.identity,
                    thread_id=tid,
                    run_at=coerce_time(entry.run_at),
                    clock=self._clock,
                )
            )
        return jobs


class ProcessReader:
    """Enumerates worker processes and their active jobs."""

    def __init__(self, redis_client: Any, clock: Clock = utc_now) -> None:
        self._redis = redis_client
        self._clock = clock

    def process(self, identity: str) -> Process:
        return Process(identity, self._redis, self._clock)

    async def get_processes(self) -> list[Process]:
        """Process handles sorted by identity (not yet refreshed)."""
        identities = await self._redis.smembers(PROCESSES_KEY)
        return [self.process(identity) for identity in sorted(identities or [])]

    async def get_busy_data(self, filter: str = "") -> BusyData:
        """
        Snapshot every live process and its running jobs.

        All per-process reads go out in one pipeline. Processes whose hash
        cannot be read or that publish no usable info are skipped; the rest
        still report.
        """
        processes = await self.get_processes()
        if not processes:
            return BusyData()

        pipe = self._redis.pipeline(transaction=False)
        for process in processes:
            pipe.hmget(process.identity, list(PROCESS_FIELDS))
            pipe.lrange(process_signals_key(process.identity), 0, -1)
            pipe.hgetall(process_work_key(process.identity))
        results = await pipe.execute(raise_on_error=False)

        data = BusyData()
        for index, process in enumerate(processes):
            fields, signals, work = results[index * 3 : index * 3 + 3]
            if isinstance(fields, Exception):
                logger.debug("Skipping process %s: %s", process.identity, fields)
                continue
            process.apply_fields(fields)
            if not isinstance(signals, Exception):
                process.apply_signals(signals)

            if not process.identified or not process.valid:
                logger.debug(
                    "Skipping process %s without usable info",
                    process.identity,
                    extra={"identity": process.identity},
                )
                continue
            data.processes.append(process)

            if isinstance(work, Exception):
                logger.debug("Could not read work for %s: %s", process.identity, work)
                continue
            data.jobs.extend(process.parse_work(work, filter))
        return data
