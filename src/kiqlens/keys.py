"""Sidekiq Redis key schema.

Redis key structure (written by Sidekiq):
    stat:processed / stat:failed                 -> STRING counters
    stat:processed:YYYY-MM-DD / stat:failed:...  -> STRING per-day counters
    processes                                    -> SET of process identities
    queues                                       -> SET of queue names
    queue:{name}                                 -> LIST (LPUSH head = newest)
    retry / schedule / dead                      -> ZSET (score = epoch seconds)
    {identity}                                   -> HASH info/busy/beat/quiet/rss/rtt_us
    {identity}:work                              -> HASH tid -> work JSON
    {identity}-signals                           -> LIST of pending signals
    j|YYMMDD|H:MM (v8) / j|YYYYMMDD|H:M (v7)     -> HASH metrics rollup
    h|{class}-D-H:M (v8) / {class}-DD-HH:M (v7)  -> BITFIELD histogram
"""

from datetime import date

STAT_PROCESSED_KEY = "stat:processed"
STAT_FAILED_KEY = "stat:failed"

PROCESSES_KEY = "processes"
QUEUES_KEY = "queues"
QUEUE_KEY_PREFIX = "queue:"

RETRY_SET_KEY = "retry"
SCHEDULE_SET_KEY = "schedule"
DEAD_SET_KEY = "dead"

SORTED_SET_KEYS = (RETRY_SET_KEY, SCHEDULE_SET_KEY, DEAD_SET_KEY)

# SCAN pattern for metrics rollup hashes of either version.
METRICS_ROLLUP_PATTERN = "j|*"


def queue_key(name: str) -> str:
    """Redis list key for a queue."""
    return f"{QUEUE_KEY_PREFIX}{name}"


def stat_processed_day_key(day: date) -> str:
    return f"{STAT_PROCESSED_KEY}:{day.isoformat()}"


def stat_failed_day_key(day: date) -> str:
    return f"{STAT_FAILED_KEY}:{day.isoformat()}"


def process_work_key(identity: str) -> str:
    """Hash of thread id -> currently running work for a process."""
    return f"{identity}:work"


def process_signals_key(identity: str) -> str:
    """List of pending signals (TSTP, TERM) for a process."""
    return f"{identity}-signals"
