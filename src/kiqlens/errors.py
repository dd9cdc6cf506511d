"""Exceptions raised by kiqlens mutation paths.

Read paths are best-effort and never raise these; transport failures surface
as ``redis.exceptions`` errors and are propagated unchanged.
"""


class KiqlensError(Exception):
    """Base class for kiqlens errors."""


class NotFoundError(KiqlensError):
    """Raised when a mutation targets an entry that is no longer in its set."""


class MalformedPayloadError(KiqlensError):
    """Raised when a job payload cannot be decoded or lacks a required field."""


class InvalidArgumentError(KiqlensError, ValueError):
    """Raised when a mutation is called without a usable entry."""


__all__ = [
    "KiqlensError",
    "NotFoundError",
    "MalformedPayloadError",
    "InvalidArgumentError",
]
