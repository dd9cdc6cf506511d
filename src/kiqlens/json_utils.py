"""Lossless JSON decode/encode for job payloads.

Sidekiq 7 writes ``enqueued_at`` as float seconds and Sidekiq 8 as integer
milliseconds. Floats decode to ``JSONNumber``, a ``Decimal`` that remembers
the token it was read from, so a payload can be edited and written back
without reformatting numbers the workers will read.
"""

import json
from decimal import Decimal
from typing import Any

from kiqlens.errors import MalformedPayloadError


class JSONNumber(Decimal):
    """A ``Decimal`` carrying its original JSON text."""

    token: str

    def __new__(cls, token: str) -> "JSONNumber":
        number = super().__new__(cls, token)
        number.token = token
        return number


def _reject_constant(token: str) -> Any:
    raise ValueError(f"{token} is not valid JSON")


def loads_lossless(raw: str | bytes) -> Any:
    """Decode JSON keeping floats as ``JSONNumber``. Raises ``ValueError``.

    ``NaN`` and ``Infinity`` are rejected: Sidekiq cannot read them back.
    """
    return json.loads(raw, parse_float=JSONNumber, parse_constant=_reject_constant)


def safe_parse_json(raw: str | bytes) -> dict[str, Any]:
    """Strictly decode a job payload object for mutation paths.

    Trailing non-whitespace input is rejected, as is any top-level value that
    is not an object.
    """
    try:
        value = loads_lossless(raw)
    except ValueError as e:
        # json.JSONDecodeError reports trailing input as "Extra data".
        raise MalformedPayloadError(f"invalid job payload: {e}") from e
    if not isinstance(value, dict):
        raise MalformedPayloadError("job payload is not a JSON object")
    return value


def dumps_lossless(value: Any) -> str:
    """Compact JSON encoding that writes decimal numbers verbatim."""
    if isinstance(value, JSONNumber):
        return value.token
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"cannot encode non-finite number {value}")
        return str(value)
    if isinstance(value, dict):
        items = (
            f"{json.dumps(str(key), ensure_ascii=False)}:{dumps_lossless(item)}"
            for key, item in value.items()
        )
        return "{" + ",".join(items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(dumps_lossless(item) for item in value) + "]"
    return json.dumps(value, ensure_ascii=False)
