"""
Conversions between stored BSON values and JSON.

Two flavours are provided:

- ``to_jsonable``: a lossy rendering for API responses (ObjectId -> hex
  string, datetime -> ISO 8601).
- ``dumps`` / ``loads``: MongoDB relaxed Extended JSON, lossless, used for
  backup files and restore payloads so ObjectIds and dates survive a round
  trip.
"""

from __future__ import annotations

import base64
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from bson import ObjectId, json_util
from bson.decimal128 import Decimal128
from bson.json_util import JSONOptions, JSONMode

# Relaxed mode keeps numbers as plain JSON numbers. Dates load naive (UTC),
# the same way the default MongoClient returns them.
EXTENDED_JSON_OPTIONS = JSONOptions(json_mode=JSONMode.RELAXED, tz_aware=False)


def to_jsonable(value: Any) -> Any:
    """Convert a stored value into plain JSON-compatible Python data."""
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.isoformat().replace("+00:00", "Z")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal128):
        return str(value.to_decimal())
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    return value


def utc_now() -> datetime:
    """Current UTC time, naive and truncated to BSON's millisecond precision."""
    now = datetime.now(UTC).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def dumps(data: Any, indent: int | None = None) -> str:
    """Serialize to relaxed Extended JSON."""
    return json_util.dumps(data, json_options=EXTENDED_JSON_OPTIONS, indent=indent)


def loads(text: str | bytes) -> Any:
    """Parse relaxed (or canonical) Extended JSON."""
    return json_util.loads(text, json_options=EXTENDED_JSON_OPTIONS)
