"""
Opaque pagination cursors.

Wire format, which must stay stable because clients hold on to cursors:

* simple    -> base64(<identifier>)
* composite -> base64({"deviceUuid": ..., "time": <ISO 8601>})

Decoders never raise; they hand back a :class:`CursorError` instead.
"""

import base64
import binascii
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from dateutil import parser as dtparser

from .errors import CursorError, cursor_error

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")


@dataclass(frozen=True)
class CompositeCursor:
    device_uuid: str
    time: datetime


def _b64decode(cursor: str) -> str:
    if not _BASE64_RE.fullmatch(cursor):
        raise ValueError("Invalid base64 format")
    return base64.b64decode(cursor, validate=True).decode("utf-8")


def encode_cursor(identifier: str) -> str:
    return base64.b64encode(str(identifier).encode("utf-8")).decode("ascii")


def decode_cursor(cursor: Optional[str]) -> Union[str, CursorError]:
    if not cursor:
        return cursor_error("Cursor is required", cursor)
    try:
        return _b64decode(cursor)
    except (ValueError, binascii.Error) as e:
        # UnicodeDecodeError is a ValueError
        return cursor_error(f"Failed to decode cursor: {cursor} ({e})", cursor)


def decode_cursor_with_fallback(cursor: Optional[str], fallback: str) -> str:
    """Only for callers where a bad cursor should behave like 'start of range'."""
    decoded = decode_cursor(cursor)
    if isinstance(decoded, CursorError):
        return fallback
    return decoded


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def encode_composite_cursor(device_uuid: str, time: datetime) -> str:
    raw = json.dumps({"deviceUuid": device_uuid, "time": _iso(time)}, separators=(",", ":"))
    return encode_cursor(raw)


def decode_composite_cursor(cursor: Optional[str]) -> Union[CompositeCursor, CursorError]:
    if not cursor:
        return cursor_error("Cursor is required", cursor)
    try:
        parsed = json.loads(_b64decode(cursor))
        if not isinstance(parsed, dict):
            raise ValueError("Invalid cursor structure: expected an object")
        device_uuid, raw_time = parsed.get("deviceUuid"), parsed.get("time")
        if not isinstance(device_uuid, str) or not device_uuid or not isinstance(raw_time, str) or not raw_time:
            raise ValueError("Invalid cursor structure: missing deviceUuid or time")
        time = dtparser.isoparse(raw_time)
    except (ValueError, OverflowError, binascii.Error) as e:
        # json.JSONDecodeError and dateutil's ParserError are ValueErrors too
        return cursor_error(f"Failed to decode composite cursor: {cursor} ({e})", cursor)

    if time.tzinfo is None:
        time = time.replace(tzinfo=timezone.utc)
    return CompositeCursor(device_uuid=device_uuid, time=time.astimezone(timezone.utc))
